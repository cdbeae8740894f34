"""
Assessor Service — admin provisioning of reviewer and auditor profiles and
the availability listings used when assigning work.

A profile is bound 1:1 to an existing user of the matching role.
"""

from __future__ import annotations

import logging

from flask import current_app

from accredit.core.exceptions import ConflictError, ValidationError
from accredit.models import db
from accredit.models.activity_log import TargetResource
from accredit.models.assessor import (
    AUDITOR_SPECIALIZATIONS,
    AVAILABILITY_VALUES,
    REVIEWER_SPECIALIZATIONS,
    Auditor,
    Reviewer,
)
from accredit.models.auth import User
from accredit.services.activity_log import ActivityLogger
from accredit.utils.helpers import commit_or_raise, get_or_raise

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("specialization", "qualifications", "experience", "preferences", "availability", "workload_maximum")
REVIEWER_FIELDS = PROFILE_FIELDS + ("certifications", "rating")
AUDITOR_FIELDS = PROFILE_FIELDS + ("license_number", "rating", "accuracy", "efficiency", "consistency_score")
PERFORMANCE_FIELDS = ("accuracy", "efficiency", "consistency_score")


def _validate(values: dict, specializations) -> dict:
    if "specialization" in values:
        tags = values["specialization"] or []
        unknown = [t for t in tags if t not in specializations]
        if unknown:
            raise ValidationError(
                f"specialization must be drawn from {', '.join(sorted(specializations))}",
                {"specialization": unknown},
            )
    if "availability" in values and values["availability"] not in AVAILABILITY_VALUES:
        raise ValidationError(
            f"availability must be one of {', '.join(sorted(AVAILABILITY_VALUES))}",
            {"availability": values["availability"]},
        )
    if "workload_maximum" in values:
        maximum = values["workload_maximum"]
        if not isinstance(maximum, int) or maximum < 0:
            raise ValidationError("workload_maximum must be a non-negative integer")
    if "experience" in values:
        if not isinstance(values["experience"], int) or values["experience"] < 0:
            raise ValidationError("experience must be a non-negative integer")
    for key in PERFORMANCE_FIELDS:
        if key in values and not (isinstance(values[key], int) and 0 <= values[key] <= 100):
            raise ValidationError(f"{key} must be an integer between 0 and 100", {key: values[key]})
    if "rating" in values and not (isinstance(values["rating"], (int, float)) and 0 <= values["rating"] <= 5):
        raise ValidationError("rating must be between 0 and 5")
    return values


def _profile_user(user_id, role) -> User:
    user = get_or_raise(User, user_id, "User")
    if user.role != role:
        raise ValidationError(f"User {user.id} does not have the {role} role", {"role": user.role})
    return user


# ═══════════════════════════════════════════════════════════════
# Reviewers
# ═══════════════════════════════════════════════════════════════
def create_reviewer(actor, data: dict) -> Reviewer:
    user = _profile_user(data.get("user_id"), "reviewer")
    if Reviewer.query.filter_by(user_id=user.id).first():
        raise ConflictError("Reviewer", "user_id", str(user.id))
    values = _validate({k: data[k] for k in REVIEWER_FIELDS if k in data}, REVIEWER_SPECIALIZATIONS)
    values.setdefault("workload_maximum", current_app.config["REVIEWER_DEFAULT_CAPACITY"])
    reviewer = Reviewer(user_id=user.id, **values)
    db.session.add(reviewer)
    commit_or_raise("Reviewer")
    ActivityLogger.record("reviewer_created", actor, target=TargetResource.of(reviewer, name=user.name))
    return reviewer


def update_reviewer(actor, reviewer_id, data: dict) -> Reviewer:
    reviewer = get_or_raise(Reviewer, reviewer_id, "Reviewer")
    values = _validate({k: data[k] for k in REVIEWER_FIELDS if k in data}, REVIEWER_SPECIALIZATIONS)
    for key, value in values.items():
        setattr(reviewer, key, value)
    commit_or_raise("Reviewer", reviewer.id)
    ActivityLogger.record(
        "reviewer_updated", actor,
        target=TargetResource.of(reviewer, name=reviewer.user.name if reviewer.user else None),
        details={"updated_fields": sorted(values)},
    )
    return reviewer


# ═══════════════════════════════════════════════════════════════
# Auditors
# ═══════════════════════════════════════════════════════════════
def create_auditor(actor, data: dict) -> Auditor:
    user = _profile_user(data.get("user_id"), "auditor")
    if Auditor.query.filter_by(user_id=user.id).first():
        raise ConflictError("Auditor", "user_id", str(user.id))
    license_number = (data.get("license_number") or "").strip()
    if not license_number:
        raise ValidationError("license_number is required", {"license_number": "required"})
    if Auditor.query.filter_by(license_number=license_number).first():
        raise ConflictError("Auditor", "license_number", license_number)
    values = _validate({k: data[k] for k in AUDITOR_FIELDS if k in data}, AUDITOR_SPECIALIZATIONS)
    values["license_number"] = license_number
    values.setdefault("workload_maximum", current_app.config["AUDITOR_DEFAULT_CAPACITY"])
    auditor = Auditor(user_id=user.id, **values)
    db.session.add(auditor)
    commit_or_raise("Auditor")
    ActivityLogger.record(
        "auditor_created", actor,
        target=TargetResource.of(auditor, name=user.name), details={"license_number": license_number},
    )
    return auditor


def update_auditor(actor, auditor_id, data: dict) -> Auditor:
    auditor = get_or_raise(Auditor, auditor_id, "Auditor")
    values = _validate({k: data[k] for k in AUDITOR_FIELDS if k in data}, AUDITOR_SPECIALIZATIONS)
    if "license_number" in values:
        values["license_number"] = (values["license_number"] or "").strip()
        clash = Auditor.query.filter(
            Auditor.license_number == values["license_number"], Auditor.id != auditor.id,
        ).first()
        if not values["license_number"] or clash:
            raise ConflictError("Auditor", "license_number", values["license_number"])
    for key, value in values.items():
        setattr(auditor, key, value)
    commit_or_raise("Auditor", auditor.id)
    ActivityLogger.record(
        "auditor_updated", actor,
        target=TargetResource.of(auditor, name=auditor.user.name if auditor.user else None),
        details={"updated_fields": sorted(values)},
    )
    return auditor


# ═══════════════════════════════════════════════════════════════
# Listings
# ═══════════════════════════════════════════════════════════════
def _by_workload(profiles):
    return sorted(profiles, key=lambda p: (p.workload_percentage, p.id))


def available_reviewers():
    """Reviewers marked available, least loaded first."""
    return _by_workload(Reviewer.query.filter_by(availability="available").all())


def available_auditors():
    return _by_workload(Auditor.query.filter_by(availability="available").all())


def get_reviewer(reviewer_id) -> Reviewer:
    return get_or_raise(Reviewer, reviewer_id, "Reviewer")


def get_auditor(auditor_id) -> Auditor:
    return get_or_raise(Auditor, auditor_id, "Auditor")
