"""
Institute Service — admin CRUD for the organisations that own documents.

Institutes are never hard-deleted; they are retired through ``status``.
"""

from __future__ import annotations

import logging

from accredit.core.exceptions import ConflictError, ValidationError
from accredit.models import db
from accredit.models.activity_log import TargetResource
from accredit.models.auth import User
from accredit.models.institute import (
    ACCREDITATION_LEVELS,
    ACCREDITATION_STATUSES,
    INSTITUTE_STATUSES,
    INSTITUTE_TYPES,
    Institute,
)
from accredit.services.activity_log import ActivityLogger
from accredit.utils.helpers import commit_or_raise, get_or_raise, parse_datetime

logger = logging.getLogger(__name__)

INSTITUTE_FIELDS = (
    "name", "code", "type", "accreditation_level", "email", "phone", "website", "address",
    "administrator_id", "status", "accreditation_status", "compliance_score",
    "next_audit_due", "notes",
)

_CHOICES = {
    "type": INSTITUTE_TYPES,
    "accreditation_level": ACCREDITATION_LEVELS,
    "status": INSTITUTE_STATUSES,
    "accreditation_status": ACCREDITATION_STATUSES,
}


def _clean(data: dict, *, partial: bool) -> dict:
    values = {key: data[key] for key in INSTITUTE_FIELDS if key in data}
    if not partial:
        for key in ("name", "code"):
            if not (values.get(key) or "").strip():
                raise ValidationError(f"{key} is required", {key: "required"})

    if "name" in values:
        values["name"] = (values["name"] or "").strip()[:200]
        if not values["name"]:
            raise ValidationError("name is required", {"name": "required"})
    if "code" in values:
        values["code"] = (values["code"] or "").strip().upper()[:20]
        if not values["code"]:
            raise ValidationError("code is required", {"code": "required"})
    for key, allowed in _CHOICES.items():
        if key in values and values[key] not in allowed:
            raise ValidationError(
                f"{key} must be one of {', '.join(sorted(allowed))}", {key: values[key]},
            )
    if "compliance_score" in values:
        score = values["compliance_score"]
        if not isinstance(score, int) or not 0 <= score <= 100:
            raise ValidationError("compliance_score must be an integer between 0 and 100")
    if "next_audit_due" in values:
        values["next_audit_due"] = parse_datetime(values["next_audit_due"])
    if values.get("administrator_id") is not None:
        admin_user = get_or_raise(User, values["administrator_id"], "User")
        if admin_user.role != "institute":
            raise ValidationError("administrator must be an institute user", {"administrator_id": admin_user.id})
    return values


def _link_administrator(institute):
    if institute.administrator_id is None:
        return
    user = db.session.get(User, institute.administrator_id)
    if user is not None and user.institute_id is None:
        user.institute_id = institute.id


def create_institute(actor, data: dict) -> Institute:
    values = _clean(data, partial=False)
    if Institute.query.filter_by(code=values["code"]).first():
        raise ConflictError("Institute", "code", values["code"])
    institute = Institute(**values)
    db.session.add(institute)
    db.session.flush()
    _link_administrator(institute)
    commit_or_raise("Institute")

    ActivityLogger.record(
        "institute_created", actor,
        target=TargetResource.of(institute), details={"institute_code": institute.code},
    )
    return institute


def update_institute(actor, institute_id, data: dict) -> Institute:
    institute = get_or_raise(Institute, institute_id, "Institute")
    values = _clean(data, partial=True)
    if "code" in values and values["code"] != institute.code:
        if Institute.query.filter_by(code=values["code"]).first():
            raise ConflictError("Institute", "code", values["code"])

    old_status = institute.status
    for key, value in values.items():
        setattr(institute, key, value)
    _link_administrator(institute)
    commit_or_raise("Institute", institute.id)

    if "status" in values and values["status"] != old_status:
        ActivityLogger.record(
            "institute_status_changed", actor,
            target=TargetResource.of(institute),
            details={"old_status": old_status, "new_status": institute.status},
        )
    else:
        ActivityLogger.record(
            "institute_updated", actor,
            target=TargetResource.of(institute), details={"updated_fields": sorted(values)},
        )
    return institute


def list_institutes(filters: dict, page: int = 1, per_page: int = 10):
    q = Institute.query
    if filters.get("status"):
        q = q.filter(Institute.status == filters["status"])
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(Institute.name.ilike(like), Institute.code.ilike(like)))
    return q.order_by(Institute.created_at.desc(), Institute.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False,
    )


def get_institute(institute_id) -> Institute:
    return get_or_raise(Institute, institute_id, "Institute")
