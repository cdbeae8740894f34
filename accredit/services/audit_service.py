"""
Audit Service — the auditor's validation of a submitted review and the final
decision on a document.

    start            assigned_for_audit → under_audit   (needs a submitted review)
    update           audit_data / quality / attachments while not completed
    add_finding      informational finding, no score effect
    update_compliance
    validate_review  review-validation scores + per-criterion variance (±10)
    submit           outcome → document status, ledger complete, auditor history
    set_audit_status admin on_hold / resume

Every mutating call appends exactly one AuditTrailEntry in the same commit as
the change it describes.  ``outcome`` and ``justification`` are written only
by ``submit``.
"""

from __future__ import annotations

import logging

from flask import has_request_context, request

from accredit.core.exceptions import ForbiddenError, TransitionError, ValidationError
from accredit.models import db
from accredit.models.activity_log import TargetResource
from accredit.models.audit import (
    ACCEPTABLE_VARIANCE,
    AUDIT_OUTCOMES,
    AUDIT_OVERRIDE_TRANSITIONS,
    COMPLIANCE_LEVELS,
    FINDING_CATEGORIES,
    RISK_LEVELS,
    Audit,
    AuditTrailEntry,
    empty_audit_data,
)
from accredit.models.document import AUDITOR_ACTIVE_STATUSES, Document, status_for_outcome
from accredit.models.review import SUBMITTED_REVIEW_STATUSES, Review
from accredit.services import assignment_ledger
from accredit.services.access import auditor_for_user, check_document_access
from accredit.services.activity_log import ActivityLogger, client_ip
from accredit.services.document_lifecycle import (
    apply_status,
    complete_stage,
    get_active_document,
    institute_contact,
)
from accredit.services.notification_service import notify_quietly, notify_status_update
from accredit.utils.helpers import commit_or_raise, get_or_raise, utcnow

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10

AUDIT_DATA_KEYS = ("review_validation", "criteria_validation", "compliance_check", "findings", "risk_assessment")
QUALITY_KEYS = ("thoroughness", "accuracy", "timeliness")

# Review status written when its audit reaches a decision.
REVIEW_STATUS_FOR_OUTCOME = {
    "approved": "approved",
    "approved_with_conditions": "approved",
    "requires_revision": "returned_for_revision",
}


def criterion_variance(reviewer_score, auditor_score) -> dict:
    """``{variance, acceptable}`` for one criterion under the fixed tolerance."""
    variance = abs(float(reviewer_score) - float(auditor_score))
    if variance.is_integer():
        variance = int(variance)
    return {"variance": variance, "acceptable": variance <= ACCEPTABLE_VARIANCE}


def _trail(audit, action, user, details=None):
    entry = AuditTrailEntry(
        action=action,
        performed_by_id=user.id if user is not None else None,
        timestamp=utcnow(),
        details=details or {},
    )
    if has_request_context():
        entry.ip = client_ip()
        entry.user_agent = (request.headers.get("User-Agent") or "Unknown")[:500]
    audit.trail.append(entry)
    return entry


def _owned_audit(user, audit_id) -> Audit:
    audit = get_or_raise(Audit, audit_id, "Audit")
    auditor = auditor_for_user(user)
    if audit.auditor_id != auditor.id:
        raise ForbiddenError("Access denied")
    return audit


def _open_audit(user, audit_id, action) -> Audit:
    audit = _owned_audit(user, audit_id)
    if audit.status == "completed":
        raise TransitionError(f"Audit {audit.id}", action, audit.status, "completed audits are immutable")
    if audit.status == "on_hold":
        raise TransitionError(f"Audit {audit.id}", action, audit.status, "audit is on hold")
    return audit


def _set_audit_data(audit, key, value):
    data = dict(audit.audit_data or empty_audit_data())
    data[key] = value
    audit.audit_data = data


# ═══════════════════════════════════════════════════════════════
# Workflow
# ═══════════════════════════════════════════════════════════════
def start_audit(user, document_id) -> tuple[Audit, bool]:
    """Open (or resume) the auditor's audit; returns ``(audit, created)``."""
    auditor = auditor_for_user(user)
    document = get_active_document(document_id)
    review = (
        Review.query.filter(
            Review.document_id == document.id,
            Review.document_version == document.version,
            Review.status.in_(SUBMITTED_REVIEW_STATUSES),
        )
        .order_by(Review.submitted_at.desc(), Review.id.desc())
        .first()
    )
    if review is None:
        raise ValidationError("No completed review found for this document", {"document_id": document.id})
    if document.assigned_auditor_id != auditor.id:
        raise ForbiddenError("Document not assigned to you")
    if document.status not in AUDITOR_ACTIVE_STATUSES:
        raise TransitionError(f"Document {document.id}", "start_audit", document.status)

    now = utcnow()
    audit = Audit.query.filter_by(
        document_id=document.id, auditor_id=auditor.id, document_version=document.version,
    ).first()
    created = audit is None
    if created:
        audit = Audit(
            document_id=document.id,
            document_version=document.version,
            review_id=review.id,
            auditor_id=auditor.id,
            institute_id=document.institute_id,
            audit_data=empty_audit_data(),
            status="in_progress",
            assigned_at=document.auditor_assigned_at or now,
            started_at=now,
            due_date=document.audit_due_date,
        )
        db.session.add(audit)
        _trail(audit, "audit_started", user, {"document_id": document.id, "review_id": review.id})
    else:
        if audit.status == "assigned":
            audit.status = "in_progress"
        _trail(audit, "audit_resumed", user, {"document_id": document.id})

    if review.status == "submitted":
        review.status = "under_audit"
    assignment_ledger.mark_in_progress(auditor, document.id)
    if document.status == "assigned_for_audit":
        apply_status(document, "under_audit", user.id)
    commit_or_raise("Audit", audit.id)

    ActivityLogger.record(
        "audit_started", user,
        target=TargetResource.of(document),
        details={"audit_id": audit.id, "review_id": review.id, "resumed": not created},
    )
    return audit, created


def update_audit(user, audit_id, data: dict) -> Audit:
    """Patch working data; the final decision is only written by ``submit_audit``."""
    audit = _open_audit(user, audit_id, "update")
    updated = []
    changes = {}

    patch = data.get("audit_data")
    if patch is not None:
        if not isinstance(patch, dict):
            raise ValidationError("audit_data must be an object", {"audit_data": "invalid"})
        risk = patch.get("risk_assessment")
        if isinstance(risk, dict) and risk.get("overall_risk") not in (None, *RISK_LEVELS):
            raise ValidationError(
                f"overall_risk must be one of {', '.join(sorted(RISK_LEVELS))}",
                {"overall_risk": risk.get("overall_risk")},
            )
        merged = dict(audit.audit_data or empty_audit_data())
        for key in AUDIT_DATA_KEYS:
            if key in patch:
                merged[key] = patch[key]
                updated.append(f"audit_data.{key}")
        changes["audit_data"] = merged

    if "quality" in data:
        quality = data["quality"] or {}
        for key in QUALITY_KEYS:
            value = quality.get(key)
            if value is not None and not (isinstance(value, (int, float)) and 1 <= value <= 5):
                raise ValidationError(f"quality.{key} must be between 1 and 5", {key: value})
        changes["quality"] = {**(audit.quality or {}), **quality}
        updated.append("quality")

    if "attachments" in data:
        changes["attachments"] = list(data["attachments"] or [])
        updated.append("attachments")

    if not updated:
        raise ValidationError("Nothing to update; allowed fields: audit_data, quality, attachments")

    for field, value in changes.items():
        setattr(audit, field, value)
    _trail(audit, "audit_updated", user, {"updated_fields": updated})
    commit_or_raise("Audit", audit.id)
    ActivityLogger.record(
        "audit_updated", user,
        target=TargetResource.of(audit, name=f"Audit {audit.id}"),
        details={"updated_fields": updated},
    )
    return audit


def add_finding(user, audit_id, data: dict) -> tuple[Audit, dict]:
    audit = _open_audit(user, audit_id, "add_finding")
    category = data.get("category")
    if category not in FINDING_CATEGORIES:
        raise ValidationError(
            f"category must be one of {', '.join(sorted(FINDING_CATEGORIES))}", {"category": category},
        )
    if not (data.get("description") or "").strip():
        raise ValidationError("Finding description is required", {"description": "required"})

    finding = {
        "category": category,
        "description": data["description"].strip(),
        "evidence": data.get("evidence"),
        "impact": data.get("impact"),
        "recommendation": data.get("recommendation"),
        "timeline": data.get("timeline"),
        "responsible": data.get("responsible"),
    }
    findings = list((audit.audit_data or {}).get("findings") or [])
    findings.append(finding)
    _set_audit_data(audit, "findings", findings)

    _trail(audit, "finding_added", user, {
        "finding_category": category,
        "severity": "high" if category == "critical" else "medium",
    })
    commit_or_raise("Audit", audit.id)
    return audit, finding


def update_compliance(user, audit_id, data: dict) -> Audit:
    audit = _open_audit(user, audit_id, "update_compliance")
    check = dict((audit.audit_data or {}).get("compliance_check") or {})
    standards = data.get("standards_verification")
    overall = data.get("overall_compliance")
    if standards is not None:
        if not isinstance(standards, list):
            raise ValidationError("standards_verification must be a list")
        check["standards_verification"] = standards
    if overall is not None:
        if overall not in COMPLIANCE_LEVELS:
            raise ValidationError(
                f"overall_compliance must be one of {', '.join(sorted(COMPLIANCE_LEVELS))}",
                {"overall_compliance": overall},
            )
        check["overall_compliance"] = overall
    _set_audit_data(audit, "compliance_check", check)

    _trail(audit, "compliance_updated", user, {
        "overall_compliance": check.get("overall_compliance"),
        "standards_count": len(check.get("standards_verification") or []),
    })
    commit_or_raise("Audit", audit.id)
    return audit


def _score(value, field):
    if value is None:
        return 0
    if not isinstance(value, (int, float)) or not 0 <= value <= 100:
        raise ValidationError(f"{field} must be between 0 and 100", {field: value})
    return value


def validate_review(user, audit_id, validation: dict) -> Audit:
    """Overwrite the review validation; recompute variance per supplied criterion."""
    audit = _open_audit(user, audit_id, "validate_review")
    if not isinstance(validation, dict):
        raise ValidationError("review_validation must be an object")

    review_validation = {
        "accuracy_score": _score(validation.get("accuracy_score"), "accuracy_score"),
        "completeness_score": _score(validation.get("completeness_score"), "completeness_score"),
        "consistency_score": _score(validation.get("consistency_score"), "consistency_score"),
        "validation_comments": validation.get("validation_comments") or "",
    }
    data = dict(audit.audit_data or empty_audit_data())
    data["review_validation"] = review_validation

    criteria = validation.get("criteria_validation")
    if criteria:
        rows = []
        for index, item in enumerate(criteria):
            try:
                result = criterion_variance(item["reviewer_score"], item["auditor_score"])
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError(
                    "criteria_validation entries need reviewer_score and auditor_score",
                    {"criteria_validation": index},
                ) from exc
            rows.append({
                "criteria_name": item.get("criteria_name"),
                "reviewer_score": item["reviewer_score"],
                "auditor_score": item["auditor_score"],
                **result,
                "auditor_comments": item.get("auditor_comments"),
                "evidence_validated": bool(item.get("evidence_validated")),
            })
        data["criteria_validation"] = rows
    audit.audit_data = data

    _trail(audit, "review_validated", user, {
        key: review_validation[key] for key in ("accuracy_score", "completeness_score", "consistency_score")
    })
    commit_or_raise("Audit", audit.id)
    return audit


def submit_audit(user, audit_id, final_decision: dict, digital_signature: str | None = None) -> Audit:
    audit = _open_audit(user, audit_id, "submit")
    final_decision = final_decision or {}
    outcome = final_decision.get("outcome")
    justification = (final_decision.get("justification") or "").strip()
    if not outcome or not justification:
        raise ValidationError(
            "Final decision and justification are required",
            {"outcome": outcome, "justification": bool(justification)},
        )
    if outcome not in AUDIT_OUTCOMES:
        raise ValidationError(
            f"outcome must be one of {', '.join(sorted(AUDIT_OUTCOMES))}", {"outcome": outcome},
        )
    final_score = final_decision.get("final_score")
    if final_score is not None and not (isinstance(final_score, (int, float)) and 0 <= final_score <= 100):
        raise ValidationError("final_score must be between 0 and 100", {"final_score": final_score})

    document = audit.document
    if document.status != "under_audit" or document.version != audit.document_version:
        raise TransitionError(
            f"Document {document.id}", "submit_audit", document.status,
            "audit does not belong to the document's current audit",
        )

    now = utcnow()
    audit.outcome = outcome
    audit.justification = justification
    audit.final_score = int(final_score) if final_score is not None else None
    audit.decision_details = {
        key: final_decision[key] for key in ("validity_period", "conditions", "recommendations")
        if key in final_decision
    }
    audit.status = "completed"
    audit.submitted_at = now
    audit.completed_at = now
    audit.signed = True
    audit.signed_at = now
    audit.digital_signature = digital_signature or f"{user.name}-{now.isoformat()}"
    audit.signature_ip = client_ip()

    new_status = status_for_outcome(outcome)
    old_status = document.status
    complete_stage(document, "audit", user.id)
    apply_status(document, new_status, user.id, completed=True)
    review_status = REVIEW_STATUS_FOR_OUTCOME.get(outcome)
    if review_status and audit.review is not None:
        audit.review.status = review_status

    assignment_ledger.complete(
        audit.auditor, document,
        started_at=audit.started_at, completed_at=now,
        outcome=outcome, score=audit.final_score or 0,
    )
    _trail(audit, "audit_completed", user, {"outcome": outcome, "final_score": audit.final_score})
    commit_or_raise("Audit", audit.id)

    logger.info("Audit submitted", extra={"document_id": document.id, "user_id": user.id})
    ActivityLogger.record(
        "audit_completed", user,
        target=TargetResource.of(audit, name=document.title),
        details={"document_id": document.id, "outcome": outcome, "final_score": audit.final_score},
    )
    contact = institute_contact(document)
    if contact is not None:
        notify_quietly(notify_status_update, contact, document, old_status, new_status, user)
    return audit


def set_audit_status(actor, audit_id, status, reason=None) -> Audit:
    """Admin override between open statuses and ``on_hold``."""
    audit = get_or_raise(Audit, audit_id, "Audit")
    if status not in AUDIT_OVERRIDE_TRANSITIONS.get(audit.status, []):
        raise TransitionError(f"Audit {audit.id}", f"set_status:{status}", audit.status)
    old = audit.status
    audit.status = status
    _trail(audit, "status_changed", actor, {"old_status": old, "new_status": status, "reason": reason})
    commit_or_raise("Audit", audit.id)
    ActivityLogger.record(
        "audit_status_changed", actor,
        target=TargetResource.of(audit, name=f"Audit {audit.id}"),
        details={"old_status": old, "new_status": status, "reason": reason},
    )
    return audit


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════
def get_audit(user, audit_id) -> Audit:
    """Admins, the owning auditor and the uploading institute."""
    audit = get_or_raise(Audit, audit_id, "Audit")
    allowed = user.role == "admin"
    if user.role == "auditor":
        allowed = audit.auditor_id == auditor_for_user(user).id
    elif user.role == "institute":
        document = audit.document
        allowed = document.uploaded_by_id == user.id or (
            user.institute_id is not None and document.institute_id == user.institute_id
        )
    if not allowed:
        raise ForbiddenError("Access denied")
    return audit


def document_audits(user, document_id) -> list[Audit]:
    document = get_or_raise(Document, document_id, "Document")
    if user.role == "reviewer":
        raise ForbiddenError("Access denied")
    check_document_access(user, document)
    return (
        Audit.query.filter_by(document_id=document.id)
        .order_by(Audit.created_at.desc(), Audit.id.desc())
        .all()
    )


def auditor_dashboard(user) -> dict:
    auditor = auditor_for_user(user)
    assigned = (
        Document.query_active()
        .filter(
            Document.assigned_auditor_id == auditor.id,
            Document.status.in_(AUDITOR_ACTIVE_STATUSES),
        )
        .order_by(Document.audit_due_date.asc())
        .all()
    )
    recent = (
        Audit.query.filter_by(auditor_id=auditor.id)
        .order_by(Audit.created_at.desc(), Audit.id.desc())
        .limit(RECENT_LIMIT)
        .all()
    )
    return {
        "auditor": auditor.to_dict(),
        "assigned_documents": [d.to_dict() for d in assigned],
        "recent_audits": [a.to_dict() for a in recent],
        "statistics": {
            "total_assigned": len(assigned),
            "total_completed": auditor.completed_audits,
            "overdue": assignment_ledger.overdue_count(auditor),
            "average_audit_time": auditor.average_audit_time,
            "current_workload": auditor.workload_percentage,
            "overall_performance": auditor.overall_performance,
        },
    }
