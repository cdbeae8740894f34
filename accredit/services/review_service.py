"""
Review Service — the reviewer's side of the document workflow.

    start   assigned_for_review → under_review   (idempotent per document version)
    update  draft only; recomputes overall_score when criteria change
    submit  draft → submitted, document → review_completed, ledger complete

Statuses after ``submitted`` (under_audit, approved, returned_for_revision)
are written by audit_service.
"""

from __future__ import annotations

import json
import logging

from accredit.core.exceptions import ForbiddenError, TransitionError, ValidationError
from accredit.models import db
from accredit.models.activity_log import TargetResource
from accredit.models.document import REVIEWER_ACTIVE_STATUSES, Document
from accredit.models.review import REVIEW_MUTABLE_FIELDS, Review, ReviewRevision
from accredit.services import assignment_ledger
from accredit.services.access import check_document_access, reviewer_for_user
from accredit.services.activity_log import ActivityLogger
from accredit.services.document_lifecycle import apply_status, get_active_document, institute_contact
from accredit.services.notification_service import notify_quietly, notify_status_update
from accredit.utils.helpers import commit_or_raise, get_or_raise, round_half_up, utcnow

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


def empty_review_data():
    return {"criteria": [], "strengths": [], "weaknesses": [], "recommendations": []}


def overall_score(criteria) -> int:
    """Weighted mean of criterion scores; 0 when the weights sum to zero.

    A criterion without a weight counts with weight 1.
    """
    total_score = 0.0
    total_weight = 0.0
    for criterion in criteria:
        weight = criterion.get("weight")
        weight = 1.0 if weight is None else float(weight)
        total_score += float(criterion.get("score") or 0) * weight
        total_weight += weight
    if total_weight <= 0:
        return 0
    return round_half_up(total_score / total_weight)


def _validate_criteria(criteria) -> list[dict]:
    if not isinstance(criteria, list):
        raise ValidationError("criteria must be a list", {"criteria": "invalid"})
    cleaned = []
    for index, criterion in enumerate(criteria):
        if not isinstance(criterion, dict):
            raise ValidationError("each criterion must be an object", {"criteria": index})
        try:
            score = float(criterion.get("score"))
        except (TypeError, ValueError) as exc:
            raise ValidationError("criterion score is required", {"criteria": index}) from exc
        if not 0 <= score <= 100:
            raise ValidationError("criterion score must be between 0 and 100", {"criteria": index})
        weight = criterion.get("weight")
        if weight is not None:
            try:
                weight = float(weight)
            except (TypeError, ValueError) as exc:
                raise ValidationError("criterion weight must be a number", {"criteria": index}) from exc
            if not 0 <= weight <= 1:
                raise ValidationError("criterion weight must be between 0 and 1", {"criteria": index})
        cleaned.append({**criterion, "score": score, "weight": weight})
    return cleaned


def _owned_review(user, review_id) -> Review:
    review = get_or_raise(Review, review_id, "Review")
    reviewer = reviewer_for_user(user)
    if review.reviewer_id != reviewer.id:
        raise ForbiddenError("Access denied")
    return review


# ═══════════════════════════════════════════════════════════════
# Workflow
# ═══════════════════════════════════════════════════════════════
def start_review(user, document_id) -> tuple[Review, bool]:
    """Open (or resume) the reviewer's draft; returns ``(review, created)``."""
    reviewer = reviewer_for_user(user)
    document = get_active_document(document_id)
    if document.assigned_reviewer_id != reviewer.id:
        raise ForbiddenError("Document not assigned to you")
    if document.status not in REVIEWER_ACTIVE_STATUSES:
        raise TransitionError(f"Document {document.id}", "start_review", document.status)

    review = Review.query.filter_by(
        document_id=document.id, reviewer_id=reviewer.id, document_version=document.version,
    ).first()
    created = review is None
    if created:
        review = Review(
            document_id=document.id,
            document_version=document.version,
            reviewer_id=reviewer.id,
            institute_id=document.institute_id,
            review_data=empty_review_data(),
            status="draft",
            started_at=utcnow(),
            due_date=document.review_due_date,
        )
        db.session.add(review)
        db.session.flush()

    entry = assignment_ledger.mark_in_progress(reviewer, document.id)
    if entry is not None:
        entry.review_id = review.id
    if document.status == "assigned_for_review":
        apply_status(document, "under_review", user.id)
    commit_or_raise("Review", review.id)

    ActivityLogger.record(
        "review_started", user,
        target=TargetResource.of(document),
        details={"review_id": review.id, "resumed": not created},
    )
    return review, created


def update_review(user, review_id, data: dict) -> Review:
    review = _owned_review(user, review_id)
    if review.status != "draft":
        raise TransitionError(
            f"Review {review.id}", "update", review.status, "submitted reviews cannot be changed",
        )
    updates = {key: data[key] for key in REVIEW_MUTABLE_FIELDS if key in data}
    if not updates:
        raise ValidationError(
            f"Nothing to update; allowed fields: {', '.join(REVIEW_MUTABLE_FIELDS)}",
        )

    if "review_data" in updates:
        patch = updates["review_data"]
        if not isinstance(patch, dict):
            raise ValidationError("review_data must be an object", {"review_data": "invalid"})
        merged = {**(review.review_data or empty_review_data()), **patch}
        merged.pop("overall_score", None)
        if "criteria" in patch:
            merged["criteria"] = _validate_criteria(patch["criteria"])
            review.overall_score = overall_score(merged["criteria"])
        review.review_data = merged
    if "feedback" in updates:
        review.feedback = updates["feedback"]

    review.revisions.append(ReviewRevision(
        version=len(review.revisions) + 1,
        modified_at=utcnow(),
        modified_by_id=user.id,
        changes=json.dumps(updates, default=str),
        reason=(data.get("reason") or "Review updated")[:500],
    ))
    commit_or_raise("Review", review.id)

    ActivityLogger.record(
        "review_updated", user,
        target=TargetResource.of(review, name=f"Review {review.id}"),
        details={"updated_fields": sorted(updates), "overall_score": review.overall_score},
    )
    return review


def submit_review(user, review_id) -> Review:
    review = _owned_review(user, review_id)
    if review.status != "draft":
        raise TransitionError(f"Review {review.id}", "submit", review.status, "already submitted")
    if review.overall_score is None or not review.criteria:
        raise ValidationError(
            "Review is incomplete. Please add criteria and overall score",
            {"criteria": len(review.criteria), "overall_score": review.overall_score},
        )
    document = review.document
    if document.status != "under_review" or document.version != review.document_version:
        raise TransitionError(
            f"Document {document.id}", "submit_review", document.status,
            "review does not belong to the document's current review",
        )

    now = utcnow()
    review.status = "submitted"
    review.submitted_at = now
    review.completed_at = now
    review.signed = True
    review.signed_at = now
    review.digital_signature = f"{user.name}-{now.isoformat()}"

    assignment_ledger.complete(review.reviewer, document, started_at=review.started_at, completed_at=now)
    apply_status(document, "review_completed", user.id, completed=True)
    commit_or_raise("Review", review.id)

    logger.info("Review submitted", extra={"document_id": document.id, "user_id": user.id})
    ActivityLogger.record(
        "review_submitted", user,
        target=TargetResource.of(review, name=document.title),
        details={"document_id": document.id, "overall_score": review.overall_score},
    )
    contact = institute_contact(document)
    if contact is not None:
        notify_quietly(notify_status_update, contact, document, "under_review", "review_completed", user)
    return review


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════
def get_review(user, review_id) -> Review:
    """Admins, the owning reviewer, any auditor and the uploading institute."""
    review = get_or_raise(Review, review_id, "Review")
    allowed = user.role in ("admin", "auditor")
    if user.role == "reviewer":
        allowed = review.reviewer_id == reviewer_for_user(user).id
    elif user.role == "institute":
        document = review.document
        allowed = document.uploaded_by_id == user.id or (
            user.institute_id is not None and document.institute_id == user.institute_id
        )
    if not allowed:
        raise ForbiddenError("Access denied")
    return review


def document_reviews(user, document_id) -> list[Review]:
    document = get_or_raise(Document, document_id, "Document")
    check_document_access(user, document)
    return (
        Review.query.filter_by(document_id=document.id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )


def reviewer_dashboard(user) -> dict:
    reviewer = reviewer_for_user(user)
    assigned = (
        Document.query_active()
        .filter(
            Document.assigned_reviewer_id == reviewer.id,
            Document.status.in_(REVIEWER_ACTIVE_STATUSES),
        )
        .order_by(Document.review_due_date.asc())
        .all()
    )
    recent = (
        Review.query.filter_by(reviewer_id=reviewer.id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .limit(RECENT_LIMIT)
        .all()
    )
    return {
        "reviewer": reviewer.to_dict(),
        "assigned_documents": [d.to_dict() for d in assigned],
        "recent_reviews": [r.to_dict() for r in recent],
        "statistics": {
            "total_assigned": len(assigned),
            "total_completed": reviewer.completed_reviews,
            "overdue": assignment_ledger.overdue_count(reviewer),
            "average_review_time": reviewer.average_review_time,
            "current_workload": reviewer.workload_percentage,
        },
    }
