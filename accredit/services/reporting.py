"""
Reporting — admin dashboard aggregates and parametrised reports.

Reports cover an optional ``[start_date, end_date]`` window on ``created_at``:

    documents    total + status distribution
    reviews      total + average overall score
    audits       total + outcome distribution
    performance  per reviewer (count, average score, average hours),
                 per auditor (count, average hours)
    overview     all of the above

Usage:
    from accredit.services.reporting import generate_report

    report = generate_report("reviews", start_date="2026-01-01", end_date=None)
"""

from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import func

from accredit.core.exceptions import ValidationError
from accredit.models.activity_log import ActivityLog
from accredit.models.assessor import Auditor, Reviewer
from accredit.models.audit import OPEN_AUDIT_STATUSES, Audit
from accredit.models.document import Document
from accredit.models.institute import Institute
from accredit.models.review import Review
from accredit.utils.helpers import as_utc, iso, parse_datetime

logger = logging.getLogger(__name__)

REPORT_TYPES = ("documents", "reviews", "audits", "performance", "overview")
RECENT_ACTIVITY_LIMIT = 10


def _group_count(query, column):
    rows = query.with_entities(column, func.count()).group_by(column).all()
    return [{"_id": key, "count": count} for key, count in rows]


# ═══════════════════════════════════════════════════════════════
# Dashboard
# ═══════════════════════════════════════════════════════════════
def admin_dashboard() -> dict:
    recent = (
        ActivityLog.query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(RECENT_ACTIVITY_LIMIT).all()
    )
    return {
        "overview": {
            "total_institutes": Institute.query.count(),
            "total_documents": Document.query_active().count(),
            "total_reviewers": Reviewer.query.count(),
            "total_auditors": Auditor.query.count(),
            "pending_reviews": Review.query.filter(Review.status == "draft").count(),
            "pending_audits": Audit.query.filter(Audit.status.in_(OPEN_AUDIT_STATUSES)).count(),
        },
        "statistics": {
            "document_status": _group_count(Document.query_active(), Document.status),
            "reviewer_workload": _group_count(Reviewer.query, Reviewer.availability),
            "auditor_workload": _group_count(Auditor.query, Auditor.availability),
        },
        "recent_activity": [entry.to_dict() for entry in recent],
    }


# ═══════════════════════════════════════════════════════════════
# Reports
# ═══════════════════════════════════════════════════════════════
def _windowed(query, column, start, end):
    if start:
        query = query.filter(column >= start)
    if end:
        query = query.filter(column <= end)
    return query


def _hours(started_at, completed_at):
    if not started_at or not completed_at:
        return None
    return (as_utc(completed_at) - as_utc(started_at)).total_seconds() / 3600


def _mean(values):
    values = [v for v in values if v is not None]
    return round(sum(values) / len(values), 2) if values else 0


def document_report(start=None, end=None) -> dict:
    q = _windowed(Document.query_active(), Document.created_at, start, end)
    documents = q.order_by(Document.created_at.desc()).all()
    return {
        "documents": [
            {
                "id": d.id, "title": d.title, "type": d.type, "status": d.status,
                "institute": d.institute.name if d.institute else None,
                "version": d.version, "created_at": iso(d.created_at),
            }
            for d in documents
        ],
        "statistics": {
            "total": len(documents),
            "status_distribution": _group_count(q, Document.status),
        },
    }


def review_report(start=None, end=None) -> dict:
    q = _windowed(Review.query, Review.created_at, start, end)
    reviews = q.order_by(Review.created_at.desc()).all()
    average = q.with_entities(func.avg(Review.overall_score)).scalar()
    return {
        "reviews": [
            {
                "id": r.id, "document_id": r.document_id, "reviewer_id": r.reviewer_id,
                "status": r.status, "overall_score": r.overall_score, "created_at": iso(r.created_at),
            }
            for r in reviews
        ],
        "statistics": {
            "total": len(reviews),
            "average_score": round(float(average), 2) if average is not None else 0,
        },
    }


def audit_report(start=None, end=None) -> dict:
    q = _windowed(Audit.query, Audit.created_at, start, end)
    audits = q.order_by(Audit.created_at.desc()).all()
    return {
        "audits": [
            {
                "id": a.id, "document_id": a.document_id, "auditor_id": a.auditor_id,
                "status": a.status, "outcome": a.outcome, "final_score": a.final_score,
                "created_at": iso(a.created_at),
            }
            for a in audits
        ],
        "statistics": {
            "total": len(audits),
            "outcomes": _group_count(q, Audit.outcome),
        },
    }


def performance_report(start=None, end=None) -> dict:
    reviewer_rows = defaultdict(lambda: {"scores": [], "hours": []})
    for review in _windowed(Review.query, Review.created_at, start, end).all():
        row = reviewer_rows[review.reviewer_id]
        row["scores"].append(review.overall_score)
        row["hours"].append(_hours(review.started_at, review.completed_at))

    auditor_rows = defaultdict(list)
    for audit in _windowed(Audit.query, Audit.created_at, start, end).all():
        auditor_rows[audit.auditor_id].append(_hours(audit.started_at, audit.completed_at))

    return {
        "reviewer_performance": [
            {
                "reviewer_id": reviewer_id,
                "total_reviews": len(row["scores"]),
                "average_score": _mean(row["scores"]),
                "average_hours": _mean(row["hours"]),
            }
            for reviewer_id, row in sorted(reviewer_rows.items())
        ],
        "auditor_performance": [
            {"auditor_id": auditor_id, "total_audits": len(hours), "average_hours": _mean(hours)}
            for auditor_id, hours in sorted(auditor_rows.items())
        ],
    }


def overview_report(start=None, end=None) -> dict:
    documents = document_report(start, end)["statistics"]
    reviews = review_report(start, end)["statistics"]
    audits = audit_report(start, end)["statistics"]
    return {
        "overview": {
            "total_documents": documents["total"],
            "total_reviews": reviews["total"],
            "total_audits": audits["total"],
            "average_review_score": reviews["average_score"],
        },
        "documents": documents,
        "reviews": reviews,
        "audits": audits,
    }


_BUILDERS = {
    "documents": document_report,
    "reviews": review_report,
    "audits": audit_report,
    "performance": performance_report,
    "overview": overview_report,
}


def generate_report(report_type: str | None, start_date=None, end_date=None) -> dict:
    report_type = report_type or "overview"
    if report_type not in _BUILDERS:
        raise ValidationError(f"type must be one of {', '.join(REPORT_TYPES)}", {"type": report_type})
    start = parse_datetime(start_date)
    end = parse_datetime(end_date)
    if start and end and start > end:
        raise ValidationError("start_date must not be after end_date")
    logger.info("Generating %s report", report_type)
    return _BUILDERS[report_type](start, end)
