"""
Assignment Ledger — bounded worklists for reviewers and auditors.

All functions mutate the session without committing; the calling workflow
operation commits the ledger change together with the document transition.

    assign(person, document, due_date)     +1 workload, entry "assigned"
    mark_in_progress(person, document)     entry → "in_progress" (no-op if absent)
    complete(person, document, ...)        entry → "completed", -1 workload (floor 0),
                                           running aggregates, auditor history
    remove(person, document)               entry → "removed", -1 workload (floor 0)
"""

from __future__ import annotations

import logging

from accredit.core.exceptions import CapacityExceededError
from accredit.models import db
from accredit.models.assessor import (
    OPEN_LEDGER_STATUSES,
    AssignmentLedgerEntry,
    Auditor,
    AuditorHistoryEntry,
)
from accredit.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


def running_average(old_average: float, elapsed_hours: float) -> float:
    """Blend a new duration into a stored average (halving, not a cumulative mean)."""
    if not old_average:
        return elapsed_hours
    return (old_average + elapsed_hours) / 2


def elapsed_hours(started_at, completed_at) -> float:
    if not started_at or not completed_at:
        return 0.0
    return max(0.0, (as_utc(completed_at) - as_utc(started_at)).total_seconds() / 3600)


def find_entry(person, document_id: int, statuses=OPEN_LEDGER_STATUSES) -> AssignmentLedgerEntry | None:
    q = AssignmentLedgerEntry.query.filter_by(kind=person.kind, person_id=person.id, document_id=document_id)
    if statuses:
        q = q.filter(AssignmentLedgerEntry.status.in_(statuses))
    return q.order_by(AssignmentLedgerEntry.id.desc()).first()


def ensure_available(person) -> None:
    if not person.is_available:
        raise CapacityExceededError(
            person.kind, person.id, person.workload_current or 0, person.workload_maximum or 0,
        )


def assign(person, document, due_date=None, review_id: int | None = None) -> AssignmentLedgerEntry:
    """Append a worklist entry; rejected when the person is not available."""
    ensure_available(person)
    entry = AssignmentLedgerEntry(
        kind=person.kind,
        person_id=person.id,
        document_id=document.id,
        review_id=review_id,
        status="assigned",
        priority=document.priority,
        due_date=due_date,
    )
    db.session.add(entry)
    person.workload_current = (person.workload_current or 0) + 1
    logger.info(
        "Ledger assign %s=%d document=%d workload=%d/%d",
        person.kind, person.id, document.id, person.workload_current, person.workload_maximum,
    )
    return entry


def mark_in_progress(person, document_id: int) -> AssignmentLedgerEntry | None:
    entry = find_entry(person, document_id, statuses=("assigned",))
    if entry is not None:
        entry.status = "in_progress"
    return entry


def _release(person) -> None:
    person.workload_current = max(0, (person.workload_current or 0) - 1)


def complete(
    person,
    document,
    *,
    started_at=None,
    completed_at=None,
    outcome: str | None = None,
    score: int | None = None,
) -> AssignmentLedgerEntry | None:
    """Close the open entry for ``document`` and fold the timing into aggregates."""
    completed_at = completed_at or utcnow()
    entry = find_entry(person, document.id)
    if entry is not None:
        entry.status = "completed"
        entry.completed_at = completed_at
    _release(person)

    hours = elapsed_hours(started_at, completed_at)
    if isinstance(person, Auditor):
        person.completed_audits = (person.completed_audits or 0) + 1
        person.average_audit_time = running_average(person.average_audit_time or 0, hours)
        person.history.append(AuditorHistoryEntry(
            document_id=document.id,
            institute_id=document.institute_id,
            outcome=outcome,
            score=score if score is not None else 0,
            completed_at=completed_at,
        ))
    else:
        person.completed_reviews = (person.completed_reviews or 0) + 1
        person.average_review_time = running_average(person.average_review_time or 0, hours)

    logger.info(
        "Ledger complete %s=%d document=%d workload=%d/%d",
        person.kind, person.id, document.id, person.workload_current, person.workload_maximum,
    )
    return entry


def remove(person, document_id: int) -> AssignmentLedgerEntry | None:
    """Drop an open assignment (admin unassignment)."""
    entry = find_entry(person, document_id)
    if entry is not None:
        entry.status = "removed"
        entry.completed_at = utcnow()
    _release(person)
    return entry


def open_entries(person):
    return (
        person.ledger.filter(AssignmentLedgerEntry.status.in_(OPEN_LEDGER_STATUSES))
        .order_by(AssignmentLedgerEntry.due_date.asc(), AssignmentLedgerEntry.id.asc())
        .all()
    )


def overdue_count(person) -> int:
    now = utcnow()
    return sum(
        1 for entry in open_entries(person)
        if entry.due_date is not None and as_utc(entry.due_date) < now
    )
