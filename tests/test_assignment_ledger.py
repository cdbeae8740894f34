"""
Assignment ledger tests — capacity, worklist entries and running aggregates.

Covers ``accredit/services/assignment_ledger.py`` directly (no HTTP):
    - assign(): +1 workload, refused at capacity / when unavailable
    - mark_in_progress(): no-op when no entry exists
    - complete(): floor at zero, completed counters, halving average, auditor history
    - remove(): admin unassignment releases capacity
    - workload_percentage / is_available derived predicates
"""

from datetime import datetime, timedelta, timezone

import pytest

from accredit.core.exceptions import CapacityExceededError
from accredit.models import db
from accredit.models.assessor import AssignmentLedgerEntry
from accredit.services import assignment_ledger
from accredit.services.assignment_ledger import elapsed_hours, running_average

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _open_entries(person):
    return assignment_ledger.open_entries(person)


# ═══════════════════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════════════════

class TestRunningAverage:
    def test_first_sample_is_taken_as_is(self):
        assert running_average(0, 12.0) == 12.0

    def test_later_samples_are_halved_into_the_average(self):
        assert running_average(12.0, 4.0) == 8.0
        assert running_average(8.0, 4.0) == 6.0

    def test_halving_is_not_a_cumulative_mean(self):
        avg = 0
        for hours in (10.0, 20.0, 30.0):
            avg = running_average(avg, hours)
        assert avg == 22.5  # true mean would be 20.0


class TestElapsedHours:
    def test_hours_between_timestamps(self):
        assert elapsed_hours(T0, T0 + timedelta(hours=6, minutes=30)) == 6.5

    def test_missing_start_counts_as_zero(self):
        assert elapsed_hours(None, T0) == 0.0

    def test_naive_values_are_treated_as_utc(self):
        naive_start = T0.replace(tzinfo=None)
        assert elapsed_hours(naive_start, T0 + timedelta(hours=2)) == 2.0


# ═══════════════════════════════════════════════════════════════
# assign / mark_in_progress
# ═══════════════════════════════════════════════════════════════

class TestAssign:
    def test_assign_appends_entry_and_increments_workload(self, reviewer, uploaded_document):
        due = T0 + timedelta(days=14)
        entry = assignment_ledger.assign(reviewer, uploaded_document, due)
        db.session.commit()

        assert reviewer.workload_current == 1
        assert entry.status == "assigned"
        assert entry.kind == "reviewer"
        assert entry.priority == "high"
        assert [e.id for e in _open_entries(reviewer)] == [entry.id]

    def test_assign_refused_at_capacity(self, reviewer, uploaded_document):
        reviewer.workload_current = reviewer.workload_maximum
        db.session.commit()

        with pytest.raises(CapacityExceededError) as exc_info:
            assignment_ledger.assign(reviewer, uploaded_document)

        assert exc_info.value.current == reviewer.workload_maximum
        assert reviewer.workload_current == reviewer.workload_maximum
        assert AssignmentLedgerEntry.query.count() == 0

    def test_assign_refused_when_unavailable(self, auditor, uploaded_document):
        auditor.availability = "busy"
        db.session.commit()

        with pytest.raises(CapacityExceededError):
            assignment_ledger.assign(auditor, uploaded_document)
        assert auditor.workload_current == 0

    def test_mark_in_progress_updates_open_entry(self, reviewer, uploaded_document):
        assignment_ledger.assign(reviewer, uploaded_document)
        db.session.flush()

        entry = assignment_ledger.mark_in_progress(reviewer, uploaded_document.id)
        assert entry is not None
        assert entry.status == "in_progress"

    def test_mark_in_progress_without_entry_is_a_noop(self, reviewer, uploaded_document):
        assert assignment_ledger.mark_in_progress(reviewer, uploaded_document.id) is None
        assert reviewer.workload_current == 0


# ═══════════════════════════════════════════════════════════════
# complete / remove
# ═══════════════════════════════════════════════════════════════

class TestComplete:
    def test_reviewer_completion_updates_aggregates(self, reviewer, uploaded_document):
        assignment_ledger.assign(reviewer, uploaded_document)
        db.session.flush()

        entry = assignment_ledger.complete(
            reviewer, uploaded_document, started_at=T0, completed_at=T0 + timedelta(hours=10),
        )
        db.session.commit()

        assert entry.status == "completed"
        assert reviewer.workload_current == 0
        assert reviewer.completed_reviews == 1
        assert reviewer.average_review_time == 10.0

    def test_second_completion_halves_into_average(self, reviewer, uploaded_document):
        reviewer.average_review_time = 10.0
        reviewer.completed_reviews = 3
        assignment_ledger.assign(reviewer, uploaded_document)
        db.session.flush()

        assignment_ledger.complete(
            reviewer, uploaded_document, started_at=T0, completed_at=T0 + timedelta(hours=4),
        )
        assert reviewer.average_review_time == 7.0
        assert reviewer.completed_reviews == 4

    def test_workload_never_goes_negative(self, reviewer, uploaded_document):
        assert reviewer.workload_current == 0
        entry = assignment_ledger.complete(reviewer, uploaded_document, started_at=T0, completed_at=T0)
        assert entry is None
        assert reviewer.workload_current == 0

    def test_auditor_completion_appends_history(self, auditor, uploaded_document):
        assignment_ledger.assign(auditor, uploaded_document)
        db.session.flush()

        assignment_ledger.complete(
            auditor, uploaded_document,
            started_at=T0, completed_at=T0 + timedelta(hours=3),
            outcome="approved", score=None,
        )
        db.session.commit()

        assert auditor.completed_audits == 1
        assert auditor.average_audit_time == 3.0
        assert len(auditor.history) == 1
        assert auditor.history[0].outcome == "approved"
        assert auditor.history[0].score == 0
        assert auditor.history[0].institute_id == uploaded_document.institute_id

    def test_remove_releases_capacity(self, reviewer, uploaded_document):
        assignment_ledger.assign(reviewer, uploaded_document)
        db.session.flush()

        entry = assignment_ledger.remove(reviewer, uploaded_document.id)
        assert entry.status == "removed"
        assert reviewer.workload_current == 0
        assert _open_entries(reviewer) == []


# ═══════════════════════════════════════════════════════════════
# Derived predicates
# ═══════════════════════════════════════════════════════════════

class TestWorkloadPredicates:
    @pytest.mark.parametrize(
        "current, maximum, expected",
        [(0, 10, 0), (3, 8, 38), (1, 3, 33), (5, 10, 50), (10, 10, 100)],
    )
    def test_workload_percentage_rounds(self, reviewer, current, maximum, expected):
        reviewer.workload_current = current
        reviewer.workload_maximum = maximum
        assert reviewer.workload_percentage == expected

    def test_is_available_requires_spare_capacity(self, reviewer):
        reviewer.workload_current = 9
        assert reviewer.is_available
        reviewer.workload_current = 10
        assert not reviewer.is_available

    def test_is_available_requires_available_flag(self, auditor):
        auditor.availability = "unavailable"
        assert not auditor.is_available

    def test_overdue_count_only_counts_open_past_due(self, reviewer, uploaded_document):
        assignment_ledger.assign(reviewer, uploaded_document, datetime.now(timezone.utc) - timedelta(days=1))
        db.session.commit()
        assert assignment_ledger.overdue_count(reviewer) == 1

        assignment_ledger.complete(reviewer, uploaded_document)
        db.session.commit()
        assert assignment_ledger.overdue_count(reviewer) == 0
