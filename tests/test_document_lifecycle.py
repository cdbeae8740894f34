"""
Document lifecycle tests — upload, admin assignment transitions, edits,
deletion, re-upload and the admin status override.

Service-level tests call ``accredit.services.document_lifecycle`` directly;
starting states beyond ``uploaded`` are set on the ORM row (bypasses guards).

    uploaded            → assigned_for_review   assign_reviewer
    review_completed    → assigned_for_audit    assign_auditor (Conflict from any other state)
    assigned_for_review → uploaded              unassign reviewer
    {uploaded, rejected, revision_required} → uploaded (version + 1)
    any → any                                   set_document_status
"""

from datetime import datetime, timezone

import pytest

from accredit.core.exceptions import (
    CapacityExceededError,
    ForbiddenError,
    NotFoundError,
    TransitionError,
    ValidationError,
)
from accredit.models import db
from accredit.models.activity_log import ActivityLog
from accredit.models.assessor import AssignmentLedgerEntry
from accredit.models.document import Document, WorkflowStage
from accredit.models.notification import EmailLog
from accredit.services import document_lifecycle

DUE = "2026-11-30"


def _stage_names(document):
    return [s.name for s in document.stages]


def _set_status(document, status):
    """Force a starting state without going through the guarded transitions."""
    document.status = status
    db.session.commit()
    return document


def _actions():
    return [entry.action for entry in ActivityLog.query.order_by(ActivityLog.id).all()]


# ═══════════════════════════════════════════════════════════════
# Upload
# ═══════════════════════════════════════════════════════════════

class TestUpload:
    def test_upload_creates_document_in_uploaded_state(self, institute_user, uploaded_document):
        doc = uploaded_document
        assert doc.id is not None
        assert doc.status == "uploaded"
        assert doc.version == 1
        assert doc.priority == "high"
        assert doc.category == "mandatory"
        assert doc.uploaded_by_id == institute_user.id
        assert doc.institute_id == institute_user.institute_id
        assert doc.checksum and len(doc.checksum) == 64
        assert doc.original_name == "self-study.pdf"

    def test_upload_records_completed_upload_stage(self, uploaded_document):
        assert _stage_names(uploaded_document) == ["upload"]
        assert uploaded_document.stages[0].status == "completed"

    def test_upload_logs_activity(self, institute_user, uploaded_document):
        entry = ActivityLog.query.filter_by(action="document_uploaded").one()
        assert entry.user_id == institute_user.id
        assert entry.category == "document"
        assert entry.target_type == "Document"
        assert entry.target_id == uploaded_document.id

    def test_upload_requires_title(self, institute_user, make_file):
        with pytest.raises(ValidationError):
            document_lifecycle.upload_document(institute_user, make_file(), {"type": "other"})

    def test_upload_rejects_unknown_type(self, institute_user, make_file):
        with pytest.raises(ValidationError):
            document_lifecycle.upload_document(
                institute_user, make_file(), {"title": "Budget", "type": "spreadsheet"},
            )

    def test_upload_rejects_disallowed_extension(self, institute_user, make_file):
        with pytest.raises(ValidationError):
            document_lifecycle.upload_document(
                institute_user, make_file(name="payload.exe"), {"title": "Budget", "type": "other"},
            )
        assert Document.query.count() == 0

    def test_upload_without_institute_is_forbidden(self, make_user, make_file):
        orphan = make_user("institute")
        with pytest.raises(ForbiddenError):
            document_lifecycle.upload_document(orphan, make_file(), {"title": "X", "type": "other"})


# ═══════════════════════════════════════════════════════════════
# Reviewer / auditor assignment
# ═══════════════════════════════════════════════════════════════

class TestAssignReviewer:
    def test_assign_reviewer_moves_to_assigned_for_review(self, admin, reviewer, uploaded_document):
        doc = document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id, DUE)

        assert doc.status == "assigned_for_review"
        assert doc.assigned_reviewer_id == reviewer.id
        assert doc.reviewer_assigned_at is not None
        assert doc.review_due_date.date().isoformat() == DUE
        assert reviewer.workload_current == 1
        assert _stage_names(doc) == ["upload", "review_assignment"]

    def test_assign_reviewer_writes_ledger_entry(self, admin, reviewer, uploaded_document):
        document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id, DUE)
        entry = AssignmentLedgerEntry.query.one()
        assert (entry.kind, entry.person_id, entry.document_id) == ("reviewer", reviewer.id, uploaded_document.id)
        assert entry.status == "assigned"

    def test_assign_reviewer_notifies_and_logs(self, admin, reviewer, uploaded_document):
        document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id, DUE)

        mail = EmailLog.query.filter_by(template_name="document_assignment").one()
        assert mail.recipient_email == reviewer.user.email
        assert mail.status == "sent"
        assert "reviewer_assigned" in _actions()
        assert "notification_sent" in _actions()

    def test_assign_reviewer_twice_conflicts(self, admin, reviewer, uploaded_document):
        document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id)
        with pytest.raises(TransitionError):
            document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id)
        assert reviewer.workload_current == 1

    def test_assign_reviewer_at_capacity_leaves_document_untouched(self, admin, reviewer, uploaded_document):
        reviewer.workload_current = reviewer.workload_maximum
        db.session.commit()

        with pytest.raises(CapacityExceededError):
            document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id)

        db.session.rollback()
        doc = db.session.get(Document, uploaded_document.id)
        assert doc.status == "uploaded"
        assert doc.assigned_reviewer_id is None
        assert AssignmentLedgerEntry.query.count() == 0

    def test_unknown_reviewer_is_not_found(self, admin, uploaded_document):
        with pytest.raises(NotFoundError):
            document_lifecycle.assign_reviewer(admin, uploaded_document.id, 9999)


class TestAssignAuditor:
    def test_auditor_cannot_be_assigned_before_review_completes(self, admin, auditor, uploaded_document):
        with pytest.raises(TransitionError):
            document_lifecycle.assign_auditor(admin, uploaded_document.id, auditor.id, DUE)

        assert uploaded_document.status == "uploaded"
        assert uploaded_document.assigned_auditor_id is None
        assert auditor.workload_current == 0
        assert AssignmentLedgerEntry.query.count() == 0

    @pytest.mark.parametrize("status", ["assigned_for_review", "under_review", "approved"])
    def test_auditor_assignment_conflicts_outside_review_completed(self, admin, auditor, uploaded_document, status):
        _set_status(uploaded_document, status)
        with pytest.raises(TransitionError):
            document_lifecycle.assign_auditor(admin, uploaded_document.id, auditor.id)

    def test_assign_auditor_after_review(self, admin, auditor, uploaded_document):
        _set_status(uploaded_document, "review_completed")

        doc = document_lifecycle.assign_auditor(admin, uploaded_document.id, auditor.id, DUE)

        assert doc.status == "assigned_for_audit"
        assert doc.assigned_auditor_id == auditor.id
        assert doc.audit_due_date is not None
        assert auditor.workload_current == 1
        assert "audit_assignment" in _stage_names(doc)


class TestUnassign:
    def test_unassign_reviewer_restores_uploaded(self, admin, reviewer, uploaded_document):
        document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id, DUE)

        doc = document_lifecycle.unassign(admin, uploaded_document.id, "reviewer")

        assert doc.status == "uploaded"
        assert doc.assigned_reviewer_id is None
        assert doc.review_due_date is None
        assert reviewer.workload_current == 0
        assert AssignmentLedgerEntry.query.one().status == "removed"
        assert "assignment_removed" in _actions()

    def test_unassign_without_pending_assignment_conflicts(self, admin, uploaded_document):
        with pytest.raises(TransitionError):
            document_lifecycle.unassign(admin, uploaded_document.id, "reviewer")

    def test_unassign_unknown_kind_is_invalid(self, admin, uploaded_document):
        with pytest.raises(ValidationError):
            document_lifecycle.unassign(admin, uploaded_document.id, "editor")


# ═══════════════════════════════════════════════════════════════
# Edits / deletion
# ═══════════════════════════════════════════════════════════════

class TestUpdateAndDelete:
    def test_owner_updates_whitelisted_fields(self, institute_user, uploaded_document):
        doc = document_lifecycle.update_document(
            institute_user, uploaded_document.id,
            {"title": "Self-Study Report (rev)", "tags": "finance, 2026", "status": "approved"},
        )
        assert doc.title == "Self-Study Report (rev)"
        assert doc.tags == ["finance", "2026"]
        assert doc.status == "uploaded"

    @pytest.mark.parametrize(
        "payload",
        [
            {"title": "Renamed", "category": "bogus"},
            {"title": "Renamed", "priority": "urgent"},
            {"tags": "a, b", "title": "   "},
        ],
    )
    def test_invalid_field_leaves_document_untouched(self, institute_user, uploaded_document, payload):
        with pytest.raises(ValidationError):
            document_lifecycle.update_document(institute_user, uploaded_document.id, payload)

        assert uploaded_document.title == "Self-Study Report 2026"
        assert not db.session.dirty

    @pytest.mark.parametrize("status", ["under_review", "under_audit", "approved"])
    def test_update_refused_while_locked(self, institute_user, uploaded_document, status):
        _set_status(uploaded_document, status)
        with pytest.raises(TransitionError):
            document_lifecycle.update_document(institute_user, uploaded_document.id, {"title": "New"})

    def test_other_institute_user_cannot_update(self, make_user, uploaded_document):
        stranger = make_user("institute")
        with pytest.raises(ForbiddenError):
            document_lifecycle.update_document(stranger, uploaded_document.id, {"title": "Mine"})

    def test_fresh_upload_is_deleted_physically(self, institute_user, uploaded_document):
        doc_id = uploaded_document.id
        result = document_lifecycle.delete_document(institute_user, doc_id)

        assert result == {"id": doc_id, "physical": True}
        assert db.session.get(Document, doc_id) is None
        assert WorkflowStage.query.filter_by(document_id=doc_id).count() == 0

    def test_document_with_workflow_history_is_deleted_logically(
        self, admin, institute_user, reviewer, uploaded_document,
    ):
        document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id)
        document_lifecycle.unassign(admin, uploaded_document.id, "reviewer")

        result = document_lifecycle.delete_document(institute_user, uploaded_document.id)

        assert result["physical"] is False
        doc = db.session.get(Document, uploaded_document.id)
        assert doc is not None and doc.is_deleted
        with pytest.raises(NotFoundError):
            document_lifecycle.get_document(institute_user, doc.id)

    def test_delete_refused_while_under_review(self, institute_user, uploaded_document):
        _set_status(uploaded_document, "under_review")
        with pytest.raises(TransitionError):
            document_lifecycle.delete_document(institute_user, uploaded_document.id)


# ═══════════════════════════════════════════════════════════════
# Re-upload
# ═══════════════════════════════════════════════════════════════

class TestNewVersion:
    @pytest.mark.parametrize("status", ["rejected", "revision_required"])
    def test_new_version_restarts_at_uploaded(self, institute_user, uploaded_document, make_file, status):
        _set_status(uploaded_document, status)
        old_checksum = uploaded_document.checksum

        doc = document_lifecycle.upload_new_version(
            institute_user, uploaded_document.id,
            make_file(name="self-study-v2.pdf", content=b"%PDF-1.4 revised"),
            reason="Addressed audit findings",
        )

        assert doc.status == "uploaded"
        assert doc.version == 2
        assert doc.original_name == "self-study-v2.pdf"
        assert doc.checksum != old_checksum
        assert len(doc.versions) == 1
        assert doc.versions[0].version == 1
        assert doc.versions[0].checksum == old_checksum
        assert doc.versions[0].reason == "Addressed audit findings"

    def test_new_version_refused_mid_workflow(self, institute_user, uploaded_document, make_file):
        _set_status(uploaded_document, "under_audit")
        with pytest.raises(TransitionError):
            document_lifecycle.upload_new_version(institute_user, uploaded_document.id, make_file())


# ═══════════════════════════════════════════════════════════════
# Admin override / workflow stages / institute sync
# ═══════════════════════════════════════════════════════════════

class TestStatusOverride:
    def test_override_bypasses_guards_and_notifies_uploader(self, admin, institute_user, uploaded_document):
        doc = document_lifecycle.set_document_status(admin, uploaded_document.id, "approved", "Board decision")

        assert doc.status == "approved"
        assert "final_decision" in _stage_names(doc)
        mail = EmailLog.query.filter_by(template_name="status_update").one()
        assert mail.recipient_email == institute_user.email
        entry = ActivityLog.query.filter_by(action="document_status_changed").one()
        assert entry.details["old_status"] == "uploaded"
        assert entry.details["new_status"] == "approved"

    def test_override_rejects_unknown_status(self, admin, uploaded_document):
        with pytest.raises(ValidationError):
            document_lifecycle.set_document_status(admin, uploaded_document.id, "archived")

    def test_stages_are_recorded_once_per_name(self, admin, uploaded_document):
        document_lifecycle.set_document_status(admin, uploaded_document.id, "under_review")
        document_lifecycle.set_document_status(admin, uploaded_document.id, "review_completed")
        document_lifecycle.set_document_status(admin, uploaded_document.id, "uploaded")

        names = _stage_names(uploaded_document)
        assert names == ["upload", "review"]
        assert len(names) == len(set(names))

    @pytest.mark.parametrize(
        "status, accreditation_status",
        [("under_review", "under_review"), ("under_audit", "auditing"),
         ("approved", "approved"), ("rejected", "rejected")],
    )
    def test_institute_follows_document_status(self, admin, uploaded_document, status, accreditation_status):
        document_lifecycle.set_document_status(admin, uploaded_document.id, status)
        assert uploaded_document.institute.accreditation_status == accreditation_status


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════

class TestReads:
    def test_get_document_counts_access(self, institute_user, uploaded_document):
        document_lifecycle.get_document(institute_user, uploaded_document.id)
        doc = document_lifecycle.get_document(institute_user, uploaded_document.id)
        assert doc.access_count == 2
        assert doc.last_accessed_at is not None

    def test_unassigned_reviewer_cannot_read(self, reviewer, uploaded_document):
        with pytest.raises(ForbiddenError):
            document_lifecycle.get_document(reviewer.user, uploaded_document.id)

    def test_listing_is_scoped_to_own_institute(self, make_user, institute_user, uploaded_document):
        from accredit.models.institute import Institute

        other = make_user("institute")
        db.session.add(Institute(name="Southgate College", code="SGC", administrator_id=other.id))
        db.session.commit()

        assert document_lifecycle.list_documents(institute_user, {}).total == 1
        assert document_lifecycle.list_documents(other, {}).total == 0

    def test_admin_listing_filters_by_status(self, admin, uploaded_document):
        assert document_lifecycle.list_documents(admin, {"status": "uploaded"}).total == 1
        assert document_lifecycle.list_documents(admin, {"status": "approved"}).total == 0

    def test_assigned_documents_for_reviewer(self, admin, reviewer, uploaded_document):
        document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id, DUE)
        page = document_lifecycle.assigned_documents(reviewer.user)
        assert [d.id for d in page.items] == [uploaded_document.id]

    def test_assigned_documents_refused_for_institute(self, institute_user):
        with pytest.raises(ValidationError):
            document_lifecycle.assigned_documents(institute_user)

    def test_download_counts_and_returns_content(self, institute_user, uploaded_document):
        doc, handle = document_lifecycle.download_document(institute_user, uploaded_document.id)
        with handle:
            assert handle.read() == b"%PDF-1.4 accreditation evidence"
        assert doc.download_count == 1
        assert doc.access_count == 0

    def test_history_contains_workflow_and_versions(self, institute_user, uploaded_document):
        history = document_lifecycle.document_history(institute_user, uploaded_document.id)
        assert history["document"]["id"] == uploaded_document.id
        assert [s["name"] for s in history["workflow"]] == ["upload"]
        assert history["versions"] == []
        assert history["reviews"] == [] and history["audits"] == []


def test_due_dates_are_stored_in_utc(admin, reviewer, uploaded_document):
    due = datetime(2026, 12, 1, 17, 0, tzinfo=timezone.utc)
    doc = document_lifecycle.assign_reviewer(admin, uploaded_document.id, reviewer.id, due)
    assert doc.to_dict()["due_dates"]["review"].startswith("2026-12-01T17:00:00")
