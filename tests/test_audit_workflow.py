"""
Audit sub-workflow tests.

Drives a document through review first, then exercises ``audit_service``:
    - start: needs a submitted review, resumes idempotently
    - findings / compliance / review validation (variance tolerance ±10)
    - submit: outcome → document status, review status, ledger + auditor history
    - completed audits are immutable; on_hold blocks auditor mutations
    - one trail entry per mutating call
"""

import pytest

from accredit.core.exceptions import ForbiddenError, TransitionError, ValidationError
from accredit.models import db
from accredit.models.assessor import Auditor
from accredit.models.audit import Audit
from accredit.models.notification import EmailLog
from accredit.services import audit_service, document_lifecycle, review_service
from accredit.services.audit_service import criterion_variance

DUE = "2026-12-15"

DECISION = {"outcome": "approved", "justification": "Standards met across all criteria", "final_score": 84}


def _reviewed(admin, reviewer, document):
    """Assign, score and submit a review; leaves the document in review_completed."""
    document_lifecycle.assign_reviewer(admin, document.id, reviewer.id, DUE)
    review, _ = review_service.start_review(reviewer.user, document.id)
    review_service.update_review(reviewer.user, review.id, {"review_data": {"criteria": [
        {"name": "Governance", "score": 80, "weight": 1},
        {"name": "Finance", "score": 60, "weight": 1},
    ]}})
    return review_service.submit_review(reviewer.user, review.id)


def _audit(admin, reviewer, auditor, document):
    review = _reviewed(admin, reviewer, document)
    document_lifecycle.assign_auditor(admin, document.id, auditor.id, DUE)
    audit, _ = audit_service.start_audit(auditor.user, document.id)
    return review, audit


def _trail_actions(audit):
    return [entry.action for entry in audit.trail]


# ═══════════════════════════════════════════════════════════════
# Variance
# ═══════════════════════════════════════════════════════════════

@pytest.mark.parametrize(
    "reviewer_score, auditor_score, variance, acceptable",
    [
        (70, 82, 12, False),
        (70, 78, 8, True),
        (70, 80, 10, True),
        (90, 79.5, 10.5, False),
    ],
)
def test_criterion_variance(reviewer_score, auditor_score, variance, acceptable):
    assert criterion_variance(reviewer_score, auditor_score) == {
        "variance": variance, "acceptable": acceptable,
    }


# ═══════════════════════════════════════════════════════════════
# start
# ═══════════════════════════════════════════════════════════════

class TestStartAudit:
    def test_start_requires_submitted_review(self, admin, auditor, uploaded_document):
        uploaded_document.status = "review_completed"
        db.session.commit()
        document_lifecycle.assign_auditor(admin, uploaded_document.id, auditor.id, DUE)

        with pytest.raises(ValidationError):
            audit_service.start_audit(auditor.user, uploaded_document.id)

        assert Audit.query.count() == 0
        assert uploaded_document.status == "assigned_for_audit"

    def test_start_seeds_audit_and_moves_document(self, admin, reviewer, auditor, uploaded_document):
        review, audit = _audit(admin, reviewer, auditor, uploaded_document)

        assert audit.status == "in_progress"
        assert audit.review_id == review.id
        assert audit.audit_data["review_validation"]["accuracy_score"] == 0
        assert audit.audit_data["compliance_check"]["overall_compliance"] == "partially_compliant"
        assert audit.audit_data["findings"] == []
        assert audit.outcome is None and audit.justification is None
        assert review.status == "under_audit"
        assert uploaded_document.status == "under_audit"
        assert uploaded_document.institute.accreditation_status == "auditing"
        assert _trail_actions(audit) == ["audit_started"]

    def test_second_start_resumes(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)

        again, created = audit_service.start_audit(auditor.user, uploaded_document.id)

        assert created is False
        assert again.id == audit.id
        assert Audit.query.count() == 1
        assert _trail_actions(audit) == ["audit_started", "audit_resumed"]

    def test_unassigned_auditor_cannot_start(self, admin, reviewer, auditor, make_user, uploaded_document):
        _reviewed(admin, reviewer, uploaded_document)
        document_lifecycle.assign_auditor(admin, uploaded_document.id, auditor.id, DUE)
        other_user = make_user("auditor")
        other = Auditor(user_id=other_user.id, license_number="LIC-0099")
        db.session.add(other)
        db.session.commit()

        with pytest.raises(ForbiddenError):
            audit_service.start_audit(other_user, uploaded_document.id)


# ═══════════════════════════════════════════════════════════════
# Working data
# ═══════════════════════════════════════════════════════════════

class TestAuditWorkingData:
    def test_add_finding(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        score_before = audit.overall_audit_score

        audit, finding = audit_service.add_finding(auditor.user, audit.id, {
            "category": "major", "description": "  Missing budget reconciliation  ", "impact": "medium",
        })

        assert finding["description"] == "Missing budget reconciliation"
        assert audit.audit_data["findings"] == [finding]
        assert audit.overall_audit_score == score_before
        assert _trail_actions(audit)[-1] == "finding_added"

    @pytest.mark.parametrize(
        "payload",
        [
            {"category": "severe", "description": "Unknown category"},
            {"category": "minor", "description": "   "},
            {"description": "No category"},
        ],
    )
    def test_invalid_finding_rejected(self, admin, reviewer, auditor, uploaded_document, payload):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        with pytest.raises(ValidationError):
            audit_service.add_finding(auditor.user, audit.id, payload)
        assert audit.audit_data["findings"] == []

    def test_risk_assessment_level_is_checked(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)

        audit = audit_service.update_audit(auditor.user, audit.id, {
            "audit_data": {"risk_assessment": {"risks": ["Thin reserves"], "overall_risk": "medium"}},
        })
        assert audit.audit_data["risk_assessment"]["overall_risk"] == "medium"

        with pytest.raises(ValidationError):
            audit_service.update_audit(auditor.user, audit.id, {
                "audit_data": {"risk_assessment": {"overall_risk": "extreme"}},
            })
        assert audit.audit_data["risk_assessment"]["overall_risk"] == "medium"

    def test_update_compliance(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)

        audit = audit_service.update_compliance(auditor.user, audit.id, {
            "overall_compliance": "mostly_compliant",
            "standards_verification": [{"standard": "S1", "compliant": True}],
        })

        check = audit.audit_data["compliance_check"]
        assert check["overall_compliance"] == "mostly_compliant"
        assert len(check["standards_verification"]) == 1
        assert _trail_actions(audit)[-1] == "compliance_updated"

    def test_unknown_compliance_level_rejected(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        with pytest.raises(ValidationError):
            audit_service.update_compliance(auditor.user, audit.id, {"overall_compliance": "compliant-ish"})

    def test_validate_review_records_variance(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)

        audit = audit_service.validate_review(auditor.user, audit.id, {
            "accuracy_score": 90,
            "completeness_score": 80,
            "consistency_score": 85,
            "criteria_validation": [
                {"criteria_name": "Governance", "reviewer_score": 70, "auditor_score": 82},
                {"criteria_name": "Finance", "reviewer_score": 70, "auditor_score": 78},
            ],
        })

        rows = audit.audit_data["criteria_validation"]
        assert [(r["variance"], r["acceptable"]) for r in rows] == [(12, False), (8, True)]
        assert audit.overall_audit_score == 85
        assert _trail_actions(audit)[-1] == "review_validated"

    def test_validation_score_out_of_range(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        with pytest.raises(ValidationError):
            audit_service.validate_review(auditor.user, audit.id, {"accuracy_score": 130})

    def test_update_audit_quality(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)

        audit = audit_service.update_audit(auditor.user, audit.id, {
            "quality": {"thoroughness": 4, "notes": "Careful"},
            "audit_data": {"risk_assessment": {"risks": [], "overall_risk": "low"}},
        })

        assert audit.quality["thoroughness"] == 4
        assert audit.audit_data["risk_assessment"]["overall_risk"] == "low"
        with pytest.raises(ValidationError):
            audit_service.update_audit(auditor.user, audit.id, {"quality": {"accuracy": 9}})

    def test_one_trail_entry_per_mutation(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        audit_service.update_audit(auditor.user, audit.id, {"attachments": ["site-visit.pdf"]})
        audit_service.add_finding(auditor.user, audit.id, {"category": "minor", "description": "Typo"})
        audit_service.update_compliance(auditor.user, audit.id, {"overall_compliance": "fully_compliant"})
        audit_service.validate_review(auditor.user, audit.id, {"accuracy_score": 80})
        audit_service.submit_audit(auditor.user, audit.id, DECISION)

        assert _trail_actions(audit) == [
            "audit_started",
            "audit_updated",
            "finding_added",
            "compliance_updated",
            "review_validated",
            "audit_completed",
        ]
        assert all(entry.performed_by_id == auditor.user_id for entry in audit.trail)


# ═══════════════════════════════════════════════════════════════
# submit
# ═══════════════════════════════════════════════════════════════

class TestSubmitAudit:
    @pytest.mark.parametrize(
        "outcome, document_status, review_status",
        [
            ("approved", "approved", "approved"),
            ("approved_with_conditions", "approved", "approved"),
            ("rejected", "rejected", "under_audit"),
            ("requires_revision", "revision_required", "returned_for_revision"),
        ],
    )
    def test_outcome_drives_statuses(
        self, admin, reviewer, auditor, uploaded_document, outcome, document_status, review_status,
    ):
        review, audit = _audit(admin, reviewer, auditor, uploaded_document)

        audit = audit_service.submit_audit(auditor.user, audit.id, {**DECISION, "outcome": outcome})

        assert audit.status == "completed"
        assert audit.outcome == outcome
        assert uploaded_document.status == document_status
        assert review.status == review_status

    def test_submit_completes_ledger_and_history(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        assert auditor.workload_current == 1

        audit = audit_service.submit_audit(auditor.user, audit.id, DECISION, "Otto Auditor /s/")

        assert audit.signed is True
        assert audit.digital_signature == "Otto Auditor /s/"
        assert audit.signature_ip == "unknown"
        assert auditor.workload_current == 0
        assert auditor.completed_audits == 1
        assert [(h.outcome, h.score) for h in auditor.history] == [("approved", 84)]
        assert uploaded_document.institute.accreditation_status == "approved"

    def test_missing_score_records_zero_in_history(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        audit_service.submit_audit(auditor.user, audit.id, {"outcome": "rejected", "justification": "Gaps"})
        assert auditor.history[0].score == 0

    def test_submit_notifies_institute(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        audit_service.submit_audit(auditor.user, audit.id, DECISION)

        mails = EmailLog.query.filter_by(template_name="status_update").all()
        assert len(mails) == 2  # review completed + final decision
        assert {m.recipient_email for m in mails} == {"registrar@northfield.example.org"}

    @pytest.mark.parametrize(
        "decision",
        [
            {"outcome": "approved"},
            {"justification": "No outcome"},
            {"outcome": "approved", "justification": "   "},
            {"outcome": "maybe", "justification": "Unknown outcome"},
            {"outcome": "approved", "justification": "Score too high", "final_score": 140},
        ],
    )
    def test_incomplete_decision_rejected(self, admin, reviewer, auditor, uploaded_document, decision):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)

        with pytest.raises(ValidationError):
            audit_service.submit_audit(auditor.user, audit.id, decision)

        assert audit.status == "in_progress"
        assert audit.outcome is None and audit.justification is None
        assert uploaded_document.status == "under_audit"

    def test_completed_audit_is_immutable(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        audit_service.submit_audit(auditor.user, audit.id, {**DECISION, "outcome": "rejected"})
        trail_length = len(audit.trail)

        with pytest.raises(TransitionError):
            audit_service.update_audit(auditor.user, audit.id, {"attachments": []})
        with pytest.raises(TransitionError):
            audit_service.add_finding(auditor.user, audit.id, {"category": "minor", "description": "Late"})
        with pytest.raises(TransitionError):
            audit_service.submit_audit(auditor.user, audit.id, DECISION)

        assert audit.outcome == "rejected"
        assert uploaded_document.status == "rejected"
        assert len(audit.trail) == trail_length


# ═══════════════════════════════════════════════════════════════
# Admin status override
# ═══════════════════════════════════════════════════════════════

class TestAuditStatusOverride:
    def test_on_hold_blocks_auditor_until_resumed(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)

        audit_service.set_audit_status(admin, audit.id, "on_hold", "Awaiting site visit")
        assert audit.status == "on_hold"
        with pytest.raises(TransitionError):
            audit_service.add_finding(auditor.user, audit.id, {"category": "minor", "description": "Blocked"})

        audit_service.set_audit_status(admin, audit.id, "in_progress")
        audit_service.add_finding(auditor.user, audit.id, {"category": "minor", "description": "Allowed"})

        assert _trail_actions(audit) == ["audit_started", "status_changed", "status_changed", "finding_added"]
        assert audit.trail[1].details["reason"] == "Awaiting site visit"
        assert audit.trail[1].performed_by_id == admin.id

    def test_completed_audit_cannot_be_put_on_hold(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        audit_service.submit_audit(auditor.user, audit.id, DECISION)

        with pytest.raises(TransitionError):
            audit_service.set_audit_status(admin, audit.id, "on_hold")
        assert audit.status == "completed"

    def test_completed_is_not_an_override_target(self, admin, reviewer, auditor, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        with pytest.raises(TransitionError):
            audit_service.set_audit_status(admin, audit.id, "completed")


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════

class TestAuditReads:
    def test_reviewer_cannot_list_document_audits(self, admin, reviewer, auditor, uploaded_document):
        _audit(admin, reviewer, auditor, uploaded_document)
        with pytest.raises(ForbiddenError):
            audit_service.document_audits(reviewer.user, uploaded_document.id)

    def test_institute_reads_own_audit(self, admin, reviewer, auditor, institute_user, uploaded_document):
        _, audit = _audit(admin, reviewer, auditor, uploaded_document)
        assert audit_service.get_audit(institute_user, audit.id).id == audit.id
        assert [a.id for a in audit_service.document_audits(institute_user, uploaded_document.id)] == [audit.id]

    def test_dashboard(self, admin, reviewer, auditor, uploaded_document):
        _audit(admin, reviewer, auditor, uploaded_document)
        dashboard = audit_service.auditor_dashboard(auditor.user)

        assert dashboard["statistics"]["total_assigned"] == 1
        assert dashboard["statistics"]["current_workload"] == 13  # 1/8 rounded half up
        assert len(dashboard["recent_audits"]) == 1
