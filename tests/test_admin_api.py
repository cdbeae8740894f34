"""
Admin API and end-to-end HTTP tests.

Covers:
    - /api/v1/admin gate (401 / 403 + authorization_failed)
    - institutes CRUD, reviewer / auditor profiles, workload-sorted listings
    - user status / role / unlock with self-protection
    - assignment, override and error envelopes over HTTP
    - dashboard, reports (json / xlsx), health checks
    - full upload → review → audit → approval flow through the public API
"""

import io
from datetime import timedelta

import pytest
from openpyxl import load_workbook

from accredit.models import db
from accredit.models.activity_log import ActivityLog
from accredit.models.assessor import Reviewer
from accredit.models.institute import Institute
from accredit.utils.helpers import utcnow

ADMIN = "/api/v1/admin"


def _logged(action):
    return ActivityLog.query.filter_by(action=action).count()


# ═══════════════════════════════════════════════════════════════
# Gate
# ═══════════════════════════════════════════════════════════════

class TestAdminGate:
    def test_no_token(self, client):
        res = client.get(f"{ADMIN}/dashboard")
        assert res.status_code == 401

    @pytest.mark.parametrize("role", ["institute", "reviewer", "auditor"])
    def test_other_roles_are_forbidden(self, client, make_user, auth_headers, role):
        user = make_user(role)
        res = client.get(f"{ADMIN}/users", headers=auth_headers(user))

        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"
        entry = ActivityLog.query.filter_by(action="authorization_failed").one()
        assert entry.details["required_roles"] == ["admin"]


# ═══════════════════════════════════════════════════════════════
# Institutes
# ═══════════════════════════════════════════════════════════════

class TestInstitutes:
    def test_create_uppercases_code(self, client, admin, make_user, auth_headers):
        head = make_user("institute")
        res = client.post(f"{ADMIN}/institutes", headers=auth_headers(admin), json={
            "name": "Lakeside College", "code": " lsc ", "type": "college",
            "email": "office@lakeside.example.org", "administrator_id": head.id,
        })

        assert res.status_code == 201
        institute = res.get_json()["data"]["institute"]
        assert institute["code"] == "LSC"
        assert institute["accreditation_status"] == "not_started"
        assert head.institute_id == institute["id"]
        assert _logged("institute_created") == 1

    def test_duplicate_code_conflicts(self, client, admin, institute_user, auth_headers):
        res = client.post(f"{ADMIN}/institutes", headers=auth_headers(admin), json={
            "name": "Another Northfield", "code": "nfu",
        })
        assert res.status_code == 409
        assert res.get_json()["details"] == {"field": "code"}

    @pytest.mark.parametrize(
        "payload",
        [
            {"code": "NOPE"},
            {"name": "Nameless code"},
            {"name": "Bad type", "code": "BT", "type": "spaceport"},
            {"name": "Bad score", "code": "BS", "compliance_score": 140},
        ],
    )
    def test_invalid_institute(self, client, admin, auth_headers, payload):
        res = client.post(f"{ADMIN}/institutes", headers=auth_headers(admin), json=payload)
        assert res.status_code == 400
        assert Institute.query.count() == 0

    def test_administrator_must_be_institute_user(self, client, admin, reviewer, auth_headers):
        res = client.post(f"{ADMIN}/institutes", headers=auth_headers(admin), json={
            "name": "Wrong Head", "code": "WH", "administrator_id": reviewer.user_id,
        })
        assert res.status_code == 400

    def test_status_change_is_logged_separately(self, client, admin, institute_user, auth_headers):
        institute_id = institute_user.institute_id
        res = client.put(f"{ADMIN}/institutes/{institute_id}", headers=auth_headers(admin), json={
            "status": "suspended",
        })

        assert res.status_code == 200
        assert res.get_json()["data"]["institute"]["status"] == "suspended"
        assert _logged("institute_status_changed") == 1
        assert _logged("institute_updated") == 0

    def test_listing_and_missing(self, client, admin, institute_user, auth_headers):
        res = client.get(f"{ADMIN}/institutes?search=north", headers=auth_headers(admin))
        data = res.get_json()["data"]
        assert [i["code"] for i in data["institutes"]] == ["NFU"]
        assert data["pagination"]["total"] == 1

        missing = client.get(f"{ADMIN}/institutes/999", headers=auth_headers(admin))
        assert missing.status_code == 404
        assert missing.get_json()["error"] == "Institute not found"


# ═══════════════════════════════════════════════════════════════
# Reviewer / auditor profiles
# ═══════════════════════════════════════════════════════════════

class TestAssessorProfiles:
    def test_create_reviewer_defaults_capacity(self, client, admin, make_user, auth_headers):
        user = make_user("reviewer")
        res = client.post(f"{ADMIN}/reviewers", headers=auth_headers(admin), json={
            "user_id": user.id, "specialization": ["academic", "financial"], "experience": 7,
        })

        assert res.status_code == 201
        profile = res.get_json()["data"]["reviewer"]
        assert profile["workload"] == {"current": 0, "maximum": 10, "percentage": 0}
        assert profile["specialization"] == ["academic", "financial"]

    def test_reviewer_profile_needs_reviewer_role(self, client, admin, institute_user, auth_headers):
        res = client.post(f"{ADMIN}/reviewers", headers=auth_headers(admin), json={"user_id": institute_user.id})
        assert res.status_code == 400

    def test_duplicate_reviewer_profile(self, client, admin, reviewer, auth_headers):
        res = client.post(f"{ADMIN}/reviewers", headers=auth_headers(admin), json={"user_id": reviewer.user_id})
        assert res.status_code == 409

    def test_unknown_specialization(self, client, admin, make_user, auth_headers):
        user = make_user("reviewer")
        res = client.post(f"{ADMIN}/reviewers", headers=auth_headers(admin), json={
            "user_id": user.id, "specialization": ["astrology"],
        })
        assert res.status_code == 400

    def test_auditor_license_rules(self, client, admin, auditor, make_user, auth_headers):
        user = make_user("auditor")

        missing = client.post(f"{ADMIN}/auditors", headers=auth_headers(admin), json={"user_id": user.id})
        assert missing.status_code == 400

        clash = client.post(f"{ADMIN}/auditors", headers=auth_headers(admin), json={
            "user_id": user.id, "license_number": "LIC-0001",
        })
        assert clash.status_code == 409

        created = client.post(f"{ADMIN}/auditors", headers=auth_headers(admin), json={
            "user_id": user.id, "license_number": "LIC-0002",
        })
        assert created.status_code == 201
        assert created.get_json()["data"]["auditor"]["workload"]["maximum"] == 8

    def test_listing_sorted_by_workload(self, client, admin, reviewer, make_user, auth_headers):
        busy = Reviewer(user_id=make_user("reviewer").id, workload_current=1, workload_maximum=2)
        idle = Reviewer(user_id=make_user("reviewer").id, workload_current=0, workload_maximum=5)
        away = Reviewer(user_id=make_user("reviewer").id, availability="unavailable")
        db.session.add_all([busy, idle, away])
        db.session.commit()

        res = client.get(f"{ADMIN}/reviewers", headers=auth_headers(admin))

        data = res.get_json()["data"]
        assert [r["id"] for r in data["reviewers"]] == [reviewer.id, idle.id, busy.id]
        assert data["count"] == 3

    def test_update_reviewer_and_read_ledger(self, client, admin, reviewer, uploaded_document, auth_headers):
        client.post(
            f"{ADMIN}/documents/{uploaded_document.id}/assign-reviewer",
            headers=auth_headers(admin), json={"reviewer_id": reviewer.id},
        )
        res = client.put(f"{ADMIN}/reviewers/{reviewer.id}", headers=auth_headers(admin), json={
            "availability": "busy",
        })
        assert res.get_json()["data"]["reviewer"]["availability"] == "busy"

        detail = client.get(f"{ADMIN}/reviewers/{reviewer.id}", headers=auth_headers(admin)).get_json()
        ledger = detail["data"]["reviewer"]["assigned_documents"]
        assert [(e["document_id"], e["status"]) for e in ledger] == [(uploaded_document.id, "assigned")]


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════

class TestUsers:
    def test_activate_pending_user(self, client, admin, make_user, auth_headers):
        user = make_user("institute", status="pending")
        res = client.put(f"{ADMIN}/users/{user.id}/status", headers=auth_headers(admin), json={"status": "active"})

        assert res.status_code == 200
        assert user.status == "active"
        assert _logged("user_status_changed") == 1

    def test_admin_cannot_deactivate_self(self, client, admin, auth_headers):
        res = client.put(f"{ADMIN}/users/{admin.id}/status", headers=auth_headers(admin), json={"status": "inactive"})
        assert res.status_code == 403
        assert admin.status == "active"

    def test_admin_cannot_change_own_role(self, client, admin, auth_headers):
        res = client.put(f"{ADMIN}/users/{admin.id}/role", headers=auth_headers(admin), json={"role": "reviewer"})
        assert res.status_code == 403

    def test_role_change(self, client, admin, make_user, auth_headers):
        user = make_user("institute")
        bad = client.put(f"{ADMIN}/users/{user.id}/role", headers=auth_headers(admin), json={"role": "owner"})
        assert bad.status_code == 400

        res = client.put(f"{ADMIN}/users/{user.id}/role", headers=auth_headers(admin), json={"role": "auditor"})
        assert res.status_code == 200
        assert user.role == "auditor"
        assert ActivityLog.query.filter_by(action="user_role_changed").one().severity == "high"

    def test_unlock(self, client, admin, institute_user, auth_headers):
        institute_user.failed_login_attempts = 5
        institute_user.locked_until = utcnow() + timedelta(hours=2)
        db.session.commit()

        res = client.put(f"{ADMIN}/users/{institute_user.id}/unlock", headers=auth_headers(admin))

        assert res.status_code == 200
        assert res.get_json()["data"]["user"]["is_locked"] is False
        assert institute_user.failed_login_attempts == 0
        assert _logged("account_unlocked") == 1

    def test_list_users_by_role(self, client, admin, reviewer, auditor, auth_headers):
        res = client.get(f"{ADMIN}/users?role=auditor", headers=auth_headers(admin))
        users = res.get_json()["data"]["users"]
        assert [u["id"] for u in users] == [auditor.user_id]


# ═══════════════════════════════════════════════════════════════
# Assignments and overrides over HTTP
# ═══════════════════════════════════════════════════════════════

class TestAssignmentsOverHttp:
    def test_capacity_error_envelope(self, client, admin, reviewer, uploaded_document, auth_headers):
        reviewer.workload_current = reviewer.workload_maximum
        db.session.commit()

        res = client.post(
            f"{ADMIN}/documents/{uploaded_document.id}/assign-reviewer",
            headers=auth_headers(admin), json={"reviewer_id": reviewer.id},
        )

        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_CAPACITY_EXCEEDED"
        assert body["details"] == {"current": 10, "maximum": 10}
        assert uploaded_document.status == "uploaded"

    def test_state_conflict_envelope(self, client, admin, auditor, uploaded_document, auth_headers):
        res = client.post(
            f"{ADMIN}/documents/{uploaded_document.id}/assign-auditor",
            headers=auth_headers(admin), json={"auditor_id": auditor.id},
        )

        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current_status"] == "uploaded"

    def test_unassign_reviewer(self, client, admin, reviewer, uploaded_document, auth_headers):
        client.post(
            f"{ADMIN}/documents/{uploaded_document.id}/assign-reviewer",
            headers=auth_headers(admin), json={"reviewer_id": reviewer.id},
        )

        res = client.delete(f"{ADMIN}/documents/{uploaded_document.id}/assignment/reviewer", headers=auth_headers(admin))

        assert res.status_code == 200
        document = res.get_json()["data"]["document"]
        assert document["status"] == "uploaded"
        assert document["assigned_reviewer_id"] is None
        assert reviewer.workload_current == 0

    def test_status_override(self, client, admin, uploaded_document, auth_headers):
        res = client.put(
            f"{ADMIN}/documents/{uploaded_document.id}/status",
            headers=auth_headers(admin), json={"status": "rejected", "notes": "Incomplete submission"},
        )

        assert res.status_code == 200
        document = res.get_json()["data"]["document"]
        assert document["status"] == "rejected"
        assert [s["name"] for s in document["workflow"]["stages"]][-1] == "final_decision"

    def test_missing_document(self, client, admin, reviewer, auth_headers):
        res = client.post(
            f"{ADMIN}/documents/404/assign-reviewer", headers=auth_headers(admin), json={"reviewer_id": reviewer.id},
        )
        assert res.status_code == 404
        assert res.get_json()["error"] == "Document not found"


# ═══════════════════════════════════════════════════════════════
# Dashboard, reports, health
# ═══════════════════════════════════════════════════════════════

class TestDashboardAndReports:
    def test_dashboard(self, client, admin, reviewer, auditor, uploaded_document, auth_headers):
        res = client.get(f"{ADMIN}/dashboard", headers=auth_headers(admin))

        data = res.get_json()["data"]
        assert data["overview"]["total_documents"] == 1
        assert data["overview"]["total_institutes"] == 1
        assert data["overview"]["total_reviewers"] == 1
        assert data["statistics"]["document_status"] == [{"_id": "uploaded", "count": 1}]
        assert data["recent_activity"][0]["action"] == "document_uploaded"

    def test_json_report(self, client, admin, uploaded_document, auth_headers):
        res = client.get(f"{ADMIN}/reports?type=documents", headers=auth_headers(admin))

        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["report_type"] == "documents"
        assert data["report"]["statistics"]["total"] == 1
        assert data["report"]["documents"][0]["institute"] == "Northfield University"
        assert _logged("report_generated") == 1

    def test_default_report_is_overview(self, client, admin, auth_headers):
        res = client.get(f"{ADMIN}/reports", headers=auth_headers(admin))
        assert res.get_json()["data"]["report_type"] == "overview"

    def test_xlsx_report(self, client, admin, uploaded_document, auth_headers):
        res = client.get(f"{ADMIN}/reports?type=documents&format=xlsx", headers=auth_headers(admin))

        assert res.status_code == 200
        assert "documents-report.xlsx" in res.headers["Content-Disposition"]
        workbook = load_workbook(io.BytesIO(res.data))
        assert workbook.active["A1"].value == "Documents report"
        assert "documents" in workbook.sheetnames

    @pytest.mark.parametrize(
        "query",
        ["type=finance", "type=reviews&start_date=2026-05-01&end_date=2026-01-01"],
    )
    def test_invalid_report_request(self, client, admin, auth_headers, query):
        res = client.get(f"{ADMIN}/reports?{query}", headers=auth_headers(admin))
        assert res.status_code == 400
        assert _logged("report_generated") == 0


@pytest.mark.parametrize("path", ["/api/v1/health", "/api/v1/health/ready"])
def test_health_checks(client, path):
    res = client.get(path)
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_liveness_checks_database(client):
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    assert res.get_json()["checks"]["database"]["status"] == "ok"


# ═══════════════════════════════════════════════════════════════
# End to end
# ═══════════════════════════════════════════════════════════════

def test_document_travels_from_upload_to_approval(client, admin, institute_user, reviewer, auditor, auth_headers):
    inst, adm = auth_headers(institute_user), auth_headers(admin)
    rev, aud = auth_headers(reviewer.user), auth_headers(auditor.user)

    # Upload
    res = client.post("/api/v1/documents", headers=inst, content_type="multipart/form-data", data={
        "file": (io.BytesIO(b"%PDF-1.4 self study"), "self-study.pdf"),
        "title": "Self-Study Report 2026",
        "type": "accreditation_application",
        "priority": "high",
        "tags": "governance, finance",
    })
    assert res.status_code == 201
    document = res.get_json()["data"]["document"]
    doc_id = document["id"]
    assert document["status"] == "uploaded"
    assert document["tags"] == ["governance", "finance"]

    # Review
    res = client.post(f"{ADMIN}/documents/{doc_id}/assign-reviewer", headers=adm, json={
        "reviewer_id": reviewer.id, "due_date": "2026-11-30",
    })
    assert res.get_json()["data"]["document"]["status"] == "assigned_for_review"

    res = client.post(f"/api/v1/reviews/start/{doc_id}", headers=rev)
    assert res.status_code == 201
    review_id = res.get_json()["data"]["review"]["id"]
    again = client.post(f"/api/v1/reviews/start/{doc_id}", headers=rev)
    assert again.status_code == 200
    assert again.get_json()["message"] == "Review already in progress"

    res = client.put(f"/api/v1/reviews/{review_id}", headers=rev, json={"review_data": {
        "criteria": [
            {"name": "Governance", "score": 80, "weight": 1},
            {"name": "Finance", "score": 60, "weight": 1},
        ],
        "strengths": ["Clear governance"],
    }})
    assert res.get_json()["data"]["review"]["review_data"]["overall_score"] == 70

    res = client.post(f"/api/v1/reviews/{review_id}/submit", headers=rev)
    assert res.get_json()["data"]["review"]["status"] == "submitted"

    # Audit
    res = client.post(f"{ADMIN}/documents/{doc_id}/assign-auditor", headers=adm, json={
        "auditor_id": auditor.id, "due_date": "2026-12-15",
    })
    assert res.get_json()["data"]["document"]["status"] == "assigned_for_audit"

    res = client.post(f"/api/v1/audits/start/{doc_id}", headers=aud)
    assert res.status_code == 201
    audit_id = res.get_json()["data"]["audit"]["id"]

    res = client.post(f"/api/v1/audits/{audit_id}/findings", headers=aud, json={
        "category": "commendation", "description": "Strong quality assurance loop",
    })
    assert res.status_code == 201

    res = client.put(f"/api/v1/audits/{audit_id}/validate-review", headers=aud, json={
        "accuracy_score": 90, "completeness_score": 85, "consistency_score": 80,
        "criteria_validation": [{"criteria_name": "Governance", "reviewer_score": 80, "auditor_score": 85}],
    })
    data = res.get_json()["data"]
    assert data["overall_audit_score"] == 85
    assert data["criteria_validation"][0]["acceptable"] is True

    res = client.post(f"/api/v1/audits/{audit_id}/submit", headers=aud, json={
        "final_decision": {
            "outcome": "approved", "justification": "All standards met", "final_score": 88,
            "validity_period": 5,
        },
        "digital_signature": "Otto Auditor",
    })
    assert res.status_code == 200
    assert res.get_json()["data"]["audit"]["status"] == "completed"

    # Institute view
    res = client.get(f"/api/v1/documents/{doc_id}", headers=inst)
    document = res.get_json()["data"]["document"]
    assert document["status"] == "approved"
    stages = [s["name"] for s in document["workflow"]["stages"]]
    assert stages == ["upload", "review_assignment", "review", "audit_assignment", "audit", "final_decision"]

    trail = client.get(f"/api/v1/audits/{audit_id}", headers=inst).get_json()["data"]["audit"]["audit_trail"]
    assert [t["action"] for t in trail] == ["audit_started", "finding_added", "review_validated", "audit_completed"]

    history = client.get(f"/api/v1/documents/{doc_id}/history", headers=inst).get_json()["data"]
    assert len(history["reviews"]) == 1 and len(history["audits"]) == 1

    assert reviewer.workload_current == 0 and reviewer.completed_reviews == 1
    assert auditor.workload_current == 0 and auditor.completed_audits == 1
    assert institute_user.institute.accreditation_status == "approved"
