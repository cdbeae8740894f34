"""
Audit Blueprint — auditor workflow.

  POST /api/v1/audits/start/<document_id>     — Open or resume the audit
  PUT  /api/v1/audits/<id>                    — Update working data
  POST /api/v1/audits/<id>/findings           — Append a finding
  PUT  /api/v1/audits/<id>/compliance         — Compliance check
  PUT  /api/v1/audits/<id>/validate-review    — Review validation + variance
  POST /api/v1/audits/<id>/submit             — Final decision
  GET  /api/v1/audits/<id>                    — Detail with trail
  GET  /api/v1/audits/document/<document_id>  — All audits of a document
  GET  /api/v1/audits/dashboard               — Auditor dashboard
"""

from flask import Blueprint, g, request

from accredit.middleware.role_required import require_auth, require_role
from accredit.services import audit_service
from accredit.utils.helpers import api_ok

audit_bp = Blueprint("audit_bp", __name__, url_prefix="/api/v1/audits")


@audit_bp.route("/start/<int:document_id>", methods=["POST"])
@require_role("auditor")
def start_audit(document_id):
    audit, created = audit_service.start_audit(g.current_user, document_id)
    if created:
        return api_ok({"audit": audit.to_dict()}, "Audit started successfully", 201)
    return api_ok({"audit": audit.to_dict()}, "Audit already in progress")


@audit_bp.route("/<int:audit_id>", methods=["PUT"])
@require_role("auditor")
def update_audit(audit_id):
    data = request.get_json(silent=True) or {}
    audit = audit_service.update_audit(g.current_user, audit_id, data)
    return api_ok({"audit": audit.to_dict()}, "Audit updated successfully")


@audit_bp.route("/<int:audit_id>/findings", methods=["POST"])
@require_role("auditor")
def add_finding(audit_id):
    data = request.get_json(silent=True) or {}
    _, finding = audit_service.add_finding(g.current_user, audit_id, data)
    return api_ok({"finding": finding}, "Finding added successfully", 201)


@audit_bp.route("/<int:audit_id>/compliance", methods=["PUT"])
@require_role("auditor")
def update_compliance(audit_id):
    data = request.get_json(silent=True) or {}
    audit = audit_service.update_compliance(g.current_user, audit_id, data)
    return api_ok(
        {"compliance_check": (audit.audit_data or {}).get("compliance_check")},
        "Compliance check updated successfully",
    )


@audit_bp.route("/<int:audit_id>/validate-review", methods=["PUT"])
@require_role("auditor")
def validate_review(audit_id):
    data = request.get_json(silent=True) or {}
    audit = audit_service.validate_review(g.current_user, audit_id, data)
    audit_data = audit.audit_data or {}
    return api_ok(
        {
            "review_validation": audit_data.get("review_validation"),
            "criteria_validation": audit_data.get("criteria_validation"),
            "overall_audit_score": audit.overall_audit_score,
        },
        "Review validation completed successfully",
    )


@audit_bp.route("/<int:audit_id>/submit", methods=["POST"])
@require_role("auditor")
def submit_audit(audit_id):
    """Body: { "final_decision": {outcome, justification, final_score?, ...}, "digital_signature"? }"""
    data = request.get_json(silent=True) or {}
    audit = audit_service.submit_audit(
        g.current_user, audit_id, data.get("final_decision"), data.get("digital_signature"),
    )
    return api_ok({"audit": audit.to_dict()}, "Audit submitted successfully")


@audit_bp.route("/<int:audit_id>", methods=["GET"])
@require_auth
def get_audit(audit_id):
    audit = audit_service.get_audit(g.current_user, audit_id)
    return api_ok({"audit": audit.to_dict(include_trail=True)})


@audit_bp.route("/document/<int:document_id>", methods=["GET"])
@require_auth
def document_audits(document_id):
    audits = audit_service.document_audits(g.current_user, document_id)
    return api_ok({"audits": [a.to_dict() for a in audits], "count": len(audits)})


@audit_bp.route("/dashboard", methods=["GET"])
@require_role("auditor")
def dashboard():
    return api_ok(audit_service.auditor_dashboard(g.current_user))
