"""
Admin Blueprint — platform administration.

Dashboard & reports:
  GET  /api/v1/admin/dashboard
  GET  /api/v1/admin/reports?type=&start_date=&end_date=&format=json|xlsx

Institutes:
  GET  /api/v1/admin/institutes           POST /api/v1/admin/institutes
  GET  /api/v1/admin/institutes/<id>      PUT  /api/v1/admin/institutes/<id>

Assignments & overrides:
  POST   /api/v1/admin/documents/<id>/assign-reviewer
  POST   /api/v1/admin/documents/<id>/assign-auditor
  DELETE /api/v1/admin/documents/<id>/assignment/<reviewer|auditor>
  PUT    /api/v1/admin/documents/<id>/status
  PUT    /api/v1/admin/audits/<id>/status

Reviewers & auditors:
  GET/POST /api/v1/admin/reviewers        GET/PUT /api/v1/admin/reviewers/<id>
  GET/POST /api/v1/admin/auditors         GET/PUT /api/v1/admin/auditors/<id>

Users:
  GET /api/v1/admin/users
  PUT /api/v1/admin/users/<id>/status
  PUT /api/v1/admin/users/<id>/role
  PUT /api/v1/admin/users/<id>/unlock
"""

import io
import logging

from flask import Blueprint, g, request, send_file

from accredit.blueprints import paginated_payload
from accredit.middleware.role_required import require_role
from accredit.services import (
    assessor_service,
    audit_service,
    document_lifecycle,
    export_service,
    identity_service,
    institute_service,
    reporting,
)
from accredit.services.activity_log import ActivityLogger
from accredit.utils.helpers import api_ok, page_args

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/v1/admin")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@admin_bp.before_request
@require_role("admin")
def _admin_only():
    """Every admin route requires the admin role."""
    return None


# ═══════════════════════════════════════════════════════════════
# Dashboard & reports
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/dashboard", methods=["GET"])
def dashboard():
    return api_ok(reporting.admin_dashboard())


@admin_bp.route("/reports", methods=["GET"])
def generate_report():
    report_type = request.args.get("type") or "overview"
    fmt = (request.args.get("format") or "json").lower()
    start_date = request.args.get("start_date")
    end_date = request.args.get("end_date")
    report = reporting.generate_report(report_type, start_date, end_date)

    ActivityLogger.record(
        "report_generated", g.current_user,
        details={"report_type": report_type, "format": fmt, "start_date": start_date, "end_date": end_date},
    )
    if fmt == "xlsx":
        content = export_service.report_xlsx(report_type, report)
        return send_file(
            io.BytesIO(content),
            mimetype=XLSX_MIMETYPE,
            as_attachment=True,
            download_name=f"{report_type}-report.xlsx",
        )
    return api_ok({"report_type": report_type, "report": report})


# ═══════════════════════════════════════════════════════════════
# Institutes
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/institutes", methods=["GET"])
def list_institutes():
    page, per_page = page_args()
    filters = {"status": request.args.get("status"), "search": request.args.get("search")}
    paginated = institute_service.list_institutes(filters, page, per_page)
    return api_ok(paginated_payload(paginated, "institutes"))


@admin_bp.route("/institutes", methods=["POST"])
def create_institute():
    data = request.get_json(silent=True) or {}
    institute = institute_service.create_institute(g.current_user, data)
    return api_ok({"institute": institute.to_dict()}, "Institute created successfully", 201)


@admin_bp.route("/institutes/<int:institute_id>", methods=["GET"])
def get_institute(institute_id):
    return api_ok({"institute": institute_service.get_institute(institute_id).to_dict()})


@admin_bp.route("/institutes/<int:institute_id>", methods=["PUT"])
def update_institute(institute_id):
    data = request.get_json(silent=True) or {}
    institute = institute_service.update_institute(g.current_user, institute_id, data)
    return api_ok({"institute": institute.to_dict()}, "Institute updated successfully")


# ═══════════════════════════════════════════════════════════════
# Assignments & overrides
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/documents/<int:document_id>/assign-reviewer", methods=["POST"])
def assign_reviewer(document_id):
    """Body: { "reviewer_id": int, "due_date"?: ISO date }"""
    data = request.get_json(silent=True) or {}
    document = document_lifecycle.assign_reviewer(
        g.current_user, document_id, data.get("reviewer_id"), data.get("due_date"),
    )
    return api_ok({"document": document.to_dict()}, "Reviewer assigned successfully")


@admin_bp.route("/documents/<int:document_id>/assign-auditor", methods=["POST"])
def assign_auditor(document_id):
    data = request.get_json(silent=True) or {}
    document = document_lifecycle.assign_auditor(
        g.current_user, document_id, data.get("auditor_id"), data.get("due_date"),
    )
    return api_ok({"document": document.to_dict()}, "Auditor assigned successfully")


@admin_bp.route("/documents/<int:document_id>/assignment/<kind>", methods=["DELETE"])
def remove_assignment(document_id, kind):
    document = document_lifecycle.unassign(g.current_user, document_id, kind)
    return api_ok({"document": document.to_dict()}, f"{kind.capitalize()} unassigned")


@admin_bp.route("/documents/<int:document_id>/status", methods=["PUT"])
def set_document_status(document_id):
    data = request.get_json(silent=True) or {}
    document = document_lifecycle.set_document_status(
        g.current_user, document_id, data.get("status"), data.get("notes"),
    )
    return api_ok({"document": document.to_dict(include_workflow=True)}, "Document status updated")


@admin_bp.route("/audits/<int:audit_id>/status", methods=["PUT"])
def set_audit_status(audit_id):
    data = request.get_json(silent=True) or {}
    audit = audit_service.set_audit_status(g.current_user, audit_id, data.get("status"), data.get("reason"))
    return api_ok({"audit": audit.to_dict()}, "Audit status updated")


# ═══════════════════════════════════════════════════════════════
# Reviewers & auditors
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/reviewers", methods=["GET"])
def list_reviewers():
    reviewers = assessor_service.available_reviewers()
    return api_ok({"reviewers": [r.to_dict() for r in reviewers], "count": len(reviewers)})


@admin_bp.route("/reviewers", methods=["POST"])
def create_reviewer():
    data = request.get_json(silent=True) or {}
    reviewer = assessor_service.create_reviewer(g.current_user, data)
    return api_ok({"reviewer": reviewer.to_dict()}, "Reviewer profile created", 201)


@admin_bp.route("/reviewers/<int:reviewer_id>", methods=["GET"])
def get_reviewer(reviewer_id):
    reviewer = assessor_service.get_reviewer(reviewer_id)
    return api_ok({"reviewer": reviewer.to_dict(include_ledger=True)})


@admin_bp.route("/reviewers/<int:reviewer_id>", methods=["PUT"])
def update_reviewer(reviewer_id):
    data = request.get_json(silent=True) or {}
    reviewer = assessor_service.update_reviewer(g.current_user, reviewer_id, data)
    return api_ok({"reviewer": reviewer.to_dict()}, "Reviewer profile updated")


@admin_bp.route("/auditors", methods=["GET"])
def list_auditors():
    auditors = assessor_service.available_auditors()
    return api_ok({"auditors": [a.to_dict() for a in auditors], "count": len(auditors)})


@admin_bp.route("/auditors", methods=["POST"])
def create_auditor():
    data = request.get_json(silent=True) or {}
    auditor = assessor_service.create_auditor(g.current_user, data)
    return api_ok({"auditor": auditor.to_dict()}, "Auditor profile created", 201)


@admin_bp.route("/auditors/<int:auditor_id>", methods=["GET"])
def get_auditor(auditor_id):
    auditor = assessor_service.get_auditor(auditor_id)
    return api_ok({"auditor": auditor.to_dict(include_ledger=True)})


@admin_bp.route("/auditors/<int:auditor_id>", methods=["PUT"])
def update_auditor(auditor_id):
    data = request.get_json(silent=True) or {}
    auditor = assessor_service.update_auditor(g.current_user, auditor_id, data)
    return api_ok({"auditor": auditor.to_dict()}, "Auditor profile updated")


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/users", methods=["GET"])
def list_users():
    page, per_page = page_args()
    filters = {key: request.args.get(key) for key in ("role", "status", "search")}
    paginated = identity_service.list_users(filters, page, per_page)
    return api_ok(paginated_payload(paginated, "users"))


@admin_bp.route("/users/<int:user_id>/status", methods=["PUT"])
def set_user_status(user_id):
    data = request.get_json(silent=True) or {}
    user = identity_service.set_user_status(g.current_user, user_id, data.get("status"))
    return api_ok({"user": user.to_dict()}, f"User status updated to {user.status}")


@admin_bp.route("/users/<int:user_id>/role", methods=["PUT"])
def set_user_role(user_id):
    data = request.get_json(silent=True) or {}
    user = identity_service.set_user_role(g.current_user, user_id, data.get("role"))
    return api_ok({"user": user.to_dict()}, f"User role updated to {user.role}")


@admin_bp.route("/users/<int:user_id>/unlock", methods=["PUT"])
def unlock_user(user_id):
    user = identity_service.unlock_user(g.current_user, user_id)
    return api_ok({"user": user.to_dict()}, "Account unlocked")
