"""
Activity Log Blueprint — querying, export and retention of the audit trail.

  GET    /api/v1/logs                  — Filtered listing (admin)
  GET    /api/v1/logs/user/<user_id>   — One user's entries (admin or self)
  GET    /api/v1/logs/summary          — Rolling-window summary (admin)
  GET    /api/v1/logs/export           — csv / json / xlsx download (admin)
  DELETE /api/v1/logs/cleanup          — Age-based purge (admin)
"""

import io

from flask import Blueprint, current_app, g, request, send_file

from accredit.core.exceptions import ForbiddenError
from accredit.middleware.role_required import require_auth, require_role
from accredit.services import activity_log
from accredit.services.activity_log import FILTER_FIELDS, ActivityLogger
from accredit.utils.helpers import api_ok, page_args

log_bp = Blueprint("log_bp", __name__, url_prefix="/api/v1/logs")

_QUERY_FILTERS = FILTER_FIELDS + ("start_date", "end_date", "search")


def _filters():
    return {key: request.args.get(key) for key in _QUERY_FILTERS if request.args.get(key)}


@log_bp.route("", methods=["GET"])
@require_role("admin")
def list_logs():
    page, per_page = page_args(default_per_page=50)
    filters = _filters()
    result = activity_log.list_logs(filters, page, per_page)
    ActivityLogger.record("logs_accessed", g.current_user, details={"filters": filters, "page": page})
    return api_ok(result)


@log_bp.route("/user/<int:user_id>", methods=["GET"])
@require_auth
def user_logs(user_id):
    user = g.current_user
    if user.role != "admin" and user.id != user_id:
        raise ForbiddenError("Access denied")
    page, per_page = page_args(default_per_page=30)
    result = activity_log.user_logs(user_id, _filters(), page, per_page)
    ActivityLogger.record("logs_accessed", user, details={"target_user_id": user_id, "page": page})
    return api_ok(result)


@log_bp.route("/summary", methods=["GET"])
@require_role("admin")
def summary():
    return api_ok(activity_log.summary(request.args.get("timeframe", "24h")))


@log_bp.route("/export", methods=["GET"])
@require_role("admin")
def export_logs():
    fmt = request.args.get("format", "json")
    filters = _filters()
    content, mimetype, filename = activity_log.export_logs(fmt, filters)
    ActivityLogger.record(
        "data_export", g.current_user, details={"format": fmt, "filters": filters},
    )
    if isinstance(content, str):
        content = content.encode("utf-8")
    return send_file(io.BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=filename)


@log_bp.route("/cleanup", methods=["DELETE"])
@require_role("admin")
def cleanup():
    days = request.args.get("days", current_app.config["LOG_CLEANUP_DEFAULT_DAYS"])
    result = activity_log.cleanup(days)
    ActivityLogger.record("logs_cleaned", g.current_user, details=result)
    return api_ok(result, f"Deleted {result['deleted_count']} old log entries")
