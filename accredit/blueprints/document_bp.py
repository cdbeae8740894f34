"""
Document Blueprint — upload, listing and lifecycle reads.

  POST   /api/v1/documents                   — Upload (institute)
  GET    /api/v1/documents                   — Role-scoped, filtered listing
  GET    /api/v1/documents/assigned          — Open work for reviewer/auditor
  GET    /api/v1/documents/<id>              — Detail (counts the access)
  PUT    /api/v1/documents/<id>              — Update whitelisted fields
  DELETE /api/v1/documents/<id>              — Physical or logical delete
  GET    /api/v1/documents/<id>/download     — File stream
  POST   /api/v1/documents/<id>/versions     — Upload a new version
  GET    /api/v1/documents/<id>/history      — Workflow, versions, reviews, audits
"""

import logging

from flask import Blueprint, g, request, send_file

from accredit.blueprints import paginated_payload
from accredit.core.exceptions import UpstreamFailure
from accredit.middleware.role_required import require_auth, require_role
from accredit.services import document_lifecycle
from accredit.utils.errors import E, api_error
from accredit.utils.helpers import api_ok, page_args

logger = logging.getLogger(__name__)

document_bp = Blueprint("document_bp", __name__, url_prefix="/api/v1/documents")

LIST_FILTERS = ("status", "type", "category", "priority", "institute_id", "search", "sort", "order")


@document_bp.route("", methods=["POST"])
@require_role("institute")
def upload_document():
    """Multipart form: ``file`` plus title, type, description, category, priority, tags."""
    document = document_lifecycle.upload_document(
        g.current_user, request.files.get("file"), request.form.to_dict(),
    )
    return api_ok({"document": document.to_dict()}, "Document uploaded successfully", 201)


@document_bp.route("", methods=["GET"])
@require_auth
def list_documents():
    page, per_page = page_args()
    filters = {key: request.args.get(key) for key in LIST_FILTERS}
    paginated = document_lifecycle.list_documents(g.current_user, filters, page, per_page)
    return api_ok(paginated_payload(paginated, "documents"))


@document_bp.route("/assigned", methods=["GET"])
@require_role("reviewer", "auditor")
def assigned_documents():
    page, per_page = page_args()
    paginated = document_lifecycle.assigned_documents(g.current_user, page, per_page)
    return api_ok(paginated_payload(paginated, "documents"))


@document_bp.route("/<int:document_id>", methods=["GET"])
@require_auth
def get_document(document_id):
    document = document_lifecycle.get_document(g.current_user, document_id)
    return api_ok({"document": document.to_dict(include_workflow=True)})


@document_bp.route("/<int:document_id>", methods=["PUT"])
@require_role("institute", "admin")
def update_document(document_id):
    data = request.get_json(silent=True) or {}
    document = document_lifecycle.update_document(g.current_user, document_id, data)
    return api_ok({"document": document.to_dict()}, "Document updated successfully")


@document_bp.route("/<int:document_id>", methods=["DELETE"])
@require_role("institute", "admin")
def delete_document(document_id):
    result = document_lifecycle.delete_document(g.current_user, document_id)
    return api_ok(result, "Document deleted successfully")


@document_bp.route("/<int:document_id>/download", methods=["GET"])
@require_auth
def download_document(document_id):
    try:
        document, handle = document_lifecycle.download_document(g.current_user, document_id)
    except UpstreamFailure as exc:
        logger.warning("Download failed for document %s: %s", document_id, exc)
        return api_error(E.NOT_FOUND, "File not found")
    return send_file(
        handle,
        mimetype=document.mime_type or "application/octet-stream",
        as_attachment=True,
        download_name=document.original_name or document.file_name,
    )


@document_bp.route("/<int:document_id>/versions", methods=["POST"])
@require_role("institute", "admin")
def upload_version(document_id):
    document = document_lifecycle.upload_new_version(
        g.current_user, document_id, request.files.get("file"), request.form.get("reason"),
    )
    return api_ok({"document": document.to_dict()}, f"Version {document.version} uploaded", 201)


@document_bp.route("/<int:document_id>/history", methods=["GET"])
@require_auth
def document_history(document_id):
    return api_ok(document_lifecycle.document_history(g.current_user, document_id))
