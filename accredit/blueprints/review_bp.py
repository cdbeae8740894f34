"""
Review Blueprint — reviewer workflow.

  POST /api/v1/reviews/start/<document_id>    — Open or resume the draft
  PUT  /api/v1/reviews/<id>                   — Update the draft
  POST /api/v1/reviews/<id>/submit            — Sign and submit
  GET  /api/v1/reviews/<id>                   — Detail
  GET  /api/v1/reviews/document/<document_id> — All reviews of a document
  GET  /api/v1/reviews/dashboard              — Reviewer dashboard
"""

from flask import Blueprint, g, request

from accredit.middleware.role_required import require_auth, require_role
from accredit.services import review_service
from accredit.utils.helpers import api_ok

review_bp = Blueprint("review_bp", __name__, url_prefix="/api/v1/reviews")


@review_bp.route("/start/<int:document_id>", methods=["POST"])
@require_role("reviewer")
def start_review(document_id):
    review, created = review_service.start_review(g.current_user, document_id)
    if created:
        return api_ok({"review": review.to_dict()}, "Review started successfully", 201)
    return api_ok({"review": review.to_dict()}, "Review already in progress")


@review_bp.route("/<int:review_id>", methods=["PUT"])
@require_role("reviewer")
def update_review(review_id):
    data = request.get_json(silent=True) or {}
    review = review_service.update_review(g.current_user, review_id, data)
    return api_ok({"review": review.to_dict()}, "Review updated successfully")


@review_bp.route("/<int:review_id>/submit", methods=["POST"])
@require_role("reviewer")
def submit_review(review_id):
    review = review_service.submit_review(g.current_user, review_id)
    return api_ok({"review": review.to_dict()}, "Review submitted successfully")


@review_bp.route("/<int:review_id>", methods=["GET"])
@require_auth
def get_review(review_id):
    review = review_service.get_review(g.current_user, review_id)
    return api_ok({"review": review.to_dict(include_history=True)})


@review_bp.route("/document/<int:document_id>", methods=["GET"])
@require_auth
def document_reviews(document_id):
    reviews = review_service.document_reviews(g.current_user, document_id)
    return api_ok({"reviews": [r.to_dict() for r in reviews], "count": len(reviews)})


@review_bp.route("/dashboard", methods=["GET"])
@require_role("reviewer")
def dashboard():
    return api_ok(review_service.reviewer_dashboard(g.current_user))
