"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — liveness summary
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database round-trip with latency
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from accredit.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    return jsonify({"status": "ok", "app": "Accreditation Management Platform"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness check: 200 while the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": exc.__class__.__name__}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    checks["app"] = {"debug": current_app.debug, "testing": current_app.testing}
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
