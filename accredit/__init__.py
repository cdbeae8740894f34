"""
Accreditation Management Platform
Flask Application Factory.

Usage:
    from accredit import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from accredit.config import config
from accredit.middleware.activity_interceptor import init_activity_interceptor
from accredit.middleware.jwt_auth import init_jwt_middleware
from accredit.middleware.logging_config import configure_logging
from accredit.middleware.rate_limiter import init_rate_limits
from accredit.middleware.timing import init_request_timing
from accredit.models import db
from accredit.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)

# Upload routes accept multipart bodies; everything else mutating is JSON.
_MULTIPART_SUFFIXES = ("/api/v1/documents", "/versions")


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_class = config[config_name]
    # ProductionConfig validates its environment on instantiation.
    app.config.from_object(config_class() if config_name == "production" else config_class)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request middleware (order matters: timing → auth → interceptor) ──
    init_request_timing(app)
    init_jwt_middleware(app)
    init_activity_interceptor(app)

    # Multipart uploads need headroom over the file cap itself.
    if not app.config.get("MAX_CONTENT_LENGTH"):
        app.config["MAX_CONTENT_LENGTH"] = app.config["MAX_UPLOAD_BYTES"] + 1024 * 1024

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            content_type = request.content_type or ""
            if "multipart/form-data" in content_type and request.path.endswith(_MULTIPART_SUFFIXES):
                return None
            if request.content_length and "json" not in content_type:
                abort(415, description="Content-Type must be application/json")
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from accredit.models import activity_log as _activity_log_models  # noqa: F401
    from accredit.models import assessor as _assessor_models          # noqa: F401
    from accredit.models import audit as _audit_models                # noqa: F401
    from accredit.models import auth as _auth_models                  # noqa: F401
    from accredit.models import document as _document_models          # noqa: F401
    from accredit.models import institute as _institute_models        # noqa: F401
    from accredit.models import notification as _notification_models  # noqa: F401
    from accredit.models import review as _review_models              # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if not app.config.get("TESTING"):
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from accredit.blueprints.admin_bp import admin_bp
    from accredit.blueprints.audit_bp import audit_bp
    from accredit.blueprints.auth_bp import auth_bp
    from accredit.blueprints.document_bp import document_bp
    from accredit.blueprints.health_bp import health_bp
    from accredit.blueprints.log_bp import log_bp
    from accredit.blueprints.review_bp import review_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(document_bp)
    app.register_blueprint(review_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(log_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-admin")
    @click.option("--name", required=True)
    @click.option("--email", required=True)
    @click.password_option()
    def create_admin_cmd(name, email, password):
        """Provision an active admin account."""
        from accredit.services.identity_service import create_admin

        user = create_admin(name, email, password)
        click.echo(f"Admin {user.email} created (id={user.id})")

    @app.cli.command("purge-activity-logs")
    @click.option("--days", type=int, default=None, help="Defaults to LOG_RETENTION_DAYS.")
    def purge_activity_logs_cmd(days):
        """Delete activity entries past the retention horizon (critical/high are kept)."""
        from accredit.services.activity_log import cleanup

        result = cleanup(days or app.config["LOG_RETENTION_DAYS"])
        click.echo(f"Deleted {result['deleted_count']} entries older than {result['cutoff_date']}")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
