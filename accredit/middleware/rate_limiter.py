"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in accredit/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from accredit.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

LOGIN_LIMIT = "10/minute"
AUTH_LIMIT = "30/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Login:            10/minute  (credential stuffing)
        - Other auth:       30/minute
        - Workflow writes:  60/minute
        - Admin / logs:     200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    login_view = app.view_functions.get("auth_bp.login")
    if login_view is not None:
        limiter.limit(LOGIN_LIMIT)(login_view)

    bp = app.blueprints.get("auth_bp")
    if bp:
        limiter.limit(AUTH_LIMIT)(bp)

    for bp_name in ("document_bp", "review_bp", "audit_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in ("admin_bp", "log_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — login: %s, auth: %s, workflow: %s, admin: %s",
        LOGIN_LIMIT, AUTH_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
