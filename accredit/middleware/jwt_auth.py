"""
JWT Auth Middleware — resolves ``Authorization: Bearer <token>`` to
``g.current_user`` before every API request.

The hook never rejects a request itself; it only records why a token was not
accepted in ``g.auth_error``.  Route decorators in
``accredit.middleware.role_required`` decide whether a user is needed.
"""

import jwt as pyjwt
from flask import g, request

from accredit.models import db
from accredit.models.auth import User
from accredit.services.jwt_service import decode_access_token

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/auth/refresh",
    "/api/v1/auth/forgot-password",
    "/api/v1/auth/reset-password",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user = None
        g.auth_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            g.auth_error = "Token expired"
            return
        except pyjwt.InvalidTokenError:
            g.auth_error = "Invalid token"
            return

        try:
            user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            g.auth_error = "Invalid token"
            return

        user = db.session.get(User, user_id)
        if user is None:
            g.auth_error = "User no longer exists"
        elif user.status != "active":
            g.auth_error = "Account is not active"
        elif user.is_locked:
            g.auth_error = "Account is locked"
        else:
            g.current_user = user
