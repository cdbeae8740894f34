"""
Role Decorators — route protection for the four platform roles.

Usage:
    @bp.route("/documents", methods=["POST"])
    @require_role("institute")
    def upload_document():
        user = g.current_user
        ...

    @bp.route("/auth/me")
    @require_auth
    def me():
        ...

No user → 401.  Wrong role → 403 plus an ``authorization_failed`` activity
entry.
"""

import functools
import logging

from flask import g, request

from accredit.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def _unauthenticated():
    message = getattr(g, "auth_error", None) or "Not authorized, no token"
    return api_error(E.UNAUTHORIZED, message)


def require_auth(f):
    """Decorator: any authenticated, active user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "current_user", None) is None:
            return _unauthenticated()
        return f(*args, **kwargs)
    return decorated


def require_role(*roles: str):
    """
    Decorator: require the authenticated user to hold one of ``roles``.

    Args:
        roles: Allowed role names, e.g. "admin", "reviewer".
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return _unauthenticated()

            if user.role not in roles:
                from accredit.services.activity_log import ActivityLogger

                logger.warning(
                    "User %d (%s) denied on %s: requires %s",
                    user.id, user.role, f.__name__, roles,
                )
                ActivityLogger.record(
                    "authorization_failed", user,
                    details={
                        "path": request.path,
                        "method": request.method,
                        "required_roles": list(roles),
                        "user_role": user.role,
                    },
                    status="failure",
                )
                return api_error(
                    E.FORBIDDEN, f"User role {user.role} is not authorized to access this route",
                )
            return f(*args, **kwargs)
        return decorated
    return decorator
