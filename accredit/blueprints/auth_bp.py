"""
Auth Blueprint — registration, JWT sessions, password reset and profile.

  POST /api/v1/auth/register          — Self sign-up (account starts pending)
  POST /api/v1/auth/login             — Email + password → JWT pair
  POST /api/v1/auth/refresh           — Refresh token → rotated JWT pair
  POST /api/v1/auth/logout            — Revoke refresh token
  POST /api/v1/auth/forgot-password   — E-mail a reset link
  PUT  /api/v1/auth/reset-password/<token>
  GET  /api/v1/auth/me                — Current user profile
  PUT  /api/v1/auth/me                — Update profile
  PUT  /api/v1/auth/change-password
"""

from flask import Blueprint, g, request

from accredit.middleware.role_required import require_auth
from accredit.services import identity_service
from accredit.utils.helpers import api_ok

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# Registration / session
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Body: { "name", "email", "password", "role"?, "phone"?, "address"? }
    """
    data = request.get_json(silent=True) or {}
    user = identity_service.register(data)
    return api_ok(
        {"user": user.to_dict()},
        "Registration successful. Your account is pending administrator approval.",
        201,
    )


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    result = identity_service.login(data.get("email", ""), data.get("password", ""))
    return api_ok(result, "Login successful")


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    data = request.get_json(silent=True) or {}
    return api_ok(identity_service.refresh(data.get("refresh_token", "")))


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    data = request.get_json(silent=True) or {}
    identity_service.logout(g.current_user, data.get("refresh_token"))
    return api_ok(message="Logged out successfully")


# ═══════════════════════════════════════════════════════════════
# Password reset
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    data = request.get_json(silent=True) or {}
    identity_service.forgot_password(data.get("email", ""))
    # Same answer for known and unknown addresses.
    return api_ok(message="If the address is registered, a reset link has been sent")


@auth_bp.route("/reset-password/<token>", methods=["PUT"])
def reset_password(token):
    data = request.get_json(silent=True) or {}
    identity_service.reset_password(token, data.get("password", ""))
    return api_ok(message="Password has been reset. Please log in again.")


# ═══════════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    return api_ok({"user": g.current_user.to_dict()})


@auth_bp.route("/me", methods=["PUT"])
@require_auth
def update_me():
    data = request.get_json(silent=True) or {}
    user = identity_service.update_profile(g.current_user, data)
    return api_ok({"user": user.to_dict()}, "Profile updated")


@auth_bp.route("/change-password", methods=["PUT"])
@require_auth
def change_password():
    data = request.get_json(silent=True) or {}
    identity_service.change_password(
        g.current_user, data.get("current_password", ""), data.get("new_password", ""),
    )
    return api_ok(message="Password changed. Please log in again.")
