"""
Identity Service — registration, login with lockout, token refresh,
password reset, profile management and admin user controls.

Failed logins are counted per user; reaching MAX_LOGIN_ATTEMPTS locks the
account for LOCKOUT_MINUTES and records a critical ``account_locked`` entry.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import jwt
from email_validator import EmailNotValidError, validate_email
from flask import current_app, has_request_context, request

from accredit.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    ValidationError,
)
from accredit.models import db
from accredit.models.activity_log import TargetResource
from accredit.models.auth import SELF_REGISTER_ROLES, USER_ROLES, USER_STATUSES, User
from accredit.services import jwt_service
from accredit.services.activity_log import ActivityLogger, client_ip
from accredit.services.notification_service import notify_password_reset, notify_quietly
from accredit.utils.crypto import generate_reset_token, hash_password, hash_reset_token, verify_password
from accredit.utils.helpers import as_utc, commit_or_raise, get_or_raise, utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
PROFILE_FIELDS = ("name", "phone", "address", "preferences")


# ── Validation helpers ───────────────────────────────────────────────────

def normalize_email(email: str | None) -> str:
    if not email or not str(email).strip():
        raise ValidationError("Email is required", {"email": "required"})
    try:
        return validate_email(str(email).strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email: {exc}", {"email": "invalid"}) from exc


def _check_password(password: str | None, field: str = "password") -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            {field: "too_short"},
        )
    return password


def _request_meta() -> tuple[str | None, str | None]:
    if not has_request_context():
        return None, None
    return client_ip(), request.headers.get("User-Agent", "")


# ═══════════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════════
def register(data: dict) -> User:
    """Public sign-up. New accounts wait in ``pending`` for admin activation."""
    name = (data.get("name") or "").strip()
    role = data.get("role") or "institute"
    if not name:
        raise ValidationError("Name is required", {"name": "required"})
    if role not in SELF_REGISTER_ROLES:
        raise ValidationError(
            f"role must be one of {', '.join(sorted(SELF_REGISTER_ROLES))}", {"role": role}
        )
    email = normalize_email(data.get("email"))
    password = _check_password(data.get("password"))

    if User.query.filter_by(email=email).first():
        ActivityLogger.record(
            "user_created", None,
            details={"email": email, "reason": "Email already exists"},
            status="failure",
        )
        raise ConflictError("User", "email", email)

    user = User(
        name=name[:100],
        email=email,
        password_hash=hash_password(password),
        role=role,
        status="pending",
        phone=data.get("phone"),
        address=data.get("address") or {},
    )
    db.session.add(user)
    commit_or_raise("User")
    logger.info("User registered", extra={"user_id": user.id, "user_role": role})

    ActivityLogger.record(
        "user_created", user,
        target=TargetResource.of(user),
        details={"email": email, "role": role, "self_registered": True},
    )
    return user


def create_admin(name: str, email: str, password: str) -> User:
    """Provision an active admin account (CLI only)."""
    email = normalize_email(email)
    _check_password(password)
    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)
    user = User(
        name=name, email=email, password_hash=hash_password(password),
        role="admin", status="active",
    )
    db.session.add(user)
    commit_or_raise("User")
    ActivityLogger.record(
        "user_created", None, target=TargetResource.of(user), details={"role": "admin", "source": "cli"},
    )
    return user


# ═══════════════════════════════════════════════════════════════
# Login / tokens
# ═══════════════════════════════════════════════════════════════
def authenticate(email: str, password: str) -> User:
    """Check credentials and lockout; returns the user on success."""
    if not email or not password:
        raise ValidationError("Please provide email and password")
    email = str(email).strip().lower()
    cfg = current_app.config

    user = User.query.filter_by(email=email).first()
    if user is None:
        ActivityLogger.record(
            "login_failed", None, details={"email": email, "reason": "User not found"}, status="failure",
        )
        raise AuthenticationError(reason="User not found")

    if user.is_locked:
        ActivityLogger.record(
            "login_failed", user, details={"email": email, "reason": "Account locked"}, status="failure",
        )
        raise AuthenticationError(
            "Account is locked due to multiple failed login attempts. Please try again later.",
            reason="Account locked",
        )

    if not verify_password(password, user.password_hash):
        if user.locked_until is not None:
            # Previous lock has expired; start a fresh count.
            user.failed_login_attempts = 0
            user.locked_until = None
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        locked = user.failed_login_attempts >= cfg["MAX_LOGIN_ATTEMPTS"]
        if locked:
            user.locked_until = utcnow() + timedelta(minutes=cfg["LOCKOUT_MINUTES"])
        attempts = user.failed_login_attempts
        db.session.commit()

        ActivityLogger.record(
            "login_failed", user,
            details={"email": email, "reason": "Invalid password", "login_attempts": attempts},
            status="failure",
        )
        if locked:
            logger.warning("Account locked", extra={"user_id": user.id})
            ActivityLogger.record(
                "account_locked", user,
                target=TargetResource.of(user),
                details={"login_attempts": attempts, "lockout_minutes": cfg["LOCKOUT_MINUTES"]},
                status="warning",
            )
        raise AuthenticationError(reason="Invalid password")

    if user.status != "active":
        ActivityLogger.record(
            "login_failed", user,
            details={"email": email, "reason": "Account not active", "account_status": user.status},
            status="failure",
        )
        raise AuthenticationError(
            "Account is not active. Please contact administrator.", reason="Account not active",
        )

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def issue_tokens(user: User) -> dict:
    tokens = jwt_service.generate_token_pair(user.id, user.role)
    ip, user_agent = _request_meta()
    jwt_service.create_session(user.id, tokens["token_hash"], ip, user_agent, tokens["expires_at"])
    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }


def login(email: str, password: str) -> dict:
    user = authenticate(email, password)
    tokens = issue_tokens(user)
    ActivityLogger.record("login", user, details={"email": user.email})
    return {**tokens, "user": user.to_dict()}


def refresh(refresh_token: str) -> dict:
    """Exchange a refresh token for a new pair, rotating the session."""
    if not refresh_token:
        raise ValidationError("Refresh token is required")
    try:
        payload = jwt_service.decode_refresh_token(refresh_token)
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid or expired refresh token", reason=str(exc)) from exc

    user_id = int(payload["sub"])
    session = jwt_service.get_active_session_by_token(user_id, jwt_service.hash_token(refresh_token))
    if session is None:
        raise AuthenticationError("Session not found or revoked")
    if session.is_expired:
        jwt_service.revoke_session(session)
        raise AuthenticationError("Session expired")

    user = db.session.get(User, user_id)
    if user is None or user.status != "active" or user.is_locked:
        raise AuthenticationError("Account is not active")

    tokens = jwt_service.generate_token_pair(user.id, user.role)
    ip, user_agent = _request_meta()
    jwt_service.rotate_session(session, user.id, tokens["token_hash"], tokens["expires_at"], ip, user_agent)
    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }


def logout(user: User | None, refresh_token: str | None) -> bool:
    revoked = False
    if refresh_token:
        revoked = jwt_service.revoke_session_by_token(jwt_service.hash_token(refresh_token))
    ActivityLogger.record("logout", user, details={"session_revoked": revoked})
    return revoked


# ═══════════════════════════════════════════════════════════════
# Password reset
# ═══════════════════════════════════════════════════════════════
def forgot_password(email: str) -> None:
    """Start a reset. Silent for unknown addresses so accounts cannot be enumerated."""
    email = normalize_email(email)
    user = User.query.filter_by(email=email).first()
    if user is None:
        logger.info("Password reset requested for unknown address")
        return

    raw, token_hash = generate_reset_token()
    minutes = current_app.config["RESET_TOKEN_MINUTES"]
    user.reset_token_hash = token_hash
    user.reset_token_expires_at = utcnow() + timedelta(minutes=minutes)
    db.session.commit()

    reset_url = f"{current_app.config.get('CLIENT_URL', '')}/reset-password/{raw}"
    notify_quietly(notify_password_reset, user, reset_url, minutes)
    ActivityLogger.record("password_reset", user, target=TargetResource.of(user), details={"email": email})


def reset_password(token: str, password: str) -> User:
    if not token:
        raise ValidationError("Reset token is required")
    _check_password(password)
    user = User.query.filter_by(reset_token_hash=hash_reset_token(token)).first()
    expires_at = as_utc(user.reset_token_expires_at) if user else None
    if user is None or expires_at is None or expires_at < utcnow():
        raise ValidationError("Invalid or expired reset token", {"token": "invalid"})

    user.password_hash = hash_password(password)
    user.reset_token_hash = None
    user.reset_token_expires_at = None
    user.failed_login_attempts = 0
    user.locked_until = None
    db.session.commit()
    jwt_service.revoke_all_user_sessions(user.id)

    ActivityLogger.record("password_changed", user, details={"via": "reset_token"})
    return user


# ═══════════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════════
def update_profile(user: User, data: dict) -> User:
    values = {}
    for field in PROFILE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "name":
            value = (value or "").strip()
            if not value:
                raise ValidationError("Name cannot be empty", {"name": "required"})
        if field in ("address", "preferences") and not isinstance(value, dict):
            raise ValidationError(f"{field} must be an object", {field: "invalid"})
        values[field] = value
    if not values:
        raise ValidationError("No updatable fields supplied", {"allowed": list(PROFILE_FIELDS)})
    for field, value in values.items():
        setattr(user, field, value)
    changed = list(values)
    db.session.commit()
    ActivityLogger.record("user_updated", user, target=TargetResource.of(user), details={"fields": changed})
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password or "", user.password_hash):
        ActivityLogger.record(
            "password_changed", user, details={"reason": "Current password incorrect"}, status="failure",
        )
        raise AuthenticationError("Current password is incorrect")
    _check_password(new_password, "new_password")
    user.password_hash = hash_password(new_password)
    db.session.commit()
    jwt_service.revoke_all_user_sessions(user.id)
    ActivityLogger.record("password_changed", user, details={"via": "profile"})


# ═══════════════════════════════════════════════════════════════
# Admin user controls
# ═══════════════════════════════════════════════════════════════
def list_users(filters: dict, page: int, per_page: int):
    q = User.query
    if filters.get("role"):
        q = q.filter(User.role == filters["role"])
    if filters.get("status"):
        q = q.filter(User.status == filters["status"])
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(User.name.ilike(like), User.email.ilike(like)))
    return q.order_by(User.created_at.desc(), User.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False,
    )


def set_user_status(actor: User, user_id: int, status: str) -> User:
    if status not in USER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(sorted(USER_STATUSES))}", {"status": status})
    user = get_or_raise(User, user_id, "User")
    if user.id == actor.id and status != "active":
        raise ForbiddenError("Admins cannot deactivate their own account")
    old = user.status
    user.status = status
    db.session.commit()
    if status != "active":
        jwt_service.revoke_all_user_sessions(user.id)
    ActivityLogger.record(
        "user_status_changed", actor,
        target=TargetResource.of(user), details={"old_status": old, "new_status": status},
    )
    return user


def set_user_role(actor: User, user_id: int, role: str) -> User:
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of {', '.join(sorted(USER_ROLES))}", {"role": role})
    user = get_or_raise(User, user_id, "User")
    if user.id == actor.id:
        raise ForbiddenError("Admins cannot change their own role")
    old = user.role
    user.role = role
    db.session.commit()
    jwt_service.revoke_all_user_sessions(user.id)
    ActivityLogger.record(
        "user_role_changed", actor,
        target=TargetResource.of(user), details={"old_role": old, "new_role": role},
    )
    return user


def unlock_user(actor: User, user_id: int) -> User:
    user = get_or_raise(User, user_id, "User")
    user.failed_login_attempts = 0
    user.locked_until = None
    db.session.commit()
    ActivityLogger.record("account_unlocked", actor, target=TargetResource.of(user))
    return user
