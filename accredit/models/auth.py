"""
Auth Models — users and refresh-token sessions.

Roles are a fixed set (admin, institute, reviewer, auditor); a user holds
exactly one.  Reviewer / auditor capability profiles live in
``accredit.models.assessor`` and point back here 1:1.
"""

import uuid
from datetime import datetime, timezone

from accredit.models import db
from accredit.utils.helpers import as_utc, iso

USER_ROLES = frozenset({"admin", "institute", "reviewer", "auditor"})
SELF_REGISTER_ROLES = frozenset({"institute", "reviewer", "auditor"})
USER_STATUSES = frozenset({"pending", "active", "suspended", "inactive"})


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(200), nullable=False, unique=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="institute")
    status = db.Column(db.String(20), nullable=False, default="pending")
    phone = db.Column(db.String(30))
    address = db.Column(db.JSON, default=dict)  # street, city, state, country, zip
    preferences = db.Column(db.JSON, default=dict)  # notifications, language, theme
    institute_id = db.Column(
        db.Integer,
        db.ForeignKey("institutes.id", ondelete="SET NULL", use_alter=True, name="fk_users_institute_id"),
        nullable=True,
    )

    # Lockout
    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime)
    last_login_at = db.Column(db.DateTime)

    # Password reset (SHA-256 of the mailed token)
    reset_token_hash = db.Column(db.String(64))
    reset_token_expires_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_role_status", "role", "status"),
    )

    # Relationships
    sessions = db.relationship("Session", back_populates="user", lazy="dynamic", cascade="all, delete-orphan")
    institute = db.relationship("Institute", foreign_keys=[institute_id])

    @property
    def is_locked(self):
        """True while a lockout window is still running."""
        locked_until = as_utc(self.locked_until)
        return bool(locked_until and locked_until > datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "status": self.status,
            "phone": self.phone,
            "address": self.address or {},
            "preferences": self.preferences or {},
            "institute_id": self.institute_id,
            "is_locked": self.is_locked,
            "failed_login_attempts": self.failed_login_attempts,
            "last_login_at": iso(self.last_login_at),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


# ═══════════════════════════════════════════════════════════════
# 2. SESSIONS (refresh token store)
# ═══════════════════════════════════════════════════════════════
class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash = db.Column(db.String(256), nullable=False)  # SHA-256 of refresh token
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime)

    __table_args__ = (
        db.Index("ix_sessions_user_token", "user_id", "token_hash"),
    )

    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self):
        return datetime.now(timezone.utc) > as_utc(self.expires_at)

    def to_dict(self):
        return {
            "id": self.id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
            "expires_at": iso(self.expires_at),
            "last_used_at": iso(self.last_used_at),
        }
