"""
Activity Log — system-wide, append-only record of security and workflow
actions.  Independent of the per-audit ``AuditTrailEntry`` rows.

``ActivityAction`` lists the actions the platform emits; category and default
severity are looked up from two read-only tables, and any action missing from
them (including one outside ``ActivityAction``) falls back to ``system`` / ``low``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType

from accredit.models import db
from accredit.utils.helpers import iso


class ActivityAction(str, Enum):
    # authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGED = "password_changed"
    # documents
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_UPDATED = "document_updated"
    DOCUMENT_DELETED = "document_deleted"
    DOCUMENT_DOWNLOADED = "document_downloaded"
    DOCUMENT_STATUS_CHANGED = "document_status_changed"
    DOCUMENT_VERSION_UPLOADED = "document_version_uploaded"
    # assignment
    REVIEWER_ASSIGNED = "reviewer_assigned"
    AUDITOR_ASSIGNED = "auditor_assigned"
    ASSIGNMENT_REMOVED = "assignment_removed"
    # review / audit
    REVIEW_STARTED = "review_started"
    REVIEW_UPDATED = "review_updated"
    REVIEW_SUBMITTED = "review_submitted"
    AUDIT_STARTED = "audit_started"
    AUDIT_UPDATED = "audit_updated"
    AUDIT_COMPLETED = "audit_completed"
    AUDIT_STATUS_CHANGED = "audit_status_changed"
    # admin
    INSTITUTE_CREATED = "institute_created"
    INSTITUTE_UPDATED = "institute_updated"
    INSTITUTE_STATUS_CHANGED = "institute_status_changed"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_STATUS_CHANGED = "user_status_changed"
    USER_ROLE_CHANGED = "user_role_changed"
    REVIEWER_CREATED = "reviewer_created"
    REVIEWER_UPDATED = "reviewer_updated"
    AUDITOR_CREATED = "auditor_created"
    AUDITOR_UPDATED = "auditor_updated"
    # security
    AUTHORIZATION_FAILED = "authorization_failed"
    SECURITY_ALERT = "security_alert"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    # system
    NOTIFICATION_SENT = "notification_sent"
    REPORT_GENERATED = "report_generated"
    SYSTEM_BACKUP = "system_backup"
    DATA_EXPORT = "data_export"
    LOGS_ACCESSED = "logs_accessed"
    LOGS_CLEANED = "logs_cleaned"
    API_REQUEST = "api_request"
    SYSTEM_ERROR = "system_error"


ACTIVITY_ACTIONS = frozenset(a.value for a in ActivityAction)

CATEGORIES = ("authentication", "authorization", "document", "review", "audit", "admin", "security", "system")
SEVERITIES = ("low", "medium", "high", "critical")
ENTRY_STATUSES = ("success", "failure", "warning", "info")
TARGET_TYPES = frozenset({"User", "Institute", "Document", "Review", "Audit", "Reviewer", "Auditor"})

# Kept by age-based cleanup regardless of the window.
RETAINED_SEVERITIES = ("critical", "high")

DEFAULT_CATEGORY = "system"
DEFAULT_SEVERITY = "low"

ACTION_CATEGORY = MappingProxyType({
    "login": "authentication",
    "logout": "authentication",
    "login_failed": "authentication",
    "password_reset": "authentication",
    "password_changed": "authentication",
    "document_uploaded": "document",
    "document_updated": "document",
    "document_deleted": "document",
    "document_downloaded": "document",
    "document_status_changed": "document",
    "document_version_uploaded": "document",
    "reviewer_assigned": "admin",
    "auditor_assigned": "admin",
    "assignment_removed": "admin",
    "review_started": "review",
    "review_updated": "review",
    "review_submitted": "review",
    "audit_started": "audit",
    "audit_updated": "audit",
    "audit_completed": "audit",
    "audit_status_changed": "audit",
    "institute_created": "admin",
    "institute_updated": "admin",
    "institute_status_changed": "admin",
    "user_created": "admin",
    "user_updated": "admin",
    "user_status_changed": "admin",
    "user_role_changed": "admin",
    "reviewer_created": "admin",
    "reviewer_updated": "admin",
    "auditor_created": "admin",
    "auditor_updated": "admin",
    "authorization_failed": "authorization",
    "account_locked": "security",
    "account_unlocked": "security",
    "security_alert": "security",
})

ACTION_SEVERITY = MappingProxyType({
    "login_failed": "high",
    "account_locked": "critical",
    "security_alert": "critical",
    "password_reset": "medium",
    "user_role_changed": "high",
    "document_deleted": "high",
    "audit_completed": "medium",
    "review_submitted": "medium",
    "authorization_failed": "medium",
    "system_error": "high",
    "logs_cleaned": "high",
})


def category_for(action: str) -> str:
    return ACTION_CATEGORY.get(action, DEFAULT_CATEGORY)


def severity_for(action: str) -> str:
    return ACTION_SEVERITY.get(action, DEFAULT_SEVERITY)


@dataclass(frozen=True)
class TargetResource:
    """Typed reference to the entity an activity entry is about."""

    type: str
    id: int | None
    name: str | None = None

    def __post_init__(self):
        if self.type not in TARGET_TYPES:
            raise ValueError(f"Unknown target resource type: {self.type}")

    @classmethod
    def of(cls, obj, name: str | None = None) -> "TargetResource":
        """Build a reference from a model instance."""
        label = name
        if label is None:
            label = getattr(obj, "title", None) or getattr(obj, "name", None) or getattr(obj, "email", None)
        return cls(type=type(obj).__name__, id=obj.id, name=label)

    def to_dict(self) -> dict:
        return {"type": self.type, "id": self.id, "name": self.name}


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = db.Column(db.String(40), nullable=False)
    category = db.Column(db.String(20), nullable=False, default=DEFAULT_CATEGORY)
    severity = db.Column(db.String(10), nullable=False, default=DEFAULT_SEVERITY)

    target_type = db.Column(db.String(20))
    target_id = db.Column(db.Integer)
    target_name = db.Column(db.String(300))

    details = db.Column(db.JSON, default=dict)

    ip = db.Column(db.String(45), nullable=False, default="unknown")
    user_agent = db.Column(db.String(500), nullable=False, default="Unknown")
    device = db.Column(db.String(10), default="unknown")
    browser = db.Column(db.String(20), default="unknown")
    os = db.Column(db.String(20), default="unknown")

    status = db.Column(db.String(10), nullable=False, default="success")
    error_message = db.Column(db.Text)
    error_code = db.Column(db.String(60))
    duration_ms = db.Column(db.Integer, default=0)
    session_id = db.Column(db.String(64))
    correlation_id = db.Column(db.String(64))
    tags = db.Column(db.JSON, default=list)

    created_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_activity_logs_user_created", "user_id", "created_at"),
        db.Index("ix_activity_logs_category_created", "category", "created_at"),
        db.Index("ix_activity_logs_action_created", "action", "created_at"),
        db.Index("ix_activity_logs_severity", "severity"),
        db.Index("ix_activity_logs_target", "target_type", "target_id"),
    )

    user = db.relationship("User")

    @property
    def target(self) -> TargetResource | None:
        if not self.target_type:
            return None
        return TargetResource(self.target_type, self.target_id, self.target_name)

    def to_dict(self):
        return {
            "id": self.id,
            "user": (
                {"id": self.user.id, "name": self.user.name, "email": self.user.email, "role": self.user.role}
                if self.user else None
            ),
            "action": self.action,
            "category": self.category,
            "severity": self.severity,
            "target_resource": self.target.to_dict() if self.target else None,
            "details": self.details or {},
            "metadata": {
                "ip": self.ip,
                "user_agent": self.user_agent,
                "device": self.device,
                "browser": self.browser,
                "os": self.os,
            },
            "status": self.status,
            "error_info": (
                {"message": self.error_message, "code": self.error_code} if self.error_message else None
            ),
            "duration_ms": self.duration_ms,
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
            "tags": self.tags or [],
            "created_at": iso(self.created_at),
        }
