"""
Audit models — an auditor's validation of a submitted review and the final
accreditation decision for a document version.

``outcome`` / ``justification`` are written only by submission, so they are
present exactly when ``status == "completed"``.  Every mutating operation
appends one ``AuditTrailEntry``.
"""

from datetime import datetime, timezone

from accredit.models import db
from accredit.utils.helpers import as_utc, iso, round_half_up

AUDIT_STATUSES = frozenset({"assigned", "in_progress", "under_review", "completed", "on_hold"})
OPEN_AUDIT_STATUSES = ("assigned", "in_progress", "under_review")

AUDIT_OUTCOMES = frozenset({"approved", "approved_with_conditions", "rejected", "requires_revision"})
COMPLIANCE_LEVELS = frozenset({"fully_compliant", "mostly_compliant", "partially_compliant", "non_compliant"})
FINDING_CATEGORIES = frozenset({"critical", "major", "minor", "observation", "commendation"})
RISK_LEVELS = frozenset({"low", "medium", "high", "critical"})

# Fixed tolerance between reviewer and auditor scores for one criterion.
ACCEPTABLE_VARIANCE = 10

# Admin override only.
AUDIT_OVERRIDE_TRANSITIONS = {
    "in_progress":  ["on_hold"],
    "under_review": ["on_hold"],
    "assigned":     ["on_hold"],
    "on_hold":      ["in_progress"],
}


def empty_audit_data():
    """Seed for a freshly started audit."""
    return {
        "review_validation": {
            "accuracy_score": 0,
            "completeness_score": 0,
            "consistency_score": 0,
            "validation_comments": "",
        },
        "criteria_validation": [],
        "compliance_check": {
            "standards_verification": [],
            "overall_compliance": "partially_compliant",
        },
        "findings": [],
        "risk_assessment": {"risks": [], "overall_risk": None},
    }


class Audit(db.Model):
    __tablename__ = "audits"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    document_version = db.Column(db.Integer, nullable=False, default=1)
    review_id = db.Column(
        db.Integer, db.ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False
    )
    auditor_id = db.Column(
        db.Integer, db.ForeignKey("auditors.id", ondelete="CASCADE"), nullable=False
    )
    institute_id = db.Column(db.Integer, db.ForeignKey("institutes.id", ondelete="CASCADE"))

    audit_data = db.Column(db.JSON, default=empty_audit_data)

    # Final decision
    outcome = db.Column(db.String(40))
    final_score = db.Column(db.Integer)
    justification = db.Column(db.Text)
    decision_details = db.Column(db.JSON, default=dict)  # validity, conditions

    status = db.Column(db.String(20), nullable=False, default="assigned")

    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    started_at = db.Column(db.DateTime)
    submitted_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    due_date = db.Column(db.DateTime)

    quality = db.Column(db.JSON, default=dict)  # thoroughness / accuracy / timeliness 1-5, notes
    attachments = db.Column(db.JSON, default=list)

    signed = db.Column(db.Boolean, nullable=False, default=False)
    signed_at = db.Column(db.DateTime)
    digital_signature = db.Column(db.String(300))
    signature_ip = db.Column(db.String(45))

    row_version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": row_version}

    __table_args__ = (
        db.UniqueConstraint(
            "document_id", "auditor_id", "document_version", name="uq_audit_document_auditor_version"
        ),
        db.Index("ix_audits_auditor_status", "auditor_id", "status"),
        db.Index("ix_audits_status_due", "status", "due_date"),
    )

    document = db.relationship("Document")
    review = db.relationship("Review")
    auditor = db.relationship("Auditor")
    institute = db.relationship("Institute")
    trail = db.relationship(
        "AuditTrailEntry", back_populates="audit",
        cascade="all, delete-orphan", order_by="AuditTrailEntry.id",
    )

    @property
    def overall_audit_score(self):
        validation = (self.audit_data or {}).get("review_validation") or {}
        scores = [
            validation.get("accuracy_score") or 0,
            validation.get("completeness_score") or 0,
            validation.get("consistency_score") or 0,
        ]
        return round_half_up(sum(scores) / 3)

    @property
    def time_spent_hours(self):
        if not self.started_at or not self.completed_at:
            return None
        delta = as_utc(self.completed_at) - as_utc(self.started_at)
        return round_half_up(delta.total_seconds() / 3600)

    def to_dict(self, include_trail=False):
        d = {
            "id": self.id,
            "document_id": self.document_id,
            "document_version": self.document_version,
            "review_id": self.review_id,
            "auditor_id": self.auditor_id,
            "institute_id": self.institute_id,
            "audit_data": self.audit_data or {},
            "final_decision": {
                "outcome": self.outcome,
                "final_score": self.final_score,
                "justification": self.justification,
                **(self.decision_details or {}),
            },
            "status": self.status,
            "timeline": {
                "assigned_at": iso(self.assigned_at),
                "started_at": iso(self.started_at),
                "submitted_at": iso(self.submitted_at),
                "completed_at": iso(self.completed_at),
                "due_date": iso(self.due_date),
            },
            "quality": self.quality or {},
            "attachments": self.attachments or [],
            "auditor_signature": {
                "signed": self.signed,
                "signed_at": iso(self.signed_at),
                "digital_signature": self.digital_signature,
                "signature_ip": self.signature_ip,
            },
            "overall_audit_score": self.overall_audit_score,
            "time_spent_hours": self.time_spent_hours,
            "row_version": self.row_version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_trail:
            d["audit_trail"] = [t.to_dict() for t in self.trail]
        return d


class AuditTrailEntry(db.Model):
    """Per-audit action trail; never updated or deleted."""

    __tablename__ = "audit_trail"

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False
    )
    action = db.Column(db.String(50), nullable=False)
    performed_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    timestamp = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    details = db.Column(db.JSON, default=dict)
    ip = db.Column(db.String(45), default="system")
    user_agent = db.Column(db.String(500), default="system")

    audit = db.relationship("Audit", back_populates="trail")

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "performed_by_id": self.performed_by_id,
            "timestamp": iso(self.timestamp),
            "details": self.details or {},
            "ip": self.ip,
            "user_agent": self.user_agent,
        }
