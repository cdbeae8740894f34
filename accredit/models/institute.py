"""Institute model — the organisation that owns uploaded documents."""

from datetime import datetime, timezone

from accredit.models import db
from accredit.utils.helpers import iso

INSTITUTE_TYPES = frozenset({"university", "college", "school", "training_center", "other"})
ACCREDITATION_LEVELS = frozenset({"basic", "intermediate", "advanced", "premium"})
INSTITUTE_STATUSES = frozenset({"active", "inactive", "suspended", "pending_approval"})
ACCREDITATION_STATUSES = frozenset({
    "not_started", "in_progress", "under_review", "auditing",
    "approved", "rejected", "expired",
})


class Institute(db.Model):
    __tablename__ = "institutes"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(20), nullable=False, unique=True)
    type = db.Column(db.String(30), nullable=False, default="other")
    accreditation_level = db.Column(db.String(20), default="basic")
    email = db.Column(db.String(200))
    phone = db.Column(db.String(30))
    website = db.Column(db.String(300))
    address = db.Column(db.JSON, default=dict)
    administrator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    status = db.Column(db.String(20), nullable=False, default="pending_approval")
    accreditation_status = db.Column(db.String(20), nullable=False, default="not_started")
    compliance_score = db.Column(db.Integer, default=0)
    last_audit_date = db.Column(db.DateTime)
    next_audit_due = db.Column(db.DateTime)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_institutes_status", "status"),
    )

    administrator = db.relationship("User", foreign_keys=[administrator_id])
    documents = db.relationship("Document", back_populates="institute", lazy="dynamic")

    def to_dict(self, include_counts=False):
        d = {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "type": self.type,
            "accreditation_level": self.accreditation_level,
            "email": self.email,
            "phone": self.phone,
            "website": self.website,
            "address": self.address or {},
            "administrator_id": self.administrator_id,
            "status": self.status,
            "accreditation_status": self.accreditation_status,
            "compliance_score": self.compliance_score,
            "last_audit_date": iso(self.last_audit_date),
            "next_audit_due": iso(self.next_audit_due),
            "notes": self.notes,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_counts:
            d["document_count"] = self.documents.filter_by(deleted_at=None).count()
        return d
