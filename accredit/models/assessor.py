"""
Reviewer / Auditor capability profiles and their assignment ledger.

Each profile is bound 1:1 to a User of the matching role and carries a
bounded worklist:

    workload_current   open assignments (never below zero)
    workload_maximum   capacity checked when a new assignment is accepted
    availability       available | busy | unavailable

The ledger itself (``AssignmentLedgerEntry``) holds one row per
(person, document) assignment; reviewer and auditor rows share the table and
are told apart by ``kind``.
"""

from datetime import datetime, timezone

from sqlalchemy import and_
from sqlalchemy.orm import foreign

from accredit.models import db
from accredit.utils.helpers import iso, round_half_up

AVAILABILITY_VALUES = frozenset({"available", "busy", "unavailable"})
LEDGER_STATUSES = frozenset({"assigned", "in_progress", "completed", "removed"})
OPEN_LEDGER_STATUSES = ("assigned", "in_progress")

REVIEWER_SPECIALIZATIONS = frozenset({
    "academic", "technical", "administrative", "financial", "infrastructure", "quality_assurance",
})
AUDITOR_SPECIALIZATIONS = frozenset({
    "financial", "academic", "compliance", "quality_assurance", "infrastructure", "governance",
})


class WorkloadMixin:
    """Capacity columns and derived predicates shared by both profiles."""

    workload_current = db.Column(db.Integer, nullable=False, default=0)
    workload_maximum = db.Column(db.Integer, nullable=False, default=10)
    availability = db.Column(db.String(20), nullable=False, default="available")

    @property
    def is_available(self):
        return self.availability == "available" and (self.workload_current or 0) < (self.workload_maximum or 0)

    @property
    def workload_percentage(self):
        if not self.workload_maximum:
            return 100
        return round_half_up((self.workload_current or 0) / self.workload_maximum * 100)

    def workload_dict(self):
        return {
            "current": self.workload_current,
            "maximum": self.workload_maximum,
            "percentage": self.workload_percentage,
        }


# ═══════════════════════════════════════════════════════════════
# 1. REVIEWERS
# ═══════════════════════════════════════════════════════════════
class Reviewer(WorkloadMixin, db.Model):
    __tablename__ = "reviewers"

    kind = "reviewer"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    specialization = db.Column(db.JSON, default=list)
    qualifications = db.Column(db.JSON, default=list)
    certifications = db.Column(db.JSON, default=list)
    experience = db.Column(db.Integer, nullable=False, default=0)
    preferences = db.Column(db.JSON, default=dict)

    completed_reviews = db.Column(db.Integer, nullable=False, default=0)
    average_review_time = db.Column(db.Float, nullable=False, default=0.0)  # hours
    rating = db.Column(db.Float, default=5.0)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_reviewers_availability", "availability"),
    )

    user = db.relationship("User")
    ledger = db.relationship(
        "AssignmentLedgerEntry",
        primaryjoin=lambda: and_(
            foreign(AssignmentLedgerEntry.person_id) == Reviewer.id,
            AssignmentLedgerEntry.kind == "reviewer",
        ),
        viewonly=True,
        lazy="dynamic",
        order_by=lambda: AssignmentLedgerEntry.id,
    )

    @property
    def completed_count(self):
        return self.completed_reviews

    @property
    def average_time(self):
        return self.average_review_time

    def to_dict(self, include_ledger=False):
        d = {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.user.name if self.user else None,
            "email": self.user.email if self.user else None,
            "specialization": self.specialization or [],
            "qualifications": self.qualifications or [],
            "certifications": self.certifications or [],
            "experience": self.experience,
            "preferences": self.preferences or {},
            "workload": self.workload_dict(),
            "availability": self.availability,
            "is_available": self.is_available,
            "completed_reviews": self.completed_reviews,
            "average_review_time": self.average_review_time,
            "rating": self.rating,
            "created_at": iso(self.created_at),
        }
        if include_ledger:
            d["assigned_documents"] = [e.to_dict() for e in self.ledger]
        return d


# ═══════════════════════════════════════════════════════════════
# 2. AUDITORS
# ═══════════════════════════════════════════════════════════════
class Auditor(WorkloadMixin, db.Model):
    __tablename__ = "auditors"

    kind = "auditor"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    license_number = db.Column(db.String(60), nullable=False, unique=True)
    specialization = db.Column(db.JSON, default=list)
    qualifications = db.Column(db.JSON, default=list)
    experience = db.Column(db.Integer, nullable=False, default=0)
    preferences = db.Column(db.JSON, default=dict)

    completed_audits = db.Column(db.Integer, nullable=False, default=0)
    average_audit_time = db.Column(db.Float, nullable=False, default=0.0)  # hours
    rating = db.Column(db.Float, default=5.0)

    # Performance (0-100)
    accuracy = db.Column(db.Integer, nullable=False, default=100)
    efficiency = db.Column(db.Integer, nullable=False, default=100)
    consistency_score = db.Column(db.Integer, nullable=False, default=100)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_auditors_availability", "availability"),
    )

    user = db.relationship("User")
    ledger = db.relationship(
        "AssignmentLedgerEntry",
        primaryjoin=lambda: and_(
            foreign(AssignmentLedgerEntry.person_id) == Auditor.id,
            AssignmentLedgerEntry.kind == "auditor",
        ),
        viewonly=True,
        lazy="dynamic",
        order_by=lambda: AssignmentLedgerEntry.id,
    )
    history = db.relationship(
        "AuditorHistoryEntry", back_populates="auditor",
        cascade="all, delete-orphan", order_by="AuditorHistoryEntry.id",
    )

    @property
    def overall_performance(self):
        return round_half_up((self.accuracy + self.efficiency + self.consistency_score) / 3)

    @property
    def completed_count(self):
        return self.completed_audits

    @property
    def average_time(self):
        return self.average_audit_time

    def to_dict(self, include_ledger=False):
        d = {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.user.name if self.user else None,
            "email": self.user.email if self.user else None,
            "license_number": self.license_number,
            "specialization": self.specialization or [],
            "qualifications": self.qualifications or [],
            "experience": self.experience,
            "preferences": self.preferences or {},
            "workload": self.workload_dict(),
            "availability": self.availability,
            "is_available": self.is_available,
            "completed_audits": self.completed_audits,
            "average_audit_time": self.average_audit_time,
            "rating": self.rating,
            "performance": {
                "accuracy": self.accuracy,
                "efficiency": self.efficiency,
                "consistency_score": self.consistency_score,
                "overall": self.overall_performance,
            },
            "created_at": iso(self.created_at),
        }
        if include_ledger:
            d["assigned_documents"] = [e.to_dict() for e in self.ledger]
            d["audit_history"] = [h.to_dict() for h in self.history]
        return d


# ═══════════════════════════════════════════════════════════════
# 3. ASSIGNMENT LEDGER
# ═══════════════════════════════════════════════════════════════
class AssignmentLedgerEntry(db.Model):
    """One document on a reviewer's or auditor's worklist."""

    __tablename__ = "assignment_ledger"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(10), nullable=False)  # reviewer | auditor
    person_id = db.Column(db.Integer, nullable=False)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    review_id = db.Column(db.Integer, db.ForeignKey("reviews.id", ondelete="SET NULL"))
    status = db.Column(db.String(20), nullable=False, default="assigned")
    priority = db.Column(db.String(20), default="medium")
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    due_date = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.Index("ix_ledger_person", "kind", "person_id", "status"),
        db.Index("ix_ledger_document", "document_id"),
    )

    document = db.relationship("Document")

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "person_id": self.person_id,
            "document_id": self.document_id,
            "document_title": self.document.title if self.document else None,
            "review_id": self.review_id,
            "status": self.status,
            "priority": self.priority,
            "assigned_at": iso(self.assigned_at),
            "due_date": iso(self.due_date),
            "completed_at": iso(self.completed_at),
        }


class AuditorHistoryEntry(db.Model):
    """Outcome of a completed audit, kept on the auditor's profile."""

    __tablename__ = "auditor_history"

    id = db.Column(db.Integer, primary_key=True)
    auditor_id = db.Column(
        db.Integer, db.ForeignKey("auditors.id", ondelete="CASCADE"), nullable=False
    )
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id", ondelete="SET NULL"))
    institute_id = db.Column(db.Integer, db.ForeignKey("institutes.id", ondelete="SET NULL"))
    outcome = db.Column(db.String(40))
    score = db.Column(db.Integer, default=0)
    completed_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    auditor = db.relationship("Auditor", back_populates="history")

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "institute_id": self.institute_id,
            "outcome": self.outcome,
            "score": self.score,
            "completed_at": iso(self.completed_at),
        }
