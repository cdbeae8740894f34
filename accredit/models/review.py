"""
Review models — one reviewer's scored assessment of one document version.

``overall_score`` is stored as a column (reports aggregate over it) and is
always the weighted mean of ``review_data["criteria"]``; the service layer
recomputes it whenever criteria change.
"""

from datetime import datetime, timezone

from accredit.models import db
from accredit.utils.helpers import as_utc, iso, round_half_up

REVIEW_STATUSES = frozenset({"draft", "submitted", "under_audit", "approved", "returned_for_revision"})

# A review counts as submitted once it has left draft.
SUBMITTED_REVIEW_STATUSES = ("submitted", "under_audit", "approved", "returned_for_revision")

# Fields a reviewer may patch while the review is a draft.
REVIEW_MUTABLE_FIELDS = ("review_data", "feedback")


class Review(db.Model):
    __tablename__ = "reviews"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    document_version = db.Column(db.Integer, nullable=False, default=1)
    reviewer_id = db.Column(
        db.Integer, db.ForeignKey("reviewers.id", ondelete="CASCADE"), nullable=False
    )
    institute_id = db.Column(db.Integer, db.ForeignKey("institutes.id", ondelete="CASCADE"))

    # criteria / strengths / weaknesses / recommendations
    review_data = db.Column(db.JSON, default=dict)
    overall_score = db.Column(db.Integer)
    feedback = db.Column(db.JSON, default=dict)

    status = db.Column(db.String(30), nullable=False, default="draft")

    started_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    submitted_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    due_date = db.Column(db.DateTime)

    signed = db.Column(db.Boolean, nullable=False, default=False)
    signed_at = db.Column(db.DateTime)
    digital_signature = db.Column(db.String(300))

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
            "document_id", "reviewer_id", "document_version", name="uq_review_document_reviewer_version"
        ),
        db.Index("ix_reviews_reviewer_status", "reviewer_id", "status"),
        db.Index("ix_reviews_status_due", "status", "due_date"),
    )

    document = db.relationship("Document")
    reviewer = db.relationship("Reviewer")
    institute = db.relationship("Institute")
    revisions = db.relationship(
        "ReviewRevision", back_populates="review",
        cascade="all, delete-orphan", order_by="ReviewRevision.version",
    )

    @property
    def criteria(self):
        return (self.review_data or {}).get("criteria") or []

    @property
    def is_submitted(self):
        return self.status in SUBMITTED_REVIEW_STATUSES

    @property
    def completion_percentage(self):
        criteria = self.criteria
        if not criteria:
            return 0
        scored = sum(1 for c in criteria if c.get("score") is not None)
        return round_half_up(scored / len(criteria) * 100)

    @property
    def time_spent_hours(self):
        if not self.started_at or not self.completed_at:
            return None
        delta = as_utc(self.completed_at) - as_utc(self.started_at)
        return round_half_up(delta.total_seconds() / 3600)

    def to_dict(self, include_history=False):
        data = dict(self.review_data or {})
        data["overall_score"] = self.overall_score
        d = {
            "id": self.id,
            "document_id": self.document_id,
            "document_version": self.document_version,
            "reviewer_id": self.reviewer_id,
            "institute_id": self.institute_id,
            "review_data": data,
            "feedback": self.feedback or {},
            "status": self.status,
            "timeline": {
                "started_at": iso(self.started_at),
                "submitted_at": iso(self.submitted_at),
                "completed_at": iso(self.completed_at),
                "due_date": iso(self.due_date),
            },
            "reviewer_signature": {
                "signed": self.signed,
                "signed_at": iso(self.signed_at),
                "digital_signature": self.digital_signature,
            },
            "completion_percentage": self.completion_percentage,
            "time_spent_hours": self.time_spent_hours,
            "row_version": self.row_version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_history:
            d["revision_history"] = [r.to_dict() for r in self.revisions]
        return d


class ReviewRevision(db.Model):
    """Append-only snapshot written on every draft update."""

    __tablename__ = "review_revisions"

    id = db.Column(db.Integer, primary_key=True)
    review_id = db.Column(
        db.Integer, db.ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False
    )
    version = db.Column(db.Integer, nullable=False)
    modified_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    modified_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    changes = db.Column(db.Text)  # JSON-serialised patch
    reason = db.Column(db.String(500))

    review = db.relationship("Review", back_populates="revisions")

    def to_dict(self):
        return {
            "version": self.version,
            "modified_at": iso(self.modified_at),
            "modified_by_id": self.modified_by_id,
            "changes": self.changes,
            "reason": self.reason,
        }
