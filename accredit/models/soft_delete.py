"""
Soft delete mixin for documents that have already entered the workflow.

Documents still in ``uploaded`` are removed physically; anything further
along keeps its row (reviews and audits reference it) and is only hidden.

Usage:
    class Document(SoftDeleteMixin, db.Model):
        ...

    doc.soft_delete()
    Document.query_active().filter_by(institute_id=3)
"""

from datetime import datetime, timezone

from accredit.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime, nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))
