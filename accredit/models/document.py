"""
Document models — the central accreditation entity, its workflow stages and
archived file versions.

Status lifecycle:
    uploaded → assigned_for_review → under_review → review_completed
             → assigned_for_audit → under_audit
             → {approved, rejected, revision_required, audit_completed}

``revision_required`` and ``rejected`` loop back to ``uploaded`` through a
re-upload (new version of the same Document).
"""

from datetime import datetime, timezone

from accredit.models import db
from accredit.models.soft_delete import SoftDeleteMixin
from accredit.utils.helpers import iso

# ── Enumerations ─────────────────────────────────────────────────────────────

DOCUMENT_TYPES = frozenset({
    "accreditation_application", "financial_report", "academic_report",
    "infrastructure_report", "compliance_certificate", "quality_manual", "other",
})
DOCUMENT_CATEGORIES = frozenset({"mandatory", "optional", "supporting"})
DOCUMENT_PRIORITIES = frozenset({"low", "medium", "high", "critical"})

DOCUMENT_STATUSES = frozenset({
    "uploaded", "assigned_for_review", "under_review", "review_completed",
    "assigned_for_audit", "under_audit", "audit_completed",
    "approved", "rejected", "revision_required",
})

STAGE_NAMES = ("upload", "review_assignment", "review", "audit_assignment", "audit", "final_decision")
STAGE_STATUSES = frozenset({"pending", "in_progress", "completed", "skipped"})

# Edits and deletes are refused while a document sits in one of these.
LOCKED_STATUSES = frozenset({"under_review", "under_audit", "approved"})

# Statuses from which the institute may upload a new version.
REUPLOAD_STATUSES = frozenset({"uploaded", "revision_required", "rejected"})

REVIEWER_ACTIVE_STATUSES = ("assigned_for_review", "under_review")
AUDITOR_ACTIVE_STATUSES = ("assigned_for_audit", "under_audit")


# ── Workflow stages ──────────────────────────────────────────────────────────

STATUS_STAGE_MAP = {
    "uploaded": "upload",
    "assigned_for_review": "review_assignment",
    "under_review": "review",
    "review_completed": "review",
    "assigned_for_audit": "audit_assignment",
    "under_audit": "audit",
    "audit_completed": "audit",
    "approved": "final_decision",
    "rejected": "final_decision",
}

OUTCOME_STATUS_MAP = {
    "approved": "approved",
    "approved_with_conditions": "approved",
    "rejected": "rejected",
    "requires_revision": "revision_required",
}


def stage_for_status(status):
    """Workflow stage recorded when a document enters ``status``."""
    return STATUS_STAGE_MAP.get(status, "upload")


def status_for_outcome(outcome):
    """Document status produced by an audit outcome (``audit_completed`` otherwise)."""
    return OUTCOME_STATUS_MAP.get(outcome, "audit_completed")


# ═══════════════════════════════════════════════════════════════
# 1. DOCUMENTS
# ═══════════════════════════════════════════════════════════════
class Document(SoftDeleteMixin, db.Model):
    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    type = db.Column(db.String(40), nullable=False)
    category = db.Column(db.String(20), nullable=False, default="mandatory")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    tags = db.Column(db.JSON, default=list)

    institute_id = db.Column(
        db.Integer, db.ForeignKey("institutes.id", ondelete="CASCADE"), nullable=False
    )
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    # File metadata; the locator is opaque (returned by blob storage)
    file_name = db.Column(db.String(300), nullable=False)
    original_name = db.Column(db.String(300))
    file_size = db.Column(db.Integer, default=0)
    mime_type = db.Column(db.String(120))
    storage_url = db.Column(db.String(500))
    storage_id = db.Column(db.String(300))
    checksum = db.Column(db.String(64))

    status = db.Column(db.String(30), nullable=False, default="uploaded")

    assigned_reviewer_id = db.Column(
        db.Integer, db.ForeignKey("reviewers.id", ondelete="SET NULL"), nullable=True
    )
    assigned_auditor_id = db.Column(
        db.Integer, db.ForeignKey("auditors.id", ondelete="SET NULL"), nullable=True
    )
    reviewer_assigned_at = db.Column(db.DateTime)
    auditor_assigned_at = db.Column(db.DateTime)
    review_due_date = db.Column(db.DateTime)
    audit_due_date = db.Column(db.DateTime)
    final_due_date = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False, default=1)
    access_count = db.Column(db.Integer, nullable=False, default=0)
    download_count = db.Column(db.Integer, nullable=False, default=0)
    last_accessed_at = db.Column(db.DateTime)

    row_version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": row_version}

    __table_args__ = (
        db.Index("ix_documents_institute_status", "institute_id", "status"),
        db.Index("ix_documents_reviewer", "assigned_reviewer_id"),
        db.Index("ix_documents_auditor", "assigned_auditor_id"),
        db.Index("ix_documents_created", "created_at"),
    )

    # Relationships
    institute = db.relationship("Institute", back_populates="documents")
    uploaded_by = db.relationship("User", foreign_keys=[uploaded_by_id])
    assigned_reviewer = db.relationship("Reviewer", foreign_keys=[assigned_reviewer_id])
    assigned_auditor = db.relationship("Auditor", foreign_keys=[assigned_auditor_id])
    stages = db.relationship(
        "WorkflowStage", back_populates="document",
        cascade="all, delete-orphan", order_by="WorkflowStage.id",
    )
    versions = db.relationship(
        "DocumentVersion", back_populates="document",
        cascade="all, delete-orphan", order_by="DocumentVersion.version",
    )

    @property
    def current_stage(self):
        return stage_for_status(self.status)

    def has_stage(self, name):
        return any(s.name == name for s in self.stages)

    def to_dict(self, include_workflow=False):
        d = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "category": self.category,
            "priority": self.priority,
            "tags": self.tags or [],
            "institute_id": self.institute_id,
            "institute_name": self.institute.name if self.institute else None,
            "uploaded_by_id": self.uploaded_by_id,
            "file": {
                "file_name": self.file_name,
                "original_name": self.original_name,
                "file_size": self.file_size,
                "mime_type": self.mime_type,
                "url": self.storage_url,
                "checksum": self.checksum,
            },
            "status": self.status,
            "current_stage": self.current_stage,
            "assigned_reviewer_id": self.assigned_reviewer_id,
            "assigned_auditor_id": self.assigned_auditor_id,
            "assignment_dates": {
                "reviewer_assigned": iso(self.reviewer_assigned_at),
                "auditor_assigned": iso(self.auditor_assigned_at),
            },
            "due_dates": {
                "review": iso(self.review_due_date),
                "audit": iso(self.audit_due_date),
                "final": iso(self.final_due_date),
            },
            "version": self.version,
            "metadata": {
                "access_count": self.access_count,
                "download_count": self.download_count,
                "last_accessed_at": iso(self.last_accessed_at),
            },
            "row_version": self.row_version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_workflow:
            d["workflow"] = {
                "current_stage": self.current_stage,
                "stages": [s.to_dict() for s in self.stages],
            }
            d["previous_versions"] = [v.to_dict() for v in self.versions]
        return d

    def __repr__(self):
        return f"<Document {self.id}: {self.title} [{self.status}]>"


# ═══════════════════════════════════════════════════════════════
# 2. WORKFLOW STAGES
# ═══════════════════════════════════════════════════════════════
class WorkflowStage(db.Model):
    """One named step of a document's workflow, recorded once."""

    __tablename__ = "workflow_stages"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    name = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    notes = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("document_id", "name", name="uq_workflow_stage_document_name"),
    )

    document = db.relationship("Document", back_populates="stages")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "assigned_to_id": self.assigned_to_id,
            "notes": self.notes,
        }


# ═══════════════════════════════════════════════════════════════
# 3. ARCHIVED VERSIONS
# ═══════════════════════════════════════════════════════════════
class DocumentVersion(db.Model):
    __tablename__ = "document_versions"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    version = db.Column(db.Integer, nullable=False)
    file_name = db.Column(db.String(300))
    storage_url = db.Column(db.String(500))
    storage_id = db.Column(db.String(300))
    checksum = db.Column(db.String(64))
    file_size = db.Column(db.Integer)
    uploaded_at = db.Column(db.DateTime)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    reason = db.Column(db.String(500))

    document = db.relationship("Document", back_populates="versions")

    def to_dict(self):
        return {
            "version": self.version,
            "file_name": self.file_name,
            "url": self.storage_url,
            "checksum": self.checksum,
            "file_size": self.file_size,
            "uploaded_at": iso(self.uploaded_at),
            "uploaded_by_id": self.uploaded_by_id,
            "reason": self.reason,
        }
