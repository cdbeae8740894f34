"""
Document Lifecycle Service — upload, role-scoped reads, edits, deletion,
re-upload and the admin-driven assignment transitions.

Every transition writes the new ``status`` and its workflow stage in the
same commit; the activity entry and the notification e-mail follow the
commit and can fail without undoing it.

Transitions owned here:
    uploaded            → assigned_for_review   assign_reviewer (admin)
    assigned_for_review → uploaded              unassign reviewer (admin)
    review_completed    → assigned_for_audit    assign_auditor (admin)
    assigned_for_audit  → review_completed      unassign auditor (admin)
    {uploaded, revision_required, rejected} → uploaded   upload_new_version
    any → any                                   set_document_status (admin override)

Reviewer/auditor starts and submissions live in review_service/audit_service
and reuse ``apply_status`` from this module.

Usage:
    from accredit.services import document_lifecycle

    doc = document_lifecycle.assign_reviewer(admin, document_id=3, reviewer_id=7, due_date=due)
"""

from __future__ import annotations

import logging

from accredit.core.exceptions import NotFoundError, TransitionError, UpstreamFailure, ValidationError
from accredit.models import db
from accredit.models.activity_log import TargetResource
from accredit.models.assessor import AssignmentLedgerEntry, Auditor, Reviewer
from accredit.models.audit import Audit
from accredit.models.document import (
    AUDITOR_ACTIVE_STATUSES,
    DOCUMENT_CATEGORIES,
    DOCUMENT_PRIORITIES,
    DOCUMENT_STATUSES,
    DOCUMENT_TYPES,
    LOCKED_STATUSES,
    REUPLOAD_STATUSES,
    REVIEWER_ACTIVE_STATUSES,
    Document,
    DocumentVersion,
    WorkflowStage,
    stage_for_status,
)
from accredit.models.review import Review
from accredit.services import assignment_ledger
from accredit.services.access import (
    auditor_for_user,
    check_document_access,
    check_document_owner,
    institute_for_user,
    reviewer_for_user,
)
from accredit.services.activity_log import ActivityLogger
from accredit.services.notification_service import (
    notify_assignment,
    notify_quietly,
    notify_status_update,
)
from accredit.services.storage import allowed_extension, get_storage
from accredit.utils.helpers import commit_or_raise, get_or_raise, parse_datetime, utcnow

logger = logging.getLogger(__name__)

DOCUMENT_UPDATE_FIELDS = ("title", "description", "tags", "category", "priority", "final_due_date")
SORT_FIELDS = ("created_at", "updated_at", "title", "status", "priority", "type")

# Institute accreditation status implied by a document entering a status.
INSTITUTE_STATUS_FOR_DOCUMENT = {
    "under_review": "under_review",
    "under_audit": "auditing",
    "approved": "approved",
    "rejected": "rejected",
}

# Stages that are finished the moment they are entered.
INSTANT_STAGES = frozenset({"upload", "review_assignment", "audit_assignment", "final_decision"})


# ── Helpers ──────────────────────────────────────────────────────────────

def _parse_tags(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(tag).strip() for tag in value if str(tag).strip()]


def _choice(value, allowed, field, default=None):
    if value in (None, ""):
        return default
    if value not in allowed:
        raise ValidationError(f"{field} must be one of {', '.join(sorted(allowed))}", {field: value})
    return value


def _record_stage(document, name, actor_id=None, notes=None, completed=False):
    """Append stage ``name`` once; a later call may only complete it."""
    now = utcnow()
    existing = next((s for s in document.stages if s.name == name), None)
    if existing is not None:
        if completed and existing.status != "completed":
            existing.status = "completed"
            existing.completed_at = now
        return existing

    for stage in document.stages:
        if stage.status == "in_progress":
            stage.status = "completed"
            stage.completed_at = now
    done = completed or name in INSTANT_STAGES
    stage = WorkflowStage(
        name=name,
        status="completed" if done else "in_progress",
        started_at=now,
        completed_at=now if done else None,
        assigned_to_id=actor_id,
        notes=notes,
    )
    document.stages.append(stage)
    return stage


def _sync_institute(document, status):
    institute = document.institute
    target = INSTITUTE_STATUS_FOR_DOCUMENT.get(status)
    if institute is None or target is None:
        return
    institute.accreditation_status = target
    if status in ("approved", "rejected"):
        institute.last_audit_date = utcnow()


def apply_status(document, new_status, actor_id=None, notes=None, completed=False):
    """Set ``status``, record its stage and follow it on the institute (no commit)."""
    old = document.status
    document.status = new_status
    _record_stage(document, stage_for_status(new_status), actor_id, notes, completed)
    _sync_institute(document, new_status)
    logger.info(
        "Document status %s → %s", old, new_status,
        extra={"document_id": document.id, "action": "status_change"},
    )
    return old


def complete_stage(document, name, actor_id=None):
    """Mark stage ``name`` completed, recording it first if it is missing."""
    return _record_stage(document, name, actor_id, completed=True)


def institute_contact(document):
    """Recipient for status e-mails: the institute mailbox, else the uploader."""
    if document.institute is not None and document.institute.email:
        return document.institute
    return document.uploaded_by


def _active_query():
    return Document.query_active()


def get_active_document(document_id) -> Document:
    document = get_or_raise(Document, document_id, "Document")
    if document.is_deleted:
        raise NotFoundError("Document", document_id)
    return document


# ═══════════════════════════════════════════════════════════════
# Upload
# ═══════════════════════════════════════════════════════════════
def _validate_file(file):
    if file is None or not getattr(file, "filename", ""):
        raise ValidationError("Please upload a file", {"file": "required"})
    if not allowed_extension(file.filename):
        raise ValidationError("File type not allowed", {"file": file.filename})


def upload_document(user, file, data: dict) -> Document:
    """Institute upload: blob first, then the Document row with its ``upload`` stage."""
    institute = institute_for_user(user)
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Title is required", {"title": "required"})
    doc_type = _choice(data.get("type"), DOCUMENT_TYPES, "type")
    if doc_type is None:
        raise ValidationError("Document type is required", {"type": "required"})
    category = _choice(data.get("category"), DOCUMENT_CATEGORIES, "category", "mandatory")
    priority = _choice(data.get("priority"), DOCUMENT_PRIORITIES, "priority", "medium")
    _validate_file(file)

    storage = get_storage()
    stored = storage.store(file, folder=f"documents/{institute.id}")

    document = Document(
        title=title[:200],
        description=data.get("description"),
        type=doc_type,
        category=category,
        priority=priority,
        tags=_parse_tags(data.get("tags")),
        institute_id=institute.id,
        uploaded_by_id=user.id,
        file_name=stored["id"].rsplit("/", 1)[-1],
        original_name=stored["original_name"],
        file_size=stored["size"],
        mime_type=stored["mime_type"],
        storage_url=stored["url"],
        storage_id=stored["id"],
        checksum=stored["checksum"],
        status="uploaded",
        final_due_date=parse_datetime(data.get("final_due_date")),
    )
    _record_stage(document, "upload", user.id, completed=True)
    db.session.add(document)
    try:
        commit_or_raise("Document")
    except Exception as exc:
        try:
            storage.delete(stored["id"])
        except UpstreamFailure as cleanup_exc:
            logger.warning("Orphaned blob %s: %s", stored["id"], cleanup_exc)
        ActivityLogger.record(
            "document_uploaded", user, details={"title": title}, status="failure", error=exc,
        )
        raise

    logger.info("Document uploaded", extra={"document_id": document.id, "user_id": user.id})
    ActivityLogger.record(
        "document_uploaded", user,
        target=TargetResource.of(document),
        details={"document_type": doc_type, "file_size": document.file_size},
    )
    return document


def upload_new_version(user, document_id, file, reason=None) -> Document:
    """Archive the current file and restart the document at ``uploaded``."""
    document = get_active_document(document_id)
    check_document_owner(user, document)
    if document.status not in REUPLOAD_STATUSES:
        raise TransitionError(
            f"Document {document.id}", "upload_new_version", document.status,
            "a new version can only replace an uploaded, rejected or revision-required file",
        )
    _validate_file(file)
    stored = get_storage().store(file, folder=f"documents/{document.institute_id}")

    document.versions.append(DocumentVersion(
        version=document.version,
        file_name=document.file_name,
        storage_url=document.storage_url,
        storage_id=document.storage_id,
        checksum=document.checksum,
        file_size=document.file_size,
        uploaded_at=document.created_at if document.version == 1 else document.updated_at,
        uploaded_by_id=document.uploaded_by_id,
        reason=(reason or "New version uploaded")[:500],
    ))
    old_status = document.status
    document.version += 1
    document.file_name = stored["id"].rsplit("/", 1)[-1]
    document.original_name = stored["original_name"]
    document.file_size = stored["size"]
    document.mime_type = stored["mime_type"]
    document.storage_url = stored["url"]
    document.storage_id = stored["id"]
    document.checksum = stored["checksum"]
    document.uploaded_by_id = user.id
    document.assigned_reviewer_id = None
    document.assigned_auditor_id = None
    document.reviewer_assigned_at = None
    document.auditor_assigned_at = None
    document.review_due_date = None
    document.audit_due_date = None
    apply_status(document, "uploaded", user.id)
    commit_or_raise("Document", document.id)

    ActivityLogger.record(
        "document_version_uploaded", user,
        target=TargetResource.of(document),
        details={"version": document.version, "previous_status": old_status, "reason": reason},
    )
    return document


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════
def _scoped_query(user):
    q = _active_query()
    if user.role == "institute":
        return q.filter(Document.institute_id == institute_for_user(user).id)
    if user.role == "reviewer":
        return q.filter(Document.assigned_reviewer_id == reviewer_for_user(user).id)
    if user.role == "auditor":
        return q.filter(Document.assigned_auditor_id == auditor_for_user(user).id)
    return q


def list_documents(user, filters: dict, page: int = 1, per_page: int = 10):
    q = _scoped_query(user)
    for key in ("status", "type", "category", "priority"):
        value = filters.get(key)
        if value:
            q = q.filter(getattr(Document, key) == value)
    if user.role == "admin" and filters.get("institute_id"):
        q = q.filter(Document.institute_id == int(filters["institute_id"]))
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(Document.title.ilike(like), Document.description.ilike(like)))

    sort = filters.get("sort") if filters.get("sort") in SORT_FIELDS else "created_at"
    column = getattr(Document, sort)
    order = column.asc() if filters.get("order") == "asc" else column.desc()
    return q.order_by(order, Document.id.desc()).paginate(page=page, per_page=per_page, error_out=False)


def assigned_documents(user, page: int = 1, per_page: int = 10):
    """Open work for the current reviewer or auditor, soonest due first."""
    if user.role == "reviewer":
        profile = reviewer_for_user(user)
        q = _active_query().filter(
            Document.assigned_reviewer_id == profile.id,
            Document.status.in_(REVIEWER_ACTIVE_STATUSES),
        ).order_by(Document.review_due_date.asc())
    elif user.role == "auditor":
        profile = auditor_for_user(user)
        q = _active_query().filter(
            Document.assigned_auditor_id == profile.id,
            Document.status.in_(AUDITOR_ACTIVE_STATUSES),
        ).order_by(Document.audit_due_date.asc())
    else:
        raise ValidationError("Only reviewers and auditors have assigned documents")
    return q.paginate(page=page, per_page=per_page, error_out=False)


def get_document(user, document_id) -> Document:
    document = get_active_document(document_id)
    check_document_access(user, document)
    document.access_count = (document.access_count or 0) + 1
    document.last_accessed_at = utcnow()
    commit_or_raise("Document", document.id)
    return document


def download_document(user, document_id):
    """Returns ``(document, file handle)``; counts the download."""
    document = get_active_document(document_id)
    check_document_access(user, document)
    handle = get_storage().open(document.storage_id)
    document.download_count = (document.download_count or 0) + 1
    document.last_accessed_at = utcnow()
    commit_or_raise("Document", document.id)
    ActivityLogger.record("document_downloaded", user, target=TargetResource.of(document))
    return document, handle


def document_history(user, document_id) -> dict:
    document = get_active_document(document_id)
    check_document_access(user, document)
    reviews = (
        Review.query.filter_by(document_id=document.id)
        .order_by(Review.created_at.desc(), Review.id.desc()).all()
    )
    audits = (
        Audit.query.filter_by(document_id=document.id)
        .order_by(Audit.created_at.desc(), Audit.id.desc()).all()
    )
    return {
        "document": document.to_dict(include_workflow=True),
        "workflow": [s.to_dict() for s in document.stages],
        "versions": [v.to_dict() for v in document.versions],
        "reviews": [r.to_dict() for r in reviews],
        "audits": [a.to_dict() for a in audits],
    }


# ═══════════════════════════════════════════════════════════════
# Edit / delete
# ═══════════════════════════════════════════════════════════════
def update_document(user, document_id, data: dict) -> Document:
    document = get_active_document(document_id)
    check_document_owner(user, document)
    if document.status in LOCKED_STATUSES:
        raise TransitionError(
            f"Document {document.id}", "update", document.status,
            "cannot update a document while it is being processed",
        )

    values = {}
    for field in DOCUMENT_UPDATE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "title":
            value = (value or "").strip()
            if not value:
                raise ValidationError("Title is required", {"title": "required"})
        elif field == "tags":
            value = _parse_tags(value)
        elif field == "category":
            value = _choice(value, DOCUMENT_CATEGORIES, "category", document.category)
        elif field == "priority":
            value = _choice(value, DOCUMENT_PRIORITIES, "priority", document.priority)
        elif field == "final_due_date":
            value = parse_datetime(value)
        values[field] = value

    for field, value in values.items():
        setattr(document, field, value)
    changed = list(values)

    commit_or_raise("Document", document.id)
    ActivityLogger.record(
        "document_updated", user,
        target=TargetResource.of(document), details={"updated_fields": changed},
    )
    return document


def delete_document(user, document_id) -> dict:
    """Physical delete while ``uploaded``; logical delete afterwards."""
    document = get_active_document(document_id)
    check_document_owner(user, document)
    if document.status in LOCKED_STATUSES:
        raise TransitionError(
            f"Document {document.id}", "delete", document.status,
            "cannot delete a document while it is being processed",
        )

    target = TargetResource.of(document)
    physical = document.status == "uploaded" and not _has_workflow_history(document)
    blob_id = document.storage_id
    if physical:
        for version in document.versions:
            _delete_blob(version.storage_id)
        db.session.delete(document)
    else:
        document.soft_delete()
    commit_or_raise("Document", target.id)
    if physical:
        _delete_blob(blob_id)

    ActivityLogger.record(
        "document_deleted", user, target=target,
        details={"document_title": target.name, "physical": physical},
    )
    return {"id": target.id, "physical": physical}


def _has_workflow_history(document) -> bool:
    """Reviews or ledger rows from an earlier cycle pin the row in place."""
    return (
        Review.query.filter_by(document_id=document.id).first() is not None
        or AssignmentLedgerEntry.query.filter_by(document_id=document.id).first() is not None
    )


def _delete_blob(blob_id):
    if not blob_id:
        return
    try:
        get_storage().delete(blob_id)
    except UpstreamFailure as exc:
        logger.warning("Blob delete failed: %s", exc)


# ═══════════════════════════════════════════════════════════════
# Admin transitions
# ═══════════════════════════════════════════════════════════════
def assign_reviewer(actor, document_id, reviewer_id, due_date=None) -> Document:
    document = get_active_document(document_id)
    reviewer = get_or_raise(Reviewer, reviewer_id, "Reviewer")
    if document.status != "uploaded":
        raise TransitionError(
            f"Document {document.id}", "assign_reviewer", document.status,
            "a reviewer can only be assigned to an uploaded document",
        )
    due_date = parse_datetime(due_date)

    assignment_ledger.assign(reviewer, document, due_date)
    document.assigned_reviewer_id = reviewer.id
    document.reviewer_assigned_at = utcnow()
    document.review_due_date = due_date
    apply_status(document, "assigned_for_review", actor.id)
    commit_or_raise("Document", document.id)

    ActivityLogger.record(
        "reviewer_assigned", actor,
        target=TargetResource.of(document),
        details={
            "reviewer_id": reviewer.id,
            "reviewer_name": reviewer.user.name if reviewer.user else None,
            "due_date": due_date.isoformat() if due_date else None,
        },
    )
    if reviewer.user is not None:
        notify_quietly(notify_assignment, reviewer.user, document, "Reviewer", due_date, actor)
    return document


def assign_auditor(actor, document_id, auditor_id, due_date=None) -> Document:
    document = get_active_document(document_id)
    auditor = get_or_raise(Auditor, auditor_id, "Auditor")
    if document.status != "review_completed":
        raise TransitionError(
            f"Document {document.id}", "assign_auditor", document.status,
            "document must be reviewed before assigning an auditor",
        )
    due_date = parse_datetime(due_date)

    assignment_ledger.assign(auditor, document, due_date)
    document.assigned_auditor_id = auditor.id
    document.auditor_assigned_at = utcnow()
    document.audit_due_date = due_date
    apply_status(document, "assigned_for_audit", actor.id)
    commit_or_raise("Document", document.id)

    ActivityLogger.record(
        "auditor_assigned", actor,
        target=TargetResource.of(document),
        details={
            "auditor_id": auditor.id,
            "auditor_name": auditor.user.name if auditor.user else None,
            "due_date": due_date.isoformat() if due_date else None,
        },
    )
    if auditor.user is not None:
        notify_quietly(notify_assignment, auditor.user, document, "Auditor", due_date, actor)
    return document


def unassign(actor, document_id, kind: str) -> Document:
    """Remove the reviewer or auditor before work has started."""
    document = get_active_document(document_id)
    if kind == "reviewer":
        expected, fallback, person = "assigned_for_review", "uploaded", document.assigned_reviewer
    elif kind == "auditor":
        expected, fallback, person = "assigned_for_audit", "review_completed", document.assigned_auditor
    else:
        raise ValidationError("kind must be reviewer or auditor", {"kind": kind})
    if document.status != expected or person is None:
        raise TransitionError(
            f"Document {document.id}", f"unassign_{kind}", document.status,
            f"no pending {kind} assignment to remove",
        )

    assignment_ledger.remove(person, document.id)
    if kind == "reviewer":
        document.assigned_reviewer_id = None
        document.reviewer_assigned_at = None
        document.review_due_date = None
    else:
        document.assigned_auditor_id = None
        document.auditor_assigned_at = None
        document.audit_due_date = None
    document.status = fallback
    commit_or_raise("Document", document.id)

    ActivityLogger.record(
        "assignment_removed", actor,
        target=TargetResource.of(document),
        details={"kind": kind, "person_id": person.id, "status": fallback},
    )
    return document


def set_document_status(actor, document_id, status, notes=None) -> Document:
    """Admin override: bypasses the transition guards."""
    if status not in DOCUMENT_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(sorted(DOCUMENT_STATUSES))}", {"status": status},
        )
    document = get_active_document(document_id)
    old_status = apply_status(document, status, actor.id, notes)
    commit_or_raise("Document", document.id)

    ActivityLogger.record(
        "document_status_changed", actor,
        target=TargetResource.of(document),
        details={"old_status": old_status, "new_status": status, "notes": notes},
    )
    if document.uploaded_by is not None:
        notify_quietly(notify_status_update, document.uploaded_by, document, old_status, status, actor)
    return document
