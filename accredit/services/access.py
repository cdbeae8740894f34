"""
Ownership and visibility checks shared by the workflow services.

Roles decide which endpoints a user may call (``require_role``); these
helpers decide which *records* they may touch once inside.

Usage:
    from accredit.services.access import reviewer_for_user, check_document_access

    reviewer = reviewer_for_user(g.current_user)     # NotFoundError if no profile
    check_document_access(g.current_user, document)  # ForbiddenError if not visible
"""

from accredit.core.exceptions import ForbiddenError, NotFoundError
from accredit.models import db
from accredit.models.assessor import Auditor, Reviewer
from accredit.models.institute import Institute


def institute_for_user(user) -> Institute:
    """Institute administered by ``user`` (linked id first, then administrator)."""
    institute = None
    if user.institute_id:
        institute = db.session.get(Institute, user.institute_id)
    if institute is None:
        institute = Institute.query.filter_by(administrator_id=user.id).first()
    if institute is None:
        raise ForbiddenError("No institute found for this user")
    return institute


def reviewer_for_user(user, required=True):
    reviewer = Reviewer.query.filter_by(user_id=user.id).first()
    if reviewer is None and required:
        raise NotFoundError("Reviewer profile", user.id)
    return reviewer


def auditor_for_user(user, required=True):
    auditor = Auditor.query.filter_by(user_id=user.id).first()
    if auditor is None and required:
        raise NotFoundError("Auditor profile", user.id)
    return auditor


def can_view_document(user, document) -> bool:
    if user.role == "admin":
        return True
    if user.role == "institute":
        return document.uploaded_by_id == user.id or (
            user.institute_id is not None and document.institute_id == user.institute_id
        )
    if user.role == "reviewer":
        reviewer = reviewer_for_user(user, required=False)
        return reviewer is not None and document.assigned_reviewer_id == reviewer.id
    if user.role == "auditor":
        auditor = auditor_for_user(user, required=False)
        return auditor is not None and document.assigned_auditor_id == auditor.id
    return False


def check_document_access(user, document) -> None:
    if not can_view_document(user, document):
        raise ForbiddenError("Access denied to this document")


def check_document_owner(user, document) -> None:
    """Edits and deletes: admins, or the institute user who uploaded it."""
    if user.role != "admin" and document.uploaded_by_id != user.id:
        raise ForbiddenError("Access denied")
