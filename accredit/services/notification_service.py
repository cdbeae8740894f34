"""
Notification Service — workflow-facing wrappers around EmailService.

Each helper sends one templated message, commits its EmailLog row and
mirrors a ``notification_sent`` activity entry.  A delivery failure is
raised as ``UpstreamFailure``; workflow callers use ``notify_quietly`` so a
failed e-mail never undoes the transition that triggered it.
"""

from __future__ import annotations

import logging

from accredit.core.exceptions import UpstreamFailure
from accredit.models import db
from accredit.models.activity_log import TargetResource
from accredit.services.activity_log import ActivityLogger
from accredit.services.email_service import EmailService, humanize_status

logger = logging.getLogger(__name__)


def _deliver(*, to_email, to_name, template_name, context, category, document=None, actor=None):
    log = EmailService.send_from_template(
        to_email=to_email,
        to_name=to_name,
        template_name=template_name,
        context=context,
        category=category,
        document_id=document.id if document is not None else None,
    )
    db.session.commit()
    if log is None or log.status == "failed":
        reason = log.error_message if log is not None else f"template {template_name} missing"
        raise UpstreamFailure("email", reason or "delivery failed")

    ActivityLogger.record(
        "notification_sent", actor,
        target=TargetResource.of(document) if document is not None else None,
        details={"template": template_name, "recipient": to_email},
    )
    return log


def notify_assignment(user, document, role: str, due_date, actor=None):
    """Tell a reviewer/auditor they were assigned ``document``."""
    return _deliver(
        to_email=user.email,
        to_name=user.name,
        template_name="document_assignment",
        context={
            "name": user.name,
            "document_title": document.title,
            "role": role,
            "due_date": due_date.strftime("%Y-%m-%d") if due_date else "not set",
        },
        category="assignment",
        document=document,
        actor=actor,
    )


def notify_status_update(user, document, old_status: str, new_status: str, actor=None):
    return _deliver(
        to_email=user.email,
        to_name=user.name,
        template_name="status_update",
        context={
            "name": user.name,
            "document_title": document.title,
            "old_status": humanize_status(old_status),
            "new_status": humanize_status(new_status),
        },
        category="status_update",
        document=document,
        actor=actor,
    )


def notify_password_reset(user, reset_url: str, expires_minutes: int):
    return _deliver(
        to_email=user.email,
        to_name=user.name,
        template_name="password_reset",
        context={"name": user.name, "reset_url": reset_url, "expires_minutes": expires_minutes},
        category="password_reset",
        actor=user,
    )


def notify_quietly(fn, *args, **kwargs):
    """Call a ``notify_*`` helper; failures are logged and swallowed."""
    try:
        return fn(*args, **kwargs)
    except UpstreamFailure as exc:
        db.session.rollback()
        logger.warning("Notification %s failed: %s", fn.__name__, exc)
        return None
