"""
Email Service — templated outbound mail.

When SMTP is not configured, emails are logged but not sent (dev/test mode).
Every message is recorded in EmailLog.

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    CLIENT_URL      Base URL used for links inside messages
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from accredit.models import db
from accredit.models.notification import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_FOOTER = """
            <hr>
            <p style="color: #6b7280; font-size: 12px;">Accreditation Management System</p>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "document_assignment": {
        "subject": "Document Assignment - {document_title}",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #2563eb;">Document Assignment Notification</h2>
            <p>Hello {name},</p>
            <p>You have been assigned as a <strong>{role}</strong> for the following document:</p>
            <div style="background-color: #f3f4f6; padding: 16px; border-radius: 8px; margin: 16px 0;">
                <h3 style="margin: 0; color: #374151;">{document_title}</h3>
                <p><strong>Due Date:</strong> {due_date}</p>
            </div>
            <a href="{client_url}/dashboard" style="background-color: #2563eb; color: white;
               padding: 12px 24px; text-decoration: none; border-radius: 6px;">Go to Dashboard</a>
        """ + _FOOTER + "        </div>",
    },
    "status_update": {
        "subject": "Status Update - {document_title}",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #2563eb;">Document Status Update</h2>
            <p>Hello {name},</p>
            <p>The status of your document has been updated:</p>
            <div style="background-color: #f3f4f6; padding: 16px; border-radius: 8px; margin: 16px 0;">
                <h3 style="margin: 0; color: #374151;">{document_title}</h3>
                <p><strong>Previous Status:</strong> {old_status}</p>
                <p><strong>Current Status:</strong> {new_status}</p>
            </div>
            <a href="{client_url}/dashboard" style="background-color: #2563eb; color: white;
               padding: 12px 24px; text-decoration: none; border-radius: 6px;">View Details</a>
        """ + _FOOTER + "        </div>",
    },
    "password_reset": {
        "subject": "Password Reset Request",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="color: #2563eb;">Password Reset Request</h2>
            <p>Hello {name},</p>
            <p>You have requested to reset your password. Use the link below:</p>
            <a href="{reset_url}" style="background-color: #2563eb; color: white;
               padding: 12px 24px; text-decoration: none; border-radius: 6px;">Reset Password</a>
            <p><strong>This link will expire in {expires_minutes} minutes.</strong></p>
            <p>If you did not request this password reset, please ignore this email.</p>
        """ + _FOOTER + "        </div>",
    },
}


def humanize_status(status: str | None) -> str:
    """``under_review`` → ``UNDER REVIEW``."""
    return (status or "").replace("_", " ").upper()


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        """Get an email template by name."""
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        category: str = "system",
        document_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status='sent'
        to simulate sending without actual delivery.  The caller owns the
        commit of the returned EmailLog.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            category=category,
            status="queued",
            document_id=document_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        category: str = "system",
        document_id: int | None = None,
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict;
        ``client_url`` is always available.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        values = _SafeDict(client_url=current_app.config.get("CLIENT_URL", ""), **context)
        subject = template["subject"].format_map(values)
        html_body = template["html"].format_map(values)

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            category=category,
            document_id=document_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
