"""Outbound e-mail log; every message the platform sends is recorded here."""

from datetime import datetime, timezone

from accredit.models import db
from accredit.utils.helpers import iso


class EmailLog(db.Model):
    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(150), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True)
    category = db.Column(db.String(30), default="system")  # assignment, status_update, password_reset
    status = db.Column(db.String(20), default="queued")  # queued, sent, failed
    error_message = db.Column(db.Text, nullable=True)

    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="SET NULL"), nullable=True, index=True
    )

    sent_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "category": self.category,
            "status": self.status,
            "error_message": self.error_message,
            "document_id": self.document_id,
            "sent_at": iso(self.sent_at),
            "created_at": iso(self.created_at),
        }
