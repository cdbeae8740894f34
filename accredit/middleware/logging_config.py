"""
Operational logging for the accreditation API.

Separate from the persisted Activity Log (accredit.services.activity_log):
these records go to stderr for operators only.

Every record emitted inside a request is stamped by ``RequestContextFilter``
with the request id and the authenticated user, so service code only passes
the domain fields it knows about:

    logger.info("Review submitted", extra={"document_id": document.id})

Formats:
    development / testing  → one coloured line, context as ``key=value`` tail
    production             → one JSON object per line
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Fields lifted from ``extra=`` / the request filter into formatted output.
REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
DOMAIN_FIELDS = ("user_id", "user_role", "document_id", "action")
CONTEXT_FIELDS = REQUEST_FIELDS + DOMAIN_FIELDS

NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter")


class RequestContextFilter(logging.Filter):
    """Attach request id and current user to records logged during a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = getattr(g, "request_id", None)
        user = getattr(g, "current_user", None)
        if user is not None:
            if getattr(record, "user_id", None) is None:
                record.user_id = user.id
            if getattr(record, "user_role", None) is None:
                record.user_role = user.role
        return True


def context_of(record: logging.LogRecord) -> dict:
    """Context fields present on ``record``, in ``CONTEXT_FIELDS`` order."""
    values = {}
    for key in CONTEXT_FIELDS:
        value = getattr(record, key, None)
        if value is not None and value != "":
            values[key] = value
    return values


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **context_of(record),
        }
        if "duration_ms" in entry:
            entry["duration_ms"] = round(float(entry["duration_ms"]), 1)
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    # Request line fields are already in the message from the timing middleware.
    TAIL_FIELDS = ("request_id",) + DOMAIN_FIELDS

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        context = context_of(record)
        tail = " ".join(f"{key}={context[key]}" for key in self.TAIL_FIELDS if key in context)
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        if tail:
            line += f"  [{tail}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, "json" if is_prod else "readable")
