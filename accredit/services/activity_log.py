"""
Activity Log service — best-effort recording plus the read/maintenance side
(listing, per-user view, rolling summary, export, cleanup).

Recording never raises: ``ActivityLogger.record`` commits on its own after
the workflow has committed, and a failed write is rolled back and reported
to the operator log only.

Usage:
    from accredit.services.activity_log import ActivityLogger

    ActivityLogger.record(
        "document_uploaded", user,
        target=TargetResource.of(document),
        details={"file_size": 1024},
    )
"""

from __future__ import annotations

import logging
import secrets
from collections import Counter
from datetime import timedelta

from flask import g, has_request_context, request
from sqlalchemy import func

from accredit.core.exceptions import ValidationError
from accredit.models import db
from accredit.models.activity_log import (
    ACTIVITY_ACTIONS,
    ENTRY_STATUSES,
    RETAINED_SEVERITIES,
    SEVERITIES,
    ActivityLog,
    TargetResource,
    category_for,
    severity_for,
)
from accredit.models.auth import User
from accredit.utils.helpers import as_utc, pagination_meta, parse_datetime, utcnow

logger = logging.getLogger(__name__)

SUMMARY_TIMEFRAMES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}

EXPORT_FORMATS = ("csv", "json", "xlsx")

# Filter keys accepted by listing and export.
FILTER_FIELDS = ("category", "action", "severity", "status", "user_id")


# ── User-agent / client address parsing ──────────────────────────────────

def device_from_user_agent(user_agent: str | None) -> str:
    if not user_agent:
        return "unknown"
    if any(token in user_agent for token in ("Mobile", "Android", "iPhone", "iPad")):
        return "tablet" if "iPad" in user_agent else "mobile"
    return "desktop"


def browser_from_user_agent(user_agent: str | None) -> str:
    if not user_agent:
        return "unknown"
    # Order matters: Edge and Chrome UAs also contain "Safari".
    for token in ("Chrome", "Firefox", "Safari", "Edge"):
        if token in user_agent:
            return token
    return "unknown"


def os_from_user_agent(user_agent: str | None) -> str:
    if not user_agent:
        return "unknown"
    for token, name in (("Windows", "Windows"), ("Mac", "macOS"), ("Linux", "Linux"),
                        ("Android", "Android"), ("iOS", "iOS")):
        if token in user_agent:
            return name
    return "unknown"


def client_ip(req=None) -> str:
    """Socket address, then X-Forwarded-For (first hop), then X-Real-IP."""
    if req is None:
        if not has_request_context():
            return "unknown"
        req = request
    if req.remote_addr:
        return req.remote_addr
    forwarded = req.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return req.headers.get("X-Real-IP") or "unknown"


def _actor_id(actor) -> int | None:
    if actor is None:
        return None
    if isinstance(actor, int):
        return actor
    if isinstance(actor, dict):
        return actor.get("id")
    return getattr(actor, "id", None)


# ═══════════════════════════════════════════════════════════════════════════
#  Recording
# ═══════════════════════════════════════════════════════════════════════════

class ActivityLogger:
    """Writes ActivityLog rows. All methods are safe to call from any layer."""

    @staticmethod
    def build(
        action: str,
        actor=None,
        *,
        details: dict | None = None,
        target: TargetResource | None = None,
        severity: str | None = None,
        status: str | None = None,
        error: BaseException | None = None,
        tags: list[str] | None = None,
        duration_ms: int | None = None,
    ) -> ActivityLog:
        """Create an unsaved entry.

        Actions outside ``ACTIVITY_ACTIONS`` are stored with the default
        category and severity (``system`` / ``low``); an empty action raises
        ValueError.
        """
        action = str(getattr(action, "value", action) or "").strip()
        if not action:
            raise ValueError("Activity action is required")
        if action not in ACTIVITY_ACTIONS:
            logger.warning("Recording unlisted activity action %r with default category", action)
        action = action[:40]

        entry = ActivityLog(
            user_id=_actor_id(actor),
            action=action,
            category=category_for(action),
            severity=severity if severity in SEVERITIES else severity_for(action),
            status=status if status in ENTRY_STATUSES else "success",
            details=details or {},
            tags=list(tags or []),
            duration_ms=duration_ms or 0,
        )
        if target is not None:
            entry.target_type = target.type
            entry.target_id = target.id
            entry.target_name = (target.name or "")[:300] or None
        if error is not None:
            entry.error_message = str(error)[:2000] or type(error).__name__
            entry.error_code = str(getattr(error, "code", None) or type(error).__name__)[:60]
            entry.status = "failure"

        if has_request_context():
            user_agent = request.headers.get("User-Agent") or "Unknown"
            entry.ip = client_ip()
            entry.user_agent = user_agent[:500]
            entry.device = device_from_user_agent(user_agent)
            entry.browser = browser_from_user_agent(user_agent)
            entry.os = os_from_user_agent(user_agent)
            entry.session_id = request.headers.get("X-Session-ID")
            entry.correlation_id = (
                request.headers.get("X-Correlation-ID")
                or getattr(g, "request_id", None)
                or secrets.token_hex(8)
            )
        else:
            entry.ip = "system"
            entry.user_agent = "system"
            entry.correlation_id = secrets.token_hex(8)
        return entry

    @classmethod
    def record(cls, action: str, actor=None, **kwargs) -> ActivityLog | None:
        """Persist one entry in its own commit; returns None on failure."""
        try:
            entry = cls.build(action, actor, **kwargs)
            db.session.add(entry)
            db.session.commit()
            return entry
        except Exception:
            db.session.rollback()
            logger.warning("Activity log write failed for action=%s", action, exc_info=True)
            return None


# ═══════════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════════

def _filtered_query(filters: dict):
    q = ActivityLog.query
    for key in FILTER_FIELDS:
        value = filters.get(key)
        if value not in (None, ""):
            q = q.filter(getattr(ActivityLog, key) == value)

    start = parse_datetime(filters.get("start_date"))
    end = parse_datetime(filters.get("end_date"))
    if start:
        q = q.filter(ActivityLog.created_at >= start)
    if end:
        q = q.filter(ActivityLog.created_at <= end)

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(
            ActivityLog.action.ilike(like),
            ActivityLog.ip.ilike(like),
            db.cast(ActivityLog.details, db.String).ilike(like),
        ))
    return q


def list_logs(filters: dict, page: int = 1, per_page: int = 50) -> dict:
    """Filtered, newest-first page plus per-category counts for the same filter."""
    q = _filtered_query(filters)
    paginated = q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False,
    )
    stats = (
        q.with_entities(ActivityLog.category, func.count(ActivityLog.id))
        .group_by(ActivityLog.category)
        .all()
    )
    return {
        "logs": [entry.to_dict() for entry in paginated.items],
        "statistics": [{"category": c, "count": n} for c, n in stats],
        "pagination": pagination_meta(paginated),
    }


def user_logs(user_id: int, filters: dict, page: int = 1, per_page: int = 30) -> dict:
    q = _filtered_query({**filters, "user_id": user_id})
    paginated = q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False,
    )
    stats = (
        db.session.query(ActivityLog.action, ActivityLog.status, func.count(ActivityLog.id))
        .filter(ActivityLog.user_id == user_id)
        .group_by(ActivityLog.action, ActivityLog.status)
        .all()
    )
    return {
        "logs": [entry.to_dict() for entry in paginated.items],
        "statistics": [{"action": a, "status": s, "count": n} for a, s, n in stats],
        "pagination": pagination_meta(paginated),
    }


def summary(timeframe: str = "24h") -> dict:
    """Rolling-window activity summary; unknown timeframes fall back to 24h."""
    if timeframe not in SUMMARY_TIMEFRAMES:
        timeframe = "24h"
    now = utcnow()
    since = now - SUMMARY_TIMEFRAMES[timeframe]
    window = ActivityLog.query.filter(ActivityLog.created_at >= since)

    category_counts = (
        window.with_entities(ActivityLog.category, func.count(ActivityLog.id))
        .group_by(ActivityLog.category).all()
    )
    count_col = func.count(ActivityLog.id)
    top_actions = (
        window.with_entities(ActivityLog.action, count_col)
        .group_by(ActivityLog.action).order_by(count_col.desc()).limit(10).all()
    )
    failed_actions = (
        window.filter(ActivityLog.status == "failure")
        .with_entities(ActivityLog.action, count_col)
        .group_by(ActivityLog.action).order_by(count_col.desc()).all()
    )
    active_rows = (
        window.filter(ActivityLog.user_id.isnot(None))
        .with_entities(ActivityLog.user_id, count_col)
        .group_by(ActivityLog.user_id).order_by(count_col.desc()).limit(10).all()
    )
    users = {u.id: u for u in User.query.filter(User.id.in_([uid for uid, _ in active_rows])).all()}

    # Hourly histogram is always the last 24 hours.
    hourly = Counter()
    day_ago = now - timedelta(hours=24)
    for (created_at,) in (
        db.session.query(ActivityLog.created_at).filter(ActivityLog.created_at >= day_ago).all()
    ):
        ts = as_utc(created_at)
        hourly[(ts.strftime("%Y-%m-%d"), ts.hour)] += 1

    return {
        "timeframe": timeframe,
        "summary": {
            "total_logs": sum(n for _, n in category_counts),
            "category_counts": [{"category": c, "count": n} for c, n in category_counts],
            "top_actions": [{"action": a, "count": n} for a, n in top_actions],
            "failed_actions": [{"action": a, "count": n} for a, n in failed_actions],
            "active_users": [
                {
                    "user_id": uid,
                    "name": users[uid].name if uid in users else None,
                    "email": users[uid].email if uid in users else None,
                    "role": users[uid].role if uid in users else None,
                    "count": n,
                }
                for uid, n in active_rows
            ],
            "hourly_activity": [
                {"date": date, "hour": hour, "count": hourly[(date, hour)]}
                for date, hour in sorted(hourly)
            ],
        },
    }


def export_logs(fmt: str, filters: dict) -> tuple[bytes | str, str, str]:
    """Return ``(content, mimetype, filename)`` for the requested format."""
    from accredit.services import export_service

    fmt = (fmt or "json").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"format must be one of {', '.join(EXPORT_FORMATS)}", {"format": fmt})

    entries = _filtered_query(filters).order_by(ActivityLog.created_at.desc()).all()
    if fmt == "csv":
        return export_service.activity_logs_csv(entries), "text/csv", "activity-logs.csv"
    if fmt == "xlsx":
        return (
            export_service.activity_logs_xlsx(entries),
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "activity-logs.xlsx",
        )
    return export_service.activity_logs_json(entries), "application/json", "activity-logs.json"


# ═══════════════════════════════════════════════════════════════════════════
#  Retention
# ═══════════════════════════════════════════════════════════════════════════

def cleanup(days: int) -> dict:
    """Delete entries older than ``days`` except critical/high severity."""
    try:
        days = int(days)
    except (TypeError, ValueError) as exc:
        raise ValidationError("days must be an integer", {"days": days}) from exc
    if days < 1:
        raise ValidationError("days must be at least 1", {"days": days})

    cutoff = utcnow() - timedelta(days=days)
    deleted = (
        ActivityLog.query
        .filter(ActivityLog.created_at < cutoff, ActivityLog.severity.notin_(RETAINED_SEVERITIES))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    logger.info("Activity log cleanup: deleted=%d cutoff=%s", deleted, cutoff.isoformat())
    return {"deleted_count": deleted, "cutoff_date": cutoff.isoformat(), "days": days}
