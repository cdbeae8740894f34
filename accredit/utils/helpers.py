"""Shared utility functions used by services and blueprints.

get_or_raise:      primary-key lookup raising NotFoundError
parse_datetime:    lenient ISO / DD.MM.YYYY parsing (None on bad input)
api_ok:            success envelope for blueprint responses
page_args:         page / per_page query parsing with caps
commit_or_raise:   commit translating driver errors into domain errors
round_half_up:     score / percentage rounding
"""
import logging
import math
from datetime import date, datetime, timezone

from flask import jsonify, request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from accredit.core.exceptions import ConflictError, NotFoundError, StaleRecordError
from accredit.models import db

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def iso(value):
    """isoformat() or None — used by every to_dict()."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value.isoformat()


def get_or_raise(model, pk, label=None):
    """Fetch a model instance by primary key or raise NotFoundError."""
    label = label or model.__name__
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(label, pk)
    return obj


def parse_datetime(value):
    """Parse a date/datetime string to an aware UTC datetime.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (midnight UTC)
    - YYYY-MM-DDTHH:MM:SS[+offset|Z]
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(text, "%d.%m.%Y").replace(tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def api_ok(data=None, message: str | None = None, status: int = 200):
    """Return the standard success envelope."""
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def page_args(default_per_page=10, max_per_page=200):
    """Read ``page`` and ``per_page`` (alias ``limit``) from the query string."""
    page = max(1, request.args.get("page", 1, type=int) or 1)
    per_page = request.args.get("per_page", type=int) or request.args.get("limit", type=int)
    per_page = min(max_per_page, max(1, per_page or default_per_page))
    return page, per_page


def pagination_meta(paginated) -> dict:
    return {
        "page": paginated.page,
        "per_page": paginated.per_page,
        "total": paginated.total,
        "pages": paginated.pages,
    }


def commit_or_raise(resource: str = "Record", resource_id=None):
    """Commit the current session, translating failures into domain errors.

    IntegrityError → ConflictError (duplicate / constraint violation)
    StaleDataError → StaleRecordError (row_version mismatch)
    Anything else is rolled back and re-raised.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(resource, "unique", None) from exc
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Stale %s id=%s on commit", resource, resource_id)
        raise StaleRecordError(resource, resource_id) from exc
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        raise


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (``round`` would bank)."""
    return int(math.floor(value + 0.5))
