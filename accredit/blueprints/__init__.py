"""
Accreditation Management Platform
Blueprint registry.
"""

from accredit.utils.helpers import pagination_meta


def paginated_payload(paginated, key, serialize=None):
    """Shape a Flask-SQLAlchemy page as ``{key: [...], "pagination": {...}}``.

    Args:
        paginated: result of ``query.paginate(...)``.
        key: name of the list in the response body.
        serialize: per-item serializer; defaults to ``item.to_dict()``.
    """
    serialize = serialize or (lambda item: item.to_dict())
    return {
        key: [serialize(item) for item in paginated.items],
        "pagination": pagination_meta(paginated),
    }
