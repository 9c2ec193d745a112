"""
CRM Platform
Blueprint registry and shared request helpers.
"""

from flask import g, request

DEFAULT_LIMIT = 50
MAX_LIMIT = 500


def page_params(default_limit=DEFAULT_LIMIT, max_limit=MAX_LIMIT):
    """Read skip/limit pagination from the query string.

    Query params:
        limit       — max items (default 50, capped at max_limit)
        skip/offset — starting position (default 0)

    Returns:
        (skip, limit)
    """
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        skip = max(int(request.args.get("skip", request.args.get("offset", 0))), 0)
    except (ValueError, TypeError):
        skip = 0
    return skip, limit


def page_body(items, total, skip, limit) -> dict:
    return {"items": items, "total": total, "skip": skip, "limit": limit}


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def current_user_id() -> str:
    return g.jwt_user_id

