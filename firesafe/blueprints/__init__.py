"""
Fire-safety contract management
Blueprint registry helpers.
"""

from flask import request


def pagination_args(default_limit=50, max_limit=200):
    """Read limit/offset pagination parameters.

    Query params:
        limit:  max items (default 50, capped at max_limit)
        offset: starting position (default 0)

    Returns:
        (limit, offset)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def json_body():
    """Request JSON as a dict; malformed or missing bodies become {}."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
