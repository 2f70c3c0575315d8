"""
Identity context for API requests.

Session handling lives in front of this service (reverse proxy or gateway).
It forwards the resolved identity as two headers:

    X-User-Id:   integer user id
    X-User-Role: CONTRACTOR | CLIENT | MANAGER | TEAM_MEMBER

``init_identity`` stores the resulting ``Actor`` in ``g.actor``; blueprints
call ``current_actor()`` and hand the value to services, which enforce roles.
"""

import logging

from flask import g, request

from firesafe.core.actor import ROLES, Actor
from firesafe.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
ROLE_HEADER = "X-User-Role"


def _resolve_actor():
    raw_id = request.headers.get(USER_ID_HEADER, "").strip()
    role = request.headers.get(ROLE_HEADER, "").strip().upper()
    if not raw_id or not role:
        return None
    try:
        user_id = int(raw_id)
    except ValueError:
        logger.warning("Rejected non-numeric %s header: %r", USER_ID_HEADER, raw_id)
        return None
    if role not in ROLES:
        logger.warning("Rejected unknown role %r for user %s", role, user_id)
        return None
    return Actor(user_id=user_id, role=role)


def init_identity(app):
    """Register the before_request hook that populates ``g.actor``."""

    @app.before_request
    def _load_actor():
        g.actor = _resolve_actor() if request.path.startswith("/api/") else None


def current_actor() -> Actor:
    """Return the request's actor or raise AuthenticationError."""
    actor = getattr(g, "actor", None)
    if actor is None:
        raise AuthenticationError()
    return actor
