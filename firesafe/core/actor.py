"""
Acting identity passed from the HTTP layer (or the scheduler) into services.

Authentication itself lives outside this service; whatever sits in front of
it resolves a user id and role and the blueprints hand an ``Actor`` down.
Role guards are enforced in the service layer, never in blueprints.
"""

from dataclasses import dataclass

from firesafe.core.exceptions import PermissionDeniedError

# ── Roles ────────────────────────────────────────────────────────────────────

CONTRACTOR = "CONTRACTOR"
CLIENT = "CLIENT"
MANAGER = "MANAGER"
TEAM_MEMBER = "TEAM_MEMBER"
SYSTEM = "SYSTEM"

ROLES = {CONTRACTOR, CLIENT, MANAGER, TEAM_MEMBER}

# Roles acting on the contractor side of an engagement
CONTRACTOR_SIDE = {CONTRACTOR, MANAGER, TEAM_MEMBER}


@dataclass(frozen=True)
class Actor:
    user_id: int | None
    role: str


SYSTEM_ACTOR = Actor(user_id=None, role=SYSTEM)


def require_role(actor: Actor, *allowed: str, action: str = "perform this action") -> None:
    """Raise PermissionDeniedError unless the actor holds one of ``allowed``.

    Usage:
        require_role(actor, CLIENT, action="approve a project")
    """
    if actor.role not in allowed:
        raise PermissionDeniedError(
            f"Role {actor.role} may not {action}", role=actor.role,
        )
