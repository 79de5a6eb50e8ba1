"""
Static permission matrix & authorization engine.

Permissions are (resource, action) pairs granted to a role.  They are
fixed at deploy time and never loaded per request.  `decide` is a pure
function of (role, resource, action, ownership) with no I/O, so it can
be exercised without a database.

Governance rules encoded here:
    • ADMIN holds every permission on every resource.
    • TRAINER and INSTRUCTOR have distinct capability sets; TRAINER is
      not a superset of INSTRUCTOR (no profile grant for trainers).
    • INSTRUCTOR writes are restricted to resources they own; the
      caller supplies the ownership flag.
    • Anything not listed is denied.
"""

import enum
from dataclasses import dataclass

from backoffice.core.errors import Forbidden


class Role(str, enum.Enum):
    ADMIN = "admin"
    TRAINER = "trainer"
    INSTRUCTOR = "instructor"


class Resource(str, enum.Enum):
    USER = "user"
    COMPANY = "company"
    STUDENT = "student"
    MATERIAL = "material"
    TRAINING = "training"
    PROJECT = "project"
    INTERVIEW = "interview"
    MEETING = "meeting"
    PROFILE = "profile"


class Action(str, enum.Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Grant:
    resource: Resource
    action: Action
    own_only: bool = False


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    required_role: Role | None = None
    reason: str = ""


def _read_write(*resources: Resource, own_only: bool = False) -> list[Grant]:
    return [Grant(r, a, own_only) for r in resources for a in (Action.READ, Action.WRITE)]


# ────────────────────────────────────────────────────────────────────
# ROLE → GRANT MAPPING
# ────────────────────────────────────────────────────────────────────
ROLE_GRANTS: dict[Role, frozenset[Grant]] = {
    Role.ADMIN: frozenset(_read_write(*Resource)),
    Role.TRAINER: frozenset(
        _read_write(
            Resource.MATERIAL,
            Resource.TRAINING,
            Resource.STUDENT,
            Resource.PROJECT,
            Resource.INTERVIEW,
        )
        + [Grant(Resource.USER, Action.READ)]
    ),
    Role.INSTRUCTOR: frozenset(
        [
            Grant(Resource.MATERIAL, Action.READ),
            Grant(Resource.TRAINING, Action.READ),
        ]
        + _read_write(Resource.INTERVIEW, Resource.PROFILE, own_only=True)
    ),
}

# Used only to suggest the least-privileged role in a denial.
_PRIVILEGE_ORDER = (Role.INSTRUCTOR, Role.TRAINER, Role.ADMIN)


def parse_role(value: str | Role) -> Role:
    """Parse a stored / transmitted role string (case-insensitive)."""
    if isinstance(value, Role):
        return value
    if not value:
        raise Forbidden(reason="role not set")
    try:
        return Role(value.strip().lower())
    except ValueError:
        raise Forbidden(reason="invalid role")


def _coerce(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return None


def _grant_for(role: Role, resource: Resource, action: Action) -> Grant | None:
    for grant in ROLE_GRANTS[role]:
        if grant.resource is resource and grant.action is action:
            return grant
    return None


def minimum_required_role(
    resource: Resource,
    action: Action,
    unconditional: bool = False,
) -> Role:
    """Least-privileged role holding the grant (optionally without an ownership condition)."""
    for role in _PRIVILEGE_ORDER:
        grant = _grant_for(role, resource, action)
        if grant is not None and not (unconditional and grant.own_only):
            return role
    return Role.ADMIN


def decide(
    role: Role | str,
    resource: Resource | str,
    action: Action | str,
    is_owner: bool = False,
) -> AuthorizationDecision:
    """Evaluate (role, resource, action, ownership) against the matrix."""
    parsed_role = _coerce(Role, role)
    parsed_resource = _coerce(Resource, resource)
    parsed_action = _coerce(Action, action)

    if parsed_role is None or parsed_resource is None or parsed_action is None:
        return AuthorizationDecision(
            allowed=False,
            required_role=Role.ADMIN,
            reason=f"unknown permission {resource}:{action} for role {role}",
        )

    grant = _grant_for(parsed_role, parsed_resource, parsed_action)
    permission = f"{parsed_resource.value}:{parsed_action.value}"

    if grant is None:
        return AuthorizationDecision(
            allowed=False,
            required_role=minimum_required_role(parsed_resource, parsed_action),
            reason=f"{parsed_role.value} lacks {permission}",
        )

    if grant.own_only and not is_owner:
        return AuthorizationDecision(
            allowed=False,
            required_role=minimum_required_role(parsed_resource, parsed_action, unconditional=True),
            reason=f"{parsed_role.value} may only access own {parsed_resource.value}",
        )

    return AuthorizationDecision(allowed=True, reason=f"granted {permission}")
