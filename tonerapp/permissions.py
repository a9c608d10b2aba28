"""Capabilities derived from user roles.

Core services never check roles; HTTP and CLI boundaries resolve a capability
here before calling into the ledger, transfers or request workflow.
"""

from __future__ import annotations

from typing import Sequence

CORE_ROLES: dict[str, str] = {
    "admin": "Administrator",
    "support": "Support technician",
    "editor": "Unit operator",
    "viewer": "Read-only user",
}

# Roles that see and act on every unit rather than only their own.
GLOBAL_ROLES: tuple[str, ...] = ("admin", "support")

CAPABILITIES: dict[str, Sequence[str]] = {
    "view_stock": ("admin", "support", "editor", "viewer"),
    "submit_requests": ("admin", "support", "editor"),
    "manage_stock": ("admin", "support"),
    "decide_requests": ("admin", "support"),
    "manage_catalog": ("admin",),
    "manage_users": ("admin",),
}


def roles_for(capability: str) -> tuple[str, ...]:
    try:
        return tuple(CAPABILITIES[capability])
    except KeyError:
        raise ValueError(f"Unknown capability: {capability}") from None


def has_capability(user, capability: str) -> bool:
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    return user.has_any_role(roles_for(capability))


def is_global_user(user) -> bool:
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    return user.has_any_role(GLOBAL_ROLES)


def scoped_unit_id(user, requested_unit_id: int | None) -> int | None:
    """Return the unit a listing should be limited to.

    Global users get whatever they asked for (``None`` meaning every unit);
    everyone else is pinned to their own unit.
    """

    if is_global_user(user):
        return requested_unit_id
    return getattr(user, "unit_id", None) or -1


def can_act_on_unit(user, unit_id: int) -> bool:
    if is_global_user(user):
        return True
    return getattr(user, "unit_id", None) == unit_id
