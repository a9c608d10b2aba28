"""User accounts managed from the administration API.

A user's unit drives stock scoping for non-global roles, so unit and sector
assignments are validated together: a sector always belongs to the user's
unit.  Users referenced by the audit trail or by requests are kept.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app

from tonerapp.extensions import db
from tonerapp.models import Role, StockTransaction, TonerRequest, Unit, UnitSector, User
from tonerapp.permissions import CORE_ROLES

DEFAULT_ROLES = ("viewer",)


class AccountError(ValueError):
    """Invalid account input."""


class AccountNotFound(AccountError):
    """No user with the given id."""


class AccountConflict(AccountError):
    """The change collides with another account or protected history."""


def _protected_username() -> str:
    return current_app.config.get("ADMIN_USER", "superuser")


def _clean_username(value: str | None) -> str:
    username = (value or "").strip()
    if not username:
        raise AccountError("Username is required.")
    return username


def _resolve_roles(role_names: Iterable[str] | None) -> list[Role]:
    names = sorted({name.strip().lower() for name in (role_names or ()) if name and name.strip()})
    if not names:
        names = list(DEFAULT_ROLES)
    unknown = [name for name in names if name not in CORE_ROLES]
    if unknown:
        raise AccountError(f"Unknown role: {', '.join(unknown)}.")
    return Role.query.filter(Role.name.in_(names)).order_by(Role.name).all()


def _resolve_placement(unit_id: int | None, sector_id: int | None) -> tuple[int | None, int | None]:
    if sector_id is not None:
        sector = db.session.get(UnitSector, sector_id)
        if sector is None:
            raise AccountError(f"Sector {sector_id} does not exist.")
        if unit_id is None:
            unit_id = sector.unit_id
        elif sector.unit_id != unit_id:
            raise AccountError("The sector does not belong to the selected unit.")
    if unit_id is not None and db.session.get(Unit, unit_id) is None:
        raise AccountError(f"Unit {unit_id} does not exist.")
    return unit_id, sector_id


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise AccountNotFound(f"User {user_id} does not exist.")
    return user


def list_users() -> list[User]:
    return User.query.order_by(User.username).all()


def create_user(
    username: str | None,
    password: str | None,
    *,
    role_names: Iterable[str] | None = None,
    display_name: str | None = None,
    email: str | None = None,
    unit_id: int | None = None,
    sector_id: int | None = None,
) -> User:
    username = _clean_username(username)
    if not password:
        raise AccountError("Password is required.")
    if User.query.filter_by(username=username).first() is not None:
        raise AccountConflict(f"Username {username} already exists.")

    unit_id, sector_id = _resolve_placement(unit_id, sector_id)
    user = User(
        username=username,
        display_name=display_name or username,
        email=email,
        unit_id=unit_id,
        sector_id=sector_id,
    )
    user.set_password(password)
    user.roles = _resolve_roles(role_names)
    db.session.add(user)
    db.session.flush()
    return user


def update_user(user_id: int, changes: dict[str, object]) -> User:
    """Apply the fields present in ``changes``; absent fields stay as they are.

    ``unit_id`` and ``sector_id`` may be ``None`` to clear the assignment.
    Clearing the unit also clears the sector.
    """

    user = get_user(user_id)

    if "username" in changes:
        username = _clean_username(changes["username"])
        if user.username == _protected_username() and username != user.username:
            raise AccountConflict("The superuser username cannot be changed.")
        clash = User.query.filter(User.username == username, User.id != user.id).first()
        if clash is not None:
            raise AccountConflict(f"Username {username} already exists.")
        user.username = username

    if "display_name" in changes:
        user.display_name = changes["display_name"] or user.username
    if "email" in changes:
        user.email = changes["email"]

    if "unit_id" in changes or "sector_id" in changes:
        unit_id = changes["unit_id"] if "unit_id" in changes else user.unit_id
        if "sector_id" in changes:
            sector_id = changes["sector_id"]
        else:
            sector_id = user.sector_id if unit_id == user.unit_id else None
        user.unit_id, user.sector_id = _resolve_placement(unit_id, sector_id)

    if "roles" in changes:
        roles = _resolve_roles(changes["roles"])
        if user.username == _protected_username() and "admin" not in {role.name for role in roles}:
            raise AccountConflict("The superuser must keep the admin role.")
        user.roles = roles

    if changes.get("password"):
        user.set_password(changes["password"])

    db.session.flush()
    return user


def _has_history(user_id: int) -> bool:
    if StockTransaction.query.filter_by(user_id=user_id).first() is not None:
        return True
    return (
        TonerRequest.query.filter(
            (TonerRequest.requestor_id == user_id) | (TonerRequest.decided_by == user_id)
        ).first()
        is not None
    )


def delete_user(user_id: int, *, acting_user_id: int | None) -> None:
    user = get_user(user_id)
    if user.id == acting_user_id:
        raise AccountConflict("You cannot delete your own account.")
    if user.username == _protected_username():
        raise AccountConflict("The superuser account cannot be deleted.")
    if _has_history(user.id):
        raise AccountConflict(
            f"{user.username} appears in the stock history and cannot be deleted."
        )
    db.session.delete(user)
    db.session.flush()
