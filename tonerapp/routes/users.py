"""User administration: accounts, roles and unit/sector placement."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import IntegrityError

from tonerapp.extensions import db
from tonerapp.routes.auth import user_payload
from tonerapp.security import require_capability
from tonerapp.services import accounts
from tonerapp.utils.payloads import (
    PayloadError,
    optional_int,
    optional_text,
    payload_error_response,
    request_payload,
)

bp = Blueprint("users", __name__, url_prefix="/api/users")


def _account_error_response(error: accounts.AccountError):
    db.session.rollback()
    if isinstance(error, accounts.AccountNotFound):
        status_code, error_code = 404, "not_found"
    elif isinstance(error, accounts.AccountConflict):
        status_code, error_code = 409, "conflict"
    else:
        status_code, error_code = 400, "invalid_input"
    return jsonify({"ok": False, "error": error_code, "message": str(error)}), status_code


def _role_names(payload) -> list[str] | None:
    if request.is_json:
        value = payload.get("roles")
        if value is None:
            return None
        if isinstance(value, str):
            return [value]
        if not isinstance(value, list):
            raise PayloadError("Roles must be a list of role names.")
        return [str(name) for name in value]
    names = request.form.getlist("roles")
    return names or None


def _saved(user, *, status_code: int = 200):
    username = user.username
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning("User save conflicted for %s", username)
        return (
            jsonify({"ok": False, "error": "conflict", "message": "Username already exists."}),
            409,
        )
    return jsonify({"ok": True, "data": user_payload(user)}), status_code


@bp.route("/")
@require_capability("manage_users")
def list_users():
    return jsonify([user_payload(user) for user in accounts.list_users()])


@bp.route("/", methods=["POST"])
@require_capability("manage_users")
def create_user():
    payload = request_payload()
    try:
        user = accounts.create_user(
            optional_text(payload, "username"),
            str(payload.get("password") or ""),
            role_names=_role_names(payload),
            display_name=optional_text(payload, "display_name"),
            email=optional_text(payload, "email"),
            unit_id=optional_int(payload, "unit_id", field_label="unit"),
            sector_id=optional_int(payload, "sector_id", field_label="sector"),
        )
    except PayloadError as exc:
        return payload_error_response(exc)
    except accounts.AccountError as exc:
        return _account_error_response(exc)
    current_app.logger.info(
        "User %s created by %s with roles %s",
        user.username,
        current_user.username,
        ", ".join(sorted(user.role_names())),
    )
    return _saved(user, status_code=201)


@bp.route("/<int:user_id>", methods=["POST"])
@require_capability("manage_users")
def update_user(user_id: int):
    payload = request_payload()
    changes: dict[str, object] = {}
    try:
        for field in ("username", "display_name", "email"):
            if field in payload:
                changes[field] = optional_text(payload, field)
        for field, label in (("unit_id", "unit"), ("sector_id", "sector")):
            if field in payload:
                changes[field] = optional_int(payload, field, field_label=label)
        role_names = _role_names(payload)
        if role_names is not None:
            changes["roles"] = role_names
        if payload.get("password"):
            changes["password"] = str(payload["password"])
        user = accounts.update_user(user_id, changes)
    except PayloadError as exc:
        return payload_error_response(exc)
    except accounts.AccountError as exc:
        return _account_error_response(exc)
    current_app.logger.info(
        "User %s updated by %s (%s)", user.username, current_user.username, ", ".join(sorted(changes))
    )
    return _saved(user)


@bp.route("/<int:user_id>/delete", methods=["POST"])
@require_capability("manage_users")
def delete_user(user_id: int):
    try:
        accounts.delete_user(user_id, acting_user_id=current_user.id)
    except accounts.AccountError as exc:
        return _account_error_response(exc)
    db.session.commit()
    current_app.logger.info("User %s deleted by %s", user_id, current_user.username)
    return jsonify({"ok": True, "data": {"id": user_id}})
