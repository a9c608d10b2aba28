from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from tonerapp.models import User
from tonerapp.permissions import CAPABILITIES, has_capability, is_global_user

bp = Blueprint("auth", __name__, url_prefix="/auth")


def user_payload(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name or user.username,
        "email": user.email,
        "unit_id": user.unit_id,
        "sector_id": user.sector_id,
        "roles": sorted(user.role_names()),
        "global": is_global_user(user),
        "capabilities": sorted(
            name for name in CAPABILITIES if has_capability(user, name)
        ),
    }


@bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) if request.is_json else request.form
    payload = payload or {}
    username = str(payload.get("username") or "").strip()
    password = str(payload.get("password") or "")

    user = User.query.filter_by(username=username).first() if username else None
    if user and user.check_password(password):
        login_user(user)
        current_app.logger.info("User %s logged in", user.username)
        return jsonify({"ok": True, "user": user_payload(user)})

    current_app.logger.warning("Failed login for username %r", username)
    return jsonify({"ok": False, "error": "unauthorized", "message": "Invalid credentials"}), 401


@bp.route("/logout")
def logout():
    if current_user.is_authenticated:
        current_app.logger.info("User %s logged out", current_user.username)
    logout_user()
    return jsonify({"ok": True})


@bp.route("/me")
@login_required
def me():
    return jsonify({"ok": True, "user": user_payload(current_user)})
