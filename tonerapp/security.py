"""Shared security helpers and decorators for view protection."""

from __future__ import annotations

from functools import wraps

from flask import jsonify
from flask_login import current_user

from tonerapp.permissions import has_capability, roles_for


def _denied(status_code: int, message: str):
    error = "forbidden" if status_code == 403 else "unauthorized"
    return jsonify({"ok": False, "error": error, "message": message}), status_code


def require_capability(capability: str):
    """Decorator ensuring the active user holds ``capability``."""

    roles_for(capability)

    def decorator(view_func):
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return _denied(401, "Log in to continue.")

            if not has_capability(current_user, capability):
                return _denied(403, "Your role does not allow this action.")

            return view_func(*args, **kwargs)

        return wrapped

    return decorator


def require_admin(view_func):
    """Decorator specialized for catalogue administration."""

    return require_capability("manage_catalog")(view_func)
