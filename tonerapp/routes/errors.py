from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from tonerapp.extensions import db
from tonerapp.services.outcomes import PersistenceFailure

bp = Blueprint("errors", __name__)


@bp.app_errorhandler(PersistenceFailure)
def handle_persistence_failure(error: PersistenceFailure):
    db.session.rollback()
    current_app.logger.exception(
        "Storage failure during %s %s", request.method, request.path, exc_info=error
    )
    return (
        jsonify(
            {
                "ok": False,
                "error": "persistence_failure",
                "retryable": True,
                "message": (
                    "The stock database could not be reached. Nothing was saved; "
                    "check the current stock before trying again."
                ),
            }
        ),
        503,
    )


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception):
    # Allow HTTP errors that are not 500 to propagate to their default handlers.
    if isinstance(error, HTTPException) and error.code != 500:
        return jsonify(
            {"ok": False, "error": error.name.lower().replace(" ", "_"), "message": error.description}
        ), error.code

    db.session.rollback()
    current_app.logger.exception("Unhandled exception", exc_info=error)

    error_message = "Internal Server Error"
    if isinstance(error, HTTPException) and error.description:
        error_message = error.description

    return (
        jsonify(
            {
                "ok": False,
                "error": "server_error",
                "retryable": False,
                "message": error_message,
                "path": request.path,
            }
        ),
        500,
    )
