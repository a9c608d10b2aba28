"""Helpers for reading JSON or form submissions in the API blueprints."""

from __future__ import annotations

from typing import Any, Mapping

from flask import jsonify, request

from tonerapp.services.outcomes import Outcome, OutcomeError


class PayloadError(ValueError):
    """A submitted field was missing or malformed."""


OUTCOME_STATUS_CODES: dict[OutcomeError, int] = {
    OutcomeError.INSUFFICIENT_STOCK: 409,
    OutcomeError.ALREADY_DECIDED: 409,
    OutcomeError.INVALID_TRANSFER: 400,
    OutcomeError.INVALID_DELTA: 400,
    OutcomeError.INVALID_DECISION: 400,
    OutcomeError.REQUEST_NOT_FOUND: 404,
    OutcomeError.UNKNOWN_UNIT: 404,
    OutcomeError.UNKNOWN_ITEM: 404,
}


def request_payload() -> Mapping[str, Any]:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form


def _parse_int(value: Any, *, field_label: str) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        raise PayloadError(f"Enter a whole number for {field_label}.") from None


def required_int(payload: Mapping[str, Any], field: str, *, field_label: str | None = None) -> int:
    label = field_label or field.replace("_", " ")
    number = _parse_int(payload.get(field), field_label=label)
    if number is None:
        raise PayloadError(f"{label.capitalize()} is required.")
    return number


def optional_int(payload: Mapping[str, Any], field: str, *, field_label: str | None = None) -> int | None:
    return _parse_int(payload.get(field), field_label=field_label or field.replace("_", " "))


def optional_text(payload: Mapping[str, Any], field: str) -> str | None:
    text = str(payload.get(field) or "").strip()
    return text or None


def query_int(name: str) -> int | None:
    return _parse_int(request.args.get(name), field_label=name.replace("_", " "))


def payload_error_response(error: PayloadError):
    return jsonify({"ok": False, "error": "invalid_input", "message": str(error)}), 400


def outcome_response(outcome: Outcome, *, success_status: int = 200):
    body = outcome.to_dict()
    value = outcome.value
    if value is not None and hasattr(value, "to_dict"):
        body["data"] = value.to_dict()
    if outcome.ok:
        return jsonify(body), success_status
    return jsonify(body), OUTCOME_STATUS_CODES.get(outcome.error, 400)
