"""Stock levels, manual adjustments, transfers and the transaction history."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user

from tonerapp.extensions import db
from tonerapp.models import StockEntry, TransactionType
from tonerapp.permissions import scoped_unit_id
from tonerapp.security import require_capability
from tonerapp.services.stock_ledger import type_for_delta
from tonerapp.services.stock_services import sql_services
from tonerapp.utils.payloads import (
    PayloadError,
    optional_text,
    outcome_response,
    payload_error_response,
    query_int,
    request_payload,
    required_int,
)

bp = Blueprint("stock", __name__, url_prefix="/api/stock")

MANUAL_ADJUSTMENT_REASON = "Manual adjustment"


@bp.route("/")
@require_capability("view_stock")
def list_stock():
    try:
        unit_id = scoped_unit_id(current_user, query_int("unit_id"))
    except PayloadError as exc:
        return payload_error_response(exc)

    ledger = sql_services().ledger
    low_only = (request.args.get("low") or "").strip().lower() in {"1", "true", "yes"}
    levels = ledger.low_stock(unit_id) if low_only else ledger.entries(unit_id)
    return jsonify([level.to_dict() for level in levels])


@bp.route("/low")
@require_capability("view_stock")
def low_stock():
    try:
        unit_id = scoped_unit_id(current_user, query_int("unit_id"))
    except PayloadError as exc:
        return payload_error_response(exc)

    levels = sql_services().ledger.low_stock(unit_id)
    return jsonify([level.to_dict() for level in levels])


@bp.route("/adjust", methods=["POST"])
@require_capability("manage_stock")
def adjust_stock():
    payload = request_payload()
    try:
        unit_id = required_int(payload, "unit_id", field_label="unit")
        item_id = required_int(payload, "item_id", field_label="supply item")
        delta = required_int(payload, "delta", field_label="quantity change")
    except PayloadError as exc:
        return payload_error_response(exc)

    transaction_type = (optional_text(payload, "type") or type_for_delta(delta)).upper()
    if transaction_type not in TransactionType.ALL_TYPES:
        return payload_error_response(PayloadError("Choose a valid movement type."))
    reason = optional_text(payload, "reason") or MANUAL_ADJUSTMENT_REASON

    outcome = sql_services().ledger.apply_delta(
        unit_id, item_id, delta, current_user.id, transaction_type, reason
    )
    return outcome_response(outcome)


@bp.route("/transfer", methods=["POST"])
@require_capability("manage_stock")
def transfer_stock():
    payload = request_payload()
    try:
        source_unit_id = required_int(payload, "source_unit_id", field_label="source unit")
        dest_unit_id = required_int(payload, "dest_unit_id", field_label="destination unit")
        item_id = required_int(payload, "item_id", field_label="supply item")
        quantity = required_int(payload, "quantity")
    except PayloadError as exc:
        return payload_error_response(exc)

    outcome = sql_services().transfers.transfer(
        source_unit_id, dest_unit_id, item_id, quantity, current_user.id
    )
    return outcome_response(outcome)


@bp.route("/<int:entry_id>/min-alert", methods=["POST"])
@require_capability("manage_stock")
def update_min_alert(entry_id: int):
    entry = db.session.get(StockEntry, entry_id)
    if entry is None:
        return jsonify({"ok": False, "error": "not_found", "message": "Stock entry not found."}), 404

    try:
        threshold = required_int(request_payload(), "min_stock_alert", field_label="alert threshold")
        if threshold < 0:
            raise PayloadError("The alert threshold cannot be negative.")
    except PayloadError as exc:
        return payload_error_response(exc)

    level = sql_services().ledger.set_min_stock_alert(entry.unit_id, entry.item_id, threshold)
    return jsonify({"ok": True, "message": "Alert threshold updated.", "data": level.to_dict()})


@bp.route("/transactions")
@require_capability("view_stock")
def list_transactions():
    try:
        unit_id = scoped_unit_id(current_user, query_int("unit_id"))
        item_id = query_int("item_id")
        limit = query_int("limit")
    except PayloadError as exc:
        return payload_error_response(exc)

    records = sql_services().ledger.recent_transactions(limit, unit_id=unit_id, item_id=item_id)
    return jsonify([record.to_dict() for record in records])
