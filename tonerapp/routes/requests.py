"""Supply requests raised by units and decided by admin/support staff."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user

from tonerapp.extensions import db
from tonerapp.models import RequestStatus, UnitSector
from tonerapp.permissions import can_act_on_unit, scoped_unit_id
from tonerapp.security import require_capability
from tonerapp.services.stock_services import sql_services
from tonerapp.utils.payloads import (
    PayloadError,
    optional_int,
    optional_text,
    outcome_response,
    payload_error_response,
    query_int,
    request_payload,
    required_int,
)

bp = Blueprint("requests", __name__, url_prefix="/api/requests")


@bp.route("/")
@require_capability("view_stock")
def list_requests():
    status_filter = (request.args.get("status") or "").strip().upper() or None
    if status_filter and status_filter not in RequestStatus.ALL_STATUSES:
        return payload_error_response(PayloadError("Unknown status filter."))
    try:
        unit_id = scoped_unit_id(current_user, query_int("unit_id"))
    except PayloadError as exc:
        return payload_error_response(exc)

    records = sql_services().requests.list_requests(unit_id=unit_id, status=status_filter)
    return jsonify([record.to_dict() for record in records])


@bp.route("/pending-count")
@require_capability("view_stock")
def pending_count():
    unit_id = scoped_unit_id(current_user, None)
    return jsonify({"pending": sql_services().requests.pending_count(unit_id)})


@bp.route("/", methods=["POST"])
@require_capability("submit_requests")
def submit_request():
    payload = request_payload()
    try:
        unit_id = optional_int(payload, "unit_id", field_label="unit") or current_user.unit_id
        if unit_id is None:
            raise PayloadError("Unit is required.")
        item_id = required_int(payload, "item_id", field_label="supply item")
        quantity = required_int(payload, "quantity")
        sector_id = optional_int(payload, "sector_id", field_label="sector")
    except PayloadError as exc:
        return payload_error_response(exc)

    if not can_act_on_unit(current_user, unit_id):
        return (
            jsonify(
                {
                    "ok": False,
                    "error": "forbidden",
                    "message": "You can only request supplies for your own unit.",
                }
            ),
            403,
        )

    sector_name = optional_text(payload, "sector_name")
    if sector_name is None and sector_id is not None:
        sector = db.session.get(UnitSector, sector_id)
        if sector is None or sector.unit_id != unit_id:
            return payload_error_response(PayloadError("Choose a sector of the selected unit."))
        sector_name = sector.name

    outcome = sql_services().requests.submit(
        unit_id, item_id, quantity, sector_name, current_user.id
    )
    return outcome_response(outcome, success_status=201)


@bp.route("/<int:request_id>/decide", methods=["POST"])
@require_capability("decide_requests")
def decide_request(request_id: int):
    decision = optional_text(request_payload(), "decision") or ""
    outcome = sql_services().requests.decide(request_id, decision, current_user.id)
    return outcome_response(outcome)
