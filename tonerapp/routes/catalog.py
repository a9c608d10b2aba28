from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from tonerapp.extensions import db
from tonerapp.models import SupplyItem, Unit, UnitSector
from tonerapp.security import require_admin, require_capability
from tonerapp.services import catalog
from tonerapp.utils.payloads import (
    PayloadError,
    optional_int,
    optional_text,
    payload_error_response,
    query_int,
    request_payload,
    required_int,
)

bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


def _unit_payload(unit: Unit) -> dict[str, object]:
    return {"id": unit.id, "name": unit.name, "display_order": unit.display_order}


def _item_payload(item: SupplyItem) -> dict[str, object]:
    return {
        "id": item.id,
        "model": item.model,
        "color": item.color,
        "active": bool(item.active),
        "label": item.label,
    }


def _sector_payload(sector: UnitSector) -> dict[str, object]:
    return {"id": sector.id, "unit_id": sector.unit_id, "name": sector.name}


def _catalog_error_response(error: catalog.CatalogError):
    db.session.rollback()
    status_code = 409 if isinstance(error, catalog.CatalogConflict) else 400
    error_code = "conflict" if status_code == 409 else "invalid_input"
    return jsonify({"ok": False, "error": error_code, "message": str(error)}), status_code


@bp.errorhandler(IntegrityError)
def _integrity_conflict(error: IntegrityError):
    # A concurrent write got the unique name first.
    db.session.rollback()
    current_app.logger.warning("Catalogue write conflicted: %s", error.orig)
    return (
        jsonify(
            {
                "ok": False,
                "error": "conflict",
                "message": "The change conflicts with an existing record.",
            }
        ),
        409,
    )


def _committed(payload: dict[str, object], *, status_code: int = 200):
    try:
        db.session.commit()
    except IntegrityError as exc:
        return _integrity_conflict(exc)
    return jsonify({"ok": True, "data": payload}), status_code


def _parse_bool(value) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@bp.route("/units")
@require_capability("view_stock")
def list_units():
    return jsonify([_unit_payload(unit) for unit in catalog.list_units()])


@bp.route("/units", methods=["POST"])
@require_admin
def create_unit():
    payload = request_payload()
    try:
        display_order = optional_int(payload, "display_order", field_label="display order") or 0
        unit = catalog.create_unit(optional_text(payload, "name"), display_order=display_order)
    except PayloadError as exc:
        return payload_error_response(exc)
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    current_app.logger.info("Created unit %s", unit.name)
    return _committed(_unit_payload(unit), status_code=201)


@bp.route("/units/<int:unit_id>", methods=["POST"])
@require_admin
def rename_unit(unit_id: int):
    try:
        unit = catalog.rename_unit(unit_id, optional_text(request_payload(), "name"))
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    return _committed(_unit_payload(unit))


@bp.route("/units/<int:unit_id>/delete", methods=["POST"])
@require_admin
def delete_unit(unit_id: int):
    try:
        catalog.delete_unit(unit_id)
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    current_app.logger.info("Deleted unit %s", unit_id)
    return _committed({"id": unit_id})


@bp.route("/items")
@require_capability("view_stock")
def list_items():
    include_inactive = bool(_parse_bool(request.args.get("all")))
    items = catalog.list_items(include_inactive=include_inactive)
    return jsonify([_item_payload(item) for item in items])


@bp.get("/items/search")
@require_capability("view_stock")
def search_items():
    term = (request.args.get("q") or "").strip()
    if len(term) < 2:
        return payload_error_response(PayloadError("Query must be at least 2 characters."))
    if len(term) > 80:
        return payload_error_response(PayloadError("Query must be 80 characters or fewer."))
    return jsonify([_item_payload(item) for item in catalog.search_items(term)])


@bp.route("/items", methods=["POST"])
@require_admin
def create_item():
    payload = request_payload()
    try:
        item = catalog.create_item(optional_text(payload, "model"), optional_text(payload, "color"))
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    current_app.logger.info("Added supply item %s", item.label)
    return _committed(_item_payload(item), status_code=201)


@bp.route("/items/<int:item_id>", methods=["POST"])
@require_admin
def update_item(item_id: int):
    payload = request_payload()
    try:
        item = catalog.update_item(
            item_id,
            model=optional_text(payload, "model"),
            color=optional_text(payload, "color"),
            active=_parse_bool(payload.get("active")),
        )
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    return _committed(_item_payload(item))


@bp.route("/items/<int:item_id>/delete", methods=["POST"])
@require_admin
def delete_item(item_id: int):
    try:
        catalog.delete_item(item_id)
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    current_app.logger.info("Deleted supply item %s", item_id)
    return _committed({"id": item_id})


@bp.route("/sectors")
@require_capability("view_stock")
def list_sectors():
    try:
        unit_id = query_int("unit_id")
    except PayloadError as exc:
        return payload_error_response(exc)
    return jsonify([_sector_payload(sector) for sector in catalog.list_sectors(unit_id)])


@bp.route("/sectors", methods=["POST"])
@require_admin
def create_sector():
    payload = request_payload()
    try:
        unit_id = required_int(payload, "unit_id", field_label="unit")
        sector = catalog.create_sector(unit_id, optional_text(payload, "name"))
    except PayloadError as exc:
        return payload_error_response(exc)
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    return _committed(_sector_payload(sector), status_code=201)


@bp.route("/sectors/<int:sector_id>", methods=["POST"])
@require_admin
def rename_sector(sector_id: int):
    try:
        sector = catalog.rename_sector(sector_id, optional_text(request_payload(), "name"))
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    return _committed(_sector_payload(sector))


@bp.route("/sectors/<int:sector_id>/delete", methods=["POST"])
@require_admin
def delete_sector(sector_id: int):
    try:
        catalog.delete_sector(sector_id)
    except catalog.CatalogError as exc:
        return _catalog_error_response(exc)
    return _committed({"id": sector_id})
