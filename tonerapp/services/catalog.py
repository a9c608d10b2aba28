"""Units, supply items and sectors.

New units and new supply items are cross-provisioned with zero-quantity stock
entries so every unit lists every active item.  Rows referenced by the audit
trail or by requests cannot be deleted.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from tonerapp.extensions import db
from tonerapp.models import (
    StockEntry,
    StockTransaction,
    SupplyItem,
    TonerRequest,
    Unit,
    UnitSector,
)


class CatalogError(ValueError):
    """Invalid catalogue input."""


class CatalogConflict(CatalogError):
    """The change would orphan audit history or collide with an existing row."""


def _clean_name(value: str | None, *, field_label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise CatalogError(f"{field_label} is required.")
    return text


def _default_min_stock_alert() -> int:
    return int(current_app.config.get("DEFAULT_MIN_STOCK_ALERT", 5))


def _provision_entries(*, units: list[Unit], items: list[SupplyItem]) -> int:
    if not units or not items:
        return 0

    existing = {
        (unit_id, item_id)
        for unit_id, item_id in db.session.query(StockEntry.unit_id, StockEntry.item_id)
        .filter(StockEntry.unit_id.in_([unit.id for unit in units]))
        .filter(StockEntry.item_id.in_([item.id for item in items]))
        .all()
    }
    threshold = _default_min_stock_alert()
    created = 0
    for unit in units:
        for item in items:
            if (unit.id, item.id) in existing:
                continue
            db.session.add(
                StockEntry(
                    unit_id=unit.id,
                    item_id=item.id,
                    quantity=0,
                    min_stock_alert=threshold,
                )
            )
            created += 1
    db.session.flush()
    return created


def list_units() -> list[Unit]:
    return Unit.query.order_by(Unit.name).all()


def get_unit(unit_id: int) -> Unit:
    unit = db.session.get(Unit, unit_id)
    if unit is None:
        raise CatalogError(f"Unit {unit_id} does not exist.")
    return unit


def create_unit(name: str, *, display_order: int = 0) -> Unit:
    name = _clean_name(name, field_label="Unit name")
    if Unit.query.filter_by(name=name).first() is not None:
        raise CatalogConflict(f"A unit named {name} already exists.")

    unit = Unit(name=name, display_order=display_order)
    db.session.add(unit)
    db.session.flush()
    _provision_entries(
        units=[unit], items=SupplyItem.query.filter_by(active=True).all()
    )
    return unit


def rename_unit(unit_id: int, name: str) -> Unit:
    unit = get_unit(unit_id)
    name = _clean_name(name, field_label="Unit name")
    clash = Unit.query.filter(Unit.name == name, Unit.id != unit.id).first()
    if clash is not None:
        raise CatalogConflict(f"A unit named {name} already exists.")
    unit.name = name
    db.session.flush()
    return unit


def _has_history(*, unit_id: int | None = None, item_id: int | None = None) -> bool:
    transactions = db.session.query(StockTransaction.id)
    requests = db.session.query(TonerRequest.id)
    if unit_id is not None:
        transactions = transactions.filter(StockTransaction.unit_id == unit_id)
        requests = requests.filter(TonerRequest.unit_id == unit_id)
    if item_id is not None:
        transactions = transactions.filter(StockTransaction.item_id == item_id)
        requests = requests.filter(TonerRequest.item_id == item_id)
    return transactions.first() is not None or requests.first() is not None


def delete_unit(unit_id: int) -> None:
    unit = get_unit(unit_id)
    if _has_history(unit_id=unit.id):
        raise CatalogConflict(
            f"Unit {unit.name} has stock history or requests and cannot be deleted."
        )
    db.session.delete(unit)
    db.session.flush()


def list_items(*, include_inactive: bool = False) -> list[SupplyItem]:
    query = SupplyItem.query
    if not include_inactive:
        query = query.filter(SupplyItem.active.is_(True))
    return query.order_by(SupplyItem.model, SupplyItem.color).all()


def get_item(item_id: int) -> SupplyItem:
    item = db.session.get(SupplyItem, item_id)
    if item is None:
        raise CatalogError(f"Supply item {item_id} does not exist.")
    return item


def create_item(model: str, color: str) -> SupplyItem:
    model = _clean_name(model, field_label="Model")
    color = _clean_name(color, field_label="Color")
    if SupplyItem.query.filter_by(model=model, color=color).first() is not None:
        raise CatalogConflict(f"{model} ({color}) is already in the catalogue.")

    item = SupplyItem(model=model, color=color, active=True)
    db.session.add(item)
    db.session.flush()
    _provision_entries(units=Unit.query.all(), items=[item])
    return item


def update_item(
    item_id: int,
    *,
    model: str | None = None,
    color: str | None = None,
    active: bool | None = None,
) -> SupplyItem:
    item = get_item(item_id)
    new_model = _clean_name(model, field_label="Model") if model is not None else item.model
    new_color = _clean_name(color, field_label="Color") if color is not None else item.color
    clash = SupplyItem.query.filter(
        SupplyItem.model == new_model,
        SupplyItem.color == new_color,
        SupplyItem.id != item.id,
    ).first()
    if clash is not None:
        raise CatalogConflict(f"{new_model} ({new_color}) is already in the catalogue.")

    item.model = new_model
    item.color = new_color
    if active is not None:
        item.active = active
        if active:
            _provision_entries(units=Unit.query.all(), items=[item])
    db.session.flush()
    return item


def delete_item(item_id: int) -> None:
    item = get_item(item_id)
    if _has_history(item_id=item.id):
        raise CatalogConflict(
            f"{item.label} has stock history or requests; deactivate it instead."
        )
    db.session.delete(item)
    db.session.flush()


def list_sectors(unit_id: int | None = None) -> list[UnitSector]:
    query = UnitSector.query
    if unit_id is not None:
        query = query.filter(UnitSector.unit_id == unit_id)
    return query.order_by(UnitSector.name).all()


def create_sector(unit_id: int, name: str) -> UnitSector:
    unit = get_unit(unit_id)
    name = _clean_name(name, field_label="Sector name")
    if UnitSector.query.filter_by(unit_id=unit.id, name=name).first() is not None:
        raise CatalogConflict(f"{unit.name} already has a sector named {name}.")
    sector = UnitSector(unit_id=unit.id, name=name)
    db.session.add(sector)
    db.session.flush()
    return sector


def rename_sector(sector_id: int, name: str) -> UnitSector:
    sector = db.session.get(UnitSector, sector_id)
    if sector is None:
        raise CatalogError(f"Sector {sector_id} does not exist.")
    name = _clean_name(name, field_label="Sector name")
    clash = UnitSector.query.filter(
        UnitSector.unit_id == sector.unit_id,
        UnitSector.name == name,
        UnitSector.id != sector.id,
    ).first()
    if clash is not None:
        raise CatalogConflict(f"This unit already has a sector named {name}.")
    sector.name = name
    db.session.flush()
    return sector


def delete_sector(sector_id: int) -> None:
    sector = db.session.get(UnitSector, sector_id)
    if sector is None:
        raise CatalogError(f"Sector {sector_id} does not exist.")
    db.session.delete(sector)
    db.session.flush()


def search_items(term: str, *, limit: int = 10) -> list[SupplyItem]:
    pattern = f"%{term.strip().lower()}%"
    return (
        SupplyItem.query.filter(SupplyItem.active.is_(True))
        .filter(
            or_(
                db.func.lower(SupplyItem.model).like(pattern),
                db.func.lower(SupplyItem.color).like(pattern),
            )
        )
        .order_by(SupplyItem.model, SupplyItem.color)
        .limit(limit)
        .all()
    )
