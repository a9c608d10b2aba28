import os
import sys

import pytest
from sqlalchemy.exc import OperationalError

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from tonerapp import create_app
from tonerapp.extensions import db
from tonerapp.models import Role, StockEntry, StockTransaction, User
from tonerapp.services import catalog
from tonerapp.services.stock_services import sql_services
from tonerapp.services.stock_store import SqlStockStore


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "ADMIN_USER": "superuser",
            "ADMIN_PASSWORD": "admin-pass",
            "DEFAULT_MIN_STOCK_ALERT": 5,
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def stocked(app):
    with app.app_context():
        sede = catalog.create_unit("Sede Principal")
        almox = catalog.create_unit("Almoxarifado Central")
        black = catalog.create_item("TN-514K", "Preto")
        db.session.flush()
        StockEntry.query.filter_by(unit_id=sede.id, item_id=black.id).one().quantity = 15
        StockEntry.query.filter_by(unit_id=almox.id, item_id=black.id).one().quantity = 40
        db.session.commit()
        return {"sede": sede.id, "almox": almox.id, "black": black.id}


def _make_user(username, role_name, unit_id=None):
    user = User(username=username, unit_id=unit_id)
    user.set_password("secret")
    user.roles.append(Role.query.filter_by(name=role_name).one())
    db.session.add(user)
    db.session.commit()
    return user.id


def _login(client, username, password="secret"):
    response = client.post("/auth/login", data={"username": username, "password": password})
    assert response.status_code == 200
    return response


def _quantity(unit_id, item_id):
    return sql_services().ledger.quantity(unit_id, item_id)


def test_stock_listing_requires_login(client, stocked):
    response = client.get("/api/stock/")
    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"


def test_admin_adjustment_records_manual_reason(client, stocked):
    _login(client, "superuser", "admin-pass")

    response = client.post(
        "/api/stock/adjust",
        json={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": 5},
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    assert body["message"] == "Stock updated to 20."
    assert body["data"]["type"] == "ADD"
    assert body["data"]["reason"] == "Manual adjustment"
    assert _quantity(stocked["sede"], stocked["black"]) == 20


def test_adjustment_beyond_stock_returns_conflict(client, stocked):
    _login(client, "superuser", "admin-pass")

    response = client.post(
        "/api/stock/adjust",
        data={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": "-16", "reason": "Troca"},
    )

    assert response.status_code == 409
    body = response.get_json()
    assert body["error"] == "insufficient_stock"
    assert body["message"] == "Not enough stock. Available 15, requested 16."
    assert _quantity(stocked["sede"], stocked["black"]) == 15


def test_adjustment_validates_input(client, stocked):
    _login(client, "superuser", "admin-pass")

    malformed = client.post(
        "/api/stock/adjust",
        json={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": "lots"},
    )
    assert malformed.status_code == 400
    assert malformed.get_json()["error"] == "invalid_input"

    mismatched = client.post(
        "/api/stock/adjust",
        json={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": 3, "type": "REMOVE"},
    )
    assert mismatched.status_code == 400
    assert mismatched.get_json()["error"] == "invalid_delta"

    unknown_type = client.post(
        "/api/stock/adjust",
        json={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": 3, "type": "GIFT"},
    )
    assert unknown_type.status_code == 400
    assert StockTransaction.query.count() == 0


def test_transfer_endpoint_moves_stock(client, stocked):
    _login(client, "superuser", "admin-pass")

    response = client.post(
        "/api/stock/transfer",
        json={
            "source_unit_id": stocked["almox"],
            "dest_unit_id": stocked["sede"],
            "item_id": stocked["black"],
            "quantity": 10,
        },
    )

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["reference"].startswith("TRF-")
    assert data["debit"]["reference"] == data["credit"]["reference"] == data["reference"]
    assert _quantity(stocked["almox"], stocked["black"]) == 30
    assert _quantity(stocked["sede"], stocked["black"]) == 25

    same_unit = client.post(
        "/api/stock/transfer",
        json={
            "source_unit_id": stocked["sede"],
            "dest_unit_id": stocked["sede"],
            "item_id": stocked["black"],
            "quantity": 1,
        },
    )
    assert same_unit.status_code == 400
    assert same_unit.get_json()["error"] == "invalid_transfer"


def test_editor_cannot_change_stock_directly(app, client, stocked):
    _make_user("operador", "editor", unit_id=stocked["sede"])
    _login(client, "operador")

    adjust = client.post(
        "/api/stock/adjust",
        json={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": 5},
    )
    transfer = client.post(
        "/api/stock/transfer",
        json={
            "source_unit_id": stocked["almox"],
            "dest_unit_id": stocked["sede"],
            "item_id": stocked["black"],
            "quantity": 1,
        },
    )

    assert adjust.status_code == 403
    assert transfer.status_code == 403
    assert _quantity(stocked["sede"], stocked["black"]) == 15


def test_non_global_listing_is_pinned_to_own_unit(client, stocked):
    _make_user("leitor", "viewer", unit_id=stocked["sede"])
    _make_user("sem-unidade", "viewer")
    _login(client, "leitor")

    response = client.get(f"/api/stock/?unit_id={stocked['almox']}")
    assert response.status_code == 200
    assert {level["unit_id"] for level in response.get_json()} == {stocked["sede"]}

    client.get("/auth/logout")
    _login(client, "sem-unidade")
    assert client.get("/api/stock/").get_json() == []


def test_global_listing_filters_and_low_stock(client, stocked):
    _login(client, "superuser", "admin-pass")

    everything = client.get("/api/stock/").get_json()
    assert len(everything) == 2

    only_almox = client.get(f"/api/stock/?unit_id={stocked['almox']}").get_json()
    assert [level["quantity"] for level in only_almox] == [40]

    client.post(
        "/api/stock/adjust",
        json={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": -12},
    )
    low = client.get("/api/stock/low").get_json()
    assert [(level["unit_id"], level["quantity"], level["is_low"]) for level in low] == [
        (stocked["sede"], 3, True)
    ]
    assert client.get("/api/stock/?low=1").get_json() == low


def test_min_alert_update(client, stocked):
    entry_id = StockEntry.query.filter_by(unit_id=stocked["sede"], item_id=stocked["black"]).one().id
    _login(client, "superuser", "admin-pass")

    response = client.post(f"/api/stock/{entry_id}/min-alert", json={"min_stock_alert": 20})
    assert response.status_code == 200
    assert response.get_json()["data"]["min_stock_alert"] == 20
    assert response.get_json()["data"]["is_low"] is True
    assert StockTransaction.query.count() == 0

    negative = client.post(f"/api/stock/{entry_id}/min-alert", json={"min_stock_alert": -1})
    assert negative.status_code == 400

    missing = client.post("/api/stock/9999/min-alert", json={"min_stock_alert": 3})
    assert missing.status_code == 404


def test_support_updates_alert_on_any_unit(client, stocked):
    entry_id = StockEntry.query.filter_by(unit_id=stocked["almox"], item_id=stocked["black"]).one().id
    _make_user("tecnico", "support", unit_id=stocked["sede"])
    _make_user("operador", "editor", unit_id=stocked["almox"])

    _login(client, "operador")
    refused = client.post(f"/api/stock/{entry_id}/min-alert", json={"min_stock_alert": 8})
    assert refused.status_code == 403
    client.get("/auth/logout")

    _login(client, "tecnico")
    response = client.post(f"/api/stock/{entry_id}/min-alert", json={"min_stock_alert": 8})
    assert response.status_code == 200
    assert response.get_json()["data"]["min_stock_alert"] == 8
    assert response.get_json()["data"]["unit_id"] == stocked["almox"]


def test_transactions_endpoint_is_newest_first(client, stocked):
    _login(client, "superuser", "admin-pass")
    for delta in (1, 2, 3):
        client.post(
            "/api/stock/adjust",
            json={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": delta},
        )

    response = client.get("/api/stock/transactions?limit=2")
    assert response.status_code == 200
    assert [row["quantity"] for row in response.get_json()] == [3, 2]

    bad_limit = client.get("/api/stock/transactions?limit=many")
    assert bad_limit.status_code == 400


def test_storage_failure_returns_retryable_error(client, stocked, monkeypatch):
    _login(client, "superuser", "admin-pass")

    def _broken_append(self, **kwargs):
        raise OperationalError("INSERT INTO stock_transaction", {}, Exception("server closed the connection"))

    monkeypatch.setattr(SqlStockStore, "append_transaction", _broken_append)

    response = client.post(
        "/api/stock/adjust",
        json={"unit_id": stocked["sede"], "item_id": stocked["black"], "delta": -5},
    )

    assert response.status_code == 503
    body = response.get_json()
    assert body["error"] == "persistence_failure"
    assert body["retryable"] is True
    assert _quantity(stocked["sede"], stocked["black"]) == 15


def test_adjust_and_transfer_reject_unknown_units_and_items(client, stocked):
    _login(client, "superuser", "admin-pass")

    unknown_unit = client.post(
        "/api/stock/adjust",
        json={"unit_id": 999, "item_id": stocked["black"], "delta": 7},
    )
    assert unknown_unit.status_code == 404
    assert unknown_unit.get_json()["error"] == "unknown_unit"

    unknown_item = client.post(
        "/api/stock/adjust",
        json={"unit_id": stocked["sede"], "item_id": 4242, "delta": 7},
    )
    assert unknown_item.status_code == 404
    assert unknown_item.get_json()["error"] == "unknown_item"

    unknown_dest = client.post(
        "/api/stock/transfer",
        json={
            "source_unit_id": stocked["almox"],
            "dest_unit_id": 999,
            "item_id": stocked["black"],
            "quantity": 10,
        },
    )
    assert unknown_dest.status_code == 404
    assert unknown_dest.get_json()["error"] == "unknown_unit"

    assert _quantity(stocked["almox"], stocked["black"]) == 40
    assert StockEntry.query.filter_by(unit_id=999).count() == 0
    assert StockTransaction.query.count() == 0
