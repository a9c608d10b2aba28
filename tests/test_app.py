import logging
import os
import sys

import pytest
from sqlalchemy.exc import OperationalError

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

import tonerapp
from tonerapp import create_app
from tonerapp.extensions import db
from tonerapp.models import Role, StockEntry, StockTransaction, User
from tonerapp.permissions import CORE_ROLES
from tonerapp.services import catalog
from tonerapp.services.stock_services import sql_services
from tonerapp.utils.logging import RequestContextFilter, assign_request_id

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "ADMIN_USER": "superuser",
    "ADMIN_PASSWORD": "admin-pass",
    "DEFAULT_MIN_STOCK_ALERT": 5,
}


@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def test_startup_seeds_roles_and_superuser(app):
    assert {role.name for role in Role.query.all()} == set(CORE_ROLES)
    admin = User.query.filter_by(username="superuser").one()
    assert admin.has_role("admin")
    assert admin.check_password("admin-pass")


def test_health_reports_database_online(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"database_online": True, "database_error": None}


def test_app_starts_when_database_is_offline(monkeypatch):
    def _unreachable():
        raise OperationalError("SELECT 1", {}, Exception("could not connect to server"))

    monkeypatch.setattr(tonerapp, "_ping_database", _unreachable)

    app = create_app(dict(TEST_CONFIG))

    assert app.config["DATABASE_AVAILABLE"] is False
    assert "could not connect to server" in app.config["DATABASE_ERROR"]
    response = app.test_client().get("/health")
    assert response.status_code == 503
    assert response.get_json()["database_online"] is False


def test_login_logout_and_me(client):
    refused = client.post("/auth/login", data={"username": "superuser", "password": "wrong"})
    assert refused.status_code == 401
    assert refused.get_json()["message"] == "Invalid credentials"

    assert client.get("/auth/me").status_code == 401

    accepted = client.post("/auth/login", json={"username": "superuser", "password": "admin-pass"})
    assert accepted.status_code == 200
    user = accepted.get_json()["user"]
    assert user["roles"] == ["admin"]
    assert user["global"] is True
    assert "manage_catalog" in user["capabilities"]

    assert client.get("/auth/me").get_json()["user"]["username"] == "superuser"
    client.get("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_password_whitespace_is_significant(client):
    user = User(username="espacos")
    user.set_password("  frase com espacos ")
    user.roles.append(Role.query.filter_by(name="viewer").one())
    db.session.add(user)
    db.session.commit()

    trimmed = client.post("/auth/login", data={"username": "espacos", "password": "frase com espacos"})
    assert trimmed.status_code == 401

    exact = client.post(
        "/auth/login", data={"username": " espacos ", "password": "  frase com espacos "}
    )
    assert exact.status_code == 200
    assert exact.get_json()["user"]["username"] == "espacos"


def test_viewer_capabilities(client):
    viewer = User(username="leitor")
    viewer.set_password("secret")
    viewer.roles.append(Role.query.filter_by(name="viewer").one())
    db.session.add(viewer)
    db.session.commit()

    response = client.post("/auth/login", data={"username": "leitor", "password": "secret"})
    assert response.get_json()["user"]["capabilities"] == ["view_stock"]
    assert response.get_json()["user"]["global"] is False


def test_dashboard_summarizes_alerts(client):
    sede = catalog.create_unit("Sede")
    filial = catalog.create_unit("Filial")
    black = catalog.create_item("TN-514K", "Preto")
    db.session.flush()
    StockEntry.query.filter_by(unit_id=sede.id, item_id=black.id).one().quantity = 20
    db.session.commit()

    sql_services().ledger.apply_delta(filial.id, black.id, 2, None, "ADD", "Compra")
    sql_services().requests.submit(sede.id, black.id, 1, "RH", None)

    client.post("/auth/login", data={"username": "superuser", "password": "admin-pass"})
    response = client.get("/")

    assert response.status_code == 200
    body = response.get_json()
    assert body["scope"] == "all"
    summary = body["inventory_summary"]
    assert summary["entry_count"] == 2
    assert summary["total_quantity"] == 22
    assert summary["out_count"] == 0
    assert summary["low_count"] == 1
    assert summary["total_alerts"] == 1
    assert [level["unit_id"] for level in summary["preview"]] == [filial.id]
    assert body["pending_requests"] == 1
    assert [row["reason"] for row in body["recent_transactions"]] == ["Compra"]


def test_cli_create_user_and_adjust_stock(app):
    sede = catalog.create_unit("Sede")
    black = catalog.create_item("TN-514K", "Preto")
    db.session.commit()
    runner = app.test_cli_runner()

    created = runner.invoke(
        args=[
            "create-user",
            "operador",
            "--password",
            "secret",
            "--role",
            "editor",
            "--unit-id",
            str(sede.id),
        ]
    )
    assert created.exit_code == 0
    assert "Saved operador with roles: editor" in created.output

    added = runner.invoke(
        args=["adjust-stock", str(sede.id), str(black.id), "4", "--actor", "operador"]
    )
    assert added.exit_code == 0
    assert "Stock updated to 4." in added.output

    refused = runner.invoke(args=["adjust-stock", str(sede.id), str(black.id), "-9"])
    assert refused.exit_code != 0
    assert "Not enough stock" in refused.output

    unknown_actor = runner.invoke(
        args=["adjust-stock", str(sede.id), str(black.id), "1", "--actor", "ghost"]
    )
    assert unknown_actor.exit_code != 0

    unknown_unit = runner.invoke(args=["adjust-stock", "999", str(black.id), "2"])
    assert unknown_unit.exit_code != 0
    assert "Unit 999 does not exist." in unknown_unit.output

    low = runner.invoke(args=["low-stock"])
    assert f"unit={sede.id} item={black.id} quantity=4 alert=5" in low.output

    db.session.expire_all()
    operator = User.query.filter_by(username="operador").one()
    assert operator.unit_id == sede.id
    assert operator.role_names() == {"editor"}
    transaction = StockTransaction.query.one()
    assert transaction.user_id == operator.id
    assert transaction.type == "ADD"


def test_log_records_carry_request_id(app):
    record = logging.LogRecord("tonerapp", logging.INFO, __file__, 1, "stock moved", None, None)
    with app.test_request_context("/", headers={"X-Request-ID": "trace-42"}):
        assign_request_id()
        assert RequestContextFilter().filter(record) is True

    assert record.request_id == "trace-42"
    assert record.username == "-"

    outside = logging.LogRecord("tonerapp", logging.INFO, __file__, 1, "startup", None, None)
    RequestContextFilter().filter(outside)
    assert outside.request_id == "-"
