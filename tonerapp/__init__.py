from flask import Flask, current_app, jsonify
from flask_login import current_user
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .extensions import db, login_manager
from .permissions import CORE_ROLES, is_global_user, scoped_unit_id
from .routes import auth, catalog, errors, requests, stock, users
from .security import require_capability
from .services.stock_services import sql_services
from .utils.logging import assign_request_id, configure_logging
from config import Config
from . import models  # ensure models are registered with SQLAlchemy
from . import cli


DASHBOARD_PREVIEW_LIMIT = 5


def _ensure_superuser_account(admin_username: str, admin_password: str) -> None:
    """Create or update the default administrative user."""

    if not admin_username:
        return

    for attempt in range(3):
        try:
            admin_role = models.Role.query.filter_by(name="admin").first()
            if admin_role is None:
                admin_role = models.Role(name="admin", description=CORE_ROLES["admin"])
                db.session.add(admin_role)

            user = models.User.query.filter_by(username=admin_username).first()
            if user is None:
                user = models.User(username=admin_username, display_name="Administrator")
                db.session.add(user)

            if admin_password:
                user.set_password(admin_password)

            if admin_role not in user.roles:
                user.roles.append(admin_role)

            db.session.commit()
            return
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                raise


def _ensure_core_roles() -> None:
    """Make sure the built-in roles exist for assignment."""

    existing_roles = {
        role.name: role
        for role in models.Role.query.filter(models.Role.name.in_(CORE_ROLES)).all()
    }

    changed = False
    for role_name, description in CORE_ROLES.items():
        if role_name in existing_roles:
            role = existing_roles[role_name]
            if role.description != description:
                role.description = description
                changed = True
            continue

        db.session.add(models.Role(name=role_name, description=description))
        changed = True

    if changed:
        db.session.commit()


def _ping_database() -> None:
    """Raise :class:`OperationalError` when the configured database is unreachable."""

    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def create_app(config_override=None):
    app = Flask(__name__)

    # load configuration from environment variables
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    app.config.setdefault("DATABASE_AVAILABLE", True)
    app.config.setdefault("DATABASE_ERROR", None)

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if database_uri.startswith("sqlite:///:memory:"):
        engine_options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        connect_args = engine_options.setdefault("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine_options.setdefault("poolclass", StaticPool)

    if not app.config.get("TESTING"):
        configure_logging(app)
    app.before_request(assign_request_id)

    db.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str):
        if not user_id:
            return None
        try:
            return db.session.get(models.User, int(user_id))
        except (TypeError, ValueError):
            return None
        except OperationalError:
            current_app.logger.warning(
                "Skipped user lookup because the database is unavailable."
            )
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"ok": False, "error": "unauthorized", "message": "Log in to continue."}), 401

    database_available = True
    database_error_message: str | None = None

    # create tables if they do not exist and seed the built-in roles
    with app.app_context():
        try:
            _ping_database()
        except OperationalError as exc:
            database_available = False
            root_cause = getattr(exc, "orig", exc)
            details = str(root_cause).strip()
            database_error_message = (
                "Unable to connect to the configured database. Start the "
                "database service or update the DB_URL setting, then restart "
                "the application."
            )
            if details:
                database_error_message += f" (Error: {details})"
            message_suffix = f": {details}" if details else ""
            current_app.logger.error(
                "Database connection unavailable during startup%s",
                message_suffix,
                exc_info=current_app.debug,
            )
            db.session.remove()
        else:
            try:
                db.create_all()
                _ensure_core_roles()
                _ensure_superuser_account(
                    app.config.get("ADMIN_USER", "superuser"),
                    app.config.get("ADMIN_PASSWORD", ""),
                )
            except SQLAlchemyError:  # pragma: no cover - schema problems surface in logs
                database_available = False
                database_error_message = (
                    "The database schema could not be initialized. Review the logs "
                    "for details and restart once resolved."
                )
                current_app.logger.exception("Database initialization error")
                db.session.remove()

    app.config["DATABASE_AVAILABLE"] = database_available
    app.config["DATABASE_ERROR"] = database_error_message

    # register blueprints
    app.register_blueprint(errors.bp)
    app.register_blueprint(auth.bp)
    app.register_blueprint(stock.bp)
    app.register_blueprint(requests.bp)
    app.register_blueprint(catalog.bp)
    app.register_blueprint(users.bp)
    cli.register_cli(app)

    @app.route("/health")
    def health():
        status_code = 200 if current_app.config.get("DATABASE_AVAILABLE", True) else 503
        return (
            jsonify(
                {
                    "database_online": current_app.config.get("DATABASE_AVAILABLE", True),
                    "database_error": current_app.config.get("DATABASE_ERROR"),
                }
            ),
            status_code,
        )

    @app.route("/")
    @require_capability("view_stock")
    def home():
        services = sql_services()
        unit_id = scoped_unit_id(current_user, None)

        entries = services.ledger.entries(unit_id)
        out_items = [level for level in entries if level.quantity <= 0]
        low_items = [level for level in entries if level.is_low and level.quantity > 0]
        out_items.sort(key=lambda level: (level.unit_id, level.item_id))
        low_items.sort(key=lambda level: (level.quantity - level.min_stock_alert, level.unit_id))

        inventory_summary = {
            "entry_count": len(entries),
            "total_quantity": sum(level.quantity for level in entries),
            "out_count": len(out_items),
            "low_count": len(low_items),
            "total_alerts": len(out_items) + len(low_items),
            "preview": [
                level.to_dict() for level in (out_items + low_items)[:DASHBOARD_PREVIEW_LIMIT]
            ],
            "preview_limit": DASHBOARD_PREVIEW_LIMIT,
        }

        recent = services.ledger.recent_transactions(DASHBOARD_PREVIEW_LIMIT, unit_id=unit_id)
        return jsonify(
            {
                "scope": "all" if is_global_user(current_user) else "unit",
                "unit_id": unit_id,
                "inventory_summary": inventory_summary,
                "pending_requests": services.requests.pending_count(unit_id),
                "recent_transactions": [record.to_dict() for record in recent],
            }
        )

    return app
