import click

from tonerapp.extensions import db
from tonerapp.models import Role, TransactionType, User
from tonerapp.permissions import CORE_ROLES
from tonerapp.services.stock_ledger import type_for_delta
from tonerapp.services.stock_services import sql_services


def register_cli(app):
    @app.cli.command("create-user")
    @click.argument("username")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option(
        "--role",
        "role_names",
        multiple=True,
        type=click.Choice(sorted(CORE_ROLES)),
        default=("editor",),
        show_default=True,
    )
    @click.option("--unit-id", type=int, default=None, help="Unit the user operates.")
    @click.option("--display-name", default=None)
    def create_user(username, password, role_names, unit_id, display_name) -> None:
        """Create a user or reset an existing user's password and roles."""
        user = User.query.filter_by(username=username).first()
        if user is None:
            user = User(username=username)
            db.session.add(user)
        user.set_password(password)
        user.display_name = display_name or user.display_name or username
        user.unit_id = unit_id
        user.roles = Role.query.filter(Role.name.in_(role_names)).all()
        db.session.commit()
        click.echo(f"Saved {username} with roles: {', '.join(sorted(role_names))}")

    @app.cli.command("low-stock")
    @click.option("--unit-id", type=int, default=None)
    def low_stock(unit_id) -> None:
        """List stock entries at or below their alert threshold."""
        levels = sql_services().ledger.low_stock(unit_id)
        if not levels:
            click.echo("No stock entries are below their alert threshold.")
            return
        for level in levels:
            click.echo(
                f"unit={level.unit_id} item={level.item_id} "
                f"quantity={level.quantity} alert={level.min_stock_alert}"
            )

    @app.cli.command("adjust-stock")
    @click.argument("unit_id", type=int)
    @click.argument("item_id", type=int)
    @click.argument("delta", type=int)
    @click.option("--reason", default="CLI adjustment", show_default=True)
    @click.option("--actor", "actor_username", default=None, help="Username recorded on the transaction.")
    @click.option("--adjustment", is_flag=True, help="Record as ADJUSTMENT instead of ADD/REMOVE.")
    def adjust_stock(unit_id, item_id, delta, reason, actor_username, adjustment) -> None:
        """Apply a signed stock change through the ledger."""
        actor_id = None
        if actor_username:
            actor = User.query.filter_by(username=actor_username).first()
            if actor is None:
                raise click.ClickException(f"Unknown user {actor_username}.")
            actor_id = actor.id

        transaction_type = TransactionType.ADJUSTMENT if adjustment else type_for_delta(delta)
        outcome = sql_services().ledger.apply_delta(
            unit_id, item_id, delta, actor_id, transaction_type, reason
        )
        if not outcome.ok:
            raise click.ClickException(outcome.message)
        click.echo(outcome.message)
