"""Create the unit, supply item, stock, transaction and request tables.

Revision ID: 20261019_create_stock_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_create_stock_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "unit",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "supply_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("model", sa.String(length=120), nullable=False),
        sa.Column("color", sa.String(length=40), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("model", "color", name="uq_supply_item_model_color"),
    )
    op.create_table(
        "unit_sector",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "unit_id",
            sa.Integer(),
            sa.ForeignKey("unit.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.UniqueConstraint("unit_id", "name", name="uq_unit_sector_name"),
    )
    op.create_table(
        "role",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("description", sa.String(length=255)),
    )
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255)),
        sa.Column("email", sa.String(length=255)),
        sa.Column(
            "unit_id",
            sa.Integer(),
            sa.ForeignKey("unit.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "sector_id",
            sa.Integer(),
            sa.ForeignKey("unit_sector.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "user_role",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("role.id"), primary_key=True),
    )
    op.create_table(
        "stock_entry",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "unit_id",
            sa.Integer(),
            sa.ForeignKey("unit.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("supply_item.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock_alert", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("unit_id", "item_id", name="uq_stock_entry_unit_item"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_entry_quantity_non_negative"),
    )
    op.create_table(
        "stock_transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("supply_item.id"), nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("unit.id"), nullable=False),
        sa.Column("reference", sa.String(length=64)),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_transaction_quantity_magnitude"),
    )
    op.create_index("ix_stock_transaction_reference", "stock_transaction", ["reference"])
    op.create_index("ix_stock_transaction_timestamp", "stock_transaction", ["timestamp"])
    op.create_table(
        "toner_request",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("sector_name", sa.String(length=120)),
        sa.Column("requestor_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("supply_item.id"), nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("unit.id"), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("decided_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_toner_request_timestamp", "toner_request", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_toner_request_timestamp", table_name="toner_request")
    op.drop_table("toner_request")
    op.drop_index("ix_stock_transaction_timestamp", table_name="stock_transaction")
    op.drop_index("ix_stock_transaction_reference", table_name="stock_transaction")
    op.drop_table("stock_transaction")
    op.drop_table("stock_entry")
    op.drop_table("user_role")
    op.drop_table("user")
    op.drop_table("role")
    op.drop_table("unit_sector")
    op.drop_table("supply_item")
    op.drop_table("unit")
