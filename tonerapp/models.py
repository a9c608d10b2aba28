from datetime import datetime

from flask_login import UserMixin
from sqlalchemy import inspect
from sqlalchemy.orm.exc import DetachedInstanceError
from werkzeug.security import check_password_hash, generate_password_hash

from tonerapp.extensions import db


class TransactionType:
    ADD = "ADD"
    REMOVE = "REMOVE"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"

    ALL_TYPES = [ADD, REMOVE, TRANSFER, ADJUSTMENT]


class RequestStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    TERMINAL_STATES = {APPROVED, REJECTED}
    ALL_STATUSES = [PENDING, APPROVED, REJECTED]


class Unit(db.Model):
    __tablename__ = "unit"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    sectors = db.relationship(
        "UnitSector",
        back_populates="unit",
        cascade="all, delete-orphan",
        order_by="UnitSector.name",
    )
    stock_entries = db.relationship(
        "StockEntry",
        back_populates="unit",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Unit {self.name}>"


class SupplyItem(db.Model):
    """A consumable tracked per unit, e.g. one toner cartridge model/color."""

    __tablename__ = "supply_item"

    id = db.Column(db.Integer, primary_key=True)
    model = db.Column(db.String(120), nullable=False)
    color = db.Column(db.String(40), nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    stock_entries = db.relationship(
        "StockEntry",
        back_populates="item",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("model", "color", name="uq_supply_item_model_color"),
    )

    @property
    def label(self) -> str:
        return f"{self.model} ({self.color})"

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SupplyItem {self.label}>"


class UnitSector(db.Model):
    __tablename__ = "unit_sector"

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(
        db.Integer, db.ForeignKey("unit.id", ondelete="CASCADE"), nullable=False
    )
    name = db.Column(db.String(120), nullable=False)

    unit = db.relationship("Unit", back_populates="sectors")

    __table_args__ = (
        db.UniqueConstraint("unit_id", "name", name="uq_unit_sector_name"),
    )


class StockEntry(db.Model):
    __tablename__ = "stock_entry"

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(
        db.Integer, db.ForeignKey("unit.id", ondelete="CASCADE"), nullable=False
    )
    item_id = db.Column(
        db.Integer, db.ForeignKey("supply_item.id", ondelete="CASCADE"), nullable=False
    )
    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_alert = db.Column(db.Integer, nullable=False, default=5)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    unit = db.relationship("Unit", back_populates="stock_entries")
    item = db.relationship("SupplyItem", back_populates="stock_entries")

    __table_args__ = (
        db.UniqueConstraint("unit_id", "item_id", name="uq_stock_entry_unit_item"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_entry_quantity_non_negative"),
    )

    @property
    def is_low(self) -> bool:
        return (self.quantity or 0) <= (self.min_stock_alert or 0)


class StockTransaction(db.Model):
    """Append-only audit record of a committed quantity change."""

    __tablename__ = "stock_transaction"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(20), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    item_id = db.Column(db.Integer, db.ForeignKey("supply_item.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("unit.id"), nullable=False)
    reference = db.Column(db.String(64), nullable=True, index=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_stock_transaction_quantity_magnitude"),
    )


class TonerRequest(db.Model):
    __tablename__ = "toner_request"

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=RequestStatus.PENDING)
    quantity = db.Column(db.Integer, nullable=False)
    sector_name = db.Column(db.String(120), nullable=True)
    requestor_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    item_id = db.Column(db.Integer, db.ForeignKey("supply_item.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("unit.id"), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    decided_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    decided_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f"<TonerRequest {self.id} status={self.status}>"


user_roles = db.Table(
    "user_role",
    db.Column("user_id", db.Integer, db.ForeignKey("user.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("role.id"), primary_key=True),
)


class Role(db.Model):
    __tablename__ = "role"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    description = db.Column(db.String(255))

    users = db.relationship(
        "User",
        secondary=user_roles,
        back_populates="roles",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Role {self.name}>"


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    unit_id = db.Column(
        db.Integer, db.ForeignKey("unit.id", ondelete="SET NULL"), nullable=True
    )
    sector_id = db.Column(
        db.Integer, db.ForeignKey("unit_sector.id", ondelete="SET NULL"), nullable=True
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    roles = db.relationship(
        "Role",
        secondary=user_roles,
        back_populates="users",
        lazy="joined",
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def role_names(self) -> set[str]:
        try:
            return {role.name for role in self.roles}
        except DetachedInstanceError:
            identity = inspect(self).identity
            if not identity:
                return set()
            refreshed = db.session.get(User, identity[0])
            if refreshed is None:
                return set()
            return refreshed.role_names()

    def has_role(self, role_name: str) -> bool:
        return self.has_any_role((role_name,))

    def has_any_role(self, role_names) -> bool:
        if not role_names:
            return False
        role_name_set = self.role_names()
        return any(name in role_name_set for name in role_names)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.username}>"
