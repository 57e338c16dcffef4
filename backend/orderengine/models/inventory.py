from __future__ import annotations

from ..extensions import db
from orderengine.time_utils import to_utc_z


class InventoryRecord(db.Model):
    """
    Current stock for one stocked item of a business.

    current_quantity is a mutable snapshot. Every change to it goes through
    the inventory ledger, which appends the InventoryTransaction explaining it:

        initial_quantity + SUM(quantity_change) == current_quantity
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.CheckConstraint("current_quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.Index("ix_inventory_business_name", "business_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)

    current_quantity = db.Column(db.Integer, nullable=False, default=0)
    # Reconciliation baseline; never changes after creation
    initial_quantity = db.Column(db.Integer, nullable=False, default=0)

    unit = db.Column(db.String(32), nullable=False, default="unit")
    cost_per_unit_cents = db.Column(db.Integer, nullable=False, default=0)

    low_stock_threshold = db.Column(db.Integer, nullable=True)
    reorder_point = db.Column(db.Integer, nullable=True)
    expiration_date = db.Column(db.DateTime(timezone=True), nullable=True)
    batch_lot_number = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_low_stock(self) -> bool:
        if self.low_stock_threshold is None:
            return False
        return self.current_quantity <= self.low_stock_threshold

    @property
    def needs_reorder(self) -> bool:
        if self.reorder_point is None:
            return False
        return self.current_quantity <= self.reorder_point

    def __repr__(self) -> str:
        return f"<InventoryRecord id={self.id} name={self.name!r} qty={self.current_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "name": self.name,
            "current_quantity": self.current_quantity,
            "initial_quantity": self.initial_quantity,
            "unit": self.unit,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "low_stock_threshold": self.low_stock_threshold,
            "reorder_point": self.reorder_point,
            "is_low_stock": self.is_low_stock,
            "needs_reorder": self.needs_reorder,
            "expiration_date": to_utc_z(self.expiration_date),
            "batch_lot_number": self.batch_lot_number,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """
    Append-only ledger entry for one quantity change.

    IMMUTABLE: rows are never updated or deleted, including when the order
    that caused them is deleted (order_number keeps the reference).
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_inventory_txns_inventory_occurred", "inventory_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventory.id"), nullable=False, index=True)
    business_id = db.Column(db.Integer, nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    # sale, adjustment, restock
    type = db.Column(db.String(32), nullable=False, index=True)

    # Signed: negative for stock leaving, positive for stock returning
    quantity_change = db.Column(db.Integer, nullable=False)
    resulting_quantity = db.Column(db.Integer, nullable=False)

    note = db.Column(db.String(255), nullable=True)
    order_number = db.Column(db.String(64), nullable=True, index=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    inventory = db.relationship("InventoryRecord", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "type": self.type,
            "quantity_change": self.quantity_change,
            "resulting_quantity": self.resulting_quantity,
            "note": self.note,
            "order_number": self.order_number,
            "occurred_at": to_utc_z(self.occurred_at),
        }
