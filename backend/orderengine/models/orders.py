from __future__ import annotations

from ..extensions import db
from orderengine.time_utils import to_utc_z


class Order(db.Model):
    """
    Sales order header.

    Created together with its items and first status history row in one
    transaction. Money is stored in cents so the total reconciles exactly.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("business_id", "order_number", name="uq_orders_business_number"),
        db.CheckConstraint(
            "total_cents = subtotal_cents - discount_cents + tax_cents",
            name="ck_orders_total_reconciles",
        ),
        db.Index("ix_orders_business_status_date", "business_id", "status", "order_date"),
        db.Index("ix_orders_business_date", "business_id", "order_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=True, index=True)

    # Human-readable number (e.g., "ORD-20261019-0001"), unique per business
    order_number = db.Column(db.String(64), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)
    payment_method = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    shipping_address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=False)
    order_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    status_history = db.relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by=lambda: [OrderStatusHistory.changed_at, OrderStatusHistory.id],
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, *, include_items: bool = True, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "business_id": self.business_id,
            "customer_id": self.customer_id,
            "order_number": self.order_number,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "delivery_date": to_utc_z(self.delivery_date),
            "actual_delivery_date": to_utc_z(self.actual_delivery_date),
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "created_by_user_id": self.created_by_user_id,
            "order_date": to_utc_z(self.order_date),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_history:
            data["status_history"] = [entry.to_dict() for entry in self.status_history]
        return data


class OrderItem(db.Model):
    """Line item. Immutable once created; removed only with its order."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        db.CheckConstraint("unit_price_cents > 0", name="ck_order_items_unit_price_positive"),
        db.CheckConstraint(
            "total_price_cents = quantity * unit_price_cents",
            name="ck_order_items_total_matches",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, nullable=True)
    inventory_id = db.Column(
        db.Integer,
        db.ForeignKey("inventory.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Snapshot of the product name at order time
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    # Sale transaction that consumed stock for this line (None when no stock moved)
    inventory_transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="items")
    inventory = db.relationship("InventoryRecord")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "inventory_id": self.inventory_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "inventory_transaction_id": self.inventory_transaction_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusHistory(db.Model):
    """
    Append-only status audit trail.

    The latest row (by changed_at, id) always carries the order's current status.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order_changed", "order_id", "changed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = db.Column(db.String(16), nullable=False)
    changed_by_user_id = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="status_history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "changed_by_user_id": self.changed_by_user_id,
            "note": self.note,
            "changed_at": to_utc_z(self.changed_at),
        }


class OrderSequence(db.Model):
    """
    Per-business, per-day order number counter.

    last_number is only ever incremented with a single UPDATE, so concurrent
    allocations for the same business and day queue on this row.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("business_id", "day_prefix", name="uq_order_sequences_business_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, nullable=False, index=True)
    # e.g. "ORD-20261019"
    day_prefix = db.Column(db.String(32), nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "day_prefix": self.day_prefix,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }
