# Overview: Persistence for the order aggregate (header, items, status history) and its read queries.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from ..errors import NotFoundError
from ..models import Order, OrderItem, OrderStatusHistory
from ..validation import MAX_INTEGER
from orderengine.time_utils import utcnow, to_utc_z
from .concurrency import lock_for_update
from .order_state_machine import PENDING, ORDER_STATUSES, PAYMENT_STATUSES


class OrderStore:
    """
    Writes never commit: the lifecycle service wraps them in one unit of work
    so an order, its items and its history become visible together.
    """

    def __init__(self, session: Session):
        self.session = session

    def add_order(
        self,
        *,
        business_id: int,
        order_number: str,
        created_by_user_id: int,
        subtotal_cents: int,
        tax_cents: int,
        discount_cents: int,
        total_cents: int,
        customer_id: int | None = None,
        payment_method: str | None = None,
        notes: str | None = None,
        delivery_date: datetime | None = None,
        shipping_address: dict | None = None,
        billing_address: dict | None = None,
    ) -> Order:
        now = utcnow()
        order = Order(
            business_id=business_id,
            customer_id=customer_id,
            order_number=order_number,
            subtotal_cents=subtotal_cents,
            tax_cents=tax_cents,
            discount_cents=discount_cents,
            total_cents=total_cents,
            status=PENDING,
            payment_status="unpaid",
            payment_method=payment_method,
            notes=notes,
            delivery_date=delivery_date,
            shipping_address=shipping_address,
            billing_address=billing_address,
            created_by_user_id=created_by_user_id,
            order_date=now,
            updated_at=now,
        )
        self.session.add(order)
        self.session.flush()
        return order

    def add_item(
        self,
        order: Order,
        *,
        product_name: str,
        quantity: int,
        unit_price_cents: int,
        product_id: int | None = None,
        inventory_id: int | None = None,
    ) -> OrderItem:
        item = OrderItem(
            order_id=order.id,
            product_id=product_id,
            inventory_id=inventory_id,
            product_name=product_name,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            total_price_cents=quantity * unit_price_cents,
            created_at=utcnow(),
        )
        order.items.append(item)
        self.session.flush()
        return item

    def append_history(self, order: Order, *, status: str, user_id: int, note: str | None = None) -> OrderStatusHistory:
        entry = OrderStatusHistory(
            order_id=order.id,
            status=status,
            changed_by_user_id=user_id,
            note=note,
            changed_at=utcnow(),
        )
        order.status_history.append(entry)
        self.session.flush()
        return entry

    def get(
        self,
        order_id: int,
        business_id: int,
        *,
        lock: bool = False,
        hydrate: bool = False,
    ) -> Order:
        """Load one order scoped to its business or raise NotFoundError."""
        if order_id > MAX_INTEGER:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        query = self.session.query(Order).filter_by(id=order_id, business_id=business_id)
        if hydrate:
            query = query.options(selectinload(Order.items), selectinload(Order.status_history))
        if lock:
            query = lock_for_update(query)
        order = query.populate_existing().first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        return order

    def delete(self, order: Order) -> None:
        # Items and status history cascade with the order
        self.session.delete(order)
        self.session.flush()

    def _filtered(
        self,
        business_id: int,
        *,
        status: str | None = None,
        payment_status: str | None = None,
        customer_id: int | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
    ):
        query = self.session.query(Order).filter(Order.business_id == business_id)
        if status:
            query = query.filter(Order.status == status)
        if payment_status:
            query = query.filter(Order.payment_status == payment_status)
        if customer_id is not None:
            query = query.filter(Order.customer_id == customer_id)
        if start_date is not None:
            query = query.filter(Order.order_date >= start_date)
        if end_date is not None:
            query = query.filter(Order.order_date <= end_date)
        term = (search or "").strip()
        if term:
            # % and _ in the term match literally
            query = query.filter(or_(
                Order.order_number.icontains(term, autoescape=True),
                Order.notes.icontains(term, autoescape=True),
            ))
        return query

    def query_orders(self, business_id: int, *, page: int = 1, limit: int = 10, **filters) -> tuple[list[Order], int]:
        query = self._filtered(business_id, **filters)
        total = query.order_by(None).count()
        orders = (
            query.options(selectinload(Order.items))
            .order_by(Order.order_date.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return orders, total

    def stats(
        self,
        business_id: int,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict:
        base = self._filtered(business_id, start_date=start_date, end_date=end_date)

        count, revenue = base.with_entities(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_cents), 0),
        ).one()
        count = int(count or 0)
        revenue = int(revenue or 0)

        status_rows = base.with_entities(Order.status, func.count(Order.id)).group_by(Order.status).all()
        payment_rows = base.with_entities(Order.payment_status, func.count(Order.id)).group_by(Order.payment_status).all()

        status_breakdown = {s: 0 for s in ORDER_STATUSES}
        status_breakdown.update({s or "unknown": int(n) for s, n in status_rows})
        payment_breakdown = {s: 0 for s in PAYMENT_STATUSES}
        payment_breakdown.update({s or "unknown": int(n) for s, n in payment_rows})

        return {
            "business_id": business_id,
            "start_date": to_utc_z(start_date),
            "end_date": to_utc_z(end_date),
            "total_orders": count,
            "total_revenue_cents": revenue,
            # nearest-cent rounding (half-up)
            "average_order_value_cents": (revenue + count // 2) // count if count else 0,
            "status_breakdown": status_breakdown,
            "payment_status_breakdown": payment_breakdown,
        }
