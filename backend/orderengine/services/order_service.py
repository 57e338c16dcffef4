# Overview: Order lifecycle orchestration (create, update, delete, read) over one unit of work each.

"""
Order Lifecycle Service

Every write operation either commits a fully consistent result or raises one
EngineError and leaves nothing behind:

- create: order number, header, items, stock decrements and the first
  history row are written in one unit of work.
- update: field changes plus a history row when the status changes. Never
  touches stock.
- delete: only pending or cancelled orders. Pending orders give back the
  stock their lines consumed (compensating ledger entries) before the order,
  its items and its history are removed.

Cancelled orders are not restocked on delete; cancellation is expected to
have settled their stock already.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from ..errors import InsufficientStockError, InvalidStateError, ValidationError
from ..models import Order
from ..validation import MAX_INTEGER, coerce_int, enforce_rules_order_totals, validate_order_items
from orderengine.time_utils import utcnow
from .concurrency import run_with_retry, unit_of_work
from .inventory_ledger import ADJUSTMENT, SALE, InventoryLedger
from .order_state_machine import (
    DELETABLE_STATUSES,
    PENDING,
    assert_transition,
    validate_payment_status,
    validate_status,
)
from .order_store import OrderStore
from .sequence_service import DEFAULT_PREFIX, next_order_number


def _require_id(value, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be a positive integer", field=field)
    return number


class OrderLifecycleService:
    def __init__(
        self,
        session: Session,
        *,
        allow_backorder: bool = False,
        number_prefix: str = DEFAULT_PREFIX,
        retry_attempts: int = 3,
        retry_backoff: float = 0.1,
    ):
        self.session = session
        self.store = OrderStore(session)
        self.ledger = InventoryLedger(session)
        self.allow_backorder = allow_backorder
        self.number_prefix = number_prefix
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _run(self, func):
        return run_with_retry(
            func,
            session=self.session,
            attempts=self.retry_attempts,
            backoff_base=self.retry_backoff,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_order(self, order_id: int, business_id: int) -> Order:
        return self.store.get(order_id, business_id, hydrate=True)

    def list_orders(
        self,
        business_id: int,
        *,
        status: str | None = None,
        payment_status: str | None = None,
        customer_id: int | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Order], int]:
        if status:
            validate_status(status)
        if payment_status:
            validate_payment_status(payment_status)
        if page < 1:
            raise ValidationError("page must be >= 1", field="page")
        if limit < 1:
            raise ValidationError("limit must be >= 1", field="limit")
        if (page - 1) * limit > MAX_INTEGER:
            raise ValidationError("page is out of range", field="page")
        if start_date and end_date and start_date > end_date:
            raise ValidationError("start_date must be before end_date", field="start_date")

        return self.store.query_orders(
            business_id,
            page=page,
            limit=limit,
            status=status,
            payment_status=payment_status,
            customer_id=customer_id,
            start_date=start_date,
            end_date=end_date,
            search=search,
        )

    def order_stats(
        self,
        business_id: int,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict:
        if start_date and end_date and start_date > end_date:
            raise ValidationError("start_date must be before end_date", field="start_date")
        return self.store.stats(business_id, start_date=start_date, end_date=end_date)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_order(
        self,
        *,
        business_id: int,
        user_id: int,
        items: list[dict],
        subtotal_cents: int,
        total_cents: int,
        tax_cents: int = 0,
        discount_cents: int = 0,
        customer_id: int | None = None,
        payment_method: str | None = None,
        notes: str | None = None,
        delivery_date: datetime | None = None,
        shipping_address: dict | None = None,
        billing_address: dict | None = None,
    ) -> Order:
        """
        Create a pending order, its items and its first history row.

        Lines that reference inventory consume stock with a 'sale' ledger
        entry. If any line is short the whole order fails with
        InsufficientStockError listing every short line, unless backorders
        are allowed, in which case short lines are kept without moving stock.
        """
        business_id = _require_id(business_id, "business_id")
        user_id = _require_id(user_id, "user_id")
        lines = validate_order_items(items)
        amounts = enforce_rules_order_totals(
            subtotal_cents=subtotal_cents,
            tax_cents=tax_cents,
            discount_cents=discount_cents,
            total_cents=total_cents,
        )

        def _op():
            with unit_of_work(self.session):
                order_number = next_order_number(
                    self.session,
                    business_id=business_id,
                    prefix=self.number_prefix,
                )
                order = self.store.add_order(
                    business_id=business_id,
                    order_number=order_number,
                    created_by_user_id=user_id,
                    customer_id=customer_id,
                    payment_method=payment_method,
                    notes=notes,
                    delivery_date=delivery_date,
                    shipping_address=shipping_address,
                    billing_address=billing_address,
                    **amounts,
                )

                shortages = []
                for index, line in enumerate(lines):
                    item = self.store.add_item(
                        order,
                        product_id=line["product_id"],
                        inventory_id=line["inventory_id"],
                        product_name=line["product_name"],
                        quantity=line["quantity"],
                        unit_price_cents=line["unit_price_cents"],
                    )
                    if item.inventory_id is None:
                        continue

                    try:
                        tx = self.ledger.decrement(
                            item.inventory_id,
                            item.quantity,
                            business_id=business_id,
                            user_id=user_id,
                            reason=SALE,
                            note=f"Sale - Order {order_number}",
                            order_number=order_number,
                        )
                    except InsufficientStockError as exc:
                        if not self.allow_backorder:
                            shortages.append({"line": index, "product_name": item.product_name, **exc.details})
                        continue
                    item.inventory_transaction_id = tx.id

                if shortages:
                    raise InsufficientStockError(
                        "Insufficient stock for one or more order items",
                        details={"items": shortages},
                    )

                self.store.append_history(order, status=PENDING, user_id=user_id, note="Order created")
                order_id = order.id
            return order_id

        order_id = self._run(_op)
        return self.get_order(order_id, business_id)

    def update_order(
        self,
        order_id: int,
        *,
        business_id: int,
        user_id: int,
        status: str | None = None,
        payment_status: str | None = None,
        notes: str | None = None,
        delivery_date: datetime | None = None,
        actual_delivery_date: datetime | None = None,
        status_note: str | None = None,
    ) -> Order:
        """Apply field changes; a status change must follow the transition table and is recorded in history."""
        user_id = _require_id(user_id, "user_id")
        if status is not None:
            validate_status(status)
        if payment_status is not None:
            validate_payment_status(payment_status)

        def _op():
            with unit_of_work(self.session):
                order = self.store.get(order_id, business_id, lock=True)
                changed = any(
                    value is not None
                    for value in (payment_status, notes, delivery_date, actual_delivery_date)
                )

                if status is not None and status != order.status:
                    changed = True
                    assert_transition(order.status, status)
                    order.status = status
                    self.store.append_history(
                        order,
                        status=status,
                        user_id=user_id,
                        note=status_note or f"Status changed to {status}",
                    )

                if payment_status is not None:
                    order.payment_status = payment_status
                if notes is not None:
                    order.notes = notes
                if delivery_date is not None:
                    order.delivery_date = delivery_date
                if actual_delivery_date is not None:
                    order.actual_delivery_date = actual_delivery_date

                if changed:
                    order.updated_at = utcnow()
                updated_id = order.id
            return updated_id

        self._run(_op)
        return self.get_order(order_id, business_id)

    def delete_order(self, order_id: int, *, business_id: int, user_id: int) -> None:
        """Delete a pending or cancelled order; pending orders restore the stock they consumed."""
        user_id = _require_id(user_id, "user_id")

        def _op():
            with unit_of_work(self.session):
                order = self.store.get(order_id, business_id, lock=True, hydrate=True)

                if order.status not in DELETABLE_STATUSES:
                    raise InvalidStateError(
                        "Can only delete pending or cancelled orders",
                        details={
                            "order_id": order.id,
                            "current_status": order.status,
                            "allowed_statuses": list(DELETABLE_STATUSES),
                        },
                    )

                if order.status == PENDING:
                    for item in order.items:
                        # Only lines that actually consumed stock are given back
                        if item.inventory_id is None or item.inventory_transaction_id is None:
                            continue
                        self.ledger.increment(
                            item.inventory_id,
                            item.quantity,
                            business_id=business_id,
                            user_id=user_id,
                            reason=ADJUSTMENT,
                            note=f"Order {order.order_number} deleted - inventory restored",
                            order_number=order.order_number,
                        )

                self.store.delete(order)

        self._run(_op)
