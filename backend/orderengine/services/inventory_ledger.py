# Overview: Inventory ledger; every stock quantity change plus its audit transaction.

"""
Inventory Ledger Invariants (authoritative)

- InventoryRecord.current_quantity is only changed here.
- Every change appends exactly one InventoryTransaction in the same DB
  transaction, carrying the signed change and the resulting quantity.
- current_quantity never goes negative. Decrements are a single conditional
  UPDATE ... WHERE current_quantity >= qty, so two concurrent decrements
  cannot both pass the sufficiency check.
- Reconciliation: initial_quantity + SUM(quantity_change) == current_quantity.
- Nothing here commits; callers own the unit of work.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import InventoryRecord, InventoryTransaction
from ..validation import MAX_INTEGER, MAX_QUANTITY
from orderengine.time_utils import utcnow
from .concurrency import lock_for_update


SALE = "sale"
ADJUSTMENT = "adjustment"
RESTOCK = "restock"
TRANSACTION_TYPES = {SALE, ADJUSTMENT, RESTOCK}


def _require_quantity(qty, field: str = "quantity") -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError(f"{field} must be an integer", field=field)
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0", field=field)
    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}", field=field)
    return qty


def _require_type(reason: str) -> str:
    if reason not in TRANSACTION_TYPES:
        raise ValidationError(
            f"Invalid transaction type '{reason}'. Must be one of: {', '.join(sorted(TRANSACTION_TYPES))}",
            field="type",
        )
    return reason


def _require_row_id(inventory_id: int) -> None:
    # Ids beyond the integer column range cannot exist
    if inventory_id > MAX_INTEGER:
        raise NotFoundError("Inventory record not found", details={"inventory_id": inventory_id})


class InventoryLedger:
    def __init__(self, session: Session):
        self.session = session

    def get_record(self, inventory_id: int, business_id: int, *, lock: bool = False) -> InventoryRecord:
        _require_row_id(inventory_id)
        query = self.session.query(InventoryRecord).filter_by(id=inventory_id, business_id=business_id)
        if lock:
            query = lock_for_update(query)
        record = query.populate_existing().first()
        if record is None:
            raise NotFoundError(
                "Inventory record not found",
                details={"inventory_id": inventory_id},
            )
        return record

    def create_record(
        self,
        *,
        business_id: int,
        name: str,
        initial_quantity: int = 0,
        user_id: int | None = None,
        product_id: int | None = None,
        unit: str = "unit",
        cost_per_unit_cents: int = 0,
        low_stock_threshold: int | None = None,
        reorder_point: int | None = None,
        expiration_date: datetime | None = None,
        batch_lot_number: str | None = None,
    ) -> InventoryRecord:
        """Create a stock record. initial_quantity is the reconciliation baseline."""
        if not name or not name.strip():
            raise ValidationError("name is required", field="name")
        if isinstance(initial_quantity, bool) or not isinstance(initial_quantity, int):
            raise ValidationError("initial_quantity must be an integer", field="initial_quantity")
        if initial_quantity < 0:
            raise ValidationError("initial_quantity must be >= 0", field="initial_quantity")
        if initial_quantity > MAX_QUANTITY:
            raise ValidationError(f"initial_quantity cannot exceed {MAX_QUANTITY}", field="initial_quantity")

        record = InventoryRecord(
            business_id=business_id,
            product_id=product_id,
            name=name.strip(),
            current_quantity=initial_quantity,
            initial_quantity=initial_quantity,
            unit=unit,
            cost_per_unit_cents=cost_per_unit_cents,
            low_stock_threshold=low_stock_threshold,
            reorder_point=reorder_point,
            expiration_date=expiration_date,
            batch_lot_number=batch_lot_number,
            created_by_user_id=user_id,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def _expire_cached(self, inventory_id: int) -> None:
        key = self.session.identity_key(InventoryRecord, inventory_id)
        cached = self.session.identity_map.get(key)
        if cached is not None:
            self.session.expire(cached, ["current_quantity", "updated_at"])

    def _append(
        self,
        *,
        inventory_id: int,
        business_id: int,
        user_id: int | None,
        tx_type: str,
        quantity_change: int,
        note: str | None,
        order_number: str | None,
    ) -> InventoryTransaction:
        self._expire_cached(inventory_id)
        resulting = (
            self.session.query(InventoryRecord.current_quantity)
            .filter_by(id=inventory_id)
            .scalar()
        )
        tx = InventoryTransaction(
            inventory_id=inventory_id,
            business_id=business_id,
            user_id=user_id,
            type=tx_type,
            quantity_change=quantity_change,
            resulting_quantity=resulting,
            note=note,
            order_number=order_number,
            occurred_at=utcnow(),
        )
        self.session.add(tx)
        self.session.flush()
        return tx

    def decrement(
        self,
        inventory_id: int,
        qty: int,
        *,
        business_id: int,
        user_id: int | None = None,
        reason: str = SALE,
        note: str | None = None,
        order_number: str | None = None,
    ) -> InventoryTransaction:
        """
        Remove qty units from stock.

        Raises InsufficientStockError if current_quantity < qty and
        NotFoundError if the record does not exist for the business.
        """
        _require_quantity(qty)
        _require_type(reason)
        _require_row_id(inventory_id)

        stmt = (
            update(InventoryRecord)
            .where(
                InventoryRecord.id == inventory_id,
                InventoryRecord.business_id == business_id,
                InventoryRecord.current_quantity >= qty,
            )
            .values(current_quantity=InventoryRecord.current_quantity - qty)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if not result.rowcount:
            available = (
                self.session.query(InventoryRecord.current_quantity)
                .filter_by(id=inventory_id, business_id=business_id)
                .scalar()
            )
            if available is None:
                raise NotFoundError(
                    "Inventory record not found",
                    details={"inventory_id": inventory_id},
                )
            raise InsufficientStockError(
                f"Insufficient stock for inventory {inventory_id}",
                details={
                    "inventory_id": inventory_id,
                    "requested_quantity": qty,
                    "available_quantity": available,
                },
            )

        return self._append(
            inventory_id=inventory_id,
            business_id=business_id,
            user_id=user_id,
            tx_type=reason,
            quantity_change=-qty,
            note=note,
            order_number=order_number,
        )

    def increment(
        self,
        inventory_id: int,
        qty: int,
        *,
        business_id: int,
        user_id: int | None = None,
        reason: str = ADJUSTMENT,
        note: str | None = None,
        order_number: str | None = None,
    ) -> InventoryTransaction:
        """Return qty units to stock (compensating restock)."""
        _require_quantity(qty)
        _require_type(reason)
        _require_row_id(inventory_id)

        stmt = (
            update(InventoryRecord)
            .where(
                InventoryRecord.id == inventory_id,
                InventoryRecord.business_id == business_id,
            )
            .values(current_quantity=InventoryRecord.current_quantity + qty)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if not result.rowcount:
            raise NotFoundError(
                "Inventory record not found",
                details={"inventory_id": inventory_id},
            )

        return self._append(
            inventory_id=inventory_id,
            business_id=business_id,
            user_id=user_id,
            tx_type=reason,
            quantity_change=qty,
            note=note,
            order_number=order_number,
        )

    def adjust(
        self,
        inventory_id: int,
        delta: int,
        *,
        business_id: int,
        user_id: int | None = None,
        note: str | None = None,
    ) -> InventoryTransaction:
        """Signed manual correction (counts, shrink, damage)."""
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("quantity_change must be an integer", field="quantity_change")
        if delta == 0:
            raise ValidationError("quantity_change must be non-zero", field="quantity_change")
        if abs(delta) > MAX_QUANTITY:
            raise ValidationError(f"quantity_change cannot exceed {MAX_QUANTITY} units", field="quantity_change")
        if delta > 0:
            return self.increment(
                inventory_id, delta, business_id=business_id, user_id=user_id, reason=ADJUSTMENT, note=note
            )
        return self.decrement(
            inventory_id, -delta, business_id=business_id, user_id=user_id, reason=ADJUSTMENT, note=note
        )

    def restock(
        self,
        inventory_id: int,
        qty: int,
        *,
        business_id: int,
        user_id: int | None = None,
        note: str | None = None,
    ) -> InventoryTransaction:
        return self.increment(
            inventory_id, qty, business_id=business_id, user_id=user_id, reason=RESTOCK, note=note
        )

    def list_transactions(self, inventory_id: int, business_id: int, *, limit: int = 200) -> list[InventoryTransaction]:
        self.get_record(inventory_id, business_id)
        return (
            self.session.query(InventoryTransaction)
            .filter_by(inventory_id=inventory_id, business_id=business_id)
            .order_by(InventoryTransaction.occurred_at.desc(), InventoryTransaction.id.desc())
            .limit(limit)
            .all()
        )

    def reconcile(self, inventory_id: int, business_id: int) -> dict:
        """Replay the ledger for one record against its current quantity."""
        record = self.get_record(inventory_id, business_id)
        total_change, count = (
            self.session.query(
                func.coalesce(func.sum(InventoryTransaction.quantity_change), 0),
                func.count(InventoryTransaction.id),
            )
            .filter(InventoryTransaction.inventory_id == inventory_id)
            .one()
        )
        expected = record.initial_quantity + int(total_change or 0)
        return {
            "inventory_id": record.id,
            "initial_quantity": record.initial_quantity,
            "transaction_count": int(count or 0),
            "transaction_total": int(total_change or 0),
            "expected_quantity": expected,
            "current_quantity": record.current_quantity,
            "balanced": expected == record.current_quantity,
        }
