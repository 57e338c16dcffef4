# Overview: Committed inventory operations (record creation, manual adjust/restock, reconciliation).

from __future__ import annotations

from sqlalchemy.orm import Session

from ..models import InventoryRecord, InventoryTransaction
from .concurrency import run_with_retry, unit_of_work
from .inventory_ledger import InventoryLedger


class InventoryService:
    """
    Public, self-committing wrappers around InventoryLedger.

    Order-driven stock movements do not go through here; the order lifecycle
    service calls the ledger directly inside its own unit of work.
    """

    def __init__(self, session: Session, *, retry_attempts: int = 3, retry_backoff: float = 0.1):
        self.session = session
        self.ledger = InventoryLedger(session)
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _run(self, func):
        return run_with_retry(
            func,
            session=self.session,
            attempts=self.retry_attempts,
            backoff_base=self.retry_backoff,
        )

    def create_record(self, *, business_id: int, user_id: int | None = None, **fields) -> InventoryRecord:
        def _op():
            with unit_of_work(self.session):
                record = self.ledger.create_record(business_id=business_id, user_id=user_id, **fields)
            return record

        return self._run(_op)

    def get_record(self, inventory_id: int, business_id: int) -> InventoryRecord:
        return self.ledger.get_record(inventory_id, business_id)

    def list_records(self, business_id: int, *, low_stock_only: bool = False) -> list[InventoryRecord]:
        query = self.session.query(InventoryRecord).filter_by(business_id=business_id)
        if low_stock_only:
            query = query.filter(
                InventoryRecord.low_stock_threshold.isnot(None),
                InventoryRecord.current_quantity <= InventoryRecord.low_stock_threshold,
            )
        return query.order_by(InventoryRecord.name.asc(), InventoryRecord.id.asc()).all()

    def adjust(
        self,
        inventory_id: int,
        delta: int,
        *,
        business_id: int,
        user_id: int | None = None,
        note: str | None = None,
    ) -> InventoryTransaction:
        def _op():
            with unit_of_work(self.session):
                tx = self.ledger.adjust(inventory_id, delta, business_id=business_id, user_id=user_id, note=note)
            return tx

        return self._run(_op)

    def restock(
        self,
        inventory_id: int,
        qty: int,
        *,
        business_id: int,
        user_id: int | None = None,
        note: str | None = None,
    ) -> InventoryTransaction:
        def _op():
            with unit_of_work(self.session):
                tx = self.ledger.restock(inventory_id, qty, business_id=business_id, user_id=user_id, note=note)
            return tx

        return self._run(_op)

    def list_transactions(self, inventory_id: int, business_id: int, *, limit: int = 200) -> list[InventoryTransaction]:
        return self.ledger.list_transactions(inventory_id, business_id, limit=limit)

    def reconcile(self, inventory_id: int, business_id: int) -> dict:
        return self.ledger.reconcile(inventory_id, business_id)

    def reconcile_all(self, business_id: int | None = None) -> list[dict]:
        """Ledger check for every record (optionally one business). Returns one report per record."""
        query = self.session.query(InventoryRecord)
        if business_id is not None:
            query = query.filter_by(business_id=business_id)
        return [
            self.ledger.reconcile(record.id, record.business_id)
            for record in query.order_by(InventoryRecord.id.asc()).all()
        ]
