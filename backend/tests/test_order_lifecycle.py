"""
Order lifecycle service tests.

Covers creation with stock consumption, all-or-nothing failure, status
updates with history, and deletion with compensating restock.
"""

import re

import pytest

from orderengine.errors import (
    ConflictError,
    InsufficientStockError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from orderengine.models import (
    InventoryTransaction,
    Order,
    OrderItem,
    OrderStatusHistory,
)
from orderengine.services.order_service import OrderLifecycleService
from orderengine.validation import MAX_AMOUNT_CENTS, MAX_QUANTITY

from tests.conftest import BUSINESS_A, BUSINESS_B, USER_A, USER_B


def _line(inventory_id, quantity, unit_price_cents, name="Line"):
    item = {"product_name": name, "quantity": quantity, "unit_price_cents": unit_price_cents}
    if inventory_id is not None:
        item["inventory_id"] = inventory_id
    return item


def _create(service, *items, tax_cents=0, discount_cents=0, business_id=BUSINESS_A, **extra):
    subtotal = sum(i["quantity"] * i["unit_price_cents"] for i in items)
    return service.create_order(
        business_id=business_id,
        user_id=USER_A,
        items=list(items),
        subtotal_cents=subtotal,
        tax_cents=tax_cents,
        discount_cents=discount_cents,
        total_cents=subtotal - discount_cents + tax_cents,
        **extra,
    )


def _quantity(inventory_service, record):
    return inventory_service.get_record(record.id, BUSINESS_A).current_quantity


class TestCreateOrder:
    def test_create_consumes_stock(self, db_session, order_service, inventory_service, widget):
        order = _create(order_service, _line(widget.id, 2, 1500, "Widget"), tax_cents=240)

        assert re.fullmatch(r"ORD-\d{8}-0001", order.order_number)
        assert order.status == "pending"
        assert order.payment_status == "unpaid"
        assert order.subtotal_cents == 3000
        assert order.total_cents == 3240
        assert len(order.items) == 1
        assert order.items[0].total_price_cents == 3000

        assert [(h.status, h.note) for h in order.status_history] == [("pending", "Order created")]

        assert _quantity(inventory_service, widget) == 8
        txs = db_session.query(InventoryTransaction).filter_by(order_number=order.order_number).all()
        assert len(txs) == 1
        assert (txs[0].type, txs[0].quantity_change, txs[0].resulting_quantity) == ("sale", -2, 8)
        assert txs[0].note == f"Sale - Order {order.order_number}"
        assert order.items[0].inventory_transaction_id == txs[0].id

    def test_lines_without_inventory_move_no_stock(self, db_session, order_service):
        order = _create(order_service, _line(None, 3, 999, "Consulting hour"))

        assert order.items[0].inventory_id is None
        assert order.items[0].inventory_transaction_id is None
        assert db_session.query(InventoryTransaction).count() == 0

    def test_optional_fields_are_stored(self, order_service):
        order = _create(
            order_service,
            _line(None, 1, 100),
            customer_id=77,
            payment_method="card",
            notes="Leave at door",
            shipping_address={"city": "Lyon"},
        )
        assert order.customer_id == 77
        assert order.payment_method == "card"
        assert order.notes == "Leave at door"
        assert order.shipping_address == {"city": "Lyon"}

    def test_sequential_orders_get_sequential_numbers(self, order_service):
        first = _create(order_service, _line(None, 1, 100))
        second = _create(order_service, _line(None, 1, 100))
        assert int(second.order_number.rsplit("-", 1)[1]) == int(first.order_number.rsplit("-", 1)[1]) + 1

    def test_short_line_fails_whole_order(self, db_session, order_service, inventory_service, widget, gadget):
        third = inventory_service.create_record(business_id=BUSINESS_A, name="Rare", initial_quantity=1)

        with pytest.raises(InsufficientStockError) as exc_info:
            _create(
                order_service,
                _line(widget.id, 2, 100),
                _line(gadget.id, 1, 100),
                _line(third.id, 5, 100, "Rare"),
            )

        shortages = exc_info.value.details["items"]
        assert len(shortages) == 1
        assert shortages[0]["line"] == 2
        assert shortages[0]["inventory_id"] == third.id
        assert shortages[0]["requested_quantity"] == 5
        assert shortages[0]["available_quantity"] == 1

        # Nothing from the failed attempt survives
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert db_session.query(OrderStatusHistory).count() == 0
        assert db_session.query(InventoryTransaction).count() == 0
        assert _quantity(inventory_service, widget) == 10
        assert _quantity(inventory_service, gadget) == 5

    def test_every_short_line_is_reported(self, order_service, widget, gadget):
        with pytest.raises(InsufficientStockError) as exc_info:
            _create(order_service, _line(widget.id, 11, 100), _line(gadget.id, 6, 100))
        assert [s["line"] for s in exc_info.value.details["items"]] == [0, 1]

    def test_failed_order_does_not_consume_a_number(self, order_service, widget):
        with pytest.raises(InsufficientStockError):
            _create(order_service, _line(widget.id, 50, 100))
        order = _create(order_service, _line(widget.id, 1, 100))
        assert order.order_number.endswith("-0001")

    def test_backorder_keeps_short_lines_without_stock_move(self, db_session, inventory_service, widget):
        service = OrderLifecycleService(db_session, allow_backorder=True)
        order = _create(service, _line(widget.id, 12, 100), _line(widget.id, 3, 100))

        short, covered = order.items
        assert short.inventory_transaction_id is None
        assert covered.inventory_transaction_id is not None
        assert _quantity(inventory_service, widget) == 7

    def test_unknown_inventory_is_not_found(self, db_session, order_service):
        with pytest.raises(NotFoundError):
            _create(order_service, _line(9999, 1, 100))
        assert db_session.query(Order).count() == 0

    def test_inventory_of_other_business_is_not_found(self, order_service, widget):
        with pytest.raises(NotFoundError):
            _create(order_service, _line(widget.id, 1, 100), business_id=BUSINESS_B)

    def test_totals_must_reconcile(self, order_service):
        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(
                business_id=BUSINESS_A,
                user_id=USER_A,
                items=[_line(None, 1, 1000)],
                subtotal_cents=1000,
                tax_cents=80,
                discount_cents=100,
                total_cents=1000,
            )
        assert exc_info.value.field == "total_cents"
        assert exc_info.value.details["expected_total_cents"] == 980

    def test_zero_total_is_rejected(self, order_service):
        with pytest.raises(ValidationError):
            order_service.create_order(
                business_id=BUSINESS_A,
                user_id=USER_A,
                items=[_line(None, 1, 100)],
                subtotal_cents=100,
                discount_cents=100,
                total_cents=0,
            )

    @pytest.mark.parametrize(
        "items",
        [
            [],
            None,
            [{"product_name": "X", "quantity": 0, "unit_price_cents": 100}],
            [{"product_name": "X", "quantity": 1, "unit_price_cents": 0}],
            [{"product_name": "", "quantity": 1, "unit_price_cents": 100}],
            [{"product_name": "X", "quantity": 1.5, "unit_price_cents": 100}],
            [{"product_name": "X", "quantity": 2, "unit_price_cents": 100, "total_price_cents": 150}],
            [{"product_name": "X", "quantity": 1, "unit_price_cents": 100, "sku": "nope"}],
        ],
    )
    def test_invalid_items_are_rejected(self, db_session, order_service, items):
        with pytest.raises(ValidationError):
            order_service.create_order(
                business_id=BUSINESS_A,
                user_id=USER_A,
                items=items,
                subtotal_cents=100,
                total_cents=100,
            )
        assert db_session.query(Order).count() == 0

    def test_missing_identity_is_rejected(self, order_service):
        with pytest.raises(ValidationError):
            order_service.create_order(
                business_id=BUSINESS_A,
                user_id=None,
                items=[_line(None, 1, 100)],
                subtotal_cents=100,
                total_cents=100,
            )

    @pytest.mark.parametrize(
        "line, field",
        [
            (_line(None, 10**20, 1), "items[0].quantity"),
            (_line(None, MAX_QUANTITY + 1, 1), "items[0].quantity"),
            (_line(None, 10**4, MAX_AMOUNT_CENTS), "items[0].total_price_cents"),
        ],
    )
    def test_oversized_line_is_rejected(self, db_session, order_service, line, field):
        with pytest.raises(ValidationError) as exc_info:
            order_service.create_order(
                business_id=BUSINESS_A,
                user_id=USER_A,
                items=[line],
                subtotal_cents=100,
                total_cents=100,
            )
        assert exc_info.value.field == field
        assert db_session.query(Order).count() == 0

    def test_largest_allowed_quantity_is_accepted(self, order_service):
        order = _create(order_service, _line(None, MAX_QUANTITY, 1))
        assert order.items[0].quantity == MAX_QUANTITY

    def test_duplicate_order_number_is_conflict_and_rolls_back(
        self, db_session, order_service, inventory_service, widget, monkeypatch
    ):
        existing = _create(order_service, _line(widget.id, 1, 100))
        monkeypatch.setattr(
            "orderengine.services.order_service.next_order_number",
            lambda session, **kwargs: existing.order_number,
        )

        with pytest.raises(ConflictError):
            _create(order_service, _line(widget.id, 2, 100))

        assert db_session.query(Order).count() == 1
        assert db_session.query(OrderItem).count() == 1
        assert db_session.query(OrderStatusHistory).count() == 1
        assert db_session.query(InventoryTransaction).count() == 1
        assert _quantity(inventory_service, widget) == 9


class TestUpdateOrder:
    def test_walk_to_delivered(self, order_service, inventory_service, widget):
        order = _create(order_service, _line(widget.id, 1, 100))

        for status in ("confirmed", "processing", "shipped", "delivered"):
            order = order_service.update_order(order.id, business_id=BUSINESS_A, user_id=USER_B, status=status)

        assert order.status == "delivered"
        assert [h.status for h in order.status_history] == [
            "pending", "confirmed", "processing", "shipped", "delivered",
        ]
        assert order.status_history[-1].note == "Status changed to delivered"
        assert order.status_history[-1].changed_by_user_id == USER_B
        # Status changes never touch stock
        assert _quantity(inventory_service, widget) == 9

    def test_custom_status_note(self, order_service):
        order = _create(order_service, _line(None, 1, 100))
        order = order_service.update_order(
            order.id, business_id=BUSINESS_A, user_id=USER_A, status="cancelled", status_note="Customer request"
        )
        assert order.status_history[-1].note == "Customer request"

    def test_invalid_transition_leaves_order_unchanged(self, order_service):
        order = _create(order_service, _line(None, 1, 100))

        with pytest.raises(InvalidTransitionError) as exc_info:
            order_service.update_order(order.id, business_id=BUSINESS_A, user_id=USER_A, status="delivered")
        assert exc_info.value.details["allowed_statuses"] == ["confirmed", "cancelled"]

        order = order_service.get_order(order.id, BUSINESS_A)
        assert order.status == "pending"
        assert len(order.status_history) == 1

    def test_terminal_status_cannot_change(self, order_service):
        order = _create(order_service, _line(None, 1, 100))
        order_service.update_order(order.id, business_id=BUSINESS_A, user_id=USER_A, status="cancelled")

        with pytest.raises(InvalidTransitionError):
            order_service.update_order(order.id, business_id=BUSINESS_A, user_id=USER_A, status="confirmed")

    def test_same_status_adds_no_history(self, order_service):
        order = _create(order_service, _line(None, 1, 100))
        order = order_service.update_order(order.id, business_id=BUSINESS_A, user_id=USER_A, status="pending")
        assert len(order.status_history) == 1

    def test_non_status_fields(self, order_service):
        order = _create(order_service, _line(None, 1, 100))
        order = order_service.update_order(
            order.id, business_id=BUSINESS_A, user_id=USER_A, payment_status="paid", notes="Paid at pickup"
        )
        assert order.payment_status == "paid"
        assert order.notes == "Paid at pickup"
        assert len(order.status_history) == 1

    def test_unknown_status_value(self, order_service):
        order = _create(order_service, _line(None, 1, 100))
        with pytest.raises(ValidationError):
            order_service.update_order(order.id, business_id=BUSINESS_A, user_id=USER_A, status="lost")

    def test_update_other_business_is_not_found(self, order_service):
        order = _create(order_service, _line(None, 1, 100))
        with pytest.raises(NotFoundError):
            order_service.update_order(order.id, business_id=BUSINESS_B, user_id=USER_A, status="confirmed")


class TestDeleteOrder:
    def test_delete_pending_restores_stock(self, db_session, order_service, inventory_service, widget, gadget):
        order = _create(order_service, _line(widget.id, 4, 100), _line(gadget.id, 2, 100), _line(None, 1, 100))
        number = order.order_number
        assert _quantity(inventory_service, widget) == 6

        order_service.delete_order(order.id, business_id=BUSINESS_A, user_id=USER_A)

        assert _quantity(inventory_service, widget) == 10
        assert _quantity(inventory_service, gadget) == 5
        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert db_session.query(OrderStatusHistory).count() == 0

        restores = (
            db_session.query(InventoryTransaction)
            .filter_by(order_number=number, type="adjustment")
            .order_by(InventoryTransaction.id.asc())
            .all()
        )
        assert [(t.inventory_id, t.quantity_change) for t in restores] == [(widget.id, 4), (gadget.id, 2)]
        assert restores[0].note == f"Order {number} deleted - inventory restored"

        for record in (widget, gadget):
            assert inventory_service.reconcile(record.id, BUSINESS_A)["balanced"]

    def test_delete_backordered_line_restores_only_consumed_stock(self, db_session, inventory_service, widget):
        service = OrderLifecycleService(db_session, allow_backorder=True)
        order = _create(service, _line(widget.id, 20, 100), _line(widget.id, 3, 100))
        assert _quantity(inventory_service, widget) == 7

        service.delete_order(order.id, business_id=BUSINESS_A, user_id=USER_A)
        assert _quantity(inventory_service, widget) == 10

    def test_delete_cancelled_does_not_restock(self, db_session, order_service, inventory_service, widget):
        order = _create(order_service, _line(widget.id, 3, 100))
        order_service.update_order(order.id, business_id=BUSINESS_A, user_id=USER_A, status="cancelled")

        order_service.delete_order(order.id, business_id=BUSINESS_A, user_id=USER_A)

        assert db_session.query(Order).count() == 0
        assert _quantity(inventory_service, widget) == 7

    @pytest.mark.parametrize("path", [["confirmed"], ["confirmed", "processing", "shipped", "delivered"]])
    def test_delete_guard(self, db_session, order_service, inventory_service, widget, path):
        order = _create(order_service, _line(widget.id, 2, 100))
        for status in path:
            order_service.update_order(order.id, business_id=BUSINESS_A, user_id=USER_A, status=status)

        with pytest.raises(InvalidStateError) as exc_info:
            order_service.delete_order(order.id, business_id=BUSINESS_A, user_id=USER_A)

        assert exc_info.value.details["current_status"] == path[-1]
        assert exc_info.value.details["allowed_statuses"] == ["pending", "cancelled"]
        assert db_session.query(Order).count() == 1
        assert _quantity(inventory_service, widget) == 8

    def test_delete_missing_order(self, order_service):
        with pytest.raises(NotFoundError):
            order_service.delete_order(424242, business_id=BUSINESS_A, user_id=USER_A)

    def test_transactions_survive_order_deletion(self, db_session, order_service, widget):
        order = _create(order_service, _line(widget.id, 1, 100))
        order_service.delete_order(order.id, business_id=BUSINESS_A, user_id=USER_A)
        assert db_session.query(InventoryTransaction).filter_by(inventory_id=widget.id).count() == 2


class TestReads:
    def test_get_other_business_is_not_found(self, order_service):
        order = _create(order_service, _line(None, 1, 100))
        with pytest.raises(NotFoundError):
            order_service.get_order(order.id, BUSINESS_B)

    def test_list_filters_and_pagination(self, order_service):
        orders = [_create(order_service, _line(None, 1, 100 * (i + 1)), notes=f"batch {i}") for i in range(5)]
        order_service.update_order(orders[0].id, business_id=BUSINESS_A, user_id=USER_A, status="confirmed")
        _create(order_service, _line(None, 1, 100), business_id=BUSINESS_B)

        page, total = order_service.list_orders(BUSINESS_A, page=1, limit=2)
        assert total == 5
        assert [o.id for o in page] == [orders[4].id, orders[3].id]

        page, total = order_service.list_orders(BUSINESS_A, page=3, limit=2)
        assert [o.id for o in page] == [orders[0].id]

        confirmed, total = order_service.list_orders(BUSINESS_A, status="confirmed")
        assert total == 1 and confirmed[0].id == orders[0].id

        found, total = order_service.list_orders(BUSINESS_A, search="batch 3")
        assert [o.id for o in found] == [orders[3].id]

        found, total = order_service.list_orders(BUSINESS_A, search=orders[2].order_number)
        assert [o.id for o in found] == [orders[2].id]

    def test_search_wildcards_match_literally(self, order_service):
        _create(order_service, _line(None, 1, 100), notes="gift wrap")
        _create(order_service, _line(None, 1, 100), notes="leave at door")
        discounted = _create(order_service, _line(None, 1, 100), notes="50% off")

        assert order_service.list_orders(BUSINESS_A, search="_") == ([], 0)
        assert order_service.list_orders(BUSINESS_A, search="%%") == ([], 0)

        found, total = order_service.list_orders(BUSINESS_A, search="%")
        assert total == 1 and found[0].id == discounted.id

        found, total = order_service.list_orders(BUSINESS_A, search="50%")
        assert [o.id for o in found] == [discounted.id]

    def test_list_rejects_bad_filters(self, order_service):
        with pytest.raises(ValidationError):
            order_service.list_orders(BUSINESS_A, status="lost")
        with pytest.raises(ValidationError):
            order_service.list_orders(BUSINESS_A, page=0)

    def test_out_of_range_id_is_not_found(self, order_service):
        with pytest.raises(NotFoundError):
            order_service.get_order(10**20, BUSINESS_A)

    def test_stats(self, order_service):
        first = _create(order_service, _line(None, 1, 1000))
        _create(order_service, _line(None, 1, 2001))
        order_service.update_order(first.id, business_id=BUSINESS_A, user_id=USER_A, status="confirmed")

        stats = order_service.order_stats(BUSINESS_A)
        assert stats["total_orders"] == 2
        assert stats["total_revenue_cents"] == 3001
        assert stats["average_order_value_cents"] == 1501
        assert stats["status_breakdown"]["pending"] == 1
        assert stats["status_breakdown"]["confirmed"] == 1
        assert stats["status_breakdown"]["delivered"] == 0
        assert stats["payment_status_breakdown"]["unpaid"] == 2

    def test_stats_empty(self, order_service):
        stats = order_service.order_stats(BUSINESS_A)
        assert stats["total_orders"] == 0
        assert stats["average_order_value_cents"] == 0


class TestScenarios:
    """End-to-end walk through create, confirm, rejected delete and restoring delete."""

    def test_full_walkthrough(self, db_session, order_service, inventory_service):
        stock = inventory_service.create_record(business_id=BUSINESS_A, name="Coffee beans", initial_quantity=10)

        # A: two lines, one consuming 3 of 10
        first = _create(order_service, _line(stock.id, 3, 1200, "Coffee beans"), _line(None, 1, 500, "Grinding"))
        assert first.status == "pending"
        assert _quantity(inventory_service, stock) == 7
        sale_txs = db_session.query(InventoryTransaction).filter_by(order_number=first.order_number).all()
        assert [t.quantity_change for t in sale_txs] == [-3]
        assert [h.status for h in first.status_history] == ["pending"]

        # B: confirm, stock untouched
        first = order_service.update_order(first.id, business_id=BUSINESS_A, user_id=USER_A, status="confirmed")
        assert [h.status for h in first.status_history] == ["pending", "confirmed"]
        assert _quantity(inventory_service, stock) == 7

        # C: confirmed orders cannot be deleted
        with pytest.raises(InvalidStateError):
            order_service.delete_order(first.id, business_id=BUSINESS_A, user_id=USER_A)
        assert order_service.get_order(first.id, BUSINESS_A).status == "confirmed"
        assert _quantity(inventory_service, stock) == 7

        # D: a pending order taking the remaining 7, then deleted
        second = _create(order_service, _line(stock.id, 7, 1200, "Coffee beans"))
        assert _quantity(inventory_service, stock) == 0
        order_service.delete_order(second.id, business_id=BUSINESS_A, user_id=USER_A)
        assert _quantity(inventory_service, stock) == 7

        changes = (
            db_session.query(InventoryTransaction.quantity_change)
            .filter_by(order_number=second.order_number)
            .order_by(InventoryTransaction.id.asc())
            .all()
        )
        assert [c for (c,) in changes] == [-7, 7]
        assert inventory_service.reconcile(stock.id, BUSINESS_A)["balanced"]
