# Overview: Order status values and the legal transitions between them.

"""
Order status state machine.

    pending -> confirmed -> processing -> shipped -> delivered
    pending | confirmed | processing | shipped -> cancelled

RULES:
1. Transitions are driven by an explicit status from the caller (no timers).
2. Only transitions listed in ORDER_TRANSITIONS are legal; anything else
   fails closed with InvalidTransitionError.
3. delivered and cancelled are terminal.
4. Requesting the current status is a no-op (no history row).
5. A status change appends one OrderStatusHistory row and has no inventory
   side effect. Stock only moves on order creation and deletion.
"""

from __future__ import annotations
from typing import Literal

from ..errors import InvalidTransitionError, ValidationError


PENDING = "pending"
CONFIRMED = "confirmed"
PROCESSING = "processing"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"

ORDER_STATUSES = (PENDING, CONFIRMED, PROCESSING, SHIPPED, DELIVERED, CANCELLED)
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]

PAYMENT_STATUSES = ("unpaid", "partial", "paid", "refunded")

ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({PROCESSING, CANCELLED}),
    PROCESSING: frozenset({SHIPPED, CANCELLED}),
    SHIPPED: frozenset({DELIVERED, CANCELLED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ORDER_TRANSITIONS.items() if not targets)

# Orders in these states may be deleted
DELETABLE_STATUSES = (PENDING, CANCELLED)


def validate_status(status: str) -> None:
    if status not in ORDER_TRANSITIONS:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}",
            field="status",
        )


def validate_payment_status(payment_status: str) -> None:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment_status '{payment_status}'. Must be one of: {', '.join(PAYMENT_STATUSES)}",
            field="payment_status",
        )


def is_terminal(status: str) -> bool:
    validate_status(status)
    return status in TERMINAL_STATUSES


def allowed_transitions(status: str) -> list[str]:
    validate_status(status)
    return [s for s in ORDER_STATUSES if s in ORDER_TRANSITIONS[status]]


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)

    if from_status == to_status:
        return True

    return to_status in ORDER_TRANSITIONS[from_status]


def assert_transition(from_status: str, to_status: str) -> None:
    """Raise InvalidTransitionError unless from_status -> to_status is in the table."""
    if can_transition(from_status, to_status):
        return
    raise InvalidTransitionError(
        f"Cannot change order status from '{from_status}' to '{to_status}'",
        details={
            "current_status": from_status,
            "requested_status": to_status,
            "allowed_statuses": allowed_transitions(from_status),
        },
    )
