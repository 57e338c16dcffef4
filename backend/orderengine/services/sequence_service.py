# Overview: Allocates human-readable order numbers per business per day.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import Order, OrderSequence
from orderengine.time_utils import utctoday


DEFAULT_PREFIX = "ORD"
SEQUENCE_PAD = 4


def day_prefix(day: date, prefix: str = DEFAULT_PREFIX) -> str:
    return f"{prefix}-{day:%Y%m%d}"


def parse_sequence(order_number: str) -> int | None:
    """Trailing numeric suffix of an order number, or None if it has none."""
    suffix = order_number.rsplit("-", 1)[-1]
    if not suffix.isdigit():
        return None
    return int(suffix)


def highest_existing_sequence(session: Session, *, business_id: int, prefix_for_day: str) -> int:
    """Largest sequence already used by an order of this business with the day's prefix (0 if none)."""
    numbers = (
        session.query(Order.order_number)
        .filter(
            Order.business_id == business_id,
            Order.order_number.startswith(f"{prefix_for_day}-", autoescape=True),
        )
        .all()
    )
    parsed = [parse_sequence(number) for (number,) in numbers]
    return max((n for n in parsed if n is not None), default=0)


def next_order_number(
    session: Session,
    *,
    business_id: int,
    day: date | None = None,
    prefix: str = DEFAULT_PREFIX,
    pad: int = SEQUENCE_PAD,
) -> str:
    """
    Allocate the next order number for a business on a day: ORD-YYYYMMDD-0001.

    Must run inside the caller's unit of work. The per-day counter row is
    incremented with a single UPDATE, which holds its row lock until the
    order insert commits. The counter never falls behind the highest number
    already present in the orders table. A concurrent first allocation of the
    same day surfaces as an IntegrityError (reported as a conflict).
    """
    if not business_id:
        raise ValidationError("business_id is required", field="business_id")
    if not prefix:
        raise ValidationError("prefix is required", field="prefix")

    prefix_for_day = day_prefix(day or utctoday(), prefix)

    stmt = (
        update(OrderSequence)
        .where(
            OrderSequence.business_id == business_id,
            OrderSequence.day_prefix == prefix_for_day,
        )
        .values(last_number=OrderSequence.last_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)

    highest = highest_existing_sequence(session, business_id=business_id, prefix_for_day=prefix_for_day)

    if result.rowcount:
        seq = (
            session.query(OrderSequence)
            .filter_by(business_id=business_id, day_prefix=prefix_for_day)
            .populate_existing()
            .one()
        )
        if seq.last_number <= highest:
            seq.last_number = highest + 1
        number = seq.last_number
    else:
        number = highest + 1
        session.add(OrderSequence(business_id=business_id, day_prefix=prefix_for_day, last_number=number))

    session.flush()
    return f"{prefix_for_day}-{number:0{pad}d}"
