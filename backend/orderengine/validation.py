from __future__ import annotations
from datetime import datetime
from orderengine.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, JSON, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum money amount: $9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999
MAX_ORDER_ITEMS = 500
# Largest quantity a single line or stock movement may carry
MAX_QUANTITY = 1_000_000
# SQLite and BIGINT columns hold signed 64-bit integers
MAX_INTEGER = 2**63 - 1


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _in_integer_range(value: int, field: str) -> int:
    if not -MAX_INTEGER - 1 <= value <= MAX_INTEGER:
        raise ValidationError(f"{field} is out of range", field=field)
    return value


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return _in_integer_range(value, field)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            value = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
        return _in_integer_range(value, field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)
        return dt
    raise ValidationError(f"{field} must be a datetime", field=field)


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        dt = coerce_datetime(value, col.key)
        if dt is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
        return dt

    # Address blobs and similar structured values
    if isinstance(coltype, JSON):
        if not isinstance(value, dict):
            raise ValidationError(f"{col.key} must be an object", field=col.key)
        return value

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                field=missing[0],
                details={"missing": missing},
            )

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def _require_amount(value: Any, field: str, *, positive: bool = False) -> int:
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    amount = coerce_int(value, field)
    if positive and amount <= 0:
        raise ValidationError(f"{field} must be > 0", field=field)
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0", field=field)
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}", field=field)
    return amount


def enforce_rules_order_totals(
    *,
    subtotal_cents: Any,
    tax_cents: Any,
    discount_cents: Any,
    total_cents: Any,
) -> dict:
    """
    Amounts arrive pre-computed from the caller; the engine only checks they reconcile:

        total_cents == subtotal_cents - discount_cents + tax_cents
    """
    amounts = {
        "subtotal_cents": _require_amount(subtotal_cents, "subtotal_cents"),
        "tax_cents": _require_amount(0 if tax_cents is None else tax_cents, "tax_cents"),
        "discount_cents": _require_amount(0 if discount_cents is None else discount_cents, "discount_cents"),
        "total_cents": _require_amount(total_cents, "total_cents", positive=True),
    }
    expected = amounts["subtotal_cents"] - amounts["discount_cents"] + amounts["tax_cents"]
    if amounts["total_cents"] != expected:
        raise ValidationError(
            "total_cents must equal subtotal_cents - discount_cents + tax_cents",
            field="total_cents",
            details={"expected_total_cents": expected, "total_cents": amounts["total_cents"]},
        )
    return amounts


ORDER_ITEM_FIELDS = {
    "product_id",
    "inventory_id",
    "product_name",
    "quantity",
    "unit_price_cents",
    "total_price_cents",
}


def validate_order_items(items: Any) -> list[dict]:
    """
    Validate and normalize order lines.

    Returns dicts with product_id, inventory_id, product_name, quantity,
    unit_price_cents and the computed total_price_cents.
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("items must be a non-empty list", field="items")
    if len(items) > MAX_ORDER_ITEMS:
        raise ValidationError(f"items cannot contain more than {MAX_ORDER_ITEMS} lines", field="items")

    lines = []
    for index, raw in enumerate(items):
        prefix = f"items[{index}]"
        if not isinstance(raw, dict):
            raise ValidationError(f"{prefix} must be an object", field=prefix)

        unknown = sorted(set(raw) - ORDER_ITEM_FIELDS)
        if unknown:
            raise ValidationError(f"Field not allowed: {prefix}.{unknown[0]}", field=f"{prefix}.{unknown[0]}")

        name = raw.get("product_name")
        if name is None or not str(name).strip():
            raise ValidationError(f"{prefix}.product_name is required", field=f"{prefix}.product_name")
        name = str(name).strip()
        if len(name) > 255:
            raise ValidationError(f"{prefix}.product_name exceeds max length 255", field=f"{prefix}.product_name")

        if raw.get("quantity") is None:
            raise ValidationError(f"{prefix}.quantity is required", field=f"{prefix}.quantity")
        quantity = coerce_int(raw["quantity"], f"{prefix}.quantity")
        if quantity <= 0:
            raise ValidationError(f"{prefix}.quantity must be > 0", field=f"{prefix}.quantity")
        if quantity > MAX_QUANTITY:
            raise ValidationError(f"{prefix}.quantity cannot exceed {MAX_QUANTITY}", field=f"{prefix}.quantity")

        unit_price = _require_amount(raw.get("unit_price_cents"), f"{prefix}.unit_price_cents", positive=True)

        total_price = quantity * unit_price
        if total_price > MAX_AMOUNT_CENTS:
            raise ValidationError(
                f"{prefix}.total_price_cents cannot exceed {MAX_AMOUNT_CENTS}",
                field=f"{prefix}.total_price_cents",
            )
        if raw.get("total_price_cents") is not None:
            given = coerce_int(raw["total_price_cents"], f"{prefix}.total_price_cents")
            if given != total_price:
                raise ValidationError(
                    f"{prefix}.total_price_cents must equal quantity * unit_price_cents",
                    field=f"{prefix}.total_price_cents",
                    details={"expected_total_price_cents": total_price},
                )

        product_id = raw.get("product_id")
        inventory_id = raw.get("inventory_id")
        lines.append({
            "product_id": None if product_id is None else coerce_int(product_id, f"{prefix}.product_id"),
            "inventory_id": None if inventory_id is None else coerce_int(inventory_id, f"{prefix}.inventory_id"),
            "product_name": name,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "total_price_cents": total_price,
        })

    return lines


def enforce_rules_inventory_record(patch: dict) -> None:
    limits = {
        "initial_quantity": MAX_QUANTITY,
        "low_stock_threshold": MAX_QUANTITY,
        "reorder_point": MAX_QUANTITY,
        "cost_per_unit_cents": MAX_AMOUNT_CENTS,
    }
    for field, limit in limits.items():
        value = patch.get(field)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{field} must be >= 0", field=field)
        if value > limit:
            raise ValidationError(f"{field} cannot exceed {limit}", field=field)
