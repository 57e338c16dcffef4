# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/orderengine/routes/orders.py
"""
Order API routes.

All routes require the business context from the authentication gateway and
only ever see orders of that business.

Money is exchanged in integer cents. Datetimes are ISO-8601; responses use 'Z'.
"""

import math

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import engine_error_response, require_business_context
from ..errors import EngineError, ValidationError
from ..extensions import db
from ..models import Order
from ..services.order_service import OrderLifecycleService
from ..validation import (
    ModelValidationPolicy,
    coerce_datetime,
    coerce_int,
    validate_payload,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_id",
        "subtotal_cents",
        "tax_cents",
        "discount_cents",
        "total_cents",
        "payment_method",
        "notes",
        "delivery_date",
        "shipping_address",
        "billing_address",
    },
    required_on_create={"subtotal_cents", "total_cents"},
)

ORDER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"status", "payment_status", "notes", "delivery_date", "actual_delivery_date"},
)


def _service() -> OrderLifecycleService:
    cfg = current_app.config
    return OrderLifecycleService(
        db.session,
        allow_backorder=cfg["ALLOW_BACKORDER"],
        number_prefix=cfg["ORDER_NUMBER_PREFIX"],
        retry_attempts=cfg["RETRY_ATTEMPTS"],
        retry_backoff=cfg["RETRY_BACKOFF_SECONDS"],
    )


def _query_int(name: str, default: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    return coerce_int(raw, name)


def _query_datetime(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    return coerce_datetime(raw, name)


@orders_bp.get("")
@require_business_context
def list_orders_route():
    """
    List orders with filters and pagination.

    Query: status, payment_status, customer_id, start_date, end_date, search, page, limit
    """
    try:
        page = _query_int("page", 1)
        limit = _query_int("limit", current_app.config["ORDERS_PAGE_SIZE"])
        limit = min(limit, current_app.config["ORDERS_MAX_PAGE_SIZE"])

        orders, total = _service().list_orders(
            g.business_id,
            status=request.args.get("status") or None,
            payment_status=request.args.get("payment_status") or None,
            customer_id=_query_int("customer_id"),
            start_date=_query_datetime("start_date"),
            end_date=_query_datetime("end_date"),
            search=request.args.get("search") or None,
            page=page,
            limit=limit,
        )
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "orders": [order.to_dict() for order in orders],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if limit else 0,
        },
    }), 200


@orders_bp.get("/stats/summary")
@require_business_context
def order_stats_route():
    """Counts, revenue and status breakdowns, optionally within start_date..end_date."""
    try:
        summary = _service().order_stats(
            g.business_id,
            start_date=_query_datetime("start_date"),
            end_date=_query_datetime("end_date"),
        )
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to compute order stats")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"summary": summary}), 200


@orders_bp.get("/<int:order_id>")
@require_business_context
def get_order_route(order_id: int):
    """Get order with items and status history."""
    try:
        order = _service().get_order(order_id, g.business_id)
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"order": order.to_dict(include_history=True)}), 200


@orders_bp.post("")
@require_business_context
def create_order_route():
    """
    Create a pending order.

    Body: items[] (product_name, quantity, unit_price_cents, optional product_id,
    inventory_id, total_price_cents) plus subtotal_cents, tax_cents,
    discount_cents, total_cents and optional customer/delivery fields.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload", "code": "VALIDATION_ERROR"}), 400
    payload = dict(payload)
    items = payload.pop("items", None)

    try:
        patch = validate_payload(
            model=Order,
            payload=payload,
            policy=ORDER_CREATE_POLICY,
            partial=False,
        )
        order = _service().create_order(
            business_id=g.business_id,
            user_id=g.user_id,
            items=items,
            **patch,
        )
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info(
        "Order %s created for business %s by user %s", order.order_number, g.business_id, g.user_id
    )
    return jsonify({"order": order.to_dict(include_history=True)}), 201


@orders_bp.put("/<int:order_id>")
@require_business_context
def update_order_route(order_id: int):
    """
    Update status, payment status, notes or delivery dates.

    Status changes must follow the order state machine.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload", "code": "VALIDATION_ERROR"}), 400
    payload = dict(payload)
    status_note = payload.pop("status_note", None)

    try:
        if status_note is not None and not isinstance(status_note, str):
            raise ValidationError("status_note must be a string", field="status_note")
        patch = validate_payload(
            model=Order,
            payload=payload,
            policy=ORDER_UPDATE_POLICY,
            partial=True,
        )
        order = _service().update_order(
            order_id,
            business_id=g.business_id,
            user_id=g.user_id,
            status_note=status_note,
            **patch,
        )
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"order": order.to_dict(include_history=True)}), 200


@orders_bp.delete("/<int:order_id>")
@require_business_context
def delete_order_route(order_id: int):
    """Delete a pending or cancelled order (pending orders restore their stock)."""
    try:
        _service().delete_order(order_id, business_id=g.business_id, user_id=g.user_id)
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info("Order %s deleted for business %s by user %s", order_id, g.business_id, g.user_id)
    return "", 204
