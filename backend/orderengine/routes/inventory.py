# Overview: Flask API routes for inventory records, manual stock moves and ledger checks.

# backend/orderengine/routes/inventory.py
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import engine_error_response, require_business_context
from ..errors import EngineError, ValidationError
from ..extensions import db
from ..models import InventoryRecord
from ..services.inventory_service import InventoryService
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_inventory_record,
    validate_payload,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

INVENTORY_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "name",
        "initial_quantity",
        "unit",
        "cost_per_unit_cents",
        "low_stock_threshold",
        "reorder_point",
        "expiration_date",
        "batch_lot_number",
    },
    required_on_create={"name"},
)


def _service() -> InventoryService:
    cfg = current_app.config
    return InventoryService(
        db.session,
        retry_attempts=cfg["RETRY_ATTEMPTS"],
        retry_backoff=cfg["RETRY_BACKOFF_SECONDS"],
    )


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return dict(payload)


def _note(payload: dict) -> str | None:
    note = payload.get("note")
    if note is not None and not isinstance(note, str):
        raise ValidationError("note must be a string", field="note")
    return note


@inventory_bp.post("")
@require_business_context
def create_inventory_route():
    """
    Create a stock record.

    initial_quantity becomes both the current quantity and the baseline
    the ledger is reconciled against.
    """
    try:
        patch = validate_payload(
            model=InventoryRecord,
            payload=_json_body(),
            policy=INVENTORY_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_inventory_record(patch)
        record = _service().create_record(business_id=g.business_id, user_id=g.user_id, **patch)
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create inventory record")
        return jsonify({"error": "Internal server error"}), 500

    current_app.logger.info("Inventory record %s created for business %s", record.id, g.business_id)
    return jsonify({"inventory": record.to_dict()}), 201


@inventory_bp.get("")
@require_business_context
def list_inventory_route():
    """List stock records. Query: low_stock=true to only show records at or below their threshold."""
    low_stock_only = request.args.get("low_stock", "").lower() in ("1", "true", "yes")
    try:
        records = _service().list_records(g.business_id, low_stock_only=low_stock_only)
    except Exception:
        current_app.logger.exception("Failed to list inventory")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"inventory": [r.to_dict() for r in records]}), 200


@inventory_bp.get("/<int:inventory_id>")
@require_business_context
def get_inventory_route(inventory_id: int):
    try:
        record = _service().get_record(inventory_id, g.business_id)
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load inventory record %s", inventory_id)
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"inventory": record.to_dict()}), 200


@inventory_bp.get("/<int:inventory_id>/transactions")
@require_business_context
def list_inventory_transactions_route(inventory_id: int):
    """Ledger entries for one record, newest first."""
    try:
        raw_limit = request.args.get("limit")
        limit = coerce_int(raw_limit, "limit") if raw_limit else 200
        if limit < 1:
            raise ValidationError("limit must be >= 1", field="limit")
        txs = _service().list_transactions(inventory_id, g.business_id, limit=min(limit, 1000))
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list inventory transactions")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"transactions": [t.to_dict() for t in txs]}), 200


@inventory_bp.post("/<int:inventory_id>/adjust")
@require_business_context
def adjust_inventory_route(inventory_id: int):
    """
    Manual signed correction.

    Body: quantity_change (non-zero integer), optional note.
    A negative change larger than the current quantity is rejected with 409.
    """
    try:
        payload = _json_body()
        if payload.get("quantity_change") is None:
            raise ValidationError("quantity_change is required", field="quantity_change")
        delta = coerce_int(payload["quantity_change"], "quantity_change")
        svc = _service()
        tx = svc.adjust(
            inventory_id,
            delta,
            business_id=g.business_id,
            user_id=g.user_id,
            note=_note(payload),
        )
        record = svc.get_record(inventory_id, g.business_id)
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"transaction": tx.to_dict(), "inventory": record.to_dict()}), 201


@inventory_bp.post("/<int:inventory_id>/restock")
@require_business_context
def restock_inventory_route(inventory_id: int):
    """Body: quantity (positive integer), optional note."""
    try:
        payload = _json_body()
        if payload.get("quantity") is None:
            raise ValidationError("quantity is required", field="quantity")
        qty = coerce_int(payload["quantity"], "quantity")
        svc = _service()
        tx = svc.restock(
            inventory_id,
            qty,
            business_id=g.business_id,
            user_id=g.user_id,
            note=_note(payload),
        )
        record = svc.get_record(inventory_id, g.business_id)
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to restock inventory")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"transaction": tx.to_dict(), "inventory": record.to_dict()}), 201


@inventory_bp.get("/<int:inventory_id>/reconcile")
@require_business_context
def reconcile_inventory_route(inventory_id: int):
    try:
        report = _service().reconcile(inventory_id, g.business_id)
    except EngineError as e:
        return engine_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile inventory %s", inventory_id)
        return jsonify({"error": "Internal server error"}), 500

    if not report["balanced"]:
        current_app.logger.warning("Inventory %s does not reconcile: %s", inventory_id, report)
    return jsonify({"reconciliation": report}), 200
