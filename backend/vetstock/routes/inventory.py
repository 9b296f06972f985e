# backend/vetstock/routes/inventory.py
"""
Inventory routes: batch receiving, stock movement history, audits and alerts.

Time semantics:
- Dates (expiry_date, received_date) are ISO-8601 calendar dates.
- Movement timestamps are returned as UTC with a trailing 'Z'.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_clinic, require_actor
from ..services.receiving_service import receive_batch, withdraw_batch, ReceivingError, BatchNotFoundError
from ..services.stock_audit_service import (
    StockAuditError,
    audit_product_stock,
    get_expiry_alerts,
    get_low_stock_products,
    list_stock_movements,
    repair_product_stock,
)
from ..validation import ValidationError, validate_batch_receipt, parse_int, parse_date, parse_optional_str


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/clinics/<int:clinic_id>/inventory")


@inventory_bp.post("/batches")
@require_clinic
@require_actor
def receive_batch_route(clinic_id: int):
    """
    Receive a lot into stock: new active batch, total_stock += quantity,
    one 'purchase' movement.
    """
    payload = request.get_json(silent=True)
    try:
        data = validate_batch_receipt(payload)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        batch = receive_batch(g.clinic_id, actor=g.actor, **data)
        return jsonify({"batch": batch.to_dict()}), 201

    except ReceivingError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to receive batch")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/batches/<int:batch_id>/withdraw")
@require_clinic
@require_actor
def withdraw_batch_route(clinic_id: int, batch_id: int):
    """
    Pull a batch from sale: {"status": "expired"|"recalled", "note": "..."}.
    """
    payload = request.get_json(silent=True) or {}
    try:
        note = parse_optional_str(payload.get("note"), "note")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        batch = withdraw_batch(g.clinic_id, batch_id, status=payload.get("status"), actor=g.actor, note=note)
        return jsonify({"batch": batch.to_dict()}), 200

    except BatchNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ReceivingError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to withdraw batch")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/movements")
@require_clinic
def list_movements_route(clinic_id: int, product_id: int):
    """Newest first. Optional ?reference_id= narrows to one invoice."""
    try:
        limit = parse_int(request.args.get("limit", 200), "limit")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    limit = max(1, min(limit, 1000))

    movements = list_stock_movements(
        g.clinic_id,
        product_id=product_id,
        reference_id=request.args.get("reference_id"),
        limit=limit,
    )
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200


@inventory_bp.get("/products/<int:product_id>/audit")
@require_clinic
def audit_product_route(clinic_id: int, product_id: int):
    try:
        audit = audit_product_stock(g.clinic_id, product_id)
    except StockAuditError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({"audit": audit}), 200


@inventory_bp.post("/products/<int:product_id>/audit/repair")
@require_clinic
@require_actor
def repair_product_route(clinic_id: int, product_id: int):
    try:
        audit = repair_product_stock(g.clinic_id, product_id, actor=g.actor)
        return jsonify({"audit": audit}), 200

    except StockAuditError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to repair product stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/alerts/expiry")
@require_clinic
def expiry_alerts_route(clinic_id: int):
    """?as_of=YYYY-MM-DD&warning_days=N (defaults from config)."""
    try:
        as_of_raw = request.args.get("as_of")
        as_of = parse_date(as_of_raw, "as_of") if as_of_raw else None
        warning_days = parse_int(request.args.get("warning_days"), "warning_days", allow_none=True)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    alerts = get_expiry_alerts(g.clinic_id, as_of=as_of, warning_days=warning_days)
    return jsonify({"alerts": alerts}), 200


@inventory_bp.get("/alerts/low-stock")
@require_clinic
def low_stock_route(clinic_id: int):
    return jsonify({"products": get_low_stock_products(g.clinic_id)}), 200
