# backend/vetstock/routes/invoices.py
"""
Invoice API routes.

Marking an invoice paid (on create or update) reconciles inventory. Stock
problems found after the invoice is saved do not fail the request; they are
returned in reconciliation_errors alongside the saved invoice.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_clinic, require_actor
from ..services import invoice_service
from ..services.invoice_service import (
    InvoiceError,
    InvoiceNotFoundError,
    InsufficientStockError,
    InvoicePersistenceError,
)
from ..validation import ValidationError, validate_invoice_payload, parse_int


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/clinics/<int:clinic_id>/invoices")


def _invoice_error_response(e: InvoiceError):
    if isinstance(e, InvoiceNotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, (InsufficientStockError, InvoicePersistenceError)):
        return jsonify({"error": str(e), "details": e.details}), 409
    return jsonify({"error": str(e), "details": e.details}), 400


@invoices_bp.post("/")
@require_clinic
@require_actor
def create_invoice_route(clinic_id: int):
    """
    Create an invoice. status="paid" on create reconciles stock immediately.

    Returns 201 with {"invoice", "reconciliation_errors", ...}.
    """
    payload = request.get_json(silent=True)
    try:
        data = validate_invoice_payload(payload, partial=False)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = invoice_service.create_invoice(g.clinic_id, data, actor=g.actor)
        return jsonify(result.to_dict()), 201

    except InvoiceError as e:
        return _invoice_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>")
@require_clinic
@require_actor
def update_invoice_route(clinic_id: int, invoice_id: int):
    """
    Update an invoice. The transition into "paid" reconciles stock once.

    409 when stock is insufficient; the invoice is left unchanged.
    """
    payload = request.get_json(silent=True)
    try:
        data = validate_invoice_payload(payload, partial=True)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = invoice_service.update_invoice(g.clinic_id, invoice_id, data, actor=g.actor)
        return jsonify(result.to_dict()), 200

    except InvoiceError as e:
        return _invoice_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_clinic
def get_invoice_route(clinic_id: int, invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.clinic_id, invoice_id)
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.get("/")
@require_clinic
def list_invoices_route(clinic_id: int):
    status = request.args.get("status")
    try:
        limit = parse_int(request.args.get("limit", 100), "limit")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    limit = max(1, min(limit, 500))

    invoices = invoice_service.list_invoices(g.clinic_id, status=status, limit=limit)
    return jsonify({"invoices": [inv.to_dict() for inv in invoices]}), 200
