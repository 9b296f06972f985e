# Overview: Boundary validation for invoice and inventory payloads.

from __future__ import annotations

from datetime import date
from typing import Any

from .models.billing import INVOICE_STATUSES
from .time_utils import parse_iso_date


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_LINE_QUANTITY = 1_000_000
MAX_INVOICE_ITEMS = 500


class ValidationError(ValueError):
    """400-level input problem."""


def parse_int(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    """
    Strict integer parsing.

    Rejects floats, booleans, scientific notation and decimal strings instead
    of silently coercing them (a quantity of "abc" is an error, not zero).
    """
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            if allow_none:
                return None
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def parse_optional_str(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string")
    s = str(value).strip()
    if not s:
        return None
    if len(s) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return s


def parse_date(value: Any, field: str) -> date:
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date")
    try:
        parsed = parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    if parsed is None:
        raise ValidationError(f"{field} is required")
    return parsed


def validate_invoice_item(raw: Any, index: int) -> dict:
    """
    Normalize one invoice line.

    - product_id optional (services/fees have none); accepts "product" as alias
    - quantity must be an integer; zero/negative lines are kept but never
      touch stock
    - unit_price_cents must be a non-negative integer
    """
    label = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{label} must be an object")

    product_raw = raw.get("product_id", raw.get("product"))
    product_id = parse_int(product_raw, f"{label}.product_id", allow_none=True)
    if product_id is not None and product_id <= 0:
        raise ValidationError(f"{label}.product_id must be positive")

    quantity = parse_int(raw.get("quantity"), f"{label}.quantity")
    if abs(quantity) > MAX_LINE_QUANTITY:
        raise ValidationError(f"{label}.quantity exceeds maximum of {MAX_LINE_QUANTITY}")

    unit_price_cents = parse_int(raw.get("unit_price_cents", 0), f"{label}.unit_price_cents")
    if unit_price_cents < 0:
        raise ValidationError(f"{label}.unit_price_cents cannot be negative")
    if unit_price_cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{label}.unit_price_cents exceeds maximum of {MAX_PRICE_CENTS}")

    description = parse_optional_str(raw.get("description"), f"{label}.description")
    if product_id is None and not description:
        raise ValidationError(f"{label} needs a product_id or a description")

    return {
        "product_id": product_id,
        "description": description,
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
        "total_cents": quantity * unit_price_cents,
    }


def validate_invoice_payload(payload: Any, *, partial: bool) -> dict:
    """
    Validate an invoice create (partial=False) or update (partial=True).

    Returns a patch dict containing only recognized fields.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Body must be a JSON object")

    allowed = {"status", "items", "client_id", "pet_id", "notes", "invoice_number"}
    unknown = set(payload.keys()) - allowed
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    patch: dict = {}

    if "status" in payload:
        status = payload.get("status")
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(INVOICE_STATUSES))}")
        patch["status"] = status

    if "items" in payload:
        items = payload.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        if len(items) > MAX_INVOICE_ITEMS:
            raise ValidationError(f"items exceeds maximum of {MAX_INVOICE_ITEMS} lines")
        patch["items"] = [validate_invoice_item(raw, i) for i, raw in enumerate(items)]
    elif not partial:
        patch["items"] = []

    for field in ("client_id", "pet_id"):
        if field in payload:
            patch[field] = parse_optional_str(payload.get(field), field, max_length=64)

    if "notes" in payload:
        patch["notes"] = parse_optional_str(payload.get("notes"), "notes", max_length=4000)

    if "invoice_number" in payload:
        if partial:
            raise ValidationError("invoice_number cannot be changed")
        patch["invoice_number"] = parse_optional_str(payload.get("invoice_number"), "invoice_number", max_length=64)

    return patch


def validate_batch_receipt(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Body must be a JSON object")

    product_id = parse_int(payload.get("product_id"), "product_id")
    quantity = parse_int(payload.get("quantity"), "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be positive")
    if quantity > MAX_LINE_QUANTITY:
        raise ValidationError(f"quantity exceeds maximum of {MAX_LINE_QUANTITY}")

    lot_number = parse_optional_str(payload.get("lot_number"), "lot_number", max_length=64)
    if not lot_number:
        raise ValidationError("lot_number is required")

    cost = parse_int(payload.get("cost_per_unit_cents"), "cost_per_unit_cents", allow_none=True)
    if cost is not None and (cost < 0 or cost > MAX_PRICE_CENTS):
        raise ValidationError("cost_per_unit_cents out of range")

    received_raw = payload.get("received_date")
    return {
        "product_id": product_id,
        "quantity": quantity,
        "lot_number": lot_number,
        "expiry_date": parse_date(payload.get("expiry_date"), "expiry_date"),
        "received_date": parse_date(received_raw, "received_date") if received_raw else None,
        "cost_per_unit_cents": cost,
        "supplier_invoice": parse_optional_str(payload.get("supplier_invoice"), "supplier_invoice", max_length=128),
    }
