"""
Read-side inventory reports and the total_stock repair.

- Expiry alerts: active batches with stock, bucketed expired / critical / warning.
- Low-stock alerts: active products at or below their reorder point.
- Stock audit: Product.total_stock vs. the sum of its active batches and vs.
  the movement ledger. total_stock is a denormalized cache; the audit is how
  drift is found, and repair recomputes it from batch state with an
  'adjustment' movement for the delta.
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, ProductBatch, StockMovement
from ..models.inventory import BATCH_ACTIVE, MOVEMENT_ADJUSTMENT
from ..time_utils import utcnow, today, to_iso_date
from .concurrency import product_locks, run_with_retry
from .tenant_store import StockStores


EXPIRY_EXPIRED = "expired"
EXPIRY_CRITICAL = "critical"
EXPIRY_WARNING = "warning"


class StockAuditError(Exception):
    """Raised for stock audit errors."""


def classify_expiry(expiry_date: date, *, as_of: date, critical_days: int, warning_days: int) -> str | None:
    days = (expiry_date - as_of).days
    if days < 0:
        return EXPIRY_EXPIRED
    if days <= critical_days:
        return EXPIRY_CRITICAL
    if days <= warning_days:
        return EXPIRY_WARNING
    return None


def get_expiry_alerts(
    clinic_id: int,
    *,
    as_of: date | None = None,
    critical_days: int | None = None,
    warning_days: int | None = None,
) -> list[dict]:
    """Active batches with stock that are expired or expire within warning_days."""
    as_of = as_of or today()
    if critical_days is None:
        critical_days = current_app.config.get("EXPIRY_CRITICAL_DAYS", 7)
    if warning_days is None:
        warning_days = current_app.config.get("EXPIRY_WARNING_DAYS", 30)

    rows = (
        db.session.query(ProductBatch, Product.name)
        .join(Product, Product.id == ProductBatch.product_id)
        .filter(
            ProductBatch.clinic_id == clinic_id,
            ProductBatch.status == BATCH_ACTIVE,
            ProductBatch.quantity_on_hand > 0,
        )
        .order_by(ProductBatch.expiry_date.asc(), ProductBatch.id.asc())
        .all()
    )

    alerts = []
    for batch, product_name in rows:
        level = classify_expiry(
            batch.expiry_date, as_of=as_of, critical_days=critical_days, warning_days=warning_days,
        )
        if level is None:
            continue
        alerts.append({
            "level": level,
            "days_to_expiry": (batch.expiry_date - as_of).days,
            "product_id": batch.product_id,
            "product_name": product_name,
            "batch_id": batch.id,
            "lot_number": batch.lot_number,
            "expiry_date": to_iso_date(batch.expiry_date),
            "quantity_on_hand": batch.quantity_on_hand,
        })
    return alerts


def get_low_stock_products(clinic_id: int) -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(
            Product.clinic_id == clinic_id,
            Product.is_active.is_(True),
            Product.total_stock <= Product.reorder_point,
        )
        .order_by(Product.total_stock.asc(), Product.name.asc())
        .all()
    )
    return [
        {
            "product_id": p.id,
            "name": p.name,
            "total_stock": p.total_stock,
            "reorder_point": p.reorder_point,
            "out_of_stock": (p.total_stock or 0) == 0,
        }
        for p in products
    ]


def _batch_sum(clinic_id: int, product_id: int) -> int:
    return int(
        db.session.query(func.coalesce(func.sum(ProductBatch.quantity_on_hand), 0))
        .filter(
            ProductBatch.clinic_id == clinic_id,
            ProductBatch.product_id == product_id,
            ProductBatch.status == BATCH_ACTIVE,
        )
        .scalar() or 0
    )


def _ledger_sum(clinic_id: int, product_id: int) -> int:
    return int(
        db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(
            StockMovement.clinic_id == clinic_id,
            StockMovement.product_id == product_id,
        )
        .scalar() or 0
    )


def audit_product_stock(clinic_id: int, product_id: int) -> dict:
    """
    Compare the cached aggregate with batch state and with the ledger.

    ledger_total is the sum of all signed movements; it equals total_stock
    when every stock change went through the ledger (receiving included).
    """
    product = StockStores.for_clinic(clinic_id).products.get(product_id)
    if product is None:
        raise StockAuditError("Product not found")

    batch_total = _batch_sum(clinic_id, product_id)
    ledger_total = _ledger_sum(clinic_id, product_id)
    has_batches = (
        db.session.query(ProductBatch.id)
        .filter_by(clinic_id=clinic_id, product_id=product_id)
        .first()
        is not None
    )
    total_stock = product.total_stock or 0

    return {
        "product_id": product.id,
        "product_name": product.name,
        "total_stock": total_stock,
        "batch_total": batch_total if has_batches else None,
        "batch_drift": (total_stock - batch_total) if has_batches else None,
        "ledger_total": ledger_total,
        "ledger_drift": total_stock - ledger_total,
    }


def audit_clinic_stock(clinic_id: int) -> list[dict]:
    product_ids = [
        pid for (pid,) in db.session.query(Product.id)
        .filter(Product.clinic_id == clinic_id)
        .order_by(Product.id.asc())
        .all()
    ]
    return [audit_product_stock(clinic_id, pid) for pid in product_ids]


def repair_product_stock(clinic_id: int, product_id: int, *, actor: str) -> dict:
    """
    Recompute total_stock from active batches and record the delta.

    Products without any batch rows are left alone (aggregate-only stock has
    nothing to recompute from). Returns the post-repair audit.
    """
    if not actor:
        raise StockAuditError("actor is required")
    stores = StockStores.for_clinic(clinic_id)

    def _op():
        product = stores.products.get(product_id, lock=True)
        if product is None:
            db.session.rollback()
            raise StockAuditError("Product not found")

        has_batches = (
            db.session.query(ProductBatch.id)
            .filter_by(clinic_id=clinic_id, product_id=product_id)
            .first()
            is not None
        )
        if not has_batches:
            db.session.rollback()
            return

        previous = product.total_stock or 0
        recomputed = _batch_sum(clinic_id, product_id)
        if recomputed == previous:
            # Nothing to write; end the locking read
            db.session.rollback()
            return

        stores.products.update(product.id, {"total_stock": recomputed})
        stores.movements.create({
            "product_id": product.id,
            "batch_id": None,
            "movement_type": MOVEMENT_ADJUSTMENT,
            "quantity": recomputed - previous,
            "reference_id": None,
            "movement_date": utcnow(),
            "previous_stock": previous,
            "new_stock": recomputed,
            "staff_member": actor,
            "note": "Stock audit: total_stock recomputed from batches",
        })
        db.session.commit()

    with product_locks.hold(clinic_id, product_id):
        run_with_retry(_op)

    return audit_product_stock(clinic_id, product_id)


def list_stock_movements(
    clinic_id: int,
    *,
    product_id: int | None = None,
    reference_id: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    movements = StockStores.for_clinic(clinic_id).movements
    if reference_id is not None:
        rows = movements.for_reference(reference_id)
        if product_id is not None:
            rows = [m for m in rows if m.product_id == product_id]
        return rows[:limit]
    if product_id is not None:
        return movements.for_product(product_id, limit=limit)
    return movements.filter(None, "-movement_date")[:limit]
