"""
Batch lifecycle: receiving and withdrawal.

A received lot becomes an active ProductBatch, the product aggregate grows by
the received quantity and one 'purchase' StockMovement records the change.
All three happen in one commit under the product's lock, mirroring the
depletion step on the way out.

Withdrawing a batch (expired or recalled) takes its remaining units out of
the aggregate with an 'adjustment' movement; quantity_on_hand is kept as the
record of what was pulled from the shelf.
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import ProductBatch
from ..models.inventory import BATCH_ACTIVE, MOVEMENT_ADJUSTMENT, MOVEMENT_PURCHASE, WITHDRAWN_STATUSES
from ..time_utils import utcnow, today
from .concurrency import product_locks, run_with_retry
from .tenant_store import StockStores


class ReceivingError(Exception):
    """Raised for batch receiving errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class BatchNotFoundError(ReceivingError):
    pass


def receive_batch(
    clinic_id: int,
    *,
    product_id: int,
    lot_number: str,
    quantity: int,
    expiry_date: date,
    actor: str,
    received_date: date | None = None,
    cost_per_unit_cents: int | None = None,
    supplier_invoice: str | None = None,
    stores: StockStores | None = None,
) -> ProductBatch:
    if not actor:
        raise ReceivingError("actor is required")
    if quantity is None or quantity <= 0:
        raise ReceivingError("quantity must be positive")
    if not lot_number:
        raise ReceivingError("lot_number is required")

    stores = stores or StockStores.for_clinic(clinic_id)

    def _op():
        product = stores.products.get(product_id, lock=True)
        if product is None or not product.is_active:
            db.session.rollback()
            raise ReceivingError("Product not found" if product is None else "Product is inactive")

        batch = stores.batches.create({
            "product_id": product.id,
            "lot_number": lot_number,
            "expiry_date": expiry_date,
            "received_date": received_date or today(),
            "quantity_received": quantity,
            "quantity_on_hand": quantity,
            "cost_per_unit_cents": cost_per_unit_cents,
            "supplier_invoice": supplier_invoice,
            "status": BATCH_ACTIVE,
        })

        previous = product.total_stock or 0
        new_stock = previous + quantity
        stores.products.update(product.id, {"total_stock": new_stock})

        stores.movements.create({
            "product_id": product.id,
            "batch_id": batch.id,
            "movement_type": MOVEMENT_PURCHASE,
            "quantity": quantity,
            "reference_id": supplier_invoice,
            "movement_date": utcnow(),
            "previous_stock": previous,
            "new_stock": new_stock,
            "staff_member": actor,
            "note": f"Received lot {lot_number}",
        })

        db.session.commit()
        return batch

    with product_locks.hold(stores.clinic_id, product_id):
        return run_with_retry(_op)


def withdraw_batch(
    clinic_id: int,
    batch_id: int,
    *,
    status: str,
    actor: str,
    note: str | None = None,
    stores: StockStores | None = None,
) -> ProductBatch:
    """Mark an active batch expired or recalled; it is never sold again."""
    if not actor:
        raise ReceivingError("actor is required")
    if not isinstance(status, str) or status not in WITHDRAWN_STATUSES:
        raise ReceivingError(
            f"status must be one of: {', '.join(sorted(WITHDRAWN_STATUSES))}",
            details={"status": status},
        )

    stores = stores or StockStores.for_clinic(clinic_id)
    batch = stores.batches.get(batch_id)
    if batch is None:
        raise BatchNotFoundError("Batch not found")
    product_id = batch.product_id

    def _op():
        batch = stores.batches.get(batch_id, lock=True)
        if batch is None:
            db.session.rollback()
            raise BatchNotFoundError("Batch not found")
        if batch.status != BATCH_ACTIVE:
            # Release the row lock before reporting
            db.session.rollback()
            raise ReceivingError(
                f"Batch {batch.lot_number} is {batch.status}",
                details={"batch_id": batch.id, "status": batch.status},
            )
        product = stores.products.get(product_id, lock=True)

        units = batch.quantity_on_hand or 0
        stores.batches.update(batch.id, {"status": status})

        if units > 0:
            previous = product.total_stock or 0
            new_stock = max(0, previous - units)
            stores.products.update(product.id, {"total_stock": new_stock})
            stores.movements.create({
                "product_id": product.id,
                "batch_id": batch.id,
                "movement_type": MOVEMENT_ADJUSTMENT,
                "quantity": new_stock - previous,
                "reference_id": None,
                "movement_date": utcnow(),
                "previous_stock": previous,
                "new_stock": new_stock,
                "staff_member": actor,
                "note": note or f"Lot {batch.lot_number} {status}",
            })

        db.session.commit()
        return batch

    with product_locks.hold(stores.clinic_id, product_id):
        return run_with_retry(_op)
