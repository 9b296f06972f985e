"""
FEFO stock depletion for paid invoices.

Stock Reconciliation Invariants (authoritative)

- Only 'active' batches are consumed, soonest expiry first (FEFO), ties in
  receipt order. Batches with nothing on hand are skipped.
- A batch whose quantity reaches zero is marked 'depleted' in the same step.
- Every step (one batch, or one aggregate-only deduction) updates the batch,
  the product aggregate and appends one StockMovement, and is committed on its
  own. A failing step is rolled back as a unit and the loop moves on, so
  partial progress is durable and visible.
- Product.total_stock is floored at zero.
- StockMovement.previous_stock/new_stock describe the product aggregate at the
  step, not the batch quantity.
- Problems never raise: they are collected as ReconciliationIssue records and
  returned to the caller. The invoice stays paid.
- Units that should have left stock but did not (failed writes, shortfall,
  deadline) are counted per product in DepletionReport.undeducted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..models.inventory import (
    BATCH_ACTIVE,
    BATCH_DEPLETED,
    MOVEMENT_SALE,
    MOVEMENT_SALE_REVERSAL,
)
from ..time_utils import utcnow
from .concurrency import ProductLockRegistry, product_locks
from .stock_check_service import stock_lines
from .tenant_store import StockStores, StoreError


ISSUE_MISSING_PRODUCT = "MISSING_PRODUCT"
ISSUE_PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
ISSUE_DEPLETION_SHORTFALL = "DEPLETION_SHORTFALL"

_STEP_ERRORS = (StoreError, SQLAlchemyError)


@dataclass(frozen=True)
class ReconciliationIssue:
    kind: str
    message: str
    product_id: int | None = None
    batch_id: int | None = None
    quantity: int | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class DepletionStep:
    """One committed deduction: quantity units left product/batch."""
    product_id: int
    batch_id: int | None
    quantity: int
    movement_id: int


@dataclass
class DepletionReport:
    issues: list[ReconciliationIssue] = field(default_factory=list)
    steps: list[DepletionStep] = field(default_factory=list)
    # product_id -> units that should have left stock but did not
    undeducted: dict[int, int] = field(default_factory=dict)

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues]

    @property
    def has_shortfall(self) -> bool:
        return any(quantity > 0 for quantity in self.undeducted.values())

    def deducted_for(self, product_id: int) -> int:
        return sum(step.quantity for step in self.steps if step.product_id == product_id)

    def add(self, kind: str, message: str, **kwargs) -> None:
        self.issues.append(ReconciliationIssue(kind=kind, message=message, **kwargs))

    def leave_undeducted(self, product_id: int, quantity: int) -> None:
        if quantity > 0:
            self.undeducted[product_id] = self.undeducted.get(product_id, 0) + quantity


class Deadline:
    """Request-scoped wall-clock budget. seconds=None never expires."""

    def __init__(self, seconds: float | None = None):
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at


def _commit_step(session, fn):
    try:
        result = fn()
        session.commit()
        return result
    except _STEP_ERRORS:
        session.rollback()
        raise


def _movement(*, product_id, batch_id, quantity, previous_stock, new_stock, reference_id, actor, note, movement_type=MOVEMENT_SALE) -> dict:
    return {
        "product_id": product_id,
        "batch_id": batch_id,
        "movement_type": movement_type,
        "quantity": quantity,
        "reference_id": reference_id,
        "movement_date": utcnow(),
        "previous_stock": previous_stock,
        "new_stock": new_stock,
        "staff_member": actor,
        "note": note,
    }


def _take_from_batch(stores: StockStores, *, product_id, batch_id, wanted, reference_id, actor, note):
    """Deduct up to `wanted` units from one batch. Returns (taken, movement)."""
    product = stores.products.get(product_id, lock=True)
    batch = stores.batches.get(batch_id, lock=True)
    if product is None:
        raise StoreError(f"Product {product_id} disappeared during depletion")
    if batch is None or batch.status != BATCH_ACTIVE:
        return 0, None

    on_hand = batch.quantity_on_hand or 0
    take = min(on_hand, wanted)
    if take <= 0:
        return 0, None

    new_batch_qty = on_hand - take
    batch_patch = {"quantity_on_hand": new_batch_qty}
    if new_batch_qty == 0:
        batch_patch["status"] = BATCH_DEPLETED
    stores.batches.update(batch.id, batch_patch)

    previous = product.total_stock or 0
    new_stock = max(0, previous - take)
    stores.products.update(product.id, {"total_stock": new_stock})

    movement = stores.movements.create(_movement(
        product_id=product.id,
        batch_id=batch.id,
        quantity=-take,
        previous_stock=previous,
        new_stock=new_stock,
        reference_id=reference_id,
        actor=actor,
        note=note,
    ))
    return take, movement


def _take_from_aggregate(stores: StockStores, *, product_id, wanted, reference_id, actor, note):
    """Aggregate-only deduction for products without batch tracking."""
    product = stores.products.get(product_id, lock=True)
    if product is None:
        raise StoreError(f"Product {product_id} disappeared during depletion")

    previous = product.total_stock or 0
    new_stock = max(0, previous - wanted)
    stores.products.update(product.id, {"total_stock": new_stock})

    movement = stores.movements.create(_movement(
        product_id=product.id,
        batch_id=None,
        quantity=new_stock - previous,
        previous_stock=previous,
        new_stock=new_stock,
        reference_id=reference_id,
        actor=actor,
        note=note,
    ))
    return previous - new_stock, movement


def _deplete_product(
    stores: StockStores,
    report: DepletionReport,
    *,
    product_id: int,
    needed: int,
    reference_id: str,
    actor: str,
    note: str | None,
    deadline: Deadline,
) -> None:
    session = stores.session

    try:
        product = stores.products.get(product_id, lock=True)
    except _STEP_ERRORS:
        session.rollback()
        report.add(
            ISSUE_PERSISTENCE_FAILURE,
            f"Stock lookup failed for product {product_id}.",
            product_id=product_id,
            quantity=needed,
        )
        report.leave_undeducted(product_id, needed)
        return

    if product is None:
        report.add(ISSUE_MISSING_PRODUCT, f"Missing product ({product_id}).", product_id=product_id, quantity=needed)
        return

    name = product.name
    if deadline.expired():
        report.add(
            ISSUE_DEPLETION_SHORTFALL,
            f"Reconciliation deadline exceeded for {name} (short {needed}).",
            product_id=product_id,
            quantity=needed,
        )
        report.leave_undeducted(product_id, needed)
        return

    try:
        batch_refs = [(b.id, b.lot_number, b.quantity_on_hand or 0) for b in stores.batches.active_for_product(product_id)]
    except _STEP_ERRORS:
        session.rollback()
        report.add(
            ISSUE_PERSISTENCE_FAILURE,
            f"Batch lookup failed for {name}.",
            product_id=product_id,
            quantity=needed,
        )
        report.leave_undeducted(product_id, needed)
        return

    if not batch_refs:
        try:
            taken, movement = _commit_step(session, lambda: _take_from_aggregate(
                stores,
                product_id=product_id,
                wanted=needed,
                reference_id=reference_id,
                actor=actor,
                note=note,
            ))
        except _STEP_ERRORS:
            report.add(
                ISSUE_PERSISTENCE_FAILURE,
                f"Stock update failed for {name}.",
                product_id=product_id,
                quantity=needed,
            )
            report.leave_undeducted(product_id, needed)
            return
        report.steps.append(DepletionStep(product_id, None, taken, movement.id))
        if taken < needed:
            # Lenient policy: the clamp at zero absorbs the difference
            current_app.logger.warning(
                "Aggregate-only deduction for product %s clamped at zero (%s of %s units)",
                product_id, taken, needed,
            )
        return

    remaining = needed
    failed = 0
    deadline_hit = False
    for batch_id, lot_number, listed_qty in batch_refs:
        if remaining <= 0:
            break
        if listed_qty <= 0:
            continue
        if deadline.expired():
            deadline_hit = True
            break

        wanted = remaining
        try:
            taken, movement = _commit_step(session, lambda: _take_from_batch(
                stores,
                product_id=product_id,
                batch_id=batch_id,
                wanted=wanted,
                reference_id=reference_id,
                actor=actor,
                note=note,
            ))
        except _STEP_ERRORS:
            # Left in `remaining` so later batches can cover it
            failed += min(listed_qty, wanted)
            report.add(
                ISSUE_PERSISTENCE_FAILURE,
                f"Stock update failed for {name} (batch {lot_number}).",
                product_id=product_id,
                batch_id=batch_id,
                quantity=min(listed_qty, wanted),
            )
            continue

        if taken <= 0:
            continue
        remaining -= taken
        report.steps.append(DepletionStep(product_id, batch_id, taken, movement.id))

    if remaining <= 0:
        return
    report.leave_undeducted(product_id, remaining)

    if deadline_hit:
        report.add(
            ISSUE_DEPLETION_SHORTFALL,
            f"Reconciliation deadline exceeded for {name} (short {remaining}).",
            product_id=product_id,
            quantity=remaining,
        )
        return

    # Units already reported as failed writes are not reported twice
    unexplained = remaining - min(remaining, failed)
    if unexplained > 0:
        report.add(
            ISSUE_DEPLETION_SHORTFALL,
            f"Not enough stock deducted for {name} (short {unexplained}).",
            product_id=product_id,
            quantity=unexplained,
        )


def deplete_invoice_stock(
    stores: StockStores,
    *,
    reference_id,
    items: list[dict],
    actor: str,
    note: str | None = None,
    deadline: Deadline | None = None,
    locks: ProductLockRegistry | None = None,
) -> DepletionReport:
    """
    Deduct stock for every stock-bearing line of a paid invoice.

    Lines are processed in submission order; each product is depleted under
    its (clinic_id, product_id) lock. Failures are per line: a missing
    product or failed write is recorded and the next line still runs.

    Returns a DepletionReport; report.errors is the operator-facing list
    (empty means fully reconciled).
    """
    if not actor:
        raise ValueError("actor is required")

    deadline = deadline or Deadline(None)
    locks = locks or product_locks
    reference = str(reference_id)
    report = DepletionReport()

    for item in stock_lines(items):
        product_id = item["product_id"]
        with locks.hold(stores.clinic_id, product_id):
            _deplete_product(
                stores,
                report,
                product_id=product_id,
                needed=item["quantity"],
                reference_id=reference,
                actor=actor,
                note=note,
                deadline=deadline,
            )

    return report


def _restore_step(stores: StockStores, step: DepletionStep, *, reference_id, actor, note):
    product = stores.products.get(step.product_id, lock=True)
    if product is None:
        raise StoreError(f"Product {step.product_id} not found")

    if step.batch_id is not None:
        batch = stores.batches.get(step.batch_id, lock=True)
        if batch is None:
            raise StoreError(f"Batch {step.batch_id} not found")
        # Compensation is the only path that reactivates a depleted batch
        stores.batches.update(batch.id, {
            "quantity_on_hand": (batch.quantity_on_hand or 0) + step.quantity,
            "status": BATCH_ACTIVE,
        })

    previous = product.total_stock or 0
    new_stock = previous + step.quantity
    stores.products.update(product.id, {"total_stock": new_stock})

    return stores.movements.create(_movement(
        product_id=product.id,
        batch_id=step.batch_id,
        quantity=step.quantity,
        previous_stock=previous,
        new_stock=new_stock,
        reference_id=reference_id,
        actor=actor,
        note=note,
        movement_type=MOVEMENT_SALE_REVERSAL,
    ))


def reverse_depletion(
    stores: StockStores,
    report: DepletionReport,
    *,
    reference_id,
    actor: str,
    note: str | None = None,
    locks: ProductLockRegistry | None = None,
) -> list[ReconciliationIssue]:
    """
    Compensate every committed step of a depletion, newest first.

    Each reversal restores the batch and aggregate and appends a
    'sale_reversal' movement. Returns issues for reversals that failed.
    """
    locks = locks or product_locks
    reference = str(reference_id)
    issues: list[ReconciliationIssue] = []

    for step in reversed(report.steps):
        with locks.hold(stores.clinic_id, step.product_id):
            try:
                _commit_step(stores.session, lambda: _restore_step(
                    stores, step, reference_id=reference, actor=actor, note=note,
                ))
            except _STEP_ERRORS:
                issues.append(ReconciliationIssue(
                    kind=ISSUE_PERSISTENCE_FAILURE,
                    message=f"Stock reversal failed for product {step.product_id} ({step.quantity} units).",
                    product_id=step.product_id,
                    batch_id=step.batch_id,
                    quantity=step.quantity,
                ))

    return issues
