"""
Invoice Service - billing state machine and the stock reconciliation trigger.

WHY: Billing status is authoritative; inventory follows it. The only status
edge with stock side effects is "not paid -> paid", and it runs at most once
per invoice:

1. Validate the transition (draft/sent/overdue -> ..., paid/cancelled terminal).
2. If the invoice is becoming paid, run the sufficiency pre-check. An
   insufficient line rejects the whole submission; nothing is written.
3. Persist the invoice (create or update). A failed write aborts before any
   stock moves.
4. Deplete stock FEFO. Errors from this step are advisory: the invoice stays
   paid and the caller receives the list (STOCK_SHORTFALL_POLICY="report"),
   or, under "revert", every deduction is compensated and the invoice goes
   back to "sent".
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice
from ..models.billing import (
    INVOICE_CANCELLED,
    INVOICE_DRAFT,
    INVOICE_OVERDUE,
    INVOICE_PAID,
    INVOICE_SENT,
)
from ..time_utils import utcnow
from .concurrency import run_with_retry
from .depletion_service import (
    Deadline,
    DepletionReport,
    ReconciliationIssue,
    deplete_invoice_stock,
    reverse_depletion,
)
from .stock_check_service import check_stock_for_items, stock_lines
from .tenant_store import StockStores, StoreError


SHORTFALL_POLICY_REPORT = "report"
SHORTFALL_POLICY_REVERT = "revert"
SHORTFALL_POLICIES = {SHORTFALL_POLICY_REPORT, SHORTFALL_POLICY_REVERT}

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    INVOICE_DRAFT: {INVOICE_SENT, INVOICE_PAID, INVOICE_CANCELLED},
    INVOICE_SENT: {INVOICE_PAID, INVOICE_OVERDUE, INVOICE_CANCELLED},
    INVOICE_OVERDUE: {INVOICE_PAID, INVOICE_CANCELLED},
    INVOICE_PAID: set(),
    INVOICE_CANCELLED: set(),
}


class InvoiceError(Exception):
    """Raised for invoice operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvoiceNotFoundError(InvoiceError):
    pass


class InsufficientStockError(InvoiceError):
    """Blocking: the invoice cannot become paid with current stock."""
    def __init__(self, product_name: str, details: dict | None = None):
        super().__init__(f'Insufficient stock for "{product_name}". Cannot complete sale.', details)
        self.product_name = product_name
        self.product_id = self.details.get("product_id")


class InvoicePersistenceError(InvoiceError):
    """The invoice write itself failed; no stock was touched."""


@dataclass
class ReconciliationResult:
    invoice: Invoice
    reconciliation_errors: list[str] = field(default_factory=list)
    issues: list[ReconciliationIssue] = field(default_factory=list)
    reconciled: bool = False
    reverted: bool = False

    def to_dict(self) -> dict:
        return {
            "invoice": self.invoice.to_dict(),
            "reconciliation_errors": list(self.reconciliation_errors),
            "issues": [issue.to_dict() for issue in self.issues],
            "reconciled": self.reconciled,
            "reverted": self.reverted,
        }


def is_becoming_paid(prior_status: str | None, new_status: str | None) -> bool:
    return new_status == INVOICE_PAID and prior_status != INVOICE_PAID


def validate_transition(prior_status: str, new_status: str) -> None:
    if prior_status == new_status:
        return
    if new_status not in ALLOWED_TRANSITIONS.get(prior_status, set()):
        raise InvoiceError(
            f"Cannot change invoice status from {prior_status} to {new_status}",
            details={"from": prior_status, "to": new_status},
        )


def _item_signature(items) -> list[tuple]:
    return [
        (item["product_id"], item.get("description"), item["quantity"], item.get("unit_price_cents", 0))
        if isinstance(item, dict)
        else (item.product_id, item.description, item.quantity, item.unit_price_cents)
        for item in items
    ]


def _shortfall_policy(policy: str | None) -> str:
    policy = policy or current_app.config.get("STOCK_SHORTFALL_POLICY", SHORTFALL_POLICY_REPORT)
    if policy not in SHORTFALL_POLICIES:
        raise ValueError(f"Unknown stock shortfall policy: {policy}")
    return policy


def _deadline(deadline_seconds: float | None) -> Deadline:
    if deadline_seconds is None:
        deadline_seconds = current_app.config.get("RECONCILIATION_DEADLINE_SECONDS")
    return Deadline(deadline_seconds)


def _require_stock(stores: StockStores, items: list[dict]) -> None:
    lines = stock_lines(items)
    if not lines:
        return
    index = stores.products.index(line["product_id"] for line in lines)
    result = check_stock_for_items(stores.products, lines, product_index=index)
    if not result.sufficient:
        raise InsufficientStockError(result.product_name, details=result.to_dict())


def _persist(fn):
    """Run an invoice write + commit; concurrency conflicts are retried by the caller."""
    try:
        invoice = fn()
        db.session.commit()
        return invoice
    except (StoreError, IntegrityError) as exc:
        db.session.rollback()
        raise InvoicePersistenceError("Failed to save invoice", details={"error": str(exc)}) from exc


def _finalise(stores: StockStores, invoice_id: int, patch: dict) -> Invoice:
    """Record the reconciliation outcome; re-reads the invoice on every attempt."""
    def _op():
        invoice = stores.invoices.get(invoice_id, lock=True)
        if invoice is None:
            raise InvoiceNotFoundError("Invoice not found")
        stores.invoices.update(invoice.id, patch)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def _reconcile(
    stores: StockStores,
    invoice: Invoice,
    items: list[dict],
    *,
    actor: str,
    policy: str,
    deadline: Deadline,
) -> ReconciliationResult:
    invoice_id = invoice.id
    invoice_number = invoice.invoice_number
    note = f"Invoice {invoice_number}"

    report: DepletionReport = deplete_invoice_stock(
        stores,
        reference_id=invoice_id,
        items=items,
        actor=actor,
        note=note,
        deadline=deadline,
    )

    issues = list(report.issues)
    reverted = False

    if policy == SHORTFALL_POLICY_REVERT and report.has_shortfall:
        issues.extend(reverse_depletion(
            stores,
            report,
            reference_id=invoice_id,
            actor=actor,
            note=f"Reversal: {note}",
        ))
        invoice = _finalise(stores, invoice_id, {
            "status": INVOICE_SENT,
            "paid_at": None,
            "stock_reconciled_at": None,
        })
        reverted = True
        issues.append(ReconciliationIssue(
            kind="INVOICE_REVERTED",
            message=f"Invoice {invoice_number} moved back to sent; stock deductions were reversed.",
        ))
    else:
        invoice = _finalise(stores, invoice_id, {"stock_reconciled_at": utcnow()})

    errors = [issue.message for issue in issues]
    if errors:
        current_app.logger.warning(
            "Invoice %s saved, but inventory updates failed: %s",
            invoice_number, "; ".join(errors),
        )

    return ReconciliationResult(
        invoice=invoice,
        reconciliation_errors=errors,
        issues=issues,
        reconciled=not reverted,
        reverted=reverted,
    )


def create_invoice(
    clinic_id: int,
    data: dict,
    *,
    actor: str,
    stores: StockStores | None = None,
    shortfall_policy: str | None = None,
    deadline_seconds: float | None = None,
) -> ReconciliationResult:
    """
    Create an invoice. Creating it directly as 'paid' reconciles stock.

    data is a validated payload (see validation.validate_invoice_payload).
    """
    if not actor:
        raise InvoiceError("actor is required")
    stores = stores or StockStores.for_clinic(clinic_id)
    policy = _shortfall_policy(shortfall_policy)

    status = data.get("status") or INVOICE_DRAFT
    validate_transition(INVOICE_DRAFT, status)
    items = data.get("items") or []
    becoming_paid = is_becoming_paid(None, status)

    if becoming_paid:
        _require_stock(stores, items)

    def _op():
        fields = dict(data)
        fields["status"] = status
        fields["items"] = items
        fields["created_by"] = actor
        if becoming_paid:
            fields["paid_at"] = utcnow()
        return _persist(lambda: stores.invoices.create(fields))

    invoice = run_with_retry(_op)

    if not becoming_paid:
        return ReconciliationResult(invoice=invoice)

    return _reconcile(
        stores,
        invoice,
        items,
        actor=actor,
        policy=policy,
        deadline=_deadline(deadline_seconds),
    )


def update_invoice(
    clinic_id: int,
    invoice_id: int,
    data: dict,
    *,
    actor: str,
    stores: StockStores | None = None,
    shortfall_policy: str | None = None,
    deadline_seconds: float | None = None,
) -> ReconciliationResult:
    """
    Update an invoice; the draft/sent/overdue -> paid edge reconciles stock.

    The prior status is read inside the retried unit of work, so when two
    requests race to pay the same invoice the loser's optimistic-lock retry
    sees 'paid' and does not deduct again.
    """
    if not actor:
        raise InvoiceError("actor is required")
    stores = stores or StockStores.for_clinic(clinic_id)
    policy = _shortfall_policy(shortfall_policy)

    state: dict = {}

    def _op():
        invoice = stores.invoices.get(invoice_id, lock=True)
        if invoice is None:
            raise InvoiceNotFoundError("Invoice not found")

        prior_status = invoice.status
        new_status = data.get("status") or prior_status
        validate_transition(prior_status, new_status)

        if prior_status == INVOICE_PAID and "items" in data:
            if _item_signature(data["items"]) != _item_signature(invoice.items):
                raise InvoiceError("Line items of a paid invoice cannot be changed")

        items = data["items"] if "items" in data else [
            {
                "product_id": item.product_id,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
            }
            for item in invoice.items
        ]

        becoming_paid = is_becoming_paid(prior_status, new_status) and invoice.stock_reconciled_at is None
        if becoming_paid:
            _require_stock(stores, items)

        patch = {k: v for k, v in data.items() if k != "items"}
        patch["status"] = new_status
        if "items" in data and prior_status != INVOICE_PAID:
            patch["items"] = data["items"]
        if becoming_paid:
            patch["paid_at"] = utcnow()

        saved = _persist(lambda: stores.invoices.update(invoice.id, patch))
        state["becoming_paid"] = becoming_paid
        state["items"] = items
        return saved

    invoice = run_with_retry(_op)

    if not state.get("becoming_paid"):
        return ReconciliationResult(invoice=invoice)

    return _reconcile(
        stores,
        invoice,
        state["items"],
        actor=actor,
        policy=policy,
        deadline=_deadline(deadline_seconds),
    )


def get_invoice(clinic_id: int, invoice_id: int) -> Invoice:
    invoice = StockStores.for_clinic(clinic_id).invoices.get(invoice_id)
    if invoice is None:
        raise InvoiceNotFoundError("Invoice not found")
    return invoice


def list_invoices(clinic_id: int, *, status: str | None = None, limit: int = 100) -> list[Invoice]:
    store = StockStores.for_clinic(clinic_id).invoices
    criteria = {"status": status} if status else None
    return store.filter(criteria, "-created_at")[:limit]
