"""
Tenant-scoped document store.

Thin collection objects over the SQLAlchemy session. Each collection is bound
to one clinic: every read filters by clinic_id and every create stamps it, so
a record belonging to another clinic behaves exactly like a missing one.

Collections flush but never commit; the calling service owns the unit of work.

    stores = StockStores.for_clinic(clinic_id)
    product = stores.products.get(product_id)
    batches = stores.batches.active_for_product(product_id)
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import DocumentSequence, Product, ProductBatch, StockMovement, Invoice, InvoiceItem
from ..models.inventory import BATCH_ACTIVE
from .concurrency import lock_for_update


class StoreError(Exception):
    """Raised when a tenant-scoped read or write fails."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class TenantCollection:
    model = None
    entity_name = "record"
    immutable_fields = frozenset({"id", "clinic_id"})

    def __init__(self, clinic_id: int, session=None):
        self.clinic_id = clinic_id
        self.session = session or db.session

    def _query(self):
        return self.session.query(self.model).filter(self.model.clinic_id == self.clinic_id)

    def _flush(self) -> None:
        try:
            self.session.flush()
        except (OperationalError, StaleDataError):
            # Concurrency failures stay retryable for run_with_retry callers
            raise
        except SQLAlchemyError as exc:
            raise StoreError(f"{self.entity_name} write failed", details={"error": str(exc)}) from exc

    def get(self, record_id, *, lock: bool = False):
        if record_id is None:
            return None
        query = self._query().filter(self.model.id == record_id)
        if lock:
            query = lock_for_update(query)
        return query.first()

    def filter(self, criteria: dict | None = None, order_by: str | None = None) -> list:
        """
        Equality filter plus optional single-column ordering.

        order_by="expiry_date" sorts ascending, "-expiry_date" descending;
        ties are broken by id in the same direction (insertion order).
        """
        query = self._query()
        for key, value in (criteria or {}).items():
            query = query.filter(getattr(self.model, key) == value)
        if order_by:
            descending = order_by.startswith("-")
            column = getattr(self.model, order_by.lstrip("-"))
            if descending:
                query = query.order_by(column.desc(), self.model.id.desc())
            else:
                query = query.order_by(column.asc(), self.model.id.asc())
        return query.all()

    def list(self, order_by: str | None = None) -> list:
        return self.filter(None, order_by)

    def create(self, data: dict):
        if "clinic_id" in data and data["clinic_id"] != self.clinic_id:
            raise StoreError(f"{self.entity_name} belongs to a different clinic")
        fields = {k: v for k, v in data.items() if k != "clinic_id"}
        record = self.model(clinic_id=self.clinic_id, **fields)
        self.session.add(record)
        self._flush()
        return record

    def update(self, record_id, patch: dict):
        record = self.get(record_id)
        if record is None:
            raise StoreError(f"{self.entity_name} {record_id} not found")
        for key, value in patch.items():
            if key in self.immutable_fields:
                raise StoreError(f"{self.entity_name}.{key} cannot be changed")
            setattr(record, key, value)
        self._flush()
        return record


class ProductStore(TenantCollection):
    model = Product
    entity_name = "Product"

    def index(self, product_ids) -> dict[int, Product]:
        """In-memory product index for a set of ids (missing ids are absent)."""
        ids = {pid for pid in product_ids if pid is not None}
        if not ids:
            return {}
        rows = self._query().filter(Product.id.in_(ids)).all()
        return {p.id: p for p in rows}


class BatchStore(TenantCollection):
    model = ProductBatch
    entity_name = "ProductBatch"

    def active_for_product(self, product_id: int) -> list[ProductBatch]:
        """Active batches, soonest expiry first (FEFO)."""
        return self.filter({"product_id": product_id, "status": BATCH_ACTIVE}, "expiry_date")


class MovementStore(TenantCollection):
    model = StockMovement
    entity_name = "StockMovement"

    def update(self, record_id, patch: dict):
        raise StoreError("Stock movements are append-only")

    def for_product(self, product_id: int, *, limit: int = 200) -> list[StockMovement]:
        return (
            self._query()
            .filter(StockMovement.product_id == product_id)
            .order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
            .limit(limit)
            .all()
        )

    def for_reference(self, reference_id: str) -> list[StockMovement]:
        return (
            self._query()
            .filter(StockMovement.reference_id == str(reference_id))
            .order_by(StockMovement.id.asc())
            .all()
        )


class InvoiceStore(TenantCollection):
    model = Invoice
    entity_name = "Invoice"
    immutable_fields = frozenset({"id", "clinic_id", "invoice_number"})
    sequence_type = "INVOICE"
    number_prefix = "INV"

    @staticmethod
    def _build_items(items: list[dict]) -> list[InvoiceItem]:
        return [
            InvoiceItem(
                line_number=i + 1,
                product_id=item.get("product_id"),
                description=item.get("description"),
                quantity=item["quantity"],
                unit_price_cents=item.get("unit_price_cents", 0),
                total_cents=item.get("total_cents", item["quantity"] * item.get("unit_price_cents", 0)),
            )
            for i, item in enumerate(items)
        ]

    def next_number(self) -> str:
        """
        Allocate the next INV-<clinic>-<n> number.

        The counter row is versioned: a concurrent allocation raises
        StaleDataError at flush and the caller's retry reads it again.
        """
        sequence = (
            self.session.query(DocumentSequence)
            .filter_by(clinic_id=self.clinic_id, document_type=self.sequence_type)
            .first()
        )
        if sequence is None:
            sequence = DocumentSequence(clinic_id=self.clinic_id, document_type=self.sequence_type, next_number=1)
            self.session.add(sequence)
        number = sequence.next_number or 1
        sequence.next_number = number + 1
        self._flush()
        return f"{self.number_prefix}-{self.clinic_id:03d}-{number:04d}"

    def create(self, data: dict) -> Invoice:
        fields = dict(data)
        if not fields.get("invoice_number"):
            fields["invoice_number"] = self.next_number()
        items = self._build_items(fields.pop("items", []))
        invoice = Invoice(clinic_id=self.clinic_id, **fields)
        invoice.items = items
        invoice.total_cents = sum(i.total_cents for i in items)
        self.session.add(invoice)
        self._flush()
        return invoice

    def update(self, record_id, patch: dict) -> Invoice:
        fields = dict(patch)
        items = fields.pop("items", None)
        invoice = self.get(record_id)
        if invoice is None:
            raise StoreError(f"Invoice {record_id} not found")
        if items is not None:
            # Replace lines wholesale; flush the deletes first so line numbers can be reused
            invoice.items = []
            self._flush()
            invoice.items = self._build_items(items)
            invoice.total_cents = sum(i.total_cents for i in invoice.items)
        for key, value in fields.items():
            if key in self.immutable_fields:
                raise StoreError(f"Invoice.{key} cannot be changed")
            setattr(invoice, key, value)
        self._flush()
        return invoice


@dataclass
class StockStores:
    """The four collections the reconciliation engine works against."""
    products: ProductStore
    batches: BatchStore
    movements: MovementStore
    invoices: InvoiceStore

    @property
    def clinic_id(self) -> int:
        return self.products.clinic_id

    @property
    def session(self):
        return self.products.session

    @classmethod
    def for_clinic(cls, clinic_id: int, session=None) -> "StockStores":
        return cls(
            products=ProductStore(clinic_id, session),
            batches=BatchStore(clinic_id, session),
            movements=MovementStore(clinic_id, session),
            invoices=InvoiceStore(clinic_id, session),
        )
