from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

INVOICE_DRAFT = "draft"
INVOICE_SENT = "sent"
INVOICE_PAID = "paid"
INVOICE_OVERDUE = "overdue"
INVOICE_CANCELLED = "cancelled"
INVOICE_STATUSES = {INVOICE_DRAFT, INVOICE_SENT, INVOICE_PAID, INVOICE_OVERDUE, INVOICE_CANCELLED}


class Invoice(db.Model):
    """
    Client invoice (document-first).

    LIFECYCLE:
    draft -> sent | paid | cancelled
    sent -> paid | overdue | cancelled
    overdue -> paid | cancelled   (overdue is operator-set)
    paid, cancelled: terminal

    Stock is reconciled exactly once, on the edge into 'paid'.
    stock_reconciled_at records that run.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("clinic_id", "invoice_number", name="uq_invoices_clinic_number"),
        db.Index("ix_invoices_clinic_status_created", "clinic_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=False, index=True)

    # Human-readable number (e.g., "INV-001-0042")
    invoice_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_DRAFT, index=True)

    # Client / pet records live in the generic CRUD layer; kept as plain references
    client_id = db.Column(db.String(64), nullable=True, index=True)
    pet_id = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.String(128), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    stock_reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "InvoiceItem",
        backref="invoice",
        lazy=True,
        order_by="InvoiceItem.line_number",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "client_id": self.client_id,
            "pet_id": self.pet_id,
            "notes": self.notes,
            "total_cents": self.total_cents,
            "created_by": self.created_by,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "stock_reconciled_at": to_utc_z(self.stock_reconciled_at) if self.stock_reconciled_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "items": [item.to_dict() for item in self.items],
        }


class InvoiceItem(db.Model):
    """
    Invoice line. product_id is optional: services and fees have none.
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_items_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # No FK: a line may reference a product that was since removed from the catalog
    product_id = db.Column(db.Integer, nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_cents": self.total_cents,
        }
