from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date

BATCH_ACTIVE = "active"
BATCH_DEPLETED = "depleted"
BATCH_EXPIRED = "expired"
BATCH_RECALLED = "recalled"
# Statuses an operator may move an active batch to
WITHDRAWN_STATUSES = {BATCH_EXPIRED, BATCH_RECALLED}

MOVEMENT_SALE = "sale"
MOVEMENT_SALE_REVERSAL = "sale_reversal"
MOVEMENT_PURCHASE = "purchase"
MOVEMENT_ADJUSTMENT = "adjustment"


class Product(db.Model):
    """
    Sellable catalog item.

    MULTI-TENANT: Products are scoped to clinics via clinic_id.

    total_stock is a denormalized cache of the quantity_on_hand of the
    product's non-depleted batches. The reconciliation engine only ever
    decrements it (floored at zero); receiving increments it; the stock
    audit recomputes it from batch state.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("clinic_id", "sku", name="uq_products_clinic_sku"),
        db.Index("ix_products_clinic_name", "clinic_id", "name"),
        db.Index("ix_products_clinic_active", "clinic_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)

    total_stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_point = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    clinic = db.relationship("Clinic", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} clinic_id={self.clinic_id} total_stock={self.total_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "total_stock": self.total_stock,
            "reorder_point": self.reorder_point,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductBatch(db.Model):
    """
    A physical lot of a product with its own expiry.

    INVARIANT: status == 'depleted' iff quantity_on_hand == 0 once the
    reconciliation engine has touched the batch. Depleted batches are never
    reactivated by the engine; only 'active' batches are selected for FEFO.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        db.Index("ix_batches_clinic_product_status_expiry", "clinic_id", "product_id", "status", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Supplier lot number, shown in error messages and on labels
    lot_number = db.Column(db.String(64), nullable=False)

    expiry_date = db.Column(db.Date, nullable=False, index=True)
    received_date = db.Column(db.Date, nullable=True)

    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    cost_per_unit_cents = db.Column(db.Integer, nullable=True)
    supplier_invoice = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=BATCH_ACTIVE, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ProductBatch id={self.id} lot={self.lot_number!r} qty={self.quantity_on_hand} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "product_id": self.product_id,
            "lot_number": self.lot_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "received_date": to_iso_date(self.received_date),
            "quantity_received": self.quantity_received,
            "quantity_on_hand": self.quantity_on_hand,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "supplier_invoice": self.supplier_invoice,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    previous_stock / new_stock describe the product aggregate at the moment
    of the step, not the batch quantity. batch_id is NULL for aggregate-only
    deductions (products without batch tracking).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_clinic_product_date", "clinic_id", "product_id", "movement_date"),
        db.Index("ix_movements_clinic_reference", "clinic_id", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)

    # Signed: negative for sales
    quantity = db.Column(db.Integer, nullable=False)

    # Invoice (or receiving document) this movement belongs to
    reference_id = db.Column(db.String(64), nullable=True)

    movement_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    staff_member = db.Column(db.String(128), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reference_id": self.reference_id,
            "movement_date": to_utc_z(self.movement_date),
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "staff_member": self.staff_member,
            "note": self.note,
        }
