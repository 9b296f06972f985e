"""
Pytest fixtures for vetstock backend tests.

Provides the in-memory application, per-test table wipe, tenant fixtures and
catalog factories (products, batches).
"""

from datetime import date

import pytest

from vetstock import create_app
from vetstock.extensions import db
from vetstock.models import Clinic, Product, ProductBatch
from vetstock.models.inventory import BATCH_ACTIVE
from vetstock.services.tenant_store import (
    BatchStore,
    InvoiceStore,
    MovementStore,
    ProductStore,
    StockStores,
    StoreError,
)


STAFF = "dr.hale"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'STOCK_SHORTFALL_POLICY': 'report',
        'RECONCILIATION_DEADLINE_SECONDS': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def clinic(db_session):
    """Clinic A (first tenant)."""
    clinic = Clinic(name="Northside Veterinary", code="north", is_active=True)
    db_session.add(clinic)
    db_session.commit()
    return clinic


@pytest.fixture(scope='function')
def other_clinic(db_session):
    """Clinic B (second tenant)."""
    clinic = Clinic(name="Southside Animal Hospital", code="south", is_active=True)
    db_session.add(clinic)
    db_session.commit()
    return clinic


@pytest.fixture(scope='function')
def stores(clinic):
    return StockStores.for_clinic(clinic.id)


@pytest.fixture(scope='function')
def make_product(db_session, clinic):
    """Factory: Product with a given aggregate stock (no batches)."""
    counter = {"n": 0}

    def _make(name="Amoxicillin 250mg", total_stock=0, *, clinic_id=None, reorder_point=0, price_cents=1000):
        counter["n"] += 1
        product = Product(
            clinic_id=clinic_id or clinic.id,
            sku=f"SKU-{counter['n']:03d}",
            name=name,
            price_cents=price_cents,
            total_stock=total_stock,
            reorder_point=reorder_point,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_batch(db_session):
    """
    Factory: ProductBatch for an existing product.

    Does not touch Product.total_stock; tests set the aggregate explicitly.
    """
    def _make(product, lot_number, quantity, expiry_date, *, status=BATCH_ACTIVE):
        batch = ProductBatch(
            clinic_id=product.clinic_id,
            product_id=product.id,
            lot_number=lot_number,
            expiry_date=expiry_date,
            received_date=date(2023, 12, 1),
            quantity_received=quantity,
            quantity_on_hand=quantity,
            status=status,
        )
        db_session.add(batch)
        db_session.commit()
        return batch

    return _make


def staff_headers(actor: str = STAFF) -> dict:
    """Helper to create staff attribution headers."""
    return {'X-Staff-Member': actor}


def line(product_id, quantity, unit_price_cents=1000, description=None) -> dict:
    """A validated invoice line as the services receive it."""
    return {
        "product_id": product_id,
        "description": description,
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
        "total_cents": quantity * unit_price_cents,
    }


class FailingBatchStore(BatchStore):
    """Batch writes for the listed ids fail like a lost connection would."""

    def __init__(self, clinic_id, fail_ids, session=None):
        super().__init__(clinic_id, session)
        self.fail_ids = set(fail_ids)

    def update(self, record_id, patch):
        if record_id in self.fail_ids:
            raise StoreError(f"ProductBatch {record_id} write failed")
        return super().update(record_id, patch)


def stores_with_failing_batches(clinic_id, fail_ids, *, invoices=None) -> StockStores:
    return StockStores(
        products=ProductStore(clinic_id),
        batches=FailingBatchStore(clinic_id, fail_ids),
        movements=MovementStore(clinic_id),
        invoices=invoices or InvoiceStore(clinic_id),
    )
