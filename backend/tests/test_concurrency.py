# Overview: Threaded concurrency tests against a file-backed SQLite database.

"""
Concurrency tests.

Each worker runs in its own thread with its own app context (and therefore
its own session and connection), the way concurrent requests would.
"""

import threading
from datetime import date

import pytest

from vetstock import create_app
from vetstock.extensions import db
from vetstock.models import Clinic, Product, ProductBatch, StockMovement
from vetstock.models.inventory import MOVEMENT_SALE
from vetstock.services.invoice_service import create_invoice, update_invoice
from vetstock.services.receiving_service import receive_batch

from conftest import STAFF, line


@pytest.fixture
def file_app(tmp_path):
    db_path = tmp_path / "concurrency.sqlite3"
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "STOCK_SHORTFALL_POLICY": "report",
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    with file_app.app_context():
        clinic = Clinic(name="Concurrency Clinic", code="conc")
        db.session.add(clinic)
        db.session.commit()
        product = Product(clinic_id=clinic.id, sku="CONC-1", name="Concurrent Product", total_stock=0)
        db.session.add(product)
        db.session.commit()
        for lot, expiry in (("C1", date(2025, 1, 1)), ("C2", date(2025, 6, 1))):
            receive_batch(clinic.id, product_id=product.id, lot_number=lot, quantity=5,
                          expiry_date=expiry, actor=STAFF)
        ids = {"clinic_id": clinic.id, "product_id": product.id}
        db.session.remove()
    return ids


def _run_threads(target, args_list):
    errors = []
    lock = threading.Lock()

    def worker(*args):
        try:
            target(*args)
        except Exception as exc:
            with lock:
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=args) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


def test_concurrent_payment_of_one_invoice_deducts_once(file_app, seeded):
    with file_app.app_context():
        invoice = create_invoice(
            seeded["clinic_id"], {"items": [line(seeded["product_id"], 3)]}, actor=STAFF,
        ).invoice
        invoice_id = invoice.id
        db.session.remove()

    def pay(_):
        with file_app.app_context():
            try:
                update_invoice(seeded["clinic_id"], invoice_id, {"status": "paid"}, actor=STAFF)
            finally:
                db.session.remove()

    errors = _run_threads(pay, [(i,) for i in range(4)])
    assert errors == []

    with file_app.app_context():
        sales = db.session.query(StockMovement).filter_by(
            reference_id=str(invoice_id), movement_type=MOVEMENT_SALE,
        ).all()
        assert sum(m.quantity for m in sales) == -3
        assert db.session.get(Product, seeded["product_id"]).total_stock == 7


def test_concurrent_invoices_never_oversell(file_app, seeded):
    """Both pre-checks may pass against total_stock 10; depletion serializes per product."""
    with file_app.app_context():
        invoice_ids = [
            create_invoice(seeded["clinic_id"], {"items": [line(seeded["product_id"], 6)]}, actor=STAFF).invoice.id
            for _ in range(2)
        ]
        db.session.remove()

    results = []
    lock = threading.Lock()

    def pay(invoice_id):
        with file_app.app_context():
            try:
                result = update_invoice(seeded["clinic_id"], invoice_id, {"status": "paid"}, actor=STAFF)
                with lock:
                    results.append(result.reconciliation_errors)
            finally:
                db.session.remove()

    # Rejected payments (InsufficientStockError) are an acceptable outcome
    _run_threads(pay, [(invoice_id,) for invoice_id in invoice_ids])

    with file_app.app_context():
        product = db.session.get(Product, seeded["product_id"])
        batches = db.session.query(ProductBatch).filter_by(product_id=product.id).all()
        movements = db.session.query(StockMovement).filter_by(product_id=product.id).all()

        assert product.total_stock >= 0
        assert all(b.quantity_on_hand >= 0 for b in batches)
        assert sum(b.quantity_on_hand for b in batches) == product.total_stock
        assert sum(m.quantity for m in movements) == product.total_stock
        assert results
