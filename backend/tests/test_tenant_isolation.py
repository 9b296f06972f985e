# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that one clinic can never read or change another
clinic's records through the tenant-scoped stores.

Verifies that:
1. A foreign record is indistinguishable from a missing one
2. Creates are stamped with the bound clinic and cannot be redirected
3. Unknown and inactive clinics are rejected
4. Movements are append-only
"""

from datetime import date

import pytest

from vetstock.extensions import db
from vetstock.models import Clinic, DocumentSequence, Product
from vetstock.services.invoice_service import create_invoice
from vetstock.services.tenant_service import (
    TenantAccessError,
    create_clinic,
    require_active_clinic,
)
from vetstock.services.tenant_store import StockStores, StoreError

from conftest import STAFF


class TestTenantServiceHelpers:
    def test_require_active_clinic(self, clinic):
        assert require_active_clinic(clinic.id).id == clinic.id

    def test_require_active_clinic_nonexistent(self, db_session):
        with pytest.raises(TenantAccessError):
            require_active_clinic(99999)

    def test_require_active_clinic_inactive(self, db_session):
        closed = Clinic(name="Closed", code="closed", is_active=False)
        db_session.add(closed)
        db_session.commit()

        with pytest.raises(TenantAccessError):
            require_active_clinic(closed.id)

    def test_create_clinic_normalizes_code(self, db_session):
        clinic = create_clinic("  Riverside Vets ", "RIVER")
        assert (clinic.name, clinic.code) == ("Riverside Vets", "river")

        with pytest.raises(ValueError):
            create_clinic("Another", "river")

    def test_create_clinic_seeds_invoice_numbering(self, db_session):
        clinic = create_clinic("Hillside Vets", "hill")

        assert db_session.query(DocumentSequence).filter_by(clinic_id=clinic.id).count() == 1
        invoice = create_invoice(clinic.id, {"items": []}, actor=STAFF).invoice
        assert invoice.invoice_number == f"INV-{clinic.id:03d}-0001"

    def test_create_clinic_requires_name(self, db_session):
        with pytest.raises(ValueError):
            create_clinic("   ")


class TestScopedStores:
    def test_foreign_product_reads_as_missing(self, clinic, other_clinic, make_product):
        foreign = make_product("Foreign", total_stock=5, clinic_id=other_clinic.id)
        stores = StockStores.for_clinic(clinic.id)

        assert stores.products.get(foreign.id) is None
        assert stores.products.index([foreign.id]) == {}
        assert stores.products.list() == []

    def test_foreign_product_cannot_be_updated(self, clinic, other_clinic, make_product):
        foreign = make_product("Foreign", total_stock=5, clinic_id=other_clinic.id)
        stores = StockStores.for_clinic(clinic.id)

        with pytest.raises(StoreError):
            stores.products.update(foreign.id, {"total_stock": 0})
        db.session.rollback()
        assert db.session.get(Product, foreign.id).total_stock == 5

    def test_create_is_stamped_with_bound_clinic(self, clinic, other_clinic):
        stores = StockStores.for_clinic(clinic.id)

        product = stores.products.create({"name": "Local", "sku": "LOC-1"})
        assert product.clinic_id == clinic.id

        with pytest.raises(StoreError):
            stores.products.create({"name": "Sneaky", "clinic_id": other_clinic.id})
        db.session.rollback()

    def test_clinic_id_is_immutable(self, clinic, other_clinic, make_product):
        product = make_product("Local")
        stores = StockStores.for_clinic(clinic.id)

        with pytest.raises(StoreError):
            stores.products.update(product.id, {"clinic_id": other_clinic.id})
        db.session.rollback()

    def test_foreign_batches_are_invisible(self, clinic, other_clinic, make_product, make_batch):
        local = make_product("Local")
        foreign = make_product("Foreign", clinic_id=other_clinic.id)
        foreign_batch = make_batch(foreign, "F1", 5, date(2025, 1, 1))

        stores = StockStores.for_clinic(clinic.id)
        assert stores.batches.active_for_product(foreign.id) == []
        assert stores.batches.get(foreign_batch.id) is None
        assert stores.batches.active_for_product(local.id) == []

    def test_movements_are_append_only(self, clinic, make_product):
        product = make_product("Local", total_stock=1)
        stores = StockStores.for_clinic(clinic.id)
        movement = stores.movements.create({
            "product_id": product.id,
            "movement_type": "adjustment",
            "quantity": 1,
            "previous_stock": 0,
            "new_stock": 1,
            "staff_member": STAFF,
        })
        db.session.commit()

        with pytest.raises(StoreError):
            stores.movements.update(movement.id, {"quantity": 100})

    def test_filter_orders_with_id_tiebreak(self, clinic, make_product, make_batch):
        product = make_product("Local")
        a = make_batch(product, "A", 1, date(2025, 1, 1))
        b = make_batch(product, "B", 1, date(2025, 1, 1))
        c = make_batch(product, "C", 1, date(2024, 1, 1))
        stores = StockStores.for_clinic(clinic.id)

        ascending = stores.batches.filter({"product_id": product.id}, "expiry_date")
        descending = stores.batches.filter({"product_id": product.id}, "-expiry_date")

        assert [x.id for x in ascending] == [c.id, a.id, b.id]
        assert [x.id for x in descending] == [b.id, a.id, c.id]
