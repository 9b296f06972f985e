# Overview: Pytest coverage for the invoice HTTP routes.

"""
Invoice route tests.

Verifies:
- Writes without X-Staff-Member return 401
- Unknown clinics return 404
- Paying an invoice returns the saved invoice plus reconciliation_errors
- Blocking stock errors return 409 and persist nothing
- Boundary validation rejects non-integer quantities
"""

from datetime import date

import pytest

from vetstock.extensions import db
from vetstock.models import Clinic, Invoice, Product

from conftest import staff_headers


@pytest.fixture
def stocked(make_product, make_batch):
    product = make_product("Amoxicillin 250mg", total_stock=15)
    make_batch(product, "B1", 5, date(2024, 1, 1))
    make_batch(product, "B2", 10, date(2024, 6, 1))
    return product


def _url(clinic_id, suffix=""):
    return f"/api/clinics/{clinic_id}/invoices/{suffix}"


class TestAccess:
    def test_write_without_staff_header_returns_401(self, client, clinic):
        response = client.post(_url(clinic.id), json={"items": []})
        assert response.status_code == 401

    def test_unknown_clinic_returns_404(self, client, db_session):
        response = client.post(_url(999999), json={"items": []}, headers=staff_headers())
        assert response.status_code == 404

    def test_inactive_clinic_returns_404(self, client, db_session):
        closed = Clinic(name="Closed Clinic", code="closed", is_active=False)
        db_session.add(closed)
        db_session.commit()

        response = client.get(_url(closed.id, "1"))
        assert response.status_code == 404


class TestCreateRoute:
    def test_create_draft(self, client, clinic, stocked):
        response = client.post(_url(clinic.id), json={
            "items": [{"product_id": stocked.id, "quantity": 2, "unit_price_cents": 1250}],
        }, headers=staff_headers())

        assert response.status_code == 201
        body = response.get_json()
        assert body["invoice"]["status"] == "draft"
        assert body["invoice"]["total_cents"] == 2500
        assert body["reconciliation_errors"] == []

    def test_create_paid_deducts_stock(self, client, clinic, stocked):
        response = client.post(_url(clinic.id), json={
            "status": "paid",
            "items": [{"product": stocked.id, "quantity": 8}],
        }, headers=staff_headers())

        assert response.status_code == 201
        body = response.get_json()
        assert body["invoice"]["status"] == "paid"
        assert body["reconciled"] is True
        assert db.session.get(Product, stocked.id).total_stock == 7

    def test_insufficient_stock_returns_409(self, client, clinic, stocked):
        response = client.post(_url(clinic.id), json={
            "status": "paid",
            "items": [{"product_id": stocked.id, "quantity": 99}],
        }, headers=staff_headers())

        assert response.status_code == 409
        body = response.get_json()
        assert body["error"] == 'Insufficient stock for "Amoxicillin 250mg". Cannot complete sale.'
        assert body["details"]["available_quantity"] == 15
        assert db.session.query(Invoice).count() == 0

    @pytest.mark.parametrize("quantity", ["abc", 1.5, "2.5", True, None])
    def test_non_integer_quantity_returns_400(self, client, clinic, stocked, quantity):
        response = client.post(_url(clinic.id), json={
            "items": [{"product_id": stocked.id, "quantity": quantity}],
        }, headers=staff_headers())
        assert response.status_code == 400

    def test_unknown_fields_return_400(self, client, clinic):
        response = client.post(_url(clinic.id), json={"items": [], "discount": 10}, headers=staff_headers())
        assert response.status_code == 400

    def test_illegal_initial_status_returns_400(self, client, clinic):
        response = client.post(_url(clinic.id), json={"status": "overdue"}, headers=staff_headers())
        assert response.status_code == 400


class TestUpdateRoute:
    def test_pay_existing_invoice(self, client, clinic, stocked):
        created = client.post(_url(clinic.id), json={
            "items": [{"product_id": stocked.id, "quantity": 3}],
        }, headers=staff_headers()).get_json()["invoice"]

        response = client.put(_url(clinic.id, str(created["id"])), json={"status": "paid"}, headers=staff_headers())

        assert response.status_code == 200
        assert response.get_json()["invoice"]["status"] == "paid"
        assert db.session.get(Product, stocked.id).total_stock == 12

    def test_pay_twice_deducts_once(self, client, clinic, stocked):
        created = client.post(_url(clinic.id), json={
            "items": [{"product_id": stocked.id, "quantity": 3}],
        }, headers=staff_headers()).get_json()["invoice"]

        for _ in range(2):
            response = client.put(_url(clinic.id, str(created["id"])), json={"status": "paid"}, headers=staff_headers())
            assert response.status_code == 200

        assert db.session.get(Product, stocked.id).total_stock == 12

    def test_invoice_number_cannot_change(self, client, clinic):
        created = client.post(_url(clinic.id), json={}, headers=staff_headers()).get_json()["invoice"]

        response = client.put(
            _url(clinic.id, str(created["id"])), json={"invoice_number": "X-1"}, headers=staff_headers(),
        )
        assert response.status_code == 400

    def test_illegal_transition_returns_400(self, client, clinic):
        created = client.post(_url(clinic.id), json={"status": "cancelled"}, headers=staff_headers()).get_json()["invoice"]

        response = client.put(_url(clinic.id, str(created["id"])), json={"status": "paid"}, headers=staff_headers())
        assert response.status_code == 400

    def test_missing_invoice_returns_404(self, client, clinic):
        response = client.put(_url(clinic.id, "424242"), json={"status": "sent"}, headers=staff_headers())
        assert response.status_code == 404


class TestReadRoutes:
    def test_get_invoice(self, client, clinic, stocked):
        created = client.post(_url(clinic.id), json={
            "items": [{"product_id": stocked.id, "quantity": 1}],
        }, headers=staff_headers()).get_json()["invoice"]

        response = client.get(_url(clinic.id, str(created["id"])))

        assert response.status_code == 200
        invoice = response.get_json()["invoice"]
        assert invoice["invoice_number"] == created["invoice_number"]
        assert invoice["items"][0]["product_id"] == stocked.id

    def test_get_invoice_of_another_clinic_returns_404(self, client, clinic, other_clinic):
        created = client.post(_url(clinic.id), json={}, headers=staff_headers()).get_json()["invoice"]

        response = client.get(_url(other_clinic.id, str(created["id"])))
        assert response.status_code == 404

    def test_list_invoices(self, client, clinic):
        client.post(_url(clinic.id), json={}, headers=staff_headers())
        client.post(_url(clinic.id), json={"status": "sent"}, headers=staff_headers())

        response = client.get(_url(clinic.id) + "?status=sent")
        assert response.status_code == 200
        assert [i["status"] for i in response.get_json()["invoices"]] == ["sent"]


class TestSystemRoutes:
    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"

    def test_version(self, client):
        body = client.get("/version").get_json()
        assert body["shortfall_policy"] == "report"
