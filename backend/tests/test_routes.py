# Overview: HTTP-level tests for the drafts, invoices, orders, customers, stock and report endpoints.

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from shopledger.services.invoice_service import InvoiceCommitSequencer


def _open_draft(client, customer="Asha Rao"):
    resp = client.post("/api/drafts", json={})
    assert resp.status_code == 201
    key = resp.get_json()["session_key"]
    resp = client.patch(f"/api/drafts/{key}", json={"customer_name": customer})
    assert resp.status_code == 200
    return key


class TestSystem:
    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["failed_invoices"] == 0

    def test_cors_header_for_allowed_origin(self, client, db_session):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers.get("Access-Control-Allow-Origin") == "http://localhost:5173"

        resp = client.get("/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestDraftEndpoints:
    def test_list_always_has_one_draft(self, client, db_session):
        resp = client.get("/api/drafts")
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1

    def test_edit_returns_recomputed_totals(self, client, db_session):
        key = _open_draft(client)
        resp = client.post(f"/api/drafts/{key}/lines", json={
            "line_type": "manual", "description": "Hem", "unit_price": "100", "quantity": 3,
        })
        assert resp.status_code == 201

        resp = client.patch(f"/api/drafts/{key}", json={"tax_type": "CGST_SGST", "tax_percent": "18"})
        totals = resp.get_json()["draft"]["totals"]
        assert totals["cgst"] == "27.00"
        assert totals["grand_total"] == "354.00"

        resp = client.patch(f"/api/drafts/{key}/lines/0", json={"discount_percent": "10"})
        assert resp.get_json()["draft"]["lines"][0]["line_total"] == "270.00"

        resp = client.delete(f"/api/drafts/{key}/lines/0")
        assert resp.get_json()["draft"]["lines"] == []

    def test_unknown_draft(self, client, db_session):
        assert client.get("/api/drafts/inv_nope").status_code == 404
        assert client.patch("/api/drafts/inv_nope", json={"customer_name": "x"}).status_code == 404

    def test_bad_line_index(self, client, db_session):
        key = _open_draft(client)
        assert client.delete(f"/api/drafts/{key}/lines/5").status_code == 400

    def test_closing_last_draft_conflicts(self, client, db_session):
        key = _open_draft(client)
        assert client.delete(f"/api/drafts/{key}").status_code == 409

    def test_commit_success(self, client, make_product, make_variant):
        product = make_product(price="100")
        variant = make_variant(product, stock=5)
        key = _open_draft(client)
        client.post(f"/api/drafts/{key}/lines", json={
            "line_type": "catalog", "product_id": product.id, "variant_id": variant.id, "quantity": 2,
        })

        resp = client.post(f"/api/drafts/{key}/commit")
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["invoice"]["commit_state"] == "COMMITTED"
        assert Decimal(body["invoice"]["grand_total"]) == Decimal("200")
        assert body["session"]["draft"]["lines"] == []

        stock = client.get(f"/api/stock/variants/{variant.id}").get_json()
        assert stock["available"] == 3

    def test_commit_insufficient_stock(self, client, make_product, make_variant):
        product = make_product(price="100")
        variant = make_variant(product, stock=5)
        key = _open_draft(client)
        client.post(f"/api/drafts/{key}/lines", json={
            "product_id": product.id, "variant_id": variant.id, "quantity": 6,
        })

        resp = client.post(f"/api/drafts/{key}/commit")
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["error_kind"] == "insufficient_stock"
        assert body["details"]["available"] == 5
        assert body["details"]["target_type"] == "variant"
        assert client.get(f"/api/stock/variants/{variant.id}").get_json()["available"] == 5

    def test_commit_without_customer(self, client, db_session):
        resp = client.post("/api/drafts", json={})
        key = resp.get_json()["session_key"]
        client.post(f"/api/drafts/{key}/lines", json={"description": "Hem", "unit_price": "50"})
        assert client.post(f"/api/drafts/{key}/commit").status_code == 400

    def test_blocked_commit_and_reset(self, client, db_session, monkeypatch):
        def _failing_write_lines(self, invoice, validated):
            raise OperationalError("INSERT INTO invoice_lines", {}, Exception("disk I/O error"))

        key = _open_draft(client)
        client.post(f"/api/drafts/{key}/lines", json={"description": "Hem", "unit_price": "50"})
        monkeypatch.setattr(InvoiceCommitSequencer, "_write_lines", _failing_write_lines)
        resp = client.post(f"/api/drafts/{key}/commit")
        assert resp.status_code == 502
        failed_id = resp.get_json()["invoice_id"]

        monkeypatch.undo()
        resp = client.post(f"/api/drafts/{key}/commit")
        assert resp.status_code == 409
        assert resp.get_json()["invoice_id"] == failed_id

        resp = client.post(f"/api/drafts/{key}/reset")
        assert resp.status_code == 200
        assert resp.get_json()["failed_invoice_id"] is None


class TestInvoiceEndpoints:
    @pytest.fixture
    def invoice_id(self, client, db_session):
        key = _open_draft(client, customer="Vikram")
        client.post(f"/api/drafts/{key}/lines", json={"description": "Suit", "unit_price": "500"})
        resp = client.post(f"/api/drafts/{key}/commit")
        return resp.get_json()["invoice"]["id"]

    def test_archive_and_detail(self, client, invoice_id):
        body = client.get("/api/invoices?customer=vik").get_json()
        assert body["summary"]["count"] == 1
        assert body["items"][0]["id"] == invoice_id

        detail = client.get(f"/api/invoices/{invoice_id}").get_json()
        assert detail["lines"][0]["description"] == "Suit"
        assert client.get("/api/invoices/4242").status_code == 404

    def test_payments(self, client, invoice_id):
        resp = client.post(f"/api/invoices/{invoice_id}/payments", json={"amount": "200", "method": "upi"})
        assert resp.status_code == 201
        assert resp.get_json()["invoice"]["payment_status"] == "partial"

        resp = client.post(f"/api/invoices/{invoice_id}/payments", json={"amount": "301"})
        assert resp.status_code == 400

        resp = client.post(f"/api/invoices/{invoice_id}/payments", json={"amount": "300"})
        assert resp.get_json()["invoice"]["payment_status"] == "paid"

    def test_status_change_requires_reason_when_paid(self, client, invoice_id):
        client.post(f"/api/invoices/{invoice_id}/status", json={"status": "paid"})

        resp = client.post(f"/api/invoices/{invoice_id}/status", json={"status": "unpaid"})
        assert resp.status_code == 400
        assert resp.get_json()["error_kind"] == "reason_required"

        resp = client.post(f"/api/invoices/{invoice_id}/status", json={"status": "unpaid", "reason": "bounced"})
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["payment_status"] == "unpaid"

        detail = client.get(f"/api/invoices/{invoice_id}").get_json()
        assert detail["status_audits"][0]["reason"] == "bounced"

    def test_repair_on_committed_invoice_is_noop(self, client, invoice_id):
        resp = client.post(f"/api/invoices/{invoice_id}/repair-stock")
        assert resp.status_code == 200
        assert resp.get_json()["deducted"] == []


class TestOrdersCustomersReports:
    def test_order_then_report(self, client, make_product):
        product = make_product(price="100", offer_price="80")
        resp = client.post("/api/orders", json={
            "order_number": "WEB-1",
            "created_at": "2026-03-01T10:00:00Z",
            "lines": [{"product_id": product.id, "quantity": 2}],
        })
        assert resp.status_code == 201
        assert client.post("/api/orders", json={
            "order_number": "WEB-1", "lines": [{"product_id": product.id, "quantity": 1}],
        }).status_code == 409

        body = client.get("/api/reports/sales?start=2026-03-01&end=2026-03-01").get_json()
        assert Decimal(body["totals"]["revenue"]) == Decimal("160")

        body = client.get("/api/reports/daily-orders?start=2026-03-01&end=2026-03-01").get_json()
        assert body["rows"][0]["online_orders"] == 1

    def test_report_bad_range(self, client, db_session):
        assert client.get("/api/reports/sales?start=2026-03-05&end=2026-03-01").status_code == 400

    def test_customers(self, client, db_session):
        resp = client.post("/api/customers", json={"name": "Leela", "phone": "900"})
        assert resp.status_code == 201
        assert client.post("/api/customers", json={"phone": "1"}).status_code == 400
        assert client.get("/api/customers?search=lee").get_json()["count"] == 1
