import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi import HTTPException

from app.domain.invoices.service import InvoiceService, calculate_bulk_payment_total, late_fee_for
from app.models_billing import Invoice
from app.services.stripe_connect_service import StripeConnectService

NOW = datetime(2026, 5, 15, 12, 0, tzinfo=timezone.utc)


def make_invoice(db, agent, number, amount, status="pending", due_days_ago=-7, **extra):
    invoice = Invoice(
        invoice_number=number,
        agent_id=agent.id,
        amount=amount,
        status=status,
        due_date=NOW - timedelta(days=due_days_ago),
        **extra,
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def stripe_with(handler) -> StripeConnectService:
    return StripeConnectService(secret_key="sk_test_123", transport=httpx.MockTransport(handler))


class TestLateFees:
    def test_only_overdue_invoices_accrue(self, db, agent):
        pending = make_invoice(db, agent, "INV-1", 200, status="pending", due_days_ago=30)
        overdue = make_invoice(db, agent, "INV-2", 200, status="overdue", due_days_ago=30)
        assert late_fee_for(pending, NOW) == 0
        assert late_fee_for(overdue, NOW) == pytest.approx(6.0)

    def test_capped_at_ten_percent(self, db, agent):
        invoice = make_invoice(db, agent, "INV-1", 500, status="overdue", due_days_ago=365)
        assert late_fee_for(invoice, NOW) == pytest.approx(50.0)


class TestBulkTotals:
    def test_empty(self):
        assert calculate_bulk_payment_total([]) == {"invoice_count": 0, "subtotal": 0, "total": 0}

    def test_fees_on_top_of_late_fees(self, db, agent):
        invoices = [
            make_invoice(db, agent, "INV-1", 100),
            make_invoice(db, agent, "INV-2", 200, status="overdue", due_days_ago=30),
        ]
        result = calculate_bulk_payment_total(invoices, include_processing_fee=True, include_late_fees=True, now=NOW)
        assert result == {
            "invoice_count": 2,
            "subtotal": 300,
            "processing_fee": 9.17,
            "late_fees": 6.0,
            "total": 315.17,
        }

    def test_zero_fees_are_omitted(self, db, agent):
        result = calculate_bulk_payment_total([make_invoice(db, agent, "INV-1", 100)])
        assert "processing_fee" not in result
        assert "late_fees" not in result
        assert result["total"] == 100


class TestBulkPayment:
    def test_creates_payment_intent(self, db, agent):
        first = make_invoice(db, agent, "INV-1", 100)
        second = make_invoice(db, agent, "INV-2", 200)
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id": "pi_123", "client_secret": "pi_123_secret"})

        service = InvoiceService(db, stripe=stripe_with(handler))
        result = asyncio.run(service.create_bulk_payment_intent(agent.id, [first.id, second.id]))

        assert result == {
            "success": True,
            "client_secret": "pi_123_secret",
            "payment_intent_id": "pi_123",
            "total_amount": 300,
        }
        assert seen["path"] == "/v1/payment_intents"
        assert seen["form"]["amount"] == ["30000"]
        assert seen["form"]["metadata[type]"] == ["bulk_invoice_payment"]
        assert seen["form"]["automatic_payment_methods[enabled]"] == ["true"]

    def test_rejects_other_agents_invoices(self, db, agent):
        invoice = make_invoice(db, agent, "INV-1", 100)
        service = InvoiceService(db, stripe=stripe_with(lambda r: httpx.Response(500)))
        result = asyncio.run(service.create_bulk_payment_intent("someone-else", [invoice.id]))
        assert result == {"success": False, "error": "One or more invoices are unauthorized."}

    def test_stripe_failure(self, db, agent):
        invoice = make_invoice(db, agent, "INV-1", 100)
        service = InvoiceService(
            db, stripe=stripe_with(lambda r: httpx.Response(402, json={"error": {"message": "Card declined"}}))
        )
        result = asyncio.run(service.create_bulk_payment_intent(agent.id, [invoice.id]))
        assert result == {"success": False, "error": "Failed to create payment intent."}


class TestSelectedInvoicesTotal:
    def test_totals_agents_unpaid_selection(self, db, agent):
        first = make_invoice(db, agent, "INV-1", 100)
        second = make_invoice(db, agent, "INV-2", 200)
        result = InvoiceService(db).get_bulk_total(agent.id, [first.id, second.id], False, True)
        assert result == {"invoice_count": 2, "subtotal": 300, "total": 300}

    def test_rejects_other_agents_invoices(self, db, agent):
        invoice = make_invoice(db, agent, "INV-1", 100)
        with pytest.raises(HTTPException) as exc:
            InvoiceService(db).get_bulk_total("someone-else", [invoice.id], False, True)
        assert exc.value.status_code == 403
        assert exc.value.detail == "One or more invoices are unauthorized."

    def test_rejects_paid_invoices(self, db, agent):
        unpaid = make_invoice(db, agent, "INV-1", 100)
        paid = make_invoice(db, agent, "INV-2", 400, status="paid")
        with pytest.raises(HTTPException) as exc:
            InvoiceService(db).get_bulk_total(agent.id, [unpaid.id, paid.id], False, True)
        assert exc.value.status_code == 400
        assert exc.value.detail == "One or more invoices are already paid."

    def test_endpoint_requires_owner(self, client, db, staff_headers, agent):
        invoice = make_invoice(db, agent, "INV-1", 100)
        payload = {"agent_id": agent.id, "invoice_ids": [invoice.id]}

        response = client.post("/api/invoices/bulk/total", json=payload, headers=staff_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 100

        payload["agent_id"] = "someone-else"
        response = client.post("/api/invoices/bulk/total", json=payload, headers=staff_headers)
        assert response.status_code == 403


class TestLifecycle:
    def test_mark_overdue(self, db, agent):
        late = make_invoice(db, agent, "INV-1", 100, due_days_ago=3)
        make_invoice(db, agent, "INV-2", 100, due_days_ago=-3)
        make_invoice(db, agent, "INV-3", 100, status="paid", due_days_ago=10)

        assert InvoiceService(db).mark_overdue(NOW) == 1
        db.refresh(late)
        assert late.status == "overdue"

    def test_mark_paid(self, db, agent):
        invoice = make_invoice(db, agent, "INV-1", 100)
        assert InvoiceService(db).mark_paid([invoice.id], "pi_999") == {"success": True, "updated_count": 1}
        db.refresh(invoice)
        assert invoice.status == "paid"
        assert invoice.payment_intent_id == "pi_999"

    def test_summary(self, db, agent):
        make_invoice(db, agent, "INV-1", 100)
        make_invoice(db, agent, "INV-2", 250, status="overdue", due_days_ago=5)
        make_invoice(db, agent, "INV-3", 400, status="paid", paid_at=NOW - timedelta(days=1))

        summary = InvoiceService(db).get_summary(agent.id, now=NOW)
        assert summary["unpaid_count"] == 2
        assert summary["unpaid_total"] == 350
        assert summary["overdue_count"] == 1
        assert summary["overdue_total"] == 250
        assert summary["paid_this_month"] == 400
        assert summary["paid_this_year"] == 400


def test_pdf_endpoint(client, staff_headers, db, agent):
    invoice = make_invoice(
        db,
        agent,
        "INV-2026-001",
        375,
        line_items=[{"description": "Essentials package", "amount": 375}],
        brokerage_info={"name": "Lakefront Realty", "license": "BK123"},
        custom_notes="Thanks for your business",
    )
    response = client.get(f"/api/invoices/{invoice.id}/pdf", headers=staff_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")
    assert 'filename="INV-2026-001.pdf"' in response.headers["content-disposition"]


def test_unknown_invoice(client, staff_headers):
    response = client.get("/api/invoices/does-not-exist", headers=staff_headers)
    assert response.status_code == 404
    assert response.json() == {"detail": "Invoice not found."}
