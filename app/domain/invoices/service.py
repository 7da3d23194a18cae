"""
Invoice service

Bulk totals follow card processing pricing (2.9% + $0.30) and a late fee of
0.1% per day overdue, capped at 10% of the invoice.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import PORTAL_URL
from ...email_service import send_invoice_email
from ...models_billing import Invoice
from ...services.invoice_pdf import InvoicePDFGenerator
from ...services.stripe_connect_service import StripeConnectService, StripeError, get_stripe_connect_service
from .repository import InvoiceRepository

logger = logging.getLogger(__name__)

PROCESSING_FEE_PERCENT = 0.029
PROCESSING_FEE_FIXED = 0.30
LATE_FEE_PERCENT_PER_DAY = 0.001
LATE_FEE_MAX_PERCENT = 0.10

UNAUTHORIZED_INVOICES = "One or more invoices are unauthorized."
PAYMENT_INTENT_FAILED = "Failed to create payment intent."
BULK_ERROR_STATUS = {UNAUTHORIZED_INVOICES: 403, PAYMENT_INTENT_FAILED: 502}


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def days_overdue(invoice: Invoice, now: Optional[datetime] = None) -> int:
    if invoice.status in ("paid", "cancelled", "refunded") or not invoice.due_date:
        return 0
    delta = (now or datetime.now(timezone.utc)) - _as_aware(invoice.due_date)
    return max(delta.days, 0)


def late_fee_for(invoice: Invoice, now: Optional[datetime] = None) -> float:
    if invoice.status != "overdue":
        return 0.0
    days = days_overdue(invoice, now)
    if not days:
        return 0.0
    return invoice.amount * min(days * LATE_FEE_PERCENT_PER_DAY, LATE_FEE_MAX_PERCENT)


def calculate_bulk_payment_total(
    invoices: list[Invoice],
    include_processing_fee: bool = False,
    include_late_fees: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """
    Total to charge for paying several invoices at once.

    processing_fee and late_fees are only present when non-zero.
    """
    if not invoices:
        return {"invoice_count": 0, "subtotal": 0, "total": 0}

    subtotal = sum(inv.amount for inv in invoices)
    late_fees = sum(late_fee_for(inv, now) for inv in invoices) if include_late_fees else 0.0

    processing_fee = 0.0
    if include_processing_fee:
        processing_fee = (subtotal + late_fees) * PROCESSING_FEE_PERCENT + PROCESSING_FEE_FIXED

    result = {"invoice_count": len(invoices), "subtotal": subtotal}
    if processing_fee > 0:
        result["processing_fee"] = round(processing_fee, 2)
    if late_fees > 0:
        result["late_fees"] = round(late_fees, 2)
    result["total"] = round(subtotal + late_fees + processing_fee, 2)
    return result


def invoice_to_response(invoice: Invoice, now: Optional[datetime] = None) -> dict:
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "agent_id": invoice.agent_id,
        "listing_id": invoice.listing_id,
        "listing_address": invoice.listing_address,
        "amount": invoice.amount,
        "status": invoice.status,
        "line_items": invoice.line_items or [],
        "due_date": invoice.due_date,
        "days_overdue": days_overdue(invoice, now),
        "paid_at": invoice.paid_at,
        "payment_intent_id": invoice.payment_intent_id,
        "payment_method": invoice.payment_method,
        "custom_notes": invoice.custom_notes,
        "brokerage_info": invoice.brokerage_info,
        "created_at": invoice.created_at,
    }


class InvoiceService:
    def __init__(self, db: Session, stripe: Optional[StripeConnectService] = None):
        self.db = db
        self.repo = InvoiceRepository()
        self.stripe = stripe or get_stripe_connect_service()

    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.repo.get_invoice(self.db, invoice_id)
        if not invoice:
            raise HTTPException(status_code=404, detail="Invoice not found.")
        return invoice

    def get_unpaid(self, agent_id: str) -> list[Invoice]:
        return self.repo.get_unpaid(self.db, agent_id)

    def _payable_invoices(self, agent_id: str, invoice_ids: list[str]) -> tuple[list[Invoice], Optional[str]]:
        """The agent's selected unpaid invoices, or an error naming why they cannot be paid together"""
        invoices = self.repo.get_invoices(self.db, invoice_ids)
        if not invoices:
            return invoices, "No invoices found."
        if any(inv.agent_id != agent_id for inv in invoices):
            logger.warning(f"🚫 Agent {agent_id} selected invoices they do not own")
            return invoices, UNAUTHORIZED_INVOICES
        if any(inv.status == "paid" for inv in invoices):
            return invoices, "One or more invoices are already paid."
        return invoices, None

    def get_bulk_total(
        self, agent_id: str, invoice_ids: list[str], include_processing_fee: bool, include_late_fees: bool
    ) -> dict:
        invoices, error = self._payable_invoices(agent_id, invoice_ids)
        if error:
            raise HTTPException(status_code=BULK_ERROR_STATUS.get(error, 400), detail=error)
        return calculate_bulk_payment_total(invoices, include_processing_fee, include_late_fees)

    async def create_bulk_payment_intent(
        self, agent_id: str, invoice_ids: list[str], include_processing_fee: bool = False
    ) -> dict:
        invoices, error = self._payable_invoices(agent_id, invoice_ids)
        if error:
            return {"success": False, "error": error}

        totals = calculate_bulk_payment_total(invoices, include_processing_fee, include_late_fees=True)
        try:
            intent = await self.stripe.create_payment_intent(
                amount_cents=round(totals["total"] * 100),
                metadata={
                    "type": "bulk_invoice_payment",
                    "agent_id": agent_id,
                    "invoice_ids": ",".join(invoice_ids),
                    "invoice_count": str(len(invoices)),
                },
                description=f"Payment for {len(invoices)} invoice(s)",
            )
        except StripeError as e:
            logger.error(f"❌ Bulk payment intent failed for agent {agent_id}: {e}")
            return {"success": False, "error": PAYMENT_INTENT_FAILED}

        logger.info(f"💳 Bulk payment intent {intent.get('id')} for {len(invoices)} invoice(s): ${totals['total']}")
        return {
            "success": True,
            "client_secret": intent.get("client_secret"),
            "payment_intent_id": intent.get("id"),
            "total_amount": totals["total"],
        }

    def mark_paid(self, invoice_ids: list[str], payment_intent_id: str, payment_method: str = "card") -> dict:
        invoices = self.repo.get_invoices(self.db, invoice_ids)
        now = datetime.now(timezone.utc)
        for invoice in invoices:
            invoice.status = "paid"
            invoice.paid_at = now
            invoice.payment_intent_id = payment_intent_id
            invoice.payment_method = payment_method
        self.db.commit()
        logger.info(f"✅ Marked {len(invoices)} invoice(s) paid via {payment_intent_id}")
        return {"success": True, "updated_count": len(invoices)}

    def mark_overdue(self, now: Optional[datetime] = None) -> int:
        """Flip pending invoices past their due date to overdue"""
        invoices = self.repo.get_overdue_candidates(self.db, now or datetime.now(timezone.utc))
        for invoice in invoices:
            invoice.status = "overdue"
        self.db.commit()
        if invoices:
            logger.info(f"⏰ {len(invoices)} invoice(s) now overdue")
        return len(invoices)

    def get_history(
        self,
        agent_id: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> dict:
        invoices, total = self.repo.get_history(self.db, agent_id, limit, offset, status, date_from, date_to)
        return {"invoices": [invoice_to_response(i) for i in invoices], "total_count": total}

    def get_summary(self, agent_id: str, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now(timezone.utc)
        unpaid = self.repo.get_unpaid(self.db, agent_id)
        overdue = [inv for inv in unpaid if inv.status == "overdue"]
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        year_start = month_start.replace(month=1)
        return {
            "unpaid_count": len(unpaid),
            "unpaid_total": sum(inv.amount for inv in unpaid),
            "overdue_count": len(overdue),
            "overdue_total": sum(inv.amount for inv in overdue),
            "paid_this_month": sum(inv.amount for inv in self.repo.get_paid_since(self.db, agent_id, month_start)),
            "paid_this_year": sum(inv.amount for inv in self.repo.get_paid_since(self.db, agent_id, year_start)),
        }

    def generate_pdf(
        self, invoice_id: str, include_brokerage: bool = True, include_custom_notes: bool = True
    ) -> tuple[Invoice, bytes]:
        invoice = self.get_invoice(invoice_id)
        agent = self.repo.get_agent(self.db, invoice.agent_id)
        try:
            pdf = InvoicePDFGenerator(
                invoice,
                agent,
                late_fee=round(late_fee_for(invoice), 2),
                include_brokerage=include_brokerage,
                include_custom_notes=include_custom_notes,
            ).generate()
        except Exception as e:
            logger.error(f"❌ Invoice PDF failed for {invoice.invoice_number}: {e}")
            raise HTTPException(status_code=500, detail="Failed to generate PDF.") from e
        return invoice, pdf

    async def send_invoice(self, invoice_id: str) -> dict:
        invoice, pdf = self.generate_pdf(invoice_id)
        agent = self.repo.get_agent(self.db, invoice.agent_id)
        if not agent or not agent.email:
            raise HTTPException(status_code=400, detail="Agent has no email address.")

        amount_due = invoice.amount + late_fee_for(invoice)
        try:
            response = await send_invoice_email(
                agent.email,
                {
                    "agent_name": agent.name,
                    "invoice_number": invoice.invoice_number,
                    "amount_due": f"${amount_due:,.2f}",
                    "due_date": invoice.due_date.strftime("%B %d, %Y"),
                    "pay_url": f"{PORTAL_URL}/invoices/{invoice.id}/pay",
                },
                pdf,
            )
        except Exception as e:
            logger.error(f"❌ Failed to email invoice {invoice.invoice_number}: {e}")
            raise HTTPException(status_code=502, detail="Failed to send invoice email.") from e

        if invoice.status == "draft":
            invoice.status = "pending"
            self.db.commit()
        logger.info(f"📧 Invoice {invoice.invoice_number} sent to {agent.email}")
        return {"success": True, "messageId": response.get("id") if isinstance(response, dict) else None}
