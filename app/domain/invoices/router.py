"""Invoices router"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...auth import require_staff
from ...database import get_db
from .schemas import (
    BulkPaymentRequest,
    BulkTotal,
    BulkTotalRequest,
    InvoiceHistoryResponse,
    InvoiceResponse,
    InvoiceStatus,
    InvoiceSummary,
    MarkPaidRequest,
)
from .service import BULK_ERROR_STATUS, InvoiceService, invoice_to_response

router = APIRouter(prefix="/invoices", tags=["Invoices"], dependencies=[Depends(require_staff)])


def get_invoice_service(db: Session = Depends(get_db)) -> InvoiceService:
    return InvoiceService(db)


@router.get("/agents/{agent_id}/unpaid", response_model=list[InvoiceResponse])
async def list_unpaid(agent_id: str, service: InvoiceService = Depends(get_invoice_service)):
    return [invoice_to_response(i) for i in service.get_unpaid(agent_id)]


@router.get("/agents/{agent_id}/history", response_model=InvoiceHistoryResponse)
async def invoice_history(
    agent_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status: Optional[InvoiceStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    service: InvoiceService = Depends(get_invoice_service),
):
    return service.get_history(agent_id, limit, offset, status, date_from, date_to)


@router.get("/agents/{agent_id}/summary", response_model=InvoiceSummary)
async def invoice_summary(agent_id: str, service: InvoiceService = Depends(get_invoice_service)):
    return service.get_summary(agent_id)


@router.post("/bulk/total", response_model=BulkTotal)
async def bulk_total(data: BulkTotalRequest, service: InvoiceService = Depends(get_invoice_service)):
    return service.get_bulk_total(
        data.agent_id, data.invoice_ids, data.include_processing_fee, data.include_late_fees
    )


@router.post("/bulk/pay")
async def bulk_pay(data: BulkPaymentRequest, service: InvoiceService = Depends(get_invoice_service)):
    result = await service.create_bulk_payment_intent(data.agent_id, data.invoice_ids, data.include_processing_fee)
    if not result["success"]:
        raise HTTPException(status_code=BULK_ERROR_STATUS.get(result["error"], 400), detail=result["error"])
    return result


@router.post("/mark-paid")
async def mark_paid(data: MarkPaidRequest, service: InvoiceService = Depends(get_invoice_service)):
    return service.mark_paid(data.invoice_ids, data.payment_intent_id, data.payment_method)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: str, service: InvoiceService = Depends(get_invoice_service)):
    return invoice_to_response(service.get_invoice(invoice_id))


@router.get("/{invoice_id}/pdf")
async def invoice_pdf(
    invoice_id: str,
    include_brokerage: bool = True,
    include_custom_notes: bool = True,
    service: InvoiceService = Depends(get_invoice_service),
):
    invoice, pdf = service.generate_pdf(invoice_id, include_brokerage, include_custom_notes)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{invoice.invoice_number}.pdf"'},
    )


@router.post("/{invoice_id}/send")
async def send_invoice(invoice_id: str, service: InvoiceService = Depends(get_invoice_service)):
    return await service.send_invoice(invoice_id)
