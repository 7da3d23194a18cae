"""Invoice domain schemas"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

InvoiceStatus = Literal["draft", "pending", "paid", "overdue", "cancelled", "refunded"]


class LineItem(BaseModel):
    description: str
    quantity: Optional[int] = None
    unit_price: Optional[float] = None
    amount: float


class InvoiceResponse(BaseModel):
    id: str
    invoice_number: str
    agent_id: str
    listing_id: Optional[str] = None
    listing_address: Optional[str] = None
    amount: float
    status: str
    line_items: list[LineItem] = []
    due_date: datetime
    days_overdue: int = 0
    paid_at: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    payment_method: Optional[str] = None
    custom_notes: Optional[str] = None
    brokerage_info: Optional[dict] = None
    created_at: Optional[datetime] = None


class InvoiceHistoryResponse(BaseModel):
    invoices: list[InvoiceResponse]
    total_count: int


class BulkTotalRequest(BaseModel):
    agent_id: str
    invoice_ids: list[str] = Field(..., min_length=1)
    include_processing_fee: bool = False
    include_late_fees: bool = True


class BulkTotal(BaseModel):
    invoice_count: int
    subtotal: float
    processing_fee: Optional[float] = None
    late_fees: Optional[float] = None
    total: float


class BulkPaymentRequest(BaseModel):
    agent_id: str
    invoice_ids: list[str] = Field(..., min_length=1)
    include_processing_fee: bool = False


class MarkPaidRequest(BaseModel):
    invoice_ids: list[str] = Field(..., min_length=1)
    payment_intent_id: str
    payment_method: str = "card"


class InvoiceSummary(BaseModel):
    unpaid_count: int
    unpaid_total: float
    overdue_count: int
    overdue_total: float
    paid_this_month: float
    paid_this_year: float
