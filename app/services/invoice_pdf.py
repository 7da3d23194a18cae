"""
Invoice PDF Generator
Renders an agent invoice (line items, late fee, brokerage block, notes) to PDF
"""

import io
import logging
from datetime import datetime, timezone
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..models import Agent
from ..models_billing import Invoice

logger = logging.getLogger(__name__)

COMPANY = {
    "name": "Aerial Shots Media",
    "address": "123 Photography Lane, Orlando, FL 32801",
    "phone": "(407) 555-0123",
    "email": "billing@aerialshotsmedia.com",
}
PAYMENT_INSTRUCTIONS = "Payment is due within 30 days. Please include the invoice number with your payment."
FOOTER_TEXT = "Thank you for your business!"


def _money(amount: float) -> str:
    return f"${amount:,.2f}"


def _date(value: Optional[datetime]) -> str:
    return value.strftime("%B %d, %Y") if value else "N/A"


class InvoicePDFGenerator:
    """Generate branded invoice PDFs"""

    def __init__(
        self,
        invoice: Invoice,
        agent: Optional[Agent] = None,
        late_fee: float = 0.0,
        include_brokerage: bool = True,
        include_custom_notes: bool = True,
    ):
        self.invoice = invoice
        self.agent = agent
        self.late_fee = late_fee
        self.include_brokerage = include_brokerage
        self.include_custom_notes = include_custom_notes

        self.page_width, self.page_height = letter
        self.margin = 0.75 * inch
        self.primary_color = colors.HexColor("#1a1a2e")
        self.dark_gray = colors.HexColor("#333333")
        self.light_gray = colors.HexColor("#f5f5f5")

    def generate(self) -> bytes:
        logger.info(f"📄 Generating invoice PDF {self.invoice.invoice_number}")
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Invoice {self.invoice.invoice_number}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "InvoiceTitle", parent=styles["Heading1"], fontSize=22, textColor=self.primary_color, spaceAfter=6
        )
        body_style = ParagraphStyle(
            "InvoiceBody", parent=styles["Normal"], fontSize=10, textColor=self.dark_gray, spaceAfter=4
        )
        small_style = ParagraphStyle("InvoiceSmall", parent=body_style, fontSize=8, textColor=colors.grey)

        story = [
            Paragraph(COMPANY["name"], title_style),
            Paragraph(f"{COMPANY['address']}<br/>{COMPANY['phone']} | {COMPANY['email']}", small_style),
            Spacer(1, 0.3 * inch),
        ]

        info_data = [
            ["Invoice #:", self.invoice.invoice_number],
            ["Date:", _date(self.invoice.created_at or datetime.now(timezone.utc))],
            ["Due:", _date(self.invoice.due_date)],
            ["Status:", (self.invoice.status or "pending").upper()],
        ]
        if self.agent:
            info_data.insert(0, ["Bill To:", f"{self.agent.name} ({self.agent.email})"])
        if self.invoice.listing_address:
            info_data.append(["Property:", self.invoice.listing_address])

        info_table = Table(info_data, colWidths=[1.3 * inch, 5.2 * inch])
        info_table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                    ("FONT", (1, 0), (1, -1), "Helvetica", 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.extend([info_table, Spacer(1, 0.3 * inch)])

        rows = [["Description", "Qty", "Unit Price", "Amount"]]
        for item in self.invoice.line_items or []:
            quantity = item.get("quantity") or 1
            amount = item.get("amount") or 0
            unit_price = item.get("unit_price") if item.get("unit_price") is not None else amount / quantity
            rows.append([item.get("description", ""), str(quantity), _money(unit_price), _money(amount)])
        if len(rows) == 1:
            rows.append(["Media services", "1", _money(self.invoice.amount), _money(self.invoice.amount)])

        rows.append(["", "", "Subtotal", _money(self.invoice.amount)])
        if self.late_fee:
            rows.append(["", "", "Late fee", _money(self.late_fee)])
        rows.append(["", "", "Total due", _money(self.invoice.amount + self.late_fee)])

        items_table = Table(rows, colWidths=[3.4 * inch, 0.6 * inch, 1.2 * inch, 1.3 * inch], repeatRows=1)
        totals_start = len(rows) - (3 if self.late_fee else 2)
        items_table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), self.primary_color),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 10),
                    ("FONT", (0, 1), (-1, -1), "Helvetica", 9),
                    ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                    ("ROWBACKGROUNDS", (0, 1), (-1, totals_start - 1), [colors.white, self.light_gray]),
                    ("LINEABOVE", (2, totals_start), (-1, totals_start), 0.5, colors.grey),
                    ("FONT", (2, -1), (-1, -1), "Helvetica-Bold", 10),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.extend([items_table, Spacer(1, 0.3 * inch)])

        brokerage = self.invoice.brokerage_info or {}
        if self.include_brokerage and brokerage.get("name"):
            lines = [f"<b>{escape(brokerage['name'])}</b>"]
            lines.extend(escape(brokerage[k]) for k in ("address", "license") if brokerage.get(k))
            story.extend([Paragraph("<br/>".join(lines), body_style), Spacer(1, 0.2 * inch)])

        if self.include_custom_notes and self.invoice.custom_notes:
            story.append(Paragraph(f"<b>Notes:</b> {escape(self.invoice.custom_notes)}", body_style))

        story.extend(
            [
                Spacer(1, 0.3 * inch),
                Paragraph(PAYMENT_INSTRUCTIONS, small_style),
                Paragraph(f"<i>{FOOTER_TEXT}</i>", small_style),
            ]
        )

        doc.build(story, onFirstPage=self._add_page_number, onLaterPages=self._add_page_number)
        pdf_bytes = buffer.getvalue()
        buffer.close()
        logger.info(f"✅ Generated invoice PDF ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def _add_page_number(self, canvas_obj, doc):
        canvas_obj.setFont("Helvetica", 9)
        canvas_obj.setFillColor(colors.grey)
        canvas_obj.drawRightString(
            self.page_width - self.margin, self.margin / 2, f"Page {canvas_obj.getPageNumber()}"
        )
