"""Invoice repository"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Agent
from ...models_billing import Invoice

UNPAID_STATUSES = ("pending", "overdue")


class InvoiceRepository:
    @staticmethod
    def get_invoice(db: Session, invoice_id: str) -> Optional[Invoice]:
        return db.query(Invoice).filter(Invoice.id == invoice_id).first()

    @staticmethod
    def get_invoices(db: Session, invoice_ids: list[str]) -> list[Invoice]:
        return db.query(Invoice).filter(Invoice.id.in_(invoice_ids)).all()

    @staticmethod
    def get_unpaid(db: Session, agent_id: str) -> list[Invoice]:
        return (
            db.query(Invoice)
            .filter(Invoice.agent_id == agent_id, Invoice.status.in_(UNPAID_STATUSES))
            .order_by(Invoice.due_date.asc())
            .all()
        )

    @staticmethod
    def get_history(
        db: Session,
        agent_id: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> tuple[list[Invoice], int]:
        query = db.query(Invoice).filter(Invoice.agent_id == agent_id)
        if status:
            query = query.filter(Invoice.status == status)
        if date_from:
            query = query.filter(Invoice.created_at >= date_from)
        if date_to:
            query = query.filter(Invoice.created_at <= date_to)
        total = query.count()
        invoices = query.order_by(Invoice.created_at.desc()).offset(offset).limit(limit).all()
        return invoices, total

    @staticmethod
    def get_paid_since(db: Session, agent_id: str, since: datetime) -> list[Invoice]:
        return (
            db.query(Invoice)
            .filter(Invoice.agent_id == agent_id, Invoice.status == "paid", Invoice.paid_at >= since)
            .all()
        )

    @staticmethod
    def get_overdue_candidates(db: Session, now: datetime) -> list[Invoice]:
        return db.query(Invoice).filter(Invoice.status == "pending", Invoice.due_date < now).all()

    @staticmethod
    def get_agent(db: Session, agent_id: str) -> Optional[Agent]:
        return db.query(Agent).filter(Agent.id == agent_id).first()
