"""Waitlist service - queue clients for fully booked dates and offer freed slots in order"""

import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import WaitlistEntry
from ...services.notification_service import send_notification
from .repository import SchedulingRepository
from .schemas import WaitlistJoinRequest

logger = logging.getLogger(__name__)

MAX_NOTIFICATION_ATTEMPTS = 3


class WaitlistService:
    """Service layer for the appointment waitlist"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def join(self, data: WaitlistJoinRequest, today: Optional[date] = None) -> WaitlistEntry:
        today = today or date.today()
        if data.requestedDate <= today:
            raise HTTPException(status_code=400, detail="Requested date must be in the future.")

        if data.checkDuplicates and self.repo.find_waitlist_duplicates(
            self.db, data.clientEmail, data.territoryId, data.requestedDate
        ):
            raise HTTPException(status_code=409, detail="You are already on the waitlist for this date.")

        position = self.repo.count_waiting(self.db, data.territoryId, data.requestedDate) + 1

        try:
            entry = self.repo.create_waitlist_entry(
                self.db,
                client_email=data.clientEmail,
                client_name=data.clientName,
                territory_id=data.territoryId,
                requested_date=data.requestedDate,
                listing_id=data.listingId,
                status="waiting",
                position=position,
                flexible_dates=data.flexibleDates,
                date_range_start=data.requestedDate if data.flexibleDates else None,
                date_range_end=data.dateRangeEnd if data.flexibleDates else None,
                notification_count=0,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to add {data.clientEmail} to waitlist: {e}")
            raise HTTPException(status_code=500, detail="Failed to join waitlist.") from e

        logger.info(f"✅ {data.clientEmail} joined waitlist for {data.requestedDate} at position {position}")
        return entry

    def leave(self, entry_id: str, client_email: str) -> dict:
        entry = self.repo.get_waitlist_entry(self.db, entry_id, client_email)
        if not entry:
            raise HTTPException(status_code=404, detail="Waitlist entry not found.")

        territory_id, requested_date = entry.territory_id, entry.requested_date
        self.repo.delete_waitlist_entry(self.db, entry)
        self.repo.reorder_positions(self.db, territory_id, requested_date)
        return {"success": True}

    def get_position(self, entry_id: str) -> Optional[int]:
        entry = self.repo.get_waitlist_entry(self.db, entry_id)
        return entry.position if entry else None

    def get_for_date(self, territory_id: str, requested_date: date) -> list[WaitlistEntry]:
        return self.repo.get_waitlist_for_date(self.db, territory_id, requested_date)

    def get_client_entries(self, client_email: str) -> list[WaitlistEntry]:
        return self.repo.get_client_waiting_entries(self.db, client_email)

    async def notify_slot_available(self, territory_id: str, slot_date: date) -> dict:
        """Offer the slot to the first waiting client"""
        entry = self.repo.first_waiting(self.db, territory_id, slot_date)
        if not entry:
            return {"notified": False}

        if entry.notification_count >= MAX_NOTIFICATION_ATTEMPTS:
            logger.info(f"⚠️ Waitlist entry {entry.id} reached max notification attempts")
            return {"notified": False}

        await send_notification(
            self.db,
            "waitlist_slot_available",
            {"email": entry.client_email, "name": entry.client_name, "type": "agent"},
            channel="email",
            data={
                "client_name": entry.client_name,
                "requested_date": slot_date.isoformat(),
                "waitlist_id": entry.id,
            },
            listing_id=entry.listing_id,
        )

        self.repo.mark_notified(self.db, entry)
        return {"notified": True, "client_email": entry.client_email}

    async def process_notifications(self, today: Optional[date] = None) -> dict:
        """Walk every open territory/day and notify the head of each queue"""
        slots = self.repo.get_open_availability(self.db, today or date.today())

        notified = 0
        for slot in slots:
            result = await self.notify_slot_available(slot.territory_id, slot.date)
            if result["notified"]:
                notified += 1

        if slots:
            logger.info(f"📧 Waitlist run: {len(slots)} openings, {notified} clients notified")
        return {"processed": len(slots), "notified": notified}

    def expire_old(self, today: Optional[date] = None) -> int:
        return self.repo.expire_before(self.db, today or date.today())

    def book_from_waitlist(self, entry_id: str, client_email: str) -> dict:
        entry = self.repo.get_waitlist_entry(self.db, entry_id, client_email)
        if not entry:
            raise HTTPException(status_code=404, detail="Waitlist entry not found.")

        if entry.status != "notified":
            raise HTTPException(
                status_code=409, detail="This waitlist entry has not been notified of availability."
            )

        self.repo.update(self.db, entry, status="booked")
        return {"success": True, "booking_id": entry.id}
