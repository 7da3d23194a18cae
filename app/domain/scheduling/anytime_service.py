"""Go Anytime service - vacant listings photographers can shoot on any day in a window"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import SellerSchedule
from .repository import SchedulingRepository
from .schemas import AnytimeBookingCreate, AnytimeEligibilityRequest

logger = logging.getLogger(__name__)

MIN_DATE_RANGE_DAYS = 2
MAX_DATE_RANGE_DAYS = 14


def is_anytime_eligible(check: AnytimeEligibilityRequest) -> dict:
    if not check.isVacant:
        return {
            "eligible": False,
            "reason": "Property must be vacant and unoccupied for Go Anytime scheduling.",
        }
    if not check.hasLockbox:
        return {
            "eligible": False,
            "reason": "Property must have lockbox access for Go Anytime scheduling.",
        }
    if not check.accessInstructions or not check.accessInstructions.strip():
        return {
            "eligible": False,
            "reason": "Access instructions are required for Go Anytime scheduling.",
        }
    return {"eligible": True, "reason": None}


class AnytimeService:
    """Service layer for Go Anytime scheduling"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def create_booking(self, data: AnytimeBookingCreate, today: Optional[date] = None) -> SellerSchedule:
        today = today or date.today()

        if data.startDate < today:
            raise HTTPException(status_code=400, detail="Start date must be in the future.")

        # Both ends inclusive
        range_days = (data.endDate - data.startDate).days + 1
        if range_days < MIN_DATE_RANGE_DAYS:
            raise HTTPException(
                status_code=400, detail=f"Date range must be at least {MIN_DATE_RANGE_DAYS} days."
            )
        if range_days > MAX_DATE_RANGE_DAYS:
            raise HTTPException(
                status_code=400, detail=f"Date range cannot exceed {MAX_DATE_RANGE_DAYS} days."
            )

        schedule = self.repo.create_schedule(
            self.db,
            listing_id=data.listingId,
            territory_id=data.territoryId,
            is_anytime=True,
            anytime_start_date=data.startDate,
            anytime_end_date=data.endDate,
            access_instructions=data.accessInstructions,
            status="pending_claim",
            priority=data.priority,
        )
        logger.info(f"✅ Go Anytime window {data.startDate} - {data.endDate} created for listing {data.listingId}")
        return schedule

    def get_schedules(
        self,
        territory_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        today: Optional[date] = None,
    ) -> list[SellerSchedule]:
        """Unclaimed windows in a territory that have not ended"""
        return self.repo.get_open_schedules(self.db, territory_id, today or date.today(), date_from, date_to)

    def claim_slot(self, schedule_id: str, photographer_id: str, claim_date: date) -> dict:
        schedule = self.repo.get_schedule(self.db, schedule_id)
        if not schedule:
            raise HTTPException(status_code=404, detail="Schedule not found.")

        if schedule.claimed_by:
            raise HTTPException(
                status_code=409, detail="This slot has already been claimed by another photographer."
            )

        if claim_date < schedule.anytime_start_date or claim_date > schedule.anytime_end_date:
            raise HTTPException(
                status_code=400,
                detail=(
                    "Selected date is outside the available range "
                    f"({schedule.anytime_start_date.isoformat()} - {schedule.anytime_end_date.isoformat()})."
                ),
            )

        self.repo.update(
            self.db,
            schedule,
            claimed_by=photographer_id,
            claimed_at=datetime.now(timezone.utc),
            scheduled_date=claim_date,
            status="claimed",
        )
        logger.info(f"📅 Schedule {schedule_id} claimed by {photographer_id} for {claim_date}")
        return {"success": True, "claimed_date": claim_date.isoformat()}

    def release_slot(self, schedule_id: str, photographer_id: str) -> dict:
        schedule = self.repo.get_schedule(self.db, schedule_id)
        if not schedule:
            raise HTTPException(status_code=404, detail="Schedule not found.")

        if schedule.claimed_by != photographer_id:
            raise HTTPException(status_code=403, detail="You are not authorized to release this claim.")

        self.repo.update(
            self.db,
            schedule,
            claimed_by=None,
            claimed_at=None,
            scheduled_date=None,
            status="pending_claim",
        )
        logger.info(f"🔄 Schedule {schedule_id} released by {photographer_id}")
        return {"success": True}

    def get_photographer_queue(self, photographer_id: str) -> list[SellerSchedule]:
        return self.repo.get_claimed_schedules(self.db, photographer_id)

    def get_unclaimed_count(self, territory_id: str) -> int:
        return len(self.get_schedules(territory_id))
