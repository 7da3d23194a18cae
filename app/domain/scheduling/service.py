"""Assignment service - ranks photographers for a shoot and auto-assigns the best match"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Listing, PhotographerAssignment, Staff
from ...services.notification_service import send_notification
from .repository import SchedulingRepository
from .schemas import AutoAssignRequest, JobRequirements
from .skill_match import (
    DEFAULT_MAX_DAILY_JOBS,
    MIN_AUTO_ASSIGN_SCORE,
    MIN_SKILL_MATCH,
    calculate_skill_match,
    distance_miles,
    get_required_skills,
    overall_score,
)

logger = logging.getLogger(__name__)


class AssignmentService:
    """Service layer for photographer assignment"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SchedulingRepository()

    def _territory_staff(self, zip_code: Optional[str]) -> dict[str, list[str]]:
        territory_ids = self.repo.get_territory_ids_for_zip(self.db, zip_code) if zip_code else []
        staff_territories: dict[str, list[str]] = {}
        for link in self.repo.get_staff_territories(self.db, territory_ids):
            staff_territories.setdefault(link.staff_id, []).append(link.territory_id)
        return staff_territories

    def find_best_match(self, requirements: JobRequirements) -> list[dict]:
        """Score every active shooter against the job, best first"""
        required = get_required_skills(requirements.services, requirements.propertyType)
        staff_territories = self._territory_staff(requirements.zipCode)

        candidates = []
        for photographer in self.repo.get_active_shooters(self.db):
            match = calculate_skill_match(
                photographer.skills or [], photographer.certifications or [], required
            )
            # Missing critical skills
            if match["score"] < MIN_SKILL_MATCH and required:
                continue

            territory_match = photographer.id in staff_territories if requirements.zipCode else True

            distance = None
            if (
                requirements.lat is not None
                and requirements.lng is not None
                and photographer.home_lat is not None
                and photographer.home_lng is not None
            ):
                distance = distance_miles(
                    photographer.home_lat, photographer.home_lng, requirements.lat, requirements.lng
                )

            candidates.append(
                {
                    "staff": photographer,
                    "score": overall_score(match["score"], territory_match, distance),
                    "skill_match": match["score"],
                    "territory_match": territory_match,
                    "distance": distance,
                    "territories": staff_territories.get(photographer.id, []),
                    "max_daily_jobs": photographer.max_daily_jobs or DEFAULT_MAX_DAILY_JOBS,
                    "required_skills": required,
                    "matched_skills": match["matched"],
                    "missing_skills": match["missing"],
                }
            )

        candidates.sort(key=lambda c: c["score"], reverse=True)
        logger.info(f"📋 {len(candidates)} qualified photographers for skills {required}")
        return candidates

    async def auto_assign(self, request: AutoAssignRequest) -> PhotographerAssignment:
        """Assign the top candidate, or raise when nobody is good enough"""
        listing = self.db.query(Listing).filter(Listing.id == request.listingId).first()
        if not listing:
            raise HTTPException(status_code=404, detail="Listing not found")

        candidates = self.find_best_match(request)
        if not candidates:
            raise HTTPException(status_code=409, detail="No qualified photographers available for this job")

        best = candidates[0]
        staff: Staff = best["staff"]
        if best["score"] < MIN_AUTO_ASSIGN_SCORE:
            raise HTTPException(
                status_code=409,
                detail=(
                    f"Best match ({staff.name}) has low score ({best['score']}). "
                    "Manual assignment recommended."
                ),
            )

        try:
            assignment = self.repo.create_assignment(
                self.db,
                listing_id=listing.id,
                photographer_id=staff.id,
                scheduled_date=request.scheduledDate,
                status="assigned",
                notes=f"Auto-assigned. Score: {best['score']}, Skills: {best['skill_match']}%",
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Error creating assignment for listing {listing.id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create assignment") from e

        logger.info(f"✅ Auto-assigned {staff.name} to listing {listing.id} (score {best['score']})")

        if request.notifyPhotographer:
            await send_notification(
                self.db,
                "photographer_assigned",
                {"email": staff.email, "phone": staff.phone, "name": staff.name, "type": "staff"},
                channel="both" if staff.phone else "email",
                data={
                    "photographer_name": staff.name,
                    "listing_address": listing.address,
                    "scheduled_date": request.scheduledDate.strftime("%A, %B %d, %Y"),
                    "scheduled_time": (
                        listing.scheduled_at.strftime("%I:%M %p") if listing.scheduled_at else "TBD"
                    ),
                    "package_name": ", ".join(request.services),
                },
                listing_id=listing.id,
            )

        return assignment
