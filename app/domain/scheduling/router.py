"""Scheduling router - FastAPI endpoints for assignment, Go Anytime and waitlist"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import require_staff
from ...database import get_db
from .anytime_service import AnytimeService, is_anytime_eligible
from .schemas import (
    AnytimeBookingCreate,
    AnytimeClaimRequest,
    AnytimeEligibilityRequest,
    AnytimeEligibilityResponse,
    AnytimeReleaseRequest,
    AnytimeScheduleResponse,
    AssignmentResponse,
    AutoAssignRequest,
    CandidateResponse,
    JobRequirements,
    WaitlistEntryResponse,
    WaitlistJoinRequest,
    WaitlistLeaveRequest,
)
from .service import AssignmentService
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


def get_assignment_service(db: Session = Depends(get_db)) -> AssignmentService:
    return AssignmentService(db)


def get_anytime_service(db: Session = Depends(get_db)) -> AnytimeService:
    return AnytimeService(db)


def get_waitlist_service(db: Session = Depends(get_db)) -> WaitlistService:
    return WaitlistService(db)


# ============================================================================
# ASSIGNMENT
# ============================================================================


@router.post("/assignments/candidates", response_model=list[CandidateResponse])
async def find_candidates(
    data: JobRequirements,
    _staff: str = Depends(require_staff),
    service: AssignmentService = Depends(get_assignment_service),
):
    """Rank photographers for a job without assigning"""
    return [
        CandidateResponse(
            staffId=c["staff"].id,
            name=c["staff"].name,
            score=c["score"],
            skillMatch=c["skill_match"],
            territoryMatch=c["territory_match"],
            distance=round(c["distance"], 1) if c["distance"] is not None else None,
            requiredSkills=c["required_skills"],
            matchedSkills=c["matched_skills"],
            missingSkills=c["missing_skills"],
        )
        for c in service.find_best_match(data)
    ]


@router.post("/assignments/auto", response_model=AssignmentResponse)
async def auto_assign(
    data: AutoAssignRequest,
    _staff: str = Depends(require_staff),
    service: AssignmentService = Depends(get_assignment_service),
):
    return await service.auto_assign(data)


# ============================================================================
# GO ANYTIME
# ============================================================================


@router.post("/anytime/eligibility", response_model=AnytimeEligibilityResponse)
async def check_anytime_eligibility(data: AnytimeEligibilityRequest):
    return is_anytime_eligible(data)


@router.post("/anytime", response_model=AnytimeScheduleResponse, status_code=201)
async def create_anytime_booking(
    data: AnytimeBookingCreate,
    _staff: str = Depends(require_staff),
    service: AnytimeService = Depends(get_anytime_service),
):
    return service.create_booking(data)


@router.get("/anytime", response_model=list[AnytimeScheduleResponse])
async def list_anytime_schedules(
    territory_id: str = Query(...),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    _staff: str = Depends(require_staff),
    service: AnytimeService = Depends(get_anytime_service),
):
    return service.get_schedules(territory_id, date_from, date_to)


@router.get("/anytime/summary")
async def anytime_summary(
    territory_id: str = Query(...),
    _staff: str = Depends(require_staff),
    service: AnytimeService = Depends(get_anytime_service),
):
    count = service.get_unclaimed_count(territory_id)
    return {"territory_id": territory_id, "has_available": count > 0, "unclaimed": count}


@router.post("/anytime/{schedule_id}/claim")
async def claim_anytime_slot(
    schedule_id: str,
    data: AnytimeClaimRequest,
    _staff: str = Depends(require_staff),
    service: AnytimeService = Depends(get_anytime_service),
):
    return service.claim_slot(schedule_id, data.photographerId, data.claimDate)


@router.post("/anytime/{schedule_id}/release")
async def release_anytime_slot(
    schedule_id: str,
    data: AnytimeReleaseRequest,
    _staff: str = Depends(require_staff),
    service: AnytimeService = Depends(get_anytime_service),
):
    return service.release_slot(schedule_id, data.photographerId)


@router.get("/anytime/queue/{photographer_id}", response_model=list[AnytimeScheduleResponse])
async def photographer_anytime_queue(
    photographer_id: str,
    _staff: str = Depends(require_staff),
    service: AnytimeService = Depends(get_anytime_service),
):
    return service.get_photographer_queue(photographer_id)


# ============================================================================
# WAITLIST (public: clients join and leave by email)
# ============================================================================


@router.post("/waitlist", response_model=WaitlistEntryResponse, status_code=201)
async def join_waitlist(data: WaitlistJoinRequest, service: WaitlistService = Depends(get_waitlist_service)):
    return service.join(data)


@router.delete("/waitlist/{entry_id}")
async def leave_waitlist(
    entry_id: str, data: WaitlistLeaveRequest, service: WaitlistService = Depends(get_waitlist_service)
):
    return service.leave(entry_id, data.clientEmail.strip().lower())


@router.get("/waitlist/{entry_id}/position")
async def waitlist_position(entry_id: str, service: WaitlistService = Depends(get_waitlist_service)):
    position = service.get_position(entry_id)
    if position is None:
        raise HTTPException(status_code=404, detail="Waitlist entry not found.")
    return {"id": entry_id, "position": position}


@router.get("/waitlist", response_model=list[WaitlistEntryResponse])
async def client_waitlist_entries(
    client_email: str = Query(...), service: WaitlistService = Depends(get_waitlist_service)
):
    return service.get_client_entries(client_email.strip().lower())


@router.get("/waitlist/date/{territory_id}/{requested_date}", response_model=list[WaitlistEntryResponse])
async def waitlist_for_date(
    territory_id: str,
    requested_date: date,
    _staff: str = Depends(require_staff),
    service: WaitlistService = Depends(get_waitlist_service),
):
    return service.get_for_date(territory_id, requested_date)


@router.post("/waitlist/{entry_id}/book")
async def book_from_waitlist(
    entry_id: str, data: WaitlistLeaveRequest, service: WaitlistService = Depends(get_waitlist_service)
):
    return service.book_from_waitlist(entry_id, data.clientEmail.strip().lower())


@router.post("/waitlist/process")
async def process_waitlist(
    _staff: str = Depends(require_staff), service: WaitlistService = Depends(get_waitlist_service)
):
    """Notify waiting clients about open slots, then expire past entries"""
    result = await service.process_notifications()
    result["expired"] = service.expire_old()
    return result
