"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_email


class JobRequirements(BaseModel):
    """What a shoot needs, used to rank photographers"""

    services: list[str]
    propertyType: Optional[str] = None
    zipCode: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class AutoAssignRequest(JobRequirements):
    listingId: str
    scheduledDate: date
    notifyPhotographer: bool = True


class CandidateResponse(BaseModel):
    staffId: str
    name: str
    score: int
    skillMatch: int
    territoryMatch: bool
    distance: Optional[float] = None
    requiredSkills: list[str]
    matchedSkills: list[str]
    missingSkills: list[str]


class AssignmentResponse(BaseModel):
    id: str
    listing_id: str
    photographer_id: str
    scheduled_date: Optional[date] = None
    status: str
    notes: Optional[str] = None

    class Config:
        from_attributes = True


# ============================================================================
# Go Anytime
# ============================================================================


class AnytimeEligibilityRequest(BaseModel):
    isVacant: bool
    hasLockbox: bool
    accessInstructions: Optional[str] = None


class AnytimeEligibilityResponse(BaseModel):
    eligible: bool
    reason: Optional[str] = None


class AnytimeBookingCreate(BaseModel):
    listingId: str
    territoryId: Optional[str] = None
    startDate: date
    endDate: date
    accessInstructions: str
    priority: Literal["normal", "high", "urgent"] = "normal"


class AnytimeClaimRequest(BaseModel):
    photographerId: str
    claimDate: date


class AnytimeReleaseRequest(BaseModel):
    photographerId: str


class AnytimeScheduleResponse(BaseModel):
    id: str
    listing_id: str
    territory_id: Optional[str] = None
    anytime_start_date: date
    anytime_end_date: date
    access_instructions: Optional[str] = None
    status: str
    priority: str
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    scheduled_date: Optional[date] = None

    class Config:
        from_attributes = True


# ============================================================================
# Waitlist
# ============================================================================


class WaitlistJoinRequest(BaseModel):
    clientEmail: str
    clientName: str
    territoryId: str
    requestedDate: date
    listingId: Optional[str] = None
    flexibleDates: bool = False
    dateRangeEnd: Optional[date] = None
    checkDuplicates: bool = True

    @field_validator("clientEmail")
    @classmethod
    def validate_client_email(cls, v):
        return validate_email(v)


class WaitlistLeaveRequest(BaseModel):
    clientEmail: str


class WaitlistEntryResponse(BaseModel):
    id: str
    client_email: str
    client_name: str
    territory_id: str
    requested_date: date
    listing_id: Optional[str] = None
    status: str
    position: int
    flexible_dates: bool
    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    notification_count: int
    last_notified_at: Optional[datetime] = None

    class Config:
        from_attributes = True
