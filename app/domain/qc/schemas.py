"""QC domain schemas"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...utils.sanitization import validate_and_sanitize_input

MIN_REJECTION_NOTES = 10
MAX_NOTES_LENGTH = 2000

QueueSort = Literal["priority", "oldest", "newest", "rush"]
ReviewDecision = Literal["approved", "rejected"]


class AssetStats(BaseModel):
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    needsEdit: int = 0


class QueueItem(BaseModel):
    listingId: str
    address: str
    agentName: Optional[str] = None
    status: str
    isRush: bool
    ageHours: float
    priorityScore: float
    assetStats: AssetStats


class QueueResponse(BaseModel):
    items: list[QueueItem]
    readyCount: int
    inReviewCount: int
    rushCount: int


class ReviewRequest(BaseModel):
    assetIds: list[str] = Field(..., min_length=1)
    decision: ReviewDecision
    notes: Optional[str] = None
    rejectionReason: Optional[str] = None
    sessionId: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def clean_notes(cls, v):
        return validate_and_sanitize_input(v, MAX_NOTES_LENGTH) if v else v

    @model_validator(mode="after")
    def require_rejection_notes(self):
        if self.decision == "rejected" and (not self.notes or len(self.notes) < MIN_REJECTION_NOTES):
            raise ValueError(f"Rejections need notes of at least {MIN_REJECTION_NOTES} characters")
        return self


class SessionStart(BaseModel):
    staffId: str
    listingId: str


class SessionResponse(BaseModel):
    id: str
    staffId: str
    listingId: str
    photosReviewed: int
    photosApproved: int
    photosRejected: int
    startedAt: Optional[datetime] = None
    endedAt: Optional[datetime] = None
    durationSeconds: Optional[int] = None


class RevisionRequest(BaseModel):
    notes: str = Field(..., min_length=MIN_REJECTION_NOTES)
    assetIds: Optional[list[str]] = Field(None, min_length=1)
    requestedBy: Optional[str] = None


class FinalApprovalRequest(BaseModel):
    approvedBy: Optional[str] = None
    qualityScore: Optional[float] = Field(None, ge=0, le=5)
    notify: bool = True


UploadMediaType = Literal[
    "photo", "drone", "twilight", "virtual_staging", "video", "floor_plan", "3d_tour", "matterport"
]


class UploadRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    contentType: str
    sizeBytes: int = Field(..., gt=0)
    mediaType: UploadMediaType = "photo"
    category: Optional[str] = Field(None, max_length=50)
