"""Integration domain schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl, field_validator

from ...services.content_generator import CAROUSEL_TYPES
from ...services.cubicasa_service import FLOOR_PLAN_TYPES
from ...services.webhook_dispatch import EVENT_TYPES

# ============================================================================
# CUBICASA / FOUNDDR
# ============================================================================


class FloorPlanOrderRequest(BaseModel):
    floorPlanTypes: list[str] = ["2d_basic"]
    floorCount: int = Field(1, ge=1, le=10)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("floorPlanTypes")
    @classmethod
    def validate_types(cls, v):
        unknown = [t for t in v if t not in FLOOR_PLAN_TYPES]
        if unknown:
            raise ValueError(f"Unknown floor plan types: {', '.join(unknown)}")
        return v


class RedrawRequest(BaseModel):
    notes: str = Field(..., min_length=1, max_length=2000)
    areasToFix: list[str] = []
    priority: str = "normal"


class HDRSubmitRequest(BaseModel):
    inputKeys: list[str] = Field(..., min_length=1, max_length=9)
    assetIds: list[str] = []
    preset: Optional[str] = None
    options: Optional[dict] = None


# ============================================================================
# AIRSPACE
# ============================================================================


class AirspaceCheckRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None
    listingId: Optional[str] = None


# ============================================================================
# MLS
# ============================================================================


class MLSCredentialRequest(BaseModel):
    agentId: str
    provider: str
    mlsAgentId: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    officeId: Optional[str] = None


class MLSUploadRequest(BaseModel):
    agentId: str
    provider: str
    mlsListingId: str
    replaceExisting: bool = False


# ============================================================================
# STRIPE CONNECT
# ============================================================================


class ConnectOnboardRequest(BaseModel):
    businessType: str = "individual"


class TransferRequest(BaseModel):
    staffId: str
    orderId: str
    amountCents: int = Field(..., gt=0)
    description: Optional[str] = None


# ============================================================================
# CONTENT
# ============================================================================


class ContentRequest(BaseModel):
    carouselTypes: list[str] = Field(..., min_length=1)
    neighborhood: Optional[dict] = None
    questions: Optional[list[dict]] = None
    answers: Optional[dict] = None

    @field_validator("carouselTypes")
    @classmethod
    def validate_types(cls, v):
        unknown = [t for t in v if t not in CAROUSEL_TYPES]
        if unknown:
            raise ValueError(f"Unknown carousel types: {', '.join(unknown)}")
        return v


class BannerbearCarouselRequest(BaseModel):
    templateSet: str = "instagram"
    photoUrls: list[str] = Field(..., min_length=1, max_length=10)


# ============================================================================
# SLACK
# ============================================================================


class SlackMessageRequest(BaseModel):
    channel: Optional[str] = None
    text: str = Field(..., min_length=1, max_length=3000)


# ============================================================================
# OUTBOUND WEBHOOKS
# ============================================================================


def _validate_events(v: Optional[list[str]]) -> Optional[list[str]]:
    if v is None:
        return v
    unknown = [e for e in v if e != "*" and e not in EVENT_TYPES]
    if unknown:
        raise ValueError(f"Unknown events: {', '.join(unknown)}")
    return v


class WebhookSubscriptionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    webhookUrl: HttpUrl
    secretKey: Optional[str] = None
    events: list[str] = Field(..., min_length=1)
    filterConditions: Optional[dict] = None
    headers: dict[str, str] = {}

    @field_validator("events")
    @classmethod
    def validate_events(cls, v):
        return _validate_events(v)


class WebhookSubscriptionUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    webhookUrl: Optional[HttpUrl] = None
    secretKey: Optional[str] = None
    events: Optional[list[str]] = None
    filterConditions: Optional[dict] = None
    headers: Optional[dict[str, str]] = None
    isActive: Optional[bool] = None

    @field_validator("events")
    @classmethod
    def validate_events(cls, v):
        return _validate_events(v)


class WebhookSubscriptionResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    webhookUrl: str
    events: list[str]
    filterConditions: Optional[dict] = None
    isActive: bool
    lastTriggeredAt: Optional[datetime] = None
    lastStatus: Optional[str] = None
    triggerCount: int
    failureCount: int
