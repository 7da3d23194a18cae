"""Booking domain schemas - quotes, coupons and arrival windows"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...shared.validators import normalize_coupon_code, validate_hhmm
from ...utils.sanitization import validate_and_sanitize_input

CouponType = Literal["percentage", "fixed"]


# ============================================================================
# QUOTES
# ============================================================================


class QuoteRequest(BaseModel):
    sqft: int = Field(..., gt=0, le=50000)
    packageKey: Optional[str] = None
    services: list[str] = []
    travelMiles: Optional[float] = Field(None, ge=0)
    couponCode: Optional[str] = None
    agentId: Optional[str] = None


class QuoteItem(BaseModel):
    type: str
    id: str
    name: str
    price: float


class QuoteResponse(BaseModel):
    bucket: str
    tierKey: str
    items: list[QuoteItem]
    subtotal: float
    travelFee: float = 0
    discount: float = 0
    couponCode: Optional[str] = None
    couponError: Optional[str] = None
    total: float


# ============================================================================
# COUPONS
# ============================================================================


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    orderTotal: float = Field(..., ge=0)
    agentId: Optional[str] = None
    checkFirstOrder: bool = False


class CouponApplyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    orderId: str
    agentId: str
    discountAmount: float = Field(..., ge=0)
    checkOnePerUser: bool = False


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=50)
    type: CouponType
    value: float = Field(..., gt=0)
    expiresAt: Optional[datetime] = None
    maxUses: Optional[int] = Field(None, gt=0)
    minOrderAmount: Optional[float] = Field(None, ge=0)
    onePerUser: bool = False
    firstOrderOnly: bool = False
    description: Optional[str] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v):
        return normalize_coupon_code(v)

    @field_validator("description")
    @classmethod
    def clean_description(cls, v):
        return validate_and_sanitize_input(v) if v else v

    @model_validator(mode="after")
    def check_percentage(self):
        if self.type == "percentage" and self.value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class CouponResponse(BaseModel):
    id: str
    code: str
    type: str
    value: float
    description: Optional[str] = None
    isActive: bool
    expiresAt: Optional[datetime] = None
    maxUses: Optional[int] = None
    currentUses: int
    minOrderAmount: Optional[float] = None
    onePerUser: bool
    firstOrderOnly: bool
    totalDiscountGiven: float


class CouponStats(BaseModel):
    totalUses: int
    totalDiscount: float
    uniqueUsers: int
    avgDiscount: float


# ============================================================================
# ARRIVAL WINDOWS
# ============================================================================


class ArrivalWindowQuery(BaseModel):
    startTime: str = "08:00"
    endTime: str = "17:00"
    windowDurationMinutes: int = Field(60, ge=15, le=480)
    bufferBetweenWindows: int = Field(0, ge=0, le=240)
    bookedSlots: list[str] = []

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_times(cls, v):
        return validate_hhmm(v)


class ArrivalConfirmRequest(BaseModel):
    arrivalTime: str

    @field_validator("arrivalTime")
    @classmethod
    def validate_time(cls, v):
        return validate_hhmm(v)
