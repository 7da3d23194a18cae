"""Booking router - price book, quotes, coupons and arrival windows"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import require_staff
from ...database import get_db
from ...rate_limiter import create_rate_limiter
from .arrival_windows import format_arrival_window, generate_arrival_windows
from .pricing import CONTENT_RETAINERS, CONTENT_SERVICES, calculate_travel_fee, get_packages_for_sqft
from .schemas import (
    ArrivalConfirmRequest,
    ArrivalWindowQuery,
    CouponApplyRequest,
    CouponCreate,
    CouponResponse,
    CouponStats,
    CouponValidateRequest,
    QuoteRequest,
    QuoteResponse,
)
from .service import BookingService, coupon_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/booking", tags=["Booking"])

booking_rate_limit = create_rate_limiter("booking")


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


# ============================================================================
# PRICING
# ============================================================================


@router.get("/packages")
async def list_packages(sqft: int = 2000):
    """Packages priced for the given square footage"""
    return {"sqft": sqft, "packages": get_packages_for_sqft(sqft)}


@router.get("/retainers")
async def list_retainers():
    return {"retainers": CONTENT_RETAINERS, "contentServices": CONTENT_SERVICES}


@router.get("/travel-fee")
async def travel_fee(miles: float):
    return {"miles": miles, "fee": calculate_travel_fee(miles)}


@router.post("/quote", response_model=QuoteResponse, dependencies=[Depends(booking_rate_limit)])
async def quote(data: QuoteRequest, service: BookingService = Depends(get_booking_service)):
    return service.quote(data)


# ============================================================================
# COUPONS
# ============================================================================


@router.post("/coupons/validate", dependencies=[Depends(booking_rate_limit)])
async def validate_coupon(data: CouponValidateRequest, service: BookingService = Depends(get_booking_service)):
    result = service.validate_coupon(data.code, data.orderTotal, data.agentId, data.checkFirstOrder)
    if not result["valid"]:
        return {"valid": False, "error": result["error"]}
    return {
        "valid": True,
        "discountAmount": result["discount_amount"],
        "coupon": coupon_to_response(result["coupon"]),
    }


@router.post("/coupons/apply")
async def apply_coupon(
    data: CouponApplyRequest,
    _staff: str = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return service.apply_coupon(data.code, data.orderId, data.agentId, data.discountAmount, data.checkOnePerUser)


@router.post("/coupons", response_model=CouponResponse, status_code=201)
async def create_coupon(
    data: CouponCreate,
    _staff: str = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return coupon_to_response(service.create_coupon(data))


@router.get("/coupons", response_model=list[CouponResponse])
async def list_coupons(_staff: str = Depends(require_staff), service: BookingService = Depends(get_booking_service)):
    return [coupon_to_response(c) for c in service.list_active_coupons()]


@router.post("/coupons/{coupon_id}/deactivate")
async def deactivate_coupon(
    coupon_id: str,
    _staff: str = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return service.deactivate_coupon(coupon_id)


@router.get("/coupons/{coupon_id}/usage")
async def coupon_usage(
    coupon_id: str,
    _staff: str = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return {"usage": service.get_usage(coupon_id)}


@router.get("/coupons/{coupon_id}/stats", response_model=CouponStats)
async def coupon_stats(
    coupon_id: str,
    _staff: str = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return service.get_stats(coupon_id)


# ============================================================================
# ARRIVAL WINDOWS
# ============================================================================


@router.post("/arrival-windows")
async def arrival_windows(data: ArrivalWindowQuery):
    windows = generate_arrival_windows(
        data.startTime,
        data.endTime,
        data.windowDurationMinutes,
        data.bufferBetweenWindows,
        data.bookedSlots,
    )
    return {"windows": [{**w, "label": format_arrival_window(w)} for w in windows]}


@router.post("/schedules/{schedule_id}/confirm-arrival")
async def confirm_arrival(
    schedule_id: str,
    data: ArrivalConfirmRequest,
    _staff: str = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return service.confirm_arrival_time(schedule_id, data.arrivalTime)
