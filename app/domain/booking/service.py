"""Booking service - quotes, coupon rules and arrival window confirmation"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models_billing import Coupon
from .arrival_windows import is_within_window
from .pricing import calculate_travel_fee, compute_quote
from .repository import BookingRepository
from .schemas import CouponCreate, QuoteRequest

logger = logging.getLogger(__name__)


def coupon_to_response(coupon: Coupon) -> dict:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "type": coupon.type,
        "value": coupon.value,
        "description": coupon.description,
        "isActive": coupon.is_active,
        "expiresAt": coupon.expires_at,
        "maxUses": coupon.max_uses,
        "currentUses": coupon.current_uses or 0,
        "minOrderAmount": coupon.min_order_amount,
        "onePerUser": coupon.one_per_user,
        "firstOrderOnly": coupon.first_order_only,
        "totalDiscountGiven": coupon.total_discount_given or 0,
    }


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class BookingService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = BookingRepository()

    # ------------------------------------------------------------------
    # Coupons
    # ------------------------------------------------------------------

    def validate_coupon(
        self,
        code: str,
        order_total: float,
        agent_id: Optional[str] = None,
        check_first_order: bool = False,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Check a code against an order total.

        Returns:
            {valid: True, coupon, discount_amount} or {valid: False, error}
        """
        coupon = self.repo.get_coupon_by_code(self.db, code)
        if not coupon:
            return {"valid": False, "error": "Coupon code not found."}
        if not coupon.is_active:
            return {"valid": False, "error": "This coupon is inactive."}
        if coupon.expires_at and _as_aware(coupon.expires_at) < (now or datetime.now(timezone.utc)):
            return {"valid": False, "error": "This coupon has expired."}
        if coupon.max_uses and (coupon.current_uses or 0) >= coupon.max_uses:
            return {"valid": False, "error": "This coupon has reached its usage limit."}
        if coupon.min_order_amount and order_total < coupon.min_order_amount:
            return {"valid": False, "error": f"Minimum order of ${coupon.min_order_amount:g} required."}
        if coupon.first_order_only and check_first_order and agent_id:
            if self.repo.agent_has_completed_order(self.db, agent_id):
                return {"valid": False, "error": "This coupon is for first orders only."}

        if coupon.type == "percentage":
            discount = order_total * coupon.value / 100
        else:
            discount = coupon.value
        discount = min(discount, order_total)

        return {"valid": True, "coupon": coupon, "discount_amount": round(discount, 2)}

    def apply_coupon(
        self, code: str, order_id: str, agent_id: str, discount_amount: float, check_one_per_user: bool = False
    ) -> dict:
        coupon = self.repo.get_coupon_by_code(self.db, code)
        if not coupon:
            raise HTTPException(status_code=404, detail="Coupon not found.")

        if (coupon.one_per_user or check_one_per_user) and self.repo.agent_used_coupon(self.db, coupon.id, agent_id):
            raise HTTPException(status_code=409, detail="You have already used this coupon.")

        try:
            usage = self.repo.record_usage(self.db, coupon, agent_id, order_id, discount_amount)
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record coupon usage for {coupon.code}: {e}")
            raise HTTPException(status_code=500, detail="Failed to record coupon usage.") from e

        logger.info(f"🎟️ Coupon {coupon.code} applied to order {order_id} (-${discount_amount})")
        return {
            "success": True,
            "usage": {
                "id": usage.id,
                "couponId": coupon.id,
                "agentId": agent_id,
                "orderId": order_id,
                "discountAmount": discount_amount,
                "usedAt": usage.used_at,
            },
        }

    def create_coupon(self, data: CouponCreate) -> Coupon:
        try:
            coupon = self.repo.create_coupon(
                self.db,
                code=data.code,
                type=data.type,
                value=data.value,
                expires_at=data.expiresAt,
                max_uses=data.maxUses,
                min_order_amount=data.minOrderAmount,
                one_per_user=data.onePerUser,
                first_order_only=data.firstOrderOnly,
                description=data.description,
                is_active=True,
                current_uses=0,
                total_discount_given=0,
            )
        except IntegrityError as e:
            self.db.rollback()
            raise HTTPException(status_code=409, detail="Coupon code already exists.") from e
        logger.info(f"✅ Coupon {coupon.code} created")
        return coupon

    def deactivate_coupon(self, coupon_id: str) -> dict:
        coupon = self.repo.get_coupon(self.db, coupon_id)
        if not coupon:
            raise HTTPException(status_code=404, detail="Coupon not found.")
        coupon.is_active = False
        self.db.commit()
        return {"success": True}

    def list_active_coupons(self) -> list[Coupon]:
        return self.repo.list_active_coupons(self.db)

    def get_usage(self, coupon_id: str) -> list[dict]:
        return [
            {
                "id": u.id,
                "agentId": u.agent_id,
                "orderId": u.order_id,
                "discountAmount": u.discount_amount,
                "usedAt": u.used_at,
            }
            for u in self.repo.get_usages(self.db, coupon_id)
        ]

    def get_stats(self, coupon_id: str) -> dict:
        coupon = self.repo.get_coupon(self.db, coupon_id)
        if not coupon:
            raise HTTPException(status_code=404, detail="Coupon not found.")
        uses = coupon.current_uses or 0
        total = coupon.total_discount_given or 0
        return {
            "totalUses": uses,
            "totalDiscount": total,
            "uniqueUsers": self.repo.count_unique_users(self.db, coupon_id),
            "avgDiscount": round(total / uses, 2) if uses else 0,
        }

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def quote(self, data: QuoteRequest) -> dict:
        """Package/service quote plus travel fee, less any valid coupon"""
        if data.packageKey is None and not data.services:
            raise HTTPException(status_code=400, detail="Select a package or at least one service.")

        result = compute_quote(data.sqft, data.packageKey, data.services)
        if data.packageKey and not any(i["type"] == "package" for i in result["items"]):
            raise HTTPException(status_code=400, detail=f"Unknown package: {data.packageKey}")

        subtotal = result["total"]
        travel_fee = calculate_travel_fee(data.travelMiles) if data.travelMiles else 0
        response = {
            "bucket": result["bucket"],
            "tierKey": result["tierKey"],
            "items": result["items"],
            "subtotal": subtotal,
            "travelFee": travel_fee,
            "discount": 0,
            "couponCode": None,
            "couponError": None,
        }

        if data.couponCode:
            validation = self.validate_coupon(data.couponCode, subtotal, data.agentId, check_first_order=True)
            if validation["valid"]:
                response["discount"] = validation["discount_amount"]
                response["couponCode"] = validation["coupon"].code
            else:
                response["couponError"] = validation["error"]

        response["total"] = round(subtotal + travel_fee - response["discount"], 2)
        return response

    # ------------------------------------------------------------------
    # Arrival windows
    # ------------------------------------------------------------------

    def confirm_arrival_time(self, schedule_id: str, arrival_time: str) -> dict:
        schedule = self.repo.get_schedule(self.db, schedule_id)
        if not schedule:
            raise HTTPException(status_code=404, detail="Schedule not found.")
        if not schedule.arrival_window_start or not schedule.arrival_window_end:
            raise HTTPException(status_code=400, detail="Schedule has no arrival window.")

        window = {"start": schedule.arrival_window_start, "end": schedule.arrival_window_end}
        if not is_within_window(arrival_time, window):
            raise HTTPException(
                status_code=400,
                detail=f"Arrival time {arrival_time} is outside the {window['start']}-{window['end']} window.",
            )

        schedule.confirmed_arrival_time = arrival_time
        self.db.commit()
        logger.info(f"✅ Arrival {arrival_time} confirmed for schedule {schedule_id}")
        return {"success": True, "confirmedTime": arrival_time}
