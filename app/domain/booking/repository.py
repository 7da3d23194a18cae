"""Booking repository - coupon and arrival window persistence"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Listing, SellerSchedule
from ...models_billing import Coupon, CouponUsage, Invoice


class BookingRepository:
    @staticmethod
    def get_coupon_by_code(db: Session, code: str) -> Optional[Coupon]:
        return db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()

    @staticmethod
    def get_coupon(db: Session, coupon_id: str) -> Optional[Coupon]:
        return db.query(Coupon).filter(Coupon.id == coupon_id).first()

    @staticmethod
    def create_coupon(db: Session, **data) -> Coupon:
        coupon = Coupon(**data)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    @staticmethod
    def list_active_coupons(db: Session) -> list[Coupon]:
        return db.query(Coupon).filter(Coupon.is_active.is_(True)).order_by(Coupon.created_at.desc()).all()

    @staticmethod
    def agent_has_completed_order(db: Session, agent_id: str) -> bool:
        """Any delivered listing or paid invoice counts as a previous order"""
        delivered = (
            db.query(Listing.id).filter(Listing.agent_id == agent_id, Listing.ops_status == "delivered").first()
        )
        if delivered:
            return True
        return db.query(Invoice.id).filter(Invoice.agent_id == agent_id, Invoice.status == "paid").first() is not None

    @staticmethod
    def agent_used_coupon(db: Session, coupon_id: str, agent_id: str) -> bool:
        return (
            db.query(CouponUsage.id)
            .filter(CouponUsage.coupon_id == coupon_id, CouponUsage.agent_id == agent_id)
            .first()
            is not None
        )

    @staticmethod
    def record_usage(db: Session, coupon: Coupon, agent_id: str, order_id: str, discount_amount: float) -> CouponUsage:
        usage = CouponUsage(coupon_id=coupon.id, agent_id=agent_id, order_id=order_id, discount_amount=discount_amount)
        db.add(usage)
        coupon.current_uses = (coupon.current_uses or 0) + 1
        coupon.total_discount_given = (coupon.total_discount_given or 0) + discount_amount
        db.commit()
        db.refresh(usage)
        return usage

    @staticmethod
    def get_usages(db: Session, coupon_id: str) -> list[CouponUsage]:
        return (
            db.query(CouponUsage)
            .filter(CouponUsage.coupon_id == coupon_id)
            .order_by(CouponUsage.used_at.desc())
            .all()
        )

    @staticmethod
    def count_unique_users(db: Session, coupon_id: str) -> int:
        return (
            db.query(func.count(func.distinct(CouponUsage.agent_id)))
            .filter(CouponUsage.coupon_id == coupon_id)
            .scalar()
            or 0
        )

    @staticmethod
    def get_schedule(db: Session, schedule_id: str) -> Optional[SellerSchedule]:
        return db.query(SellerSchedule).filter(SellerSchedule.id == schedule_id).first()
