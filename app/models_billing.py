"""
Billing models - discount coupons and agent invoices
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(String(36), primary_key=True, default=generate_id)
    code = Column(String(50), unique=True, index=True, nullable=False)  # stored upper-case
    type = Column(String(20), nullable=False)  # percentage, fixed
    value = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, default=0, nullable=False)
    min_order_amount = Column(Float, nullable=True)
    one_per_user = Column(Boolean, default=False, nullable=False)
    first_order_only = Column(Boolean, default=False, nullable=False)
    total_discount_given = Column(Float, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    usages = relationship("CouponUsage", back_populates="coupon", cascade="all, delete-orphan")


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id = Column(String(36), primary_key=True, default=generate_id)
    coupon_id = Column(String(36), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False, index=True)
    order_id = Column(String(36), nullable=False)
    discount_amount = Column(Float, nullable=False)
    used_at = Column(DateTime(timezone=True), server_default=func.now())

    coupon = relationship("Coupon", back_populates="usages")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_id)
    invoice_number = Column(String(50), unique=True, index=True, nullable=False)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=False, index=True)
    listing_id = Column(String(36), ForeignKey("listings.id"), nullable=True)
    listing_address = Column(String(500), nullable=True)
    amount = Column(Float, nullable=False)
    # draft, pending, paid, overdue, cancelled, refunded
    status = Column(String(20), default="pending", nullable=False, index=True)
    line_items = Column(JSON, default=list)
    due_date = Column(DateTime(timezone=True), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_intent_id = Column(String(255), nullable=True)
    payment_method = Column(String(50), nullable=True)
    custom_notes = Column(Text, nullable=True)
    brokerage_info = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
