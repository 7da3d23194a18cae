"""
Integration models - inbound webhook log, outbound webhook subscriptions,
notification/SMS delivery logs and MLS credentials
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id


class WebhookEvent(Base):
    """Inbound webhook received from a provider, keyed for idempotent processing"""

    __tablename__ = "webhook_events"
    __table_args__ = (UniqueConstraint("source", "external_event_id", name="uq_webhook_source_event"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    source = Column(String(50), nullable=False, index=True)  # cubicasa, founddr, stripe, slack
    external_event_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)
    # pending, processing, success, failed, dead_letter
    status = Column(String(20), default="pending", nullable=False, index=True)
    retry_count = Column(Integer, default=0)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class WebhookSubscription(Base):
    """Outbound webhook target (Zapier, CRM, partner systems)"""

    __tablename__ = "webhook_subscriptions"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    webhook_url = Column(String(1000), nullable=False)
    secret_key = Column(String(255), nullable=True)
    events = Column(JSON, nullable=False, default=list)
    filter_conditions = Column(JSON, nullable=True)
    headers = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)
    last_triggered_at = Column(DateTime(timezone=True), nullable=True)
    last_status = Column(String(20), nullable=True)
    trigger_count = Column(Integer, default=0)
    failure_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    deliveries = relationship("WebhookDelivery", back_populates="subscription", cascade="all, delete-orphan")


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(String(36), primary_key=True, default=generate_id)
    subscription_id = Column(
        String(36), ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    attempt_number = Column(Integer, default=1)
    status = Column(String(20), default="pending")  # pending, delivered, failed, skipped
    error_message = Column(Text, nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    subscription = relationship("WebhookSubscription", back_populates="deliveries")


class NotificationLog(Base):
    """One row per email/SMS send attempt"""

    __tablename__ = "notification_logs"

    id = Column(String(36), primary_key=True, default=generate_id)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="SET NULL"), nullable=True, index=True)
    recipient_type = Column(String(20), nullable=True)  # agent, seller, staff, admin
    recipient_email = Column(String(255), nullable=True)
    recipient_phone = Column(String(20), nullable=True)
    notification_type = Column(String(100), nullable=False, index=True)
    channel = Column(String(20), nullable=False)  # email, sms
    subject = Column(String(500), nullable=True)
    status = Column(String(20), default="pending")  # pending, sent, failed
    provider_message_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MLSProvider(Base):
    __tablename__ = "mls_providers"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False, unique=True)
    slug = Column(String(100), nullable=False, unique=True)
    provider_type = Column(String(50), nullable=False)  # flexmls, matrix, bright, crmls, stellar, other
    api_base_url = Column(String(500), nullable=True)
    supports_photo_upload = Column(Boolean, default=True)
    supports_video_upload = Column(Boolean, default=False)
    supports_3d_tour = Column(Boolean, default=False)
    max_photos = Column(Integer, default=50)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MLSCredential(Base):
    """Agent login for an MLS provider; password stored Fernet-encrypted"""

    __tablename__ = "agent_mls_credentials"
    __table_args__ = (UniqueConstraint("agent_id", "mls_provider_id", name="uq_agent_mls_provider"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    agent_id = Column(String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    mls_provider_id = Column(String(36), ForeignKey("mls_providers.id", ondelete="CASCADE"), nullable=False)
    mls_agent_id = Column(String(100), nullable=False)
    mls_password = Column(Text, nullable=True)
    mls_office_id = Column(String(100), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_status = Column(String(20), default="pending")  # pending, active, error, disabled
    error_message = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    provider = relationship("MLSProvider")
