import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate a UUID primary key"""
    return str(uuid.uuid4())


class Agent(Base):
    """Real estate agent (the portal's customer)"""

    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=True)
    slug = Column(String(255), unique=True, index=True, nullable=True)
    title = Column(String(255), nullable=True)
    brokerage_name = Column(String(255), nullable=True)
    headshot_url = Column(String(500), nullable=True)
    logo_url = Column(String(500), nullable=True)
    brand_color = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    listings = relationship("Listing", back_populates="agent")


class Listing(Base):
    """A property shoot order and its production state"""

    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=generate_id)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=True, index=True)
    address = Column(String(500), nullable=False)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    zip = Column(String(20), nullable=True, index=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    beds = Column(Integer, nullable=True)
    baths = Column(Float, nullable=True)
    sqft = Column(Integer, nullable=True)
    price = Column(Float, nullable=True)
    property_type = Column(String(50), nullable=True)  # residential, commercial, land, luxury
    mls_id = Column(String(100), nullable=True)
    # scheduled, in_progress, staged, processing, ready_for_qc, in_qc, delivered
    ops_status = Column(String(50), default="scheduled", nullable=False, index=True)
    is_rush = Column(Boolean, default=False, nullable=False)
    is_vacant = Column(Boolean, default=False, nullable=False)
    has_lockbox = Column(Boolean, default=False, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    # Integration state: pending, ordered, processing, delivered, live, failed, needs_manual, not_applicable
    cubicasa_order_id = Column(String(100), nullable=True, index=True)
    cubicasa_status = Column(String(50), nullable=True)
    zillow_3d_id = Column(String(100), nullable=True)
    zillow_3d_status = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    agent = relationship("Agent", back_populates="listings")
    media_assets = relationship("MediaAsset", back_populates="listing", cascade="all, delete-orphan")


class Staff(Base):
    """Photographers, videographers, editors, QC reviewers and admins"""

    __tablename__ = "staff"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(String(50), nullable=False, index=True)  # photographer, videographer, editor, qc, admin
    skills = Column(JSON, default=list)
    certifications = Column(JSON, default=list)
    home_lat = Column(Float, nullable=True)
    home_lng = Column(Float, nullable=True)
    max_daily_jobs = Column(Integer, default=6)
    is_active = Column(Boolean, default=True, nullable=False)
    # Stripe Connect payouts
    stripe_connect_id = Column(String(255), nullable=True)
    stripe_connect_status = Column(String(50), default="not_started")
    stripe_payouts_enabled = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ServiceTerritory(Base):
    __tablename__ = "service_territories"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    zip_codes = Column(JSON, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class StaffTerritory(Base):
    __tablename__ = "staff_territories"
    __table_args__ = (UniqueConstraint("staff_id", "territory_id", name="uq_staff_territory"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    staff_id = Column(String(36), ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True)
    territory_id = Column(
        String(36), ForeignKey("service_territories.id", ondelete="CASCADE"), nullable=False, index=True
    )


class TerritoryAvailability(Base):
    """Per-day opening flag, flipped when a booking is cancelled or capacity is added"""

    __tablename__ = "territory_availability"

    id = Column(Integer, primary_key=True, autoincrement=True)
    territory_id = Column(String(36), ForeignKey("service_territories.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    has_opening = Column(Boolean, default=False, nullable=False)


class PhotographerAssignment(Base):
    __tablename__ = "photographer_assignments"

    id = Column(String(36), primary_key=True, default=generate_id)
    listing_id = Column(String(36), ForeignKey("listings.id"), nullable=False, index=True)
    photographer_id = Column(String(36), ForeignKey("staff.id"), nullable=False, index=True)
    scheduled_date = Column(Date, nullable=True)
    status = Column(String(50), default="assigned")  # assigned, confirmed, completed, cancelled
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SellerSchedule(Base):
    """Go Anytime window: a vacant property a photographer can claim any day within the range"""

    __tablename__ = "seller_schedules"

    id = Column(String(36), primary_key=True, default=generate_id)
    listing_id = Column(String(36), ForeignKey("listings.id"), nullable=False, index=True)
    territory_id = Column(String(36), ForeignKey("service_territories.id"), nullable=True, index=True)
    is_anytime = Column(Boolean, default=True, nullable=False)
    anytime_start_date = Column(Date, nullable=False)
    anytime_end_date = Column(Date, nullable=False)
    access_instructions = Column(Text, nullable=True)
    status = Column(String(50), default="pending_claim")  # pending_claim, claimed, completed, cancelled
    priority = Column(String(20), default="normal")  # normal, high, urgent
    claimed_by = Column(String(36), ForeignKey("staff.id"), nullable=True, index=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    scheduled_date = Column(Date, nullable=True)
    # "HH:MM" arrival window promised to the seller, and the time the photographer confirmed
    arrival_window_start = Column(String(5), nullable=True)
    arrival_window_end = Column(String(5), nullable=True)
    confirmed_arrival_time = Column(String(5), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    listing = relationship("Listing")


class WaitlistEntry(Base):
    __tablename__ = "appointment_waitlist"

    id = Column(String(36), primary_key=True, default=generate_id)
    client_email = Column(String(255), nullable=False, index=True)
    client_name = Column(String(255), nullable=False)
    territory_id = Column(String(36), ForeignKey("service_territories.id"), nullable=False, index=True)
    requested_date = Column(Date, nullable=False, index=True)
    listing_id = Column(String(36), ForeignKey("listings.id"), nullable=True)
    status = Column(String(20), default="waiting", nullable=False)  # waiting, notified, booked, expired, cancelled
    position = Column(Integer, nullable=False)
    flexible_dates = Column(Boolean, default=False)
    date_range_start = Column(Date, nullable=True)
    date_range_end = Column(Date, nullable=True)
    notification_count = Column(Integer, default=0, nullable=False)
    last_notified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MediaAsset(Base):
    """Photo, video, floor plan or tour delivered for a listing"""

    __tablename__ = "media_assets"

    id = Column(String(36), primary_key=True, default=generate_id)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # photo, video, floorplan, matterport, interactive
    category = Column(String(50), nullable=True)
    media_url = Column(String(1000), nullable=True)
    storage_path = Column(String(1000), nullable=True)
    storage_bucket = Column(String(100), nullable=True)
    original_filename = Column(String(500), nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    mime_type = Column(String(100), nullable=True)
    # pending, processing, ready_for_qc, in_review, approved, rejected, needs_edit
    qc_status = Column(String(50), default="pending", nullable=False)
    qc_notes = Column(Text, nullable=True)
    processing_job_id = Column(String(36), ForeignKey("processing_jobs.id"), nullable=True)
    processed_storage_path = Column(String(1000), nullable=True)
    pipeline_stage = Column(String(50), nullable=True)
    sort_order = Column(Integer, nullable=True)
    metadata_json = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    listing = relationship("Listing", back_populates="media_assets")


class JobEvent(Base):
    """Audit trail of status changes on a listing"""

    __tablename__ = "job_events"

    id = Column(String(36), primary_key=True, default=generate_id)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    actor_id = Column(String(36), nullable=True)
    actor_type = Column(String(50), default="system")  # system, staff, agent, webhook
    created_at = Column(DateTime(timezone=True), server_default=func.now())
