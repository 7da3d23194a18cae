"""
Media processing models - FoundDR HDR jobs and QC review sessions
"""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id


class ProcessingJob(Base):
    """HDR merge job submitted to FoundDR for one set of bracketed exposures"""

    __tablename__ = "processing_jobs"

    id = Column(String(36), primary_key=True, default=generate_id)
    founddr_job_id = Column(String(255), nullable=True, unique=True, index=True)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    # pending, uploading, queued, processing, completed, failed, cancelled
    status = Column(String(20), default="pending", nullable=False, index=True)
    input_keys = Column(JSON, default=list)  # storage keys of the bracketed inputs
    output_key = Column(String(1000), nullable=True)
    bracket_count = Column(Integer, nullable=True)
    queued_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    metrics = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    webhook_received_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class QCSession(Base):
    """One reviewer pass over a listing's media"""

    __tablename__ = "qc_sessions"

    id = Column(String(36), primary_key=True, default=generate_id)
    staff_id = Column(String(36), ForeignKey("staff.id"), nullable=False, index=True)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    photos_reviewed = Column(Integer, default=0, nullable=False)
    photos_approved = Column(Integer, default=0, nullable=False)
    photos_rejected = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    ended_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
