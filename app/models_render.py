"""
Render API models - layered image templates, render jobs and carousel slides
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id


def default_canvas():
    return {"width": 1080, "height": 1350}


class RenderTemplate(Base):
    __tablename__ = "render_templates"
    __table_args__ = (UniqueConstraint("slug", "version", name="uq_render_template_slug_version"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    slug = Column(String(100), nullable=False, index=True)
    version = Column(String(20), default="1.0.0", nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # story_archetype, listing_marketing, carousel_slide, social_post, agent_branding, market_update
    category = Column(String(50), nullable=False, index=True)
    subcategory = Column(String(100), nullable=True)
    extends_slug = Column(String(100), nullable=True)
    canvas = Column(JSON, default=default_canvas)
    layers = Column(JSON, default=list)
    variables = Column(JSON, default=list)
    brand_kit_bindings = Column(JSON, default=dict)
    metadata_json = Column("metadata", JSON, default=dict)
    agent_id = Column(String(36), ForeignKey("agents.id"), nullable=True, index=True)
    status = Column(String(20), default="draft", nullable=False, index=True)  # draft, published, archived
    is_system = Column(Boolean, default=False, nullable=False)
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class RenderJob(Base):
    __tablename__ = "render_jobs"

    id = Column(String(36), primary_key=True, default=generate_id)
    job_type = Column(String(20), nullable=False)  # single_image, carousel
    # pending, processing, completed, partial, failed, cancelled
    status = Column(String(20), default="pending", nullable=False, index=True)
    template_id = Column(String(36), ForeignKey("render_templates.id"), nullable=True)
    input_data = Column(JSON, default=dict)
    output_urls = Column(JSON, default=list)
    render_engine = Column(String(50), default="pillow")
    output_format = Column(String(10), default="png")
    webhook_url = Column(String(1000), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    render_time_ms = Column(Integer, nullable=True)
    credits_cost = Column(Integer, default=1)
    error_message = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    slides = relationship(
        "RenderJobSlide", back_populates="job", cascade="all, delete-orphan", order_by="RenderJobSlide.position"
    )


class RenderJobSlide(Base):
    __tablename__ = "render_job_slides"

    id = Column(String(36), primary_key=True, default=generate_id)
    job_id = Column(String(36), ForeignKey("render_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    slide_data = Column(JSON, default=dict)
    output_url = Column(String(1000), nullable=True)
    render_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    job = relationship("RenderJob", back_populates="slides")
