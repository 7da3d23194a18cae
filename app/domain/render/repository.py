"""Render repository - Database operations for templates, render jobs and carousel slides"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models_render import RenderJob, RenderJobSlide, RenderTemplate


class RenderRepository:
    """Repository for render database operations"""

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    @staticmethod
    def get_template(db: Session, template_id: str) -> Optional[RenderTemplate]:
        return db.query(RenderTemplate).filter(RenderTemplate.id == template_id).first()

    @staticmethod
    def get_published_template(
        db: Session, template_id: Optional[str] = None, slug: Optional[str] = None
    ) -> Optional[RenderTemplate]:
        """Published template by id, or the latest published version of a slug"""
        query = db.query(RenderTemplate).filter(RenderTemplate.status == "published")
        if template_id:
            return query.filter(RenderTemplate.id == template_id).first()
        return query.filter(RenderTemplate.slug == slug).order_by(RenderTemplate.version.desc()).first()

    @staticmethod
    def get_template_by_slug(db: Session, slug: str, version: Optional[str] = None) -> Optional[RenderTemplate]:
        query = db.query(RenderTemplate).filter(RenderTemplate.slug == slug)
        if version:
            return query.filter(RenderTemplate.version == version).first()
        return query.order_by(RenderTemplate.version.desc()).first()

    @staticmethod
    def slug_version_exists(db: Session, slug: str, version: str) -> bool:
        return (
            db.query(RenderTemplate.id)
            .filter(RenderTemplate.slug == slug, RenderTemplate.version == version)
            .first()
            is not None
        )

    @staticmethod
    def has_dependents(db: Session, slug: str) -> bool:
        return db.query(RenderTemplate.id).filter(RenderTemplate.extends_slug == slug).first() is not None

    @staticmethod
    def list_templates(
        db: Session, limit: int, offset: int, category: Optional[str] = None, status: Optional[str] = None
    ) -> tuple[list[RenderTemplate], int]:
        query = db.query(RenderTemplate)
        if category:
            query = query.filter(RenderTemplate.category == category)
        if status:
            query = query.filter(RenderTemplate.status == status)
        total = query.count()
        templates = query.order_by(RenderTemplate.created_at.desc()).offset(offset).limit(limit).all()
        return templates, total

    @staticmethod
    def create_template(db: Session, **fields) -> RenderTemplate:
        template = RenderTemplate(**fields)
        db.add(template)
        db.commit()
        db.refresh(template)
        return template

    @staticmethod
    def update_template(db: Session, template: RenderTemplate, updates: dict) -> RenderTemplate:
        for key, value in updates.items():
            setattr(template, key, value)
        db.commit()
        db.refresh(template)
        return template

    @staticmethod
    def delete_template(db: Session, template: RenderTemplate) -> None:
        db.delete(template)
        db.commit()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    @staticmethod
    def create_job(db: Session, **fields) -> RenderJob:
        job = RenderJob(**fields)
        db.add(job)
        db.commit()
        db.refresh(job)
        return job

    @staticmethod
    def get_job(db: Session, job_id: str) -> Optional[RenderJob]:
        return (
            db.query(RenderJob)
            .options(selectinload(RenderJob.slides))
            .filter(RenderJob.id == job_id)
            .first()
        )

    @staticmethod
    def complete_job(
        db: Session,
        job: RenderJob,
        status: str,
        output_urls: list[str],
        render_time_ms: int,
        error_message: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> RenderJob:
        job.status = status
        job.output_urls = output_urls
        job.render_time_ms = render_time_ms
        job.error_message = error_message
        job.completed_at = datetime.now(timezone.utc)
        if metadata:
            job.metadata_json = {**(job.metadata_json or {}), **metadata}
        db.commit()
        db.refresh(job)
        return job

    @staticmethod
    def add_slides(db: Session, job: RenderJob, slides: list[dict]) -> list[RenderJobSlide]:
        rows = [
            RenderJobSlide(job_id=job.id, position=s["position"], status="pending", slide_data=s["slide_data"])
            for s in slides
        ]
        db.add_all(rows)
        db.commit()
        return rows

    @staticmethod
    def update_slide(
        db: Session,
        slide: RenderJobSlide,
        status: str,
        output_url: Optional[str] = None,
        render_time_ms: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        slide.status = status
        slide.output_url = output_url
        slide.render_time_ms = render_time_ms
        slide.error_message = error_message
        db.commit()
