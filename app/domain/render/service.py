"""Render service - template lookup, single image and carousel rendering, job status"""

import asyncio
import logging
import time
from typing import Optional

import httpx
from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import config
from ...cache import CACHE_PREFIXES, CACHE_TTLS, cache, invalidate_template_cache
from ...circuit_breaker import with_circuit_breaker
from ...models_render import RenderJob, RenderTemplate
from ...render.renderer import RENDER_ENGINE, render_template
from ...render.variables import RenderContext
from ...utils.media_storage import upload_bytes
from ...utils.sanitization import sanitize_error_message
from .repository import RenderRepository
from .schemas import RenderCarouselRequest, RenderImageRequest, TemplateCreate, TemplateUpdate, is_uuid

logger = logging.getLogger(__name__)

MAX_INHERITANCE_DEPTH = 5
CONTENT_TYPES = {"png": "image/png", "jpeg": "image/jpeg", "webp": "image/webp"}


def merge_templates(parent: dict, child: dict) -> dict:
    """Child canvas keys win; child layers replace parent layers with the same id"""
    child_layers = child.get("layers") or []
    overridden = {layer.get("id") for layer in child_layers}
    layers = [layer for layer in parent.get("layers") or [] if layer.get("id") not in overridden] + child_layers
    return {
        **child,
        "canvas": {**(parent.get("canvas") or {}), **(child.get("canvas") or {})},
        "layers": layers,
    }


def template_to_definition(template: RenderTemplate) -> dict:
    return {
        "id": template.id,
        "slug": template.slug,
        "version": template.version,
        "extends": template.extends_slug,
        "canvas": template.canvas or {},
        "layers": template.layers or [],
        "variables": template.variables or [],
    }


def template_to_response(template: RenderTemplate) -> dict:
    return {
        "id": template.id,
        "slug": template.slug,
        "version": template.version,
        "name": template.name,
        "description": template.description,
        "category": template.category,
        "subcategory": template.subcategory,
        "extends": template.extends_slug,
        "canvas": template.canvas,
        "layers": template.layers,
        "variables": template.variables,
        "brandKitBindings": template.brand_kit_bindings,
        "status": template.status,
        "isSystem": template.is_system,
        "createdAt": template.created_at,
        "updatedAt": template.updated_at,
    }


def job_to_response(job: RenderJob) -> dict:
    """Public shape of a render job; success is None while the job is still running"""
    if job.status in ("pending", "processing"):
        success = None
    else:
        success = job.status in ("completed", "partial")

    metadata = {
        "renderEngine": job.render_engine,
        "renderTimeMs": job.render_time_ms,
        "creditsCost": job.credits_cost,
    }
    response = {
        "id": job.id,
        "type": job.job_type,
        "status": job.status,
        "success": success,
        "outputUrls": job.output_urls or [],
        "metadata": metadata,
        "createdAt": job.created_at,
        "completedAt": job.completed_at,
    }
    if job.status == "failed":
        response["error"] = job.error_message or "Unknown error"

    if job.job_type == "carousel":
        metadata["slidesTotal"] = len(job.slides)
        metadata["slidesCompleted"] = sum(1 for s in job.slides if s.status == "completed")
        response["slides"] = [
            {
                "position": s.position,
                "status": s.status,
                "outputUrl": s.output_url,
                "renderTimeMs": s.render_time_ms,
                "error": s.error_message,
            }
            for s in job.slides
        ]
    return response


async def upload_render(key: str, content: bytes, output_format: str) -> str:
    """Upload rendered bytes through the r2-storage circuit"""
    return await with_circuit_breaker(
        "r2-storage",
        lambda: asyncio.to_thread(upload_bytes, key, content, CONTENT_TYPES.get(output_format, "image/png")),
        timeout=30.0,
    )


async def notify_render_webhook(webhook_url: Optional[str], payload: dict) -> bool:
    if not webhook_url or not webhook_url.startswith("https://"):
        return False
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(webhook_url, json=payload)
        if response.status_code >= 400:
            logger.warning(f"⚠️ Render webhook returned {response.status_code} for job {payload.get('jobId')}")
            return False
        return True
    except httpx.HTTPError as e:
        logger.warning(f"⚠️ Render webhook failed for job {payload.get('jobId')}: {e}")
        return False


class RenderService:
    """Service layer for the render API"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = RenderRepository()

    # ------------------------------------------------------------------
    # Template resolution
    # ------------------------------------------------------------------

    def _cache_key(self, template_id: Optional[str], slug: Optional[str]) -> str:
        if template_id:
            return f"{CACHE_PREFIXES['template']}id:{template_id}"
        return f"{CACHE_PREFIXES['template']}{slug}"

    def get_published_definition(self, template_id: Optional[str], slug: Optional[str]) -> Optional[dict]:
        """Published template with inheritance resolved, cached for a few minutes"""
        cache_key = self._cache_key(template_id, slug)
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        template = self.repo.get_published_template(self.db, template_id=template_id, slug=slug)
        if not template:
            return None

        definition = self.resolve_inheritance(template_to_definition(template))
        cache.set(cache_key, definition, CACHE_TTLS["template"])
        return definition

    def resolve_inheritance(self, definition: dict) -> dict:
        seen = {definition.get("slug")}
        parent_slug = definition.get("extends")
        depth = 0
        while parent_slug and depth < MAX_INHERITANCE_DEPTH:
            if parent_slug in seen:
                logger.warning(f"⚠️ Template inheritance cycle at {parent_slug}")
                break
            parent = self.repo.get_template_by_slug(self.db, parent_slug)
            if not parent:
                logger.warning(f"⚠️ Parent template {parent_slug} not found")
                break
            seen.add(parent_slug)
            definition = merge_templates(template_to_definition(parent), definition)
            parent_slug = parent.extends_slug
            depth += 1
        return definition

    def _definition_for(self, template_id, template_slug, inline) -> dict:
        if inline is not None:
            return inline.model_dump(exclude_none=True)
        definition = self.get_published_definition(template_id, template_slug)
        if definition is None:
            raise HTTPException(status_code=404, detail="Template not found")
        return definition

    # ------------------------------------------------------------------
    # Single image
    # ------------------------------------------------------------------

    async def render_image(self, data: RenderImageRequest) -> dict:
        started = time.monotonic()
        definition = self._definition_for(data.templateId, data.templateSlug, data.template)

        job = None
        try:
            job = self.repo.get_job(self.db, data.jobId) if data.jobId else None
            if job is None:
                job_fields = dict(
                    job_type="single_image",
                    status="processing",
                    template_id=definition.get("id"),
                    input_data={
                        "variables": data.variables,
                        "brandKit": data.brandKit,
                        "format": data.format,
                        "quality": data.quality,
                        "width": data.width,
                        "height": data.height,
                    },
                    output_format=data.format,
                    webhook_url=data.webhookUrl,
                    render_engine=RENDER_ENGINE,
                )
                if data.jobId:
                    job_fields["id"] = data.jobId
                job = self.repo.create_job(self.db, **job_fields)

            context = RenderContext(variables=data.variables, brand_kit=data.brandKit)
            result = await render_template(
                definition, context, data.format, data.quality, width=data.width, height=data.height
            )
            if not result.success:
                raise ValueError(result.error or "Render failed")

            output_url = await upload_render(f"renders/{job.id}.{data.format}", result.image_bytes, data.format)
            render_time_ms = int((time.monotonic() - started) * 1000)
            self.repo.complete_job(self.db, job, "completed", [output_url], render_time_ms)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"❌ Render failed: {e}")
            if job is not None:
                self._fail_job(job, str(e), int((time.monotonic() - started) * 1000))
            raise HTTPException(
                status_code=500,
                detail={"error": "Render failed", "message": sanitize_error_message(str(e), config.IS_DEVELOPMENT)},
            ) from e

        logger.info(f"✅ Rendered job {job.id} ({result.width}x{result.height} {data.format}) in {render_time_ms}ms")
        await notify_render_webhook(
            data.webhookUrl, {"jobId": job.id, "status": "completed", "outputUrls": [output_url]}
        )
        return {
            "success": True,
            "jobId": job.id,
            "outputUrl": output_url,
            "metadata": {
                "width": result.width,
                "height": result.height,
                "format": data.format,
                "renderTimeMs": render_time_ms,
                "engine": RENDER_ENGINE,
            },
        }

    def _fail_job(self, job: RenderJob, message: str, render_time_ms: int) -> None:
        try:
            self.repo.complete_job(self.db, job, "failed", [], render_time_ms, error_message=message)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Could not mark render job {job.id} failed: {e}")

    # ------------------------------------------------------------------
    # Carousel
    # ------------------------------------------------------------------

    async def _render_slide(self, job_id: str, slide, data: RenderCarouselRequest, semaphore) -> dict:
        slide_started = time.monotonic()
        outcome = {"position": slide.position, "success": False, "imageUrl": None, "error": None}
        async with semaphore:
            try:
                definition = self._definition_for(slide.templateId, slide.templateSlug, slide.template)
                context = RenderContext(
                    variables=slide.variables,
                    brand_kit=data.brandKit,
                    life_here=data.lifeHereData,
                    listing=data.listingData,
                    agent=data.agentData,
                )
                result = await render_template(
                    definition, context, data.format, data.quality, width=slide.width, height=slide.height
                )
                if not result.success:
                    raise ValueError(result.error or "Render failed")
                outcome["imageUrl"] = await upload_render(
                    f"renders/{job_id}/slide-{slide.position}.{data.format}", result.image_bytes, data.format
                )
                outcome.update(success=True, width=result.width, height=result.height)
            except HTTPException as e:
                outcome["error"] = e.detail if isinstance(e.detail, str) else "Render failed"
            except Exception as e:
                logger.error(f"❌ Carousel slide {slide.position} failed: {e}")
                outcome["error"] = sanitize_error_message(str(e), config.IS_DEVELOPMENT)

        outcome["renderTimeMs"] = int((time.monotonic() - slide_started) * 1000)
        return outcome

    async def render_carousel(self, data: RenderCarouselRequest) -> dict:
        started = time.monotonic()
        job = self.repo.create_job(
            self.db,
            job_type="carousel",
            status="processing",
            input_data={
                "slideCount": len(data.slides),
                "format": data.format,
                "quality": data.quality,
                "parallel": data.parallel,
                "hasBrandKit": data.brandKit is not None,
                "hasLifeHereData": data.lifeHereData is not None,
                "hasListingData": data.listingData is not None,
            },
            output_format=data.format,
            webhook_url=data.webhookUrl,
            render_engine=RENDER_ENGINE,
            credits_cost=len(data.slides),
        )
        slide_rows = self.repo.add_slides(
            self.db,
            job,
            [{"position": s.position, "slide_data": s.model_dump(exclude={"template"})} for s in data.slides],
        )

        semaphore = asyncio.Semaphore(data.maxConcurrent if data.parallel else 1)
        outcomes = await asyncio.gather(*(self._render_slide(job.id, s, data, semaphore) for s in data.slides))
        outcomes = sorted(outcomes, key=lambda o: o["position"])

        rows_by_position = {row.position: row for row in slide_rows}
        for outcome in outcomes:
            row = rows_by_position.get(outcome["position"])
            if row is not None:
                self.repo.update_slide(
                    self.db,
                    row,
                    "completed" if outcome["success"] else "failed",
                    output_url=outcome["imageUrl"],
                    render_time_ms=outcome["renderTimeMs"],
                    error_message=outcome["error"],
                )

        rendered = sum(1 for o in outcomes if o["success"])
        failed = len(outcomes) - rendered
        total_ms = int((time.monotonic() - started) * 1000)
        output_urls = [o["imageUrl"] for o in outcomes if o["success"]]

        if rendered == 0:
            status, error = "failed", "All slides failed to render"
        else:
            status, error = ("completed" if failed == 0 else "partial"), None
        self.repo.complete_job(
            self.db,
            job,
            status,
            output_urls,
            total_ms,
            error_message=error,
            metadata={"slidesRendered": rendered, "slidesFailed": failed},
        )
        logger.info(f"✅ Carousel job {job.id}: {rendered} rendered, {failed} failed in {total_ms}ms")
        await notify_render_webhook(data.webhookUrl, {"jobId": job.id, "status": status, "outputUrls": output_urls})

        return {
            "success": rendered > 0,
            "jobId": job.id,
            "error": error,
            "slides": outcomes,
            "metadata": {
                "slidesRendered": rendered,
                "slidesFailed": failed,
                "format": data.format,
                "totalRenderTimeMs": total_ms,
                "engine": RENDER_ENGINE,
            },
        }

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def get_job_status(self, job_id: str) -> dict:
        job = self.repo.get_job(self.db, job_id.lower())
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return job_to_response(job)

    # ------------------------------------------------------------------
    # Template CRUD
    # ------------------------------------------------------------------

    def _invalidate(self, template: RenderTemplate) -> None:
        invalidate_template_cache(template.slug)
        cache.delete(self._cache_key(template.id, None))

    def _validate_extends(self, slug: str, extends: Optional[str]) -> None:
        """Reject a parent chain that loops back, dangles or is deeper than MAX_INHERITANCE_DEPTH"""
        chain = [slug]
        parent_slug = extends
        while parent_slug:
            if parent_slug in chain:
                path = " -> ".join(chain + [parent_slug])
                raise HTTPException(status_code=400, detail=f"Template inheritance cycle: {path}")
            if len(chain) > MAX_INHERITANCE_DEPTH:
                raise HTTPException(
                    status_code=400,
                    detail=f"Template inheritance exceeds maximum depth of {MAX_INHERITANCE_DEPTH}",
                )
            parent = self.repo.get_template_by_slug(self.db, parent_slug)
            if not parent:
                raise HTTPException(status_code=400, detail=f"Parent template {parent_slug} not found")
            chain.append(parent_slug)
            parent_slug = parent.extends_slug

    def create_template(self, data: TemplateCreate) -> RenderTemplate:
        if self.repo.slug_version_exists(self.db, data.slug, data.version):
            raise HTTPException(
                status_code=409, detail=f"Template {data.slug} version {data.version} already exists"
            )
        self._validate_extends(data.slug, data.extends)
        try:
            template = self.repo.create_template(
                self.db,
                slug=data.slug,
                version=data.version,
                name=data.name,
                description=data.description,
                category=data.category,
                subcategory=data.subcategory,
                extends_slug=data.extends,
                canvas=data.canvas.model_dump(exclude_none=True),
                layers=[layer.model_dump(exclude_none=True) for layer in data.layers],
                variables=[v.model_dump(exclude_none=True) for v in data.variables],
                brand_kit_bindings=data.brandKitBindings.model_dump(exclude_none=True) if data.brandKitBindings else {},
                status=data.status,
                is_public=data.isPublic,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Template create failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to create template") from e

        self._invalidate(template)
        logger.info(f"✅ Created render template {template.slug}@{template.version}")
        return template

    def list_templates(self, limit: int, offset: int, category: Optional[str], status: Optional[str]) -> dict:
        templates, total = self.repo.list_templates(self.db, limit, offset, category, status)
        return {
            "templates": [
                {
                    "id": t.id,
                    "slug": t.slug,
                    "version": t.version,
                    "name": t.name,
                    "description": t.description,
                    "category": t.category,
                    "status": t.status,
                    "isSystem": t.is_system,
                    "createdAt": t.created_at,
                }
                for t in templates
            ],
            "pagination": {"limit": limit, "offset": offset, "total": total},
        }

    def get_template(self, template_id: str, version: Optional[str] = None, resolved: bool = False) -> dict:
        if is_uuid(template_id):
            template = self.repo.get_template(self.db, template_id)
        else:
            template = self.repo.get_template_by_slug(self.db, template_id, version)
        if not template:
            raise HTTPException(status_code=404, detail="Template not found")

        response = template_to_response(template)
        if resolved and template.extends_slug:
            definition = self.resolve_inheritance(template_to_definition(template))
            response["canvas"] = definition["canvas"]
            response["layers"] = definition["layers"]
        return response

    def _editable_template(self, template_id: str, action: str) -> RenderTemplate:
        if not is_uuid(template_id):
            raise HTTPException(status_code=400, detail=f"Template ID must be a UUID for {action}")
        template = self.repo.get_template(self.db, template_id)
        if not template:
            raise HTTPException(status_code=404, detail="Template not found")
        if template.is_system:
            verb = "modify" if action == "updates" else "delete"
            raise HTTPException(status_code=403, detail=f"Cannot {verb} system templates")
        return template

    def update_template(self, template_id: str, data: TemplateUpdate) -> RenderTemplate:
        template = self._editable_template(template_id, "updates")

        field_map = {
            "name": "name",
            "description": "description",
            "category": "category",
            "subcategory": "subcategory",
            "canvas": "canvas",
            "layers": "layers",
            "variables": "variables",
            "brandKitBindings": "brand_kit_bindings",
            "status": "status",
            "extends": "extends_slug",
        }
        updates = {field_map[k]: v for k, v in data.model_dump(exclude_unset=True, exclude_none=True).items()}
        if "extends_slug" in updates:
            self._validate_extends(template.slug, updates["extends_slug"])

        try:
            template = self.repo.update_template(self.db, template, updates)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Template update failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to update template") from e

        self._invalidate(template)
        return template

    def delete_template(self, template_id: str) -> str:
        template = self._editable_template(template_id, "deletion")
        if self.repo.has_dependents(self.db, template.slug):
            raise HTTPException(
                status_code=409, detail="Cannot delete template that is extended by other templates"
            )
        slug = template.slug
        try:
            self.repo.delete_template(self.db, template)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Template delete failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete template") from e

        invalidate_template_cache(slug)
        cache.delete(self._cache_key(template_id, None))
        logger.info(f"🧹 Deleted render template {template_id}")
        return template_id
