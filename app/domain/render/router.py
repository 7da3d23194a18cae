"""Render router - FastAPI endpoints for image, carousel, job status and template management"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ... import config
from ...auth import require_render_secret
from ...database import get_db
from ...rate_limiter import create_rate_limiter, rate_limit_headers
from ...render.renderer import RENDER_ENGINE
from ...utils.sanitization import sanitize_error_message
from .schemas import (
    RenderCarouselRequest,
    RenderImageRequest,
    TemplateCategory,
    TemplateCreate,
    TemplateStatus,
    TemplateUpdate,
    is_uuid,
)
from .service import RenderService, template_to_response

logger = logging.getLogger(__name__)

RENDER_PREFIX = "/api/v1/render"
API_VERSION = "1.0.0"
MAX_SLIDES = 10
MAX_CONCURRENT = 10

router = APIRouter(prefix=RENDER_PREFIX, tags=["Render"])

# Auth is checked before the rate limiter counts the request
RENDER_DEPENDENCIES = [Depends(require_render_secret), Depends(create_rate_limiter("render"))]
CAROUSEL_DEPENDENCIES = [Depends(require_render_secret), Depends(create_rate_limiter("carousel"))]
TEMPLATE_DEPENDENCIES = [Depends(require_render_secret), Depends(create_rate_limiter("template"))]


def get_render_service(db: Session = Depends(get_db)) -> RenderService:
    return RenderService(db)


def validation_error_label(method: str, path: str) -> str:
    """Error label for a 400 raised while validating a render API request body"""
    if path.startswith(f"{RENDER_PREFIX}/template"):
        if method == "POST":
            return "Invalid template data"
        if method in ("PUT", "PATCH"):
            return "Invalid update data"
    return "Invalid request"


def _apply_rate_limit_headers(request: Request, response: Response) -> None:
    result = getattr(request.state, "rate_limit", None)
    if result is not None:
        response.headers.update(rate_limit_headers(result))


# ============================================================================
# SINGLE IMAGE
# ============================================================================


@router.post("/image", dependencies=RENDER_DEPENDENCIES)
async def render_image(
    data: RenderImageRequest,
    request: Request,
    response: Response,
    service: RenderService = Depends(get_render_service),
):
    """Render one template to an image and store it"""
    result = await service.render_image(data)
    _apply_rate_limit_headers(request, response)
    return result


@router.get("/image")
async def render_image_health():
    return {"status": "ok", "engine": RENDER_ENGINE, "version": API_VERSION}


# ============================================================================
# CAROUSEL
# ============================================================================


@router.post("/carousel", dependencies=CAROUSEL_DEPENDENCIES)
async def render_carousel(
    data: RenderCarouselRequest,
    request: Request,
    response: Response,
    service: RenderService = Depends(get_render_service),
):
    """Render up to ten slides concurrently under one job"""
    try:
        result = await service.render_carousel(data)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Carousel render error: {e}")
        raise HTTPException(
            status_code=500,
            detail={
                "error": "Carousel render failed",
                "message": sanitize_error_message(str(e), config.IS_DEVELOPMENT, ["slides required"]),
            },
        ) from e

    if not result["success"]:
        return JSONResponse(status_code=500, content=jsonable_encoder(result))

    _apply_rate_limit_headers(request, response)
    result.pop("error", None)
    return result


@router.get("/carousel")
async def render_carousel_health():
    return {
        "status": "ok",
        "engine": RENDER_ENGINE,
        "version": API_VERSION,
        "maxSlides": MAX_SLIDES,
        "maxConcurrent": MAX_CONCURRENT,
    }


# ============================================================================
# JOBS
# ============================================================================


@router.get("/job/{job_id}", dependencies=[Depends(require_render_secret)])
async def get_render_job(job_id: str, service: RenderService = Depends(get_render_service)):
    if not is_uuid(job_id):
        raise HTTPException(status_code=400, detail="Invalid job ID format")
    return service.get_job_status(job_id)


# ============================================================================
# TEMPLATES
# ============================================================================


@router.post("/template", status_code=201, dependencies=TEMPLATE_DEPENDENCIES)
async def create_template(
    data: TemplateCreate,
    service: RenderService = Depends(get_render_service),
):
    template = service.create_template(data)
    return {"success": True, "template": template_to_response(template)}


@router.get("/template", dependencies=TEMPLATE_DEPENDENCIES)
async def list_templates(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    category: Optional[TemplateCategory] = None,
    status: Optional[TemplateStatus] = None,
    service: RenderService = Depends(get_render_service),
):
    return service.list_templates(limit, offset, category, status)


@router.get("/template/{template_id}", dependencies=[Depends(require_render_secret)])
async def get_template(
    template_id: str,
    version: Optional[str] = None,
    resolved: bool = False,
    service: RenderService = Depends(get_render_service),
):
    """Fetch by UUID, or by slug (latest version unless ?version= is given)"""
    return {"template": service.get_template(template_id, version, resolved)}


@router.put("/template/{template_id}", dependencies=TEMPLATE_DEPENDENCIES)
async def update_template(
    template_id: str,
    data: TemplateUpdate,
    service: RenderService = Depends(get_render_service),
):
    template = service.update_template(template_id, data)
    return {
        "success": True,
        "template": {
            "id": template.id,
            "slug": template.slug,
            "version": template.version,
            "name": template.name,
            "category": template.category,
            "status": template.status,
            "updatedAt": template.updated_at,
        },
    }


@router.delete("/template/{template_id}", dependencies=TEMPLATE_DEPENDENCIES)
async def delete_template(
    template_id: str,
    service: RenderService = Depends(get_render_service),
):
    deleted_id = service.delete_template(template_id)
    return {"success": True, "deletedId": deleted_id}
