"""Render domain schemas - Pydantic models for the image, carousel, job and template API"""

import re
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

TemplateCategory = Literal[
    "story_archetype",
    "listing_marketing",
    "carousel_slide",
    "social_post",
    "agent_branding",
    "market_update",
]
TemplateStatus = Literal["draft", "published", "archived"]
LayerType = Literal["text", "image", "shape", "gradient", "container"]
VariableType = Literal["string", "number", "color", "image", "boolean"]
OutputFormat = Literal["png", "jpeg", "webp"]


def is_uuid(value: Optional[str]) -> bool:
    return bool(value and UUID_PATTERN.match(value))


# ============================================================================
# TEMPLATE DEFINITION
# ============================================================================

class CanvasSchema(BaseModel):
    width: int = Field(ge=100, le=4096)
    height: int = Field(ge=100, le=4096)
    backgroundColor: Optional[str] = None
    backgroundImage: Optional[str] = None


class LayerSchema(BaseModel):
    """One drawable layer; unknown keys (zIndex, overlay, children) pass through to the renderer"""

    id: str = Field(min_length=1)
    name: Optional[str] = None
    type: LayerType
    visible: Optional[bool] = None
    opacity: Optional[float] = Field(default=None, ge=0, le=1)
    position: dict[str, Any]
    content: dict[str, Any]

    class Config:
        extra = "allow"


class VariableSchema(BaseModel):
    name: str = Field(min_length=1)
    displayName: Optional[str] = None
    type: VariableType
    required: Optional[bool] = None
    default: Optional[Union[str, float, bool]] = None
    source: Optional[str] = None
    path: Optional[str] = None


class BrandKitBindings(BaseModel):
    primaryColor: Optional[str] = None
    secondaryColor: Optional[str] = None
    fontFamily: Optional[str] = None
    logoUrl: Optional[str] = None
    headshotUrl: Optional[str] = None


class TemplateDefinition(BaseModel):
    """Inline template passed straight to the renderer"""

    canvas: Optional[CanvasSchema] = None
    layers: list[LayerSchema] = []

    class Config:
        extra = "allow"


class TemplateCreate(BaseModel):
    slug: str = Field(min_length=1, max_length=100)
    version: str = "1.0.0"
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: TemplateCategory
    subcategory: Optional[str] = None
    extends: Optional[str] = None
    canvas: CanvasSchema = CanvasSchema(width=1080, height=1350)
    layers: list[LayerSchema] = []
    variables: list[VariableSchema] = []
    brandKitBindings: Optional[BrandKitBindings] = None
    status: TemplateStatus = "draft"
    isPublic: bool = False

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v):
        if not SLUG_PATTERN.match(v):
            raise ValueError("Slug must be lowercase letters, numbers and hyphens")
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v):
        if not VERSION_PATTERN.match(v):
            raise ValueError("Version must look like 1.0.0")
        return v


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[TemplateCategory] = None
    subcategory: Optional[str] = None
    canvas: Optional[CanvasSchema] = None
    layers: Optional[list[LayerSchema]] = None
    variables: Optional[list[VariableSchema]] = None
    brandKitBindings: Optional[BrandKitBindings] = None
    status: Optional[TemplateStatus] = None
    extends: Optional[str] = None


# ============================================================================
# RENDER REQUESTS
# ============================================================================

def _has_template_source(data) -> bool:
    return bool(data.templateId or data.templateSlug or data.template)


class RenderImageRequest(BaseModel):
    templateId: Optional[str] = None
    templateSlug: Optional[str] = None
    template: Optional[TemplateDefinition] = None
    variables: dict[str, Any] = {}
    brandKit: Optional[dict[str, Any]] = None
    format: OutputFormat = "png"
    quality: int = Field(default=90, ge=1, le=100)
    width: Optional[int] = Field(default=None, ge=100, le=4096)
    height: Optional[int] = Field(default=None, ge=100, le=4096)
    jobId: Optional[str] = None
    webhookUrl: Optional[str] = None

    @field_validator("templateId", "jobId")
    @classmethod
    def validate_uuid(cls, v):
        if v is not None and not is_uuid(v):
            raise ValueError("Must be a UUID")
        return v

    @model_validator(mode="after")
    def require_template_source(self):
        if not _has_template_source(self):
            raise ValueError("Must provide templateId, templateSlug, or inline template")
        return self


class CarouselSlide(BaseModel):
    position: int = Field(ge=0, le=9)
    templateId: Optional[str] = None
    templateSlug: Optional[str] = None
    template: Optional[TemplateDefinition] = None
    variables: dict[str, Any] = {}
    width: Optional[int] = Field(default=None, ge=100, le=4096)
    height: Optional[int] = Field(default=None, ge=100, le=4096)

    @model_validator(mode="after")
    def require_template_source(self):
        if not _has_template_source(self):
            raise ValueError("Must provide templateId, templateSlug, or inline template")
        return self


class RenderCarouselRequest(BaseModel):
    slides: list[CarouselSlide] = Field(min_length=1, max_length=10)
    brandKit: Optional[dict[str, Any]] = None
    lifeHereData: Optional[dict[str, Any]] = None
    listingData: Optional[dict[str, Any]] = None
    agentData: Optional[dict[str, Any]] = None
    format: OutputFormat = "png"
    quality: int = Field(default=90, ge=1, le=100)
    parallel: bool = True
    maxConcurrent: int = Field(default=5, ge=1, le=10)
    jobId: Optional[str] = None
    webhookUrl: Optional[str] = None
