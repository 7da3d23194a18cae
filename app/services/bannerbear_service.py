"""
Bannerbear Service
Hosted social image rendering. Single images use a template, carousels use a
template set with one modification list per slide. Finished renders are
posted back to /api/webhooks/bannerbear.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ..circuit_breaker import with_circuit_breaker
from ..config import APP_URL, BANNERBEAR_API_KEY
from ..models_render import RenderJob

logger = logging.getLogger(__name__)

BANNERBEAR_API_URL = "https://api.bannerbear.com/v2"

CAROUSEL_TEMPLATES = {
    "instagram": "instagram-carousel-template",
    "facebook": "facebook-carousel-template",
    "story": "story-carousel-template",
}

MODIFICATION_VALUE_KEYS = ("text", "image_url", "color")


class BannerbearError(Exception):
    pass


def is_valid_modification(modification: dict) -> bool:
    """A modification names a layer and sets at least one of text, image_url or color"""
    if not modification.get("name"):
        return False
    return any(modification.get(key) is not None for key in MODIFICATION_VALUE_KEYS)


def build_listing_modifications(
    listing: dict, agent: Optional[dict] = None, photo_url: Optional[str] = None
) -> list[dict]:
    """Standard listing layers shared by the social templates"""
    modifications = [
        {"name": "address", "text": listing.get("address", "")},
        {"name": "price", "text": f"${listing['price']:,.0f}" if listing.get("price") else ""},
        {
            "name": "details",
            "text": " | ".join(
                part
                for part in (
                    f"{listing['beds']} Beds" if listing.get("beds") else "",
                    f"{listing['baths']} Baths" if listing.get("baths") else "",
                    f"{listing['sqft']:,} Sq Ft" if listing.get("sqft") else "",
                )
                if part
            ),
        },
    ]
    if photo_url:
        modifications.append({"name": "photo", "image_url": photo_url})
    if agent:
        modifications.append({"name": "agent_name", "text": agent.get("name", "")})
        if agent.get("headshot_url"):
            modifications.append({"name": "agent_photo", "image_url": agent["headshot_url"]})
        if agent.get("brand_color"):
            modifications.append({"name": "brand_bar", "color": agent["brand_color"]})
    return modifications


class BannerbearService:
    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key if api_key is not None else (BANNERBEAR_API_KEY or "")
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        if not self.is_configured():
            raise BannerbearError("Bannerbear not configured")

        async def call():
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{BANNERBEAR_API_URL}{path}",
                    json=json,
                    headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                )
            if not response.is_success:
                raise BannerbearError(f"Bannerbear API error: {response.status_code}")
            return response.json()

        return await with_circuit_breaker("bannerbear", call)

    async def create_collection(
        self,
        template_set: str,
        slide_modifications: list[list[dict]],
        metadata: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> dict:
        if not slide_modifications:
            raise BannerbearError("At least one slide is required")
        for slide in slide_modifications:
            invalid = [m.get("name") for m in slide if not is_valid_modification(m)]
            if invalid:
                raise BannerbearError(f"Invalid modifications: {', '.join(str(n) for n in invalid)}")
        body = {
            "template_set": template_set,
            "modifications": slide_modifications,
            "webhook_url": webhook_url or f"{APP_URL}/api/webhooks/bannerbear",
        }
        if metadata:
            body["metadata"] = metadata
        result = await self._request("POST", "/collections", body)
        logger.info(f"📤 Bannerbear collection {result.get('uid')} requested ({len(slide_modifications)} slides)")
        return result

def summarize_render(payload: dict) -> dict:
    """Flatten a Bannerbear image or collection callback into {uid, status, imageUrls}"""
    if "images" in payload:
        urls = [img.get("image_url") for img in payload.get("images") or [] if img.get("image_url")]
    else:
        urls = [payload["image_url"]] if payload.get("image_url") else []
    return {
        "uid": payload.get("uid"),
        "status": payload.get("status"),
        "metadata": payload.get("metadata"),
        "imageUrls": urls,
        "renderTimeMs": payload.get("render_time_ms"),
    }


def apply_bannerbear_webhook(db: Session, payload: dict) -> dict:
    """Complete the RenderJob whose id was sent to Bannerbear as metadata"""
    summary = summarize_render(payload)
    job = db.query(RenderJob).filter(RenderJob.id == summary["metadata"]).first() if summary["metadata"] else None
    if not job:
        logger.warning(f"⚠️ Bannerbear webhook {summary['uid']} has no matching render job")
        return {"acknowledged": True, "message": "Render job not found"}

    if summary["status"] == "completed":
        job.status = "completed"
        job.output_urls = summary["imageUrls"]
        job.render_time_ms = summary["renderTimeMs"]
    else:
        job.status = "failed"
        job.error_message = f"Bannerbear render {summary['status']}"
    job.completed_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(f"🖼️ Bannerbear {summary['uid']} -> render job {job.id} {job.status}")
    return {"success": True, "jobId": job.id, "status": job.status}


_bannerbear_service: Optional[BannerbearService] = None


def get_bannerbear_service() -> BannerbearService:
    global _bannerbear_service
    if _bannerbear_service is None:
        _bannerbear_service = BannerbearService()
    return _bannerbear_service
