"""
Cubicasa Service
Floor plan orders: create, track, scan links, downloads and redraw requests.
Delivered plans arrive through the /webhooks/cubicasa endpoint.
"""

import logging
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ..config import APP_URL, CUBICASA_API_KEY, CUBICASA_ENVIRONMENT
from ..models import JobEvent, Listing, MediaAsset

logger = logging.getLogger(__name__)

CUBICASA_URLS = {
    "production": "https://api.cubi.casa/api/v3",
    "staging": "https://api-staging.cubi.casa/api/v3",
}

FLOOR_PLAN_TYPES = ("2d_basic", "2d_premium", "3d_basic", "3d_premium")

# webhook event -> listing.cubicasa_status
WEBHOOK_STATUS = {
    "delivered": "delivered",
    "model_modified": "delivered",
    "deleted": "not_applicable",
    "failed": "failed",
}


class CubicasaError(Exception):
    """Non-2xx response from the Cubicasa API"""

    def __init__(self, status_code: int):
        super().__init__(f"Cubicasa API error: {status_code}")
        self.status_code = status_code


class CubicasaService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        environment: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else (CUBICASA_API_KEY or "")
        self.base_url = CUBICASA_URLS.get(environment or CUBICASA_ENVIRONMENT, CUBICASA_URLS["production"])
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _request(self, method: str, path: str, json: Optional[dict] = None, params: Optional[dict] = None):
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.request(method, f"{self.base_url}{path}", json=json, params=params, headers=headers)

        if not response.is_success:
            logger.error(f"❌ Cubicasa {method} {path} failed: {response.status_code}")
            raise CubicasaError(response.status_code)
        return response.json() if response.content else {}

    async def create_order(
        self,
        address: dict,
        reference_id: str,
        property_type: str = "residential",
        estimated_sqft: Optional[int] = None,
        floor_count: int = 1,
        floor_plan_types: Optional[list[str]] = None,
        notes: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> dict:
        """
        Order a floor plan for a property

        Args:
            address: {street, city, state, postal_code, country}
            reference_id: Our listing id, echoed back in webhooks
        """
        body = {
            "address": {
                "street": address.get("street"),
                "city": address.get("city"),
                "state": address.get("state"),
                "postal_code": address.get("postal_code"),
                "country": address.get("country") or "US",
            },
            "property_type": property_type,
            "estimated_sqft": estimated_sqft,
            "floor_count": floor_count,
            "floor_plan_types": floor_plan_types or ["2d_basic"],
            "notes": notes,
            "reference_id": reference_id,
            "webhook_url": webhook_url or f"{APP_URL}/api/webhooks/cubicasa",
        }
        result = await self._request("POST", "/orders", json=body)
        logger.info(f"✅ Cubicasa order {result.get('order_id')} created for {reference_id}")
        return result

    async def get_order(self, order_id: str) -> dict:
        return await self._request("GET", f"/orders/{order_id}")

    async def generate_go_to_scan_link(self, order_id: str) -> dict:
        """Link the photographer opens on site to scan with the Cubicasa app"""
        return await self._request("POST", f"/orders/{order_id}/go-to-scan")

    async def request_redraw(
        self, order_id: str, notes: str, areas_to_fix: Optional[list[str]] = None, priority: str = "normal"
    ) -> dict:
        body = {"notes": notes, "areas_to_fix": areas_to_fix or [], "priority": priority}
        return await self._request("POST", f"/orders/{order_id}/redraw", json=body)

    async def cancel_order(self, order_id: str) -> dict:
        try:
            await self._request("DELETE", f"/orders/{order_id}")
        except (CubicasaError, httpx.HTTPError) as e:
            logger.error(f"❌ Failed to cancel Cubicasa order {order_id}: {e}")
            return {"success": False, "message": "Failed to cancel order"}
        return {"success": True, "message": "Order cancelled"}


_cubicasa_service: Optional[CubicasaService] = None


def get_cubicasa_service() -> CubicasaService:
    global _cubicasa_service
    if _cubicasa_service is None:
        _cubicasa_service = CubicasaService()
    return _cubicasa_service


# ============================================================================
# WEBHOOKS
# ============================================================================


def _floor_plan_url(data: dict) -> Optional[str]:
    return data.get("floor_plan_2d_url") or data.get("floor_plan_url") or data.get("floor_plan_3d_url")


def _upsert_floor_plan(db: Session, listing: Listing, data: dict) -> Optional[MediaAsset]:
    url = _floor_plan_url(data)
    if not url:
        return None
    asset = (
        db.query(MediaAsset)
        .filter(MediaAsset.listing_id == listing.id, MediaAsset.type == "floorplan")
        .first()
    )
    metadata = {
        "source": "cubicasa",
        "floor_plan_3d_url": data.get("floor_plan_3d_url"),
        "pdf_url": data.get("pdf_url"),
    }
    if asset:
        asset.media_url = url
        asset.metadata_json = {**(asset.metadata_json or {}), **metadata}
    else:
        asset = MediaAsset(
            listing_id=listing.id,
            type="floorplan",
            category="floor_plan",
            media_url=url,
            qc_status="approved",
            metadata_json=metadata,
        )
        db.add(asset)
    return asset


def apply_cubicasa_webhook(db: Session, payload: dict) -> dict:
    """
    Apply a Cubicasa order event to the listing that owns the order.

    Returns:
        {"success": True, "listing_id", "previous_status", "new_status"}, or an
        acknowledgement when no listing carries the order id
    """
    order_id = payload.get("order_id")
    event = payload.get("event")
    data = payload.get("data") or {}

    listing = db.query(Listing).filter(Listing.cubicasa_order_id == order_id).first()
    if not listing:
        logger.warning(f"⚠️ Cubicasa webhook for unknown order {order_id}")
        return {"acknowledged": True, "message": f"Order {order_id} not found"}

    previous = listing.cubicasa_status
    new_status = WEBHOOK_STATUS.get(event, previous)
    listing.cubicasa_status = new_status

    if event in ("delivered", "model_modified"):
        _upsert_floor_plan(db, listing, data)
        if data.get("square_footage"):
            listing.sqft = int(data["square_footage"])

    db.add(
        JobEvent(
            listing_id=listing.id,
            event_type=f"cubicasa_{event}",
            old_value={"cubicasa_status": previous},
            new_value={"cubicasa_status": new_status, "order_id": order_id},
            actor_type="webhook",
        )
    )
    db.commit()
    logger.info(f"📐 Cubicasa {event} for order {order_id}: {previous} -> {new_status}")
    return {"success": True, "listing_id": listing.id, "previous_status": previous, "new_status": new_status}
