"""
Integrations service - staff-facing actions against the third-party providers.

Provider clients live in app/services; this layer ties them to listings,
staff and agents and turns provider failures into HTTP errors.
"""

import logging
from typing import Optional

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...circuit_breaker import CircuitOpenError
from ...models import Listing
from ...models_integrations import WebhookSubscription
from ...models_render import RenderJob
from ...services import mls_service
from ...services.bannerbear_service import (
    CAROUSEL_TEMPLATES,
    BannerbearError,
    build_listing_modifications,
    get_bannerbear_service,
)
from ...services.content_generator import get_content_generator
from ...services.cubicasa_service import CubicasaError, get_cubicasa_service
from ...services.founddr_service import DEFAULT_PRESET, FoundDRError, FoundDRService
from ...services.stripe_connect_service import get_stripe_connect_service
from ...services.webhook_dispatch import send_test_event
from .repository import IntegrationsRepository
from .schemas import WebhookSubscriptionCreate, WebhookSubscriptionUpdate

logger = logging.getLogger(__name__)


def listing_to_dict(listing: Listing) -> dict:
    return {
        "id": listing.id,
        "address": listing.address,
        "city": listing.city,
        "state": listing.state,
        "zip": listing.zip,
        "beds": listing.beds,
        "baths": listing.baths,
        "sqft": listing.sqft,
        "price": listing.price,
        "property_type": listing.property_type,
    }


def agent_to_dict(agent) -> dict:
    if agent is None:
        return {}
    return {
        "name": agent.name,
        "email": agent.email,
        "phone": agent.phone,
        "title": agent.title,
        "brokerage_name": agent.brokerage_name,
        "headshot_url": agent.headshot_url,
        "brand_color": agent.brand_color,
    }


def subscription_to_response(subscription: WebhookSubscription) -> dict:
    return {
        "id": subscription.id,
        "name": subscription.name,
        "description": subscription.description,
        "webhookUrl": subscription.webhook_url,
        "events": subscription.events or [],
        "filterConditions": subscription.filter_conditions,
        "isActive": subscription.is_active,
        "lastTriggeredAt": subscription.last_triggered_at,
        "lastStatus": subscription.last_status,
        "triggerCount": subscription.trigger_count or 0,
        "failureCount": subscription.failure_count or 0,
    }


class IntegrationsService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = IntegrationsRepository()

    def _get_listing(self, listing_id: str) -> Listing:
        listing = self.repo.get_listing(self.db, listing_id)
        if not listing:
            raise HTTPException(status_code=404, detail="Listing not found")
        return listing

    def _get_staff(self, staff_id: str):
        staff = self.repo.get_staff(self.db, staff_id)
        if not staff:
            raise HTTPException(status_code=404, detail="Staff member not found")
        return staff

    # ------------------------------------------------------------------
    # Cubicasa
    # ------------------------------------------------------------------

    async def order_floor_plan(
        self, listing_id: str, floor_plan_types: list[str], floor_count: int = 1, notes: Optional[str] = None
    ) -> dict:
        listing = self._get_listing(listing_id)
        if listing.cubicasa_order_id and listing.cubicasa_status not in ("failed", "not_applicable"):
            raise HTTPException(status_code=409, detail="Floor plan already ordered for this listing")

        cubicasa = get_cubicasa_service()
        if not cubicasa.is_configured():
            raise HTTPException(status_code=503, detail="Cubicasa not configured")

        try:
            order = await cubicasa.create_order(
                address={
                    "street": listing.address,
                    "city": listing.city,
                    "state": listing.state,
                    "postal_code": listing.zip,
                },
                reference_id=listing.id,
                property_type=listing.property_type or "residential",
                estimated_sqft=listing.sqft,
                floor_count=floor_count,
                floor_plan_types=floor_plan_types,
                notes=notes,
            )
        except (CubicasaError, httpx.HTTPError) as e:
            logger.error(f"❌ Cubicasa order failed for listing {listing_id}: {e}")
            raise HTTPException(status_code=502, detail="Failed to create Cubicasa order") from e

        listing.cubicasa_order_id = order.get("order_id")
        listing.cubicasa_status = "ordered"
        self.db.commit()

        scan = {}
        try:
            scan = await cubicasa.generate_go_to_scan_link(listing.cubicasa_order_id)
        except (CubicasaError, httpx.HTTPError) as e:
            logger.warning(f"⚠️ No scan link for Cubicasa order {listing.cubicasa_order_id}: {e}")

        return {"success": True, "orderId": listing.cubicasa_order_id, "scanLink": scan.get("url")}

    async def floor_plan_status(self, listing_id: str) -> dict:
        listing = self._get_listing(listing_id)
        if not listing.cubicasa_order_id:
            return {"status": listing.cubicasa_status or "not_ordered", "order": None}
        try:
            order = await get_cubicasa_service().get_order(listing.cubicasa_order_id)
        except (CubicasaError, httpx.HTTPError) as e:
            logger.error(f"❌ Cubicasa status lookup failed for {listing.cubicasa_order_id}: {e}")
            raise HTTPException(status_code=502, detail="Failed to fetch Cubicasa order") from e
        return {"status": listing.cubicasa_status, "order": order}

    async def request_redraw(self, listing_id: str, notes: str, areas: list[str], priority: str) -> dict:
        listing = self._get_listing(listing_id)
        if not listing.cubicasa_order_id:
            raise HTTPException(status_code=400, detail="Listing has no Cubicasa order")
        try:
            result = await get_cubicasa_service().request_redraw(listing.cubicasa_order_id, notes, areas, priority)
        except (CubicasaError, httpx.HTTPError) as e:
            raise HTTPException(status_code=502, detail="Failed to request redraw") from e
        listing.cubicasa_status = "processing"
        self.db.commit()
        return {"success": True, "result": result}

    async def cancel_floor_plan(self, listing_id: str) -> dict:
        listing = self._get_listing(listing_id)
        if not listing.cubicasa_order_id:
            raise HTTPException(status_code=400, detail="Listing has no Cubicasa order")
        result = await get_cubicasa_service().cancel_order(listing.cubicasa_order_id)
        if result["success"]:
            listing.cubicasa_status = "not_applicable"
            self.db.commit()
        return result

    # ------------------------------------------------------------------
    # FoundDR
    # ------------------------------------------------------------------

    async def submit_hdr(
        self,
        listing_id: str,
        input_keys: list[str],
        asset_ids: list[str],
        preset: Optional[str] = None,
        options: Optional[dict] = None,
        founddr: Optional[FoundDRService] = None,
    ) -> dict:
        listing = self._get_listing(listing_id)
        founddr = founddr or FoundDRService()
        if not founddr.is_configured():
            raise HTTPException(status_code=503, detail="FoundDR not configured")
        try:
            job = await founddr.submit_job(
                self.db, listing.id, input_keys, asset_ids, preset or DEFAULT_PRESET, options
            )
        except CircuitOpenError as e:
            raise HTTPException(status_code=503, detail="HDR processing temporarily unavailable") from e
        except (FoundDRError, httpx.HTTPError) as e:
            raise HTTPException(status_code=502, detail=f"HDR submission failed: {e}") from e

        if listing.ops_status == "staged":
            listing.ops_status = "processing"
            self.db.commit()
        return {"success": True, "jobId": job.id, "founddrJobId": job.founddr_job_id, "status": job.status}

    # ------------------------------------------------------------------
    # MLS
    # ------------------------------------------------------------------

    async def upload_to_mls(
        self, listing_id: str, agent_id: str, provider: str, mls_listing_id: str, replace: bool = False
    ) -> dict:
        listing = self._get_listing(listing_id)
        photos = self.repo.get_deliverable_photos(self.db, listing.id)
        if not photos:
            raise HTTPException(status_code=400, detail="No approved photos to upload")

        client = mls_service.client_for_agent(self.db, agent_id, provider)
        if client is None:
            raise HTTPException(status_code=400, detail="No active MLS credentials for this provider")

        payload = [
            {"url": p.media_url, "caption": p.category, "order": index}
            for index, p in enumerate(photos, start=1)
        ]
        try:
            result = await client.upload_photos(mls_listing_id, payload, replace)
        except mls_service.MLSUploadError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        mls_service.record_sync(self.db, agent_id, provider, result)
        if result["success"] and not listing.mls_id:
            listing.mls_id = mls_listing_id
            self.db.commit()
        return result

    # ------------------------------------------------------------------
    # Stripe Connect
    # ------------------------------------------------------------------

    async def onboard_staff(self, staff_id: str, business_type: str = "individual") -> dict:
        staff = self._get_staff(staff_id)
        stripe = get_stripe_connect_service()
        if staff.stripe_connect_id:
            result = await stripe.generate_onboarding_link(staff.stripe_connect_id, staff.id)
            if result["success"]:
                result["accountId"] = staff.stripe_connect_id
        else:
            result = await stripe.create_connect_account(self.db, staff, business_type=business_type)
        if not result["success"]:
            raise HTTPException(status_code=502, detail=result["error"])
        return result

    async def staff_connect_status(self, staff_id: str) -> dict:
        staff = self._get_staff(staff_id)
        if not staff.stripe_connect_id:
            return {"status": "not_started", "payoutsEnabled": False}
        stripe = get_stripe_connect_service()
        info = await stripe.get_account_status(staff.stripe_connect_id)
        if info:
            await stripe.sync_account_status(self.db, staff)
            return info
        return {"status": staff.stripe_connect_status, "payoutsEnabled": bool(staff.stripe_payouts_enabled)}

    async def staff_login_link(self, staff_id: str) -> dict:
        staff = self._get_staff(staff_id)
        if not staff.stripe_connect_id:
            raise HTTPException(status_code=400, detail="Staff member has no Stripe account")
        url = await get_stripe_connect_service().create_login_link(staff.stripe_connect_id)
        if not url:
            raise HTTPException(status_code=502, detail="Failed to create login link")
        return {"url": url}

    async def pay_staff(self, staff_id: str, order_id: str, amount_cents: int, description: Optional[str]) -> dict:
        staff = self._get_staff(staff_id)
        if not staff.stripe_connect_id or not staff.stripe_payouts_enabled:
            raise HTTPException(status_code=400, detail="Staff member cannot receive payouts yet")
        result = await get_stripe_connect_service().create_transfer(
            amount_cents, staff.stripe_connect_id, order_id, staff_id=staff.id, description=description
        )
        if not result["success"]:
            raise HTTPException(status_code=502, detail=result["error"])
        return result

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def generate_content(
        self,
        listing_id: str,
        carousel_types: list[str],
        neighborhood: Optional[dict] = None,
        questions: Optional[list[dict]] = None,
        answers: Optional[dict] = None,
    ) -> dict:
        listing = self._get_listing(listing_id)
        agent = self.repo.get_agent(self.db, listing.agent_id)
        return await get_content_generator().generate_all(
            listing_to_dict(listing), agent_to_dict(agent), carousel_types, neighborhood, questions, answers
        )

    async def render_bannerbear_carousel(self, listing_id: str, template_set: str, photo_urls: list[str]) -> dict:
        listing = self._get_listing(listing_id)
        if template_set not in CAROUSEL_TEMPLATES:
            raise HTTPException(status_code=400, detail=f"Unknown template set: {template_set}")
        bannerbear = get_bannerbear_service()
        if not bannerbear.is_configured():
            raise HTTPException(status_code=503, detail="Bannerbear not configured")

        listing_data = listing_to_dict(listing)
        agent_data = agent_to_dict(self.repo.get_agent(self.db, listing.agent_id))
        slides = [build_listing_modifications(listing_data, agent_data, url) for url in photo_urls]

        job = RenderJob(
            job_type="carousel",
            status="processing",
            render_engine="bannerbear",
            input_data={"listingId": listing.id, "templateSet": template_set, "photoUrls": photo_urls},
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)

        try:
            collection = await bannerbear.create_collection(CAROUSEL_TEMPLATES[template_set], slides, metadata=job.id)
        except (BannerbearError, CircuitOpenError, httpx.HTTPError) as e:
            job.status = "failed"
            job.error_message = str(e)
            self.db.commit()
            raise HTTPException(status_code=502, detail="Failed to start Bannerbear render") from e

        job.metadata_json = {"bannerbearUid": collection.get("uid")}
        self.db.commit()
        return {"success": True, "jobId": job.id, "bannerbearUid": collection.get("uid"), "status": job.status}

    # ------------------------------------------------------------------
    # Outbound webhooks
    # ------------------------------------------------------------------

    def list_subscriptions(self) -> list[WebhookSubscription]:
        return self.repo.list_subscriptions(self.db)

    def _get_subscription(self, subscription_id: str) -> WebhookSubscription:
        subscription = self.repo.get_subscription(self.db, subscription_id)
        if not subscription:
            raise HTTPException(status_code=404, detail="Webhook not found")
        return subscription

    def create_subscription(self, data: WebhookSubscriptionCreate) -> WebhookSubscription:
        subscription = self.repo.create_subscription(
            self.db,
            name=data.name,
            description=data.description,
            webhook_url=str(data.webhookUrl),
            secret_key=data.secretKey,
            events=data.events,
            filter_conditions=data.filterConditions,
            headers=data.headers,
            is_active=True,
            trigger_count=0,
            failure_count=0,
        )
        logger.info(f"✅ Webhook {subscription.id} created for {', '.join(data.events)}")
        return subscription

    def update_subscription(self, subscription_id: str, data: WebhookSubscriptionUpdate) -> WebhookSubscription:
        subscription = self._get_subscription(subscription_id)
        fields = {
            "name": "name",
            "description": "description",
            "secretKey": "secret_key",
            "events": "events",
            "filterConditions": "filter_conditions",
            "headers": "headers",
            "isActive": "is_active",
        }
        updates = data.model_dump(exclude_unset=True)
        for key, column in fields.items():
            if key in updates:
                setattr(subscription, column, updates[key])
        if "webhookUrl" in updates and data.webhookUrl is not None:
            subscription.webhook_url = str(data.webhookUrl)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def delete_subscription(self, subscription_id: str) -> dict:
        self.repo.delete_subscription(self.db, self._get_subscription(subscription_id))
        return {"success": True}

    async def test_subscription(self, subscription_id: str, client: Optional[httpx.AsyncClient] = None) -> dict:
        return await send_test_event(self.db, self._get_subscription(subscription_id), client)
