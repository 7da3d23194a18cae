"""Integrations router - staff endpoints for the provider integrations"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ...auth import require_staff
from ...config import PORTAL_URL
from ...database import get_db
from ...models import Staff
from ...rate_limiter import create_rate_limiter
from ...services import faa_airspace, mls_service
from ...services.aloft_service import get_aloft_service
from ...services.slack_service import get_slack_service
from ...services.stripe_connect_service import get_stripe_connect_service
from .schemas import (
    AirspaceCheckRequest,
    BannerbearCarouselRequest,
    ConnectOnboardRequest,
    ContentRequest,
    FloorPlanOrderRequest,
    HDRSubmitRequest,
    MLSCredentialRequest,
    MLSUploadRequest,
    RedrawRequest,
    SlackMessageRequest,
    TransferRequest,
    WebhookSubscriptionCreate,
    WebhookSubscriptionResponse,
    WebhookSubscriptionUpdate,
)
from .service import IntegrationsService, subscription_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["Integrations"], dependencies=[Depends(require_staff)])

# Stripe sends staff back here after hosted onboarding, so no bearer token
connect_router = APIRouter(prefix="/connect", tags=["Stripe Connect"])

airspace_rate_limit = create_rate_limiter("airspace")


def get_integrations_service(db: Session = Depends(get_db)) -> IntegrationsService:
    return IntegrationsService(db)


# ============================================================================
# CUBICASA FLOOR PLANS
# ============================================================================


@router.post("/listings/{listing_id}/floor-plan")
async def order_floor_plan(
    listing_id: str, data: FloorPlanOrderRequest, service: IntegrationsService = Depends(get_integrations_service)
):
    return await service.order_floor_plan(listing_id, data.floorPlanTypes, data.floorCount, data.notes)


@router.get("/listings/{listing_id}/floor-plan")
async def floor_plan_status(listing_id: str, service: IntegrationsService = Depends(get_integrations_service)):
    return await service.floor_plan_status(listing_id)


@router.post("/listings/{listing_id}/floor-plan/redraw")
async def request_redraw(
    listing_id: str, data: RedrawRequest, service: IntegrationsService = Depends(get_integrations_service)
):
    return await service.request_redraw(listing_id, data.notes, data.areasToFix, data.priority)


@router.delete("/listings/{listing_id}/floor-plan")
async def cancel_floor_plan(listing_id: str, service: IntegrationsService = Depends(get_integrations_service)):
    return await service.cancel_floor_plan(listing_id)


# ============================================================================
# FOUNDDR HDR
# ============================================================================


@router.post("/listings/{listing_id}/hdr", status_code=202)
async def submit_hdr(
    listing_id: str, data: HDRSubmitRequest, service: IntegrationsService = Depends(get_integrations_service)
):
    return await service.submit_hdr(listing_id, data.inputKeys, data.assetIds, data.preset, data.options)


# ============================================================================
# DRONE AIRSPACE
# ============================================================================


@router.post("/airspace/check", dependencies=[Depends(airspace_rate_limit)])
async def check_airspace(data: AirspaceCheckRequest):
    """FAA airspace class, LAANC requirements and advisories for a location"""
    result = faa_airspace.check_airspace(data.latitude, data.longitude, data.address)
    if data.listingId:
        result["qualification"] = get_aloft_service().qualify_booking_location(
            data.listingId, data.address or "", data.latitude, data.longitude
        )
    return result


@router.get("/airspace/can-fly", dependencies=[Depends(airspace_rate_limit)])
async def can_fly(latitude: float, longitude: float):
    return faa_airspace.can_fly_drone(latitude, longitude)


# ============================================================================
# MLS
# ============================================================================


@router.get("/mls/providers")
async def list_mls_providers(db: Session = Depends(get_db)):
    return {"providers": mls_service.list_providers(db)}


@router.post("/mls/credentials")
async def save_mls_credentials(data: MLSCredentialRequest, db: Session = Depends(get_db)):
    result = await mls_service.save_credentials(
        db, data.agentId, data.provider, data.mlsAgentId, data.password, data.officeId
    )
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])
    return result


@router.post("/listings/{listing_id}/mls/upload")
async def upload_to_mls(
    listing_id: str, data: MLSUploadRequest, service: IntegrationsService = Depends(get_integrations_service)
):
    return await service.upload_to_mls(listing_id, data.agentId, data.provider, data.mlsListingId, data.replaceExisting)


# ============================================================================
# STRIPE CONNECT PAYOUTS
# ============================================================================


@router.post("/connect/staff/{staff_id}/onboard")
async def onboard_staff(
    staff_id: str, data: ConnectOnboardRequest, service: IntegrationsService = Depends(get_integrations_service)
):
    return await service.onboard_staff(staff_id, data.businessType)


@router.get("/connect/staff/{staff_id}/status")
async def staff_connect_status(staff_id: str, service: IntegrationsService = Depends(get_integrations_service)):
    return await service.staff_connect_status(staff_id)


@router.post("/connect/staff/{staff_id}/login-link")
async def staff_login_link(staff_id: str, service: IntegrationsService = Depends(get_integrations_service)):
    return await service.staff_login_link(staff_id)


@router.post("/connect/transfers")
async def create_transfer(data: TransferRequest, service: IntegrationsService = Depends(get_integrations_service)):
    return await service.pay_staff(data.staffId, data.orderId, data.amountCents, data.description)


@router.get("/connect/transfers/{order_id}")
async def transfers_for_order(order_id: str):
    return {"transfers": await get_stripe_connect_service().get_transfers_for_order(order_id)}


@router.get("/connect/balance")
async def connect_balance():
    balance = await get_stripe_connect_service().get_balance()
    if balance is None:
        raise HTTPException(status_code=502, detail="Failed to fetch balance")
    return balance


@connect_router.get("/refresh")
async def connect_refresh(type: str, id: str, db: Session = Depends(get_db)):
    """Expired onboarding link: mint a fresh one and send the user back to Stripe"""
    staff = db.query(Staff).filter(Staff.id == id).first()
    if type != "staff" or not staff or not staff.stripe_connect_id:
        return RedirectResponse(f"{PORTAL_URL}/team/payouts?error=onboarding")
    result = await get_stripe_connect_service().generate_onboarding_link(staff.stripe_connect_id, staff.id, type)
    if not result["success"]:
        return RedirectResponse(f"{PORTAL_URL}/team/payouts?error=onboarding")
    return RedirectResponse(result["onboardingUrl"])


@connect_router.get("/return")
async def connect_return(type: str, id: str, db: Session = Depends(get_db)):
    staff = db.query(Staff).filter(Staff.id == id).first()
    if type == "staff" and staff:
        await get_stripe_connect_service().sync_account_status(db, staff)
    return RedirectResponse(f"{PORTAL_URL}/team/payouts?onboarding=complete")


# ============================================================================
# AI CONTENT AND SOCIAL RENDERS
# ============================================================================


@router.post("/listings/{listing_id}/content")
async def generate_content(
    listing_id: str, data: ContentRequest, service: IntegrationsService = Depends(get_integrations_service)
):
    return await service.generate_content(
        listing_id, data.carouselTypes, data.neighborhood, data.questions, data.answers
    )


@router.post("/listings/{listing_id}/carousel", status_code=202)
async def render_carousel(
    listing_id: str, data: BannerbearCarouselRequest, service: IntegrationsService = Depends(get_integrations_service)
):
    return await service.render_bannerbear_carousel(listing_id, data.templateSet, data.photoUrls)


# ============================================================================
# SLACK
# ============================================================================


@router.get("/slack/channels")
async def slack_channels():
    return {"channels": await get_slack_service().list_channels()}


@router.post("/slack/message")
async def slack_message(data: SlackMessageRequest):
    slack = get_slack_service()
    if not slack.is_configured():
        raise HTTPException(status_code=503, detail="Slack not configured")
    result = await slack.send_message(data.channel, data.text)
    if not result.get("ok"):
        raise HTTPException(status_code=502, detail=result.get("error") or "Slack request failed")
    return {"success": True, "ts": result.get("ts")}


# ============================================================================
# OUTBOUND WEBHOOKS
# ============================================================================


@router.get("/webhooks", response_model=list[WebhookSubscriptionResponse])
async def list_webhooks(service: IntegrationsService = Depends(get_integrations_service)):
    return [subscription_to_response(s) for s in service.list_subscriptions()]


@router.post("/webhooks", response_model=WebhookSubscriptionResponse, status_code=201)
async def create_webhook(
    data: WebhookSubscriptionCreate, service: IntegrationsService = Depends(get_integrations_service)
):
    return subscription_to_response(service.create_subscription(data))


@router.patch("/webhooks/{subscription_id}", response_model=WebhookSubscriptionResponse)
async def update_webhook(
    subscription_id: str,
    data: WebhookSubscriptionUpdate,
    service: IntegrationsService = Depends(get_integrations_service),
):
    return subscription_to_response(service.update_subscription(subscription_id, data))


@router.delete("/webhooks/{subscription_id}")
async def delete_webhook(subscription_id: str, service: IntegrationsService = Depends(get_integrations_service)):
    return service.delete_subscription(subscription_id)


@router.post("/webhooks/{subscription_id}/test")
async def test_webhook(subscription_id: str, service: IntegrationsService = Depends(get_integrations_service)):
    return await service.test_subscription(subscription_id)
