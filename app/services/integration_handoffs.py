"""
Integration handoffs

Runs when a third-party integration (Cubicasa floor plans, Zillow 3D tours)
changes state on a listing:
- delivered/live: tell editors the output is ready, and once every integration
  is finished move the listing on to ready_for_qc
- failed/needs_manual: alert admins and record the failure on the job timeline
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..config import PORTAL_URL
from ..models import Agent, JobEvent, Listing, Staff
from .notification_service import send_notification
from .webhook_dispatch import dispatch_event

logger = logging.getLogger(__name__)

COMPLETE_NAMES = {"cubicasa": "Floor plans", "zillow_3d": "3D tour"}
FAILED_NAMES = {"cubicasa": "Cubicasa (floor plans)", "zillow_3d": "Zillow 3D (virtual tour)"}

COMPLETE_STATUSES = ("delivered", "live")
FAILED_STATUSES = ("failed", "needs_manual")
ADVANCEABLE_OPS_STATUSES = ("staged", "processing")

MAX_EDITORS_NOTIFIED = 3
MAX_ADMINS_NOTIFIED = 2


def all_integrations_complete(listing: Listing) -> bool:
    """Each integration is finished when delivered/live or not needed for this listing"""
    cubicasa_done = listing.cubicasa_status in ("delivered", "not_applicable")
    zillow_done = listing.zillow_3d_status in ("live", "not_applicable")
    return cubicasa_done and zillow_done


def _active_staff(db: Session, role: str, limit: int) -> list[Staff]:
    return db.query(Staff).filter(Staff.role == role, Staff.is_active.is_(True)).limit(limit).all()


def _dashboard_url(listing_id: str) -> str:
    return f"{PORTAL_URL}/admin/ops/jobs/{listing_id}"


async def _notify_staff(db: Session, staff: Staff, notification_type: str, data: dict, listing_id: str) -> None:
    try:
        await send_notification(
            db,
            notification_type,
            {"email": staff.email, "phone": staff.phone, "name": staff.name, "type": "staff"},
            channel="both" if staff.phone else "email",
            data={"recipient_name": staff.name, **data},
            listing_id=listing_id,
        )
    except Exception as e:
        logger.error(f"❌ Failed to notify {staff.id} about {notification_type} on {listing_id}: {e}")


async def handle_integration_complete(db: Session, listing: Listing, integration: str) -> bool:
    """
    Returns:
        True when the listing was advanced to ready_for_qc
    """
    data = {
        "integration_name": COMPLETE_NAMES.get(integration, integration),
        "property_address": listing.address,
        "listing_address": listing.address,
        "listing_id": listing.id,
        "dashboard_url": _dashboard_url(listing.id),
    }
    for editor in _active_staff(db, "editor", MAX_EDITORS_NOTIFIED):
        await _notify_staff(db, editor, "integration_complete", data, listing.id)

    if not all_integrations_complete(listing):
        return False

    logger.info(f"✅ All integrations complete for listing {listing.id}")
    completed = [
        name
        for name, done in (
            ("cubicasa", listing.cubicasa_status == "delivered"),
            ("zillow_3d", listing.zillow_3d_status == "live"),
        )
        if done
    ]
    try:
        await dispatch_event(
            db,
            "integrations.all_complete",
            {
                "listingId": listing.id,
                "agentId": listing.agent_id,
                "address": listing.address,
                "completedIntegrations": completed,
            },
        )
    except Exception as e:
        logger.error(f"❌ integrations.all_complete dispatch failed for {listing.id}: {e}")

    previous_status = listing.ops_status
    if previous_status not in ADVANCEABLE_OPS_STATUSES:
        return False

    listing.ops_status = "ready_for_qc"
    db.add(
        JobEvent(
            listing_id=listing.id,
            event_type="auto_status_advance",
            old_value={"ops_status": previous_status},
            new_value={"ops_status": "ready_for_qc", "reason": "all_integrations_complete"},
            actor_type="system",
        )
    )
    db.commit()
    logger.info(f"🔄 Listing {listing.id} advanced {previous_status} -> ready_for_qc")

    agent = db.query(Agent).filter(Agent.id == listing.agent_id).first() if listing.agent_id else None
    if agent:
        try:
            await send_notification(
                db,
                "status_update",
                {"email": agent.email, "name": agent.name, "type": "agent"},
                channel="email",
                data={
                    "agent_name": agent.name,
                    "listing_address": listing.address,
                    "previous_status": previous_status,
                    "new_status": "ready_for_qc",
                    "message": "All media processing is complete and your listing is entering quality review.",
                },
                listing_id=listing.id,
            )
        except Exception as e:
            logger.error(f"❌ Failed to notify agent {agent.id} of ready_for_qc: {e}")

    return True


async def handle_integration_failed(
    db: Session, listing: Listing, integration: str, new_status: str, external_id: Optional[str] = None
) -> None:
    data = {
        "integration_name": FAILED_NAMES.get(integration, integration),
        "property_address": listing.address,
        "listing_address": listing.address,
        "listing_id": listing.id,
        "status": new_status,
        "dashboard_url": _dashboard_url(listing.id),
    }
    for admin in _active_staff(db, "admin", MAX_ADMINS_NOTIFIED):
        await _notify_staff(db, admin, "integration_failed", data, listing.id)

    db.add(
        JobEvent(
            listing_id=listing.id,
            event_type="integration_failure",
            new_value={"integration": integration, "status": new_status, "external_id": external_id},
            actor_type="system",
        )
    )
    db.commit()
    logger.warning(f"⚠️ {integration} {new_status} for listing {listing.id}")


async def process_integration_handoff(
    db: Session,
    listing_id: str,
    integration: str,
    previous_status: Optional[str],
    new_status: str,
    external_id: Optional[str] = None,
) -> None:
    """Entry point used by the provider webhook handlers"""
    logger.info(f"🔄 Integration status change: {integration} {previous_status} -> {new_status} ({listing_id})")

    listing = db.query(Listing).filter(Listing.id == listing_id).first()
    if not listing:
        logger.warning(f"⚠️ Listing {listing_id} not found for integration handoff")
        return

    if new_status in COMPLETE_STATUSES:
        await handle_integration_complete(db, listing, integration)
    elif new_status in FAILED_STATUSES:
        await handle_integration_failed(db, listing, integration, new_status, external_id)
