"""
Inbound Webhook Handlers
Cubicasa floor plans, FoundDR HDR jobs, Stripe, Bannerbear renders and Slack
slash commands.

Every provider event is recorded in webhook_events keyed by (source, event id)
so a redelivered event is acknowledged without being applied twice. An event
whose processing failed is picked up again when the provider retries it.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import (
    BANNERBEAR_WEBHOOK_SECRET,
    CUBICASA_WEBHOOK_SECRET,
    FOUNDDR_WEBHOOK_SECRET,
    SLACK_SIGNING_SECRET,
    STRIPE_WEBHOOK_SECRET,
)
from ..database import get_db
from ..domain.invoices.service import InvoiceService
from ..models import Listing
from ..models_integrations import WebhookEvent
from ..services.bannerbear_service import apply_bannerbear_webhook
from ..services.cubicasa_service import apply_cubicasa_webhook
from ..services.founddr_service import apply_founddr_webhook
from ..services.integration_handoffs import process_integration_handoff
from ..services.slack_service import SLASH_COMMANDS, parse_slash_command
from ..services.stripe_connect_service import apply_account_updated
from ..webhook_security import (
    constant_time_compare,
    verify_hex_signature_webhook,
    verify_slack_webhook,
    verify_stripe_webhook,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ============================================================================
# EVENT LEDGER
# ============================================================================


# A "processing" row older than this was abandoned mid-request and may be retried
STALE_PROCESSING_MINUTES = 10

DUPLICATE_RESPONSE = {"received": True, "duplicate": True}


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _retryable(event: WebhookEvent, now: datetime) -> bool:
    if event.status == "failed":
        return True
    if event.status == "processing" and event.created_at is not None:
        return _as_aware(event.created_at) < now - timedelta(minutes=STALE_PROCESSING_MINUTES)
    return False


def record_webhook_event(
    db: Session,
    source: str,
    external_event_id: str,
    event_type: str,
    payload: dict,
    now: Optional[datetime] = None,
) -> Optional[WebhookEvent]:
    """
    Insert the event and return it for processing.

    A redelivery of an event that failed (or was abandoned while processing)
    is handed back for another attempt; anything else already received
    returns None.
    """
    event = WebhookEvent(
        source=source,
        external_event_id=external_event_id,
        event_type=event_type or "unknown",
        payload=payload,
        status="processing",
    )
    db.add(event)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = (
            db.query(WebhookEvent)
            .filter(WebhookEvent.source == source, WebhookEvent.external_event_id == external_event_id)
            .first()
        )
        if existing is None or not _retryable(existing, now or datetime.now(timezone.utc)):
            logger.info(f"🔁 Duplicate {source} webhook {external_event_id}, skipping")
            return None
        existing.status = "processing"
        existing.payload = payload
        existing.error_message = None
        existing.retry_count = (existing.retry_count or 0) + 1
        db.commit()
        logger.info(f"🔄 Retrying {source} webhook {external_event_id} (attempt {existing.retry_count + 1})")
        return existing
    db.refresh(event)
    return event


def finish_webhook_event(db: Session, event: WebhookEvent, error: Optional[str] = None) -> None:
    event.status = "failed" if error else "success"
    event.error_message = error
    event.processed_at = datetime.now(timezone.utc)
    db.commit()


def _parse_json(body: bytes) -> dict:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("❌ Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return payload


# ============================================================================
# CUBICASA
# ============================================================================


@router.post("/cubicasa")
async def cubicasa_webhook(request: Request, db: Session = Depends(get_db)):
    """Floor plan order events: delivered, model_modified, deleted, failed"""
    valid, body = await verify_hex_signature_webhook(
        request, CUBICASA_WEBHOOK_SECRET, "x-cubicasa-signature", "Cubicasa", raise_on_failure=False
    )
    if not valid:
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    payload = _parse_json(body)
    event_type = payload.get("event")
    order_id = payload.get("order_id")
    logger.info(f"📥 Received Cubicasa webhook: {event_type} for order {order_id}")

    event = record_webhook_event(
        db, "cubicasa", f"{order_id}:{event_type}:{payload.get('timestamp', '')}", event_type, payload
    )
    if event is None:
        return DUPLICATE_RESPONSE

    try:
        result = apply_cubicasa_webhook(db, payload)
        if result.get("success"):
            await process_integration_handoff(
                db, result["listing_id"], "cubicasa", result["previous_status"], result["new_status"], order_id
            )
    except Exception as e:
        db.rollback()
        finish_webhook_event(db, event, str(e))
        logger.error(f"❌ Cubicasa webhook processing error: {e}")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e

    finish_webhook_event(db, event)
    if not result.get("success"):
        return result
    return {"success": True, "listing_id": result["listing_id"]}


# ============================================================================
# FOUNDDR
# ============================================================================


@router.post("/founddr")
async def founddr_webhook(request: Request, db: Session = Depends(get_db)):
    """HDR job status callbacks"""
    _, body = await verify_hex_signature_webhook(request, FOUNDDR_WEBHOOK_SECRET, "x-founddr-signature", "FoundDR")
    payload = _parse_json(body)
    job_id = payload.get("jobId") or payload.get("id")
    status = payload.get("status")
    logger.info(f"📥 Received FoundDR webhook: job {job_id} {status}")

    event = record_webhook_event(db, "founddr", f"{job_id}:{status}", f"job.{status}", payload)
    if event is None:
        return DUPLICATE_RESPONSE

    try:
        result = apply_founddr_webhook(db, payload)
    except Exception as e:
        db.rollback()
        finish_webhook_event(db, event, str(e))
        logger.error(f"❌ FoundDR webhook processing error: {e}")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e

    finish_webhook_event(db, event)
    return result


# ============================================================================
# STRIPE
# ============================================================================


def _handle_payment_succeeded(db: Session, intent: dict) -> Optional[dict]:
    metadata = intent.get("metadata") or {}
    if metadata.get("type") != "bulk_invoice_payment":
        return None
    invoice_ids = [i for i in (metadata.get("invoice_ids") or "").split(",") if i]
    if not invoice_ids:
        return None
    return InvoiceService(db).mark_paid(invoice_ids, intent.get("id"), "card")


@router.post("/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Connect account updates and invoice payments"""
    if not STRIPE_WEBHOOK_SECRET:
        logger.error("❌ STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")

    _, body = await verify_stripe_webhook(request, STRIPE_WEBHOOK_SECRET)
    payload = _parse_json(body)
    event_type = payload.get("type")
    obj = (payload.get("data") or {}).get("object") or {}
    logger.info(f"📥 Received Stripe webhook: {event_type}")

    event = record_webhook_event(db, "stripe", payload.get("id") or "", event_type, payload)
    if event is None:
        return DUPLICATE_RESPONSE

    try:
        if event_type == "account.updated":
            apply_account_updated(db, obj)
        elif event_type == "payment_intent.succeeded":
            _handle_payment_succeeded(db, obj)
        elif event_type == "payment_intent.payment_failed":
            error = (obj.get("last_payment_error") or {}).get("message")
            logger.warning(f"⚠️ Payment {obj.get('id')} failed: {error}")
        else:
            logger.info(f"ℹ️ Unhandled event type: {event_type}")
    except Exception as e:
        db.rollback()
        finish_webhook_event(db, event, str(e))
        logger.error(f"❌ Stripe webhook processing error: {e}")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e

    finish_webhook_event(db, event)
    return {"received": True, "event_type": event_type}


# ============================================================================
# BANNERBEAR
# ============================================================================


@router.post("/bannerbear")
async def bannerbear_webhook(request: Request, db: Session = Depends(get_db)):
    if BANNERBEAR_WEBHOOK_SECRET:
        token = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()
        if not constant_time_compare(token, BANNERBEAR_WEBHOOK_SECRET):
            raise HTTPException(status_code=401, detail="Invalid signature")

    payload = _parse_json(await request.body())
    uid = payload.get("uid") or ""
    event = record_webhook_event(db, "bannerbear", f"{uid}:{payload.get('status')}", "render", payload)
    if event is None:
        return DUPLICATE_RESPONSE

    try:
        result = apply_bannerbear_webhook(db, payload)
    except Exception as e:
        db.rollback()
        finish_webhook_event(db, event, str(e))
        logger.error(f"❌ Bannerbear webhook processing error: {e}")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e

    finish_webhook_event(db, event)
    return result


# ============================================================================
# SLACK
# ============================================================================


def _slack_text(text: str) -> dict:
    return {"response_type": "ephemeral", "text": text}


def run_slash_command(db: Session, command: dict) -> dict:
    name, args = command["command"], command["args"]

    if name == "status":
        if not args:
            return _slack_text("Usage: `status <listing_id>`")
        listing = db.query(Listing).filter(Listing.id == args[0]).first()
        if not listing:
            return _slack_text(f"Listing {args[0]} not found")
        return _slack_text(f"*{listing.address}*: {listing.ops_status}" + (" (rush)" if listing.is_rush else ""))

    if name == "today":
        today = datetime.now(timezone.utc).date()
        listings = db.query(Listing).filter(func.date(Listing.scheduled_at) == today).all()
        if not listings:
            return _slack_text("No shoots scheduled today")
        lines = [f"• {listing.address} ({listing.ops_status})" for listing in listings]
        return _slack_text(f"{len(listings)} shoot(s) today:\n" + "\n".join(lines))

    if name == "queue":
        count = db.query(Listing).filter(Listing.ops_status.in_(("ready_for_qc", "in_qc"))).count()
        rush = (
            db.query(Listing)
            .filter(Listing.ops_status.in_(("ready_for_qc", "in_qc")), Listing.is_rush.is_(True))
            .count()
        )
        return _slack_text(f"{count} listing(s) in QC, {rush} rush")

    lines = [f"`{cmd}` - {description}" for cmd, description in SLASH_COMMANDS.items()]
    return _slack_text("Available commands:\n" + "\n".join(lines))


@router.post("/slack/commands")
async def slack_command(request: Request, db: Session = Depends(get_db)):
    _, body = await verify_slack_webhook(request, SLACK_SIGNING_SECRET or "")
    form = {k: v[0] for k, v in parse_qs(body.decode("utf-8")).items()}
    command = parse_slash_command(form.get("text", ""), form.get("user_id", ""), form.get("channel_id", ""))
    logger.info(f"💬 Slack command '{command['command']}' from {command['user_id']}")
    return run_slash_command(db, command)
