"""
Outbound webhook dispatch (Zapier, CRMs and partner systems)

Every active subscription listening for an event receives
{event, timestamp, data, metadata} as JSON, unless its filter conditions
reject the event data. Each attempt is recorded as a WebhookDelivery.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from ..models_integrations import WebhookDelivery, WebhookSubscription
from ..webhook_security import create_webhook_signature

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10.0  # seconds

EVENT_TYPES = [
    "order.created",
    "order.updated",
    "order.delivered",
    "order.cancelled",
    "listing.created",
    "listing.updated",
    "payment.received",
    "media.uploaded",
    "agent.registered",
    "integrations.all_complete",
]

OPERATORS = {
    "$eq": lambda actual, expected: actual == expected,
    "$ne": lambda actual, expected: actual != expected,
    "$gt": lambda actual, expected: actual is not None and actual > expected,
    "$gte": lambda actual, expected: actual is not None and actual >= expected,
    "$lt": lambda actual, expected: actual is not None and actual < expected,
    "$lte": lambda actual, expected: actual is not None and actual <= expected,
    "$in": lambda actual, expected: actual in expected,
}


def get_nested_value(obj: Any, path: str) -> Any:
    current = obj
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return None
        if current is None:
            return None
    return current


def _matches_condition(actual: Any, condition: Any) -> bool:
    if isinstance(condition, list):
        return actual in condition

    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for operator, expected in condition.items():
            check = OPERATORS.get(operator)
            if check is None:
                logger.warning(f"⚠️ Unknown webhook filter operator {operator}")
                return False
            try:
                if not check(actual, expected):
                    return False
            except TypeError:
                return False
        return True

    return actual == condition


def matches_filter(data: dict, conditions: Optional[dict]) -> bool:
    """All conditions must hold; keys are dotted paths into the event data"""
    if not conditions:
        return True
    return all(_matches_condition(get_nested_value(data, path), cond) for path, cond in conditions.items())


def build_payload(event: str, data: dict, metadata: Optional[dict] = None) -> dict:
    return {
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
        "metadata": metadata or {},
    }


def build_headers(subscription: WebhookSubscription, event: str, timestamp: str, body: bytes) -> dict:
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Event": event,
        "X-Webhook-Timestamp": timestamp,
        **(subscription.headers or {}),
    }
    if subscription.secret_key:
        headers["X-Webhook-Secret"] = subscription.secret_key
        headers["X-Webhook-Signature"] = create_webhook_signature(subscription.secret_key, body)
    return headers


async def deliver(
    db: Session,
    subscription: WebhookSubscription,
    event: str,
    data: dict,
    metadata: Optional[dict] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """
    Send one event to one subscription

    Returns:
        {webhookId, success, responseStatus, error}; responseStatus is 0 when the filter skipped it
    """
    if not matches_filter(data, subscription.filter_conditions):
        logger.debug(f"Webhook {subscription.id} skipped {event} (filter)")
        return {"webhookId": subscription.id, "success": True, "responseStatus": 0}

    payload = build_payload(event, data, metadata)
    body = json.dumps(payload, default=str).encode("utf-8")
    headers = build_headers(subscription, event, payload["timestamp"], body)

    delivery = WebhookDelivery(subscription_id=subscription.id, event_type=event, payload=payload)
    result = {"webhookId": subscription.id, "success": False, "responseStatus": None}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT) as http:
                response = await http.post(subscription.webhook_url, content=body, headers=headers)
        else:
            response = await client.post(subscription.webhook_url, content=body, headers=headers)

        result["responseStatus"] = response.status_code
        delivery.response_status = response.status_code
        delivery.response_body = response.text[:1000]
        if response.is_success:
            result["success"] = True
            delivery.status = "delivered"
            delivery.delivered_at = datetime.now(timezone.utc)
        else:
            result["error"] = f"HTTP {response.status_code}"
            delivery.status = "failed"
            delivery.error_message = result["error"]
    except httpx.TimeoutException:
        result["error"] = "Request timed out"
        delivery.status = "failed"
        delivery.error_message = result["error"]
    except httpx.HTTPError as e:
        result["error"] = str(e) or "Request failed"
        delivery.status = "failed"
        delivery.error_message = result["error"]

    subscription.last_triggered_at = datetime.now(timezone.utc)
    subscription.last_status = "success" if result["success"] else "failed"
    subscription.trigger_count = (subscription.trigger_count or 0) + 1
    if not result["success"]:
        subscription.failure_count = (subscription.failure_count or 0) + 1
        logger.warning(f"⚠️ Webhook {subscription.id} delivery of {event} failed: {result.get('error')}")

    db.add(delivery)
    db.commit()
    return result


def subscriptions_for(db: Session, event: str) -> list[WebhookSubscription]:
    active = db.query(WebhookSubscription).filter(WebhookSubscription.is_active.is_(True)).all()
    return [s for s in active if event in (s.events or []) or "*" in (s.events or [])]


async def dispatch_event(
    db: Session,
    event: str,
    data: dict,
    metadata: Optional[dict] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> list[dict]:
    """Send an event to every matching subscription; one failing target does not stop the rest"""
    subscriptions = subscriptions_for(db, event)
    if not subscriptions:
        return []

    logger.info(f"📤 Dispatching {event} to {len(subscriptions)} webhook(s)")
    return [await deliver(db, s, event, data, metadata, client) for s in subscriptions]


async def send_test_event(db: Session, subscription: WebhookSubscription, client=None) -> dict:
    return await deliver(
        db,
        subscription,
        "test",
        {"message": "Test webhook from Aerial Shots Media"},
        {"test": True},
        client,
    )
