"""
Webhook Security Module

Provides centralized signature verification for inbound webhook endpoints
(Cubicasa, FoundDR, Stripe, Slack) and signing for outbound webhooks.
- Constant-time signature comparison
- Timestamp validation against replay
- Raw body returned to the caller so it is only read once
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_timestamp(
    timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS, now: Optional[float] = None
) -> bool:
    """
    Verify webhook timestamp is within acceptable range.

    Args:
        timestamp: Unix timestamp as string
        max_age: Maximum age in seconds

    Returns:
        True if timestamp is valid, False otherwise
    """
    if not timestamp:
        return True  # Timestamp is optional for some providers

    try:
        webhook_time = int(timestamp)
        current_time = int(now if now is not None else time.time())
        age = abs(current_time - webhook_time)

        if age > max_age:
            logger.warning(f"🚫 Webhook timestamp too old: {age}s (max: {max_age}s)")
            return False

        return True
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {timestamp}")
        return False


async def verify_hex_signature_webhook(
    request: Request,
    secret: str,
    header_name: str,
    provider: str,
    raise_on_failure: bool = True,
) -> tuple[bool, bytes]:
    """
    Verify a plain hex HMAC-SHA256 of the raw body (Cubicasa, FoundDR).

    An empty secret means verification is not configured and the request passes.

    Returns:
        Tuple of (is_valid, raw_body)
    """
    raw_body = await request.body()

    if not secret:
        logger.warning(f"⚠️ {provider} webhook secret not configured, skipping signature check")
        return True, raw_body

    signature = request.headers.get(header_name, "")
    expected = compute_hmac_sha256(secret, raw_body)

    if not signature or not constant_time_compare(expected, signature.removeprefix("sha256=")):
        logger.warning(f"🚫 {provider} webhook signature mismatch")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Invalid signature")
        return False, raw_body

    logger.debug(f"✅ {provider} webhook signature verified")
    return True, raw_body


async def verify_stripe_webhook(
    request: Request, secret: str, raise_on_failure: bool = True
) -> tuple[bool, bytes]:
    """
    Verify Stripe webhook signature.

    Stripe uses:
    - Header: 'Stripe-Signature' (format: "t=<timestamp>,v1=<signature>")

    Returns:
        Tuple of (is_valid, raw_body)
    """
    raw_body = await request.body()
    signature_header = request.headers.get("Stripe-Signature", "")

    if not signature_header:
        logger.warning("🚫 Stripe webhook missing signature header")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Missing webhook signature")
        return False, raw_body

    try:
        elements = dict(item.split("=", 1) for item in signature_header.split(","))
    except ValueError:
        elements = {}
    timestamp = elements.get("t")
    signature = elements.get("v1")

    if not timestamp or not signature:
        logger.warning("🚫 Stripe webhook invalid signature format")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Invalid signature format")
        return False, raw_body

    if not verify_timestamp(timestamp):
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Webhook timestamp expired")
        return False, raw_body

    # Stripe signs "timestamp.payload"
    signed_payload = f"{timestamp}.{raw_body.decode('utf-8')}"
    expected_signature = compute_hmac_sha256(secret, signed_payload.encode())

    if not constant_time_compare(expected_signature, signature):
        logger.warning("🚫 Stripe webhook signature mismatch")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
        return False, raw_body

    logger.debug("✅ Stripe webhook signature verified")
    return True, raw_body


def verify_slack_signature(
    secret: str, timestamp: Optional[str], body: bytes, signature: Optional[str], now: Optional[float] = None
) -> bool:
    """Slack signs "v0:{timestamp}:{body}" and sends "v0=<hex>" in X-Slack-Signature"""
    if not secret or not timestamp or not signature:
        return False
    if not verify_timestamp(timestamp, now=now):
        return False
    base_string = f"v0:{timestamp}:{body.decode('utf-8')}"
    expected = f"v0={compute_hmac_sha256(secret, base_string.encode())}"
    return constant_time_compare(expected, signature)


async def verify_slack_webhook(
    request: Request, secret: str, raise_on_failure: bool = True
) -> tuple[bool, bytes]:
    raw_body = await request.body()
    valid = verify_slack_signature(
        secret,
        request.headers.get("X-Slack-Request-Timestamp"),
        raw_body,
        request.headers.get("X-Slack-Signature"),
    )
    if not valid:
        logger.warning("🚫 Slack request signature invalid")
        if raise_on_failure:
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
    return valid, raw_body


def create_webhook_signature(
    secret: str, payload: bytes, provider: str = "generic", timestamp: Optional[int] = None
) -> str:
    """
    Create a webhook signature for tests or outgoing webhooks.

    Args:
        secret: Signing secret
        payload: Request body bytes
        provider: Provider format ('generic', 'stripe', 'slack')

    Returns:
        Signature string in provider's format
    """
    timestamp = timestamp if timestamp is not None else int(time.time())

    if provider == "stripe":
        signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
        sig = compute_hmac_sha256(secret, signed_payload.encode())
        return f"t={timestamp},v1={sig}"
    elif provider == "slack":
        base_string = f"v0:{timestamp}:{payload.decode('utf-8')}"
        return f"v0={compute_hmac_sha256(secret, base_string.encode())}"
    else:
        return compute_hmac_sha256(secret, payload)
