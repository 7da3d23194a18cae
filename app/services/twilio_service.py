"""
Twilio SMS Service
Sends operational SMS (assignments, delivery, integration alerts) from the platform number
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ..config import TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER
from ..models_integrations import NotificationLog
from ..shared.validators import validate_us_phone

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def is_configured() -> bool:
    return bool(TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER)


def normalize_phone(phone: str) -> Optional[str]:
    """Return E.164 for a US number or an already-international number, else None"""
    if not phone:
        return None
    if phone.startswith("+") and not phone.startswith("+1"):
        return phone
    try:
        return validate_us_phone(phone)
    except ValueError:
        return None


def _log_sms(
    db: Optional[Session],
    to_phone: str,
    message_type: str,
    status: str,
    listing_id: Optional[str] = None,
    message_sid: Optional[str] = None,
    error_message: Optional[str] = None,
) -> None:
    if db is None:
        return
    db.add(
        NotificationLog(
            listing_id=listing_id,
            recipient_phone=to_phone,
            notification_type=message_type,
            channel="sms",
            status=status,
            provider_message_id=message_sid,
            error_message=error_message,
            sent_at=datetime.now(timezone.utc) if status == "sent" else None,
        )
    )
    db.commit()


async def send_sms(
    to_phone: str,
    message_body: str,
    message_type: str,
    db: Optional[Session] = None,
    listing_id: Optional[str] = None,
) -> tuple[bool, Optional[str]]:
    """
    Send SMS via Twilio

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    if not to_phone:
        return False, "No phone number provided"

    normalized = normalize_phone(to_phone)
    if not normalized:
        logger.warning(f"Phone number not in E.164 format: {to_phone}")
        return False, "Phone number must be in E.164 format (e.g., +1234567890)"

    if not is_configured():
        logger.debug("Twilio not configured, skipping SMS")
        return False, "Twilio not configured"

    data = {"To": normalized, "From": TWILIO_PHONE_NUMBER, "Body": message_body}

    try:
        logger.info(f"📱 Sending SMS: type={message_type}, to={normalized}")
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{TWILIO_API_BASE}/Accounts/{TWILIO_ACCOUNT_SID}/Messages.json",
                auth=(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN),
                data=data,
                timeout=10.0,
            )

        logger.info(f"📡 Twilio API response status: {response.status_code}")

        if response.status_code in (200, 201):
            message_sid = response.json().get("sid")
            _log_sms(db, normalized, message_type, "sent", listing_id, message_sid=message_sid)
            logger.info(f"✅ SMS sent successfully: {message_type} to {normalized} (SID: {message_sid})")
            return True, None

        error_data = response.json()
        error_message = error_data.get("message", "Unknown error")
        error_code = error_data.get("code")
        _log_sms(
            db,
            normalized,
            message_type,
            "failed",
            listing_id,
            error_message=f"[{error_code}] {error_message}" if error_code else error_message,
        )
        logger.error(f"❌ Twilio API error [{error_code}]: {error_message}")
        return False, error_message

    except httpx.HTTPError as e:
        logger.error(f"Twilio API error: {str(e)}")
        _log_sms(db, normalized, message_type, "failed", listing_id, error_message=str(e))
        return False, str(e)
