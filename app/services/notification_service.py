"""
Unified Notification Service
Handles both email and SMS notifications for all workflow events
Ensures both channels are triggered consistently from the same event source
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..email_service import build_email, send_email
from ..email_templates import SMS_TEMPLATES, render_sms
from ..models_integrations import NotificationLog
from .twilio_service import send_sms

logger = logging.getLogger(__name__)

CHANNELS = ("email", "sms", "both")


def _log_email(
    db: Optional[Session],
    notification_type: str,
    recipient: dict,
    subject: Optional[str],
    status: str,
    listing_id: Optional[str],
    message_id: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    if db is None:
        return
    db.add(
        NotificationLog(
            listing_id=listing_id,
            recipient_type=recipient.get("type"),
            recipient_email=recipient.get("email"),
            notification_type=notification_type,
            channel="email",
            subject=subject,
            status=status,
            provider_message_id=message_id,
            error_message=error,
            sent_at=datetime.now(timezone.utc) if status == "sent" else None,
        )
    )
    db.commit()


async def send_notification(
    db: Optional[Session],
    notification_type: str,
    recipient: dict,
    channel: str = "email",
    data: Optional[dict] = None,
    listing_id: Optional[str] = None,
) -> dict:
    """
    Send a notification over email, SMS or both

    Args:
        db: Database session used for the delivery log (optional)
        notification_type: Template key (photographer_assigned, qc_complete, ...)
        recipient: {"email", "phone", "name", "type"}
        channel: email, sms or both
        data: Template data
        listing_id: Listing the notification relates to, for the log

    Returns:
        Dict with email_sent and sms_sent status
    """
    if channel not in CHANNELS:
        raise ValueError(f"Invalid channel: {channel}")

    data = data or {}
    result = {"email_sent": False, "sms_sent": False, "email_error": None, "sms_error": None}
    name = recipient.get("name", "recipient")

    if channel in ("email", "both"):
        email = recipient.get("email")
        if email:
            subject = None
            try:
                subject, mjml_content = build_email(notification_type, data)
                logger.info(f"📧 Sending {notification_type} email to {email}")
                response = await send_email(to=email, subject=subject, mjml_content=mjml_content)
                result["email_sent"] = True
                message_id = response.get("id") if isinstance(response, dict) else None
                _log_email(db, notification_type, recipient, subject, "sent", listing_id, message_id)
                logger.info(f"✅ {notification_type} email sent successfully to {email}")
            except Exception as e:
                result["email_error"] = str(e)
                _log_email(db, notification_type, recipient, subject, "failed", listing_id, error=str(e))
                logger.error(f"❌ Failed to send {notification_type} email to {email}: {e}")
        else:
            result["email_error"] = "No email address"
            logger.debug(f"⚠️ No email address for {notification_type} notification to {name}")

    if channel in ("sms", "both"):
        phone = recipient.get("phone")
        if not phone:
            result["sms_error"] = "No phone number"
            logger.debug(f"⚠️ No phone number for {notification_type} SMS to {name}")
        elif notification_type not in SMS_TEMPLATES:
            result["sms_error"] = f"No SMS template for {notification_type}"
            logger.debug(f"ℹ️ {notification_type} has no SMS template")
        else:
            try:
                message = render_sms(notification_type, data)
                success, error = await send_sms(
                    to_phone=phone,
                    message_body=message,
                    message_type=notification_type,
                    db=db,
                    listing_id=listing_id,
                )
                result["sms_sent"] = success
                result["sms_error"] = error
                if not success:
                    logger.warning(f"⚠️ {notification_type} SMS not sent to {phone}: {error}")
            except KeyError as e:
                result["sms_error"] = f"Missing template data: {e}"
                logger.error(f"❌ Failed to render {notification_type} SMS: missing {e}")

    return result
