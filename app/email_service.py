"""
Email Service using Resend
Provides email functionality using MJML templates for responsive design
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import APP_URL, EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    STATUS_LABELS,
    booking_confirmed_template,
    integration_complete_template,
    integration_failed_template,
    invoice_template,
    photographer_assigned_template,
    qc_complete_template,
    qc_rejection_template,
    status_update_template,
    waitlist_slot_available_template,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailTemplateError(ValueError):
    pass


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a dict with 'html' and 'errors' keys
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise Exception(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
    attachments: Optional[list[dict]] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address
        attachments: Optional list of {"filename", "content"} dicts

    Returns:
        Resend response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise Exception("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        email_data = {
            "from": from_address or EMAIL_FROM_ADDRESS,
            "to": recipients,
            "subject": subject,
            "html": html_content,
        }

        if attachments:
            email_data["attachments"] = [
                {"filename": attachment["filename"], "content": attachment["content"]}
                for attachment in attachments
            ]

        response = resend.Emails.send(email_data)
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise Exception(f"Failed to send email: {str(e)}") from e


# ============================================
# Notification emails, keyed by notification type
# ============================================


def build_email(notification_type: str, data: dict) -> tuple[str, str]:
    """Return (subject, mjml) for a notification type"""
    address = data.get("listing_address") or data.get("property_address", "")

    if notification_type == "photographer_assigned":
        return f"New Assignment: {address}", photographer_assigned_template(
            data["photographer_name"],
            address,
            data["scheduled_date"],
            data["scheduled_time"],
            data.get("package_name", "Standard"),
            data.get("special_instructions"),
        )

    if notification_type == "qc_complete":
        return f"Media Ready: {address}", qc_complete_template(
            data["agent_name"], address, data["delivery_url"], data.get("asset_summary", {})
        )

    if notification_type == "booking_confirmed":
        return f"Booking Confirmed: {address}", booking_confirmed_template(
            data["agent_name"],
            address,
            data["scheduled_date"],
            data["scheduled_time"],
            data["order_id"],
            data.get("total", ""),
        )

    if notification_type == "status_update":
        label = STATUS_LABELS.get(data["new_status"], data["new_status"])
        return f"Update: {address} - {label}", status_update_template(
            data["agent_name"], address, data["new_status"], data.get("message")
        )

    if notification_type == "integration_complete":
        return f"Ready for Review: {data['integration_name']} - {address}", integration_complete_template(
            data["recipient_name"],
            data["integration_name"],
            address,
            data["dashboard_url"],
            data.get("message"),
        )

    if notification_type == "integration_failed":
        return f"Action Required: {data['integration_name']} - {address}", integration_failed_template(
            data["recipient_name"],
            data["integration_name"],
            address,
            data.get("status", "failed"),
            data["dashboard_url"],
            data.get("error_message"),
        )

    if notification_type == "qc_rejection":
        return f"Photos Need Edits: {address}", qc_rejection_template(
            data["recipient_name"], address, data["photo_count"], data["notes"], data["dashboard_url"]
        )

    if notification_type == "waitlist_slot_available":
        booking_url = data.get("booking_url") or f"{APP_URL}/book?waitlist={data['waitlist_id']}"
        return f"A slot opened up on {data['requested_date']}", waitlist_slot_available_template(
            data["client_name"], data["requested_date"], booking_url
        )

    if notification_type == "invoice":
        return f"Invoice {data['invoice_number']} from Aerial Shots Media", invoice_template(
            data["agent_name"], data["invoice_number"], data["amount_due"], data["due_date"], data["pay_url"]
        )

    raise EmailTemplateError(f"Unknown notification type: {notification_type}")


async def send_invoice_email(to: str, data: dict, pdf_bytes: bytes) -> dict:
    """Send invoice summary with the PDF attached"""
    subject, mjml_content = build_email("invoice", data)
    return await send_email(
        to=to,
        subject=subject,
        mjml_content=mjml_content,
        attachments=[{"filename": f"{data['invoice_number']}.pdf", "content": list(pdf_bytes)}],
    )
