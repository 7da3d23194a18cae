"""
MJML Email Templates
All email templates using MJML for responsive, cross-client compatibility
"""

from typing import Optional

from .config import PORTAL_URL

# Aerial Shots Media brand colors
THEME = {
    "primary": "#0077ff",
    "primary_dark": "#005fcc",
    "background": "#f5f5f5",
    "card_bg": "#ffffff",
    "text_primary": "#0a0a0a",
    "text_secondary": "#404040",
    "text_muted": "#737373",
    "border": "#e5e5e5",
    "success": "#22c55e",
    "warning": "#f59e0b",
    "danger": "#dc2626",
    "info": "#3b82f6",
}

LOGO_URL = "https://cdn.aerialshots.media/brand/asm-logo-black.png"

STATUS_LABELS = {
    "pending": "Pending",
    "scheduled": "Scheduled",
    "in_progress": "Photography In Progress",
    "in_photography": "Photography In Progress",
    "staged": "Photos Staged",
    "awaiting_editing": "Awaiting Editing",
    "in_editing": "Editing In Progress",
    "processing": "Processing",
    "ready_for_qc": "Quality Control",
    "in_qc": "In Quality Control",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
    "on_hold": "On Hold",
}


def portal_link(path: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    return f"{PORTAL_URL.rstrip('/')}/{path.lstrip('/')}"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
    cta_color: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section background-color="#ffffff" padding="0 40px 40px 40px">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{cta_color or THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="0"
              inner-padding="16px 36px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 20px">
          <mj-column>
            <mj-image src="{LOGO_URL}" alt="Aerial Shots Media" width="160px" href="{PORTAL_URL}" padding="0" />
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="0 40px 32px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>
            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#a3a3a3" padding="0">
              Aerial Shots Media &middot; <a href="{PORTAL_URL}" style="color: #737373;">portal.aerialshots.media</a>
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _detail_rows(rows: list[tuple[str, str]]) -> str:
    items = "".join(
        f'<tr><td style="color: {THEME["text_muted"]}; padding: 8px 0;">{label}</td>'
        f'<td style="font-weight: 600; padding: 8px 0; text-align: right;">{value}</td></tr>'
        for label, value in rows
    )
    return f"""
    <mj-table padding="8px 0 24px 0" font-size="15px">
      {items}
    </mj-table>
    """


def photographer_assigned_template(
    photographer_name: str,
    listing_address: str,
    scheduled_date: str,
    scheduled_time: str,
    package_name: str,
    special_instructions: Optional[str] = None,
) -> str:
    instructions = ""
    if special_instructions:
        instructions = f"""
        <mj-text container-background-color="#fef3c7" padding="16px" color="#78350f">
          <strong style="color: #92400e;">Special Instructions:</strong><br/>{special_instructions}
        </mj-text>
        """

    content = f"""
    <mj-text>Hi {photographer_name},</mj-text>
    <mj-text>You've been assigned a new photo shoot. Here are the details:</mj-text>
    {_detail_rows([("Property", listing_address), ("Date", scheduled_date), ("Time", scheduled_time), ("Package", package_name)])}
    {instructions}
    <mj-text>Please confirm receipt of this assignment by logging into the portal.</mj-text>
    """
    return get_base_template(
        title="New Shoot Assignment",
        preview_text=f"New assignment at {listing_address}",
        content_sections=content,
        cta_url=portal_link("/admin/ops"),
        cta_label="View Assignment",
    )


def qc_complete_template(agent_name: str, listing_address: str, delivery_url: str, asset_summary: dict) -> str:
    content = f"""
    <mj-text>Hi {agent_name},</mj-text>
    <mj-text>Great news! Your listing media has passed quality control and is ready for delivery.</mj-text>
    {_detail_rows([("Property", listing_address), ("Includes", describe_assets(asset_summary))])}
    <mj-text color="{THEME['text_muted']}" font-size="14px">This link can be shared with your clients and MLS.</mj-text>
    """
    return get_base_template(
        title="Your Media is Ready!",
        preview_text=f"Media ready for {listing_address}",
        content_sections=content,
        cta_url=delivery_url,
        cta_label="View Your Media",
    )


def describe_assets(asset_summary: dict) -> str:
    parts = [
        f"{asset_summary.get('photos', 0)} photos" if asset_summary.get("photos") else None,
        f"{asset_summary.get('videos', 0)} videos" if asset_summary.get("videos") else None,
        f"{asset_summary.get('floor_plans', 0)} floor plans" if asset_summary.get("floor_plans") else None,
        f"{asset_summary.get('tours', 0)} 3D tours" if asset_summary.get("tours") else None,
    ]
    return ", ".join(p for p in parts if p)


def booking_confirmed_template(
    agent_name: str, listing_address: str, scheduled_date: str, scheduled_time: str, order_id: str, total: str
) -> str:
    content = f"""
    <mj-text>Hi {agent_name},</mj-text>
    <mj-text>Your shoot is booked. We'll see you there!</mj-text>
    {_detail_rows([("Property", listing_address), ("Date", scheduled_date), ("Time", scheduled_time), ("Order", order_id), ("Total", total)])}
    """
    return get_base_template(
        title="Booking Confirmed",
        preview_text=f"Booking confirmed for {listing_address}",
        content_sections=content,
        cta_url=portal_link("/dashboard"),
        cta_label="View Booking",
    )


def status_update_template(agent_name: str, listing_address: str, new_status: str, message: Optional[str] = None) -> str:
    label = STATUS_LABELS.get(new_status, new_status)
    message_block = f"<mj-text>{message}</mj-text>" if message else ""
    content = f"""
    <mj-text>Hi {agent_name},</mj-text>
    <mj-text>Your listing status has been updated:</mj-text>
    {_detail_rows([("Property", listing_address), ("New Status", f'<span style="color: {THEME["info"]};">{label}</span>')])}
    {message_block}
    """
    return get_base_template(
        title="Status Update",
        preview_text=f"{listing_address} is now {label}",
        content_sections=content,
        cta_url=portal_link("/dashboard"),
        cta_label="View Dashboard",
    )


def integration_complete_template(
    recipient_name: str,
    integration_name: str,
    property_address: str,
    dashboard_url: str,
    message: Optional[str] = None,
) -> str:
    message_block = f"<mj-text>{message}</mj-text>" if message else ""
    content = f"""
    <mj-text>Hi {recipient_name},</mj-text>
    <mj-text>
      <span style="color: {THEME['success']}; font-weight: 600;">&#10003; {integration_name}</span>
      {'are' if integration_name.endswith('s') else 'is'} ready for review.
    </mj-text>
    {_detail_rows([("Property", property_address), ("Integration", integration_name)])}
    {message_block}
    """
    return get_base_template(
        title="Ready for Review",
        preview_text=f"{integration_name} ready for {property_address}",
        content_sections=content,
        cta_url=portal_link(dashboard_url),
        cta_label="Review Now",
        cta_color=THEME["success"],
    )


def integration_failed_template(
    recipient_name: str,
    integration_name: str,
    property_address: str,
    status: str,
    dashboard_url: str,
    error_message: Optional[str] = None,
) -> str:
    status_label = "Needs Manual Attention" if status == "needs_manual" else "Failed"
    error_block = ""
    if error_message:
        error_block = f"""
        <mj-text font-weight="600" color="{THEME['danger']}" padding="8px 0 0 0">Error Details</mj-text>
        <mj-text container-background-color="#fef2f2" padding="12px 16px" font-size="14px">{error_message}</mj-text>
        """

    content = f"""
    <mj-text>Hi {recipient_name},</mj-text>
    <mj-text>An integration needs your attention.</mj-text>
    {_detail_rows([("Property", property_address), ("Integration", integration_name), ("Status", f'<span style="color: {THEME["danger"]};">{status_label}</span>')])}
    {error_block}
    <mj-text font-weight="600" padding="16px 0 4px 0">Suggested actions</mj-text>
    <mj-text padding="0 0 0 16px">
      &bull; Retry the integration<br/>
      &bull; Process manually<br/>
      &bull; Contact the integration provider
    </mj-text>
    """
    return get_base_template(
        title="Action Required",
        preview_text=f"{integration_name} {status_label.lower()} for {property_address}",
        content_sections=content,
        cta_url=portal_link(dashboard_url),
        cta_label="View Details",
        cta_color=THEME["danger"],
    )


def qc_rejection_template(
    recipient_name: str, listing_address: str, photo_count: int, notes: str, dashboard_url: str
) -> str:
    content = f"""
    <mj-text>Hi {recipient_name},</mj-text>
    <mj-text>QC sent photos back for another editing pass.</mj-text>
    {_detail_rows([("Property", listing_address), ("Rejected Photos", str(photo_count))])}
    <mj-text font-weight="600" padding="8px 0 4px 0">Reviewer Notes</mj-text>
    <mj-text container-background-color="#fef3c7" padding="12px 16px" font-size="14px">{notes}</mj-text>
    """
    return get_base_template(
        title="Photos Need Edits",
        preview_text=f"{photo_count} photo(s) rejected for {listing_address}",
        content_sections=content,
        cta_url=portal_link(dashboard_url),
        cta_label="Open Job",
        cta_color=THEME["warning"],
    )


def waitlist_slot_available_template(client_name: str, requested_date: str, booking_url: str) -> str:
    content = f"""
    <mj-text>Hi {client_name},</mj-text>
    <mj-text>
      A shoot slot just opened up on <strong>{requested_date}</strong>, the date you were waiting for.
      Slots are offered in waitlist order, so book soon to hold it.
    </mj-text>
    """
    return get_base_template(
        title="A Slot Opened Up",
        preview_text=f"Availability on {requested_date}",
        content_sections=content,
        cta_url=booking_url,
        cta_label="Book This Slot",
    )


def invoice_template(agent_name: str, invoice_number: str, amount_due: str, due_date: str, pay_url: str) -> str:
    content = f"""
    <mj-text>Hi {agent_name},</mj-text>
    <mj-text>Your invoice is attached. A summary is below.</mj-text>
    {_detail_rows([("Invoice", invoice_number), ("Amount Due", amount_due), ("Due Date", due_date)])}
    """
    return get_base_template(
        title=f"Invoice {invoice_number}",
        preview_text=f"Invoice {invoice_number} for {amount_due}",
        content_sections=content,
        cta_url=pay_url,
        cta_label="Pay Invoice",
    )


# SMS templates (plain text, kept under 160 characters)
SMS_TEMPLATES = {
    "photographer_assigned": lambda d: (
        f"ASM: New shoot assigned - {d['listing_address']} on {d['scheduled_date']} at "
        f"{d['scheduled_time']}. Check portal for details."
    ),
    "editor_assigned": lambda d: (
        f"ASM: New editing job - {d['listing_address']} ({d['asset_count']} assets). Due: {d['due_date']}"
    ),
    "qc_complete": lambda d: f"ASM: Your media for {d['listing_address']} is ready! View at {d['delivery_url']}",
    "booking_confirmed": lambda d: (
        f"ASM: Booking confirmed for {d['listing_address']} on {d['scheduled_date']} at "
        f"{d['scheduled_time']}. Order: {d['order_id']}"
    ),
    "integration_complete": lambda d: (
        f"ASM: {d['integration_name']} ready for {d['property_address']}. Review: portal.aerialshots.media"
    ),
    "integration_failed": lambda d: (
        f"ASM ALERT: {d['integration_name']} failed for {d['property_address']}. Action needed in portal."
    ),
    "qc_rejection": lambda d: (
        f"ASM: {d['photo_count']} photo(s) rejected in QC for {d['listing_address']}. See portal for notes."
    ),
}


def render_sms(template_name: str, data: dict) -> str:
    """Render an SMS template, truncated to a single 160 character segment"""
    message = SMS_TEMPLATES[template_name](data)
    if len(message) > 160:
        message = message[:157] + "..."
    return message
