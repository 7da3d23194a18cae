"""
Slack Service
Ops channel notifications (new orders, deliveries, QC alerts, assignments)
and the /asm slash command.
"""

import json
import logging
from typing import Optional

import httpx

from ..config import PORTAL_URL, SLACK_BOT_TOKEN, SLACK_DEFAULT_CHANNEL

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"

SEVERITY_EMOJI = {"low": "🟡", "medium": "🟠", "high": "🔴"}

SLASH_COMMANDS = {
    "help": "Show available commands",
    "status": "`status <listing_id>` - current ops status of a listing",
    "today": "Shoots scheduled for today",
    "queue": "Listings waiting for QC",
}


# ============================================================================
# MESSAGE FORMATTERS
# ============================================================================


def _plain(text: str) -> dict:
    return {"type": "plain_text", "text": text, "emoji": True}


def _field(label: str, value) -> dict:
    return {"type": "mrkdwn", "text": f"*{label}:*\n{value}"}


def _button(text: str, url: str, action_id: str, style: Optional[str] = None) -> dict:
    button = {"type": "button", "text": _plain(text), "url": url, "action_id": action_id}
    if style:
        button["style"] = style
    return button


def format_order_message(data: dict) -> dict:
    order_id = data.get("order_id")
    return {
        "text": f"New Order: {order_id} - {data.get('address')}",
        "blocks": [
            {"type": "header", "text": _plain(f"🏠 New Order: {order_id}")},
            {
                "type": "section",
                "fields": [
                    _field("Address", data.get("address")),
                    _field("Agent", data.get("agent_name")),
                    _field("Package", data.get("package")),
                    _field("Shoot Date", data.get("shoot_date")),
                ],
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Total:* ${data.get('total')}"}},
            {
                "type": "actions",
                "elements": [_button("View Order", f"{PORTAL_URL}/admin/ops/jobs/{order_id}", "view_order")],
            },
        ],
    }


def format_delivery_message(data: dict) -> dict:
    listing_id = data.get("listing_id")
    media = f"{data.get('photo_count', 0)} photos"
    if data.get("video_count"):
        media += f", {data['video_count']} videos"
    return {
        "text": f"Delivery Complete: {listing_id} - {data.get('address')}",
        "blocks": [
            {"type": "header", "text": _plain(f"✅ Delivery Complete: {listing_id}")},
            {
                "type": "section",
                "fields": [
                    _field("Address", data.get("address")),
                    _field("Agent", data.get("agent_name")),
                    _field("Media", media),
                ],
            },
            {
                "type": "actions",
                "elements": [_button("View Delivery", data.get("delivery_url", ""), "view_delivery", "primary")],
            },
        ],
    }


def format_qc_alert(data: dict) -> dict:
    listing_id = data.get("listing_id")
    severity = data.get("severity", "medium")
    return {
        "text": f"QC Alert: {listing_id} - {data.get('issue')}",
        "blocks": [
            {"type": "header", "text": _plain(f"{SEVERITY_EMOJI.get(severity, '🟠')} QC Alert: {listing_id}")},
            {
                "type": "section",
                "fields": [
                    _field("Issue", data.get("issue")),
                    _field("Severity", severity.upper()),
                    _field("Flagged by", data.get("reviewer")),
                ],
            },
            {
                "type": "actions",
                "elements": [_button("Review", f"{PORTAL_URL}/admin/qc/{listing_id}", "review_qc", "danger")],
            },
        ],
    }


def format_photographer_assignment(data: dict) -> dict:
    order_id = data.get("order_id")
    return {
        "text": f"Photographer Assigned: {order_id}",
        "blocks": [
            {"type": "header", "text": _plain(f"📸 Photographer Assigned: {order_id}")},
            {
                "type": "section",
                "fields": [
                    _field("Photographer", data.get("photographer_name")),
                    _field("Address", data.get("address")),
                    _field("Date", data.get("shoot_date")),
                    _field("Time", data.get("shoot_time")),
                ],
            },
        ],
    }


FORMATTERS = {
    "new_order": format_order_message,
    "delivery_complete": format_delivery_message,
    "qc_alert": format_qc_alert,
    "photographer_assigned": format_photographer_assignment,
}


def parse_slash_command(text: str, user_id: str, channel_id: str) -> dict:
    parts = (text or "").split()
    return {
        "command": parts[0].lower() if parts else "help",
        "args": parts[1:],
        "user_id": user_id,
        "channel_id": channel_id,
    }


# ============================================================================
# CLIENT
# ============================================================================


class SlackService:
    def __init__(self, token: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token if token is not None else (SLACK_BOT_TOKEN or "")
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.token)

    async def _api_call(self, method: str, params: dict) -> dict:
        """Slack always answers 200; failures come back as {ok: false, error}"""
        if not self.is_configured():
            return {"ok": False, "error": "Slack not configured"}
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(
                    f"{SLACK_API_URL}/{method}",
                    content=json.dumps(params),
                    headers={"Content-Type": "application/json", "Authorization": f"Bearer {self.token}"},
                )
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Slack {method} failed: {e}")
            return {"ok": False, "error": f"Network error: {e}"}

    async def send_message(self, channel: str, text: str, blocks: Optional[list] = None) -> dict:
        params = {"channel": channel, "text": text}
        if blocks:
            params["blocks"] = blocks
        result = await self._api_call("chat.postMessage", params)
        if not result.get("ok"):
            logger.warning(f"⚠️ Slack message to {channel} not sent: {result.get('error')}")
        return result

    async def send_notification(self, notification_type: str, data: dict, channel: Optional[str] = None) -> dict:
        formatter = FORMATTERS.get(notification_type)
        if formatter:
            message = formatter(data)
        else:
            message = {"text": f"{notification_type}: {json.dumps(data, default=str)}"}
        return await self.send_message(channel or SLACK_DEFAULT_CHANNEL, message["text"], message.get("blocks"))

    async def list_channels(self) -> list[dict]:
        result = await self._api_call("conversations.list", {"types": "public_channel,private_channel"})
        return result.get("channels") or []


_slack_service: Optional[SlackService] = None


def get_slack_service() -> SlackService:
    global _slack_service
    if _slack_service is None:
        _slack_service = SlackService()
    return _slack_service
