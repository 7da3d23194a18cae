import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from app.models_integrations import WebhookDelivery, WebhookSubscription
from app.services.bannerbear_service import BannerbearError, BannerbearService, build_listing_modifications
from app.services.cubicasa_service import CubicasaError, CubicasaService
from app.services.slack_service import SlackService, parse_slash_command
from app.services.stripe_connect_service import StripeConnectService, account_status_from, encode_form
from app.services.webhook_dispatch import dispatch_event, matches_filter
from app.webhook_security import compute_hmac_sha256


def recording_transport(responder):
    """MockTransport that keeps every request it answered"""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responder(request)

    return httpx.MockTransport(handler), requests


# ============================================================================
# SLACK
# ============================================================================


class TestSlack:
    def test_unconfigured_skips_network(self):
        transport, requests = recording_transport(lambda r: httpx.Response(200, json={"ok": True}))
        result = asyncio.run(SlackService(token="", transport=transport).send_message("#ops", "hi"))
        assert result == {"ok": False, "error": "Slack not configured"}
        assert requests == []

    def test_formatted_notification(self):
        transport, requests = recording_transport(lambda r: httpx.Response(200, json={"ok": True, "ts": "1.2"}))
        service = SlackService(token="xoxb-test", transport=transport)
        result = asyncio.run(
            service.send_notification("new_order", {"order_id": "A-1", "address": "1 Main St", "total": 375}, "#ops")
        )
        assert result["ok"] is True

        request = requests[0]
        assert request.url.path == "/api/chat.postMessage"
        assert request.headers["Authorization"] == "Bearer xoxb-test"
        body = json.loads(request.content)
        assert body["channel"] == "#ops"
        assert body["text"] == "New Order: A-1 - 1 Main St"
        assert body["blocks"][0]["type"] == "header"

    def test_slack_error_is_returned(self):
        transport, _ = recording_transport(lambda r: httpx.Response(200, json={"ok": False, "error": "not_in_channel"}))
        result = asyncio.run(SlackService(token="xoxb-test", transport=transport).send_message("#ops", "hi"))
        assert result == {"ok": False, "error": "not_in_channel"}

    def test_parse_slash_command(self):
        assert parse_slash_command("STATUS abc", "U1", "C1") == {
            "command": "status",
            "args": ["abc"],
            "user_id": "U1",
            "channel_id": "C1",
        }
        assert parse_slash_command("", "U1", "C1")["command"] == "help"


# ============================================================================
# BANNERBEAR
# ============================================================================


class TestBannerbear:
    def test_listing_modifications(self):
        modifications = build_listing_modifications(
            {"address": "1 Main St", "price": 525000, "beds": 3, "baths": 2, "sqft": 1850},
            agent={"name": "Dana", "brand_color": "#0077ff"},
            photo_url="https://cdn.test/front.jpg",
        )
        by_name = {m["name"]: m for m in modifications}
        assert by_name["price"]["text"] == "$525,000"
        assert by_name["details"]["text"] == "3 Beds | 2 Baths | 1,850 Sq Ft"
        assert by_name["photo"]["image_url"] == "https://cdn.test/front.jpg"
        assert by_name["brand_bar"]["color"] == "#0077ff"

    def test_rejects_invalid_modifications(self):
        service = BannerbearService(api_key="bb-key", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(BannerbearError, match="Invalid modifications: price"):
            asyncio.run(service.create_collection("set-1", [[{"name": "address", "text": "x"}, {"name": "price"}]]))

    def test_create_collection(self):
        transport, requests = recording_transport(lambda r: httpx.Response(202, json={"uid": "col-1"}))
        service = BannerbearService(api_key="bb-key", transport=transport)
        result = asyncio.run(
            service.create_collection("set-1", [[{"name": "address", "text": "1 Main St"}]], metadata="job-1")
        )
        assert result == {"uid": "col-1"}
        body = json.loads(requests[0].content)
        assert body["metadata"] == "job-1"
        assert body["webhook_url"].endswith("/api/webhooks/bannerbear")

    def test_unconfigured(self):
        with pytest.raises(BannerbearError):
            asyncio.run(BannerbearService(api_key="").create_collection("set-1", [[{"name": "a", "text": "b"}]]))


# ============================================================================
# CUBICASA
# ============================================================================


class TestCubicasa:
    def test_create_order(self):
        transport, requests = recording_transport(lambda r: httpx.Response(201, json={"order_id": "CC-9"}))
        service = CubicasaService(api_key="cc-key", environment="staging", transport=transport)
        result = asyncio.run(
            service.create_order({"street": "1 Main St", "city": "Orlando", "state": "FL"}, reference_id="listing-1")
        )
        assert result == {"order_id": "CC-9"}
        request = requests[0]
        assert request.url.host == "api-staging.cubi.casa"
        body = json.loads(request.content)
        assert body["address"]["country"] == "US"
        assert body["floor_plan_types"] == ["2d_basic"]
        assert body["reference_id"] == "listing-1"

    def test_error_status(self):
        service = CubicasaService(api_key="cc-key", transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        with pytest.raises(CubicasaError) as exc:
            asyncio.run(service.get_order("CC-404"))
        assert exc.value.status_code == 404

    def test_cancel_failure_is_reported(self):
        service = CubicasaService(api_key="cc-key", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        assert asyncio.run(service.cancel_order("CC-1")) == {"success": False, "message": "Failed to cancel order"}


# ============================================================================
# STRIPE CONNECT
# ============================================================================


class TestStripeConnect:
    def test_encode_form(self):
        pairs = encode_form(
            {"amount": 100, "metadata": {"a": "1"}, "items": [{"id": 1}, "x"], "flag": True, "skip": None}
        )
        assert pairs == [
            ("amount", "100"),
            ("metadata[a]", "1"),
            ("items[0][id]", "1"),
            ("items[1]", "x"),
            ("flag", "true"),
        ]

    @pytest.mark.parametrize(
        "account,status",
        [
            ({"charges_enabled": True, "payouts_enabled": True}, "active"),
            ({"requirements": {"disabled_reason": "rejected.fraud"}}, "rejected"),
            ({"requirements": {"disabled_reason": "requirements.past_due"}}, "restricted"),
            ({"details_submitted": True}, "pending"),
            ({}, "not_started"),
        ],
    )
    def test_account_status(self, account, status):
        assert account_status_from(account) == status

    def test_create_connect_account(self, db, photographer):
        def responder(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v1/accounts":
                return httpx.Response(200, json={"id": "acct_9"})
            return httpx.Response(200, json={"url": "https://connect.stripe.test/onboard"})

        transport, requests = recording_transport(responder)
        service = StripeConnectService(secret_key="sk_test", transport=transport)
        result = asyncio.run(service.create_connect_account(db, photographer))

        assert result == {
            "success": True,
            "accountId": "acct_9",
            "onboardingUrl": "https://connect.stripe.test/onboard",
        }
        form = parse_qs(requests[0].content.decode())
        assert form["capabilities[transfers][requested]"] == ["true"]
        assert form["metadata[entity_id]"] == [photographer.id]
        db.refresh(photographer)
        assert photographer.stripe_connect_id == "acct_9"
        assert photographer.stripe_connect_status == "pending"

    def test_transfer_uses_idempotency_key(self):
        transport, requests = recording_transport(lambda r: httpx.Response(200, json={"id": "tr_1"}))
        service = StripeConnectService(secret_key="sk_test", transport=transport)
        result = asyncio.run(service.create_transfer(5000, "acct_9", "order-1", idempotency_key="key-1"))
        assert result == {"success": True, "transferId": "tr_1"}
        assert requests[0].headers["Idempotency-Key"] == "key-1"

    def test_balance(self):
        balance = {"available": [{"currency": "usd", "amount": 1200}], "pending": [{"currency": "eur", "amount": 5}]}
        service = StripeConnectService(
            secret_key="sk_test", transport=httpx.MockTransport(lambda r: httpx.Response(200, json=balance))
        )
        assert asyncio.run(service.get_balance()) == {"available": 1200, "pending": 0}


# ============================================================================
# OUTBOUND WEBHOOKS
# ============================================================================


class TestWebhookDispatch:
    def test_filter_operators(self):
        data = {"order": {"total": 500, "status": "paid"}, "tags": ["rush"]}
        assert matches_filter(data, {"order.total": {"$gte": 400}, "order.status": ["paid", "refunded"]})
        assert not matches_filter(data, {"order.total": {"$lt": 100}})
        assert not matches_filter(data, {"order.total": {"$regex": ".*"}})
        assert matches_filter(data, {"tags.0": "rush"})
        assert matches_filter(data, None)

    def test_signed_delivery_and_filtering(self, db):
        signed = WebhookSubscription(
            name="CRM", webhook_url="https://crm.test/hook", secret_key="hook-secret", events=["order.delivered"]
        )
        filtered = WebhookSubscription(
            name="Big orders only",
            webhook_url="https://zap.test/hook",
            events=["*"],
            filter_conditions={"total": {"$gt": 1000}},
        )
        other_event = WebhookSubscription(name="Listings", webhook_url="https://x.test", events=["listing.created"])
        db.add_all([signed, filtered, other_event])
        db.commit()

        transport, requests = recording_transport(lambda r: httpx.Response(200, text="ok"))

        async def run():
            async with httpx.AsyncClient(transport=transport) as client:
                return await dispatch_event(db, "order.delivered", {"listing_id": "L-1", "total": 375}, client=client)

        results = asyncio.run(run())

        assert sorted(r["responseStatus"] for r in results) == [0, 200]
        assert len(requests) == 1
        request = requests[0]
        assert request.headers["X-Webhook-Event"] == "order.delivered"
        assert request.headers["X-Webhook-Signature"] == compute_hmac_sha256("hook-secret", request.content)
        assert json.loads(request.content)["data"] == {"listing_id": "L-1", "total": 375}

        delivery = db.query(WebhookDelivery).one()
        assert delivery.status == "delivered"
        db.refresh(signed)
        assert signed.trigger_count == 1
        assert signed.last_status == "success"

    def test_failed_delivery_is_recorded(self, db):
        subscription = WebhookSubscription(name="Down", webhook_url="https://down.test/hook", events=["order.created"])
        db.add(subscription)
        db.commit()

        async def run():
            transport = httpx.MockTransport(lambda r: httpx.Response(503))
            async with httpx.AsyncClient(transport=transport) as client:
                return await dispatch_event(db, "order.created", {"id": "o-1"}, client=client)

        assert asyncio.run(run()) == [
            {"webhookId": subscription.id, "success": False, "responseStatus": 503, "error": "HTTP 503"}
        ]
        db.refresh(subscription)
        assert subscription.failure_count == 1
        assert db.query(WebhookDelivery).one().error_message == "HTTP 503"
