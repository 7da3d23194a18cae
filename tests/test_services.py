import asyncio
import json

import httpx
import pytest

from app.models import JobEvent, Listing
from app.services import integration_handoffs
from app.services.content_generator import (
    FALLBACK_CAPTION,
    ContentGenerator,
    fallback_content,
    parse_carousel_response,
)
from app.services.mls_service import MLSClient, MLSUploadError, decrypt_credential, encrypt_credential
from app.services.twilio_service import normalize_phone

FLEXMLS = {"slug": "flexmls", "provider_type": "flexmls", "max_photos": 2}


# ============================================================================
# CONTENT GENERATION
# ============================================================================


class TestContentGenerator:
    def test_parses_json_inside_prose(self):
        reply = 'Here you go:\n{"slides": [{"headline": "Welcome Home", "body": "3 beds"}], "caption": "New!"}'
        content = parse_carousel_response(reply)
        assert content["caption"] == "New!"
        assert content["hashtags"] == []
        assert content["slides"][0]["position"] == 1
        assert content["slides"][0]["headline"] == "Welcome Home"
        assert content["slides"][0]["text_position"] == "bottom_left"

    def test_no_json_uses_fallback(self):
        content = parse_carousel_response("Sorry, I can't help with that.")
        assert content["caption"] == FALLBACK_CAPTION
        assert [s["position"] for s in content["slides"]] == list(range(1, len(content["slides"]) + 1))

    def test_generate_all_without_key_falls_back(self):
        listing = {"address": "1 Main St", "beds": 3, "baths": 2, "sqft": 1850}
        result = asyncio.run(
            ContentGenerator(api_key="").generate_all(listing, {"name": "Dana"}, ["property_highlights", "lifestyle"])
        )
        assert result["totalTokensUsed"] == 0
        assert [c["carouselType"] for c in result["carousels"]] == ["property_highlights", "lifestyle"]
        assert result["carousels"][0] == fallback_content("property_highlights", listing, {"name": "Dana"})
        assert "1,850 sqft" in result["carousels"][0]["caption"]

    def test_generate_carousel_counts_tokens(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "content": [{"type": "text", "text": '{"slides": [], "caption": "Hi", "hashtags": ["home"]}'}],
                    "usage": {"input_tokens": 120, "output_tokens": 80},
                },
            )

        generator = ContentGenerator(api_key="sk-ant-test", transport=httpx.MockTransport(handler))
        result = asyncio.run(generator.generate_carousel("lifestyle", {"address": "1 Main St"}, {"name": "Dana"}))

        assert result == {
            "carouselType": "lifestyle",
            "slides": [],
            "caption": "Hi",
            "hashtags": ["home"],
            "tokensUsed": 200,
        }
        assert requests[0].headers["x-api-key"] == "sk-ant-test"
        assert json.loads(requests[0].content)["messages"][0]["role"] == "user"

    @pytest.mark.parametrize("reply", ["I can't write that carousel.", '{"slides": [oops], "caption": "x"}'])
    def test_unparseable_reply_reports_no_tokens(self, reply):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"content": [{"type": "text", "text": reply}], "usage": {"input_tokens": 90, "output_tokens": 15}},
            )

        generator = ContentGenerator(api_key="sk-ant-test", transport=httpx.MockTransport(handler))
        result = asyncio.run(generator.generate_carousel("lifestyle", {"address": "1 Main St"}, {"name": "Dana"}))

        assert result["tokensUsed"] == 0
        assert result["caption"] == FALLBACK_CAPTION


# ============================================================================
# MLS
# ============================================================================


class TestMLS:
    def test_credentials_are_encrypted(self):
        token = encrypt_credential("hunter2")
        assert token != "hunter2"
        assert decrypt_credential(token) == "hunter2"

    def test_upload_marks_first_photo_primary(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"uploaded": [{"status": "success"}, {"status": "failed"}]})

        client = MLSClient(FLEXMLS, "agent-1", "pw", transport=httpx.MockTransport(handler))
        photos = [{"url": "https://cdn.test/1.jpg", "order": 1}, {"url": "https://cdn.test/2.jpg", "order": 2}]
        result = asyncio.run(client.upload_photos("MLS-42", photos))

        assert (result["success"], result["uploaded_count"], result["failed_count"]) == (False, 1, 1)
        request = requests[0]
        assert request.url.path == "/v1/listings/MLS-42/photos"
        assert request.headers["Authorization"].startswith("Basic ")
        assert [p["is_primary"] for p in json.loads(request.content)["photos"]] == [True, False]

    def test_upload_limits(self):
        client = MLSClient(FLEXMLS, "agent-1", "pw", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(MLSUploadError, match="Listing ID is required"):
            asyncio.run(client.upload_photos(" ", []))
        with pytest.raises(MLSUploadError, match="exceeds maximum allowed"):
            asyncio.run(client.upload_photos("MLS-42", [{"url": "u", "order": i} for i in range(3)]))

    def test_rate_limited_upload(self):
        client = MLSClient(FLEXMLS, "agent-1", "pw", transport=httpx.MockTransport(lambda r: httpx.Response(429)))
        result = asyncio.run(client.upload_photos("MLS-42", [{"url": "u", "order": 1}]))
        assert result["success"] is False
        assert result["error"] == "Rate limited - please try again later"


# ============================================================================
# SMS
# ============================================================================


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("(407) 555-0100", "+14075550100"),
        ("+447700900123", "+447700900123"),
        ("555-0100", None),
        ("", None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


# ============================================================================
# INTEGRATION HANDOFFS
# ============================================================================


@pytest.fixture
def handoff_notifications(monkeypatch):
    calls = []

    async def fake_send_notification(db, notification_type, recipient, channel="email", data=None, listing_id=None):
        calls.append((notification_type, recipient["email"]))
        return {"email_sent": True, "sms_sent": False}

    monkeypatch.setattr(integration_handoffs, "send_notification", fake_send_notification)
    return calls


class TestIntegrationHandoffs:
    @pytest.mark.parametrize(
        "cubicasa,zillow,complete",
        [
            ("delivered", "live", True),
            ("not_applicable", "live", True),
            ("delivered", "processing", False),
            (None, "not_applicable", False),
        ],
    )
    def test_all_integrations_complete(self, cubicasa, zillow, complete):
        listing = Listing(address="1 Main St", cubicasa_status=cubicasa, zillow_3d_status=zillow)
        assert integration_handoffs.all_integrations_complete(listing) is complete

    def test_last_delivery_advances_listing(self, db, listing, agent, handoff_notifications):
        listing.ops_status = "processing"
        listing.cubicasa_status = "delivered"
        listing.zillow_3d_status = "not_applicable"
        db.commit()

        handoff = integration_handoffs.process_integration_handoff(
            db, listing.id, "cubicasa", "processing", "delivered"
        )
        asyncio.run(handoff)

        db.refresh(listing)
        assert listing.ops_status == "ready_for_qc"
        event = db.query(JobEvent).filter(JobEvent.listing_id == listing.id).one()
        assert event.event_type == "auto_status_advance"
        assert event.new_value["reason"] == "all_integrations_complete"
        assert handoff_notifications == [("status_update", agent.email)]

    def test_pending_integration_holds_listing(self, db, listing, handoff_notifications):
        listing.ops_status = "processing"
        listing.cubicasa_status = "delivered"
        listing.zillow_3d_status = "processing"
        db.commit()

        handoff = integration_handoffs.process_integration_handoff(
            db, listing.id, "cubicasa", "processing", "delivered"
        )
        asyncio.run(handoff)

        db.refresh(listing)
        assert listing.ops_status == "processing"
        assert handoff_notifications == []

    def test_failure_is_recorded(self, db, listing, handoff_notifications):
        asyncio.run(
            integration_handoffs.process_integration_handoff(
                db, listing.id, "zillow_3d", "processing", "needs_manual", external_id="z-9"
            )
        )
        event = db.query(JobEvent).filter(JobEvent.listing_id == listing.id).one()
        assert event.event_type == "integration_failure"
        assert event.new_value == {"integration": "zillow_3d", "status": "needs_manual", "external_id": "z-9"}
