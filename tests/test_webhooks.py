import json
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import pytest

from app.models import Listing, MediaAsset
from app.models_billing import Invoice
from app.models_integrations import WebhookEvent
from app.models_processing import ProcessingJob
from app.models_render import RenderJob
from app.routes import webhooks
from app.webhook_security import (
    compute_hmac_sha256,
    create_webhook_signature,
    verify_slack_signature,
    verify_timestamp,
)

# ============================================================================
# SIGNATURES
# ============================================================================


class TestSignatures:
    def test_timestamp_window(self):
        assert verify_timestamp(None) is True
        assert verify_timestamp("1000", now=1200) is True
        assert verify_timestamp("1000", now=1301) is False
        assert verify_timestamp("not-a-number") is False

    def test_stripe_format(self):
        signature = create_webhook_signature("whsec", b'{"a":1}', "stripe", timestamp=1700000000)
        expected = compute_hmac_sha256("whsec", b'1700000000.{"a":1}')
        assert signature == f"t=1700000000,v1={expected}"

    def test_slack_signature(self):
        body = b"text=status+abc"
        signature = create_webhook_signature("slack-secret", body, "slack", timestamp=1700000000)
        assert verify_slack_signature("slack-secret", "1700000000", body, signature, now=1700000010)
        assert not verify_slack_signature("slack-secret", "1700000000", body, signature, now=1700009999)
        assert not verify_slack_signature("other", "1700000000", body, signature, now=1700000010)


# ============================================================================
# CUBICASA
# ============================================================================


@pytest.fixture
def floor_plan_listing(db, agent):
    listing = Listing(
        agent_id=agent.id,
        address="55 Pine St",
        ops_status="processing",
        cubicasa_order_id="CC-100",
        cubicasa_status="ordered",
        zillow_3d_status="not_applicable",
    )
    db.add(listing)
    db.commit()
    db.refresh(listing)
    return listing


def cubicasa_payload(event="delivered"):
    return {
        "event": event,
        "order_id": "CC-100",
        "timestamp": "2026-05-01T10:00:00Z",
        "data": {"floor_plan_2d_url": "https://cubi.test/plan.png", "square_footage": 2140},
    }


class TestCubicasaWebhook:
    def test_delivery_advances_listing(self, client, db, floor_plan_listing):
        response = client.post("/api/webhooks/cubicasa", json=cubicasa_payload())
        assert response.status_code == 200
        assert response.json() == {"success": True, "listing_id": floor_plan_listing.id}

        db.refresh(floor_plan_listing)
        assert floor_plan_listing.cubicasa_status == "delivered"
        assert floor_plan_listing.sqft == 2140
        assert floor_plan_listing.ops_status == "ready_for_qc"
        plan = db.query(MediaAsset).filter(MediaAsset.type == "floorplan").one()
        assert plan.media_url == "https://cubi.test/plan.png"

    def test_redelivery_is_acknowledged_once(self, client, db, floor_plan_listing):
        client.post("/api/webhooks/cubicasa", json=cubicasa_payload())
        response = client.post("/api/webhooks/cubicasa", json=cubicasa_payload())
        assert response.json() == {"received": True, "duplicate": True}
        assert db.query(WebhookEvent).count() == 1
        assert db.query(WebhookEvent).one().status == "success"

    def test_failed_event_is_processed_on_retry(self, client, db, monkeypatch, floor_plan_listing):
        real_apply = webhooks.apply_cubicasa_webhook
        calls = []

        def flaky_apply(session, payload):
            calls.append(payload["order_id"])
            if len(calls) == 1:
                raise RuntimeError("database hiccup")
            return real_apply(session, payload)

        monkeypatch.setattr(webhooks, "apply_cubicasa_webhook", flaky_apply)

        first = client.post("/api/webhooks/cubicasa", json=cubicasa_payload())
        assert first.status_code == 500
        assert db.query(WebhookEvent).one().status == "failed"

        retry = client.post("/api/webhooks/cubicasa", json=cubicasa_payload())
        assert retry.status_code == 200
        assert retry.json() == {"success": True, "listing_id": floor_plan_listing.id}
        assert len(calls) == 2

        event = db.query(WebhookEvent).one()
        db.refresh(event)
        assert event.status == "success"
        assert event.retry_count == 1
        assert event.error_message is None
        db.refresh(floor_plan_listing)
        assert floor_plan_listing.cubicasa_status == "delivered"

        assert client.post("/api/webhooks/cubicasa", json=cubicasa_payload()).json() == {
            "received": True,
            "duplicate": True,
        }

    def test_unknown_order(self, client, db):
        response = client.post("/api/webhooks/cubicasa", json=cubicasa_payload())
        assert response.json() == {"acknowledged": True, "message": "Order CC-100 not found"}

    def test_bad_signature(self, client, monkeypatch, floor_plan_listing):
        monkeypatch.setattr(webhooks, "CUBICASA_WEBHOOK_SECRET", "cubi-secret")
        response = client.post(
            "/api/webhooks/cubicasa", json=cubicasa_payload(), headers={"x-cubicasa-signature": "deadbeef"}
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}

    def test_good_signature(self, client, monkeypatch, floor_plan_listing):
        monkeypatch.setattr(webhooks, "CUBICASA_WEBHOOK_SECRET", "cubi-secret")
        body = json.dumps(cubicasa_payload()).encode()
        response = client.post(
            "/api/webhooks/cubicasa",
            content=body,
            headers={
                "Content-Type": "application/json",
                "x-cubicasa-signature": f"sha256={compute_hmac_sha256('cubi-secret', body)}",
            },
        )
        assert response.status_code == 200

    def test_invalid_json(self, client):
        response = client.post(
            "/api/webhooks/cubicasa", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400


# ============================================================================
# FOUNDDR
# ============================================================================


def test_founddr_completion_moves_assets_to_qc(client, db, agent):
    listing = Listing(agent_id=agent.id, address="8 Bracket Way", ops_status="processing")
    db.add(listing)
    db.commit()
    job = ProcessingJob(listing_id=listing.id, founddr_job_id="fd-1", status="processing", input_keys=["a", "b", "c"])
    db.add(job)
    db.commit()
    asset = MediaAsset(listing_id=listing.id, type="photo", qc_status="processing", processing_job_id=job.id)
    db.add(asset)
    db.commit()

    response = client.post(
        "/api/webhooks/founddr",
        json={"jobId": "fd-1", "status": "COMPLETED", "outputKey": "out/hdr-1.jpg", "processingTimeMs": 4200},
    )
    assert response.status_code == 200
    assert response.json()["listingAdvanced"] is True

    db.refresh(asset)
    db.refresh(listing)
    assert asset.qc_status == "ready_for_qc"
    assert asset.pipeline_stage == "qc"
    assert asset.processed_storage_path == "out/hdr-1.jpg"
    assert listing.ops_status == "ready_for_qc"


# ============================================================================
# STRIPE
# ============================================================================


class TestStripeWebhook:
    @pytest.fixture(autouse=True)
    def secret(self, monkeypatch):
        monkeypatch.setattr(webhooks, "STRIPE_WEBHOOK_SECRET", "whsec_test")

    def post(self, client, event: dict, secret: str = "whsec_test"):
        body = json.dumps(event).encode()
        return client.post(
            "/api/webhooks/stripe",
            content=body,
            headers={
                "Content-Type": "application/json",
                "Stripe-Signature": create_webhook_signature(secret, body, "stripe"),
            },
        )

    def test_payment_marks_invoices_paid(self, client, db, agent):
        invoice = Invoice(
            invoice_number="INV-7",
            agent_id=agent.id,
            amount=99,
            status="pending",
            due_date=datetime.now(timezone.utc) + timedelta(days=7),
        )
        db.add(invoice)
        db.commit()

        event = {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": "pi_1",
                    "metadata": {"type": "bulk_invoice_payment", "invoice_ids": invoice.id},
                }
            },
        }
        response = self.post(client, event)
        assert response.json() == {"received": True, "event_type": "payment_intent.succeeded"}
        db.refresh(invoice)
        assert invoice.status == "paid"
        assert invoice.payment_intent_id == "pi_1"

        assert self.post(client, event).json() == {"received": True, "duplicate": True}

    def test_account_updated(self, client, db, photographer):
        photographer.stripe_connect_id = "acct_1"
        db.commit()
        event = {
            "id": "evt_2",
            "type": "account.updated",
            "data": {"object": {"id": "acct_1", "charges_enabled": True, "payouts_enabled": True}},
        }
        assert self.post(client, event).status_code == 200
        db.refresh(photographer)
        assert photographer.stripe_connect_status == "active"
        assert photographer.stripe_payouts_enabled is True

    def test_wrong_secret(self, client):
        response = self.post(client, {"id": "evt_3", "type": "ping"}, secret="whsec_other")
        assert response.status_code == 401


# ============================================================================
# BANNERBEAR
# ============================================================================


def test_bannerbear_completes_render_job(client, db):
    job = RenderJob(job_type="carousel", status="processing", render_engine="bannerbear")
    db.add(job)
    db.commit()

    payload = {
        "uid": "bb-1",
        "status": "completed",
        "metadata": job.id,
        "images": [{"image_url": "https://bb.test/1.png"}, {"image_url": "https://bb.test/2.png"}],
        "render_time_ms": 900,
    }
    response = client.post("/api/webhooks/bannerbear", json=payload)
    assert response.json() == {"success": True, "jobId": job.id, "status": "completed"}
    db.refresh(job)
    assert job.output_urls == ["https://bb.test/1.png", "https://bb.test/2.png"]


def test_bannerbear_failure_is_recorded_and_retried(client, db, monkeypatch):
    job = RenderJob(job_type="carousel", status="processing", render_engine="bannerbear")
    db.add(job)
    db.commit()
    payload = {"uid": "bb-2", "status": "completed", "metadata": job.id, "images": []}

    def broken_apply(session, body):
        raise RuntimeError("render job locked")

    monkeypatch.setattr(webhooks, "apply_bannerbear_webhook", broken_apply)
    response = client.post("/api/webhooks/bannerbear", json=payload)
    assert response.status_code == 500
    event = db.query(WebhookEvent).filter(WebhookEvent.source == "bannerbear").one()
    assert (event.status, event.error_message) == ("failed", "render job locked")

    monkeypatch.undo()
    response = client.post("/api/webhooks/bannerbear", json=payload)
    assert response.json() == {"success": True, "jobId": job.id, "status": "completed"}
    db.refresh(event)
    assert event.status == "success"


# ============================================================================
# SLACK
# ============================================================================


class TestSlackCommands:
    @pytest.fixture(autouse=True)
    def secret(self, monkeypatch):
        monkeypatch.setattr(webhooks, "SLACK_SIGNING_SECRET", "slack-secret")

    def post(self, client, text: str):
        body = urlencode({"text": text, "user_id": "U1", "channel_id": "C1"}).encode()
        timestamp = int(time.time())
        return client.post(
            "/api/webhooks/slack/commands",
            content=body,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "X-Slack-Request-Timestamp": str(timestamp),
                "X-Slack-Signature": create_webhook_signature("slack-secret", body, "slack", timestamp=timestamp),
            },
        )

    def test_status(self, client, listing):
        response = self.post(client, f"status {listing.id}")
        assert response.json() == {"response_type": "ephemeral", "text": "*123 Lake Eola Dr*: ready_for_qc"}

    def test_queue(self, client, listing):
        assert self.post(client, "queue").json()["text"] == "1 listing(s) in QC, 0 rush"

    def test_help(self, client):
        assert self.post(client, "").json()["text"].startswith("Available commands:")

    def test_unsigned_request_rejected(self, client):
        response = client.post(
            "/api/webhooks/slack/commands",
            content=b"text=help",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        assert response.status_code == 401


# ============================================================================
# EVENT LEDGER
# ============================================================================


class TestEventLedger:
    NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

    def add_event(self, db, status, age_minutes):
        event = WebhookEvent(
            source="founddr",
            external_event_id="fd-9:COMPLETED",
            event_type="job.COMPLETED",
            payload={"jobId": "fd-9"},
            status=status,
            created_at=self.NOW - timedelta(minutes=age_minutes),
        )
        db.add(event)
        db.commit()
        return event

    def record(self, db):
        return webhooks.record_webhook_event(
            db, "founddr", "fd-9:COMPLETED", "job.COMPLETED", {"jobId": "fd-9", "retry": True}, now=self.NOW
        )

    def test_abandoned_processing_is_retried(self, db):
        event = self.add_event(db, "processing", age_minutes=30)
        retried = self.record(db)
        assert retried.id == event.id
        assert retried.status == "processing"
        assert retried.retry_count == 1
        assert retried.payload == {"jobId": "fd-9", "retry": True}

    @pytest.mark.parametrize("status,age_minutes", [("processing", 2), ("success", 30)])
    def test_in_flight_or_done_is_duplicate(self, db, status, age_minutes):
        self.add_event(db, status, age_minutes)
        assert self.record(db) is None
