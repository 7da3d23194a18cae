import asyncio
from datetime import timedelta, timezone

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from app.domain.qc import service as qc_service
from app.domain.qc.schemas import ReviewRequest, UploadRequest
from app.domain.qc.service import QCService, priority_score
from app.models import JobEvent, Listing, MediaAsset, Staff


class FakePipeline:
    """Stands in for the R2 bucket pipeline"""

    def __init__(self, fail=False):
        self.fail = fail
        self.promoted = []

    def presigned_upload(self, listing_id, filename, content_type, category=None, expires_in=3600):
        if self.fail:
            return {"success": False, "error": "boom"}
        return {"success": True, "uploadUrl": f"https://r2.test/{filename}?sig=1", "path": f"{listing_id}/raw/x.jpg"}

    def status(self, listing_id):
        return {"raw": 2, "processing": 0, "qc": 1, "final": 0}

    def download_url(self, stage, path, expires_in=900):
        return f"https://r2.test/{stage}/{path}"

    def promote(self, listing_id, from_stage, to_stage, path):
        self.promoted.append(path)
        return {"success": True, "newPath": f"{listing_id}/final/{path}", "publicUrl": f"https://cdn.test/{path}"}


def add_photos(db, listing, statuses, stage="qc"):
    photos = []
    for index, status in enumerate(statuses):
        photo = MediaAsset(
            listing_id=listing.id,
            type="photo",
            qc_status=status,
            sort_order=index,
            pipeline_stage=stage,
            processed_storage_path=f"{listing.id}/qc/photo-{index}.jpg",
        )
        db.add(photo)
        photos.append(photo)
    db.commit()
    return photos


@pytest.fixture
def sent(monkeypatch):
    calls = []

    async def fake_send_notification(db, notification_type, recipient, channel="email", data=None, listing_id=None):
        calls.append((notification_type, recipient["email"], data))
        return {"email_sent": True, "sms_sent": False}

    monkeypatch.setattr(qc_service, "send_notification", fake_send_notification)
    return calls


def test_priority_score_weights():
    assert priority_score(True, 0, 0) == 1000
    assert priority_score(False, 5, 3) == 53


class TestQueue:
    def test_rush_listing_sorts_first(self, db, agent, listing):
        rush = Listing(agent_id=agent.id, address="9 Rush Ln", ops_status="in_qc", is_rush=True)
        db.add(rush)
        db.add(Listing(agent_id=agent.id, address="Not Ready Rd", ops_status="scheduled"))
        db.commit()
        add_photos(db, listing, ["pending", "pending"])

        queue = QCService(db, FakePipeline()).get_queue()
        assert [i["address"] for i in queue["items"]] == ["9 Rush Ln", "123 Lake Eola Dr"]
        assert queue["readyCount"] == 1
        assert queue["inReviewCount"] == 1
        assert queue["rushCount"] == 1
        assert queue["items"][1]["assetStats"]["pending"] == 2
        assert queue["items"][1]["agentName"] == "Dana Realtor"

    def test_queue_endpoint_requires_staff(self, client):
        assert client.get("/api/qc/queue").status_code == 401

    def test_queue_endpoint(self, client, staff_headers, listing):
        response = client.get("/api/qc/queue", params={"sort": "oldest"}, headers=staff_headers)
        assert response.status_code == 200
        assert response.json()["items"][0]["listingId"] == listing.id


class TestReview:
    def test_rejection_needs_notes(self):
        with pytest.raises(ValidationError):
            ReviewRequest(assetIds=["a"], decision="rejected", notes="blurry")

    def test_notes_are_escaped(self):
        request = ReviewRequest(assetIds=["a"], decision="approved", notes="<b>nice</b>")
        assert request.notes == "&lt;b&gt;nice&lt;/b&gt;"

    def test_review_updates_assets_and_session(self, db, listing, photographer):
        photos = add_photos(db, listing, ["pending", "pending", "pending"])
        service = QCService(db, FakePipeline())
        session = service.start_session(photographer.id, listing.id)
        db.refresh(listing)
        assert listing.ops_status == "in_qc"

        approve = ReviewRequest(assetIds=[photos[0].id, photos[1].id], decision="approved", sessionId=session["id"])
        asyncio.run(service.review_assets(listing.id, approve))
        rejection = ReviewRequest(
            assetIds=[photos[2].id],
            decision="rejected",
            notes="Horizon is tilted in this frame",
            rejectionReason="composition",
            sessionId=session["id"],
        )
        result = asyncio.run(service.review_assets(listing.id, rejection))

        assert result["stats"] == {"total": 3, "pending": 0, "approved": 2, "rejected": 1, "needsEdit": 0}
        assert result["approvalRate"] == 66.7
        db.refresh(photos[2])
        assert photos[2].metadata_json["rejection_reason"] == "composition"

        ended = service.end_session(session["id"])
        assert ended["photosReviewed"] == 3
        assert ended["photosApproved"] == 2
        assert ended["photosRejected"] == 1
        assert ended["endedAt"] is not None

    def test_unknown_asset(self, db, listing):
        with pytest.raises(HTTPException) as exc:
            asyncio.run(
                QCService(db, FakePipeline()).review_assets(
                    listing.id, ReviewRequest(assetIds=["nope"], decision="approved")
                )
            )
        assert exc.value.status_code == 404

    def test_rejection_records_event_and_notifies_editors(self, db, listing, photographer, sent):
        editor = Staff(name="Eve Editor", email="eve@example.com", role="editor")
        db.add(editor)
        db.add(Staff(name="Old Editor", email="old@example.com", role="editor", is_active=False))
        db.commit()
        photos = add_photos(db, listing, ["pending", "pending"])

        rejection = ReviewRequest(
            assetIds=[p.id for p in photos], decision="rejected", notes="Window glare on both frames"
        )
        asyncio.run(QCService(db, FakePipeline()).review_assets(listing.id, rejection, photographer.id))

        event = db.query(JobEvent).filter(JobEvent.event_type == "qc_rejection").one()
        assert sorted(event.new_value["asset_ids"]) == sorted(p.id for p in photos)
        assert event.new_value["notes"] == "Window glare on both frames"
        assert event.actor_id == photographer.id
        assert [(kind, email) for kind, email, _ in sent] == [("qc_rejection", "eve@example.com")]
        assert sent[0][2]["photo_count"] == 2
        assert sent[0][2]["recipient_name"] == "Eve Editor"

    def test_approval_does_not_notify(self, db, listing, sent):
        db.add(Staff(name="Eve Editor", email="eve@example.com", role="editor"))
        db.commit()
        photo = add_photos(db, listing, ["pending"])[0]
        approve = ReviewRequest(assetIds=[photo.id], decision="approved")
        asyncio.run(QCService(db, FakePipeline()).review_assets(listing.id, approve))

        assert sent == []
        assert db.query(JobEvent).filter(JobEvent.event_type == "qc_rejection").count() == 0


class TestSessions:
    def test_end_records_duration(self, db, listing, photographer):
        service = QCService(db, FakePipeline())
        session = service.start_session(photographer.id, listing.id)
        started = session["startedAt"].replace(tzinfo=timezone.utc)

        ended = service.end_session(session["id"], now=started + timedelta(minutes=4, seconds=30))
        assert ended["durationSeconds"] == 270

        again = service.end_session(session["id"], now=started + timedelta(hours=2))
        assert again["durationSeconds"] == 270

    def test_session_endpoints(self, client, staff_headers, listing, photographer):
        started = client.post(
            "/api/qc/sessions", json={"staffId": photographer.id, "listingId": listing.id}, headers=staff_headers
        )
        assert started.status_code == 201
        assert started.json()["durationSeconds"] is None

        ended = client.post(f"/api/qc/sessions/{started.json()['id']}/end", headers=staff_headers)
        assert ended.status_code == 200
        assert ended.json()["durationSeconds"] >= 0


class TestRevision:
    def test_sends_rejected_photos_back(self, db, listing):
        photos = add_photos(db, listing, ["approved", "rejected"])
        result = asyncio.run(QCService(db, FakePipeline()).request_revision(listing.id, "Fix the sky on photo 2"))

        assert result == {"success": True, "status": "in_editing", "rejectedPhotoIds": [photos[1].id]}
        db.refresh(photos[1])
        db.refresh(listing)
        assert photos[1].qc_status == "needs_edit"
        assert listing.ops_status == "in_editing"
        event = db.query(JobEvent).filter(JobEvent.event_type == "revision_requested").one()
        assert event.new_value["rejected_photo_ids"] == [photos[1].id]

    def test_nothing_to_revise(self, db, listing):
        add_photos(db, listing, ["approved"])
        with pytest.raises(HTTPException) as exc:
            asyncio.run(QCService(db, FakePipeline()).request_revision(listing.id, "Nothing wrong here"))
        assert exc.value.status_code == 400

    def test_only_named_photos_go_back(self, db, listing):
        photos = add_photos(db, listing, ["rejected", "rejected", "approved"])
        service = QCService(db, FakePipeline())
        revision = service.request_revision(listing.id, "Re-edit the kitchen only", asset_ids=[photos[0].id])
        result = asyncio.run(revision)

        assert result["rejectedPhotoIds"] == [photos[0].id]
        review = service.get_review(listing.id)
        assert [p["qcStatus"] for p in review["photos"]] == ["needs_edit", "rejected", "approved"]
        assert review["stats"]["needsEdit"] == 1
        assert review["stats"]["rejected"] == 1

    def test_unknown_named_photo(self, db, listing):
        add_photos(db, listing, ["rejected"])
        with pytest.raises(HTTPException) as exc:
            asyncio.run(
                QCService(db, FakePipeline()).request_revision(listing.id, "Fix the sky please", asset_ids=["nope"])
            )
        assert exc.value.status_code == 404

    def test_revision_endpoint_accepts_asset_ids(self, client, db, staff_headers, listing):
        photos = add_photos(db, listing, ["rejected", "rejected"])
        response = client.post(
            f"/api/qc/listings/{listing.id}/revision",
            json={"notes": "Straighten the verticals", "assetIds": [photos[1].id]},
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json()["rejectedPhotoIds"] == [photos[1].id]
        db.refresh(photos[0])
        assert photos[0].qc_status == "rejected"


class TestFinalApproval:
    def test_blocks_until_everything_reviewed(self, db, listing, sent):
        add_photos(db, listing, ["approved", "pending"])
        with pytest.raises(HTTPException) as exc:
            asyncio.run(QCService(db, FakePipeline()).approve_delivery(listing.id))
        assert exc.value.detail == "All photos must be reviewed before final approval"

    def test_blocks_rejected(self, db, listing, sent):
        add_photos(db, listing, ["approved", "rejected"])
        with pytest.raises(HTTPException) as exc:
            asyncio.run(QCService(db, FakePipeline()).approve_delivery(listing.id))
        assert exc.value.detail == "Resolve rejected photos before final approval"

    def test_delivers_and_notifies(self, db, listing, sent):
        photos = add_photos(db, listing, ["approved", "approved"])
        pipeline = FakePipeline()

        result = asyncio.run(QCService(db, pipeline).approve_delivery(listing.id, quality_score=4.5))

        assert result["status"] == "delivered"
        assert result["approvedPhotos"] == 2
        assert result["promoted"] == 2
        assert result["deliveryUrl"].endswith(f"/delivery/{listing.id}")
        db.refresh(listing)
        db.refresh(photos[0])
        assert listing.ops_status == "delivered"
        assert listing.delivered_at is not None
        assert photos[0].pipeline_stage == "final"
        assert photos[0].media_url.startswith("https://cdn.test/")
        assert sent[0][0] == "qc_complete"
        assert sent[0][1] == "dana@example.com"

        with pytest.raises(HTTPException) as exc:
            asyncio.run(QCService(db, pipeline).approve_delivery(listing.id))
        assert exc.value.status_code == 409


class TestMediaIntake:
    def test_create_upload_adds_pending_raw_asset(self, db, listing):
        data = UploadRequest(filename="front.jpg", contentType="image/jpeg", sizeBytes=2048, mediaType="drone")
        result = QCService(db, FakePipeline()).create_upload(listing.id, data)

        assert result["uploadUrl"].startswith("https://r2.test/front.jpg")
        assert result["expiresIn"] == 3600
        asset = db.query(MediaAsset).filter(MediaAsset.id == result["assetId"]).one()
        assert asset.type == "photo"
        assert asset.category == "drone"
        assert asset.pipeline_stage == "raw"
        assert asset.storage_bucket == "asm-raw-uploads"
        assert asset.qc_status == "pending"

    def test_rejects_wrong_mime_type(self, db, listing):
        data = UploadRequest(filename="tour.mp4", contentType="video/mp4", sizeBytes=2048, mediaType="photo")
        with pytest.raises(HTTPException) as exc:
            QCService(db, FakePipeline()).create_upload(listing.id, data)
        assert exc.value.status_code == 400
        assert exc.value.detail == "File type video/mp4 not allowed for photo"

    def test_rejects_oversized_photo(self, db, listing):
        data = UploadRequest(filename="big.jpg", contentType="image/jpeg", sizeBytes=51 * 1024 * 1024)
        with pytest.raises(HTTPException) as exc:
            QCService(db, FakePipeline()).create_upload(listing.id, data)
        assert exc.value.detail == "File size exceeds maximum of 50MB"

    def test_storage_failure(self, db, listing):
        data = UploadRequest(filename="front.jpg", contentType="image/jpeg", sizeBytes=10)
        with pytest.raises(HTTPException) as exc:
            QCService(db, FakePipeline(fail=True)).create_upload(listing.id, data)
        assert exc.value.status_code == 502

    def test_download_uses_stage_path(self, db, listing):
        photo = add_photos(db, listing, ["approved"])[0]
        result = QCService(db, FakePipeline()).asset_download(photo.id)
        assert result == {
            "url": f"https://r2.test/qc/{photo.processed_storage_path}",
            "stage": "qc",
            "expiresIn": 900,
        }

    def test_pipeline_status(self, db, listing):
        result = QCService(db, FakePipeline()).pipeline_status(listing.id)
        assert result == {"listingId": listing.id, "stages": {"raw": 2, "processing": 0, "qc": 1, "final": 0}}
