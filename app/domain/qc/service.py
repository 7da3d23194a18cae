"""
QC service - review queue ordering, per-photo decisions, revisions and
final delivery approval.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import PORTAL_URL
from ...models import Listing, MediaAsset
from ...services.notification_service import send_notification
from ...services.slack_service import get_slack_service
from ...services.webhook_dispatch import dispatch_event
from ...utils.media_storage import ASSET_TYPES, PIPELINE_BUCKETS, MediaPipelineService, validate_media_file
from .repository import UNREVIEWED_STATUSES, QCRepository
from .schemas import ReviewRequest, UploadRequest

logger = logging.getLogger(__name__)

RUSH_WEIGHT = 1000
AGE_WEIGHT = 10
UPLOAD_URL_TTL = 3600
DOWNLOAD_URL_TTL = 900
MAX_EDITORS_NOTIFIED = 3


def priority_score(is_rush: bool, age_hours: float, pending_count: int) -> float:
    """Rush jobs first, then the longest waiting, then the most work left"""
    return (RUSH_WEIGHT if is_rush else 0) + age_hours * AGE_WEIGHT + pending_count


def asset_stats(assets: list[MediaAsset]) -> dict:
    return {
        "total": len(assets),
        "pending": sum(1 for a in assets if a.qc_status in UNREVIEWED_STATUSES),
        "approved": sum(1 for a in assets if a.qc_status == "approved"),
        "rejected": sum(1 for a in assets if a.qc_status == "rejected"),
        "needsEdit": sum(1 for a in assets if a.qc_status == "needs_edit"),
    }


def approval_rate(stats: dict) -> float:
    if not stats["total"]:
        return 0.0
    return round(stats["approved"] / stats["total"] * 100, 1)


def _seconds_since(value: Optional[datetime], now: datetime) -> float:
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return max((now - value).total_seconds(), 0.0)


def _hours_since(value: Optional[datetime], now: datetime) -> float:
    return _seconds_since(value, now) / 3600


def session_to_response(session) -> dict:
    return {
        "id": session.id,
        "staffId": session.staff_id,
        "listingId": session.listing_id,
        "photosReviewed": session.photos_reviewed or 0,
        "photosApproved": session.photos_approved or 0,
        "photosRejected": session.photos_rejected or 0,
        "startedAt": session.started_at,
        "endedAt": session.ended_at,
        "durationSeconds": session.duration_seconds,
    }


class QCService:
    def __init__(self, db: Session, pipeline: Optional[MediaPipelineService] = None):
        self.db = db
        self.repo = QCRepository()
        self.pipeline = pipeline or MediaPipelineService()

    def _get_listing(self, listing_id: str) -> Listing:
        listing = self.repo.get_listing(self.db, listing_id)
        if not listing:
            raise HTTPException(status_code=404, detail="Listing not found")
        return listing

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def get_queue(self, sort: str = "priority", now: Optional[datetime] = None) -> dict:
        now = now or datetime.now(timezone.utc)
        items = []
        for listing in self.repo.get_queue_listings(self.db):
            stats = asset_stats(self.repo.get_photos(self.db, listing.id))
            age = _hours_since(listing.updated_at or listing.created_at, now)
            agent = self.repo.get_agent(self.db, listing.agent_id)
            items.append(
                {
                    "listingId": listing.id,
                    "address": listing.address,
                    "agentName": agent.name if agent else None,
                    "status": listing.ops_status,
                    "isRush": bool(listing.is_rush),
                    "ageHours": round(age, 1),
                    "priorityScore": round(priority_score(listing.is_rush, age, stats["pending"]), 1),
                    "assetStats": stats,
                }
            )

        if sort == "oldest":
            items.sort(key=lambda i: i["ageHours"], reverse=True)
        elif sort == "newest":
            items.sort(key=lambda i: i["ageHours"])
        elif sort == "rush":
            items.sort(key=lambda i: (not i["isRush"], -i["ageHours"]))
        else:
            items.sort(key=lambda i: i["priorityScore"], reverse=True)

        return {
            "items": items,
            "readyCount": sum(1 for i in items if i["status"] == "ready_for_qc"),
            "inReviewCount": sum(1 for i in items if i["status"] == "in_qc"),
            "rushCount": sum(1 for i in items if i["isRush"]),
        }

    def get_review(self, listing_id: str) -> dict:
        listing = self._get_listing(listing_id)
        photos = self.repo.get_photos(self.db, listing_id)
        stats = asset_stats(photos)
        return {
            "listingId": listing.id,
            "address": listing.address,
            "status": listing.ops_status,
            "isRush": bool(listing.is_rush),
            "photos": [
                {
                    "id": p.id,
                    "url": p.media_url,
                    "processedPath": p.processed_storage_path,
                    "category": p.category,
                    "qcStatus": p.qc_status,
                    "qcNotes": p.qc_notes,
                }
                for p in photos
            ],
            "stats": stats,
            "approvalRate": approval_rate(stats),
        }

    # ------------------------------------------------------------------
    # Media intake
    # ------------------------------------------------------------------

    def create_upload(self, listing_id: str, data: UploadRequest) -> dict:
        """Validate an incoming file and hand back a presigned PUT into the raw bucket"""
        self._get_listing(listing_id)
        valid, error = validate_media_file(data.filename, data.sizeBytes, data.contentType, data.mediaType)
        if not valid:
            raise HTTPException(status_code=400, detail=error)

        result = self.pipeline.presigned_upload(
            listing_id, data.filename, data.contentType, data.category, UPLOAD_URL_TTL
        )
        if not result["success"]:
            logger.error(f"❌ Presigned upload failed for listing {listing_id}: {result['error']}")
            raise HTTPException(status_code=502, detail="Failed to create upload URL")

        asset_type = ASSET_TYPES[data.mediaType]
        asset = self.repo.add_asset(
            self.db,
            listing_id=listing_id,
            type=asset_type,
            category=data.category or (data.mediaType if data.mediaType != asset_type else None),
            storage_path=result["path"],
            storage_bucket=PIPELINE_BUCKETS["raw"],
            original_filename=data.filename,
            file_size_bytes=data.sizeBytes,
            mime_type=data.contentType,
            qc_status="pending",
            pipeline_stage="raw",
        )
        logger.info(f"📤 Upload URL issued for {data.filename} on listing {listing_id}")
        return {
            "assetId": asset.id,
            "uploadUrl": result["uploadUrl"],
            "path": result["path"],
            "expiresIn": UPLOAD_URL_TTL,
        }

    def pipeline_status(self, listing_id: str) -> dict:
        self._get_listing(listing_id)
        return {"listingId": listing_id, "stages": self.pipeline.status(listing_id)}

    def asset_download(self, asset_id: str) -> dict:
        asset = self.repo.get_asset(self.db, asset_id)
        if not asset:
            raise HTTPException(status_code=404, detail="Asset not found")

        stage = asset.pipeline_stage or "raw"
        path = asset.storage_path if stage == "raw" else asset.processed_storage_path
        if not path:
            raise HTTPException(status_code=404, detail="Asset has no stored file")

        url = self.pipeline.download_url(stage, path, DOWNLOAD_URL_TTL)
        if not url:
            raise HTTPException(status_code=502, detail="Failed to create download URL")
        return {"url": url, "stage": stage, "expiresIn": DOWNLOAD_URL_TTL}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, staff_id: str, listing_id: str) -> dict:
        listing = self._get_listing(listing_id)
        session = self.repo.create_session(self.db, staff_id, listing_id)
        if listing.ops_status == "ready_for_qc":
            self.repo.add_event(self.db, listing.id, "status_change", listing.ops_status, "in_qc", staff_id)
            listing.ops_status = "in_qc"
            self.db.commit()
        logger.info(f"🔍 QC session {session.id} started on {listing_id} by {staff_id}")
        return session_to_response(session)

    def end_session(self, session_id: str, now: Optional[datetime] = None) -> dict:
        """Close the session once; ending it again returns the recorded duration"""
        session = self.repo.get_session(self.db, session_id)
        if not session:
            raise HTTPException(status_code=404, detail="QC session not found")
        if session.ended_at is None:
            now = now or datetime.now(timezone.utc)
            session.ended_at = now
            session.duration_seconds = round(_seconds_since(session.started_at, now))
            self.db.commit()
            logger.info(f"⏱️ QC session {session.id} ended after {session.duration_seconds}s")
        return session_to_response(session)

    # ------------------------------------------------------------------
    # Review decisions
    # ------------------------------------------------------------------

    async def review_assets(self, listing_id: str, data: ReviewRequest, reviewer_id: Optional[str] = None) -> dict:
        listing = self._get_listing(listing_id)
        assets = self.repo.get_assets(self.db, listing_id, data.assetIds)
        found = {a.id for a in assets}
        missing = [asset_id for asset_id in data.assetIds if asset_id not in found]
        if missing:
            raise HTTPException(status_code=404, detail=f"Assets not found: {', '.join(missing)}")

        session = None
        if data.sessionId:
            session = self.repo.get_session(self.db, data.sessionId)
            if not session or session.listing_id != listing_id:
                raise HTTPException(status_code=404, detail="QC session not found")

        for asset in assets:
            asset.qc_status = data.decision
            if data.decision == "rejected":
                asset.qc_notes = data.notes
                metadata = dict(asset.metadata_json or {})
                if data.rejectionReason:
                    metadata["rejection_reason"] = data.rejectionReason
                asset.metadata_json = metadata
            elif data.notes:
                asset.qc_notes = data.notes

        if session:
            session.photos_reviewed = (session.photos_reviewed or 0) + len(assets)
            if data.decision == "approved":
                session.photos_approved = (session.photos_approved or 0) + len(assets)
            else:
                session.photos_rejected = (session.photos_rejected or 0) + len(assets)

        rejected_ids = [a.id for a in assets] if data.decision == "rejected" else []
        if rejected_ids:
            self.repo.add_event(
                self.db,
                listing.id,
                "qc_rejection",
                None,
                {"asset_ids": rejected_ids, "notes": data.notes, "reason": data.rejectionReason},
                reviewer_id or (session.staff_id if session else None),
            )

        self.db.commit()
        verb = "✅ Approved" if data.decision == "approved" else "❌ Rejected"
        logger.info(f"{verb} {len(assets)} photo(s) on listing {listing_id}")

        if rejected_ids:
            await self._notify_editors(listing, len(rejected_ids), data.notes)

        stats = asset_stats(self.repo.get_photos(self.db, listing_id))
        return {"success": True, "updated": len(assets), "stats": stats, "approvalRate": approval_rate(stats)}

    async def _notify_editors(self, listing: Listing, photo_count: int, notes: Optional[str]) -> None:
        data = {
            "listing_address": listing.address,
            "photo_count": photo_count,
            "notes": notes or "",
            "dashboard_url": f"/admin/ops/jobs/{listing.id}",
        }
        for editor in self.repo.get_active_editors(self.db, MAX_EDITORS_NOTIFIED):
            try:
                await send_notification(
                    self.db,
                    "qc_rejection",
                    {"email": editor.email, "phone": editor.phone, "name": editor.name, "type": "staff"},
                    channel="email",
                    data={"recipient_name": editor.name, **data},
                    listing_id=listing.id,
                )
            except Exception as e:
                logger.error(f"❌ Failed to notify editor {editor.id} about rejections on {listing.id}: {e}")

    async def request_revision(
        self,
        listing_id: str,
        notes: str,
        requested_by: Optional[str] = None,
        asset_ids: Optional[list[str]] = None,
    ) -> dict:
        """
        Send a job back to editing.

        Only the named photos move to needs_edit; without a list every
        rejected photo goes back.
        """
        listing = self._get_listing(listing_id)
        photos = self.repo.get_photos(self.db, listing_id)
        if asset_ids:
            by_id = {p.id: p for p in photos}
            missing = [asset_id for asset_id in asset_ids if asset_id not in by_id]
            if missing:
                raise HTTPException(status_code=404, detail=f"Assets not found: {', '.join(missing)}")
            rejected = [by_id[asset_id] for asset_id in dict.fromkeys(asset_ids)]
        else:
            rejected = [p for p in photos if p.qc_status == "rejected"]
        if not rejected:
            raise HTTPException(status_code=400, detail="No rejected photos to send for revision")

        rejected_ids = [p.id for p in rejected]
        for photo in rejected:
            photo.qc_status = "needs_edit"
            photo.pipeline_stage = "processing"

        old_status = listing.ops_status
        listing.ops_status = "in_editing"
        self.repo.add_event(
            self.db,
            listing.id,
            "revision_requested",
            old_status,
            {"status": "in_editing", "rejected_photo_ids": rejected_ids, "notes": notes},
            requested_by,
        )
        self.db.commit()
        logger.warning(f"🔄 Revision requested for listing {listing_id}: {len(rejected_ids)} photo(s)")

        await get_slack_service().send_notification(
            "qc_alert",
            {
                "listing_id": listing.id,
                "issue": f"{len(rejected_ids)} photo(s) sent back: {notes}",
                "severity": "high" if listing.is_rush else "medium",
                "reviewer": requested_by or "QC",
            },
        )
        return {"success": True, "status": "in_editing", "rejectedPhotoIds": rejected_ids}

    # ------------------------------------------------------------------
    # Final delivery
    # ------------------------------------------------------------------

    def _promote_to_final(self, listing_id: str, photos: list[MediaAsset]) -> int:
        promoted = 0
        for photo in photos:
            if photo.pipeline_stage != "qc" or not photo.processed_storage_path:
                continue
            result = self.pipeline.promote(listing_id, "qc", "final", photo.processed_storage_path)
            if not result["success"]:
                logger.error(f"❌ Could not promote {photo.id} to final: {result['error']}")
                continue
            photo.processed_storage_path = result["newPath"]
            photo.media_url = result.get("publicUrl", photo.media_url)
            photo.pipeline_stage = "final"
            promoted += 1
        return promoted

    async def approve_delivery(
        self,
        listing_id: str,
        approved_by: Optional[str] = None,
        quality_score: Optional[float] = None,
        notify: bool = True,
    ) -> dict:
        listing = self._get_listing(listing_id)
        if listing.ops_status == "delivered":
            raise HTTPException(status_code=409, detail="Listing already delivered")

        photos = self.repo.get_photos(self.db, listing_id)
        stats = asset_stats(photos)
        if not stats["total"]:
            raise HTTPException(status_code=400, detail="Listing has no photos to deliver")
        if stats["pending"] or any(p.qc_status in ("processing", "needs_edit") for p in photos):
            raise HTTPException(status_code=400, detail="All photos must be reviewed before final approval")
        if stats["rejected"]:
            raise HTTPException(status_code=400, detail="Resolve rejected photos before final approval")

        promoted = self._promote_to_final(listing_id, photos)

        old_status = listing.ops_status
        listing.ops_status = "delivered"
        listing.delivered_at = datetime.now(timezone.utc)
        self.repo.add_event(
            self.db,
            listing.id,
            "status_change",
            old_status,
            {"status": "delivered", "quality_score": quality_score, "approved_photos": stats["approved"]},
            approved_by,
        )
        self.db.commit()
        logger.info(f"✅ Listing {listing_id} approved for delivery ({stats['approved']} photos)")

        delivery_url = f"{PORTAL_URL}/delivery/{listing.id}"
        agent = self.repo.get_agent(self.db, listing.agent_id)
        if notify and agent:
            await send_notification(
                self.db,
                "qc_complete",
                {"email": agent.email, "phone": agent.phone, "name": agent.name, "type": "agent"},
                channel="both",
                data={
                    "agent_name": agent.name,
                    "listing_address": listing.address,
                    "delivery_url": delivery_url,
                    "asset_summary": {"photos": stats["approved"]},
                },
                listing_id=listing.id,
            )

        await get_slack_service().send_notification(
            "delivery_complete",
            {
                "listing_id": listing.id,
                "address": listing.address,
                "agent_name": agent.name if agent else None,
                "photo_count": stats["approved"],
                "delivery_url": delivery_url,
            },
        )
        await dispatch_event(
            self.db,
            "order.delivered",
            {"listing_id": listing.id, "address": listing.address, "photo_count": stats["approved"]},
        )

        return {
            "success": True,
            "status": "delivered",
            "approvedPhotos": stats["approved"],
            "promoted": promoted,
            "deliveryUrl": delivery_url,
        }
