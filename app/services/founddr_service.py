"""
FoundDR Service
HDR merging of bracketed exposures, hosted on RunPod. Jobs are submitted
here and finish asynchronously through the /webhooks/founddr callback.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ..circuit_breaker import with_circuit_breaker
from ..config import APP_URL, FOUNDDR_API_KEY, FOUNDDR_API_URL
from ..models import JobEvent, Listing, MediaAsset
from ..models_processing import ProcessingJob

logger = logging.getLogger(__name__)

DEFAULT_PRESET = "real_estate_standard"
DEFAULT_OPTIONS = {"sky_enhancement": True, "window_pull": True, "flash_ambient_blend": True}

# founddr status -> local status
STATUS_MAP = {
    "IN_QUEUE": "queued",
    "queued": "queued",
    "IN_PROGRESS": "processing",
    "processing": "processing",
    "COMPLETED": "completed",
    "completed": "completed",
    "FAILED": "failed",
    "failed": "failed",
    "CANCELLED": "cancelled",
    "cancelled": "cancelled",
}
TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class FoundDRError(Exception):
    pass


class FoundDRService:
    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = (api_url or FOUNDDR_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else (FOUNDDR_API_KEY or "")
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _post(self, path: str, body: dict) -> dict:
        async def call():
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_url}{path}",
                    json=body,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            if not response.is_success:
                raise FoundDRError(f"FoundDR API error: {response.status_code}")
            return response.json()

        return await with_circuit_breaker("founddr", call, timeout=30.0)

    async def submit_job(
        self,
        db: Session,
        listing_id: str,
        input_keys: list[str],
        asset_ids: Optional[list[str]] = None,
        preset: str = DEFAULT_PRESET,
        options: Optional[dict] = None,
    ) -> ProcessingJob:
        """
        Submit one bracket set for HDR merging and track it as a ProcessingJob.

        Raises:
            FoundDRError, CircuitOpenError: when the job could not be submitted
        """
        if not self.is_configured():
            raise FoundDRError("FoundDR not configured")
        if not input_keys:
            raise FoundDRError("At least one input image is required")

        job = ProcessingJob(
            listing_id=listing_id, status="uploading", input_keys=input_keys, bracket_count=len(input_keys)
        )
        db.add(job)
        db.commit()
        db.refresh(job)

        try:
            result = await self._post(
                "/jobs",
                {
                    "images": input_keys,
                    "preset": preset,
                    "options": options or DEFAULT_OPTIONS,
                    "webhookUrl": f"{APP_URL}/api/webhooks/founddr",
                    "reference": job.id,
                },
            )
        except Exception as e:
            job.status = "failed"
            job.error_message = str(e)
            db.commit()
            logger.error(f"❌ FoundDR submission failed for listing {listing_id}: {e}")
            raise

        job.founddr_job_id = result.get("jobId") or result.get("id")
        job.status = STATUS_MAP.get(result.get("status"), "queued")
        job.queued_at = datetime.now(timezone.utc)

        if asset_ids:
            db.query(MediaAsset).filter(MediaAsset.id.in_(asset_ids)).update(
                {MediaAsset.processing_job_id: job.id, MediaAsset.qc_status: "processing"},
                synchronize_session=False,
            )
        db.commit()
        logger.info(f"📤 FoundDR job {job.founddr_job_id} queued for listing {listing_id} ({len(input_keys)} brackets)")
        return job


def _listing_processing_done(db: Session, listing_id: str) -> bool:
    open_jobs = (
        db.query(ProcessingJob)
        .filter(ProcessingJob.listing_id == listing_id, ProcessingJob.status.notin_(TERMINAL_STATUSES))
        .count()
    )
    return open_jobs == 0


def apply_founddr_webhook(db: Session, payload: dict) -> dict:
    """
    Apply a FoundDR status callback to the matching ProcessingJob.

    Returns:
        {"acknowledged": True, ...}; unknown jobs are acknowledged so FoundDR stops retrying
    """
    founddr_job_id = payload.get("jobId") or payload.get("id")
    job = db.query(ProcessingJob).filter(ProcessingJob.founddr_job_id == founddr_job_id).first()
    if not job:
        logger.warning(f"⚠️ FoundDR webhook for unknown job {founddr_job_id}")
        return {"acknowledged": True, "message": f"Job {founddr_job_id} not found"}

    now = datetime.now(timezone.utc)
    status = STATUS_MAP.get(payload.get("status"), job.status)
    previous = job.status
    job.status = status
    job.webhook_received_at = now

    if status == "processing" and not job.started_at:
        job.started_at = now

    if status == "completed":
        results = payload.get("results") or []
        job.output_key = payload.get("outputKey") or (results[0].get("processedUrl") if results else None)
        job.metrics = payload.get("metrics") or {}
        job.processing_time_ms = payload.get("processingTimeMs")
        job.completed_at = now
        db.query(MediaAsset).filter(MediaAsset.processing_job_id == job.id).update(
            {
                MediaAsset.qc_status: "ready_for_qc",
                MediaAsset.processed_storage_path: job.output_key,
                MediaAsset.pipeline_stage: "qc",
            },
            synchronize_session=False,
        )
    elif status in ("failed", "cancelled"):
        job.error_message = payload.get("error") or payload.get("message") or f"Job {status}"
        job.completed_at = now
        db.query(MediaAsset).filter(MediaAsset.processing_job_id == job.id).update(
            {MediaAsset.qc_status: "needs_edit"}, synchronize_session=False
        )
        db.add(
            JobEvent(
                listing_id=job.listing_id,
                event_type="processing_failed",
                new_value={"processing_job_id": job.id, "error": job.error_message},
                actor_type="webhook",
            )
        )
    db.commit()
    logger.info(f"🔄 FoundDR job {founddr_job_id}: {previous} -> {status}")

    advanced = False
    if status == "completed" and _listing_processing_done(db, job.listing_id):
        listing = db.query(Listing).filter(Listing.id == job.listing_id).first()
        if listing and listing.ops_status in ("staged", "processing"):
            db.add(
                JobEvent(
                    listing_id=listing.id,
                    event_type="auto_status_advance",
                    old_value={"ops_status": listing.ops_status},
                    new_value={"ops_status": "ready_for_qc", "reason": "hdr_processing_complete"},
                    actor_type="system",
                )
            )
            listing.ops_status = "ready_for_qc"
            db.commit()
            advanced = True

    return {"acknowledged": True, "success": True, "jobId": job.id, "status": status, "listingAdvanced": advanced}
