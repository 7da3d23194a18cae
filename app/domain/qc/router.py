"""QC router - media intake, review queue, photo decisions, sessions and final approval"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import require_staff
from ...database import get_db
from ...rate_limiter import create_rate_limiter
from .schemas import (
    FinalApprovalRequest,
    QueueResponse,
    QueueSort,
    ReviewRequest,
    RevisionRequest,
    SessionResponse,
    SessionStart,
    UploadRequest,
)
from .service import QCService

router = APIRouter(prefix="/qc", tags=["QC"], dependencies=[Depends(require_staff)])

upload_rate_limit = create_rate_limiter("upload")


def get_qc_service(db: Session = Depends(get_db)) -> QCService:
    return QCService(db)


@router.get("/queue", response_model=QueueResponse)
async def get_queue(sort: QueueSort = "priority", service: QCService = Depends(get_qc_service)):
    return service.get_queue(sort)


@router.get("/listings/{listing_id}")
async def get_review(listing_id: str, service: QCService = Depends(get_qc_service)):
    return service.get_review(listing_id)


@router.post("/listings/{listing_id}/review")
async def review_assets(listing_id: str, data: ReviewRequest, service: QCService = Depends(get_qc_service)):
    return await service.review_assets(listing_id, data)


@router.post("/listings/{listing_id}/revision")
async def request_revision(listing_id: str, data: RevisionRequest, service: QCService = Depends(get_qc_service)):
    return await service.request_revision(listing_id, data.notes, data.requestedBy, data.assetIds)


@router.post("/listings/{listing_id}/approve")
async def approve_delivery(
    listing_id: str, data: FinalApprovalRequest, service: QCService = Depends(get_qc_service)
):
    return await service.approve_delivery(listing_id, data.approvedBy, data.qualityScore, data.notify)


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def start_session(data: SessionStart, service: QCService = Depends(get_qc_service)):
    return service.start_session(data.staffId, data.listingId)


@router.post("/sessions/{session_id}/end", response_model=SessionResponse)
async def end_session(session_id: str, service: QCService = Depends(get_qc_service)):
    return service.end_session(session_id)


@router.post("/listings/{listing_id}/uploads", status_code=201, dependencies=[Depends(upload_rate_limit)])
async def create_upload(listing_id: str, data: UploadRequest, service: QCService = Depends(get_qc_service)):
    """Presigned PUT into the raw bucket plus a pending asset row"""
    return service.create_upload(listing_id, data)


@router.get("/listings/{listing_id}/pipeline")
async def pipeline_status(listing_id: str, service: QCService = Depends(get_qc_service)):
    return service.pipeline_status(listing_id)


@router.get("/assets/{asset_id}/download")
async def asset_download(asset_id: str, service: QCService = Depends(get_qc_service)):
    return service.asset_download(asset_id)
