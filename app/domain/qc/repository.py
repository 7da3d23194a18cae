"""QC repository - queue and review persistence"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Agent, JobEvent, Listing, MediaAsset, Staff
from ...models_processing import QCSession

QC_LISTING_STATUSES = ("ready_for_qc", "in_qc")
UNREVIEWED_STATUSES = ("pending", "ready_for_qc")


class QCRepository:
    @staticmethod
    def get_queue_listings(db: Session) -> list[Listing]:
        return (
            db.query(Listing)
            .filter(Listing.ops_status.in_(QC_LISTING_STATUSES))
            .order_by(Listing.is_rush.desc(), Listing.updated_at.asc())
            .all()
        )

    @staticmethod
    def get_listing(db: Session, listing_id: str) -> Optional[Listing]:
        return db.query(Listing).filter(Listing.id == listing_id).first()

    @staticmethod
    def get_agent(db: Session, agent_id: Optional[str]) -> Optional[Agent]:
        if not agent_id:
            return None
        return db.query(Agent).filter(Agent.id == agent_id).first()

    @staticmethod
    def get_active_editors(db: Session, limit: int) -> list[Staff]:
        return db.query(Staff).filter(Staff.role == "editor", Staff.is_active.is_(True)).limit(limit).all()

    @staticmethod
    def get_photos(db: Session, listing_id: str) -> list[MediaAsset]:
        return (
            db.query(MediaAsset)
            .filter(MediaAsset.listing_id == listing_id, MediaAsset.type == "photo")
            .order_by(MediaAsset.sort_order.asc(), MediaAsset.created_at.asc())
            .all()
        )

    @staticmethod
    def get_assets(db: Session, listing_id: str, asset_ids: list[str]) -> list[MediaAsset]:
        return (
            db.query(MediaAsset)
            .filter(MediaAsset.listing_id == listing_id, MediaAsset.id.in_(asset_ids))
            .all()
        )

    @staticmethod
    def get_session(db: Session, session_id: str) -> Optional[QCSession]:
        return db.query(QCSession).filter(QCSession.id == session_id).first()

    @staticmethod
    def create_session(db: Session, staff_id: str, listing_id: str) -> QCSession:
        session = QCSession(staff_id=staff_id, listing_id=listing_id, started_at=datetime.now(timezone.utc))
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    @staticmethod
    def add_event(
        db: Session,
        listing_id: str,
        event_type: str,
        old_value=None,
        new_value=None,
        actor_id: Optional[str] = None,
    ) -> None:
        db.add(
            JobEvent(
                listing_id=listing_id,
                event_type=event_type,
                old_value=old_value,
                new_value=new_value,
                actor_id=actor_id,
                actor_type="staff" if actor_id else "system",
            )
        )

    @staticmethod
    def get_asset(db: Session, asset_id: str) -> Optional[MediaAsset]:
        return db.query(MediaAsset).filter(MediaAsset.id == asset_id).first()

    @staticmethod
    def add_asset(db: Session, **fields) -> MediaAsset:
        asset = MediaAsset(**fields)
        db.add(asset)
        db.commit()
        db.refresh(asset)
        return asset
