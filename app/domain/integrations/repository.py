"""Integrations repository"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Agent, Listing, MediaAsset, Staff
from ...models_integrations import WebhookSubscription


class IntegrationsRepository:
    @staticmethod
    def get_listing(db: Session, listing_id: str) -> Optional[Listing]:
        return db.query(Listing).filter(Listing.id == listing_id).first()

    @staticmethod
    def get_agent(db: Session, agent_id: Optional[str]) -> Optional[Agent]:
        if not agent_id:
            return None
        return db.query(Agent).filter(Agent.id == agent_id).first()

    @staticmethod
    def get_staff(db: Session, staff_id: str) -> Optional[Staff]:
        return db.query(Staff).filter(Staff.id == staff_id).first()

    @staticmethod
    def get_deliverable_photos(db: Session, listing_id: str) -> list[MediaAsset]:
        return (
            db.query(MediaAsset)
            .filter(
                MediaAsset.listing_id == listing_id,
                MediaAsset.type == "photo",
                MediaAsset.qc_status == "approved",
                MediaAsset.media_url.isnot(None),
            )
            .order_by(MediaAsset.sort_order.asc(), MediaAsset.created_at.asc())
            .all()
        )

    @staticmethod
    def list_subscriptions(db: Session) -> list[WebhookSubscription]:
        return db.query(WebhookSubscription).order_by(WebhookSubscription.created_at.desc()).all()

    @staticmethod
    def get_subscription(db: Session, subscription_id: str) -> Optional[WebhookSubscription]:
        return db.query(WebhookSubscription).filter(WebhookSubscription.id == subscription_id).first()

    @staticmethod
    def create_subscription(db: Session, **data) -> WebhookSubscription:
        subscription = WebhookSubscription(**data)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    @staticmethod
    def delete_subscription(db: Session, subscription: WebhookSubscription) -> None:
        db.delete(subscription)
        db.commit()
