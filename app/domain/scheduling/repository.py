"""Scheduling repository - Database operations for assignment, Go Anytime and waitlist"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import (
    PhotographerAssignment,
    SellerSchedule,
    ServiceTerritory,
    Staff,
    StaffTerritory,
    TerritoryAvailability,
    WaitlistEntry,
)


class SchedulingRepository:
    """Repository for scheduling database operations"""

    # ------------------------------------------------------------------
    # Staff / territories
    # ------------------------------------------------------------------

    @staticmethod
    def get_active_shooters(db: Session) -> list[Staff]:
        return (
            db.query(Staff)
            .filter(Staff.is_active.is_(True), Staff.role.in_(["photographer", "videographer"]))
            .all()
        )

    @staticmethod
    def get_territory_ids_for_zip(db: Session, zip_code: str) -> list[str]:
        territories = db.query(ServiceTerritory).filter(ServiceTerritory.is_active.is_(True)).all()
        return [t.id for t in territories if zip_code in (t.zip_codes or [])]

    @staticmethod
    def get_staff_territories(db: Session, territory_ids: list[str]) -> list[StaffTerritory]:
        if not territory_ids:
            return []
        return db.query(StaffTerritory).filter(StaffTerritory.territory_id.in_(territory_ids)).all()

    @staticmethod
    def create_assignment(db: Session, **data) -> PhotographerAssignment:
        assignment = PhotographerAssignment(**data)
        db.add(assignment)
        db.commit()
        db.refresh(assignment)
        return assignment

    # ------------------------------------------------------------------
    # Go Anytime
    # ------------------------------------------------------------------

    @staticmethod
    def create_schedule(db: Session, **data) -> SellerSchedule:
        schedule = SellerSchedule(**data)
        db.add(schedule)
        db.commit()
        db.refresh(schedule)
        return schedule

    @staticmethod
    def get_schedule(db: Session, schedule_id: str) -> Optional[SellerSchedule]:
        return db.query(SellerSchedule).filter(SellerSchedule.id == schedule_id).first()

    @staticmethod
    def get_open_schedules(
        db: Session,
        territory_id: str,
        today: date,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[SellerSchedule]:
        query = (
            db.query(SellerSchedule)
            .options(joinedload(SellerSchedule.listing))
            .filter(
                SellerSchedule.territory_id == territory_id,
                SellerSchedule.is_anytime.is_(True),
                SellerSchedule.claimed_by.is_(None),
                SellerSchedule.anytime_end_date >= today,
            )
        )
        if date_from:
            query = query.filter(SellerSchedule.anytime_start_date >= date_from)
        if date_to:
            query = query.filter(SellerSchedule.anytime_end_date <= date_to)
        return query.order_by(SellerSchedule.anytime_start_date).all()

    @staticmethod
    def get_claimed_schedules(db: Session, photographer_id: str) -> list[SellerSchedule]:
        return (
            db.query(SellerSchedule)
            .options(joinedload(SellerSchedule.listing))
            .filter(SellerSchedule.claimed_by == photographer_id, SellerSchedule.is_anytime.is_(True))
            .order_by(SellerSchedule.scheduled_date.asc())
            .all()
        )

    @staticmethod
    def update(db: Session, obj, **updates):
        for key, value in updates.items():
            setattr(obj, key, value)
        db.commit()
        db.refresh(obj)
        return obj

    # ------------------------------------------------------------------
    # Waitlist
    # ------------------------------------------------------------------

    @staticmethod
    def find_waitlist_duplicates(
        db: Session, client_email: str, territory_id: str, requested_date: date
    ) -> list[WaitlistEntry]:
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.client_email == client_email,
                WaitlistEntry.territory_id == territory_id,
                WaitlistEntry.requested_date == requested_date,
            )
            .all()
        )

    @staticmethod
    def count_waiting(db: Session, territory_id: str, requested_date: date) -> int:
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.territory_id == territory_id,
                WaitlistEntry.requested_date == requested_date,
                WaitlistEntry.status == "waiting",
            )
            .count()
        )

    @staticmethod
    def create_waitlist_entry(db: Session, **data) -> WaitlistEntry:
        entry = WaitlistEntry(**data)
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    @staticmethod
    def get_waitlist_entry(db: Session, entry_id: str, client_email: Optional[str] = None) -> Optional[WaitlistEntry]:
        query = db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id)
        if client_email is not None:
            query = query.filter(WaitlistEntry.client_email == client_email)
        return query.first()

    @staticmethod
    def delete_waitlist_entry(db: Session, entry: WaitlistEntry) -> None:
        db.delete(entry)
        db.commit()

    @staticmethod
    def reorder_positions(db: Session, territory_id: str, requested_date: date) -> None:
        """Renumber waiting entries 1..n in their current order"""
        waiting = (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.territory_id == territory_id,
                WaitlistEntry.requested_date == requested_date,
                WaitlistEntry.status == "waiting",
            )
            .order_by(WaitlistEntry.position.asc(), WaitlistEntry.created_at.asc())
            .all()
        )
        for index, entry in enumerate(waiting, start=1):
            entry.position = index
        db.commit()

    @staticmethod
    def get_waitlist_for_date(db: Session, territory_id: str, requested_date: date) -> list[WaitlistEntry]:
        return (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.territory_id == territory_id, WaitlistEntry.requested_date == requested_date)
            .order_by(WaitlistEntry.position.asc())
            .all()
        )

    @staticmethod
    def first_waiting(db: Session, territory_id: str, requested_date: date) -> Optional[WaitlistEntry]:
        return (
            db.query(WaitlistEntry)
            .filter(
                WaitlistEntry.territory_id == territory_id,
                WaitlistEntry.requested_date == requested_date,
                WaitlistEntry.status == "waiting",
            )
            .order_by(WaitlistEntry.position.asc())
            .first()
        )

    @staticmethod
    def get_open_availability(db: Session, today: date) -> list[TerritoryAvailability]:
        return (
            db.query(TerritoryAvailability)
            .filter(TerritoryAvailability.has_opening.is_(True), TerritoryAvailability.date >= today)
            .all()
        )

    @staticmethod
    def get_client_waiting_entries(db: Session, client_email: str) -> list[WaitlistEntry]:
        return (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.client_email == client_email, WaitlistEntry.status == "waiting")
            .order_by(WaitlistEntry.requested_date.asc())
            .all()
        )

    @staticmethod
    def expire_before(db: Session, today: date) -> int:
        entries = (
            db.query(WaitlistEntry)
            .filter(WaitlistEntry.requested_date < today, WaitlistEntry.status == "waiting")
            .all()
        )
        for entry in entries:
            entry.status = "expired"
        db.commit()
        return len(entries)

    @staticmethod
    def mark_notified(db: Session, entry: WaitlistEntry) -> WaitlistEntry:
        entry.notification_count = (entry.notification_count or 0) + 1
        entry.last_notified_at = datetime.now(timezone.utc)
        entry.status = "notified"
        db.commit()
        db.refresh(entry)
        return entry
