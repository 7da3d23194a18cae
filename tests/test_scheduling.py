import asyncio
from datetime import date, timedelta

import pytest
from fastapi import HTTPException

from app.domain.scheduling import waitlist_service as waitlist_module
from app.domain.scheduling.anytime_service import AnytimeService
from app.domain.scheduling.schemas import AnytimeBookingCreate, JobRequirements, WaitlistJoinRequest
from app.domain.scheduling.service import AssignmentService
from app.domain.scheduling.skill_match import calculate_skill_match, get_required_skills, overall_score
from app.domain.scheduling.waitlist_service import WaitlistService
from app.models import ServiceTerritory, Staff, StaffTerritory, TerritoryAvailability, WaitlistEntry

TODAY = date(2026, 6, 1)


@pytest.fixture
def territory(db):
    territory = ServiceTerritory(name="Downtown Orlando", zip_codes=["32801", "32803"])
    db.add(territory)
    db.commit()
    return territory


@pytest.fixture
def shooters(db, territory):
    local = Staff(name="Lee Local", email="lee@example.com", role="photographer", skills=["interior", "exterior"])
    nearby = Staff(
        name="Nia Nearby",
        email="nia@example.com",
        role="photographer",
        skills=["Interior", "Exterior"],
        home_lat=28.54,
        home_lng=-81.38,
    )
    partial = Staff(name="Pat Partial", email="pat@example.com", role="photographer", skills=["interior"])
    editor = Staff(name="Ed Editor", email="ed@example.com", role="editor", skills=["interior", "exterior"])
    db.add_all([local, nearby, partial, editor])
    db.commit()
    db.add(StaffTerritory(staff_id=local.id, territory_id=territory.id))
    db.commit()
    return {"local": local, "nearby": nearby}


# ============================================================================
# SKILL MATCH
# ============================================================================


class TestSkillMatch:
    def test_required_skills_union(self):
        skills = get_required_skills(["Drone Photos", "photos", "unknown"], "luxury")
        assert skills == ["drone", "faa_part107", "interior", "exterior", "luxury"]

    def test_match_counts_certifications(self):
        result = calculate_skill_match(["drone"], ["FAA_Part107"], ["drone", "faa_part107", "video"])
        assert result == {"score": 67, "matched": ["drone", "faa_part107"], "missing": ["video"]}

    def test_nothing_required(self):
        assert calculate_skill_match([], [], [])["score"] == 100

    def test_overall_score_weights(self):
        assert overall_score(100, True, None) == 90
        assert overall_score(100, False, 10) == 65
        assert overall_score(60, False, 100) == 30


class TestAssignment:
    def test_ranks_qualified_shooters(self, db, shooters):
        requirements = JobRequirements(services=["photos"], zipCode="32801", lat=28.54, lng=-81.38)
        candidates = AssignmentService(db).find_best_match(requirements)

        assert [c["staff"].name for c in candidates] == ["Lee Local", "Nia Nearby"]
        assert candidates[0]["score"] == 90
        assert candidates[0]["territory_match"] is True
        assert candidates[1]["score"] == 70
        assert candidates[1]["distance"] == pytest.approx(0, abs=0.01)

    def test_candidates_endpoint(self, client, staff_headers, shooters):
        response = client.post(
            "/api/scheduling/assignments/candidates",
            json={"services": ["photos"], "zipCode": "32801"},
            headers=staff_headers,
        )
        assert response.status_code == 200
        assert response.json()[0]["name"] == "Lee Local"
        assert response.json()[0]["matchedSkills"] == ["interior", "exterior"]

    def test_auto_assign(self, client, staff_headers, shooters, listing):
        response = client.post(
            "/api/scheduling/assignments/auto",
            json={
                "listingId": listing.id,
                "services": ["photos"],
                "zipCode": "32801",
                "scheduledDate": "2026-06-10",
                "notifyPhotographer": False,
            },
            headers=staff_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["photographer_id"] == shooters["local"].id
        assert body["status"] == "assigned"
        assert body["notes"].startswith("Auto-assigned. Score: 90")

    def test_auto_assign_without_candidates(self, client, staff_headers, listing):
        response = client.post(
            "/api/scheduling/assignments/auto",
            json={"listingId": listing.id, "services": ["matterport"], "scheduledDate": "2026-06-10"},
            headers=staff_headers,
        )
        assert response.status_code == 409
        assert response.json() == {"detail": "No qualified photographers available for this job"}


# ============================================================================
# GO ANYTIME
# ============================================================================


def anytime_request(listing, start_offset=1, days=5, **extra):
    return AnytimeBookingCreate(
        listingId=listing.id,
        startDate=TODAY + timedelta(days=start_offset),
        endDate=TODAY + timedelta(days=start_offset + days - 1),
        accessInstructions="Lockbox on the side gate, code 4411",
        **extra,
    )


class TestGoAnytime:
    def test_eligibility_endpoint(self, client):
        response = client.post("/api/scheduling/anytime/eligibility", json={"isVacant": True, "hasLockbox": False})
        assert response.json() == {
            "eligible": False,
            "reason": "Property must have lockbox access for Go Anytime scheduling.",
        }
        response = client.post(
            "/api/scheduling/anytime/eligibility",
            json={"isVacant": True, "hasLockbox": True, "accessInstructions": "Code 1234"},
        )
        assert response.json() == {"eligible": True, "reason": None}

    @pytest.mark.parametrize(
        "start_offset,days,detail",
        [
            (-1, 5, "Start date must be in the future."),
            (1, 1, "Date range must be at least 2 days."),
            (1, 15, "Date range cannot exceed 14 days."),
        ],
    )
    def test_window_rules(self, db, listing, start_offset, days, detail):
        with pytest.raises(HTTPException) as exc:
            AnytimeService(db).create_booking(anytime_request(listing, start_offset, days), today=TODAY)
        assert exc.value.detail == detail

    def test_claim_and_release(self, db, listing, photographer, territory):
        service = AnytimeService(db)
        schedule = service.create_booking(anytime_request(listing, territoryId=territory.id), today=TODAY)
        assert schedule.status == "pending_claim"
        assert [s.id for s in service.get_schedules(territory.id, today=TODAY)] == [schedule.id]

        with pytest.raises(HTTPException) as exc:
            service.claim_slot(schedule.id, photographer.id, TODAY + timedelta(days=30))
        assert exc.value.status_code == 400

        claim_date = TODAY + timedelta(days=2)
        assert service.claim_slot(schedule.id, photographer.id, claim_date) == {
            "success": True,
            "claimed_date": claim_date.isoformat(),
        }
        assert service.get_schedules(territory.id, today=TODAY) == []
        assert [s.id for s in service.get_photographer_queue(photographer.id)] == [schedule.id]

        with pytest.raises(HTTPException) as exc:
            service.claim_slot(schedule.id, "someone-else", claim_date)
        assert exc.value.status_code == 409

        with pytest.raises(HTTPException) as exc:
            service.release_slot(schedule.id, "someone-else")
        assert exc.value.status_code == 403

        assert service.release_slot(schedule.id, photographer.id) == {"success": True}
        db.refresh(schedule)
        assert schedule.status == "pending_claim"
        assert schedule.claimed_by is None


# ============================================================================
# WAITLIST
# ============================================================================


def join_request(territory, email, days_ahead=7, **extra):
    return WaitlistJoinRequest(
        clientEmail=email,
        clientName=email.split("@")[0].title(),
        territoryId=territory.id,
        requestedDate=TODAY + timedelta(days=days_ahead),
        **extra,
    )


@pytest.fixture
def notified(monkeypatch):
    calls = []

    async def fake_send_notification(db, notification_type, recipient, channel="email", data=None, listing_id=None):
        calls.append((notification_type, recipient["email"]))
        return {"email_sent": True, "sms_sent": False}

    monkeypatch.setattr(waitlist_module, "send_notification", fake_send_notification)
    return calls


class TestWaitlist:
    def test_positions_and_leave(self, db, territory):
        service = WaitlistService(db)
        first = service.join(join_request(territory, "amy@example.com"), today=TODAY)
        second = service.join(join_request(territory, "ben@example.com"), today=TODAY)
        assert (first.position, second.position) == (1, 2)

        assert service.leave(first.id, "amy@example.com") == {"success": True}
        assert service.get_position(second.id) == 1

        with pytest.raises(HTTPException) as exc:
            service.leave(first.id, "amy@example.com")
        assert exc.value.status_code == 404

    def test_duplicate_join(self, db, territory):
        service = WaitlistService(db)
        service.join(join_request(territory, "amy@example.com"), today=TODAY)
        with pytest.raises(HTTPException) as exc:
            service.join(join_request(territory, "AMY@example.com"), today=TODAY)
        assert exc.value.status_code == 409

    def test_date_must_be_future(self, db, territory):
        with pytest.raises(HTTPException) as exc:
            WaitlistService(db).join(join_request(territory, "amy@example.com", days_ahead=0), today=TODAY)
        assert exc.value.detail == "Requested date must be in the future."

    def test_flexible_range(self, db, territory):
        entry = WaitlistService(db).join(
            join_request(territory, "amy@example.com", flexibleDates=True, dateRangeEnd=TODAY + timedelta(days=10)),
            today=TODAY,
        )
        assert entry.date_range_start == TODAY + timedelta(days=7)
        assert entry.date_range_end == TODAY + timedelta(days=10)

    def test_notify_then_book(self, db, territory, notified):
        service = WaitlistService(db)
        first = service.join(join_request(territory, "amy@example.com"), today=TODAY)
        second = service.join(join_request(territory, "ben@example.com"), today=TODAY)

        with pytest.raises(HTTPException) as exc:
            service.book_from_waitlist(first.id, "amy@example.com")
        assert exc.value.status_code == 409

        result = asyncio.run(service.notify_slot_available(territory.id, first.requested_date))
        assert result == {"notified": True, "client_email": "amy@example.com"}
        assert notified == [("waitlist_slot_available", "amy@example.com")]
        db.refresh(first)
        assert first.status == "notified"
        assert first.notification_count == 1

        assert service.book_from_waitlist(first.id, "amy@example.com") == {"success": True, "booking_id": first.id}
        db.refresh(second)
        assert second.status == "waiting"

    def test_process_and_expire(self, db, territory, notified):
        service = WaitlistService(db)
        service.join(join_request(territory, "amy@example.com"), today=TODAY)
        db.add(TerritoryAvailability(territory_id=territory.id, date=TODAY + timedelta(days=7), has_opening=True))
        db.commit()

        assert asyncio.run(service.process_notifications(today=TODAY)) == {"processed": 1, "notified": 1}

        service.join(join_request(territory, "old@example.com", days_ahead=1), today=TODAY)
        assert service.expire_old(today=TODAY + timedelta(days=5)) == 1
        expired = db.query(WaitlistEntry).filter(WaitlistEntry.client_email == "old@example.com").one()
        assert expired.status == "expired"

    def test_join_endpoint(self, client, territory):
        response = client.post(
            "/api/scheduling/waitlist",
            json={
                "clientEmail": " Amy@Example.com ",
                "clientName": "Amy",
                "territoryId": territory.id,
                "requestedDate": (date.today() + timedelta(days=10)).isoformat(),
            },
        )
        assert response.status_code == 201
        assert response.json()["client_email"] == "amy@example.com"
        assert response.json()["position"] == 1

        entry_id = response.json()["id"]
        assert client.get(f"/api/scheduling/waitlist/{entry_id}/position").json() == {"id": entry_id, "position": 1}
        left = client.request(
            "DELETE", f"/api/scheduling/waitlist/{entry_id}", json={"clientEmail": "amy@example.com"}
        )
        assert left.json() == {"success": True}

    def test_bad_email(self, client, territory):
        response = client.post(
            "/api/scheduling/waitlist",
            json={
                "clientEmail": "not-an-email",
                "clientName": "Amy",
                "territoryId": territory.id,
                "requestedDate": (date.today() + timedelta(days=10)).isoformat(),
            },
        )
        assert response.status_code == 422
