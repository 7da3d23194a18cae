from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from app.domain.booking.arrival_windows import format_arrival_window, generate_arrival_windows, is_within_window
from app.domain.booking.pricing import (
    bucket_from_sqft,
    calculate_travel_fee,
    compute_quote,
    get_packages_for_sqft,
    get_photo_price,
)
from app.domain.booking.schemas import QuoteRequest
from app.domain.booking.service import BookingService
from app.models import SellerSchedule
from app.models_billing import Coupon, Invoice


def make_coupon(db, **overrides):
    fields = {
        "code": "SPRING20",
        "type": "percentage",
        "value": 20,
        "is_active": True,
        "current_uses": 0,
        "total_discount_given": 0,
    }
    fields.update(overrides)
    coupon = Coupon(**fields)
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


# ============================================================================
# PRICING
# ============================================================================


class TestPricing:
    def test_sqft_buckets(self):
        assert bucket_from_sqft(1200) == "lt1500"
        assert bucket_from_sqft(1500) == "lt1500"
        assert bucket_from_sqft(2400) == "1501_2500"
        assert bucket_from_sqft(25000) == "5001_10000"

    def test_photo_price_follows_bucket(self):
        assert get_photo_price(1000) == 175
        assert get_photo_price(3000) == 275

    def test_travel_fee_tiers(self):
        assert calculate_travel_fee(25) == 0
        assert calculate_travel_fee(40) == 0
        assert calculate_travel_fee(50) == 15.0
        assert calculate_travel_fee(100) == 120.0
        assert calculate_travel_fee(200) == 480.0

    def test_package_price_by_tier(self):
        packages = {p["id"]: p for p in get_packages_for_sqft(2200)}
        assert packages["essentials"]["price"] == 375
        assert packages["luxury"]["price"] == 729

    def test_included_services_are_not_charged(self):
        quote = compute_quote(2200, "essentials", ["droneAddOn", "listingVideo", "bogus"])
        assert [i["id"] for i in quote["items"]] == ["essentials", "listingVideo"]
        assert quote["total"] == 375 + 350

    def test_a_la_carte_photos_follow_sqft(self):
        quote = compute_quote(3200, services=["photos", "droneAddOn"])
        assert quote["items"][0]["price"] == 275
        assert quote["total"] == 350


# ============================================================================
# COUPONS
# ============================================================================


class TestCoupons:
    def test_percentage_discount(self, db):
        make_coupon(db)
        result = BookingService(db).validate_coupon("spring20", 400)
        assert result["valid"] is True
        assert result["discount_amount"] == 80

    def test_fixed_discount_capped_at_total(self, db):
        make_coupon(db, code="FIFTY", type="fixed", value=50)
        result = BookingService(db).validate_coupon("FIFTY", 30)
        assert result["discount_amount"] == 30

    def test_unknown_code(self, db):
        assert BookingService(db).validate_coupon("NOPE", 100) == {"valid": False, "error": "Coupon code not found."}

    def test_expired(self, db):
        make_coupon(db, expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        result = BookingService(db).validate_coupon("SPRING20", 100)
        assert result["error"] == "This coupon has expired."

    def test_usage_limit(self, db):
        make_coupon(db, max_uses=2, current_uses=2)
        result = BookingService(db).validate_coupon("SPRING20", 100)
        assert result["error"] == "This coupon has reached its usage limit."

    def test_minimum_order(self, db):
        make_coupon(db, min_order_amount=250)
        result = BookingService(db).validate_coupon("SPRING20", 100)
        assert result["error"] == "Minimum order of $250 required."

    def test_first_order_only_rejects_returning_agent(self, db, agent):
        make_coupon(db, first_order_only=True)
        db.add(
            Invoice(
                invoice_number="INV-1",
                agent_id=agent.id,
                amount=300,
                status="paid",
                due_date=datetime.now(timezone.utc),
            )
        )
        db.commit()

        service = BookingService(db)
        result = service.validate_coupon("SPRING20", 100, agent.id, check_first_order=True)
        assert result["error"] == "This coupon is for first orders only."
        assert service.validate_coupon("SPRING20", 100, agent.id)["valid"] is True

    def test_apply_records_usage_and_blocks_repeat(self, db, agent):
        coupon = make_coupon(db, one_per_user=True)
        service = BookingService(db)

        result = service.apply_coupon("SPRING20", "order-1", agent.id, 40)
        assert result["success"] is True
        db.refresh(coupon)
        assert coupon.current_uses == 1
        assert coupon.total_discount_given == 40

        with pytest.raises(HTTPException) as exc:
            service.apply_coupon("SPRING20", "order-2", agent.id, 40)
        assert exc.value.status_code == 409

    def test_stats(self, db, agent):
        coupon = make_coupon(db)
        service = BookingService(db)
        service.apply_coupon("SPRING20", "order-1", agent.id, 40)
        service.apply_coupon("SPRING20", "order-2", agent.id, 20)
        assert service.get_stats(coupon.id) == {
            "totalUses": 2,
            "totalDiscount": 60,
            "uniqueUsers": 1,
            "avgDiscount": 30,
        }


# ============================================================================
# QUOTES
# ============================================================================


class TestQuote:
    def test_quote_with_travel_and_coupon(self, db):
        make_coupon(db)
        quote = BookingService(db).quote(
            QuoteRequest(sqft=2200, packageKey="essentials", travelMiles=50, couponCode="SPRING20")
        )
        assert quote["subtotal"] == 375
        assert quote["travelFee"] == 15.0
        assert quote["discount"] == 75
        assert quote["total"] == 315.0

    def test_bad_coupon_does_not_fail_quote(self, db):
        quote = BookingService(db).quote(QuoteRequest(sqft=2200, packageKey="essentials", couponCode="NOPE"))
        assert quote["couponError"] == "Coupon code not found."
        assert quote["total"] == 375

    def test_unknown_package(self, db):
        with pytest.raises(HTTPException) as exc:
            BookingService(db).quote(QuoteRequest(sqft=2200, packageKey="platinum"))
        assert exc.value.status_code == 400

    def test_quote_endpoint(self, client):
        response = client.post("/api/booking/quote", json={"sqft": 1200, "services": ["photos", "droneAddOn"]})
        assert response.status_code == 200
        assert response.json()["total"] == 250


# ============================================================================
# ARRIVAL WINDOWS
# ============================================================================


class TestArrivalWindows:
    def test_generate_with_buffer_and_booked(self):
        windows = generate_arrival_windows("09:00", "12:00", 60, 30, booked_slots=["10:30-11:30"])
        assert [w["id"] for w in windows] == ["09:00-10:00", "10:30-11:30"]
        assert windows[1]["available"] is False

    def test_invalid_range(self):
        assert generate_arrival_windows("12:00", "09:00") == []

    def test_format(self):
        window = {"start": "14:00", "end": "16:00"}
        assert format_arrival_window(window) == "2:00 PM - 4:00 PM"
        assert format_arrival_window({"start": "09:00", "end": "10:00"}, short=True) == "9-10 AM"
        assert format_arrival_window({"start": "11:00", "end": "13:00"}, short=True) == "11 AM-1 PM"

    def test_window_end_is_exclusive(self):
        window = {"start": "09:00", "end": "10:00"}
        assert is_within_window("09:00", window)
        assert not is_within_window("10:00", window)

    def test_confirm_arrival(self, db, listing):
        schedule = SellerSchedule(
            listing_id=listing.id,
            anytime_start_date=date(2026, 3, 2),
            anytime_end_date=date(2026, 3, 6),
            arrival_window_start="09:00",
            arrival_window_end="11:00",
        )
        db.add(schedule)
        db.commit()

        service = BookingService(db)
        assert service.confirm_arrival_time(schedule.id, "10:15") == {"success": True, "confirmedTime": "10:15"}
        with pytest.raises(HTTPException) as exc:
            service.confirm_arrival_time(schedule.id, "11:30")
        assert exc.value.status_code == 400

    def test_endpoint_rejects_bad_time(self, client):
        response = client.post("/api/booking/arrival-windows", json={"startTime": "9am"})
        assert response.status_code == 422


# ============================================================================
# STAFF COUPON ROUTES
# ============================================================================


def test_create_coupon_requires_staff(client):
    response = client.post("/api/booking/coupons", json={"code": "new10", "type": "fixed", "value": 10})
    assert response.status_code == 401


def test_create_and_list_coupon(client, staff_headers):
    response = client.post(
        "/api/booking/coupons", json={"code": "new10", "type": "fixed", "value": 10}, headers=staff_headers
    )
    assert response.status_code == 201
    assert response.json()["code"] == "NEW10"

    duplicate = client.post(
        "/api/booking/coupons", json={"code": "NEW10", "type": "fixed", "value": 10}, headers=staff_headers
    )
    assert duplicate.status_code == 409

    listed = client.get("/api/booking/coupons", headers=staff_headers)
    assert [c["code"] for c in listed.json()] == ["NEW10"]


def test_percentage_over_100_rejected(client, staff_headers):
    response = client.post(
        "/api/booking/coupons", json={"code": "HUGE", "type": "percentage", "value": 150}, headers=staff_headers
    )
    assert response.status_code == 422
