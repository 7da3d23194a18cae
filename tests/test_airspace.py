from app.services import faa_airspace
from app.services.aloft_service import AloftService

RURAL = (29.5, -82.8)
DISNEY = (28.3852, -81.5639)
ORLANDO_INTL = (28.4294, -81.3089)


def test_rural_location_is_class_g():
    result = faa_airspace.check_airspace(*RURAL)
    assert result["airspaceClass"] == "G"
    assert result["status"] == "clear"
    assert result["canFly"] is True
    assert result["authorization"]["required"] is False
    assert result["maxAltitude"] == 400


def test_no_fly_zone_is_prohibited():
    result = faa_airspace.check_airspace(*DISNEY, address="Bay Lake, FL")
    assert result["status"] == "prohibited"
    assert result["canFly"] is False
    assert result["authorization"]["type"] == "waiver"
    assert result["address"] == "Bay Lake, FL"
    assert any(a.startswith("NO FLY ZONE: Walt Disney World") for a in result["advisories"])


def test_nearby_airports_sorted_by_distance():
    airports = faa_airspace.get_nearby_airports(28.50, -81.35)
    distances = [a["distance"] for a in airports]
    assert distances == sorted(distances)
    assert airports[0]["id"] == "ORL"


def test_can_fly_reason():
    assert faa_airspace.can_fly_drone(*RURAL) == {"canFly": True, "reason": "Clear to fly - follow Part 107 rules"}
    assert faa_airspace.can_fly_drone(*DISNEY)["reason"] == "Restricted: Walt Disney World"


def test_aloft_qualifies_rural_location():
    result = AloftService(api_key="").qualify_booking_location("listing-1", "Rural Rd", *RURAL)
    assert result["qualified"] is True
    assert result["requires_authorization"] is False
    assert result["estimated_approval_time"] == "instant"
    assert result["airspace_summary"] == "Class G airspace - Clear to fly up to 400ft"


def test_aloft_blocks_airport_core():
    result = AloftService(api_key="").check_airspace(*ORLANDO_INTL)
    assert result["airspace_class"] == "B"
    assert result["max_altitude_ft"] == 0
    assert result["can_fly"] is False
    assert result["needs_authorization"] is True


def test_airspace_check_endpoint(client, staff_headers):
    response = client.post(
        "/api/integrations/airspace/check",
        json={"latitude": RURAL[0], "longitude": RURAL[1], "listingId": "listing-1", "address": "Rural Rd"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["airspaceClass"] == "G"
    assert body["qualification"]["qualified"] is True
