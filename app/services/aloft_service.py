"""
Aloft Airspace Service
Airspace qualification for drone photography bookings.

Full LAANC authorization requires Aloft enterprise API access, so checks here use
a distance heuristic over known Florida airports and permanent no-fly zones.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from ..config import ALOFT_API_KEY

logger = logging.getLogger(__name__)

DEFAULT_ALTITUDE_FT = 400
EARTH_RADIUS_KM = 6371
KM_TO_FT = 3280.84
FT_PER_NM = 6076

# radius in nautical miles
MAJOR_AIRPORTS = [
    {"icao": "KMCO", "name": "Orlando International", "lat": 28.4294, "lon": -81.3089, "class": "B", "radius": 30},
    {"icao": "KMIA", "name": "Miami International", "lat": 25.7959, "lon": -80.2870, "class": "B", "radius": 30},
    {"icao": "KTPA", "name": "Tampa International", "lat": 27.9755, "lon": -82.5332, "class": "B", "radius": 30},
    {"icao": "KFLL", "name": "Fort Lauderdale-Hollywood", "lat": 26.0726, "lon": -80.1527, "class": "B", "radius": 20},
    {"icao": "KJAX", "name": "Jacksonville International", "lat": 30.4941, "lon": -81.6879, "class": "C", "radius": 10},
    {"icao": "KPBI", "name": "Palm Beach International", "lat": 26.6832, "lon": -80.0956, "class": "C", "radius": 10},
]

# radius in km
NO_FLY_ZONES = [
    {"name": "Walt Disney World", "lat": 28.3852, "lon": -81.5639, "radius": 3},
    {"name": "Kennedy Space Center", "lat": 28.5728, "lon": -80.6490, "radius": 5},
    {"name": "MacDill AFB", "lat": 27.8494, "lon": -82.5213, "radius": 3},
]

UNVERIFIED_WARNING = "Unable to verify airspace - manual review required"


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AloftService:
    """Airspace awareness checks for a single location"""

    def __init__(self, api_key: Optional[str] = None, timeout: float = 10.0):
        self.api_key = api_key if api_key is not None else (ALOFT_API_KEY or "")
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def check_airspace(self, latitude: float, longitude: float, altitude_ft: int = DEFAULT_ALTITUDE_FT) -> dict:
        """
        Check airspace at a location.

        Any failure returns a safe default that blocks flying and asks for manual review.
        """
        location = {"latitude": latitude, "longitude": longitude}
        try:
            return self._basic_airspace_info(location, altitude_ft)
        except Exception as e:
            logger.error(f"❌ Airspace check failed for {location}: {str(e)}")
            return {
                "location": location,
                "airspace_class": "G",
                "authorization_status": "unknown",
                "max_altitude_ft": 0,
                "ceiling_ft": 0,
                "restrictions": [],
                "nearby_airports": [],
                "tfrs": [],
                "can_fly": False,
                "needs_authorization": True,
                "laanc_available": False,
                "warnings": [UNVERIFIED_WARNING],
                "checked_at": _now_iso(),
            }

    def _basic_airspace_info(self, location: dict, altitude_ft: int) -> dict:
        warnings = []
        restrictions = []
        airspace_class = "G"
        auth_status = "not_required"
        max_altitude = 400
        laanc_available = False

        airport = self.near_major_airport(location["latitude"], location["longitude"])
        if airport:
            airspace_class = airport["airspace_class"]
            max_altitude = airport["max_altitude"]
            laanc_available = airport["laanc_enabled"]

            if altitude_ft > max_altitude:
                auth_status = "laanc_available" if laanc_available else "further_coord"
                warnings.append(f"Operating above {max_altitude}ft requires authorization")

            restrictions.append(
                {
                    "type": "airport",
                    "name": airport["name"],
                    "distance_ft": airport["distance_ft"],
                    "affects_operation": altitude_ft > max_altitude,
                }
            )

        zone = self.no_fly_zone(location["latitude"], location["longitude"])
        if zone:
            auth_status = "prohibited"
            max_altitude = 0
            restrictions.append(zone)
            warnings.append(f"This location is in a no-fly zone: {zone['name']}")

        can_fly = auth_status != "prohibited" and max_altitude > 0
        needs_auth = auth_status not in ("not_required", "prohibited")

        nearby = []
        if airport:
            nearby.append(
                {
                    "icao_code": airport["icao"],
                    "name": airport["name"],
                    "type": airport["type"],
                    "distance_nm": airport["distance_ft"] / FT_PER_NM,
                    "airspace_class": airport["airspace_class"],
                    "laanc_enabled": airport["laanc_enabled"],
                    "facility_map_ceiling_ft": airport["max_altitude"],
                }
            )

        return {
            "location": location,
            "airspace_class": airspace_class,
            "authorization_status": auth_status,
            "max_altitude_ft": max_altitude,
            "ceiling_ft": max_altitude,
            "restrictions": restrictions,
            "nearby_airports": nearby,
            "tfrs": [],
            "can_fly": can_fly,
            "needs_authorization": needs_auth,
            "laanc_available": laanc_available,
            "warnings": warnings,
            "checked_at": _now_iso(),
        }

    @staticmethod
    def near_major_airport(latitude: float, longitude: float) -> Optional[dict]:
        """First major airport whose controlled radius contains the point, with a facility ceiling"""
        for airport in MAJOR_AIRPORTS:
            distance_km = haversine_km(latitude, longitude, airport["lat"], airport["lon"])
            distance_nm = distance_km / 1.852

            if distance_nm > airport["radius"]:
                continue

            max_altitude = 400
            if distance_nm < 5:
                max_altitude = 0 if airport["class"] == "B" else 100
            elif distance_nm < 10:
                max_altitude = 100 if airport["class"] == "B" else 200
            elif distance_nm < 15:
                max_altitude = 200

            return {
                "name": airport["name"],
                "icao": airport["icao"],
                "type": "large_hub" if airport["class"] == "B" else "medium",
                "airspace_class": airport["class"],
                "distance_ft": distance_km * KM_TO_FT,
                "max_altitude": max_altitude,
                "laanc_enabled": True,
            }
        return None

    @staticmethod
    def no_fly_zone(latitude: float, longitude: float) -> Optional[dict]:
        for zone in NO_FLY_ZONES:
            distance_km = haversine_km(latitude, longitude, zone["lat"], zone["lon"])
            if distance_km <= zone["radius"]:
                return {
                    "type": "sua",
                    "name": zone["name"],
                    "description": "Permanent no-fly zone",
                    "distance_ft": distance_km * KM_TO_FT,
                    "affects_operation": True,
                }
        return None

    def qualify_booking_location(
        self, listing_id: str, address: str, latitude: float, longitude: float
    ) -> dict:
        """Summarize whether a booking address can get drone coverage"""
        result = self.check_airspace(latitude, longitude, DEFAULT_ALTITUDE_FT)

        estimated_approval_time = "instant"
        if not result["can_fly"]:
            estimated_approval_time = "not_available"
        elif result["needs_authorization"]:
            estimated_approval_time = "instant" if result["laanc_available"] else "24-72 hours"

        summary = f"Class {result['airspace_class']} airspace"
        if result["max_altitude_ft"] > 0:
            summary += f" - Clear to fly up to {result['max_altitude_ft']}ft"
        if result["needs_authorization"]:
            summary += " (authorization required)"

        logger.info(
            f"🚁 Airspace qualification for listing {listing_id}: "
            f"qualified={result['can_fly']}, class={result['airspace_class']}"
        )

        return {
            "listing_id": listing_id,
            "address": address,
            "coordinates": result["location"],
            "qualified": result["can_fly"],
            "requires_authorization": result["needs_authorization"],
            "laanc_available": result["laanc_available"],
            "estimated_approval_time": estimated_approval_time,
            "airspace_summary": summary,
            "warnings": result["warnings"],
            "restrictions": result["restrictions"],
            "checked_at": result["checked_at"],
        }


_aloft_service: Optional[AloftService] = None


def get_aloft_service() -> AloftService:
    """Get the shared Aloft service instance"""
    global _aloft_service
    if _aloft_service is None:
        _aloft_service = AloftService()
    return _aloft_service
