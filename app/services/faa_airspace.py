"""
FAA airspace checks built from static Florida airport and restriction data.
Results are cached for 24 hours per coordinate pair.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..cache import CACHE_TTLS, cache, generate_location_key

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959
MILES_TO_NM = 0.868976
NEARBY_RADIUS_MILES = 30
RESULT_TTL_SECONDS = CACHE_TTLS["airspace"]

FLORIDA_AIRPORTS = [
    {"id": "MCO", "name": "Orlando International Airport", "icao": "KMCO", "iata": "MCO", "latitude": 28.4294, "longitude": -81.3089, "airspace_class": "B", "has_tower": True, "runways": 4},
    {"id": "TPA", "name": "Tampa International Airport", "icao": "KTPA", "iata": "TPA", "latitude": 27.9755, "longitude": -82.5332, "airspace_class": "B", "has_tower": True, "runways": 3},
    {"id": "JAX", "name": "Jacksonville International Airport", "icao": "KJAX", "iata": "JAX", "latitude": 30.4941, "longitude": -81.6879, "airspace_class": "C", "has_tower": True, "runways": 2},
    {"id": "FLL", "name": "Fort Lauderdale-Hollywood International", "icao": "KFLL", "iata": "FLL", "latitude": 26.0726, "longitude": -80.1527, "airspace_class": "B", "has_tower": True, "runways": 2},
    {"id": "MIA", "name": "Miami International Airport", "icao": "KMIA", "iata": "MIA", "latitude": 25.7959, "longitude": -80.2870, "airspace_class": "B", "has_tower": True, "runways": 4},
    {"id": "PBI", "name": "Palm Beach International Airport", "icao": "KPBI", "iata": "PBI", "latitude": 26.6832, "longitude": -80.0956, "airspace_class": "C", "has_tower": True, "runways": 2},
    {"id": "SFB", "name": "Orlando Sanford International", "icao": "KSFB", "iata": "SFB", "latitude": 28.7776, "longitude": -81.2375, "airspace_class": "D", "has_tower": True, "runways": 2},
    {"id": "ORL", "name": "Orlando Executive Airport", "icao": "KORL", "iata": "ORL", "latitude": 28.5455, "longitude": -81.3329, "airspace_class": "D", "has_tower": True, "runways": 3},
    {"id": "DAB", "name": "Daytona Beach International", "icao": "KDAB", "iata": "DAB", "latitude": 29.1799, "longitude": -81.0581, "airspace_class": "D", "has_tower": True, "runways": 2},
    {"id": "MLB", "name": "Melbourne Orlando International", "icao": "KMLB", "iata": "MLB", "latitude": 28.1028, "longitude": -80.6453, "airspace_class": "D", "has_tower": True, "runways": 2},
    {"id": "PIE", "name": "St. Pete-Clearwater International", "icao": "KPIE", "iata": "PIE", "latitude": 27.9102, "longitude": -82.6874, "airspace_class": "C", "has_tower": True, "runways": 2},
    {"id": "RSW", "name": "Southwest Florida International", "icao": "KRSW", "iata": "RSW", "latitude": 26.5362, "longitude": -81.7552, "airspace_class": "C", "has_tower": True, "runways": 2},
    {"id": "SRQ", "name": "Sarasota-Bradenton International", "icao": "KSRQ", "iata": "SRQ", "latitude": 27.3954, "longitude": -82.5544, "airspace_class": "C", "has_tower": True, "runways": 2},
]

# radius in nautical miles
FLORIDA_RESTRICTIONS = [
    {"id": "WDW", "type": "no_fly_zone", "name": "Walt Disney World", "description": "No-fly zone over Disney theme parks", "latitude": 28.3852, "longitude": -81.5639, "radius": 3, "altitude_floor": 0, "altitude_ceiling": 3000},
    {"id": "USO", "type": "no_fly_zone", "name": "Universal Orlando Resort", "description": "No-fly zone over Universal Studios", "latitude": 28.4722, "longitude": -81.4686, "radius": 3, "altitude_floor": 0, "altitude_ceiling": 3000},
    {"id": "KSC", "type": "military_airspace", "name": "Kennedy Space Center", "description": "Restricted airspace - NASA/Space Force operations", "latitude": 28.5731, "longitude": -80.6490, "radius": 30, "altitude_floor": 0, "altitude_ceiling": 60000},
    {"id": "PAN", "type": "military_airspace", "name": "Patrick Space Force Base", "description": "Military installation restricted airspace", "latitude": 28.2347, "longitude": -80.6101, "radius": 5, "altitude_floor": 0, "altitude_ceiling": 10000},
    {"id": "MAC", "type": "military_airspace", "name": "MacDill Air Force Base", "description": "Military installation restricted airspace", "latitude": 27.8493, "longitude": -82.5213, "radius": 5, "altitude_floor": 0, "altitude_ceiling": 10000},
    {"id": "NAS", "type": "military_airspace", "name": "NAS Jacksonville", "description": "Naval Air Station restricted airspace", "latitude": 30.2358, "longitude": -81.6761, "radius": 5, "altitude_floor": 0, "altitude_ceiling": 10000},
    {"id": "EVG", "type": "national_park", "name": "Everglades National Park", "description": "National Park - drone restrictions apply", "latitude": 25.2866, "longitude": -80.8987, "radius": 15, "altitude_floor": 0, "altitude_ceiling": 2000},
]

PROHIBITING_TYPES = ("no_fly_zone", "military_airspace")


def distance_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_nm(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return distance_miles(lat1, lng1, lat2, lng2) * MILES_TO_NM


def get_nearby_airports(latitude: float, longitude: float, radius_miles: float = NEARBY_RADIUS_MILES) -> list[dict]:
    """Airports within radius, closest first, distance rounded to 0.1 mi"""
    nearby = []
    for airport in FLORIDA_AIRPORTS:
        distance = distance_miles(latitude, longitude, airport["latitude"], airport["longitude"])
        if distance <= radius_miles:
            nearby.append({**airport, "distance": round(distance, 1)})
    return sorted(nearby, key=lambda a: a["distance"])


def get_restrictions(latitude: float, longitude: float) -> list[dict]:
    return [
        r
        for r in FLORIDA_RESTRICTIONS
        if distance_nm(latitude, longitude, r["latitude"], r["longitude"]) <= r["radius"]
    ]


def determine_airspace_class(airports: list[dict]) -> str:
    if not airports:
        return "G"

    closest = airports[0]
    if closest["airspace_class"] == "B" and closest["distance"] <= 30:
        return "B"
    if closest["airspace_class"] == "C" and closest["distance"] <= 10:
        return "C"
    if closest["airspace_class"] == "D" and closest["distance"] <= 5:
        return "D"
    if closest["distance"] <= 10:
        return "E"
    return "G"


def determine_flight_status(airspace_class: str, airports: list[dict], restrictions: list[dict]) -> str:
    if any(r["type"] in PROHIBITING_TYPES for r in restrictions):
        return "prohibited"

    if any(r["type"] in ("national_park", "temporary_flight_restriction") for r in restrictions):
        return "restricted"

    if airports:
        closest = airports[0]
        if closest["distance"] <= 5 and closest["airspace_class"] in ("B", "C"):
            return "restricted"
        if airspace_class != "G":
            return "caution"

    return "clear"


def generate_advisories(airspace_class: str, airports: list[dict], restrictions: list[dict]) -> list[str]:
    advisories = []

    if airspace_class in ("B", "C"):
        advisories.append(f"Class {airspace_class} airspace - LAANC authorization required before flight")
    elif airspace_class == "D":
        advisories.append("Class D airspace - LAANC or ATC authorization required")
    elif airspace_class == "E":
        advisories.append("Class E airspace - LAANC authorization may be required above certain altitudes")

    if airports and airports[0]["distance"] <= 5:
        closest = airports[0]
        advisories.append(
            f"{closest['name']} is {closest['distance']} miles away - maintain visual awareness of aircraft"
        )

    for restriction in restrictions:
        if restriction["type"] == "no_fly_zone":
            advisories.append(f"NO FLY ZONE: {restriction['name']} - {restriction['description']}")
        elif restriction["type"] == "military_airspace":
            advisories.append(f"MILITARY AIRSPACE: {restriction['name']} - Flying prohibited")
        elif restriction["type"] == "national_park":
            advisories.append(f"NATIONAL PARK: {restriction['name']} - Special permit may be required")
        elif restriction["type"] == "stadium":
            advisories.append("STADIUM TFR: No drone flights within 3nm during events")

    advisories.append("Maximum altitude: 400ft AGL unless within 400ft of a structure")
    advisories.append("Maintain visual line of sight at all times")
    advisories.append("Yield right of way to all manned aircraft")
    return advisories


def get_authorization_requirements(airspace_class: str, restrictions: list[dict]) -> dict:
    if any(r["type"] in PROHIBITING_TYPES for r in restrictions):
        return {
            "required": True,
            "type": "waiver",
            "instructions": "Flight not permitted in this area. Special waiver from FAA required.",
        }

    if airspace_class in ("B", "C", "D"):
        return {
            "required": True,
            "type": "LAANC",
            "instructions": (
                "Use LAANC (Low Altitude Authorization and Notification Capability) via apps like "
                "Aloft, AirMap, or DJI Fly to request authorization before flight."
            ),
        }

    if airspace_class == "E":
        return {
            "required": False,
            "instructions": (
                "Class E airspace - authorization not typically required below 400ft AGL, "
                "but check for any temporary restrictions."
            ),
        }

    return {
        "required": False,
        "instructions": "Class G airspace - no authorization required. Follow all Part 107 rules.",
    }


def check_airspace(
    latitude: float, longitude: float, address: Optional[str] = None, use_cache: bool = True
) -> dict:
    """Full airspace check for a coordinate pair"""
    cache_key = generate_location_key(latitude, longitude, "airspace", precision=4)
    if use_cache:
        cached_result = cache.get(cache_key)
        if cached_result:
            if address:
                cached_result["address"] = address
            return cached_result

    airports = get_nearby_airports(latitude, longitude)
    restrictions = get_restrictions(latitude, longitude)
    airspace_class = determine_airspace_class(airports)
    status = determine_flight_status(airspace_class, airports, restrictions)

    max_altitude = 400  # Part 107 limit
    closest_distance = airports[0]["distance"] if airports else None
    if airspace_class == "B":
        max_altitude = 0
    elif airspace_class == "C" and closest_distance is not None and closest_distance <= 5:
        max_altitude = 0
    elif airspace_class == "D" and closest_distance is not None and closest_distance <= 4:
        max_altitude = 0

    now = datetime.now(timezone.utc)
    result = {
        "canFly": status in ("clear", "caution"),
        "status": status,
        "airspaceClass": airspace_class,
        "maxAltitude": max_altitude,
        "nearbyAirports": airports[:5],
        "restrictions": restrictions,
        "notams": [],
        "advisories": generate_advisories(airspace_class, airports, restrictions),
        "authorization": get_authorization_requirements(airspace_class, restrictions),
        "checkedAt": now.isoformat(),
        "expiresAt": (now + timedelta(seconds=RESULT_TTL_SECONDS)).isoformat(),
        "coordinates": {"latitude": latitude, "longitude": longitude},
        "address": address,
    }

    if use_cache:
        cache.set(cache_key, result, ttl=RESULT_TTL_SECONDS)

    logger.info(f"🛩️ Airspace check ({latitude:.4f}, {longitude:.4f}): class={airspace_class}, status={status}")
    return result


def can_fly_drone(latitude: float, longitude: float) -> dict:
    result = check_airspace(latitude, longitude)

    if result["canFly"]:
        if result["authorization"]["required"]:
            return {
                "canFly": True,
                "reason": f"Drone flight possible with {result['authorization']['type']} authorization",
            }
        return {"canFly": True, "reason": "Clear to fly - follow Part 107 rules"}

    restrictions = result["restrictions"]
    return {
        "canFly": False,
        "reason": f"Restricted: {restrictions[0]['name']}" if restrictions else "Flight not permitted in this airspace",
    }
