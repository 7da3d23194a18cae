"""Photographer skill matching - pure scoring helpers used by assignment"""

import math
from typing import Optional

SKILL_CATEGORIES = {
    "interior": "Interior Photography",
    "exterior": "Exterior Photography",
    "twilight": "Twilight Photography",
    "drone": "Drone/Aerial",
    "video": "Video Production",
    "3d_tour": "3D Virtual Tours",
    "floor_plan": "Floor Plan Capture",
    "luxury": "Luxury Properties",
    "commercial": "Commercial Real Estate",
    "vacant_land": "Vacant Land",
    "new_construction": "New Construction",
    "faa_part107": "FAA Part 107 (Drone)",
    "matterport_certified": "Matterport Certified",
}

SERVICE_SKILL_REQUIREMENTS = {
    "photos": ["interior", "exterior"],
    "mls-photos": ["interior", "exterior"],
    "hdr-photos": ["interior", "exterior"],
    "twilight": ["twilight", "exterior"],
    "luxury-photos": ["luxury", "interior", "exterior"],
    "drone": ["drone", "faa_part107"],
    "drone-photos": ["drone", "faa_part107"],
    "drone-video": ["drone", "video", "faa_part107"],
    "aerial": ["drone", "faa_part107"],
    "video": ["video"],
    "listing-video": ["video"],
    "social-video": ["video"],
    "cinematic-video": ["video", "luxury"],
    "3d-tour": ["3d_tour"],
    "matterport": ["3d_tour", "matterport_certified"],
    "zillow-3d": ["3d_tour"],
    "floor-plan": ["floor_plan"],
    "2d-floor-plan": ["floor_plan"],
    "3d-floor-plan": ["floor_plan"],
    "commercial-photos": ["commercial", "interior", "exterior"],
    "land-photos": ["vacant_land", "drone"],
}

PROPERTY_TYPE_SKILLS = {
    "luxury": "luxury",
    "commercial": "commercial",
    "land": "vacant_land",
}

MIN_SKILL_MATCH = 60
MIN_AUTO_ASSIGN_SCORE = 50
DEFAULT_MAX_DAILY_JOBS = 6


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_service(service: str) -> str:
    return "-".join(service.lower().split())


def get_required_skills(services: list[str], property_type: Optional[str] = None) -> list[str]:
    """Union of skills needed for the services, in first-seen order"""
    skills: list[str] = []
    for service in services:
        for skill in SERVICE_SKILL_REQUIREMENTS.get(normalize_service(service), []):
            if skill not in skills:
                skills.append(skill)

    extra = PROPERTY_TYPE_SKILLS.get(property_type or "")
    if extra and extra not in skills:
        skills.append(extra)
    return skills


def calculate_skill_match(
    staff_skills: list[str], staff_certifications: list[str], required_skills: list[str]
) -> dict:
    """Percentage of required skills covered by a staff member's skills and certifications"""
    if not required_skills:
        return {"score": 100, "matched": [], "missing": []}

    have = {s.lower() for s in staff_skills} | {c.lower() for c in staff_certifications}
    matched = [s for s in required_skills if s in have]
    missing = [s for s in required_skills if s not in have]

    return {
        "score": round_half_up(len(matched) / len(required_skills) * 100),
        "matched": matched,
        "missing": missing,
    }


def distance_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return 3959 * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def overall_score(skill_score: int, territory_match: bool, distance: Optional[float]) -> int:
    """Half weight on skills, 30 for territory, up to 20 for proximity (10 when unknown)"""
    score = skill_score * 0.5
    if territory_match:
        score += 30
    if distance is not None:
        score += max(0, 20 - distance * 0.5)
    else:
        score += 10
    return round_half_up(score)
