"""
Booking price book: square-footage buckets, listing packages, a la carte
services, content retainers and travel fees. Quotes are computed from these
tables only; nothing here touches the database.
"""

from typing import Optional

# ============================================================================
# SQFT BUCKETS
# ============================================================================

# (bucket id, label, photo-only price, max sqft)
SQFT_BUCKETS = [
    ("lt1500", "Under 1,500", 175, 1500),
    ("1501_2500", "1,501 - 2,500", 225, 2500),
    ("2501_3500", "2,501 - 3,500", 275, 3500),
    ("3501_4000", "3,501 - 4,000", 350, 4000),
    ("4001_5000", "4,001 - 5,000", 450, 5000),
    ("5001_10000", "5,001 - 10,000", 550, 10000),
]

BUCKET_TO_TIER = {
    "lt1500": "under2000",
    "1501_2500": "_2001_2500",
    "2501_3500": "_2501_3500",
    "3501_4000": "_3501_5000",
    "4001_5000": "_3501_5000",
    "5001_10000": "_5001_10000",
}

DEFAULT_PHOTO_PRICE = 175

# ============================================================================
# PACKAGES
# ============================================================================

_ESSENTIALS_INCLUDES = ["photos", "droneAddOn", "zillow3d", "2dFloor", "stagingCoreAll", "vtwilight"]

PACKAGES = {
    "essentials": {
        "id": "essentials",
        "label": "Essentials (Zillow+)",
        "description": "Photos, Drone, Zillow 3D, Floor Plan, Virtual Staging, Virtual Twilight",
        "includesIds": _ESSENTIALS_INCLUDES,
        "priceByTier": {"under2000": 315, "_2001_2500": 375, "_2501_3500": 425, "_3501_5000": 485, "_5001_10000": 580},
    },
    "signature": {
        "id": "signature",
        "label": "Signature (Social Pro+)",
        "description": "Essentials + Listing Video",
        "includesIds": _ESSENTIALS_INCLUDES + ["listingVideo"],
        "priceByTier": {"under2000": 449, "_2001_2500": 529, "_2501_3500": 579, "_3501_5000": 619, "_5001_10000": 700},
    },
    "luxury": {
        "id": "luxury",
        "label": "Luxury (All-in)",
        "description": "Signature + 3D Floor Plan, Cinematic Signature Video",
        "includesIds": _ESSENTIALS_INCLUDES + ["3dFloor", "listingVideo", "signatureVid"],
        "priceByTier": {
            "under2000": 649,
            "_2001_2500": 729,
            "_2501_3500": 819,
            "_3501_5000": 899,
            "_5001_10000": 1100,
        },
    },
}

# ============================================================================
# A LA CARTE
# ============================================================================

# price None means it follows the sqft photo price
A_LA_CARTE_SERVICES = {
    "photos": ("Listing Photography", None, "photography"),
    "droneOnly": ("Drone / Aerial (Standalone)", 150, "photography"),
    "droneAddOn": ("Drone / Aerial (Add-On)", 75, "photography"),
    "droneLocation": ("Additional Drone Location", 75, "photography"),
    "vtwilight": ("Virtual Twilight (per photo)", 15, "photography"),
    "realTwilight": ("Real Twilight Photography", 150, "photography"),
    "2dFloor": ("2D Floor Plan (Included)", 0, "floorplan"),
    "3dFloor": ("3D Floor Plan", 75, "floorplan"),
    "zillow3d": ("Zillow 3D Tour + Interactive Floor Plan", 150, "tour"),
    "stagingCoreEa": ("Core Virtual Staging (per photo)", 12, "staging"),
    "stagingPremEa": ("Premium Virtual Staging (per photo)", 25, "staging"),
    "stagingCoreAll": ("Core Virtual Staging (Full Home)", 125, "staging"),
    "coreListingVideo": ("Core Listing Video", 200, "video"),
    "listingVideo": ("Listing Video", 350, "video"),
    "lifestyleVid": ("Lifestyle Listing Video", 425, "video"),
    "dayToNight": ("Day-to-Night Video", 750, "video"),
    "signatureVid": ("Cinematic Signature Video", 900, "video"),
    "render3d": ("3D Video Render", 250, "video"),
    "lp2v30": ("Photos to Video (30s)", 95, "video"),
    "lp2v60": ("Photos to Video (1 min)", 145, "video"),
}

CONTENT_SERVICES = {
    "educationalVideo": {"name": "Educational Video", "price": 125, "category": "content", "minQuantity": 3},
    "propertyTourVideo": {"name": "Property Tour Video", "price": 550, "category": "content"},
    "businessSpotlight": {"name": "Business Spotlight Video", "price": 450, "category": "content"},
    "closingVideo": {"name": "Closing Celebration Video", "price": 350, "category": "content"},
    "eventVideo": {"name": "Event Video", "price": 650, "category": "content"},
    "socialManagement": {"name": "Social Media Management", "price": 600, "category": "subscription"},
}

CONTENT_RETAINERS = {
    "momentum": {
        "name": "Momentum",
        "tier": 1,
        "priceMonthly": 1488,
        "alaCarteValue": 1975,
        "savings": 487,
        "videosPerMonth": 8,
        "shootDaysPerMonth": 2,
        "turnaroundHours": None,
        "includedVideos": {"educational": 5, "propertyTour": 1, "businessSpotlight": 1, "closingEvent": 1},
    },
    "dominance": {
        "name": "Dominance",
        "tier": 2,
        "priceMonthly": 2500,
        "alaCarteValue": 2900,
        "savings": 400,
        "videosPerMonth": 12,
        "shootDaysPerMonth": 3,
        "turnaroundHours": 48,
        "includedVideos": {"educational": 8, "propertyTour": 2, "businessSpotlight": 1, "closingEvent": 1},
        "isPopular": True,
    },
    "elite": {
        "name": "Elite",
        "tier": 3,
        "priceMonthly": 4500,
        "alaCarteValue": 5500,
        "savings": 1000,
        "videosPerMonth": 20,
        "shootDaysPerMonth": 4,
        "turnaroundHours": 24,
        "includedVideos": {"educational": 15, "propertyTour": 3, "businessSpotlight": 1, "closingEvent": 1},
    },
}

# ============================================================================
# TRAVEL
# ============================================================================

FREE_TRAVEL_MILES = 40
# (min miles, max miles, fee per mile over the free radius)
TRAVEL_TIERS = [
    (0, 40, 0.0),
    (41, 75, 1.5),
    (76, 150, 2.0),
    (151, None, 3.0),
]


def calculate_travel_fee(miles: float) -> float:
    """Every mile past 40 is charged at the rate of the tier the whole trip falls in"""
    if miles <= FREE_TRAVEL_MILES:
        return 0.0
    for min_miles, max_miles, fee_per_mile in TRAVEL_TIERS:
        if miles >= min_miles and (max_miles is None or miles <= max_miles):
            return round((miles - FREE_TRAVEL_MILES) * fee_per_mile, 2)
    # 40 < miles < 41
    return round((miles - FREE_TRAVEL_MILES) * TRAVEL_TIERS[1][2], 2)


# ============================================================================
# LOOKUPS
# ============================================================================


def bucket_from_sqft(sqft: int) -> str:
    for bucket_id, _label, _price, max_sqft in SQFT_BUCKETS:
        if sqft <= max_sqft:
            return bucket_id
    return SQFT_BUCKETS[-1][0]


def tier_from_bucket(bucket: str) -> str:
    return BUCKET_TO_TIER.get(bucket, "under2000")


def get_photo_price(sqft: int) -> int:
    bucket = bucket_from_sqft(sqft)
    return next((price for bucket_id, _l, price, _m in SQFT_BUCKETS if bucket_id == bucket), DEFAULT_PHOTO_PRICE)


def get_service_price(service_id: str, sqft: Optional[int] = None) -> float:
    service = A_LA_CARTE_SERVICES.get(service_id)
    if not service:
        return 0
    price = service[1]
    if price is None:
        return get_photo_price(sqft) if sqft else DEFAULT_PHOTO_PRICE
    return price


def get_packages_for_sqft(sqft: int) -> list[dict]:
    tier = tier_from_bucket(bucket_from_sqft(sqft))
    return [
        {**pkg, "price": pkg["priceByTier"].get(tier, next(iter(pkg["priceByTier"].values())))}
        for pkg in PACKAGES.values()
    ]


def compute_quote(sqft: int, package_key: Optional[str] = None, services: Optional[list[str]] = None) -> dict:
    """
    Price a booking.

    With a package, services the package already includes are free; the rest are
    add-ons. Without one every service is charged on its own. Unknown ids are ignored.

    Returns:
        {bucket, tierKey, items[{type, id, name, price}], total}
    """
    services = services or []
    bucket = bucket_from_sqft(sqft)
    tier_key = tier_from_bucket(bucket)
    items = []

    if package_key:
        package = PACKAGES.get(package_key)
        if package:
            price = package["priceByTier"].get(tier_key, next(iter(package["priceByTier"].values())))
            items.append({"type": "package", "id": package_key, "name": package["label"], "price": price})
            for service_id in services:
                if service_id in package["includesIds"] or service_id not in A_LA_CARTE_SERVICES:
                    continue
                items.append(
                    {
                        "type": "addon",
                        "id": service_id,
                        "name": A_LA_CARTE_SERVICES[service_id][0],
                        "price": get_service_price(service_id, sqft),
                    }
                )
    else:
        for service_id in services:
            if service_id not in A_LA_CARTE_SERVICES:
                continue
            items.append(
                {
                    "type": "service",
                    "id": service_id,
                    "name": A_LA_CARTE_SERVICES[service_id][0],
                    "price": get_service_price(service_id, sqft),
                }
            )

    return {"bucket": bucket, "tierKey": tier_key, "items": items, "total": sum(i["price"] for i in items)}
