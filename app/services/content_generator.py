"""
Listing content generator
Writes Instagram carousel copy (7 slides, caption, hashtags) for a listing with
the Anthropic Messages API. Any failure falls back to canned slides so a
launch never stalls on the AI call.
"""

import asyncio
import json
import logging
import re
from typing import Optional

import httpx

from ..circuit_breaker import with_circuit_breaker
from ..config import ANTHROPIC_API_KEY, ANTHROPIC_MODEL

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 2500
TEMPERATURE = 0.8

CAROUSEL_TYPES = ("property_highlights", "neighborhood_guide", "local_favorites", "schools_families", "lifestyle")

TYPE_INSTRUCTIONS = {
    "property_highlights": """
FOCUS: Showcase the property's best features
TONE: Excited, highlighting unique selling points
SLIDES SHOULD COVER:
- Slide 1: Eye-catching hook about the property
- Slides 2-5: Key features (kitchen, primary suite, outdoor space, etc.)
- Slide 6: A unique or standout feature
- Slide 7: CTA - "DM me for a tour" or similar""",
    "neighborhood_guide": """
FOCUS: Sell the lifestyle and location
TONE: Local expert, insider knowledge
SLIDES SHOULD COVER:
- Slide 1: Hook about living in this neighborhood
- Slides 2-3: Best restaurants and coffee spots (use specific names!)
- Slide 4: Parks, trails, or outdoor activities
- Slide 5: Shopping, entertainment, or nightlife
- Slide 6: Commute/accessibility highlights
- Slide 7: CTA - "Want to live here? Let's talk\"""",
    "local_favorites": """
FOCUS: Agent's personal recommendations
TONE: Personal, authentic, like a friend's advice
SLIDES SHOULD COVER:
- Slide 1: "My local favorites near [address]"
- Slides 2-6: Specific recommendations with personal touch
- Slide 7: CTA inviting engagement
Use agent's answers to add authentic personal details!""",
    "schools_families": """
FOCUS: Family-friendly features and schools
TONE: Warm, practical, reassuring
SLIDES SHOULD COVER:
- Slide 1: Hook for families looking in the area
- Slide 2: Nearby schools (if available)
- Slide 3: Parks and playgrounds
- Slide 4: Kid-friendly activities
- Slide 5: Safe neighborhood features
- Slide 6: Family-friendly dining/entertainment
- Slide 7: CTA for families""",
    "lifestyle": """
FOCUS: Paint a picture of daily life
TONE: Aspirational, storytelling
SLIDES SHOULD COVER:
- Slide 1: Hook painting the lifestyle vision
- Slides 2-6: Day-in-the-life moments (morning coffee, working from home, evenings, weekends, entertaining)
- Slide 7: "This could be your life" CTA""",
}

FALLBACK_SLIDES = [
    ("Welcome Home", "Your dream property awaits"),
    ("Stunning Kitchen", "Perfect for entertaining"),
    ("Spacious Living", "Room to grow and thrive"),
    ("Primary Suite", "Your peaceful retreat"),
    ("Outdoor Oasis", "Enjoy Florida living"),
    ("Great Location", "Close to everything"),
    ("Let's Connect", "DM me for more details!"),
]
FALLBACK_CAPTION = "New listing alert! Check out this amazing property. DM me for details or to schedule a showing!"
FALLBACK_HASHTAGS = ["justlisted", "realestate", "dreamhome", "floridarealestate"]


class ContentGenerationError(Exception):
    pass


def _slide(position: int, headline: str, body: str, text_position: str = "bottom_left") -> dict:
    return {
        "position": position,
        "headline": headline,
        "body": body,
        "background_image_id": None,
        "background_image_url": None,
        "text_position": text_position,
        "overlay_style": "gradient_bottom",
    }


def fallback_slides() -> dict:
    return {
        "slides": [_slide(i, headline, body) for i, (headline, body) in enumerate(FALLBACK_SLIDES, start=1)],
        "caption": FALLBACK_CAPTION,
        "hashtags": list(FALLBACK_HASHTAGS),
    }


def fallback_content(carousel_type: str, listing: dict, agent: dict) -> dict:
    content = fallback_slides()
    content["caption"] = (
        f"Just listed: {listing.get('address')}! {listing.get('beds')} beds, {listing.get('baths')} baths, "
        f"{(listing.get('sqft') or 0):,} sqft. Contact {agent.get('name')} for more details!"
    )
    return {"carouselType": carousel_type, **content, "tokensUsed": 0}


def build_neighborhood_context(carousel_type: str, data: dict) -> str:
    parts = []
    if data.get("dining"):
        parts.append(
            "TOP RESTAURANTS: "
            + ", ".join(f"{p['name']} ({p.get('rating') or 'N/A'}★)" for p in data["dining"][:5])
        )
    if data.get("fitness"):
        parts.append("FITNESS/PARKS: " + ", ".join(p["name"] for p in data["fitness"][:4]))
    if data.get("shopping"):
        parts.append("SHOPPING: " + ", ".join(p["name"] for p in data["shopping"][:3]))
    if data.get("entertainment"):
        parts.append("ENTERTAINMENT: " + ", ".join(p["name"] for p in data["entertainment"][:3]))
    if carousel_type == "schools_families" and data.get("education"):
        parts.append("SCHOOLS: " + ", ".join(p["name"] for p in data["education"][:4]))
    if data.get("events"):
        parts.append("UPCOMING EVENTS: " + ", ".join(f"{e['name']} ({e.get('date')})" for e in data["events"][:3]))
    if data.get("curatedItems"):
        parts.append("WHAT'S NEW: " + ", ".join(c["title"] for c in data["curatedItems"]))
    return "\n".join(parts) or "No specific neighborhood data available"


def build_carousel_prompt(
    carousel_type: str,
    listing: dict,
    agent: dict,
    neighborhood: dict,
    questions: list[dict],
    answers: dict,
) -> str:
    insights = "\n\n".join(
        f"Q: {q['question']}\nA: {answers[q['id']]}" for q in questions if (answers.get(q["id"]) or "").strip()
    )
    price = f"- Price: ${listing['price']:,.0f}\n" if listing.get("price") else ""
    return f"""You are an expert real estate social media content creator. Create engaging Instagram carousel content for a property listing.

PROPERTY DETAILS:
- Address: {listing.get('address')}, {listing.get('city')}, {listing.get('state')}
- {listing.get('beds')} beds, {listing.get('baths')} baths, {(listing.get('sqft') or 0):,} sqft
{price}
AGENT: {agent.get('name')}

AGENT'S PERSONAL INSIGHTS:
{insights or 'No personal insights provided'}

NEIGHBORHOOD DATA:
{build_neighborhood_context(carousel_type, neighborhood)}

CAROUSEL TYPE: {carousel_type}
{TYPE_INSTRUCTIONS.get(carousel_type, TYPE_INSTRUCTIONS['property_highlights'])}

REQUIREMENTS:
1. Create exactly 7 slides for the carousel
2. Each slide needs a punchy HEADLINE (max 8 words) and BODY text (max 40 words)
3. Slide 1 should be a hook that grabs attention
4. Slide 7 should be a call-to-action with agent info
5. Use the agent's personal insights to add authenticity
6. Reference SPECIFIC places/businesses from neighborhood data
7. Write in an engaging, conversational tone
8. Avoid generic real estate clichés

RESPONSE FORMAT (JSON):
{{
  "slides": [
    {{"position": 1, "headline": "Short punchy headline", "body": "Engaging body text",
      "suggested_photo": "exterior_front", "text_position": "bottom_left"}}
  ],
  "caption": "Full Instagram caption with emoji and call-to-action (150-200 words)",
  "hashtags": ["relevanthashtag1", "relevanthashtag2"]
}}

Generate the carousel content now:"""


def extract_carousel(content: str) -> Optional[dict]:
    """Pull the first {...} block out of the model reply, or None when there is no usable JSON"""
    match = re.search(r"\{[\s\S]*\}", content or "")
    if not match:
        logger.warning("⚠️ No JSON found in carousel response, using fallback slides")
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.warning(f"⚠️ Could not parse carousel response: {e}")
        return None

    slides = [
        _slide(
            s.get("position") or i + 1,
            s.get("headline") or "",
            s.get("body") or "",
            s.get("text_position") or "bottom_left",
        )
        for i, s in enumerate(parsed.get("slides") or [])
    ]
    return {"slides": slides, "caption": parsed.get("caption") or "", "hashtags": parsed.get("hashtags") or []}


def parse_carousel_response(content: str) -> dict:
    return extract_carousel(content) or fallback_slides()


class ContentGenerator:
    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key if api_key is not None else (ANTHROPIC_API_KEY or "")
        self._transport = transport

    async def _complete(self, prompt: str) -> tuple[str, int]:
        if not self.api_key:
            raise ContentGenerationError("ANTHROPIC_API_KEY not configured")

        async def call():
            async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
                response = await client.post(
                    ANTHROPIC_API_URL,
                    json={
                        "model": ANTHROPIC_MODEL,
                        "max_tokens": MAX_TOKENS,
                        "temperature": TEMPERATURE,
                        "messages": [{"role": "user", "content": prompt}],
                    },
                    headers={
                        "x-api-key": self.api_key,
                        "anthropic-version": ANTHROPIC_VERSION,
                        "content-type": "application/json",
                    },
                )
            if not response.is_success:
                raise ContentGenerationError(f"Anthropic API error: {response.status_code}")
            return response.json()

        data = await with_circuit_breaker("anthropic-api", call, timeout=60.0)
        text = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        usage = data.get("usage") or {}
        return text, (usage.get("input_tokens") or 0) + (usage.get("output_tokens") or 0)

    async def generate_carousel(
        self,
        carousel_type: str,
        listing: dict,
        agent: dict,
        neighborhood: Optional[dict] = None,
        questions: Optional[list[dict]] = None,
        answers: Optional[dict] = None,
    ) -> dict:
        prompt = build_carousel_prompt(
            carousel_type, listing, agent, neighborhood or {}, questions or [], answers or {}
        )
        text, tokens = await self._complete(prompt)
        parsed = extract_carousel(text)
        if parsed is None:
            return {"carouselType": carousel_type, **fallback_slides(), "tokensUsed": 0}
        return {"carouselType": carousel_type, **parsed, "tokensUsed": tokens}

    async def generate_all(
        self,
        listing: dict,
        agent: dict,
        carousel_types: list[str],
        neighborhood: Optional[dict] = None,
        questions: Optional[list[dict]] = None,
        answers: Optional[dict] = None,
    ) -> dict:
        """One carousel per type, generated concurrently; a failed type gets fallback content"""

        async def one(carousel_type: str) -> dict:
            try:
                return await self.generate_carousel(carousel_type, listing, agent, neighborhood, questions, answers)
            except Exception as e:
                logger.error(f"❌ Error generating {carousel_type} carousel: {e}")
                return fallback_content(carousel_type, listing, agent)

        carousels = await asyncio.gather(*(one(t) for t in carousel_types))
        return {"carousels": list(carousels), "totalTokensUsed": sum(c["tokensUsed"] for c in carousels)}


_content_generator: Optional[ContentGenerator] = None


def get_content_generator() -> ContentGenerator:
    global _content_generator
    if _content_generator is None:
        _content_generator = ContentGenerator()
    return _content_generator
