"""
Variable resolution and text measurement for render templates.

Template text uses a small Handlebars-like syntax:
    {{price}}                 plain lookup
    {{listing.beds}}          dotted lookup across the render context
    {{formatPrice price}}     helper applied to a lookup

Lookups that fail leave the original {{...}} in place so missing data is
visible in the rendered image instead of silently disappearing.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
HELPER_PATTERN = re.compile(r"^(\w+)\s+(.+)$")

# Attribute-style names that must never be walked, even though context sources are plain dicts
BLOCKED_PROPERTIES = {
    "__proto__",
    "constructor",
    "prototype",
    "__defineGetter__",
    "__defineSetter__",
    "__lookupGetter__",
    "__lookupSetter__",
}

BRAND_KIT_DEFAULTS = {
    "primaryColor": "#0077ff",
    "secondaryColor": "#ffffff",
    "accentColor": "#ff6b00",
}

NAMED_COLORS = {
    "white",
    "black",
    "red",
    "green",
    "blue",
    "yellow",
    "orange",
    "purple",
    "pink",
    "gray",
    "grey",
    "transparent",
}

HEX_COLOR = re.compile(r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")
RGB_COLOR = re.compile(r"^rgba?\([^)]+\)$")
HSL_COLOR = re.compile(r"^hsla?\([^)]+\)$")


@dataclass
class RenderContext:
    variables: dict = field(default_factory=dict)
    brand_kit: Optional[dict] = None
    life_here: Optional[dict] = None
    listing: Optional[dict] = None
    agent: Optional[dict] = None


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_blocked(part: str) -> bool:
    return part in BLOCKED_PROPERTIES or part.startswith("__")


def get_deep_value(obj: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts/lists, refusing blocked names"""
    current = obj
    for part in path.split("."):
        if _is_blocked(part):
            logger.warning(f"🚫 Blocked access to property: {part}")
            return None
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def get_nested_value(path: str, context: RenderContext) -> Any:
    if any(_is_blocked(part) for part in path.split(".")):
        logger.warning(f"🚫 Blocked access to property in path: {path}")
        return None

    if path in context.variables:
        return context.variables[path]

    prefixed = (
        ("brandKit.", context.brand_kit),
        ("lifeHere.", context.life_here),
        ("listing.", context.listing),
        ("agent.", context.agent),
    )
    for prefix, source in prefixed:
        if path.startswith(prefix) and source:
            return get_deep_value(source, path[len(prefix):])

    if "." in path:
        for source in (context.variables, context.brand_kit, context.life_here, context.listing, context.agent):
            if not source:
                continue
            value = get_deep_value(source, path)
            if value is not None:
                return value

    return None


def resolve_variables(text: Optional[str], context: RenderContext) -> str:
    if not text:
        return ""

    def replace(match: re.Match) -> str:
        expression = match.group(1).strip()

        helper_match = HELPER_PATTERN.match(expression)
        if helper_match:
            helper, arg = helper_match.groups()
            return apply_helper(helper, get_nested_value(arg.strip(), context))

        value = get_nested_value(expression, context)
        return _to_text(value) if value is not None else match.group(0)

    return VARIABLE_PATTERN.sub(replace, text)


def apply_helper(helper: str, value: Any) -> str:
    if helper == "formatPrice":
        return format_price(value)
    if helper == "formatNumber":
        return format_number(value)
    if helper == "formatDate":
        return format_date(value)
    if helper == "uppercase":
        return _to_text(value).upper()
    if helper == "lowercase":
        return _to_text(value).lower()
    if helper == "capitalize":
        return capitalize(_to_text(value))
    if helper == "truncate":
        return truncate(_to_text(value), 50)
    return _to_text(value)


# ============================================================================
# FORMATTERS
# ============================================================================


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    match = re.match(r"^\s*[-+]?(\d+\.?\d*|\.\d+)", _to_text(value))
    return float(match.group(0)) if match else None


def _group_thousands(num: float) -> str:
    if num.is_integer():
        return f"{int(num):,}"
    return f"{num:,.3f}".rstrip("0").rstrip(".")


def format_price(value: Any) -> str:
    """$1.5M for millions, $1,234 for thousands, $0 for anything unparseable"""
    num = _to_number(value)
    if num is None:
        return "$0"

    if num >= 1_000_000:
        millions = num / 1_000_000
        return f"${millions:.0f}M" if millions.is_integer() else f"${millions:.1f}M"

    if num >= 1000:
        return f"${_group_thousands(num)}"

    return f"${_to_text(num)}"


def format_number(value: Any) -> str:
    num = _to_number(value)
    if num is None:
        return "0"
    return _group_thousands(num)


def format_date(value: Any) -> str:
    if not value:
        return ""
    try:
        parsed = date_parser.parse(_to_text(value))
    except (ValueError, OverflowError):
        return _to_text(value)
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year}"


def capitalize(text: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), text)


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


# ============================================================================
# COLORS
# ============================================================================


def is_valid_color(color: Optional[str]) -> bool:
    if not color:
        return False
    return bool(
        HEX_COLOR.match(color)
        or RGB_COLOR.match(color)
        or HSL_COLOR.match(color)
        or color.lower() in NAMED_COLORS
    )


def resolve_color(color: Optional[str], context: RenderContext) -> str:
    """Resolve a literal, a {{variable}} or a brand kit color name to a CSS color"""
    if not color:
        return "#000000"

    if color.startswith("{{") and color.endswith("}}"):
        resolved = _to_text(get_nested_value(color[2:-2].strip(), context))
        return resolved if is_valid_color(resolved) else "#000000"

    if color in context.variables:
        value = _to_text(context.variables[color])
        if is_valid_color(value):
            return value

    if context.brand_kit is not None and color in BRAND_KIT_DEFAULTS:
        return context.brand_kit.get(color) or BRAND_KIT_DEFAULTS[color]

    if is_valid_color(color):
        return color

    return "#000000"


# ============================================================================
# TEXT SIZING
# ============================================================================


def calculate_auto_size(text: str, config: dict, container_width: float) -> int:
    """Pick a font size so longer copy shrinks instead of overflowing"""
    max_size = config.get("maxSize") or 48
    if not config.get("enabled"):
        return max_size

    min_size = config.get("minSize") or 12
    text_length = len(text)

    breakpoints = config.get("breakpoints")
    if breakpoints:
        for bp in sorted(breakpoints, key=lambda b: b["maxLength"]):
            if text_length <= bp["maxLength"]:
                return max(min_size, min(bp["fontSize"], max_size))
        return min_size

    # average glyph is roughly 0.6em wide
    target_chars_per_line = container_width / (max_size * 0.6)
    if text_length <= target_chars_per_line:
        return max_size

    scale = target_chars_per_line / text_length
    calculated = math.floor(max_size * math.sqrt(scale))
    return max(min_size, min(calculated, max_size))

