import html
import re
from typing import Optional

import bleach

MAX_RENDER_TEXT_LENGTH = 10000

SCRIPT_SCHEMES = re.compile(r"(javascript|data):", re.IGNORECASE)

# Error messages that are safe to echo back to API callers
SAFE_ERROR_PATTERNS = [
    "template not found",
    "invalid request",
    "validation failed",
    "missing required",
]

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request"


def sanitize_render_text(value: Optional[str]) -> str:
    """
    Clean caller-supplied text before it is drawn onto an image.

    Markup is stripped (not escaped) because the output is a raster, then
    script-like schemes are removed and the length is capped.
    """
    if not value or not isinstance(value, str):
        return ""
    text = html.unescape(bleach.clean(value, tags=[], attributes={}, strip=True))
    text = SCRIPT_SCHEMES.sub("", text)
    return text[:MAX_RENDER_TEXT_LENGTH]


def sanitize_error_message(
    message: Optional[str], is_development: bool, extra_safe_patterns: Optional[list[str]] = None
) -> str:
    """
    Return the message unchanged in development; in production only known-safe
    messages pass through and everything else becomes a generic error.
    """
    if is_development:
        return message or GENERIC_ERROR_MESSAGE
    if not message:
        return GENERIC_ERROR_MESSAGE

    patterns = SAFE_ERROR_PATTERNS + (extra_safe_patterns or [])
    lowered = message.lower()
    if any(pattern in lowered for pattern in patterns):
        return message
    return GENERIC_ERROR_MESSAGE


def validate_and_sanitize_input(value: str, max_length: int = 500) -> str:
    """
    Validate and sanitize free-text input (QC notes, coupon descriptions).

    Raises:
        ValueError: If input exceeds max_length
    """
    if not value:
        return ""

    value = str(value).strip()

    if len(value) > max_length:
        raise ValueError(f"Input exceeds maximum length of {max_length} characters")

    value = html.escape(value, quote=True)

    value = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", value)

    return value
