"""Shared validation utilities"""

import re
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]+$")


def validate_us_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a US phone number to E.164 (+1XXXXXXXXXX) for Twilio.

    Raises:
        ValueError: If the number does not have 10 digits (11 with a leading 1)
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)
    if digits.startswith("1") and len(digits) == 11:
        digits = digits[1:]

    if len(digits) != 10:
        raise ValueError("Phone number must be 10 digits for US numbers")

    return f"+1{digits}"


def validate_email(email: Optional[str]) -> Optional[str]:
    """Lowercased, stripped email. Raises ValueError on a malformed address."""
    if not email:
        return email

    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")

    return email


def validate_hhmm(value: str) -> str:
    """Arrival windows and shoot times are stored as 24 hour HH:MM strings"""
    if not HHMM_PATTERN.match(value):
        raise ValueError("Time must be HH:MM (24 hour)")
    return value


def normalize_coupon_code(code: str) -> str:
    code = code.strip().upper()
    if not COUPON_CODE_PATTERN.match(code):
        raise ValueError("Code may only contain letters, numbers, dashes and underscores")
    return code
