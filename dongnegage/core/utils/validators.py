"""
Korean-market validators
========================
Phone numbers, shop slugs and loose spreadsheet values.
"""

import re
from typing import Any, Optional

PHONE_REGEX = re.compile(r"^01[0-9]?[0-9]{3,4}[0-9]{4}$")
SLUG_REGEX = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,38}[a-z0-9])$")

TRUE_VALUES = {"true", "1", "y", "yes", "on"}
FALSE_VALUES = {"false", "0", "n", "no", "off"}


def normalize_phone(phone: Optional[str]) -> str:
    """
    Strips hyphens (and surrounding blanks) from a phone number.

    Examples:
        >>> normalize_phone('010-1234-5678')
        '01012345678'
    """
    if not phone:
        return ""
    return phone.replace("-", "").strip()


def validate_phone(phone: Optional[str]) -> bool:
    """
    Validates a Korean mobile number after hyphen removal.

    Examples:
        >>> validate_phone('010-1234-5678')
        True
        >>> validate_phone('02-123-4567')
        False
    """
    return bool(PHONE_REGEX.match(normalize_phone(phone)))


def validate_slug(slug: Optional[str]) -> bool:
    """3..40 chars of lowercase letters, digits and inner hyphens."""
    if not slug:
        return False
    return bool(SLUG_REGEX.match(slug))


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:  # NaN from pandas
        return ""
    return str(value).strip()


def parse_bool(value: Any, default: bool) -> bool:
    """Spreadsheet boolean: true/1/y/yes/on and false/0/n/no/off, anything else -> default."""
    if isinstance(value, bool):
        return value
    text = cell_text(value).lower()
    if text.endswith(".0"):
        text = text[:-2]
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return default


def parse_non_negative_int(value: Any, default: int = 0) -> int:
    """Truncates numeric cells; negatives and garbage fall back to the default."""
    text = cell_text(value).replace(",", "")
    if not text:
        return default
    try:
        number = int(float(text))
    except ValueError:
        return default
    return number if number >= 0 else default


def parse_positive_int(value: Any, default: int = 1) -> int:
    number = parse_non_negative_int(value, default)
    return number if number > 0 else default
