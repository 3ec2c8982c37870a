"""Phone number normalization for transport addresses."""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def digits_only(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return _NON_DIGITS.sub("", str(raw))


def normalize_phone(raw: Optional[str], country_code: str = "54") -> Optional[str]:
    """Strip non-digits and prefix the country code when absent.

    >>> normalize_phone("+54 9 11 5555-0000")
    '5491155550000'
    >>> normalize_phone("11 5555 0000")
    '541155550000'
    """
    digits = digits_only(raw)
    if not digits:
        return None
    if digits.startswith(country_code):
        return digits
    return country_code + digits


def is_plausible_mobile(raw: Optional[str], min_digits: int = 10) -> bool:
    """Whether a registered phone is long enough to be a real mobile number."""
    return len(digits_only(raw)) >= min_digits
