"""Messaging address normalization."""

import re

_NON_DIGITS = re.compile(r"\D")


def normalize_address(raw: str, country_code: str = "62") -> str:
    """
    Normalize a phone number into international digit-only form.

    Non-digits are stripped, a leading trunk ``0`` is replaced by the country
    code, and numbers not already starting with the country code get it
    prefixed.

    Examples:
        >>> normalize_address("0812-3456-7890")
        '6281234567890'
        >>> normalize_address("+62 812 3456 7890")
        '6281234567890'
        >>> normalize_address("81234567890")
        '6281234567890'

    Args:
        raw: Address as entered by the caller
        country_code: Country calling code without ``+``

    Returns:
        Normalized digit string

    Raises:
        ValueError: If the address contains no digits
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if not digits:
        raise ValueError("Address must contain digits")
    if digits.startswith("0"):
        digits = country_code + digits[1:]
    if not digits.startswith(country_code):
        digits = country_code + digits
    return digits


def to_chat_id(address: str) -> str:
    """Transport chat identifier for a normalized address."""
    return f"{address}@c.us"
