"""Phone number normalisation.

Every lookup keyed by phone goes through normalize_phone first, so the same
person always maps to one digit-only, country-prefixed string.
"""

import re
from typing import Any, Mapping

from .errors import MalformedPayload

_NON_DIGIT = re.compile(r"\D")

DEFAULT_COUNTRY_CODE = "55"

# E.164 caps numbers at 15 digits; anything longer is a WhatsApp group/LID id
MAX_DIGITS = 15
MIN_DIGITS = 10


def digits_only(raw: str) -> str:
    """Strip everything but digits."""
    return _NON_DIGIT.sub("", str(raw))


def normalize_phone(raw: str | None, default_country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Normalize a phone number to digit-only E.164 form (no leading '+').

    National numbers (10-11 digits: area code + subscriber) get the default
    country code prepended. Already-prefixed numbers are left as is, so the
    function is idempotent.

    Args:
        raw: Phone in any common format ("+55 (11) 99999-8888", "5511...",
            "11 99999 8888", "5511999998888@s.whatsapp.net").
        default_country_code: Country code for national numbers.

    Returns:
        Digit-only string, e.g. "5511999998888".

    Raises:
        MalformedPayload: If the number is missing or out of range.
    """
    if raw is None:
        raise MalformedPayload("missing phone number")

    # JIDs carry the number before the "@"
    text = str(raw).split("@")[0].strip()
    digits = digits_only(text)

    # A leading "+" means the caller already wrote the country code. Otherwise
    # 10-11 digits is a national number, even when the area code happens to
    # equal the country code.
    if not text.startswith("+") and len(digits) in (10, 11):
        digits = default_country_code + digits

    if len(digits) < MIN_DIGITS or len(digits) > MAX_DIGITS:
        raise MalformedPayload("phone number has invalid length")

    return digits


def primary_phone(patient: Mapping[str, Any]) -> str | None:
    """Primary WhatsApp phone, then any WhatsApp phone, then the first phone, then patients.phone."""
    phones = [p for p in patient.get("phones") or [] if p.get("phone")]
    for candidate in (
        next((p for p in phones if p.get("is_primary") and p.get("is_whatsapp")), None),
        next((p for p in phones if p.get("is_whatsapp")), None),
        phones[0] if phones else None,
    ):
        if candidate is not None:
            return candidate["phone"]
    return patient.get("phone") or None
