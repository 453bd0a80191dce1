"""
phone.py — Chilean mobile number normalization.

Every number the service stores or looks up is in local 9-digit mobile
format (``9XXXXXXXX``). Clients send whatever the phone's address book
holds, so input may carry the ``+56`` country code, spaces, dashes or
parentheses:

    "+56 9 1234 5678"  →  "912345678"
    "56912345679"      →  "912345679"
    "912345678"        →  "912345678"   (already normalized)
    "812345678"        →  None          (not a mobile number)
    "12345"            →  None
"""

from __future__ import annotations

import re
from typing import Any, Optional

COUNTRY_CODE = "56"
MOBILE_PREFIX = "9"
LOCAL_LENGTH = 9

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: Any) -> Optional[str]:
    """
    Map a raw phone value to its canonical 9-digit form.

    Returns None when the value cannot be a mobile number. Only strings and
    integers are read; JSON clients sometimes send numbers unquoted.
    """
    if isinstance(raw, bool) or not isinstance(raw, (str, int)):
        return None

    digits = _NON_DIGITS.sub("", str(raw))
    if digits.startswith(COUNTRY_CODE):
        digits = digits[len(COUNTRY_CODE):]

    if digits.startswith(MOBILE_PREFIX) and len(digits) == LOCAL_LENGTH:
        return digits
    return None


def mask_phone(phone: Optional[str]) -> str:
    """Log-safe rendering: first digit and last three kept."""
    if not phone:
        return "<none>"
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) <= 4:
        return "*" * len(digits)
    return digits[0] + "*" * (len(digits) - 4) + digits[-3:]
