"""
phone.py — Canonical dialing form for Indian mobile numbers.

Rules, first match wins:

    input                    output
    ─────────────────────    ──────────────────────────────
    None / ""                ""
    "+<anything>"            unchanged (already international)
    "9876543210"             "+919876543210"
    "09876543210"            "+919876543210"
    anything else            trimmed, otherwise unchanged

Unrecognised input is passed through rather than rejected; the SMS
transport decides whether it can deliver to it.
"""

from __future__ import annotations

import re
from typing import Optional

INDIA_COUNTRY_CODE = "+91"

_MOBILE = re.compile(r"^[6-9]\d{9}$")
_TRUNK_MOBILE = re.compile(r"^0[6-9]\d{9}$")


def normalize_phone(raw: Optional[str]) -> str:
    """Map a raw phone string to its canonical dialing form. Never raises."""
    if not raw:
        return ""
    phone = raw.strip()
    if phone.startswith("+"):
        return phone
    if _MOBILE.match(phone):
        return INDIA_COUNTRY_CODE + phone
    if _TRUNK_MOBILE.match(phone):
        return INDIA_COUNTRY_CODE + phone[1:]
    return phone


def is_indian_mobile(phone: str) -> bool:
    """True for a bare 10-digit mobile number (the form users register with)."""
    return bool(_MOBILE.match(phone or ""))
