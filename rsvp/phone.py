# rsvp/phone.py
"""
Phone Normalizer
----------------
Canonicalizes arbitrary phone strings into a single comparable form
(``+<country code><subscriber>``). Every function here is pure and total:
bad input maps to ``INVALID`` (an empty string), never to an exception.
"""

from __future__ import annotations
import re
from typing import List, Optional

from rsvp.config import settings
from rsvp.runtime import only_digits

INVALID = ""
MIN_DIGITS = 9
MIN_SUFFIX_DIGITS = 8

_CHAT_SUFFIX = re.compile(r"(:\d+)?@.*$")


def _country_code(country_code: Optional[str]) -> str:
    return only_digits(country_code or settings().COUNTRY_CODE) or "972"


def strip_chat_suffix(value: object) -> str:
    """Drop a transport address suffix ("...@s.whatsapp.net", device ":12")."""
    if value is None:
        return ""
    return _CHAT_SUFFIX.sub("", str(value)).strip()


def digits_only(value: object) -> str:
    return only_digits(strip_chat_suffix(value))


def normalize(raw: object, country_code: Optional[str] = None) -> str:
    """
    Return the canonical ``+<cc>...`` form of ``raw`` or ``INVALID``.

    A leading trunk ``0`` is replaced with the country code and a bare
    9-digit subscriber number gets the country code prepended. The result
    must look like ``+<cc>`` followed by 8 or 9 digits.
    """
    try:
        cc = _country_code(country_code)
        cleaned = re.sub(r"[^\d+]", "", strip_chat_suffix(raw))
        digits = cleaned.replace("+", "")
        if len(digits) < MIN_DIGITS:
            return INVALID

        if digits.startswith(cc):
            pass
        elif digits.startswith("0"):
            digits = cc + digits[1:]
        elif len(digits) in (9, 10):
            digits = cc + digits

        candidate = "+" + digits
        if not re.fullmatch(rf"\+{cc}\d{{8,9}}", candidate):
            return INVALID
        return candidate
    except Exception:
        return INVALID


def is_valid(phone: object) -> bool:
    return bool(phone) and normalize(phone) == phone


def with_plus(phone: object) -> str:
    digits = digits_only(phone)
    return f"+{digits}" if digits else ""


def without_plus(phone: object) -> str:
    return digits_only(phone)


def phone_variants(phone: object) -> List[str]:
    """Both lookup keys for a phone: "+"-prefixed and bare digits."""
    plus, bare = with_plus(phone), without_plus(phone)
    return [v for v in (plus, bare) if v]


def suffix_overlap(a: object, b: object) -> bool:
    """
    True when one digit string ends with the other, ignoring a trunk "0".

    Handles a number stored with the country code on one side and without
    it on the other ("0501234567" vs "+972501234567").
    """
    da, db = digits_only(a).lstrip("0"), digits_only(b).lstrip("0")
    if not da or not db:
        return False
    shorter, longer = sorted((da, db), key=len)
    if len(shorter) < MIN_SUFFIX_DIGITS:
        return False
    return longer.endswith(shorter)


__all__ = [
    "INVALID",
    "normalize",
    "is_valid",
    "digits_only",
    "with_plus",
    "without_plus",
    "phone_variants",
    "suffix_overlap",
    "strip_chat_suffix",
]
