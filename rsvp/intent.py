# rsvp/intent.py
"""
Reply Classifier
----------------
Rule-based RSVP intent detection for inbound replies (English + Hebrew).

The conversation is stateless: every message is classified on its own
content. A bare number or a count button is read as the party size no
matter what was asked before, so the "awaiting party count" state only
exists in the guest's head.

  yes / affirmative      → YES        (ask for party count)
  no / negative          → NO         (Declined, 0)
  maybe                  → MAYBE      (Maybe, 0 + next-day follow-up)
  guest_1 / guest_2 / N  → COUNT      (Confirmed, N)
  guest_more             → COUNT_MORE (ask for the exact number)
  RSVP-ish but unclear   → CLARIFY
  anything else          → IGNORE
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from rsvp.config import settings


class Intent(str, Enum):
    YES = "yes"
    NO = "no"
    MAYBE = "maybe"
    COUNT = "count"
    COUNT_MORE = "count_more"
    CLARIFY = "clarify"
    IGNORE = "ignore"


@dataclass(frozen=True)
class Classification:
    intent: Intent
    party_count: Optional[int] = None
    source: str = "text"


# -----------------------------
# Lexicons
# -----------------------------
MAYBE = {"maybe", "not sure", "perhaps", "might come", "might make it", "אולי", "לא בטוח", "לא בטוחה", "לא יודע", "לא יודעת"}
NO_LEADING = {"no", "nope", "לא"}
NO = {
    "cannot", "can't", "cant", "not attend", "won't be", "wont be", "not coming", "unable to",
    "לא נגיע", "לא אגיע", "לא אוכל", "לא נוכל", "לא מגיע", "לא מגיעה", "לא מגיעים",
}
YES = {
    "yes", "yeah", "yep", "sure", "of course", "i will", "i'll attend", "will attend", "i am coming",
    "i'm coming", "we're coming", "we are coming", "i'll be there", "we'll be there",
    "כן", "מגיע", "מגיעה", "מגיעים", "נגיע", "אגיע", "בטח", "בשמחה",
}
RSVP_RELATED = {"rsvp", "attend", "coming", "event", "invitation", "invite", "אירוע", "הזמנה", "להגיע", "אישור הגעה"}

MORE_LABELS = {"or more", "more", "יותר"}
ONE_LABELS = {"just me", "only me", "רק אני"}

BUTTON_COUNTS = {"guest_1": 1, "guest_2": 2}
_GUEST_BUTTON = re.compile(r"^guest_(\d+)$")
_FIRST_NUMBER = re.compile(r"(?<![\d.,])\b(\d+)\b(?![.,]\d)")
_HEBREW = re.compile(r"[\u0590-\u05FF]")
_LATIN = re.compile(r"[a-z]", re.IGNORECASE)


# -----------------------------
# Utils
# -----------------------------
def _norm(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (text or "").lower()).strip()


def _match_words(text: str, words: Iterable[str]) -> bool:
    pattern = r"(?<!\w)(" + "|".join(map(re.escape, sorted(words, key=len, reverse=True))) + r")(?!\w)"
    return bool(re.search(pattern, text))


def _starts_with_word(text: str, words: Iterable[str]) -> bool:
    pattern = r"^(" + "|".join(map(re.escape, words)) + r")(?!\w)"
    return bool(re.search(pattern, text))


def first_number(text: str) -> Optional[int]:
    """First standalone integer in ``text`` ("we are 3" → 3, "2.5" → None)."""
    m = _FIRST_NUMBER.search(text or "")
    return int(m.group(1)) if m else None


def detect_language(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    if _HEBREW.search(text):
        return "he"
    if _LATIN.search(text):
        return "en"
    return None


# -----------------------------
# Buttons
# -----------------------------
def infer_button_id(display_text: Optional[str]) -> str:
    """Best guess of a button id from its label when the transport drops the id."""
    t = _norm(display_text)
    if not t:
        return ""
    if _match_words(t, MAYBE):
        return "maybe"
    if _match_words(t, MORE_LABELS):
        return "guest_more"
    n = first_number(t)
    if _match_words(t, ONE_LABELS) or n == 1:
        return "guest_1"
    if n == 2:
        return "guest_2"
    if n is not None and n > 2:
        return f"guest_{n}"
    if _starts_with_word(t, NO_LEADING) or _match_words(t, NO):
        return "no"
    if _match_words(t, YES):
        return "yes"
    return ""


def classify_button(
    button_id: Optional[str],
    display_text: Optional[str] = None,
    max_party: Optional[int] = None,
) -> Classification:
    bid = _norm(button_id)
    if bid.startswith("test_"):
        bid = bid[len("test_"):]
    if not bid:
        bid = infer_button_id(display_text)

    if bid == "yes":
        return Classification(Intent.YES, source="button")
    if bid == "no":
        return Classification(Intent.NO, 0, source="button")
    if bid == "maybe":
        return Classification(Intent.MAYBE, 0, source="button")
    if bid == "guest_more":
        return Classification(Intent.COUNT_MORE, source="button")
    if bid in BUTTON_COUNTS:
        return Classification(Intent.COUNT, BUTTON_COUNTS[bid], source="button")
    m = _GUEST_BUTTON.match(bid)
    if m:
        return _count(int(m.group(1)), max_party, source="button")

    # unknown id: fall back to whatever the label says
    return classify_text(display_text, max_party=max_party)


# -----------------------------
# Free text
# -----------------------------
def _count(n: int, max_party: Optional[int], source: str = "text") -> Classification:
    limit = max_party if max_party is not None else settings().MAX_PARTY_SIZE
    if n == 0:
        return Classification(Intent.NO, 0, source=source)
    if n > limit:
        return Classification(Intent.CLARIFY, source=source)
    return Classification(Intent.COUNT, n, source=source)


def classify_text(body: Optional[str], max_party: Optional[int] = None) -> Classification:
    text = _norm(body)
    if not text:
        return Classification(Intent.IGNORE)

    if _match_words(text, MAYBE):
        return Classification(Intent.MAYBE, 0)
    if _starts_with_word(text, NO_LEADING) or _match_words(text, NO):
        return Classification(Intent.NO, 0)

    n = first_number(text)
    if n is not None:
        return _count(n, max_party)

    if _match_words(text, YES):
        return Classification(Intent.YES)
    if _match_words(text, RSVP_RELATED):
        return Classification(Intent.CLARIFY)
    return Classification(Intent.IGNORE)


def classify(
    button_id: Optional[str] = None,
    button_text: Optional[str] = None,
    text: Optional[str] = None,
    max_party: Optional[int] = None,
) -> Classification:
    """Buttons win over free text when both are present."""
    if button_id or button_text:
        return classify_button(button_id, button_text, max_party=max_party)
    return classify_text(text, max_party=max_party)


__all__ = [
    "Intent",
    "Classification",
    "classify",
    "classify_button",
    "classify_text",
    "infer_button_id",
    "first_number",
    "detect_language",
]
