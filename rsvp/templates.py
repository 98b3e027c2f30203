# rsvp/templates.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# -------------------------------
# Outbound message shapes
# -------------------------------


@dataclass(frozen=True)
class Button:
    id: str
    label: str


@dataclass
class OutboundMessage:
    text: str
    buttons: List[Button] = field(default_factory=list)
    footer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"text": self.text}
        if self.buttons:
            out["buttons"] = [{"id": b.id, "label": b.label} for b in self.buttons]
            out["footer"] = self.footer or ""
        return out


# -------------------------------
# Reply texts (he / en)
# -------------------------------
TEXTS: Dict[str, Dict[str, str]] = {
    "ask_count": {
        "en": "Great! How many people will be attending in total (including yourself)?",
        "he": "מעולה! כמה אנשים תגיעו בסך הכל (כולל אותך)?",
    },
    "ask_count_footer": {
        "en": "Please select an option below",
        "he": "אנא בחרו אחת מהאפשרויות",
    },
    "ask_exact_count": {
        "en": "Please reply with the total number of people attending (including yourself):",
        "he": "אנא השיבו במספר האנשים שיגיעו (כולל אותך):",
    },
    "declined": {
        "en": "Thank you for letting us know. We're sorry you can't make it!",
        "he": "תודה שעדכנתם אותנו. חבל שלא תוכלו להגיע!",
    },
    "confirmed_one": {
        "en": "Thank you for confirming! We've noted that 1 person will be attending.",
        "he": "תודה על האישור! רשמנו שאדם 1 יגיע.",
    },
    "confirmed_many": {
        "en": "Thank you for confirming! We've noted that {count} people will be attending.",
        "he": "תודה על האישור! רשמנו ש-{count} אנשים יגיעו.",
    },
    "maybe": {
        "en": "No problem, we'll follow up with you tomorrow.",
        "he": "אין בעיה, ניצור איתך קשר שוב מחר.",
    },
    "clarify": {
        "en": (
            "I'm not sure I understand your response. Please reply with 'Yes' if you're attending, "
            "or 'No' if you can't attend. If you're attending, please also let me know how many "
            "people total will be coming."
        ),
        "he": (
            "לא הבנתי את התשובה. אנא השיבו 'כן' אם תגיעו או 'לא' אם לא תוכלו להגיע. "
            "אם אתם מגיעים, ציינו גם כמה אנשים יגיעו בסך הכל."
        ),
    },
    "unknown_event": {
        "en": "Sorry, we couldn't find your event. Please contact the event organizer.",
        "he": "מצטערים, לא מצאנו את האירוע שלך. אנא פנו למארגני האירוע.",
    },
    "followup": {
        "en": "Hi {name}, just following up about {event}. Will you be able to attend?",
        "he": "שלום {name}, רצינו לבדוק שוב לגבי {event}. האם תוכלו להגיע?",
    },
    "invite_footer": {
        "en": "Please respond using the buttons below",
        "he": "אנא השיבו באמצעות הכפתורים",
    },
}

BUTTON_LABELS: Dict[str, Dict[str, str]] = {
    "yes": {"en": "Yes, I'll attend", "he": "כן, אגיע"},
    "no": {"en": "No, I can't attend", "he": "לא אוכל להגיע"},
    "maybe": {"en": "Maybe", "he": "אולי"},
    "guest_1": {"en": "1 (Just me)", "he": "1 (רק אני)"},
    "guest_2": {"en": "2 people", "he": "2 אנשים"},
    "guest_more": {"en": "3 or more", "he": "3 או יותר"},
}

# Opening phrases of our own replies; an inbound message starting with one
# of these is an echo of the bot and must not be classified.
AUTO_REPLY_PREFIXES = tuple(
    sorted(
        {
            TEXTS[key][lang].split("{")[0].strip()[:24].lower()
            for key in (
                "ask_count", "ask_exact_count", "declined", "confirmed_one", "confirmed_many",
                "maybe", "clarify", "unknown_event",
            )
            for lang in ("en", "he")
        }
    )
)


def text(key: str, lang: str = "he", **kwargs: Any) -> str:
    variants = TEXTS[key]
    raw = variants.get(lang) or variants["en"]
    return raw.format(**kwargs) if kwargs else raw


def buttons(ids: List[str], lang: str = "he") -> List[Button]:
    return [Button(id=i, label=BUTTON_LABELS[i].get(lang) or BUTTON_LABELS[i]["en"]) for i in ids]


# -------------------------------
# Reply builders
# -------------------------------
def ask_party_count(lang: str) -> OutboundMessage:
    return OutboundMessage(
        text=text("ask_count", lang),
        buttons=buttons(["guest_1", "guest_2", "guest_more"], lang),
        footer=text("ask_count_footer", lang),
    )


def confirmation(count: int, lang: str) -> OutboundMessage:
    if count == 1:
        return OutboundMessage(text=text("confirmed_one", lang))
    return OutboundMessage(text=text("confirmed_many", lang, count=count))


def rsvp_buttons(lang: str) -> List[Button]:
    return buttons(["yes", "no", "maybe"], lang)


def followup_prompt(name: str, event: str, lang: str) -> OutboundMessage:
    return OutboundMessage(
        text=text("followup", lang, name=name or "", event=event or ""),
        buttons=rsvp_buttons(lang),
        footer=text("invite_footer", lang),
    )


# -------------------------------
# Invitations by event proximity
# -------------------------------
_HEADERS = {
    "en": "*{event} - RSVP Invitation*\n\nDear {name},\n\n",
    "he": "*{event} - הזמנה לאירוע*\n\nשלום {name},\n\n",
}
_INFO = {
    "en": "📅 Date: {date}\n⏰ Time: {time}\n📍 Location: {location}\n\n{description}",
    "he": "📅 תאריך: {date}\n⏰ שעה: {time}\n📍 מיקום: {location}\n\n{description}",
}
_BODIES = {
    "initial": {
        "en": "You're cordially invited to {event}!\n\n{info}\n\nWill you be able to attend?",
        "he": "אתם מוזמנים ל{event}!\n\n{info}\n\nהאם תוכלו להגיע?",
    },
    "two_weeks": {
        "en": "A reminder about your invitation to {event}.\n\n{info}\n\nWe'd love to know if you can attend.",
        "he": "אנו מזכירים לכם את ההזמנה ל{event}.\n\n{info}\n\nנשמח לדעת האם תוכלו להגיע?",
    },
    "one_week": {
        "en": "{event} is one week away.\n\n{info}\n\nPlease let us know as soon as possible.",
        "he": "בעוד שבוע יתקיים {event}.\n\n{info}\n\nנשמח לקבל את תשובתכם בהקדם.",
    },
    "final": {
        "en": "{event} is in {days} days.\n\n{info}\n\nThis is a final reminder. We look forward to seeing you!",
        "he": "בעוד {days} ימים יתקיים {event}.\n\n{info}\n\nזוהי תזכורת אחרונה. נשמח לראותכם!",
    },
}


def _stage_for(days_remaining: int) -> str:
    if days_remaining >= 28:
        return "initial"
    if days_remaining == 14:
        return "two_weeks"
    if days_remaining == 7:
        return "one_week"
    if 0 <= days_remaining <= 3:
        return "final"
    return "initial"


def invitation_message(days_remaining: int, details: Any, guest_name: str, lang: str = "he") -> OutboundMessage:
    """Invitation/reminder wording picked by how close the event is."""
    lang = lang if lang in _HEADERS else "en"
    event = getattr(details, "name", "") or ""
    info = _INFO[lang].format(
        date=getattr(details, "date", "") or "",
        time=getattr(details, "time", "") or "",
        location=getattr(details, "location", "") or "",
        description=getattr(details, "description", "") or "",
    ).rstrip()
    body = _BODIES[_stage_for(days_remaining)][lang].format(event=event, info=info, days=days_remaining)
    return OutboundMessage(
        text=_HEADERS[lang].format(event=event, name=guest_name or "") + body,
        buttons=rsvp_buttons(lang),
        footer=text("invite_footer", lang),
    )


def _fixed_fragment(template: str) -> str:
    # first literal run between two placeholders
    return template.split("}", 1)[1].split("{", 1)[0].split("\n", 1)[0].strip(" ,").lower()


# Fixed fragments of our templated outbound texts (invitations and
# follow-ups open with a name or event, so a prefix match cannot see them).
AUTO_REPLY_MARKERS = tuple(
    sorted(
        {_fixed_fragment(TEXTS["followup"][lang]) for lang in ("en", "he")}
        | {_fixed_fragment(_HEADERS[lang]) for lang in ("en", "he")}
    )
)


def is_auto_reply_echo(body: str) -> bool:
    """True when ``body`` reads like one of the bot's own messages."""
    s = (body or "").strip().lower()
    if not s:
        return False
    return s.startswith(AUTO_REPLY_PREFIXES) or any(m in s for m in AUTO_REPLY_MARKERS)
