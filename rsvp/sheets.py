# rsvp/sheets.py
"""
📄 Sheet Gateway — per-tenant client for the remote guest spreadsheet
---------------------------------------------------------------------
Each tenant's guest list lives behind its own web-app endpoint (POST + JSON).
The endpoint has gone through several incompatible request shapes, so every
call walks ``REQUEST_FORMATS`` in a fixed order:

  1. {action, secretKey, ...}                      (current)
  2. {operation, secretKey, ...}                   (transitional)
  3. {operation: snake_case, key, count, ...}      (legacy)

A response without ``success: true`` counts as a failure of that format and
the next one is tried. Only when all formats fail does ``SheetRequestError``
reach the caller; reads swallow it and return empty defaults, writes retry
and finally report ``False``.

Field names coming back from the sheet are inconsistent (Name/name,
GuestCount/count, ...). ``to_canonical_guest`` is the single place that
deals with that; nothing past this module sees raw rows.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx

from rsvp import phone as phones
from rsvp.cache import TTLCache
from rsvp.config import local_now, settings
from rsvp.runtime import get_logger, mask_secret, retry_async
from rsvp.tenants import TenantRegistry

log = get_logger("sheets")


# =========================
# Errors
# =========================
class SheetRequestError(RuntimeError):
    """Every request format failed for one action."""

    def __init__(
        self,
        action: str,
        failures: List[Tuple[str, str]],
        *,
        status_code: Optional[int] = None,
    ) -> None:
        detail = "; ".join(f"{name}: {reason}" for name, reason in failures) or "no formats tried"
        super().__init__(f"{action} failed in all formats ({detail})")
        self.action = action
        self.failures = failures
        self.status_code = status_code


# =========================
# Canonical records
# =========================
# Localized status labels seen in tenant sheets, keyed by their folded form.
_STATUS_LABELS: Dict[str, str] = {
    "pending": "Pending",
    "confirmed": "Confirmed",
    "declined": "Declined",
    "maybe": "Maybe",
    "ממתין": "Pending",
    "ממתין לתשובה": "Pending",
    "מאשר": "Confirmed",
    "אישר": "Confirmed",
    "מגיע": "Confirmed",
    "לא מגיע": "Declined",
    "סירב": "Declined",
    "אולי": "Maybe",
}


class GuestStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    DECLINED = "Declined"
    MAYBE = "Maybe"

    @classmethod
    def parse(cls, value: Any) -> "GuestStatus":
        s = " ".join(str(value or "").split()).lower()
        if not s:
            return cls.PENDING
        label = _STATUS_LABELS.get(s)
        if label is None:
            log.warning(f"⚠️ Unknown guest status {value!r}; treating as Pending")
            return cls.PENDING
        return cls(label)


def _norm_key(s: Any) -> str:
    return re.sub(r"[^a-z0-9\u0590-\u05FF]+", "", str(s).strip().lower()) if s is not None else ""


_GUEST_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("name", "guestname", "fullname", "שם", "שםמלא", "שםהאורח"),
    "phone": ("phone", "phonenumber", "mobile", "tel", "טלפון", "נייד", "מספרטלפון"),
    "email": ("email", "mail", "אימייל", "מייל"),
    "status": ("status", "rsvpstatus", "rsvp", "סטטוס", "אישורהגעה"),
    "count": ("count", "guestcount", "partycount", "guests", "numberofguests", "כמות", "מספרמוזמנים", "מספראורחים"),
    "notes": ("notes", "note", "comments", "הערות"),
    "lastContacted": ("lastcontacted", "lastcontactedat", "contactedat", "פנייהאחרונה"),
}

_DETAIL_ALIASES: Dict[str, Tuple[str, ...]] = {
    "name": ("name", "eventname", "title", "שםהאירוע", "אירוע"),
    "date": ("date", "eventdate", "תאריך"),
    "time": ("time", "eventtime", "שעה"),
    "location": ("location", "venue", "address", "מיקום", "מקום"),
    "description": ("description", "details", "תיאור", "פרטים"),
}


def _pick(raw: Dict[str, Any], aliases: Tuple[str, ...]) -> Any:
    lut = {_norm_key(k): v for k, v in raw.items()}
    for alias in aliases:
        v = lut.get(alias)
        if v not in (None, ""):
            return v
    return None


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


@dataclass
class Guest:
    name: str = ""
    phone: str = ""
    email: str = ""
    status: GuestStatus = GuestStatus.PENDING
    party_count: int = 0
    notes: str = ""
    last_contacted_at: str = ""

    @property
    def canonical_phone(self) -> str:
        return phones.normalize(self.phone)

    def to_dict(self) -> Dict[str, Any]:
        """Both casings, for consumers written against either sheet layout."""
        return {
            "name": self.name, "Name": self.name,
            "phone": self.phone, "Phone": self.phone,
            "email": self.email, "Email": self.email,
            "status": self.status.value, "Status": self.status.value,
            "count": self.party_count, "guestCount": self.party_count, "GuestCount": self.party_count,
            "notes": self.notes, "Notes": self.notes,
            "lastContacted": self.last_contacted_at, "LastContacted": self.last_contacted_at,
        }


@dataclass
class EventDetails:
    name: str = ""
    date: str = ""
    time: str = ""
    location: str = ""
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name, "Name": self.name,
            "date": self.date, "Date": self.date,
            "time": self.time, "Time": self.time,
            "location": self.location, "Location": self.location,
            "description": self.description, "Description": self.description,
        }


def to_canonical_guest(raw: Dict[str, Any]) -> Guest:
    raw = raw or {}
    return Guest(
        name=str(_pick(raw, _GUEST_ALIASES["name"]) or ""),
        phone=str(_pick(raw, _GUEST_ALIASES["phone"]) or ""),
        email=str(_pick(raw, _GUEST_ALIASES["email"]) or ""),
        status=GuestStatus.parse(_pick(raw, _GUEST_ALIASES["status"])),
        party_count=_to_int(_pick(raw, _GUEST_ALIASES["count"])),
        notes=str(_pick(raw, _GUEST_ALIASES["notes"]) or ""),
        last_contacted_at=str(_pick(raw, _GUEST_ALIASES["lastContacted"]) or ""),
    )


def to_event_details(raw: Dict[str, Any]) -> EventDetails:
    raw = raw or {}
    return EventDetails(**{k: str(_pick(raw, aliases) or "") for k, aliases in _DETAIL_ALIASES.items()})


# =========================
# Request formats
# =========================
@dataclass(frozen=True)
class RequestFormat:
    name: str
    action_key: str
    secret_key: str
    action_names: Dict[str, str] = field(default_factory=dict)
    field_names: Dict[str, str] = field(default_factory=dict)

    def build(self, action: str, secret: str, fields: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            self.action_key: self.action_names.get(action, action),
            self.secret_key: secret,
        }
        for k, v in (fields or {}).items():
            body[self.field_names.get(k, k)] = v
        return body


REQUEST_FORMATS: Tuple[RequestFormat, ...] = (
    RequestFormat(name="action", action_key="action", secret_key="secretKey"),
    RequestFormat(name="operation", action_key="operation", secret_key="secretKey"),
    RequestFormat(
        name="legacy",
        action_key="operation",
        secret_key="key",
        action_names={
            "getGuests": "get_guests",
            "getEventDetails": "get_event_details",
            "updateGuestStatus": "update_status",
            "markGuestContacted": "mark_contacted",
            "getRsvpStats": "get_rsvp_stats",
        },
        field_names={"guestCount": "count", "lastContacted": "last_contacted"},
    ),
)


def _store_timestamp() -> str:
    return local_now().isoformat(timespec="seconds")


# =========================
# Gateway
# =========================
class SheetGateway:
    def __init__(
        self,
        tenant_id: str,
        endpoint: str,
        secret: str,
        *,
        guest_cache: Optional[TTLCache] = None,
        details_cache: Optional[TTLCache] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        formats: Tuple[RequestFormat, ...] = REQUEST_FORMATS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        s = settings()
        self.tenant_id = tenant_id
        self.endpoint = endpoint
        self.secret = secret
        self.guest_cache = guest_cache if guest_cache is not None else TTLCache(s.SHEETS_CACHE_TTL_SEC)
        self.details_cache = details_cache if details_cache is not None else TTLCache(s.SHEETS_CACHE_TTL_SEC)
        self.timeout = s.SHEETS_TIMEOUT_SEC if timeout is None else timeout
        self.retry_attempts = s.SHEETS_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        self.retry_delay = s.SHEETS_RETRY_DELAY_SEC if retry_delay is None else retry_delay
        self.formats = formats
        self._transport = transport

    # ---- dispatch ----
    async def _post(self, client: httpx.AsyncClient, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = await client.post(self.endpoint, json=body)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected response type {type(data).__name__}")
        return data

    async def request(self, action: str, fields: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Try each request format in order; first response with ``success`` wins."""
        failures: List[Tuple[str, str]] = []
        status_code: Optional[int] = None
        log.debug(f"[{self.tenant_id}] {action} → {self.endpoint} (secret {mask_secret(self.secret)})")

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self._transport
        ) as client:
            for fmt in self.formats:
                body = fmt.build(action, self.secret, fields)
                try:
                    data = await self._post(client, body)
                except httpx.HTTPStatusError as e:
                    status_code = e.response.status_code
                    failures.append((fmt.name, f"HTTP {status_code}"))
                    log.info(f"[{self.tenant_id}] {action} via {fmt.name} format: HTTP {status_code}")
                    continue
                except (httpx.HTTPError, ValueError) as e:
                    failures.append((fmt.name, f"{e.__class__.__name__}: {e}"))
                    log.info(f"[{self.tenant_id}] {action} via {fmt.name} format failed: {e}")
                    continue

                if data.get("success") is True:
                    return data
                reason = str(data.get("error") or "response without success flag")
                failures.append((fmt.name, reason))
                log.info(f"[{self.tenant_id}] {action} via {fmt.name} format rejected: {reason}")

        raise SheetRequestError(action, failures, status_code=status_code)

    # ---- reads ----
    async def get_event_details(self) -> EventDetails:
        cached = self.details_cache.get(self.tenant_id)
        if cached is not None:
            return cached
        try:
            data = await self.request("getEventDetails")
        except SheetRequestError as e:
            log.warning(f"⚠️ [{self.tenant_id}] event details unavailable: {e}")
            return EventDetails()
        raw = data.get("details")
        details = to_event_details(raw if isinstance(raw, dict) else {})
        return self.details_cache.set(self.tenant_id, details)

    async def get_guests(self) -> List[Guest]:
        cached = self.guest_cache.get(self.tenant_id)
        if cached is not None:
            return list(cached)
        try:
            data = await self.request("getGuests")
        except SheetRequestError as e:
            log.warning(f"⚠️ [{self.tenant_id}] guest list unavailable: {e}")
            return []
        rows = data.get("guests") or []
        guests = [to_canonical_guest(r) for r in rows if isinstance(r, dict)]
        if not guests:
            log.warning(f"⚠️ [{self.tenant_id}] guest list is empty")
        else:
            log.info(f"[{self.tenant_id}] fetched {len(guests)} guests")
        self.guest_cache.set(self.tenant_id, guests)
        return list(guests)

    async def get_rsvp_stats(self) -> Dict[str, int]:
        """Remote stats when the sheet supports them, otherwise computed from the guest list."""
        try:
            data = await self.request("getRsvpStats")
            stats = data.get("stats")
            if isinstance(stats, dict) and stats:
                return {str(k): _to_int(v) for k, v in stats.items()}
        except SheetRequestError as e:
            log.info(f"[{self.tenant_id}] remote stats unavailable ({e}); computing locally")

        guests = await self.get_guests()
        stats = {status.value.lower(): 0 for status in GuestStatus}
        for g in guests:
            stats[g.status.value.lower()] += 1
        stats["total"] = len(guests)
        stats["attending"] = sum(g.party_count for g in guests if g.status is GuestStatus.CONFIRMED)
        return stats

    # ---- writes ----
    async def update_guest_status(
        self,
        phone: str,
        status: GuestStatus,
        party_count: int = 0,
        notes: str = "",
    ) -> bool:
        """
        Set (never increment) a guest's RSVP. Retried on failure; returns
        False once the retry budget is spent instead of raising.
        """
        store_phone = phones.without_plus(phones.normalize(phone) or phone)
        status = GuestStatus.parse(status.value if isinstance(status, GuestStatus) else status)
        fields = {
            "phone": store_phone,
            "status": status.value,
            "guestCount": int(party_count),
            "notes": notes or "",
            "lastContacted": _store_timestamp(),
        }
        log.info(f"[{self.tenant_id}] updating {store_phone} → {status.value} ({party_count})")

        async def _attempt() -> Dict[str, Any]:
            return await self.request("updateGuestStatus", fields)

        try:
            await retry_async(
                _attempt,
                attempts=self.retry_attempts,
                delay=self.retry_delay,
                exceptions=(SheetRequestError,),
                logger=log,
            )
        except SheetRequestError as e:
            log.error(f"❌ [{self.tenant_id}] status update for {store_phone} failed after retries: {e}")
            return False

        self.guest_cache.invalidate(self.tenant_id)
        return True

    async def mark_guest_contacted(self, phone: str) -> bool:
        store_phone = phones.without_plus(phones.normalize(phone) or phone)
        try:
            await self.request("markGuestContacted", {"phone": store_phone, "lastContacted": _store_timestamp()})
            return True
        except SheetRequestError as e:
            log.warning(f"⚠️ [{self.tenant_id}] could not mark {store_phone} contacted: {e}")
            return False

    def invalidate(self) -> None:
        self.guest_cache.invalidate(self.tenant_id)
        self.details_cache.invalidate(self.tenant_id)


class SheetGatewayPool:
    """One gateway per tenant id, sharing the per-tenant caches."""

    def __init__(
        self,
        registry: TenantRegistry,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: Optional[float] = None,
    ):
        ttl = settings().SHEETS_CACHE_TTL_SEC
        self.registry = registry
        self.guest_cache: TTLCache = TTLCache(ttl)
        self.details_cache: TTLCache = TTLCache(ttl)
        self._transport = transport
        self._retry_delay = retry_delay
        self._gateways: Dict[str, SheetGateway] = {}

    def for_tenant(self, tenant_id: str) -> Optional[SheetGateway]:
        if tenant_id in self._gateways:
            return self._gateways[tenant_id]
        creds = self.registry.credentials_for(tenant_id)
        if not creds:
            log.error(f"❌ No sheet credentials for tenant {tenant_id}")
            return None
        gateway = SheetGateway(
            tenant_id,
            creds.endpoint,
            creds.secret,
            guest_cache=self.guest_cache,
            details_cache=self.details_cache,
            retry_delay=self._retry_delay,
            transport=self._transport,
        )
        self._gateways[tenant_id] = gateway
        return gateway
