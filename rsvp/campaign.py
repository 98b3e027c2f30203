# rsvp/campaign.py
"""
Campaign Scheduler

✓ Windows by days remaining (tenant-local calendar):
    28–30 → Pending, not yet contacted      (initial invitation)
    14    → Pending, not yet contacted      (reminder)
    7     → every Pending guest             (one week out)
    2–3   → Pending + Confirmed             (final courtesy reminder)
✓ Past events / other days → nothing, unless forced
✓ Forced → every uncontacted Pending guest, any date
✓ Batch cap + fixed pacing delay between sends
✓ Guest → tenant mapping written before the invite goes out
✓ Same-day guard: a guest messaged earlier today is skipped unless forced
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from rsvp import phone as phones
from rsvp.config import local_today, settings
from rsvp.guest_directory import GuestDirectory
from rsvp.runtime import get_logger
from rsvp.sheets import Guest, GuestStatus, SheetGatewayPool
from rsvp.templates import invitation_message
from rsvp.tenants import Tenant, TenantRegistry, parse_event_date
from rsvp.transport import Transport, TransportError

log = get_logger("campaign")

INITIAL_WINDOW = (28, 30)
REMINDER_DAY = 14
WEEK_DAY = 7
FINAL_WINDOW = (2, 3)


# ---------- Date math ----------
def days_remaining(event_date: Any, today: Optional[date] = None) -> Optional[int]:
    """Whole days between today and the event, both taken as local midnight."""
    event_day = parse_event_date(event_date)
    if event_day is None:
        return None
    return (event_day - (today or local_today())).days


def _guest_key(guest: Guest) -> str:
    return phones.without_plus(guest.canonical_phone or guest.phone)


# ---------- Selection ----------
def select_recipients(
    tenant: Tenant,
    guests: Iterable[Guest],
    contacted: Optional[Set[str]] = None,
    forced: bool = False,
    *,
    batch_size: Optional[int] = None,
    today: Optional[date] = None,
    exclude: Optional[Set[str]] = None,
) -> List[Guest]:
    """
    Guests to message for ``tenant`` right now. ``contacted`` holds bare-digit
    canonical phones. ``exclude`` (same key form) is dropped in every window
    before the batch cap applies. Pure: nothing is marked here.
    """
    contacted = contacted or set()
    exclude = exclude or set()
    cap = settings().MESSAGE_BATCH_SIZE if batch_size is None else batch_size

    statuses = (GuestStatus.PENDING,)
    skip_contacted = True
    if not forced:
        days = days_remaining(tenant.event_date, today)
        if days is None or days < 0:
            return []
        if INITIAL_WINDOW[0] <= days <= INITIAL_WINDOW[1] or days == REMINDER_DAY:
            pass
        elif days == WEEK_DAY:
            skip_contacted = False
        elif FINAL_WINDOW[0] <= days <= FINAL_WINDOW[1]:
            statuses = (GuestStatus.PENDING, GuestStatus.CONFIRMED)
            skip_contacted = False
        else:
            return []

    out: List[Guest] = []
    seen: Set[str] = set()
    for g in guests:
        key = _guest_key(g)
        if not key or key in seen or key in exclude or g.status not in statuses:
            continue
        if skip_contacted and key in contacted:
            continue
        seen.add(key)
        out.append(g)
        if len(out) >= cap:
            break
    return out


# ---------- State ----------
@dataclass
class CampaignState:
    """Per-process campaign memory, owned by the runner."""

    contacted: Dict[str, Set[str]] = field(default_factory=dict)
    last_sent: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def contacted_for(self, tenant_id: str) -> Set[str]:
        return self.contacted.setdefault(tenant_id, set())

    def mark(self, tenant_id: str, phone: str, day: date) -> None:
        key = phones.without_plus(phone)
        self.contacted_for(tenant_id).add(key)
        self.last_sent.setdefault(tenant_id, {})[key] = day.isoformat()

    def sent_today(self, tenant_id: str, day: date) -> Set[str]:
        stamp = day.isoformat()
        return {k for k, v in self.last_sent.get(tenant_id, {}).items() if v == stamp}


# ---------- Runner ----------
class CampaignRunner:
    def __init__(
        self,
        registry: TenantRegistry,
        gateways: SheetGatewayPool,
        directory: GuestDirectory,
        transport: Transport,
        state: Optional[CampaignState] = None,
        *,
        delay: Optional[float] = None,
        batch_size: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        s = settings()
        self.registry = registry
        self.gateways = gateways
        self.directory = directory
        self.transport = transport
        self.state = state or CampaignState()
        self.delay = s.MESSAGE_DELAY_SEC if delay is None else delay
        self.batch_size = s.MESSAGE_BATCH_SIZE if batch_size is None else batch_size
        self._sleep = sleep

    async def run_for_tenant(self, tenant: Tenant, force: bool = False, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or local_today()
        summary: Dict[str, Any] = {"tenant": tenant.id, "selected": 0, "sent": 0, "failed": 0, "skipped": 0}

        gateway = self.gateways.for_tenant(tenant.id)
        if gateway is None:
            summary["error"] = "missing credentials"
            return summary

        guests = await gateway.get_guests()
        selected = select_recipients(
            tenant,
            guests,
            self.state.contacted_for(tenant.id),
            forced=force,
            batch_size=self.batch_size,
            today=today,
            exclude=None if force else self.state.sent_today(tenant.id, today),
        )
        summary["selected"] = len(selected)
        if not selected:
            log.info(f"[{tenant.id}] nothing to send today")
            return summary

        details = await gateway.get_event_details()
        if not details.name:
            details = replace(details, name=tenant.event_name, date=details.date or tenant.event_date)
        days = days_remaining(tenant.event_date, today)
        days = 0 if days is None else days
        lang = settings().DEFAULT_LANGUAGE
        log.info(f"🚀 [{tenant.id}] {len(selected)} recipients, {days} days to {details.name}")

        for i, guest in enumerate(selected):
            canonical = guest.canonical_phone
            if not canonical:
                log.warning(f"⚠️ [{tenant.id}] skipping {guest.name or '?'}: unusable phone {guest.phone!r}")
                summary["skipped"] += 1
                continue
            if i and self.delay:
                await self._sleep(self.delay)

            self.directory.map(canonical, tenant.id, guest.name)
            try:
                await self.transport.send(canonical, invitation_message(days, details, guest.name, lang))
            except TransportError as e:
                summary["failed"] += 1
                log.error(f"❌ [{tenant.id}] invite to {canonical} failed: {e}", exc_info=True)
                continue

            self.state.mark(tenant.id, canonical, today)
            await gateway.mark_guest_contacted(guest.phone or canonical)
            summary["sent"] += 1

        log.info(f"✅ [{tenant.id}] sent={summary['sent']} failed={summary['failed']} skipped={summary['skipped']}")
        return summary

    async def run_all(
        self,
        force: bool = False,
        tenant_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Run every active tenant (or just ``tenant_id``). Never raises."""
        results: List[Dict[str, Any]] = []
        try:
            tenants = self.registry.active()
            if tenant_id:
                tenants = [t for t in tenants if t.id == tenant_id]
                if not tenants:
                    return {"ok": False, "error": f"unknown or inactive tenant {tenant_id}", "tenants": []}
            for tenant in tenants:
                try:
                    results.append(await self.run_for_tenant(tenant, force=force, today=today))
                except Exception as e:
                    log.error(f"❌ Campaign for {tenant.id} crashed: {e}", exc_info=True)
                    results.append({"tenant": tenant.id, "error": str(e)})
        except Exception as e:
            log.error(f"❌ Campaign run aborted: {e}", exc_info=True)
            return {"ok": False, "error": str(e), "tenants": results}
        return {"ok": True, "tenants": results}


__all__ = [
    "days_remaining",
    "parse_event_date",
    "select_recipients",
    "CampaignState",
    "CampaignRunner",
]
