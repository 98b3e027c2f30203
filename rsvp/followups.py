# rsvp/followups.py
"""
Follow-Up Queue
---------------
Guests who answered "maybe" get one re-prompt the next day at FOLLOWUP_HOUR
(tenant-local). The hourly flush sends every due entry and removes it.

  • at most one pending entry per phone (a newer "maybe" replaces the older)
  • the tenant is the one stored at enqueue time, never re-resolved
  • a failed send keeps the entry for the next flush
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from rsvp import phone as phones
from rsvp.config import event_tz, local_now, settings
from rsvp.runtime import get_logger
from rsvp.storage import load_json, save_json
from rsvp.templates import followup_prompt
from rsvp.tenants import TenantRegistry
from rsvp.transport import Transport, TransportError

log = get_logger("followups")


@dataclass
class ScheduledFollowUp:
    phone: str
    name: str
    tenant_id: str
    due_at: str
    lang: str = "he"

    @property
    def due(self) -> datetime:
        return datetime.fromisoformat(self.due_at)

    def to_record(self) -> Dict[str, Any]:
        rec = asdict(self)
        return {
            "phone": rec["phone"],
            "name": rec["name"],
            "tenantId": rec["tenant_id"],
            "dueAt": rec["due_at"],
            "lang": rec["lang"],
        }

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> Optional["ScheduledFollowUp"]:
        phone = str(rec.get("phone") or "")
        tenant_id = str(rec.get("tenantId") or rec.get("tenant_id") or "")
        due_at = str(rec.get("dueAt") or rec.get("due_at") or "")
        if not (phone and tenant_id and due_at):
            return None
        try:
            parsed = datetime.fromisoformat(due_at)
        except ValueError:
            log.warning(f"⚠️ Dropping follow-up for {phone}: bad dueAt {due_at!r}")
            return None
        if parsed.tzinfo is None:
            # naive times are event-local
            due_at = parsed.replace(tzinfo=event_tz()).isoformat()
        return cls(
            phone=phone,
            name=str(rec.get("name") or ""),
            tenant_id=tenant_id,
            due_at=due_at,
            lang=str(rec.get("lang") or settings().DEFAULT_LANGUAGE),
        )


def next_followup_time(now: Optional[datetime] = None, hour: Optional[int] = None) -> datetime:
    """Tomorrow at ``hour`` in the event timezone."""
    now = (now or local_now()).astimezone(event_tz())
    hour = settings().FOLLOWUP_HOUR if hour is None else hour
    tomorrow = (now + timedelta(days=1)).date()
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, hour, tzinfo=event_tz())


def _key(phone: str) -> str:
    return phones.without_plus(phones.normalize(phone) or phone)


class FollowUpQueue:
    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._entries: List[ScheduledFollowUp] = []
        for rec in (load_json(path, []) if path else []):
            entry = ScheduledFollowUp.from_record(rec) if isinstance(rec, dict) else None
            if entry:
                self._entries.append(entry)
        if self._entries:
            log.info(f"Loaded {len(self._entries)} pending follow-ups")

    def __len__(self) -> int:
        return len(self._entries)

    # -----------------------------
    # Writes
    # -----------------------------
    def enqueue(
        self,
        phone: str,
        name: str,
        tenant_id: str,
        *,
        lang: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ScheduledFollowUp:
        key = _key(phone)
        replaced = [e for e in self._entries if _key(e.phone) == key]
        if replaced:
            log.info(f"Replacing {len(replaced)} pending follow-up(s) for {key}")
        entry = ScheduledFollowUp(
            phone=phones.normalize(phone) or phone,
            name=name or "",
            tenant_id=tenant_id,
            due_at=next_followup_time(now).isoformat(),
            lang=lang or settings().DEFAULT_LANGUAGE,
        )
        self._entries = [e for e in self._entries if _key(e.phone) != key] + [entry]
        self._save()
        log.info(f"⏳ Follow-up for {entry.phone} ({tenant_id}) due {entry.due_at}")
        return entry

    def cancel(self, phone: str) -> bool:
        key = _key(phone)
        before = len(self._entries)
        self._entries = [e for e in self._entries if _key(e.phone) != key]
        if len(self._entries) == before:
            return False
        self._save()
        log.info(f"Cancelled pending follow-up for {key}")
        return True

    def _save(self) -> bool:
        if not self.path:
            return True
        ok = save_json(self.path, [e.to_record() for e in self._entries])
        if not ok:
            log.error("❌ Follow-up queue not persisted; pending entries survive only until restart")
        return ok

    # -----------------------------
    # Reads
    # -----------------------------
    def pending(self) -> List[ScheduledFollowUp]:
        return list(self._entries)

    def due(self, now: Optional[datetime] = None) -> List[ScheduledFollowUp]:
        now = now or local_now()
        return [e for e in self._entries if e.due <= now]

    # -----------------------------
    # Flush
    # -----------------------------
    async def flush(
        self,
        transport: Transport,
        registry: Optional[TenantRegistry] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Send every due follow-up. Never raises."""
        summary: Dict[str, Any] = {"ok": True, "sent": 0, "failed": 0, "remaining": 0}
        try:
            for entry in self.due(now):
                tenant = registry.get(entry.tenant_id) if registry else None
                event_name = tenant.event_name if tenant else ""
                try:
                    await transport.send(entry.phone, followup_prompt(entry.name, event_name, entry.lang))
                except TransportError as e:
                    summary["failed"] += 1
                    log.error(f"❌ Follow-up to {entry.phone} failed: {e}", exc_info=True)
                    continue
                # an enqueue during the send may have replaced this entry
                if entry in self._entries:
                    self._entries.remove(entry)
                    self._save()
                summary["sent"] += 1
                log.info(f"✅ Follow-up sent to {entry.phone} ({entry.tenant_id})")
        except Exception as e:
            log.error(f"❌ Follow-up flush aborted: {e}", exc_info=True)
            summary.update(ok=False, error=str(e))
        summary["remaining"] = len(self._entries)
        return summary


__all__ = ["ScheduledFollowUp", "FollowUpQueue", "next_followup_time"]
