# rsvp/tenants.py
"""
Tenant Registry
---------------
One tenant per customer event. Tenants are created by an admin action and
are read-only to the RSVP core except for ``active``. Stored as a JSON list
(``customers.json``); per-tenant sheet credentials live in a separate
JSON object keyed by tenant id (``credentials.json``).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from rsvp.config import local_today
from rsvp.runtime import get_logger, iso_now
from rsvp.storage import load_json, save_json

log = get_logger("tenants")

REQUIRED_FIELDS = ("name", "contactPhone", "eventName", "eventDate")
EVENT_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y")


def parse_event_date(value: Any) -> Optional[date]:
    """Parse ``YYYY-MM-DD`` or ``DD.MM.YYYY`` (also an ISO datetime prefix)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()
    if not s:
        return None
    for fmt in EVENT_DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        return None


@dataclass
class Tenant:
    id: str
    name: str
    contact_phone: str
    event_name: str
    event_date: str
    active: bool = True
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Tenant":
        return cls(
            id=str(rec.get("id") or ""),
            name=str(rec.get("name") or ""),
            contact_phone=str(rec.get("contactPhone") or rec.get("phone") or ""),
            event_name=str(rec.get("eventName") or ""),
            event_date=str(rec.get("eventDate") or ""),
            active=bool(rec.get("active", True)),
            created_at=str(rec.get("createdAt") or ""),
            updated_at=str(rec.get("updatedAt") or ""),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "contactPhone": self.contact_phone,
            "eventName": self.event_name,
            "eventDate": self.event_date,
            "active": self.active,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class TenantCredentials:
    endpoint: str
    secret: str

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> Optional["TenantCredentials"]:
        endpoint = rec.get("endpoint") or rec.get("appScriptUrl")
        secret = rec.get("secret") or rec.get("secretKey")
        if not (endpoint and secret):
            return None
        return cls(endpoint=str(endpoint), secret=str(secret))


class TenantRegistry:
    def __init__(self, tenants_path: str, credentials_path: Optional[str] = None):
        self.tenants_path = tenants_path
        self.credentials_path = credentials_path
        self._tenants: List[Tenant] = [
            Tenant.from_record(rec) for rec in load_json(tenants_path, []) if isinstance(rec, dict)
        ]
        self._credentials: Dict[str, Dict[str, Any]] = (
            load_json(credentials_path, {}) if credentials_path else {}
        )
        log.info(f"Loaded {len(self._tenants)} tenants, {len(self._credentials)} credential records")

    # -----------------------------
    # Reads
    # -----------------------------
    def all(self) -> List[Tenant]:
        return list(self._tenants)

    def active(self) -> List[Tenant]:
        return [t for t in self._tenants if t.active]

    def get(self, tenant_id: Optional[str]) -> Optional[Tenant]:
        if not tenant_id:
            return None
        return next((t for t in self._tenants if t.id == tenant_id), None)

    def upcoming(self, days: int = 30, today: Optional[date] = None) -> List[Tenant]:
        """Active tenants whose event falls within ``days`` from today."""
        today = today or local_today()
        horizon = today + timedelta(days=days)
        out = []
        for t in self.active():
            d = parse_event_date(t.event_date)
            if d and today <= d <= horizon:
                out.append(t)
        return out

    def credentials_for(self, tenant_id: str) -> Optional[TenantCredentials]:
        rec = self._credentials.get(tenant_id)
        return TenantCredentials.from_record(rec) if isinstance(rec, dict) else None

    # -----------------------------
    # Admin writes
    # -----------------------------
    def add(self, data: Dict[str, Any], credentials: Optional[Dict[str, Any]] = None) -> Tenant:
        missing = [k for k in REQUIRED_FIELDS if not (data or {}).get(k)]
        if missing:
            raise ValueError(f"Missing required tenant fields: {', '.join(missing)}")

        now = iso_now()
        stamp = int(time.time() * 1000)
        while self.get(f"cust_{stamp}"):
            stamp += 1
        tenant = Tenant.from_record({
            **data,
            "id": f"cust_{stamp}",
            "active": True,
            "createdAt": now,
            "updatedAt": now,
        })
        self._tenants.append(tenant)
        if credentials:
            self._credentials[tenant.id] = dict(credentials)
            if self.credentials_path:
                save_json(self.credentials_path, self._credentials)
        self._save()
        log.info(f"Added tenant {tenant.id}: {tenant.name} / {tenant.event_name}")
        return tenant

    def deactivate(self, tenant_id: str) -> bool:
        tenant = self.get(tenant_id)
        if not tenant:
            return False
        tenant.active = False
        tenant.updated_at = iso_now()
        self._save()
        log.info(f"Deactivated tenant {tenant_id}")
        return True

    def _save(self) -> bool:
        ok = save_json(self.tenants_path, [t.to_record() for t in self._tenants])
        if not ok:
            log.error("❌ Failed to save tenants file; keeping in-memory copy")
        return ok


__all__ = ["Tenant", "TenantCredentials", "TenantRegistry", "parse_event_date"]
