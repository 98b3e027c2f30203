# rsvp/guest_directory.py
"""
Guest Directory
---------------
Persistent phone → tenant routing table. Populated when an invite goes out,
consulted when a reply arrives.

  • Every mapping is stored under both the "+"-prefixed and bare-digit keys,
    since the transport may deliver either form on inbound.
  • A phone may belong to several tenants (same guest, different events);
    each key keeps an ordered list of tenant ids, most recent last.
  • Writes persist synchronously. A failed write is logged and the in-memory
    map is kept (best-effort durability).
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from rsvp import phone as phones
from rsvp.runtime import get_logger, iso_now
from rsvp.storage import load_json, save_json

log = get_logger("guest_directory")


def _clean(phone: str) -> str:
    return re.sub(r"[^\d+]", "", phones.strip_chat_suffix(phone))


def _coerce_entry(value: Any) -> Optional[Dict[str, Any]]:
    # legacy files map phone -> tenant id directly
    if isinstance(value, str) and value:
        return {"tenants": [value], "name": "", "mappedAt": ""}
    if isinstance(value, dict):
        tenants = value.get("tenants") or ([value["tenantId"]] if value.get("tenantId") else [])
        tenants = [str(t) for t in tenants if t]
        if tenants:
            return {"tenants": tenants, "name": value.get("name") or "", "mappedAt": value.get("mappedAt") or ""}
    return None


class GuestDirectory:
    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._map: Dict[str, Dict[str, Any]] = {}
        for key, value in (load_json(path, {}) if path else {}).items():
            entry = _coerce_entry(value)
            if entry:
                self._map[str(key)] = entry
        log.info(f"Loaded {len(self._map)} guest mappings")

    def __len__(self) -> int:
        return len(self._map)

    # -----------------------------
    # Writes
    # -----------------------------
    def map(self, phone: str, tenant_id: str, display_name: str = "") -> bool:
        """Associate ``phone`` with ``tenant_id``. Returns True if anything changed."""
        if not phone or not tenant_id:
            return False

        canonical = phones.normalize(phone) or _clean(phone)
        changed = False
        for key in phones.phone_variants(canonical):
            entry = self._map.get(key)
            if entry and entry["tenants"][-1] == tenant_id:
                continue
            if entry is None:
                entry = self._map[key] = {"tenants": [], "name": "", "mappedAt": ""}
            elif tenant_id not in entry["tenants"]:
                log.warning(
                    f"⚠️ Phone {key} already mapped to {entry['tenants']}; adding {tenant_id} as most recent"
                )
            entry["tenants"] = [t for t in entry["tenants"] if t != tenant_id] + [tenant_id]
            entry["name"] = display_name or entry.get("name") or ""
            entry["mappedAt"] = iso_now()
            changed = True

        if changed:
            log.info(f"Mapped guest {display_name} ({canonical}) to tenant {tenant_id}")
            self._save()
        return changed

    def clear(self) -> None:
        self._map = {}
        self._save()
        log.info("Cleared all guest-to-tenant mappings")

    def _save(self) -> bool:
        if not self.path:
            return True
        ok = save_json(self.path, self._map)
        if not ok:
            log.error("❌ Guest map not persisted; routing survives only until restart")
        return ok

    # -----------------------------
    # Reads
    # -----------------------------
    def _lookup(self, phone: str) -> Optional[Dict[str, Any]]:
        if not phone:
            return None
        cleaned = _clean(phone)
        if cleaned in self._map:
            return self._map[cleaned]

        canonical = phones.normalize(cleaned)
        if canonical != phones.INVALID:
            for key in phones.phone_variants(canonical):
                if key in self._map:
                    return self._map[key]

        digits = phones.digits_only(cleaned)
        if not digits:
            return None
        for key, entry in self._map.items():
            if phones.digits_only(key) == digits:
                return entry
        return None

    def resolve(self, phone: str) -> Optional[str]:
        """Most recently mapped tenant for ``phone`` or None."""
        entry = self._lookup(phone)
        return entry["tenants"][-1] if entry else None

    def candidates(self, phone: str) -> List[str]:
        """Every tenant ``phone`` was ever mapped to, most recent last."""
        entry = self._lookup(phone)
        return list(entry["tenants"]) if entry else []

    def display_name(self, phone: str) -> str:
        entry = self._lookup(phone)
        return (entry or {}).get("name") or ""

    def guests_for_tenant(self, tenant_id: str) -> Dict[str, str]:
        return {
            key: entry.get("name") or ""
            for key, entry in self._map.items()
            if tenant_id in entry["tenants"]
        }
