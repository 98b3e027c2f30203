"""Route an inbound phone to the tenant (event) it belongs to."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from rsvp import phone as phones
from rsvp.config import local_today
from rsvp.guest_directory import GuestDirectory
from rsvp.runtime import get_logger
from rsvp.tenants import TenantRegistry, parse_event_date

log = get_logger("tenant_resolver")


class TenantResolver:
    """
    Resolution order:
      1. GuestDirectory (guests we invited)
      2. exact match on an active tenant's contact phone
      3. suffix overlap against tenant contact phones (missing/extra country code)

    A miss returns None; unknown senders are expected, not errors.
    """

    def __init__(self, directory: GuestDirectory, registry: TenantRegistry):
        self.directory = directory
        self.registry = registry

    def resolve_tenant(self, normalized_phone: str, today: Optional[date] = None) -> Optional[str]:
        if not normalized_phone:
            return None

        candidates = self.directory.candidates(normalized_phone)
        if len(candidates) == 1:
            return candidates[0]
        if candidates:
            return self._pick_among(candidates, today or local_today())

        active = self.registry.active()
        for tenant in active:
            if tenant.contact_phone and (
                tenant.contact_phone == normalized_phone
                or phones.normalize(tenant.contact_phone) == normalized_phone
            ):
                return tenant.id

        for tenant in active:
            if phones.suffix_overlap(tenant.contact_phone, normalized_phone):
                return tenant.id

        log.info(f"No tenant found for {normalized_phone}")
        return None

    def _pick_among(self, candidates: List[str], today: date) -> str:
        """Prefer the active tenant with the nearest event not yet past."""
        best_id, best_date = None, None
        for tenant_id in candidates:
            tenant = self.registry.get(tenant_id)
            if not tenant or not tenant.active:
                continue
            event_day = parse_event_date(tenant.event_date)
            if event_day is None or event_day < today:
                continue
            if best_date is None or event_day < best_date:
                best_id, best_date = tenant.id, event_day
        chosen = best_id or candidates[-1]
        log.info(f"Phone mapped to {len(candidates)} tenants {candidates}; routed to {chosen}")
        return chosen
