# rsvp/inbound.py
"""
Inbound Handler
---------------
One inbound chat message in, at most one reply out.

  guards → classify → resolve tenant → store write → reply

Guards drop group chats, our own messages, status broadcasts and echoes of
our own auto-replies before anything else runs (reply-loop protection).
Unrelated chatter is ignored before the tenant lookup, so only RSVP-looking
messages from unknown senders get the "couldn't find your event" answer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from rsvp import phone as phones
from rsvp import templates
from rsvp.config import settings
from rsvp.followups import FollowUpQueue
from rsvp.guest_directory import GuestDirectory
from rsvp.intent import Classification, Intent, classify, detect_language
from rsvp.runtime import get_logger
from rsvp.sheets import GuestStatus, SheetGatewayPool
from rsvp.tenant_resolver import TenantResolver
from rsvp.transport import Transport, TransportError

log = get_logger("inbound")

MAYBE_NOTE = "Answered maybe; follow-up scheduled"
BROADCAST_MARKERS = ("status@broadcast", "@broadcast")


@dataclass
class InboundMessage:
    sender_phone: str
    is_group: bool = False
    is_from_bot: bool = False
    button_id: Optional[str] = None
    button_display_text: Optional[str] = None
    text: Optional[str] = None

    @property
    def body(self) -> str:
        return (self.text or self.button_display_text or "").strip()


class InboundHandler:
    def __init__(
        self,
        resolver: TenantResolver,
        gateways: SheetGatewayPool,
        followups: FollowUpQueue,
        directory: Optional[GuestDirectory] = None,
        transport: Optional[Transport] = None,
        *,
        bot_phone: Optional[str] = None,
    ):
        self.resolver = resolver
        self.gateways = gateways
        self.followups = followups
        self.directory = directory or resolver.directory
        self.transport = transport
        self.bot_phone = bot_phone if bot_phone is not None else settings().BOT_PHONE

    # -----------------------------
    # Guards
    # -----------------------------
    def should_ignore(self, msg: InboundMessage) -> Optional[str]:
        """Reason to drop ``msg`` unclassified, or None."""
        if msg.is_group:
            return "group chat"
        if msg.is_from_bot:
            return "own message"
        raw = str(msg.sender_phone or "").lower()
        if any(marker in raw for marker in BROADCAST_MARKERS):
            return "status broadcast"
        if self.bot_phone and phones.digits_only(self.bot_phone) and (
            phones.normalize(raw) == phones.normalize(self.bot_phone)
            or phones.digits_only(raw) == phones.digits_only(self.bot_phone)
        ):
            return "bot number"
        if not msg.button_id and templates.is_auto_reply_echo(msg.body):
            return "auto-reply echo"
        return None

    # -----------------------------
    # Pipeline
    # -----------------------------
    async def handle(self, msg: InboundMessage) -> Optional[templates.OutboundMessage]:
        """Reply for ``msg`` or None. Never raises."""
        try:
            return await self._handle(msg)
        except Exception as e:
            log.error(f"❌ Inbound from {msg.sender_phone} failed: {e}", exc_info=True)
            return None

    async def _handle(self, msg: InboundMessage) -> Optional[templates.OutboundMessage]:
        reason = self.should_ignore(msg)
        if reason:
            log.debug(f"Ignoring message from {msg.sender_phone}: {reason}")
            return None

        lang = detect_language(msg.text or msg.button_display_text) or settings().DEFAULT_LANGUAGE
        result = classify(msg.button_id, msg.button_display_text, msg.text)
        if result.intent is Intent.IGNORE:
            log.debug(f"Unrelated message from {msg.sender_phone}; no reply")
            return None

        phone = phones.normalize(msg.sender_phone)
        tenant_id = self.resolver.resolve_tenant(phone) if phone else None
        if not tenant_id:
            log.info(f"No event found for sender {msg.sender_phone!r}")
            return templates.OutboundMessage(text=templates.text("unknown_event", lang))

        gateway = self.gateways.for_tenant(tenant_id)
        if gateway is None:
            return templates.OutboundMessage(text=templates.text("unknown_event", lang))

        log.info(f"📥 [{tenant_id}] {phone}: {result.intent.value} ({result.source}) count={result.party_count}")
        return await self._apply(result, phone, tenant_id, gateway, lang)

    async def _apply(
        self,
        result: Classification,
        phone: str,
        tenant_id: str,
        gateway: Any,
        lang: str,
    ) -> templates.OutboundMessage:
        intent = result.intent

        if intent is Intent.YES:
            return templates.ask_party_count(lang)

        if intent is Intent.COUNT_MORE:
            return templates.OutboundMessage(text=templates.text("ask_exact_count", lang))

        if intent is Intent.CLARIFY:
            return templates.OutboundMessage(text=templates.text("clarify", lang))

        if intent is Intent.NO:
            await self._store(gateway, phone, GuestStatus.DECLINED, 0)
            self.followups.cancel(phone)
            return templates.OutboundMessage(text=templates.text("declined", lang))

        if intent is Intent.MAYBE:
            await self._store(gateway, phone, GuestStatus.MAYBE, 0, MAYBE_NOTE)
            self.followups.enqueue(phone, self.directory.display_name(phone), tenant_id, lang=lang)
            return templates.OutboundMessage(text=templates.text("maybe", lang))

        count = int(result.party_count or 0)
        await self._store(gateway, phone, GuestStatus.CONFIRMED, count)
        self.followups.cancel(phone)
        return templates.confirmation(count, lang)

    async def _store(self, gateway: Any, phone: str, status: GuestStatus, count: int, notes: str = "") -> bool:
        ok = await gateway.update_guest_status(phone, status, count, notes)
        if not ok:
            # the guest still gets an acknowledgment
            log.warning(f"⚠️ [{gateway.tenant_id}] {phone} → {status.value} not stored")
        return ok

    # -----------------------------
    # Handle + deliver
    # -----------------------------
    async def respond(self, msg: InboundMessage) -> Dict[str, Any]:
        """Handle ``msg`` and push the reply through the transport."""
        reply = await self.handle(msg)
        if reply is None:
            return {"ok": True, "reply": None, "delivered": False}
        if self.transport is None:
            return {"ok": True, "reply": reply.to_dict(), "delivered": False}
        try:
            await self.transport.send(phones.normalize(msg.sender_phone) or msg.sender_phone, reply)
        except TransportError as e:
            log.error(f"❌ Reply to {msg.sender_phone} not delivered: {e}", exc_info=True)
            return {"ok": False, "reply": reply.to_dict(), "delivered": False, "error": str(e)}
        return {"ok": True, "reply": reply.to_dict(), "delivered": True}


__all__ = ["InboundMessage", "InboundHandler"]
