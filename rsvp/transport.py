# rsvp/transport.py
"""
📡 Messaging Transport — outbound delivery to the chat gateway
- ``HttpTransport`` POSTs {to, text, buttons, footer} as JSON to TRANSPORT_URL
- Bearer token auth when TRANSPORT_TOKEN is set
- ``RecordingTransport`` keeps sends in memory (dry runs + tests)
- Delivery failures raise ``TransportError``; callers decide what to do
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx

from rsvp import phone as phones
from rsvp.config import settings
from rsvp.runtime import get_logger, mask_secret
from rsvp.templates import OutboundMessage

log = get_logger("transport")


# =========================
# Errors
# =========================
class TransportError(RuntimeError):
    """Delivery failure that carries HTTP metadata and response body."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.payload = payload

    def __str__(self) -> str:
        base = super().__str__()
        if self.body in (None, "", b""):
            return base
        body_repr = str(self.body).strip()
        if not body_repr or body_repr in base:
            return base
        return f"{base} | body={body_repr}"


class Transport(Protocol):
    async def send(self, phone: str, message: OutboundMessage) -> Dict[str, Any]:
        ...


# =========================
# Small helpers
# =========================
def _extract_error_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text.strip()


def _summarize_error_body(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return str(body or "")


def build_payload(phone: str, message: OutboundMessage) -> Dict[str, Any]:
    return {"to": phones.without_plus(phone), **message.to_dict()}


# =========================
# HTTP gateway
# =========================
class HttpTransport:
    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        s = settings()
        self.url = url or s.TRANSPORT_URL
        self.token = token if token is not None else s.TRANSPORT_TOKEN
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def send(self, phone: str, message: OutboundMessage) -> Dict[str, Any]:
        if not self.url:
            raise TransportError("TRANSPORT_URL is not configured")
        if not phone or not message.text:
            raise TransportError("missing recipient or text")

        payload = build_payload(phone, message)
        log.info(f"📤 Sending → {payload['to']}: {message.text[:60]!r} (token {mask_secret(self.token)})")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransportError(f"transport unreachable: {e}", payload=payload) from e

        if resp.status_code == 429:
            raise TransportError(
                f"429 rate limited; retry_after={resp.headers.get('Retry-After')}",
                status_code=429,
                body=resp.headers.get("Retry-After"),
                payload=payload,
            )
        if resp.is_error:
            body = _extract_error_body(resp)
            log.error(f"Transport {resp.status_code} error body: {body}")
            summary = _summarize_error_body(body)
            message_text = f"Transport HTTP {resp.status_code}"
            if summary:
                message_text = f"{message_text}: {summary}"
            raise TransportError(message_text, status_code=resp.status_code, body=body, payload=payload)

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}
        return {"status": "sent", "raw": data}


# =========================
# In-memory (dry run)
# =========================
class RecordingTransport:
    """Records every send instead of delivering it."""

    def __init__(self, fail_for: Optional[List[str]] = None):
        self.sent: List[Tuple[str, OutboundMessage]] = []
        self.fail_for = {phones.without_plus(p) for p in (fail_for or [])}

    async def send(self, phone: str, message: OutboundMessage) -> Dict[str, Any]:
        if phones.without_plus(phone) in self.fail_for:
            raise TransportError(f"delivery to {phone} refused")
        self.sent.append((phone, message))
        log.info(f"[DRY RUN] → {phone}: {message.text[:60]!r}")
        return {"status": "sent", "dry_run": True}

    def to(self, phone: str) -> List[OutboundMessage]:
        key = phones.without_plus(phone)
        return [m for p, m in self.sent if phones.without_plus(p) == key]


def build_transport() -> Transport:
    s = settings()
    if s.TRANSPORT_DRY_RUN or not s.TRANSPORT_URL:
        if not s.TRANSPORT_DRY_RUN:
            log.warning("⚠️ TRANSPORT_URL not set; outbound messages are recorded, not delivered")
        return RecordingTransport()
    return HttpTransport()


__all__ = ["Transport", "TransportError", "HttpTransport", "RecordingTransport", "build_transport", "build_payload"]
