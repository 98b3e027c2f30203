from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from rsvp.config import settings
from rsvp.engine import get_engine
from rsvp.inbound import InboundMessage
from rsvp.runtime import get_logger

log = get_logger("webhook")

router = APIRouter()


class InboundPayload(BaseModel):
    """Chat gateway → engine. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True)

    sender_phone: str = Field(alias="senderPhone")
    is_group: bool = Field(default=False, alias="isGroup")
    is_from_bot: bool = Field(default=False, alias="isFromBot")
    button_id: Optional[str] = Field(default=None, alias="buttonId")
    button_display_text: Optional[str] = Field(default=None, alias="buttonDisplayText")
    text: Optional[str] = None

    def to_message(self) -> InboundMessage:
        return InboundMessage(
            sender_phone=self.sender_phone,
            is_group=self.is_group,
            is_from_bot=self.is_from_bot,
            button_id=self.button_id,
            button_display_text=self.button_display_text,
            text=self.text,
        )


# === AUTHENTICATION ===
def _is_authorized(header_token: Optional[str], query_token: Optional[str]) -> bool:
    expected = settings().WEBHOOK_TOKEN
    if not expected:
        return True  # auth disabled
    return (header_token == expected) or (query_token == expected)


# === FASTAPI ROUTES ===
@router.post("/inbound")
async def inbound_handler(
    payload: InboundPayload,
    x_webhook_token: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
    deliver: bool = Query(False),
) -> Dict[str, Any]:
    """
    Classify one inbound chat message. The reply comes back in the response
    body; with ``deliver=true`` it is also pushed through the transport.
    """
    if not _is_authorized(x_webhook_token, token):
        raise HTTPException(status_code=401, detail="Unauthorized")

    engine = get_engine()
    msg = payload.to_message()
    if deliver:
        return await engine.inbound.respond(msg)

    reply = await engine.inbound.handle(msg)
    return {"ok": True, "reply": reply.to_dict() if reply else None}
