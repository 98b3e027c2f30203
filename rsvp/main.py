from __future__ import annotations

"""
RSVP Engine — FastAPI app
- /inbound            chat gateway webhook (see rsvp.webhook)
- /campaigns/run      cron: invitations + reminders for every active tenant
- /followups/flush    cron (hourly): due "maybe" follow-ups
- /health             liveness + store counts
- CRON_TOKEN auth via header, query or bearer token (disabled when unset)
"""

import os
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request

from rsvp.config import settings
from rsvp.engine import get_engine
from rsvp.runtime import configure_logging, get_logger, iso_now
from rsvp.webhook import router as inbound_router

configure_logging()
log = get_logger("main")

app = FastAPI(title="RSVP Engine", version="1.0.0")
app.include_router(inbound_router)  # → /inbound


# ─────────────────────────── Auth helpers ───────────────────────────
def _extract_token(request: Request, qp_token: Optional[str], h_cron: Optional[str]) -> str:
    if qp_token:
        return qp_token
    if h_cron:
        return h_cron
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1]
    return ""


def require_cron(
    request: Request,
    token: Optional[str] = Query(default=None),
    x_cron_token: Optional[str] = Header(default=None),
) -> None:
    """Require CRON_TOKEN in header, query, or bearer token."""
    expected = settings().CRON_TOKEN
    if not expected:
        return
    if _extract_token(request, token, x_cron_token) != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


# ─────────────────────────── Health ────────────────────────────────
@app.get("/health")
async def health() -> Dict[str, Any]:
    engine = get_engine()
    return {
        "ok": True,
        "time": iso_now(),
        "tenants": len(engine.registry.active()),
        "guest_mappings": len(engine.directory),
        "pending_followups": len(engine.followups),
    }


# ─────────────────────────── Cron jobs ──────────────────────────────
@app.post("/campaigns/run", dependencies=[Depends(require_cron)])
async def run_campaigns(
    force: bool = Query(False),
    tenant: Optional[str] = Query(None),
) -> Dict[str, Any]:
    try:
        return await get_engine().campaigns.run_all(force=force, tenant_id=tenant)
    except Exception as e:
        log.error(f"❌ /campaigns/run failed: {e}", exc_info=True)
        return {"ok": False, "error": str(e)}


@app.post("/followups/flush", dependencies=[Depends(require_cron)])
async def flush_followups() -> Dict[str, Any]:
    engine = get_engine()
    try:
        return await engine.followups.flush(engine.transport, engine.registry)
    except Exception as e:
        log.error(f"❌ /followups/flush failed: {e}", exc_info=True)
        return {"ok": False, "error": str(e)}


@app.get("/tenants/{tenant_id}/stats", dependencies=[Depends(require_cron)])
async def tenant_stats(tenant_id: str) -> Dict[str, Any]:
    engine = get_engine()
    if not engine.registry.get(tenant_id):
        raise HTTPException(status_code=404, detail="Unknown tenant")
    gateway = engine.gateways.for_tenant(tenant_id)
    if gateway is None:
        return {"ok": False, "error": "missing credentials"}
    return {"ok": True, "tenant": tenant_id, "stats": await gateway.get_rsvp_stats()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("rsvp.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
