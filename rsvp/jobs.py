# rsvp/jobs.py
"""
Cron entry points.

    python -m rsvp.jobs campaigns [--force] [--tenant ID]
    python -m rsvp.jobs followups
    python -m rsvp.jobs stats --tenant ID
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, List, Optional

from rsvp.engine import Engine, get_engine
from rsvp.runtime import get_logger

log = get_logger("jobs")


async def _run(args: argparse.Namespace, engine: Engine) -> Dict[str, Any]:
    if args.job == "campaigns":
        return await engine.campaigns.run_all(force=args.force, tenant_id=args.tenant)
    if args.job == "followups":
        return await engine.followups.flush(engine.transport, engine.registry)
    if args.job == "stats":
        gateway = engine.gateways.for_tenant(args.tenant)
        if gateway is None:
            return {"ok": False, "error": f"no credentials for {args.tenant}"}
        return {"ok": True, "tenant": args.tenant, "stats": await gateway.get_rsvp_stats()}
    return {"ok": False, "error": f"unknown job {args.job}"}


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="rsvp.jobs", description="RSVP engine cron jobs")
    sub = p.add_subparsers(dest="job", required=True)

    c = sub.add_parser("campaigns", help="Send invitations/reminders for active tenants")
    c.add_argument("--force", action="store_true", help="Ignore date windows; message every uncontacted Pending guest")
    c.add_argument("--tenant", type=str, default=None, help="Only this tenant id")

    sub.add_parser("followups", help="Send due 'maybe' follow-ups")

    s = sub.add_parser("stats", help="RSVP counts for one tenant")
    s.add_argument("--tenant", type=str, required=True)
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None, engine: Optional[Engine] = None) -> int:
    args = _parse_args(argv)
    try:
        res = asyncio.run(_run(args, engine or get_engine()))
    except Exception as e:
        log.error(f"❌ Job {args.job} failed: {e}", exc_info=True)
        res = {"ok": False, "error": str(e)}
    print(json.dumps(res, indent=2, ensure_ascii=False))
    return 0 if res.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
