# rsvp/engine.py
"""Wires the per-process stores together. Routes and jobs go through ``get_engine()``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from rsvp.campaign import CampaignRunner, CampaignState
from rsvp.config import settings
from rsvp.followups import FollowUpQueue
from rsvp.guest_directory import GuestDirectory
from rsvp.inbound import InboundHandler
from rsvp.runtime import get_logger
from rsvp.sheets import SheetGatewayPool
from rsvp.tenant_resolver import TenantResolver
from rsvp.tenants import TenantRegistry
from rsvp.transport import Transport, build_transport

log = get_logger("engine")


@dataclass
class Engine:
    registry: TenantRegistry
    directory: GuestDirectory
    resolver: TenantResolver
    gateways: SheetGatewayPool
    followups: FollowUpQueue
    transport: Transport
    campaigns: CampaignRunner
    inbound: InboundHandler


def build_engine(
    *,
    transport: Optional[Transport] = None,
    sheets_transport: Optional[httpx.AsyncBaseTransport] = None,
    retry_delay: Optional[float] = None,
    message_delay: Optional[float] = None,
) -> Engine:
    s = settings()
    registry = TenantRegistry(s.TENANTS_FILE, s.CREDENTIALS_FILE)
    directory = GuestDirectory(s.GUEST_MAP_FILE)
    resolver = TenantResolver(directory, registry)
    gateways = SheetGatewayPool(registry, transport=sheets_transport, retry_delay=retry_delay)
    followups = FollowUpQueue(s.FOLLOWUPS_FILE)
    transport = transport or build_transport()
    campaigns = CampaignRunner(registry, gateways, directory, transport, CampaignState(), delay=message_delay)
    inbound = InboundHandler(resolver, gateways, followups, directory, transport)
    log.info(f"Engine ready: {len(registry.active())} active tenants, {len(directory)} guest mappings")
    return Engine(
        registry=registry,
        directory=directory,
        resolver=resolver,
        gateways=gateways,
        followups=followups,
        transport=transport,
        campaigns=campaigns,
        inbound=inbound,
    )


_ENGINE: Optional[Engine] = None


def get_engine() -> Engine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = build_engine()
    return _ENGINE


def set_engine(engine: Optional[Engine]) -> None:
    global _ENGINE
    _ENGINE = engine


def reset_engine() -> None:
    set_engine(None)
