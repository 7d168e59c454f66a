"""
poapbot.bootstrap — Application wiring
=======================================

Builds the object graph shared by both deployments (webhook API and
gateway bot)::

    EntitlementStore ─┐
    IssuanceClient ───┼─► BadgeDistributor ─► RuleEngine ──┐
    IdentityResolver  │   EventCatalog        GateReconciler┼─► EventBus
                      └──────────────────────► CommandServices ─► CommandDispatcher

Subscription order on the bus matters for member joins: rules first (a
badge issued on join can satisfy a gate), then gate reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy import Engine

from poapbot.config import PoapBotConfig, Secrets
from poapbot.engine.events import EventBus, TriggerEvent, WalletLinked
from poapbot.engine.gates import GateReconciler
from poapbot.engine.platform import Platform
from poapbot.engine.rules import RuleEngine
from poapbot.gateway.commands import CommandServices, build_registry
from poapbot.gateway.interactions import CommandDispatcher
from poapbot.gateway.registry import CommandRegistry
from poapbot.services.catalog import EventCatalog
from poapbot.services.distribution import BadgeDistributor
from poapbot.services.identity import IdentityResolver, Web3NameService
from poapbot.services.issuance import IssuanceClient
from poapbot.services.store import EntitlementStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AppContext:
    cfg: PoapBotConfig
    store: EntitlementStore
    issuance: IssuanceClient
    names: Web3NameService | None
    resolver: IdentityResolver
    catalog: EventCatalog
    distributor: BadgeDistributor
    bus: EventBus
    rules: RuleEngine
    gates: GateReconciler
    services: CommandServices
    registry: CommandRegistry
    dispatcher: CommandDispatcher

    async def start(self) -> None:
        """Probe name-resolution providers (address-only mode if none answer)."""
        if self.names is not None:
            await self.names.connect()

    async def close(self) -> None:
        await self.distributor.drain()
        await self.issuance.aclose()


def build_context(
    cfg: PoapBotConfig,
    engine: Engine,
    secrets: Secrets,
    *,
    platform: Platform | None = None,
    issuance_http: httpx.AsyncClient | None = None,
    names: Web3NameService | None = None,
) -> AppContext:
    store = EntitlementStore(engine)
    issuance = IssuanceClient(
        cfg,
        api_key=secrets.poap_api_key,
        client_id=secrets.poap_client_id,
        client_secret=secrets.poap_client_secret,
        http=issuance_http,
    )
    if names is None and cfg.name_rpc_urls:
        names = Web3NameService(cfg.name_rpc_urls, timeout=cfg.name_timeout)
    resolver = IdentityResolver(names, timeout=cfg.name_timeout)
    catalog = EventCatalog(store, issuance, ttl=cfg.event_cache_ttl)
    distributor = BadgeDistributor(store, issuance)

    bus = EventBus()
    rules = RuleEngine(store, distributor, platform=platform, catalog=catalog)
    gates = GateReconciler(store, issuance, platform)
    bus.subscribe(TriggerEvent, rules.handle_event)
    if platform is not None:
        bus.subscribe(TriggerEvent, gates.handle_trigger)
        bus.subscribe(WalletLinked, gates.handle_wallet_linked)
    else:
        logger.warning("No platform binding; gate reconciliation disabled")

    services = CommandServices(
        cfg=cfg,
        store=store,
        resolver=resolver,
        issuance=issuance,
        catalog=catalog,
        distributor=distributor,
        bus=bus,
        platform=platform,
    )
    registry = build_registry()
    return AppContext(
        cfg=cfg,
        store=store,
        issuance=issuance,
        names=names,
        resolver=resolver,
        catalog=catalog,
        distributor=distributor,
        bus=bus,
        rules=rules,
        gates=gates,
        services=services,
        registry=registry,
        dispatcher=CommandDispatcher(registry, services),
    )
