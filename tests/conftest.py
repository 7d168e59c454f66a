"""
tests/conftest.py — Shared Test Fixtures
=========================================

In-memory SQLite engine, an event-loop helper, and small fakes for the
collaborators that would otherwise hit the network (issuance service,
name service, chat platform, response sink).
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from poapbot.config import PoapBotConfig
from poapbot.database.models import Base
from poapbot.engine.events import EventBus
from poapbot.exceptions import IssuanceAPIError
from poapbot.gateway.commands import CommandServices
from poapbot.services.catalog import EventCatalog
from poapbot.services.distribution import BadgeDistributor
from poapbot.services.identity import IdentityResolver
from poapbot.services.issuance import Badge, ClaimResult
from poapbot.services.store import EntitlementStore

VITALIK_ADDRESS = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
COMMUNITY_ID = 100
ADMIN_ID = 999
USER_ID = 1001


def run_async(coro):
    """Run a coroutine in a fresh event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every PoapBot table.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` inside ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def store(db_engine) -> EntitlementStore:
    return EntitlementStore(db_engine)


@pytest.fixture
def cfg() -> PoapBotConfig:
    return PoapBotConfig(community_name="POAP Dev", name_rpc_urls=(), name_timeout=0.2)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
class FakeIssuance:
    """In-memory stand-in for :class:`IssuanceClient`."""

    def __init__(self) -> None:
        self.events: dict[int, dict] = {}
        self.badges: dict[str, list[Badge]] = {}
        self.links: dict[int, list[str]] = {}
        self.minted: int | None = None
        self.fail_claims = False
        self.fail_badges = False
        self.claims: list[tuple[str, str]] = []
        self.calls: list[str] = []

    def add_event(self, event_id: int, name: str = "Test Event", **extra) -> dict:
        payload = {"id": event_id, "name": name, **extra}
        self.events[event_id] = payload
        return payload

    def give_badges(self, address: str, *event_ids: int) -> None:
        self.badges[address.lower()] = [
            Badge(event_id=i, event_name=f"Event {i}") for i in event_ids
        ]

    async def get_event(self, event_id: int) -> dict:
        self.calls.append("get_event")
        if event_id not in self.events:
            raise IssuanceAPIError(404, "not found")
        return self.events[event_id]

    async def get_user_badges(self, address: str) -> list[Badge]:
        self.calls.append("get_user_badges")
        if self.fail_badges:
            raise IssuanceAPIError(503, "unavailable")
        return list(self.badges.get(address.lower(), []))

    async def get_claim_links(self, event_id: int, secret_code: str) -> list[str]:
        self.calls.append("get_claim_links")
        await asyncio.sleep(0)
        return list(self.links.get(event_id, []))

    async def claim(self, claim_token: str, address: str, secret_code: str) -> ClaimResult:
        self.calls.append("claim")
        await asyncio.sleep(0)
        if self.fail_claims:
            raise IssuanceAPIError(400, "link already used")
        self.claims.append((claim_token, address))
        return ClaimResult(tx_hash=f"0xtx{len(self.claims)}")

    async def count_minted(self, event_id: int) -> int | None:
        return self.minted


class FakeNames:
    """Name service with a fixed table; ``available`` can be switched off."""

    def __init__(self, table: dict[str, str] | None = None, *, available: bool = True, delay: float = 0) -> None:
        self.table = table or {}
        self._available = available
        self.delay = delay
        self.lookups: list[str] = []

    @property
    def available(self) -> bool:
        return self._available

    async def lookup(self, name: str) -> str | None:
        self.lookups.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.table.get(name)

    async def reverse(self, address: str) -> str | None:
        for name, addr in self.table.items():
            if addr.lower() == address.lower():
                return name
        return None


class FakePlatform:
    """Records grants and DMs; roles and channel overwrites live in sets."""

    def __init__(self) -> None:
        self.roles: set[tuple[int, int, int]] = set()
        self.channels: set[tuple[int, int, int]] = set()
        self.dms: list[tuple[int, str | None, dict | None]] = []
        self.fail_role_ids: set[int] = set()

    async def has_role(self, community_id, user_id, role_id) -> bool:
        return (community_id, user_id, role_id) in self.roles

    async def add_role(self, community_id, user_id, role_id) -> None:
        if role_id in self.fail_role_ids:
            raise RuntimeError("Missing Permissions")
        self.roles.add((community_id, user_id, role_id))

    async def has_channel_access(self, community_id, user_id, channel_id) -> bool:
        return (community_id, user_id, channel_id) in self.channels

    async def grant_channel_access(self, community_id, user_id, channel_id) -> None:
        self.channels.add((community_id, user_id, channel_id))

    async def send_direct_message(self, user_id, content=None, *, embed=None) -> None:
        self.dms.append((user_id, content, embed))


class RecordingSink:
    """ResponseSink that remembers what the handler did."""

    def __init__(self) -> None:
        self.replies: list = []
        self.acknowledged = False
        self.deferred: bool | None = None

    async def respond(self, reply) -> None:
        self.replies.append(reply)

    async def acknowledge(self) -> None:
        self.acknowledged = True

    async def deferred_acknowledge(self, *, ephemeral: bool = False) -> None:
        if self.deferred is None:
            self.deferred = ephemeral

    @property
    def last(self):
        return self.replies[-1]


@pytest.fixture
def issuance() -> FakeIssuance:
    return FakeIssuance()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def names() -> FakeNames:
    return FakeNames({"vitalik.eth": VITALIK_ADDRESS})


@pytest.fixture
def services(cfg, store, issuance, names, platform) -> CommandServices:
    """CommandServices wired to the fakes, with gate reconciliation on the bus."""
    from poapbot.engine.events import WalletLinked
    from poapbot.engine.gates import GateReconciler

    bus = EventBus()
    gates = GateReconciler(store, issuance, platform)
    bus.subscribe(WalletLinked, gates.handle_wallet_linked)
    return CommandServices(
        cfg=cfg,
        store=store,
        resolver=IdentityResolver(names, timeout=cfg.name_timeout),
        issuance=issuance,
        catalog=EventCatalog(store, issuance, ttl=cfg.event_cache_ttl),
        distributor=BadgeDistributor(store, issuance),
        bus=bus,
        platform=platform,
    )
