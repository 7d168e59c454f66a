"""
poapbot.engine.events — Trigger Events & Event Bus
===================================================

Platform callbacks (member joined, reaction added, message sent) and
command side effects (wallet linked) are normalized into small frozen
event objects and published on an :class:`EventBus`.  The Rule Engine and
Gate Reconciler subscribe to the bus; they never see platform SDK types.

Subscribers for one event run one after another.  A subscriber that raises
is logged and skipped; the rest still run and the publisher never sees
the error.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from poapbot.database.models import TriggerType

__all__ = ["TriggerEvent", "WalletLinked", "EventBus"]

logger = logging.getLogger(__name__)

E = TypeVar("E")
Handler = Callable[[Any], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TriggerEvent:
    """A community event that may fire automation rules.

    ``context`` carries trigger-specific details (``channel_id``,
    ``message_id``, ``emoji``) matched against a rule's ``trigger_data``.
    """

    community_id: int
    trigger_type: TriggerType
    user_id: int
    context: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class WalletLinked:
    """A user finished a ``link-wallet`` action inside a community."""

    community_id: int
    user_id: int
    address: str


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------
class EventBus:
    """Typed publish/subscribe keyed on the event class."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], Awaitable[Any]]) -> None:
        self._handlers[event_type].append(handler)

    def handlers_for(self, event_type: type) -> tuple[Handler, ...]:
        return tuple(self._handlers.get(event_type, ()))

    async def publish(self, event: object) -> int:
        """Deliver *event* to its subscribers.  Returns how many succeeded."""
        delivered = 0
        for handler in self.handlers_for(type(event)):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Subscriber %s failed for %s",
                    getattr(handler, "__qualname__", handler),
                    type(event).__name__,
                )
            else:
                delivered += 1
        return delivered
