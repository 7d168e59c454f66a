"""
poapbot.services.catalog — Event Metadata Catalogue
====================================================

Read-through cache over :meth:`IssuanceClient.get_event`.  A fresh
``event_cache`` row (younger than ``event_cache_ttl``) answers without a
network call; a miss fetches from the issuance service and stores the
payload.  The cache is advisory: store failures on either side are logged
and the network result is used.
"""

from __future__ import annotations

import logging

from poapbot.database.engine import run_db
from poapbot.exceptions import StoreError

logger = logging.getLogger(__name__)


class EventCatalog:
    def __init__(self, store, issuance, *, ttl: int = 3600) -> None:
        self.store = store
        self.issuance = issuance
        self.ttl = ttl

    async def get_event(self, event_id: int) -> dict:
        """Event metadata for *event_id*.  Raises ``IssuanceAPIError`` on a miss
        the service can't answer."""
        try:
            cached = await run_db(self.store.get_cached_event, event_id, max_age=self.ttl)
        except StoreError as exc:
            logger.warning("Event cache read failed for %d: %s", event_id, exc)
            cached = None
        if cached is not None:
            return cached

        event = await self.issuance.get_event(event_id)
        try:
            await run_db(self.store.cache_event, event_id, event)
        except StoreError as exc:
            logger.warning("Event cache write failed for %d: %s", event_id, exc)
        return event

    async def event_name(self, event_id: int) -> str:
        """Best-effort display name; never raises."""
        try:
            event = await self.get_event(event_id)
        except Exception as exc:
            logger.debug("Event name lookup for %d failed: %s", event_id, exc)
            return f"Event #{event_id}"
        return event.get("name") or f"Event #{event_id}"
