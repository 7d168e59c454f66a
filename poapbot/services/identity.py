"""
poapbot.services.identity — Identity Resolver
==============================================

Turns whatever a user typed into a canonical wallet address:

* ``0x`` + 40 hex digits → lowercased, returned immediately, no network.
* A dotted name (``vitalik.eth``) → forward lookup through a
  :class:`NameService`, bounded by ``name_timeout`` seconds.
* Anything else → :class:`~poapbot.exceptions.InvalidInputError`.

The production :class:`Web3NameService` probes an ordered list of JSON-RPC
endpoints at start-up and keeps the first that answers.  If none answer,
the resolver stays in *address-only* mode: name lookups fail fast with a
:class:`~poapbot.exceptions.ResolutionError` instead of hanging.

Reverse lookup (address → name) is best-effort; any failure degrades to
the shortened address form.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from web3 import AsyncHTTPProvider, AsyncWeb3

from poapbot.constants import (
    ADDRESS_RE,
    NAME_MAX_LENGTH,
    NAME_MIN_LENGTH,
    NAME_RE,
    shorten_address,
)
from poapbot.exceptions import InvalidInputError, ResolutionError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shape checks
# ---------------------------------------------------------------------------
def is_address(value: str) -> bool:
    return bool(ADDRESS_RE.match(value))


def is_name(value: str) -> bool:
    return NAME_MIN_LENGTH <= len(value) <= NAME_MAX_LENGTH and bool(NAME_RE.match(value))


@dataclass(frozen=True, slots=True)
class ResolvedIdentity:
    address: str
    display_name: str
    was_name_lookup: bool


# ---------------------------------------------------------------------------
# Name service backends
# ---------------------------------------------------------------------------
class NameService(Protocol):
    """Forward and reverse name lookups."""

    @property
    def available(self) -> bool: ...

    async def lookup(self, name: str) -> str | None: ...

    async def reverse(self, address: str) -> str | None: ...


class Web3NameService:
    """ENS lookups over the first reachable JSON-RPC endpoint."""

    def __init__(self, rpc_urls: tuple[str, ...] | list[str], *, timeout: float = 15.0) -> None:
        self.rpc_urls = tuple(rpc_urls)
        self.timeout = timeout
        self._w3: AsyncWeb3 | None = None
        self.connected_url: str | None = None

    @property
    def available(self) -> bool:
        return self._w3 is not None

    async def connect(self) -> bool:
        """Probe each endpoint in order; keep the first that returns a block."""
        for url in self.rpc_urls:
            w3 = AsyncWeb3(
                AsyncHTTPProvider(url, request_kwargs={"timeout": self.timeout})
            )
            try:
                await asyncio.wait_for(w3.eth.block_number, timeout=self.timeout)
            except Exception as exc:
                logger.info("Name provider %s unreachable: %s", url, exc.__class__.__name__)
                continue
            self._w3 = w3
            self.connected_url = url
            logger.info("Name provider connected: %s", url)
            return True

        logger.warning("No name providers available; name resolution disabled")
        return False

    async def lookup(self, name: str) -> str | None:
        if self._w3 is None:
            return None
        address = await self._w3.ens.address(name)
        return str(address) if address else None

    async def reverse(self, address: str) -> str | None:
        if self._w3 is None:
            return None
        return await self._w3.ens.name(AsyncWeb3.to_checksum_address(address))


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------
class IdentityResolver:
    """Address-or-name → :class:`ResolvedIdentity`."""

    def __init__(self, names: NameService | None, *, timeout: float = 15.0) -> None:
        self.names = names
        self.timeout = timeout

    async def resolve(self, raw: str, *, reverse_lookup: bool = False) -> ResolvedIdentity:
        value = (raw or "").strip()
        if not value:
            raise InvalidInputError("An address or name is required.")

        if is_address(value):
            address = value.lower()
            display = await self.display_name(address) if reverse_lookup else shorten_address(address)
            return ResolvedIdentity(address=address, display_name=display, was_name_lookup=False)

        if is_name(value):
            address = await self._lookup(value)
            return ResolvedIdentity(address=address, display_name=value, was_name_lookup=True)

        raise InvalidInputError(f'"{value}" is not a valid wallet address or name.')

    async def _lookup(self, name: str) -> str:
        if self.names is None or not self.names.available:
            raise ResolutionError(
                f'Name resolution unavailable for "{name}". Please use the address directly.'
            )
        try:
            resolved = await asyncio.wait_for(self.names.lookup(name), timeout=self.timeout)
        except TimeoutError as exc:
            raise ResolutionError(
                f'Name resolution timed out for "{name}". Try using the address directly.'
            ) from exc
        except Exception as exc:
            logger.warning("Name lookup for %s failed: %s", name, exc)
            raise ResolutionError(
                f'Failed to resolve "{name}". Try using the address directly.'
            ) from exc

        if not resolved or not is_address(resolved):
            raise ResolutionError(f'"{name}" could not be resolved. Try using the address directly.')
        return resolved.lower()

    async def display_name(self, address: str) -> str:
        """Reverse-resolved name for *address*, or its shortened form."""
        if self.names is not None and self.names.available:
            try:
                name = await asyncio.wait_for(self.names.reverse(address), timeout=self.timeout)
            except Exception as exc:
                logger.debug("Reverse lookup for %s failed: %s", address, exc)
            else:
                if name:
                    return name
        return shorten_address(address)
