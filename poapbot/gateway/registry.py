"""
poapbot.gateway.registry — Command Registry
============================================

Static name → handler table for slash commands, built once at start-up
and read-only afterwards.  Construction validates every entry (name
shape, duplicates, option ordering) so a bad table fails at import time,
never mid-interaction.

The same registry renders Discord application-command definitions for
:mod:`poapbot.api.register` and for the bot binding's command tree.

Also home to :class:`CommandInvocation`, the transport-independent form
of a slash-command call.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

COMMAND_NAME_RE = re.compile(r"^[-_a-z0-9]{1,32}$")


class OptionType(enum.IntEnum):
    STRING = 3
    INTEGER = 4
    USER = 6


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CommandOption:
    name: str
    value: Any


@dataclass(frozen=True, slots=True)
class CommandInvocation:
    """One slash-command call, whichever transport it arrived on."""

    name: str
    user_id: int
    community_id: int | None = None
    options: tuple[CommandOption, ...] = ()
    permissions: int = 0
    role_ids: frozenset[int] = frozenset()
    community_name: str | None = None

    def option(self, name: str, default: Any = None) -> Any:
        for opt in self.options:
            if opt.name == name:
                return opt.value
        return default

    @classmethod
    def from_interaction(cls, payload: Mapping[str, Any]) -> CommandInvocation:
        """Parse a webhook APPLICATION_COMMAND payload.

        Raises ``KeyError`` / ``ValueError`` / ``TypeError`` on a malformed body.
        """
        data = payload["data"]
        member = payload.get("member")
        user = member["user"] if member else payload["user"]
        guild_id = payload.get("guild_id")
        return cls(
            name=str(data["name"]),
            user_id=int(user["id"]),
            community_id=int(guild_id) if guild_id else None,
            options=tuple(
                CommandOption(name=str(opt["name"]), value=opt.get("value"))
                for opt in data.get("options") or ()
            ),
            permissions=int(member.get("permissions") or 0) if member else 0,
            role_ids=frozenset(int(r) for r in (member.get("roles") or ())) if member else frozenset(),
        )


# ---------------------------------------------------------------------------
# Specs
# ---------------------------------------------------------------------------
Handler = Callable[..., Awaitable[None]]


@dataclass(frozen=True, slots=True)
class OptionSpec:
    name: str
    description: str
    type: OptionType = OptionType.STRING
    required: bool = False
    choices: tuple[tuple[str, str], ...] = ()  # (display name, value)

    def to_definition(self) -> dict:
        definition: dict = {
            "type": int(self.type),
            "name": self.name,
            "description": self.description,
            "required": self.required,
        }
        if self.choices:
            definition["choices"] = [{"name": n, "value": v} for n, v in self.choices]
        return definition


@dataclass(frozen=True, slots=True)
class CommandSpec:
    name: str
    description: str
    handler: Handler
    options: tuple[OptionSpec, ...] = field(default_factory=tuple)
    admin: bool = False
    ephemeral: bool = False  # Replies, including a deadline deferral, are caller-only

    def to_definition(self) -> dict:
        definition: dict = {
            "name": self.name,
            "type": 1,
            "description": self.description,
            "options": [opt.to_definition() for opt in self.options],
        }
        if self.admin:
            definition["dm_permission"] = False
        return definition


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class CommandRegistry:
    """Immutable, validated mapping of command name → :class:`CommandSpec`."""

    def __init__(self, specs: Iterable[CommandSpec]) -> None:
        table: dict[str, CommandSpec] = {}
        for spec in specs:
            _validate(spec)
            if spec.name in table:
                raise ValueError(f"Duplicate command name: {spec.name}")
            table[spec.name] = spec
        self._table: Mapping[str, CommandSpec] = MappingProxyType(table)

    def get(self, name: str) -> CommandSpec | None:
        return self._table.get(name)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._table)

    def __contains__(self, name: object) -> bool:
        return name in self._table

    def __iter__(self) -> Iterator[CommandSpec]:
        return iter(self._table.values())

    def __len__(self) -> int:
        return len(self._table)

    def to_application_commands(self) -> list[dict]:
        return [spec.to_definition() for spec in self]


def _validate(spec: CommandSpec) -> None:
    if not COMMAND_NAME_RE.match(spec.name):
        raise ValueError(f"Invalid command name: {spec.name!r}")
    if not callable(spec.handler):
        raise ValueError(f"Handler for {spec.name} is not callable")
    if not 1 <= len(spec.description) <= 100:
        raise ValueError(f"Description of {spec.name} must be 1-100 characters")

    seen: set[str] = set()
    optional_seen = False
    for opt in spec.options:
        if not COMMAND_NAME_RE.match(opt.name):
            raise ValueError(f"Invalid option name {opt.name!r} on {spec.name}")
        if opt.name in seen:
            raise ValueError(f"Duplicate option {opt.name!r} on {spec.name}")
        seen.add(opt.name)
        if opt.required and optional_seen:
            raise ValueError(f"Required option {opt.name!r} follows an optional one on {spec.name}")
        optional_seen = optional_seen or not opt.required
