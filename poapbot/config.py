"""
poapbot.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for **soft** settings (community identity, admin
role, service endpoints, timeouts).  Secrets (bot token, verification key,
issuance API credentials, database URL) stay in the environment and are
loaded from ``.env`` by the entry points.

Usage::

    from poapbot.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "POAP Dev"
    print(cfg.name_rpc_urls[0])  # "https://eth.llamarpc.com"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_RPC_URLS: tuple[str, ...] = (
    "https://eth.llamarpc.com",
    "https://rpc.ankr.com/eth",
    "https://ethereum.publicnode.com",
    "https://cloudflare-eth.com",
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PoapBotConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    guild_id: int | None = None  # Primary guild snowflake (optional)
    admin_role_id: int | None = None  # Role that counts as admin besides MANAGE_GUILD

    # HTTP
    api_port: int = 8000

    # External services
    name_rpc_urls: tuple[str, ...] = field(default=DEFAULT_RPC_URLS)
    issuance_base_url: str = "https://api.poap.tech"
    issuance_auth_url: str = "https://auth.accounts.poap.xyz/oauth/token"
    issuance_audience: str = "https://api.poap.tech"
    collection_url: str = "https://collectors.poap.xyz/scan"

    # Timing (seconds)
    request_timeout: float = 15.0
    name_timeout: float = 15.0
    response_deadline: float = 2.5
    event_cache_ttl: int = 3600


@dataclass(frozen=True, slots=True)
class Secrets:
    """Credentials read from the process environment."""

    discord_token: str | None
    application_id: str | None
    poap_api_key: str | None
    poap_client_id: str | None
    poap_client_secret: str | None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> PoapBotConfig:
    """Read *path* and return a :class:`PoapBotConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return config_from_mapping(raw)


def config_from_mapping(raw: dict) -> PoapBotConfig:
    """Build a :class:`PoapBotConfig` from an already-parsed mapping."""
    defaults = PoapBotConfig(community_name="")
    rpc_urls = raw.get("name_rpc_urls")

    return PoapBotConfig(
        community_name=raw["community_name"],
        guild_id=int(raw["guild_id"]) if raw.get("guild_id") else None,
        admin_role_id=int(raw["admin_role_id"]) if raw.get("admin_role_id") else None,
        api_port=int(raw.get("api_port", defaults.api_port)),
        name_rpc_urls=tuple(rpc_urls) if rpc_urls else defaults.name_rpc_urls,
        issuance_base_url=raw.get("issuance_base_url", defaults.issuance_base_url),
        issuance_auth_url=raw.get("issuance_auth_url", defaults.issuance_auth_url),
        issuance_audience=raw.get("issuance_audience", defaults.issuance_audience),
        collection_url=raw.get("collection_url", defaults.collection_url),
        request_timeout=float(raw.get("request_timeout", defaults.request_timeout)),
        name_timeout=float(raw.get("name_timeout", defaults.name_timeout)),
        response_deadline=float(raw.get("response_deadline", defaults.response_deadline)),
        event_cache_ttl=int(raw.get("event_cache_ttl", defaults.event_cache_ttl)),
    )


def load_secrets() -> Secrets:
    """Collect credentials from the environment (call after ``load_dotenv``)."""
    return Secrets(
        discord_token=os.getenv("DISCORD_TOKEN") or None,
        application_id=os.getenv("DISCORD_APPLICATION_ID") or None,
        poap_api_key=os.getenv("POAP_API_KEY") or None,
        poap_client_id=os.getenv("POAP_CLIENT_ID") or None,
        poap_client_secret=os.getenv("POAP_CLIENT_SECRET") or None,
    )


def get_public_key() -> str | None:
    """Return the interaction verification key, read fresh on every call."""
    return os.getenv("DISCORD_PUBLIC_KEY") or None
