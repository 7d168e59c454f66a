"""
poapbot.api.deps — FastAPI dependency injection
================================================

Process-wide singletons for the webhook deployment, built lazily on first
use and cached for the life of the process.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from functools import lru_cache

import httpx
from sqlalchemy import Engine

from poapbot.bootstrap import AppContext, build_context
from poapbot.config import PoapBotConfig, load_config, load_secrets
from poapbot.database.engine import create_db_engine
from poapbot.gateway.interactions import InteractionGateway
from poapbot.gateway.responses import WebhookResponseSink
from poapbot.gateway.rest import RestPlatform


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> PoapBotConfig:
    return load_config(os.getenv("POAPBOT_CONFIG", "config.yaml"))


@lru_cache(maxsize=1)
def get_discord_http() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=10)


@lru_cache(maxsize=1)
def get_context() -> AppContext:
    secrets = load_secrets()
    platform = (
        RestPlatform(secrets.discord_token, get_discord_http())
        if secrets.discord_token
        else None
    )
    return build_context(get_config(), get_engine(), secrets, platform=platform)


@lru_cache(maxsize=1)
def get_gateway() -> InteractionGateway:
    ctx = get_context()
    http = get_discord_http()
    fallback_app_id = load_secrets().application_id

    def sink_factory(payload: Mapping) -> WebhookResponseSink:
        return WebhookResponseSink(
            application_id=str(payload.get("application_id") or fallback_app_id),
            token=payload["token"],
            http=http,
        )

    return InteractionGateway(
        ctx.dispatcher,
        sink_factory=sink_factory,
        response_deadline=ctx.cfg.response_deadline,
    )
