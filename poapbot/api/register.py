"""
poapbot.api.register — Slash-command registration
==================================================

PUTs the command registry's definitions to Discord, replacing whatever
was registered before.  Global by default; scoped to ``DEV_GUILD_ID``
(or ``--guild``) for instant updates while developing.

Run with::

    python -m poapbot.api.register [--guild 123456789]
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

import httpx
from dotenv import load_dotenv

from poapbot.gateway.commands import build_registry
from poapbot.gateway.responses import DISCORD_API

logger = logging.getLogger("poapbot.register")


def commands_url(application_id: str, guild_id: str | None = None) -> str:
    if guild_id:
        return f"{DISCORD_API}/applications/{application_id}/guilds/{guild_id}/commands"
    return f"{DISCORD_API}/applications/{application_id}/commands"


def register_commands(
    token: str,
    application_id: str,
    guild_id: str | None = None,
    *,
    client: httpx.Client | None = None,
) -> list[dict]:
    """Replace the application's commands; returns Discord's echo."""
    definitions = build_registry().to_application_commands()
    http = client or httpx.Client(timeout=15)
    try:
        resp = http.put(
            commands_url(application_id, guild_id),
            json=definitions,
            headers={"Authorization": f"Bot {token}"},
        )
        resp.raise_for_status()
        return resp.json()
    finally:
        if client is None:
            http.close()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )
    load_dotenv()

    parser = argparse.ArgumentParser(description="Register PoapBot slash commands")
    parser.add_argument("--guild", default=os.getenv("DEV_GUILD_ID"), help="Register to one guild only")
    args = parser.parse_args(argv)

    token = os.getenv("DISCORD_TOKEN")
    application_id = os.getenv("DISCORD_APPLICATION_ID")
    if not token or not application_id:
        logger.critical("DISCORD_TOKEN and DISCORD_APPLICATION_ID must be set (see .env.example).")
        return 1

    try:
        registered = register_commands(token, application_id, args.guild)
    except httpx.HTTPError as exc:
        logger.error("Registration failed: %s", exc)
        return 1

    scope = f"guild {args.guild}" if args.guild else "globally"
    logger.info("Registered %d commands %s", len(registered), scope)
    for command in registered:
        logger.info("  /%s", command.get("name"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
