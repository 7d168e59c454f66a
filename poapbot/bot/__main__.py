"""
poapbot.bot.__main__ — Entry point for ``python -m poapbot.bot``
================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Create the PoapBot (which wires store, engines and event bus).
5. Start the bot (blocking; runs the asyncio event loop).
"""

from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv

from poapbot.bot.core import PoapBot
from poapbot.config import load_config, load_secrets
from poapbot.database.engine import create_db_engine, init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("poapbot")


def main() -> None:
    """Bootstrap and run the PoapBot gateway bot."""
    load_dotenv()

    secrets = load_secrets()
    if not secrets.discord_token or secrets.discord_token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    cfg = load_config()
    logger.info("Config loaded — Community: %s", cfg.community_name)

    engine = create_db_engine()
    init_db(engine)

    bot = PoapBot(cfg=cfg, engine=engine, secrets=secrets)

    logger.info("Starting PoapBot…")
    try:
        bot.run(secrets.discord_token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
