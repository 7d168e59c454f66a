"""
poapbot.api.main — FastAPI application entry point
===================================================

Serves Discord's interactions webhook.  Point the application's
"Interactions Endpoint URL" at ``https://<host>/api/interactions``.

Run with::

    uvicorn poapbot.api.main:app --port 8000

or ``poapbot-api``, which reads the port from ``config.yaml``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

load_dotenv()

from poapbot import __version__  # noqa: E402
from poapbot.api.deps import get_config, get_context, get_discord_http, get_gateway  # noqa: E402
from poapbot.gateway.interactions import InteractionGateway, RawRequest  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: connect name providers, drain on exit."""
    ctx = get_context()
    await ctx.start()
    logger.info("PoapBot API started (%s)", ctx.cfg.community_name)
    yield
    await get_gateway().drain()
    await ctx.close()
    await get_discord_http().aclose()
    logger.info("PoapBot API shutting down")


app = FastAPI(
    title="PoapBot Interactions API",
    version=__version__,
    lifespan=lifespan,
)


@app.api_route("/api/interactions", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def interactions(
    request: Request,
    gateway: InteractionGateway = Depends(get_gateway),
):
    """Discord interactions webhook."""
    result = await gateway.handle(RawRequest(
        method=request.method,
        body=await request.body(),
        headers=dict(request.headers),
    ))
    return JSONResponse(result.body, status_code=result.status)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__}


def main() -> None:
    """Serve the webhook on ``api_port`` from ``config.yaml``."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )
    uvicorn.run(app, host="0.0.0.0", port=get_config().api_port, log_config=None)
