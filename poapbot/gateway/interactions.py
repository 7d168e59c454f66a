"""
poapbot.gateway.interactions — Interaction Gateway
===================================================

``handle(RawRequest) -> GatewayResponse`` for Discord's interactions
webhook.  The transport (FastAPI in :mod:`poapbot.api.main`) passes in the
method, headers and raw body, and sends back whatever status and JSON
body come out.  Only four non-200 outcomes exist:

* **405**  method other than POST
* **401**  missing signature headers, no verification key, bad signature
* **400**  malformed body, unknown interaction type, unknown command
* **500**  anything unexpected inside the gateway itself

Nothing happens before the signature checks out.  A PING gets a PONG and
nothing else.  A command runs as its own task through
:meth:`CommandDispatcher.run_command`,
the error boundary shared with the gateway bot; the HTTP reply is the
handler's first response if it arrives within ``response_deadline``,
otherwise a deferred acknowledgement, and the task keeps running either way.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from poapbot.config import get_public_key
from poapbot.exceptions import AuthenticationError, PoapBotError
from poapbot.gateway.commands import CommandServices, error_reply, is_admin
from poapbot.gateway.registry import CommandInvocation, CommandRegistry
from poapbot.gateway.responses import InteractionResponseType, Reply, ResponseSink, WebhookResponseSink
from poapbot.gateway.signature import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_request

logger = logging.getLogger(__name__)

PING = 1
APPLICATION_COMMAND = 2


@dataclass(frozen=True, slots=True)
class RawRequest:
    method: str
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


@dataclass(frozen=True, slots=True)
class GatewayResponse:
    status: int
    body: dict


SinkFactory = Callable[[Mapping], WebhookResponseSink]


# ---------------------------------------------------------------------------
# Error boundary shared by every transport
# ---------------------------------------------------------------------------
class CommandDispatcher:
    """Registry lookup, admin check and error translation for one command."""

    def __init__(self, registry: CommandRegistry, services: CommandServices) -> None:
        self.registry = registry
        self.services = services

    async def run_command(self, invocation: CommandInvocation, sink: ResponseSink) -> None:
        """Run one command; every failure becomes a user-visible reply."""
        spec = self.registry.get(invocation.name)
        if spec is None:
            await self._safe_respond(sink, Reply.text("❌ Command not found!"))
            return

        if spec.admin:
            if invocation.community_id is None:
                await self._safe_respond(sink, Reply.text("❌ This command can only be used in a server."))
                return
            if not is_admin(invocation, self.services.cfg):
                await self._safe_respond(sink, Reply.text(
                    "❌ You need the Manage Server permission to use this command."
                ))
                return

        logger.info("Executing /%s for user %d", invocation.name, invocation.user_id)
        try:
            await spec.handler(invocation, self.services, sink)
        except PoapBotError as exc:
            logger.warning("/%s failed for user %d: %s", invocation.name, invocation.user_id, exc)
            await self._safe_respond(sink, error_reply(exc))
        except Exception as exc:
            logger.exception("/%s crashed for user %d", invocation.name, invocation.user_id)
            await self._safe_respond(sink, error_reply(exc))

    @staticmethod
    async def _safe_respond(sink: ResponseSink, reply: Reply) -> None:
        try:
            await sink.respond(reply)
        except Exception:
            logger.exception("Could not deliver reply")


# ---------------------------------------------------------------------------
# Webhook gateway
# ---------------------------------------------------------------------------
class InteractionGateway:
    def __init__(
        self,
        dispatcher: CommandDispatcher,
        *,
        sink_factory: SinkFactory,
        public_key: Callable[[], str | None] = get_public_key,
        response_deadline: float = 2.5,
    ) -> None:
        self.dispatcher = dispatcher
        self.sink_factory = sink_factory
        self.public_key = public_key
        self.response_deadline = response_deadline
        self._tasks: set[asyncio.Task] = set()

    async def handle(self, request: RawRequest) -> GatewayResponse:
        if request.method.upper() != "POST":
            return GatewayResponse(405, {"error": "Method not allowed"})

        try:
            verify_request(
                request.body,
                request.header(SIGNATURE_HEADER),
                request.header(TIMESTAMP_HEADER),
                self.public_key(),
            )
        except AuthenticationError as exc:
            logger.warning("Rejected interaction: %s", exc)
            return GatewayResponse(401, {"error": "Invalid request signature"})

        try:
            payload = json.loads(request.body)
        except ValueError:
            return GatewayResponse(400, {"error": "Malformed interaction"})
        if not isinstance(payload, dict):
            return GatewayResponse(400, {"error": "Malformed interaction"})

        try:
            kind = payload.get("type")
            if kind == PING:
                return GatewayResponse(200, {"type": InteractionResponseType.PONG})
            if kind == APPLICATION_COMMAND:
                return await self._dispatch(payload)
            return GatewayResponse(400, {"error": "Unhandled interaction type"})
        except Exception:
            logger.exception("Interaction gateway failure")
            return GatewayResponse(500, {"error": "Internal server error"})

    async def _dispatch(self, payload: dict) -> GatewayResponse:
        try:
            invocation = CommandInvocation.from_interaction(payload)
        except (KeyError, TypeError, ValueError):
            return GatewayResponse(400, {"error": "Malformed interaction"})

        spec = self.dispatcher.registry.get(invocation.name)
        if spec is None:
            logger.warning("No command matching %s", invocation.name)
            return GatewayResponse(400, {"error": "Unhandled command"})

        try:
            sink = self.sink_factory(payload)
        except KeyError:
            return GatewayResponse(400, {"error": "Malformed interaction"})

        task = asyncio.create_task(self.dispatcher.run_command(invocation, sink))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        body = await sink.initial_response(self.response_deadline, ephemeral=spec.ephemeral)
        return GatewayResponse(200, body)

    async def drain(self) -> None:
        """Wait for command tasks still running (used at shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
