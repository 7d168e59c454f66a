"""
poapbot.constants — Shared Constants & Helpers
================================================

Single source of truth for identifier patterns, embed colours and small
display helpers.  Import from here instead of duplicating in handlers,
cogs and services.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Identifier patterns
# ---------------------------------------------------------------------------
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
CANONICAL_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")

# Dotted human-readable names (vitalik.eth, pay.vitalik.eth)
NAME_RE = re.compile(r"^(?:[a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}$")
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 255

# ---------------------------------------------------------------------------
# Discord permission bits & interaction flags
# ---------------------------------------------------------------------------
PERMISSION_ADMINISTRATOR = 1 << 3
PERMISSION_MANAGE_GUILD = 1 << 5
PERMISSION_VIEW_CHANNEL = 1 << 10
PERMISSION_SEND_MESSAGES = 1 << 11
PERMISSION_READ_MESSAGE_HISTORY = 1 << 16

CHANNEL_GRANT_BITS = (
    PERMISSION_VIEW_CHANNEL | PERMISSION_SEND_MESSAGES | PERMISSION_READ_MESSAGE_HISTORY
)

EPHEMERAL_FLAG = 1 << 6

# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------
COLOR_BRAND = 0x6C5CE7
COLOR_SUCCESS = 0x00FF00
COLOR_WARNING = 0xFFA500
COLOR_DANGER = 0xFF0000

TRIGGER_DISPLAY: dict[str, str] = {
    "member_join": "\U0001f44b Member Join",      # 👋
    "reaction_add": "\u2b50 Reaction Added",      # ⭐
    "message_sent": "\U0001f4ac Message Sent",    # 💬
}

MAX_LISTED = 10  # Embed size guard for list views


def shorten_address(address: str) -> str:
    """``0xd8da6bf2…6045`` style display form for a wallet address."""
    return f"{address[:6]}...{address[-4:]}"


def trigger_display_name(trigger: str) -> str:
    return TRIGGER_DISPLAY.get(trigger, trigger)
