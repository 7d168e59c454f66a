"""
poapbot.gateway.signature — Ed25519 request verification
=========================================================

Discord signs every interaction webhook with Ed25519 over
``timestamp || raw_body``.  :func:`verify_request` checks the pair of
headers against the application's public key and raises
:class:`~poapbot.exceptions.AuthenticationError` on any problem.
"""

from __future__ import annotations

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from poapbot.exceptions import AuthenticationError

SIGNATURE_HEADER = "x-signature-ed25519"
TIMESTAMP_HEADER = "x-signature-timestamp"


def verify_request(
    body: bytes,
    signature: str | None,
    timestamp: str | None,
    public_key: str | None,
) -> None:
    """Raise :class:`AuthenticationError` unless *signature* is valid."""
    if not signature or not timestamp:
        raise AuthenticationError("Missing signature headers")
    if not public_key:
        raise AuthenticationError("Verification key is not configured")

    try:
        key = VerifyKey(bytes.fromhex(public_key))
        key.verify(timestamp.encode() + body, bytes.fromhex(signature))
    except (BadSignatureError, ValueError, TypeError) as exc:
        raise AuthenticationError("Invalid request signature") from exc
