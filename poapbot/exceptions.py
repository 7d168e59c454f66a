"""
poapbot.exceptions — Error Taxonomy
====================================

Every failure the entitlement engine can surface has a class here.
Command handlers translate these into user-facing messages; background
flows log them.
"""

from __future__ import annotations


class PoapBotError(Exception):
    """Base class for all PoapBot errors."""


class AuthenticationError(PoapBotError):
    """Inbound request signature or verification key is missing or invalid."""


class InvalidInputError(PoapBotError):
    """User-supplied value matches none of the accepted shapes."""


class ResolutionError(PoapBotError):
    """Name lookup timed out, failed, or is unavailable."""


class IssuanceAPIError(PoapBotError):
    """Non-success response (or transport failure) from the badge service."""

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(f"Issuance API error {status}: {message}")
        self.status = status
        self.message = message

    @property
    def not_found(self) -> bool:
        return self.status == 404


class IssuanceTimeoutError(IssuanceAPIError):
    """The badge service did not answer within the request timeout."""

    def __init__(self, message: str = "request timed out") -> None:
        super().__init__(None, message)


class ExhaustedSupplyError(PoapBotError):
    """No claim links remain for an event."""

    def __init__(self, event_id: int) -> None:
        super().__init__(f"No claim links remain for event {event_id}")
        self.event_id = event_id


class BadgeLookupError(PoapBotError, LookupError):
    """Badge ownership could not be fetched for reconciliation."""


class StoreError(PoapBotError):
    """Persistence layer unreachable or a constraint was violated."""


class DuplicateDistributionError(StoreError):
    """A non-failed distribution already exists for this rule and user."""


class ClaimTokenTakenError(DuplicateDistributionError):
    """The claim token is held by another live distribution."""
