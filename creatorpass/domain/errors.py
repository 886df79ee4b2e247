"""Error taxonomy shared by the entitlement services and the HTTP surface."""

from __future__ import annotations


class EntitlementError(Exception):
    """Base class for every failure the engine reports to its callers.

    ``message`` is safe to show to an end user: it never carries gateway
    identifiers.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidArgument(EntitlementError):
    """Bad tier, cycle, identifier or payload. Not retryable."""


class NotFound(EntitlementError):
    """Unknown creator, account or subscription."""


class Conflict(EntitlementError):
    """The request clashes with an existing subscription."""


class Forbidden(EntitlementError):
    """The principal is not allowed to perform an administrative operation."""


class SubscriptionRequired(EntitlementError):
    """Access denial: no current subscription to the content owner."""


class TierInsufficient(EntitlementError):
    """Access denial: the subscription tier is below the required tier."""


class GatewayUnavailable(EntitlementError):
    """The payment gateway timed out or could not be reached. Retryable."""


class SignatureInvalid(EntitlementError):
    """A webhook delivery failed signature verification."""


class EventDeferred(EntitlementError):
    """A gateway event refers to a record that does not exist yet.

    The event is left unprocessed so the sender redelivers it later.
    """


class VersionConflict(Exception):
    """Compare-and-swap failed because the record changed underneath."""


class LedgerViolation(Exception):
    """A write attempted to rewrite or drop a persisted ledger entry."""
