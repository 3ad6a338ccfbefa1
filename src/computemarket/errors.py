"""Typed rejections raised by the compute market.

Every error is a precondition failure: the operation that raised it made
no state change and moved no funds. Callers fix their inputs and retry;
nothing inside the engine retries on their behalf.
"""

from __future__ import annotations

from typing import Any, Optional


class MarketError(ValueError):
    """Base class for all market rejections."""


class InsufficientStake(MarketError):
    """Stake below the registration minimum, or withdrawal above the stake."""


class NotRegistered(MarketError):
    """Caller is not a registered provider."""


class NotActive(MarketError):
    """Provider is registered but deactivated."""


class AtCapacity(MarketError):
    """Provider already runs its maximum number of concurrent jobs."""


class ActiveJobs(MarketError):
    """Stake cannot be withdrawn while the provider has jobs in flight."""


class RequestNotFound(MarketError):
    """No request with the given identifier."""


class InvalidState(MarketError):
    """Request is not in the state the operation requires."""

    def __init__(self, request_id: str, expected: Any, actual: Any) -> None:
        self.request_id = request_id
        self.expected = expected
        self.actual = actual
        expected_str = (
            ", ".join(sorted(s.value for s in expected))
            if isinstance(expected, (set, frozenset, tuple, list))
            else expected.value
        )
        super().__init__(
            f"Request {request_id}: expected state [{expected_str}], "
            f"got {actual.value}"
        )


class NotRequester(MarketError):
    """Caller is not the requester of this request."""


class NotProvider(MarketError):
    """Caller is not the provider assigned to this request."""


class NotAdministrator(MarketError):
    """Caller is not the market administrator."""


class DeadlineExpired(MarketError):
    """The request deadline has already passed."""


class DeadlineNotExpired(MarketError):
    """The request deadline has not passed yet."""


class DisputeWindowExpired(MarketError):
    """The dispute window after the deadline has closed."""


class InsufficientEscrow(MarketError):
    """Caller's maximum payment does not cover the quoted cost."""


class InvalidSignature(MarketError):
    """Signed work proof was not produced by the assigned provider."""


class ZeroAddress(MarketError):
    """An address argument is the zero address."""


class InvalidParameter(MarketError):
    """An argument is malformed or out of range."""


class TransferFailed(MarketError):
    """The payment token refused a transfer.

    tx_hash is set when a transaction was broadcast but its outcome is
    unknown, so the transfer can be reconciled against the chain later.
    """

    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class ReentrantCall(MarketError):
    """A market operation was invoked from inside another market operation."""
