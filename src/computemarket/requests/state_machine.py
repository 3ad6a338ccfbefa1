"""Request state machine — enforces valid lifecycle transitions.

Request lifecycle:
    PENDING → ACTIVE → COMPLETED → VERIFIED | DISPUTED
    PENDING → CANCELLED
    ACTIVE → SLASHED
    DISPUTED → VERIFIED | CANCELLED

Fail-closed: any transition not in REQUEST_TRANSITIONS is rejected.
Terminal states (VERIFIED, CANCELLED, SLASHED) have no outgoing edges.
"""

from __future__ import annotations

from computemarket.errors import InvalidState
from computemarket.models.request import (
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    ComputeRequest,
    RequestStatus,
)


class RequestStateMachine:
    """Validates and applies request state transitions.

    Pure computation. Guards other than state (caller identity,
    deadlines) are checked by the request ledger.
    """

    @staticmethod
    def validate_transition(
        request: ComputeRequest,
        target: RequestStatus,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = request.status
        allowed = REQUEST_TRANSITIONS.get(current, frozenset())
        if target not in allowed:
            allowed_str = ", ".join(sorted(s.value for s in allowed))
            return [
                f"Invalid request transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def require_status(request: ComputeRequest, *expected: RequestStatus) -> None:
        """Raise InvalidState unless the request is in one of expected."""
        if request.status not in expected:
            raise InvalidState(
                request.request_id,
                expected[0] if len(expected) == 1 else frozenset(expected),
                request.status,
            )

    @staticmethod
    def apply_transition(request: ComputeRequest, target: RequestStatus) -> None:
        """Validate and apply a transition, raising InvalidState if illegal."""
        if RequestStateMachine.validate_transition(request, target):
            sources = frozenset(
                s for s, targets in REQUEST_TRANSITIONS.items() if target in targets
            )
            raise InvalidState(request.request_id, sources, request.status)
        request.status = target

    @staticmethod
    def is_terminal(status: RequestStatus) -> bool:
        return status in TERMINAL_STATUSES

    @staticmethod
    def valid_transitions(status: RequestStatus) -> set[RequestStatus]:
        return set(REQUEST_TRANSITIONS.get(status, frozenset()))
