"""Request ledger — compute requests from creation to settlement.

The ledger owns request records and the per-requester nonces used to
derive identifiers. It enforces state, caller and deadline guards, and
keeps the oscillator's demand counter equal to the number of
non-terminal requests.

Like the registry, it never moves tokens. Operations that pay or pull
funds come in two halves: a check_* that raises on any failed guard,
and a mark_* the service calls after the escrow ledger has settled.

Time is an external marker (block timestamp). Guards compare against
the `now` supplied on each call; nothing is cached.
"""

from __future__ import annotations

from typing import Dict, Optional

from computemarket.crypto.ids import derive_request_id, to_bytes32
from computemarket.errors import (
    DeadlineExpired,
    DeadlineNotExpired,
    DisputeWindowExpired,
    InsufficientEscrow,
    InvalidParameter,
    NotProvider,
    NotRequester,
    RequestNotFound,
)
from computemarket.models.request import ComputeRequest, RequestStatus
from computemarket.policy.resolver import PolicyResolver
from computemarket.pricing.oscillator import PriceOscillator
from computemarket.requests.state_machine import RequestStateMachine


class RequestLedger:
    """Compute requests keyed by their content-derived identifier."""

    def __init__(self, resolver: PolicyResolver, oscillator: PriceOscillator) -> None:
        self._resolver = resolver
        self._params = resolver.params
        self._oscillator = oscillator
        self._requests: Dict[str, ComputeRequest] = {}
        self._nonces: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def quote_escrow(self, estimated_size: int, max_payment: int) -> int:
        """Escrow for a new request at the current price.

        The quote is price × size. The caller must be willing to pay at
        least the quote; escrow is the quote plus the buffer, capped at
        max_payment.
        """
        if estimated_size <= 0:
            raise InvalidParameter("estimated_size must be positive")
        quote = self._oscillator.estimate_cost(estimated_size)
        if max_payment < quote:
            raise InsufficientEscrow(
                f"max_payment {max_payment} below quoted cost {quote}"
            )
        return min(max_payment, self._resolver.buffered_escrow(quote))

    def draft(
        self,
        requester: str,
        workload_id: str,
        input_hash: str,
        estimated_size: int,
        max_payment: int,
        duration: int,
        now: int,
    ) -> ComputeRequest:
        """Validate a new request and build its record without storing it."""
        if duration <= 0 or duration > self._params.max_duration:
            raise InvalidParameter(
                f"duration must be within (0, {self._params.max_duration}], got {duration}"
            )
        to_bytes32(input_hash, "input_hash")
        escrow = self.quote_escrow(estimated_size, max_payment)

        request_id = derive_request_id(
            requester, self._nonces.get(requester, 0), now, input_hash,
        )
        if request_id in self._requests:
            raise InvalidParameter(f"Request ID collision: {request_id}")

        return ComputeRequest(
            request_id=request_id,
            requester=requester,
            escrow=escrow,
            estimated_size=estimated_size,
            created_at=now,
            deadline=now + duration,
            input_hash=input_hash,
            workload_id=workload_id,
        )

    def commit(self, request: ComputeRequest) -> ComputeRequest:
        """Store a drafted request once its escrow is locked."""
        if request.request_id in self._requests:
            raise InvalidParameter(f"Request ID collision: {request.request_id}")
        self._requests[request.request_id] = request
        self._nonces[request.requester] = self._nonces.get(request.requester, 0) + 1
        self._oscillator.increment_demand()
        return request

    # ------------------------------------------------------------------
    # Provider side
    # ------------------------------------------------------------------

    def check_accept(self, request_id: str, now: int) -> ComputeRequest:
        request = self.require(request_id)
        RequestStateMachine.require_status(request, RequestStatus.PENDING)
        if now > request.deadline:
            raise DeadlineExpired(f"Request {request_id} expired at {request.deadline}")
        return request

    def accept(self, request_id: str, provider: str, now: int) -> ComputeRequest:
        request = self.check_accept(request_id, now)
        RequestStateMachine.apply_transition(request, RequestStatus.ACTIVE)
        request.provider = provider
        request.accepted_at = now
        return request

    def check_submit(
        self,
        request_id: str,
        provider: str,
        result_hash: str,
        now: int,
    ) -> ComputeRequest:
        request = self.require(request_id)
        RequestStateMachine.require_status(request, RequestStatus.ACTIVE)
        if request.provider != provider:
            raise NotProvider(f"{provider} is not the provider of {request_id}")
        if now > request.deadline:
            raise DeadlineExpired(f"Request {request_id} expired at {request.deadline}")
        to_bytes32(result_hash, "result_hash")
        return request

    def submit_result(
        self,
        request_id: str,
        provider: str,
        result_hash: str,
        now: int,
    ) -> ComputeRequest:
        request = self.check_submit(request_id, provider, result_hash, now)
        RequestStateMachine.apply_transition(request, RequestStatus.COMPLETED)
        request.result_hash = result_hash
        request.submitted_at = now
        return request

    # ------------------------------------------------------------------
    # Requester side
    # ------------------------------------------------------------------

    def check_verify(self, request_id: str, requester: str) -> ComputeRequest:
        request = self.require(request_id)
        RequestStateMachine.require_status(request, RequestStatus.COMPLETED)
        self._require_requester(request, requester)
        return request

    def mark_verified(self, request_id: str, now: int) -> ComputeRequest:
        return self._settle(request_id, RequestStatus.VERIFIED, now)

    def dispute(self, request_id: str, requester: str, now: int) -> ComputeRequest:
        request = self.require(request_id)
        RequestStateMachine.require_status(request, RequestStatus.COMPLETED)
        self._require_requester(request, requester)
        window_end = request.deadline + self._params.dispute_window
        if now > window_end:
            raise DisputeWindowExpired(
                f"Dispute window for {request_id} closed at {window_end}"
            )
        RequestStateMachine.apply_transition(request, RequestStatus.DISPUTED)
        return request

    def check_cancel(self, request_id: str, requester: str) -> ComputeRequest:
        request = self.require(request_id)
        RequestStateMachine.require_status(request, RequestStatus.PENDING)
        self._require_requester(request, requester)
        return request

    def mark_cancelled(self, request_id: str, now: int) -> ComputeRequest:
        return self._settle(request_id, RequestStatus.CANCELLED, now)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def check_slash(self, request_id: str, now: int) -> ComputeRequest:
        request = self.require(request_id)
        RequestStateMachine.require_status(request, RequestStatus.ACTIVE)
        if now <= request.deadline:
            raise DeadlineNotExpired(
                f"Request {request_id} deadline {request.deadline} not yet passed"
            )
        return request

    def mark_slashed(self, request_id: str, now: int) -> ComputeRequest:
        return self._settle(request_id, RequestStatus.SLASHED, now)

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def check_disputed(self, request_id: str) -> ComputeRequest:
        request = self.require(request_id)
        RequestStateMachine.require_status(request, RequestStatus.DISPUTED)
        return request

    def mark_resolved(
        self,
        request_id: str,
        favor_requester: bool,
        now: int,
    ) -> ComputeRequest:
        target = RequestStatus.CANCELLED if favor_requester else RequestStatus.VERIFIED
        return self._settle(request_id, target, now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> Optional[ComputeRequest]:
        return self._requests.get(request_id)

    def require(self, request_id: str) -> ComputeRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFound(f"Request not found: {request_id}")
        return request

    def nonce_of(self, requester: str) -> int:
        return self._nonces.get(requester, 0)

    def requests(self, status: Optional[RequestStatus] = None) -> list[ComputeRequest]:
        if status is None:
            return list(self._requests.values())
        return [r for r in self._requests.values() if r.status == status]

    def open_count(self) -> int:
        return sum(1 for r in self._requests.values() if not r.is_terminal)

    def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for r in self._requests.values():
            counts[r.status.value] = counts.get(r.status.value, 0) + 1
        return counts

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _require_requester(request: ComputeRequest, caller: str) -> None:
        if request.requester != caller:
            raise NotRequester(f"{caller} is not the requester of {request.request_id}")

    def _settle(
        self,
        request_id: str,
        target: RequestStatus,
        now: int,
    ) -> ComputeRequest:
        request = self.require(request_id)
        RequestStateMachine.apply_transition(request, target)
        request.settled_at = now
        self._oscillator.decrement_demand()
        return request
