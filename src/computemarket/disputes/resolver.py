"""Dispute resolver — administrator rulings on contested results.

A requester who rejects a submitted result moves the request to
DISPUTED. The market administrator then rules one way or the other:

    favor_requester=True   full escrow refunded, provider reputation
                           penalised, request → CANCELLED
    favor_requester=False  provider paid net of fee exactly as on normal
                           verification, reputation rewarded,
                           request → VERIFIED

Either way the provider's job slot, the demand counter and the escrow
total are released. Authorization is enforced by the service layer.
"""

from __future__ import annotations

from dataclasses import dataclass

from computemarket.escrow.ledger import EscrowLedger
from computemarket.policy.resolver import PolicyResolver
from computemarket.registry.providers import ProviderRegistry
from computemarket.registry.reputation import ReputationDelta
from computemarket.requests.ledger import RequestLedger


@dataclass(frozen=True)
class DisputeOutcome:
    """Result of a dispute ruling."""
    request_id: str
    requester: str
    provider: str
    favor_requester: bool
    escrow: int
    paid_to_provider: int
    refunded_to_requester: int
    fee: int
    reputation: ReputationDelta


class DisputeResolver:
    """Settles DISPUTED requests.

    Usage:
        resolver = DisputeResolver(policy, escrow, registry, requests)
        outcome = resolver.resolve(request_id, favor_requester=True, now=now)
    """

    def __init__(
        self,
        policy: PolicyResolver,
        escrow: EscrowLedger,
        registry: ProviderRegistry,
        requests: RequestLedger,
    ) -> None:
        self._policy = policy
        self._escrow = escrow
        self._registry = registry
        self._requests = requests

    def resolve(
        self,
        request_id: str,
        favor_requester: bool,
        now: int,
    ) -> DisputeOutcome:
        request = self._requests.check_disputed(request_id)
        provider = request.provider
        self._registry.require(provider)

        if favor_requester:
            entry = self._escrow.refund(request_id, now=now)
            delta = self._registry.record_failure(
                provider, f"dispute_lost:{request_id}",
            )
        else:
            entry = self._escrow.release(
                request_id, provider, self._policy.fee_for(request.escrow), now=now,
            )
            delta = self._registry.record_success(
                provider, entry.paid_to_provider, f"dispute_won:{request_id}",
            )
        self._requests.mark_resolved(request_id, favor_requester, now)

        return DisputeOutcome(
            request_id=request_id,
            requester=request.requester,
            provider=provider,
            favor_requester=favor_requester,
            escrow=entry.amount,
            paid_to_provider=entry.paid_to_provider,
            refunded_to_requester=entry.paid_to_requester,
            fee=entry.fee,
            reputation=delta,
        )
