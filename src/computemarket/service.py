"""Market service — unified facade for the compute market engine.

This is the primary interface for programmatic access to the market.
It coordinates all subsystems:
- Provider lifecycle (register, reprice, stake top-up and withdrawal)
- Request lifecycle (create, accept, submit, verify, dispute, cancel)
- Liveness enforcement (slashing providers that miss their deadline)
- Dispute resolution and fee administration (owner only)
- Price discovery (rate-limited oscillator ticks)

Every mutating call runs as a single serialized transaction: the
market lock is held for the whole call, all guards are checked before
any funds move, at most one token transfer is made, and only then are
the in-memory records updated. A rejected call raises a MarketError and
leaves balances, stake and records exactly as they were. A call made
from inside another call on the same thread (for example from a token
transfer callback) is rejected with ReentrantCall.

Time comes from an injected clock returning the current external time
marker (block timestamp). Deadlines are compared against it on every
call.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterator, Optional

from computemarket.crypto.ids import normalize_address, recover_result_signer
from computemarket.disputes.resolver import DisputeResolver
from computemarket.errors import (
    InvalidSignature,
    NotAdministrator,
    ReentrantCall,
)
from computemarket.escrow.ledger import EscrowLedger
from computemarket.escrow.token import TokenLedger
from computemarket.models.market import EscrowEntry, MarketStats
from computemarket.models.provider import PricingModel, Provider
from computemarket.models.request import ComputeRequest, RequestStatus
from computemarket.persistence.event_log import EventKind, EventLog, EventRecord
from computemarket.policy.resolver import PolicyResolver
from computemarket.pricing.oscillator import PriceOscillator
from computemarket.registry.providers import ProviderRegistry
from computemarket.registry.reputation import ReputationDelta, ReputationTracker
from computemarket.requests.ledger import RequestLedger
from computemarket.requests.state_machine import RequestStateMachine


logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def _system_clock() -> int:
    return int(time.time())


class MarketService:
    """Compute market facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        market = MarketService(resolver, token, market_address, owner)

        market.register_provider(provider, stake, "llama-70b", "att-1",
                                 PricingModel.PER_UNIT, 10, 0, 0, 4)
        request = market.create_request(requester, "llama-70b", input_hash,
                                        estimated_size=100,
                                        max_payment=10**18, duration=3600)
        market.accept_request(provider, request.request_id)
        market.submit_result(provider, request.request_id, result_hash)
        market.verify_and_release(requester, request.request_id)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        token: TokenLedger,
        market_address: str,
        owner: str,
        treasury: Optional[str] = None,
        clock: Optional[Clock] = None,
        event_log: Optional[EventLog] = None,
        initial_price: Optional[int] = None,
    ) -> None:
        self._resolver = resolver
        self._market_address = normalize_address(market_address)
        self._owner = normalize_address(owner)
        self._treasury = normalize_address(treasury) if treasury else self._owner
        self._clock: Clock = clock if clock is not None else _system_clock

        self._oscillator = PriceOscillator(resolver, self._clock(), initial_price)
        self._reputation = ReputationTracker(resolver)
        self._registry = ProviderRegistry(resolver, self._oscillator, self._reputation)
        self._requests = RequestLedger(resolver, self._oscillator)
        self._escrow = EscrowLedger(token, self._market_address)
        self._disputes = DisputeResolver(
            resolver, self._escrow, self._registry, self._requests,
        )

        self._event_log = event_log if event_log is not None else EventLog()
        # Continue numbering from a persisted log to avoid ID collisions
        self._event_counter = self._event_log.count

        self._lock = threading.RLock()
        self._active_thread: Optional[int] = None

        # Set when an event was committed in memory but could not be
        # written to the log file. State is correct; the file is stale.
        self._audit_degraded: bool = False

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def register_provider(
        self,
        caller: str,
        stake: int,
        workload_id: str,
        attestation_id: str,
        pricing_model: PricingModel | str,
        price_per_unit: int,
        price_per_call: int,
        price_per_second: int,
        max_concurrent_jobs: int,
    ) -> Provider:
        """Stake into the market and offer capacity for a workload."""
        address = normalize_address(caller)
        with self._transaction("register_provider") as now:
            model = self._registry.check_registration(
                address, stake, max_concurrent_jobs,
                (price_per_unit, price_per_call, price_per_second),
                pricing_model,
            )
            self._escrow.deposit_stake(address, stake)
            provider, created = self._registry.register(
                address, stake, workload_id, attestation_id, model,
                price_per_unit, price_per_call, price_per_second,
                max_concurrent_jobs, now,
            )
            self._emit(EventKind.PROVIDER_REGISTERED, address, now, {
                **provider.to_dict(),
                "provider": address,
                "created": created,
                "stake_added": stake,
                "supply": self._oscillator.state.supply,
            })
            self._tick(now)
            return replace(provider)

    def update_pricing(
        self,
        caller: str,
        pricing_model: PricingModel | str,
        price_per_unit: int,
        price_per_call: int,
        price_per_second: int,
    ) -> Provider:
        """Change a provider's advertised prices. No funds move."""
        address = normalize_address(caller)
        with self._transaction("update_pricing") as now:
            provider = self._registry.update_pricing(
                address, pricing_model, price_per_unit, price_per_call, price_per_second,
            )
            self._emit(EventKind.PROVIDER_UPDATED, address, now, {
                "provider": address,
                "pricing_model": provider.pricing_model.value,
                "price_per_unit": price_per_unit,
                "price_per_call": price_per_call,
                "price_per_second": price_per_second,
            })
            return replace(provider)

    def add_stake(self, caller: str, amount: int) -> Provider:
        address = normalize_address(caller)
        with self._transaction("add_stake") as now:
            self._registry.check_add_stake(address, amount)
            self._escrow.deposit_stake(address, amount)
            provider = self._registry.add_stake(address, amount)
            self._emit(EventKind.STAKE_ADDED, address, now, {
                "provider": address,
                "amount": amount,
                "stake": provider.stake,
            })
            return replace(provider)

    def withdraw_stake(self, caller: str, amount: int) -> Provider:
        """Withdraw stake. Only allowed with no jobs in flight.

        Dropping below the minimum stake deactivates the provider and
        removes its capacity from supply.
        """
        address = normalize_address(caller)
        with self._transaction("withdraw_stake") as now:
            self._registry.check_withdrawal(address, amount)
            self._escrow.return_stake(address, amount)
            provider, deactivated = self._registry.withdraw_stake(address, amount)
            self._emit(EventKind.STAKE_WITHDRAWN, address, now, {
                "provider": address,
                "amount": amount,
                "stake": provider.stake,
            })
            if deactivated:
                self._emit_deactivated(provider, "stake_withdrawn", now)
                self._tick(now)
            return replace(provider)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def create_request(
        self,
        caller: str,
        workload_id: str,
        input_hash: str,
        estimated_size: int,
        max_payment: int,
        duration: int,
    ) -> ComputeRequest:
        """Open a compute request, locking its escrow at the current price."""
        address = normalize_address(caller)
        with self._transaction("create_request") as now:
            request = self._requests.draft(
                address, workload_id, input_hash, estimated_size,
                max_payment, duration, now,
            )
            self._escrow.lock(request.request_id, address, request.escrow)
            self._requests.commit(request)
            self._emit(EventKind.REQUEST_CREATED, address, now, {
                **request.to_dict(),
                "price": self._oscillator.price,
                "nonce": self._requests.nonce_of(address) - 1,
                "demand": self._oscillator.state.demand,
            })
            self._tick(now)
            return replace(request)

    def accept_request(self, caller: str, request_id: str) -> ComputeRequest:
        """Take a pending request as its provider."""
        address = normalize_address(caller)
        with self._transaction("accept_request") as now:
            self._requests.check_accept(request_id, now)
            self._registry.require_accepting(address)
            request = self._requests.accept(request_id, address, now)
            provider = self._registry.assign_job(address)
            self._emit(EventKind.REQUEST_ASSIGNED, address, now, {
                "request_id": request_id,
                "provider": address,
                "current_jobs": provider.current_jobs,
                "max_concurrent_jobs": provider.max_concurrent_jobs,
            })
            return replace(request)

    def submit_result(
        self,
        caller: str,
        request_id: str,
        result_hash: str,
    ) -> ComputeRequest:
        """Record the provider's result before the deadline."""
        address = normalize_address(caller)
        with self._transaction("submit_result") as now:
            request = self._requests.submit_result(request_id, address, result_hash, now)
            self._emit_result(request, address, relayer=None, now=now)
            return replace(request)

    def submit_signed_result(
        self,
        caller: str,
        request_id: str,
        result_hash: str,
        signature: str,
    ) -> ComputeRequest:
        """Relay a result signed off-chain by the assigned provider."""
        relayer = normalize_address(caller)
        with self._transaction("submit_signed_result") as now:
            request = self._requests.require(request_id)
            RequestStateMachine.require_status(request, RequestStatus.ACTIVE)
            signer = recover_result_signer(request_id, result_hash, signature)
            if signer != request.provider:
                raise InvalidSignature(
                    f"Result for {request_id} signed by {signer}, "
                    f"expected provider {request.provider}"
                )
            request = self._requests.submit_result(request_id, signer, result_hash, now)
            self._emit_result(request, signer, relayer=relayer, now=now)
            return replace(request)

    def verify_and_release(self, caller: str, request_id: str) -> ComputeRequest:
        """Accept the result and pay the provider net of the market fee."""
        address = normalize_address(caller)
        with self._transaction("verify_and_release") as now:
            request = self._requests.check_verify(request_id, address)
            fee = self._resolver.fee_for(request.escrow)
            entry = self._escrow.release(request_id, request.provider, fee, now=now)
            delta = self._registry.record_success(
                request.provider, entry.paid_to_provider, f"verified:{request_id}",
            )
            self._requests.mark_verified(request_id, now)
            self._emit(EventKind.REQUEST_VERIFIED, address, now, {
                "request_id": request_id,
                "requester": address,
                "provider": request.provider,
                "escrow": entry.amount,
                "paid_to_provider": entry.paid_to_provider,
                "fee": entry.fee,
                **self._reputation_payload(delta),
                "demand": self._oscillator.state.demand,
            })
            self._tick(now)
            return replace(request)

    def dispute(self, caller: str, request_id: str) -> ComputeRequest:
        """Contest a submitted result within the dispute window."""
        address = normalize_address(caller)
        with self._transaction("dispute") as now:
            request = self._requests.dispute(request_id, address, now)
            self._emit(EventKind.REQUEST_DISPUTED, address, now, {
                "request_id": request_id,
                "requester": address,
                "provider": request.provider,
                "result_hash": request.result_hash,
                "escrow": request.escrow,
            })
            return replace(request)

    def cancel_request(self, caller: str, request_id: str) -> ComputeRequest:
        """Withdraw a request nobody has accepted yet. Full refund."""
        address = normalize_address(caller)
        with self._transaction("cancel_request") as now:
            request = self._requests.check_cancel(request_id, address)
            entry = self._escrow.refund(request_id, now=now)
            self._requests.mark_cancelled(request_id, now)
            self._emit(EventKind.REQUEST_CANCELLED, address, now, {
                "request_id": request_id,
                "requester": address,
                "refunded": entry.paid_to_requester,
                "demand": self._oscillator.state.demand,
            })
            self._tick(now)
            return replace(request)

    def slash_provider(self, caller: str, request_id: str) -> ComputeRequest:
        """Penalise a provider that let an accepted request pass its deadline.

        Callable by anyone. The requester receives the full escrow plus
        the slashed stake.
        """
        address = normalize_address(caller)
        with self._transaction("slash_provider") as now:
            request = self._requests.check_slash(request_id, now)
            provider_address = request.provider
            penalty = self._registry.slash_amount(provider_address)
            entry = self._escrow.refund(request_id, penalty=penalty, now=now)
            delta, deactivated = self._registry.slash(
                provider_address, penalty, f"slashed:{request_id}",
            )
            self._requests.mark_slashed(request_id, now)
            provider = self._registry.require(provider_address)
            self._emit(EventKind.PROVIDER_SLASHED, address, now, {
                "request_id": request_id,
                "provider": provider_address,
                "requester": request.requester,
                "slashed_by": address,
                "escrow": entry.amount,
                "penalty": penalty,
                "refunded": entry.amount + penalty,
                "stake": provider.stake,
                **self._reputation_payload(delta),
                "demand": self._oscillator.state.demand,
            })
            logger.info(
                "Slashed provider %s by %d on request %s",
                provider_address, penalty, request_id,
            )
            if deactivated:
                self._emit_deactivated(provider, "slashed", now)
            self._tick(now)
            return replace(request)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def resolve_dispute(
        self,
        caller: str,
        request_id: str,
        favor_requester: bool,
    ) -> ComputeRequest:
        address = normalize_address(caller)
        with self._transaction("resolve_dispute") as now:
            self._require_owner(address)
            outcome = self._disputes.resolve(request_id, favor_requester, now)
            self._emit(EventKind.DISPUTE_RESOLVED, address, now, {
                "request_id": request_id,
                "requester": outcome.requester,
                "provider": outcome.provider,
                "favor_requester": favor_requester,
                "status": self._requests.require(request_id).status.value,
                "escrow": outcome.escrow,
                "paid_to_provider": outcome.paid_to_provider,
                "refunded_to_requester": outcome.refunded_to_requester,
                "fee": outcome.fee,
                **self._reputation_payload(outcome.reputation),
                "demand": self._oscillator.state.demand,
            })
            logger.info(
                "Dispute %s resolved in favour of %s",
                request_id, "requester" if favor_requester else "provider",
            )
            self._tick(now)
            return replace(self._requests.require(request_id))

    def withdraw_fees(self, caller: str) -> int:
        """Pay all accrued fees to the treasury. Returns the amount."""
        address = normalize_address(caller)
        with self._transaction("withdraw_fees") as now:
            self._require_owner(address)
            amount = self._escrow.withdraw_fees(self._treasury)
            self._emit(EventKind.FEES_WITHDRAWN, address, now, {
                "treasury": self._treasury,
                "amount": amount,
            })
            logger.info("Withdrew %d in fees to %s", amount, self._treasury)
            return amount

    def set_treasury(self, caller: str, treasury: str) -> str:
        address = normalize_address(caller)
        new_treasury = normalize_address(treasury)
        with self._transaction("set_treasury") as now:
            self._require_owner(address)
            previous = self._treasury
            self._treasury = new_treasury
            self._emit(EventKind.TREASURY_UPDATED, address, now, {
                "previous": previous,
                "treasury": new_treasury,
            })
            return new_treasury

    def update_market(self) -> Optional[MarketStats]:
        """Advance the price oscillator if an update is due. Callable by anyone."""
        with self._transaction("update_market") as now:
            return self._tick(now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_provider(self, address: str) -> Optional[Provider]:
        with self._lock:
            provider = self._registry.get(normalize_address(address))
            return replace(provider) if provider is not None else None

    def get_request(self, request_id: str) -> Optional[ComputeRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            return replace(request) if request is not None else None

    def get_escrow(self, request_id: str) -> Optional[EscrowEntry]:
        with self._lock:
            entry = self._escrow.get_entry(request_id)
            return replace(entry) if entry is not None else None

    def current_price(self) -> int:
        with self._lock:
            return self._oscillator.price

    def market_stats(self) -> MarketStats:
        with self._lock:
            return self._oscillator.stats()

    def estimate_cost(self, estimated_size: int) -> int:
        with self._lock:
            return self._oscillator.estimate_cost(estimated_size)

    def quote_escrow(self, estimated_size: int, max_payment: int) -> int:
        """Escrow a request of this size would lock right now."""
        with self._lock:
            return self._requests.quote_escrow(estimated_size, max_payment)

    def provider_count(self) -> int:
        with self._lock:
            return self._registry.count

    def list_providers(
        self,
        active_only: bool = False,
        workload_id: Optional[str] = None,
    ) -> list[Provider]:
        with self._lock:
            return [replace(p) for p in self._registry.providers(active_only, workload_id)]

    def find_providers(
        self,
        workload_id: str,
        estimated_size: int = 0,
        duration: int = 0,
        limit: int = 10,
    ) -> list[Provider]:
        """Active providers with spare capacity, best reputation first."""
        with self._lock:
            return [
                replace(p) for p in self._registry.find_available(
                    workload_id, estimated_size, duration, limit,
                )
            ]

    def list_requests(self, status: Optional[RequestStatus] = None) -> list[ComputeRequest]:
        with self._lock:
            return [replace(r) for r in self._requests.requests(status)]

    @property
    def accrued_fees(self) -> int:
        with self._lock:
            return self._escrow.accrued_fees

    @property
    def treasury(self) -> str:
        return self._treasury

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def market_address(self) -> str:
        return self._market_address

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def status(self) -> dict[str, Any]:
        """Return a market-wide status summary."""
        with self._lock:
            stats = self._oscillator.stats()
            return {
                "providers": {
                    "total": self._registry.count,
                    "active": self._registry.active_count,
                },
                "requests": {
                    "total": len(self._requests.requests()),
                    "open": self._requests.open_count(),
                    "by_status": self._requests.count_by_status(),
                },
                "market": {
                    "supply": stats.supply,
                    "demand": stats.demand,
                    "equilibrium_price": stats.equilibrium_price,
                    "price_velocity": stats.price_velocity,
                    "utilization_bps": stats.utilization_bps,
                    "last_update": stats.last_update,
                },
                "custody": {
                    "total_staked": self._escrow.total_staked,
                    "total_escrowed": self._escrow.total_escrowed,
                    "accrued_fees": self._escrow.accrued_fees,
                },
                "events": self._event_log.count,
                "audit_degraded": self._audit_degraded,
            }

    def check_invariants(self) -> list[str]:
        """Audit the market's conservation and bound invariants.

        Returns a list of violations. Empty means the market is sound.
        """
        params = self._resolver.params
        errors: list[str] = []
        with self._lock:
            state = self._oscillator.state
            if not params.price_floor <= state.equilibrium_price <= params.price_cap:
                errors.append(f"Price {state.equilibrium_price} outside bounds")
            if state.demand != self._requests.open_count():
                errors.append(
                    f"Demand {state.demand} != open requests {self._requests.open_count()}"
                )
            supply = sum(
                p.max_concurrent_jobs for p in self._registry.providers(active_only=True)
            )
            if state.supply != supply:
                errors.append(f"Supply {state.supply} != active capacity {supply}")

            staked = 0
            for p in self._registry.providers():
                staked += p.stake
                if p.current_jobs > p.max_concurrent_jobs:
                    errors.append(f"Provider {p.address} over capacity")
                if not 0 <= p.reputation <= params.reputation_max:
                    errors.append(f"Provider {p.address} reputation out of bounds")
                if p.active and p.stake < params.min_stake:
                    errors.append(f"Provider {p.address} active below minimum stake")
            if staked != self._escrow.total_staked:
                errors.append(
                    f"Provider stakes {staked} != staked custody {self._escrow.total_staked}"
                )

            locked = 0
            for request in self._requests.requests():
                entry = self._escrow.get_entry(request.request_id)
                if entry is None:
                    errors.append(f"Request {request.request_id} has no escrow entry")
                    continue
                if request.is_terminal:
                    if entry.settled_total != entry.amount:
                        errors.append(
                            f"Request {request.request_id} settled "
                            f"{entry.settled_total} of {entry.amount}"
                        )
                else:
                    locked += entry.amount
            if locked != self._escrow.total_escrowed:
                errors.append(
                    f"Open escrow {locked} != escrowed custody {self._escrow.total_escrowed}"
                )
        return errors

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[int]:
        """Serialize a mutating call and reject re-entry from the same thread."""
        if self._active_thread == threading.get_ident():
            raise ReentrantCall(f"{operation} called during another market operation")
        with self._lock:
            self._active_thread = threading.get_ident()
            try:
                yield self._clock()
            finally:
                self._active_thread = None

    def _require_owner(self, address: str) -> None:
        if address != self._owner:
            raise NotAdministrator(f"{address} is not the market administrator")

    def _tick(self, now: int) -> Optional[MarketStats]:
        stats = self._oscillator.maybe_update(now)
        if stats is not None:
            self._emit(EventKind.MARKET_STATE_UPDATED, self._market_address, now, {
                "supply": stats.supply,
                "demand": stats.demand,
                "equilibrium_price": stats.equilibrium_price,
                "price_velocity": stats.price_velocity,
                "utilization_bps": stats.utilization_bps,
            })
            logger.debug(
                "Market repriced to %d (utilization %d bps)",
                stats.equilibrium_price, stats.utilization_bps,
            )
        return stats

    def _emit_result(
        self,
        request: ComputeRequest,
        provider: str,
        relayer: Optional[str],
        now: int,
    ) -> None:
        self._emit(EventKind.RESULT_SUBMITTED, provider, now, {
            "request_id": request.request_id,
            "provider": provider,
            "result_hash": request.result_hash,
            "relayer": relayer,
        })

    def _emit_deactivated(self, provider: Provider, reason: str, now: int) -> None:
        self._emit(EventKind.PROVIDER_DEACTIVATED, provider.address, now, {
            "provider": provider.address,
            "reason": reason,
            "stake": provider.stake,
            "capacity_removed": provider.max_concurrent_jobs,
            "supply": self._oscillator.state.supply,
        })
        logger.info("Provider %s deactivated (%s)", provider.address, reason)

    @staticmethod
    def _reputation_payload(delta: ReputationDelta) -> dict[str, int]:
        return {
            "reputation_before": delta.previous,
            "reputation_after": delta.current,
        }

    def _next_event_id(self) -> str:
        """Generate the next increasing event ID not already in the log.

        A loaded or shared log may hold IDs beyond its count, so taken
        IDs are skipped rather than assumed contiguous.
        """
        while True:
            self._event_counter += 1
            event_id = f"EVT-{self._event_counter:08d}"
            if not self._event_log.contains(event_id):
                return event_id

    def _emit(
        self,
        kind: EventKind,
        actor: str,
        now: int,
        payload: dict[str, Any],
    ) -> EventRecord:
        """Append an event for a transition that has already been applied.

        The transition is committed; a failed write cannot undo it. A
        file error leaves the event in memory only; a rejected append
        (an ID taken by another writer) leaves it unrecorded. Either way
        the market is flagged as audit-degraded for operator attention.
        """
        event = EventRecord.create(
            event_id=self._next_event_id(),
            event_kind=kind,
            actor=actor,
            payload=payload,
            timestamp=now,
        )
        try:
            self._event_log.append(event)
        except (OSError, ValueError) as e:
            self._audit_degraded = True
            logger.error("Event log write failed for %s: %s", event.event_id, e)
        return event
