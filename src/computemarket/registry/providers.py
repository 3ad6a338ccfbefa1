"""Provider registry — stake, capacity, pricing and job accounting.

The registry is pure bookkeeping: it never moves tokens. The service
layer pulls or pays stake through the EscrowLedger first and calls the
registry only once the transfer has succeeded. Every mutator therefore
has a matching check_* method the service runs before touching funds.

Capacity is mirrored into the oscillator's supply: an active provider
contributes max_concurrent_jobs; deactivation removes it again.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from computemarket.errors import (
    ActiveJobs,
    AtCapacity,
    InsufficientStake,
    InvalidParameter,
    NotActive,
    NotRegistered,
)
from computemarket.models.provider import PricingModel, Provider
from computemarket.policy.resolver import PolicyResolver
from computemarket.pricing.oscillator import PriceOscillator
from computemarket.registry.reputation import ReputationDelta, ReputationTracker


def parse_pricing_model(value: PricingModel | str) -> PricingModel:
    """Coerce a pricing model name, rejecting anything unknown."""
    try:
        return PricingModel(value)
    except ValueError as exc:
        raise InvalidParameter(f"Unknown pricing model: {value!r}") from exc


class ProviderRegistry:
    """Registered providers, enumerable in registration order."""

    def __init__(
        self,
        resolver: PolicyResolver,
        oscillator: PriceOscillator,
        reputation: ReputationTracker,
    ) -> None:
        self._resolver = resolver
        self._min_stake = resolver.params.min_stake
        self._oscillator = oscillator
        self._reputation = reputation
        self._providers: Dict[str, Provider] = {}
        self._order: List[str] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def check_registration(
        self,
        address: str,
        stake: int,
        max_concurrent_jobs: int,
        prices: tuple[int, int, int],
        pricing_model: PricingModel | str,
    ) -> PricingModel:
        """Run every registration precondition. Returns the parsed pricing model."""
        model = parse_pricing_model(pricing_model)
        if stake < self._min_stake:
            raise InsufficientStake(
                f"Stake {stake} below minimum {self._min_stake}"
            )
        if max_concurrent_jobs <= 0:
            raise InvalidParameter("max_concurrent_jobs must be positive")
        if any(p < 0 for p in prices):
            raise InvalidParameter("Prices must be non-negative")
        existing = self._providers.get(address)
        if existing is not None and max_concurrent_jobs < existing.current_jobs:
            raise InvalidParameter(
                f"max_concurrent_jobs {max_concurrent_jobs} below "
                f"{existing.current_jobs} jobs in flight"
            )
        return model

    def register(
        self,
        address: str,
        stake: int,
        workload_id: str,
        attestation_id: str,
        pricing_model: PricingModel | str,
        price_per_unit: int,
        price_per_call: int,
        price_per_second: int,
        max_concurrent_jobs: int,
        now: int,
    ) -> tuple[Provider, bool]:
        """Create or refresh a provider. Returns (provider, created).

        Re-registration overwrites the offer and resets reputation to its
        initial value. The new stake is added to the existing stake so no
        custody is orphaned, job counters are kept, and the old capacity
        is swapped for the new one so supply is never double-counted.
        """
        prices = (price_per_unit, price_per_call, price_per_second)
        pricing_model = self.check_registration(
            address, stake, max_concurrent_jobs, prices, pricing_model,
        )

        provider = self._providers.get(address)
        created = provider is None
        if created:
            provider = Provider(
                address=address,
                stake=stake,
                workload_id=workload_id,
                attestation_id=attestation_id,
                pricing_model=pricing_model,
                price_per_unit=price_per_unit,
                price_per_call=price_per_call,
                price_per_second=price_per_second,
                max_concurrent_jobs=max_concurrent_jobs,
                reputation=self._reputation.initial,
                registered_at=now,
            )
            self._providers[address] = provider
            self._order.append(address)
        else:
            if provider.active:
                self._oscillator.remove_supply(provider.max_concurrent_jobs)
            provider.stake += stake
            provider.workload_id = workload_id
            provider.attestation_id = attestation_id
            provider.pricing_model = pricing_model
            provider.price_per_unit = price_per_unit
            provider.price_per_call = price_per_call
            provider.price_per_second = price_per_second
            provider.max_concurrent_jobs = max_concurrent_jobs
            provider.reputation = self._reputation.initial

        provider.registered = True
        provider.active = True
        self._oscillator.add_supply(max_concurrent_jobs)
        return provider, created

    def update_pricing(
        self,
        address: str,
        pricing_model: PricingModel | str,
        price_per_unit: int,
        price_per_call: int,
        price_per_second: int,
    ) -> Provider:
        provider = self.require(address)
        model = parse_pricing_model(pricing_model)
        if min(price_per_unit, price_per_call, price_per_second) < 0:
            raise InvalidParameter("Prices must be non-negative")
        provider.pricing_model = model
        provider.price_per_unit = price_per_unit
        provider.price_per_call = price_per_call
        provider.price_per_second = price_per_second
        return provider

    # ------------------------------------------------------------------
    # Stake
    # ------------------------------------------------------------------

    def check_add_stake(self, address: str, amount: int) -> Provider:
        provider = self.require(address)
        if amount <= 0:
            raise InvalidParameter("Stake amount must be positive")
        return provider

    def add_stake(self, address: str, amount: int) -> Provider:
        provider = self.check_add_stake(address, amount)
        provider.stake += amount
        return provider

    def check_withdrawal(self, address: str, amount: int) -> Provider:
        provider = self.require(address)
        if amount <= 0:
            raise InvalidParameter("Withdrawal amount must be positive")
        if provider.current_jobs != 0:
            raise ActiveJobs(
                f"Provider {address} has {provider.current_jobs} jobs in flight"
            )
        if amount > provider.stake:
            raise InsufficientStake(
                f"Withdrawal {amount} exceeds stake {provider.stake}"
            )
        return provider

    def withdraw_stake(self, address: str, amount: int) -> tuple[Provider, bool]:
        """Reduce stake. Returns (provider, deactivated)."""
        provider = self.check_withdrawal(address, amount)
        provider.stake -= amount
        return provider, self._deactivate_if_underfunded(provider)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def require_accepting(self, address: str) -> Provider:
        """Provider that may take one more job, or raise why not."""
        provider = self.require(address)
        if not provider.active:
            raise NotActive(f"Provider {address} is not active")
        if not provider.has_capacity:
            raise AtCapacity(
                f"Provider {address} at capacity "
                f"({provider.current_jobs}/{provider.max_concurrent_jobs})"
            )
        return provider

    def assign_job(self, address: str) -> Provider:
        provider = self.require_accepting(address)
        provider.current_jobs += 1
        return provider

    def record_success(self, address: str, earned: int, reason: str) -> ReputationDelta:
        """Job verified (directly or by dispute ruling)."""
        provider = self.require(address)
        self._release_job(provider)
        provider.completed_jobs += 1
        provider.total_earned += earned
        return self._reputation.reward(provider, reason)

    def record_failure(self, address: str, reason: str) -> ReputationDelta:
        """Job lost in dispute."""
        provider = self.require(address)
        self._release_job(provider)
        return self._reputation.penalize(provider, reason)

    def slash_amount(self, address: str) -> int:
        return self._resolver.slash_for(self.require(address).stake)

    def slash(self, address: str, amount: int, reason: str) -> tuple[ReputationDelta, bool]:
        """Apply a missed-deadline penalty. Returns (reputation delta, deactivated)."""
        provider = self.require(address)
        if not 0 <= amount <= provider.stake:
            raise InvalidParameter(f"Slash {amount} exceeds stake {provider.stake}")
        provider.stake -= amount
        provider.slashed_count += 1
        self._release_job(provider)
        delta = self._reputation.penalize(provider, reason)
        return delta, self._deactivate_if_underfunded(provider)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, address: str) -> Optional[Provider]:
        return self._providers.get(address)

    def require(self, address: str) -> Provider:
        provider = self._providers.get(address)
        if provider is None or not provider.registered:
            raise NotRegistered(f"Provider not registered: {address}")
        return provider

    @property
    def count(self) -> int:
        return len(self._order)

    @property
    def active_count(self) -> int:
        return sum(1 for p in self._providers.values() if p.active)

    def providers(
        self,
        active_only: bool = False,
        workload_id: Optional[str] = None,
    ) -> list[Provider]:
        """Providers in registration order, optionally filtered."""
        result = [self._providers[a] for a in self._order]
        if active_only:
            result = [p for p in result if p.active]
        if workload_id is not None:
            result = [p for p in result if p.workload_id == workload_id]
        return result

    def find_available(
        self,
        workload_id: str,
        estimated_size: int = 0,
        duration: int = 0,
        limit: int = 10,
    ) -> list[Provider]:
        """Active providers with spare capacity for a workload.

        Ranked by reputation (highest first), then by their own quote
        for the job (cheapest first).
        """
        candidates = [
            p for p in self.providers(active_only=True, workload_id=workload_id)
            if p.has_capacity
        ]
        candidates.sort(
            key=lambda p: (-p.reputation, self.quote(p, estimated_size, duration)),
        )
        return candidates[:limit]

    @staticmethod
    def quote(provider: Provider, estimated_size: int, duration: int) -> int:
        """The provider's advertised price for a job under its pricing model."""
        model = provider.pricing_model
        if model == PricingModel.PER_UNIT:
            return provider.price_per_unit * estimated_size
        if model == PricingModel.PER_CALL:
            return provider.price_per_call
        if model == PricingModel.PER_TIME:
            return provider.price_per_second * duration
        return (
            provider.price_per_unit * estimated_size
            + provider.price_per_call
            + provider.price_per_second * duration
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _release_job(self, provider: Provider) -> None:
        provider.current_jobs = max(0, provider.current_jobs - 1)

    def _deactivate_if_underfunded(self, provider: Provider) -> bool:
        if provider.active and provider.stake < self._min_stake:
            provider.active = False
            self._oscillator.remove_supply(provider.max_concurrent_jobs)
            return True
        return False
