"""Tests for the price oscillator — proves damping, bounds and rate limiting."""

import pytest

from computemarket.policy.resolver import PolicyResolver
from computemarket.pricing.oscillator import PriceOscillator, _div_trunc

from support import T0


INTERVAL = 300


def _oscillator(
    resolver: PolicyResolver,
    supply: int = 10,
    demand: int = 0,
    price: int | None = None,
) -> PriceOscillator:
    osc = PriceOscillator(resolver, now=T0, initial_price=price)
    osc.add_supply(supply)
    for _ in range(demand):
        osc.increment_demand()
    return osc


class TestTruncatingDivision:
    def test_positive(self) -> None:
        assert _div_trunc(7, 2) == 3

    def test_negative_truncates_toward_zero(self) -> None:
        assert _div_trunc(-7, 2) == -3
        assert -7 // 2 == -4


class TestUtilization:
    def test_basic(self, resolver: PolicyResolver) -> None:
        assert _oscillator(resolver, supply=10, demand=8).utilization() == 8000

    def test_zero_supply_treated_as_one(self, resolver: PolicyResolver) -> None:
        assert _oscillator(resolver, supply=0, demand=1).utilization() == 10_000

    def test_over_utilization_not_capped(self, resolver: PolicyResolver) -> None:
        assert _oscillator(resolver, supply=2, demand=5).utilization() == 25_000

    def test_counters_never_negative(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=1)
        osc.remove_supply(5)
        osc.decrement_demand()
        assert osc.state.supply == 0
        assert osc.state.demand == 0


class TestStep:
    def test_upward_pressure(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=10, demand=8)
        osc.step(T0 + INTERVAL)
        # force = (8000 - 5000) * 1e15 / 10000
        assert osc.price == 13 * 10**14
        assert osc.state.price_velocity == 3 * 10**14
        assert osc.state.utilization_bps == 8000

    def test_momentum_carries_upward(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=10, demand=8)
        osc.step(T0 + INTERVAL)
        osc.step(T0 + 2 * INTERVAL)
        # velocity = 3e14 * 0.9 + 3000 * 1.3e15 / 10000
        assert osc.state.price_velocity == 66 * 10**13
        assert osc.price == 196 * 10**13

    def test_downward_moves_carry_no_momentum(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=10, demand=0)
        osc.step(T0 + INTERVAL)
        assert osc.price == 5 * 10**14
        assert osc.state.price_velocity == 0
        osc.step(T0 + 2 * INTERVAL)
        # Without stored negative velocity the second drop is force alone
        assert osc.price == 25 * 10**13
        assert osc.state.price_velocity == 0

    def test_balanced_market_holds_price(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=10, demand=5)
        osc.step(T0 + INTERVAL)
        assert osc.price == 10**15
        assert osc.state.price_velocity == 0


class TestBounds:
    def test_price_never_below_floor(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=10, demand=0)
        for tick in range(1, 200):
            osc.step(T0 + tick * INTERVAL)
            assert osc.price >= resolver.params.price_floor
        assert osc.price == resolver.params.price_floor

    def test_price_never_above_cap(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=1, demand=10)
        for tick in range(1, 200):
            osc.step(T0 + tick * INTERVAL)
            assert osc.price <= resolver.params.price_cap
        assert osc.price == resolver.params.price_cap

    def test_initial_price_clamped(self, resolver: PolicyResolver) -> None:
        osc = PriceOscillator(resolver, now=T0, initial_price=1)
        assert osc.price == resolver.params.price_floor


class TestRateLimit:
    def test_not_due_before_interval(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=10, demand=8)
        assert osc.maybe_update(T0 + INTERVAL - 1) is None
        assert osc.price == 10**15

    def test_due_at_interval(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=10, demand=8)
        stats = osc.maybe_update(T0 + INTERVAL)
        assert stats is not None
        assert stats.equilibrium_price == 13 * 10**14
        assert stats.last_update == T0 + INTERVAL

    def test_accumulated_changes_apply_on_next_tick(self, resolver: PolicyResolver) -> None:
        osc = _oscillator(resolver, supply=10, demand=0)
        for _ in range(8):
            osc.increment_demand()
            assert osc.maybe_update(T0 + 10) is None
        stats = osc.maybe_update(T0 + INTERVAL)
        assert stats.utilization_bps == 8000

    @pytest.mark.parametrize("size", [1, 100, 12_345])
    def test_estimate_cost(self, resolver: PolicyResolver, size: int) -> None:
        assert _oscillator(resolver).estimate_cost(size) == size * 10**15
