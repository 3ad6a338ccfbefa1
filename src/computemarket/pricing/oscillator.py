"""Price oscillator — market-wide equilibrium price as a damped spring.

The price is the position of a damped oscillator. The restoring force is
proportional to how far utilization sits from its target (50% by
default), scaled by the current price:

    utilization = demand × 10000 / max(supply, 1)                (bps)
    force       = (utilization − TARGET) × price / 10000          (signed)
    velocity'   = velocity × DAMPING / 10000 + force
    price'      = clamp(price + velocity', PRICE_FLOOR, PRICE_CAP)
    velocity    = max(velocity', 0)

The stored velocity is clamped to non-negative after each step while the
price itself is free to fall. Downward moves therefore never build
momentum; only upward pressure carries over between ticks.

Recomputation is rate-limited: a step runs only when at least
PRICE_UPDATE_INTERVAL time units have passed since the previous step.
Supply and demand changes in between are accumulated and take effect on
the next eligible tick, which bounds update cost and blunts spam.
"""

from __future__ import annotations

from typing import Optional

from computemarket.models.market import MarketState, MarketStats
from computemarket.policy.resolver import BPS_DENOMINATOR, PolicyResolver


def _div_trunc(numerator: int, denominator: int) -> int:
    """Integer division truncating toward zero (EVM int256 semantics)."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


class PriceOscillator:
    """Owns MarketState and runs the rate-limited control loop.

    Usage:
        oscillator = PriceOscillator(resolver, now=block_time)
        oscillator.add_supply(4)
        oscillator.increment_demand()
        stats = oscillator.maybe_update(now=later)   # None if not yet due
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        now: int,
        initial_price: Optional[int] = None,
    ) -> None:
        params = resolver.params
        self._floor = params.price_floor
        self._cap = params.price_cap
        self._interval = params.price_update_interval
        self._damping = params.damping_factor
        self._target = params.target_utilization_bps
        seed = params.initial_price if initial_price is None else initial_price
        self._state = MarketState(
            equilibrium_price=self._clamp(seed),
            last_update=now,
        )

    @property
    def state(self) -> MarketState:
        return self._state

    @property
    def price(self) -> int:
        return self._state.equilibrium_price

    def stats(self) -> MarketStats:
        return MarketStats.of(self._state)

    # ------------------------------------------------------------------
    # Supply and demand accounting
    # ------------------------------------------------------------------

    def add_supply(self, capacity: int) -> None:
        self._state.supply += capacity

    def remove_supply(self, capacity: int) -> None:
        self._state.supply = max(0, self._state.supply - capacity)

    def increment_demand(self) -> None:
        self._state.demand += 1

    def decrement_demand(self) -> None:
        self._state.demand = max(0, self._state.demand - 1)

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    def utilization(self) -> int:
        return self._state.demand * BPS_DENOMINATOR // max(self._state.supply, 1)

    def is_due(self, now: int) -> bool:
        return now - self._state.last_update >= self._interval

    def maybe_update(self, now: int) -> Optional[MarketStats]:
        """Run one oscillator step if the update interval has elapsed.

        Returns the new stats when a step ran, None otherwise.
        """
        if not self.is_due(now):
            return None
        self.step(now)
        return self.stats()

    def step(self, now: int) -> None:
        """Unconditionally advance the oscillator by one tick."""
        state = self._state
        utilization = self.utilization()
        force = _div_trunc((utilization - self._target) * state.equilibrium_price,
                           BPS_DENOMINATOR)
        velocity = _div_trunc(state.price_velocity * self._damping, BPS_DENOMINATOR) + force

        state.equilibrium_price = self._clamp(state.equilibrium_price + velocity)
        state.price_velocity = max(velocity, 0)
        state.utilization_bps = utilization
        state.last_update = now

    def estimate_cost(self, estimated_size: int) -> int:
        """Cost of a workload at the current (possibly stale) price."""
        return self._state.equilibrium_price * estimated_size

    def _clamp(self, price: int) -> int:
        return max(self._floor, min(self._cap, price))
