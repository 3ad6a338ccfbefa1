"""Market-wide aggregates and escrow accounting records."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


@dataclass
class MarketState:
    """Aggregate supply/demand and the oscillator's position.

    supply is the summed max_concurrent_jobs of active providers; demand
    is the number of non-terminal requests. equilibrium_price stays within
    [PRICE_FLOOR, PRICE_CAP].
    """
    equilibrium_price: int
    last_update: int
    supply: int = 0
    demand: int = 0
    price_velocity: int = 0
    utilization_bps: int = 0


@dataclass(frozen=True)
class MarketStats:
    """Read-only snapshot returned by market queries and state events."""
    supply: int
    demand: int
    equilibrium_price: int
    price_velocity: int
    utilization_bps: int
    last_update: int

    @staticmethod
    def of(state: MarketState) -> MarketStats:
        return MarketStats(
            supply=state.supply,
            demand=state.demand,
            equilibrium_price=state.equilibrium_price,
            price_velocity=state.price_velocity,
            utilization_bps=state.utilization_bps,
            last_update=state.last_update,
        )


class EscrowState(str, enum.Enum):
    """Lifecycle of a request's escrow.

    LOCKED → RELEASED   (provider paid net of fee)
    LOCKED → REFUNDED   (requester refunded, possibly with a slash penalty)
    """
    LOCKED = "locked"
    RELEASED = "released"
    REFUNDED = "refunded"


@dataclass
class EscrowEntry:
    """Funds held for one request, settled exactly once.

    Conservation: paid_to_provider + paid_to_requester + fee == amount
    once settled. penalty is slashed stake paid on top of the refund and
    is not part of the escrowed amount.
    """
    request_id: str
    payer: str
    amount: int
    state: EscrowState = EscrowState.LOCKED
    paid_to_provider: int = 0
    paid_to_requester: int = 0
    fee: int = 0
    penalty: int = 0
    settled_at: Optional[int] = None

    @property
    def settled_total(self) -> int:
        return self.paid_to_provider + self.paid_to_requester + self.fee
