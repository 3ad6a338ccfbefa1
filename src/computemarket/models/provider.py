"""Provider models — registered compute capacity, stake and reputation.

All token amounts are integers in the payment token's base units. No
floats in finance.

Invariants maintained by the registry:
- active => stake >= MIN_STAKE
- current_jobs <= max_concurrent_jobs
- 0 <= reputation <= 10000
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class PricingModel(str, enum.Enum):
    """How a provider advertises its own rates."""
    PER_UNIT = "per_unit"
    PER_CALL = "per_call"
    PER_TIME = "per_time"
    HYBRID = "hybrid"


@dataclass
class Provider:
    """A compute provider registered with the market.

    Mutable — stake, job counters and reputation change over the
    provider's lifetime. Records are never removed; a provider whose
    stake drops below the minimum is deactivated instead.
    """
    address: str
    stake: int
    workload_id: str
    attestation_id: str
    pricing_model: PricingModel
    price_per_unit: int
    price_per_call: int
    price_per_second: int
    max_concurrent_jobs: int
    registered: bool = True
    active: bool = True
    reputation: int = 5000
    current_jobs: int = 0
    completed_jobs: int = 0
    slashed_count: int = 0
    total_earned: int = 0
    registered_at: Optional[int] = None

    @property
    def has_capacity(self) -> bool:
        return self.current_jobs < self.max_concurrent_jobs

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "registered": self.registered,
            "active": self.active,
            "stake": self.stake,
            "total_earned": self.total_earned,
            "completed_jobs": self.completed_jobs,
            "slashed_count": self.slashed_count,
            "reputation": self.reputation,
            "pricing_model": self.pricing_model.value,
            "price_per_unit": self.price_per_unit,
            "price_per_call": self.price_per_call,
            "price_per_second": self.price_per_second,
            "max_concurrent_jobs": self.max_concurrent_jobs,
            "current_jobs": self.current_jobs,
            "workload_id": self.workload_id,
            "attestation_id": self.attestation_id,
        }
