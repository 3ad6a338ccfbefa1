"""Policy resolver — loads the market's economic parameters from config.

Parameters live in config/market_params.json, grouped by concern. Every
constant the engine uses comes from here; nothing is hard-coded in the
components. Values are validated on load: a resolver never exists with
parameters that would break the market invariants.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any


BPS_DENOMINATOR = 10_000
PARAMS_FILENAME = "market_params.json"


@dataclass(frozen=True)
class MarketParams:
    """Flattened, validated market constants."""
    min_stake: int
    slash_bps: int
    market_fee_bps: int
    max_duration: int
    dispute_window: int
    escrow_buffer_bps: int
    initial_price: int
    price_floor: int
    price_cap: int
    price_update_interval: int
    damping_factor: int
    target_utilization_bps: int
    reputation_initial: int
    reputation_max: int
    reputation_reward: int
    reputation_penalty: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MarketParams:
        staking = data["staking"]
        requests = data["requests"]
        pricing = data["pricing"]
        reputation = data["reputation"]
        return cls(
            min_stake=int(staking["MIN_STAKE"]),
            slash_bps=int(staking["SLASH_BPS"]),
            market_fee_bps=int(data["fees"]["MARKET_FEE_BPS"]),
            max_duration=int(requests["MAX_DURATION"]),
            dispute_window=int(requests["DISPUTE_WINDOW"]),
            escrow_buffer_bps=int(requests["ESCROW_BUFFER_BPS"]),
            initial_price=int(pricing["INITIAL_PRICE"]),
            price_floor=int(pricing["PRICE_FLOOR"]),
            price_cap=int(pricing["PRICE_CAP"]),
            price_update_interval=int(pricing["PRICE_UPDATE_INTERVAL"]),
            damping_factor=int(pricing["DAMPING_FACTOR"]),
            target_utilization_bps=int(pricing["TARGET_UTILIZATION_BPS"]),
            reputation_initial=int(reputation["INITIAL"]),
            reputation_max=int(reputation["MAX"]),
            reputation_reward=int(reputation["REWARD"]),
            reputation_penalty=int(reputation["PENALTY"]),
        )

    def validate(self) -> list[str]:
        """Return invariant violations (empty = OK).

        Kept rule-for-rule in step with tools/check_invariants.py so a
        config the tool rejects can never back a running market.
        """
        errors: list[str] = []
        if self.min_stake <= 0:
            errors.append("MIN_STAKE must be > 0")
        for name in ("slash_bps", "market_fee_bps", "damping_factor",
                     "target_utilization_bps"):
            value = getattr(self, name)
            if not 0 <= value <= BPS_DENOMINATOR:
                errors.append(f"{name} must be within [0, {BPS_DENOMINATOR}], got {value}")
        if self.slash_bps == 0:
            errors.append("SLASH_BPS must be > 0")
        if self.market_fee_bps >= BPS_DENOMINATOR:
            errors.append("MARKET_FEE_BPS must leave the provider a non-zero share")
        if self.max_duration <= 0:
            errors.append("MAX_DURATION must be > 0")
        if self.dispute_window < 0:
            errors.append("DISPUTE_WINDOW must be >= 0")
        if self.escrow_buffer_bps < BPS_DENOMINATOR:
            errors.append("ESCROW_BUFFER_BPS must be >= 10000")
        if self.price_floor <= 0:
            errors.append("PRICE_FLOOR must be > 0")
        if self.price_cap < self.price_floor:
            errors.append("PRICE_CAP must be >= PRICE_FLOOR")
        if not self.price_floor <= self.initial_price <= self.price_cap:
            errors.append("INITIAL_PRICE must lie within [PRICE_FLOOR, PRICE_CAP]")
        if self.price_update_interval <= 0:
            errors.append("PRICE_UPDATE_INTERVAL must be > 0")
        if self.damping_factor >= BPS_DENOMINATOR:
            errors.append("DAMPING_FACTOR must be < 10000")
        if self.target_utilization_bps in (0, BPS_DENOMINATOR):
            errors.append("TARGET_UTILIZATION_BPS must be strictly between 0 and 10000")
        if self.reputation_max <= 0:
            errors.append("Reputation MAX must be > 0")
        if not 0 <= self.reputation_initial <= self.reputation_max:
            errors.append("Reputation INITIAL must lie within [0, MAX]")
        if self.reputation_reward <= 0:
            errors.append("Reputation REWARD must be > 0")
        if self.reputation_penalty <= self.reputation_reward:
            errors.append("Reputation PENALTY must exceed REWARD")
        return errors


class PolicyResolver:
    """Read-only access to market parameters.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        fee_bps = resolver.params.market_fee_bps
    """

    def __init__(self, params: MarketParams) -> None:
        errors = params.validate()
        if errors:
            raise ValueError("Invalid market parameters: " + "; ".join(errors))
        self._params = params

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        return cls(MarketParams.from_dict(data))

    @property
    def params(self) -> MarketParams:
        return self._params

    def with_overrides(self, **overrides: Any) -> PolicyResolver:
        """Return a resolver with selected parameters replaced."""
        return PolicyResolver(replace(self._params, **overrides))

    def fee_for(self, amount: int) -> int:
        return amount * self._params.market_fee_bps // BPS_DENOMINATOR

    def slash_for(self, stake: int) -> int:
        return stake * self._params.slash_bps // BPS_DENOMINATOR

    def buffered_escrow(self, quote: int) -> int:
        return quote * self._params.escrow_buffer_bps // BPS_DENOMINATOR
