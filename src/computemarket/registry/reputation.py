"""Reputation tracker — bounded additive provider reputation.

Reputation is an integer in [0, MAX]. Positive outcomes add REWARD,
negative outcomes subtract PENALTY, clamped at the bounds. The scheme is
additive rather than exponential so every change is auditable from the
event log; with the default 200/500 split one failure costs two and a
half successes.
"""

from __future__ import annotations

from dataclasses import dataclass

from computemarket.models.provider import Provider
from computemarket.policy.resolver import PolicyResolver


@dataclass(frozen=True)
class ReputationDelta:
    """A single reputation change, for event payloads."""
    provider: str
    previous: int
    current: int
    reason: str

    @property
    def change(self) -> int:
        return self.current - self.previous


class ReputationTracker:
    """Applies bounded reputation updates to provider records."""

    def __init__(self, resolver: PolicyResolver) -> None:
        params = resolver.params
        self._initial = params.reputation_initial
        self._max = params.reputation_max
        self._reward = params.reputation_reward
        self._penalty = params.reputation_penalty

    @property
    def initial(self) -> int:
        return self._initial

    def reward(self, provider: Provider, reason: str) -> ReputationDelta:
        previous = provider.reputation
        provider.reputation = min(self._max, previous + self._reward)
        return ReputationDelta(provider.address, previous, provider.reputation, reason)

    def penalize(self, provider: Provider, reason: str) -> ReputationDelta:
        previous = provider.reputation
        provider.reputation = max(0, previous - self._penalty)
        return ReputationDelta(provider.address, previous, provider.reputation, reason)
