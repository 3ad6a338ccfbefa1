"""Provider registry and reputation."""

from computemarket.registry.providers import ProviderRegistry
from computemarket.registry.reputation import ReputationDelta, ReputationTracker

__all__ = ["ProviderRegistry", "ReputationDelta", "ReputationTracker"]
