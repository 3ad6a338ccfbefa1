"""Market parameter loading."""

from computemarket.policy.resolver import MarketParams, PolicyResolver

__all__ = ["MarketParams", "PolicyResolver"]
