"""Core data models for the compute market."""

from computemarket.models.market import (
    EscrowEntry,
    EscrowState,
    MarketState,
    MarketStats,
)
from computemarket.models.provider import PricingModel, Provider
from computemarket.models.request import (
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    ComputeRequest,
    RequestStatus,
)

__all__ = [
    "ComputeRequest",
    "EscrowEntry",
    "EscrowState",
    "MarketState",
    "MarketStats",
    "PricingModel",
    "Provider",
    "REQUEST_TRANSITIONS",
    "RequestStatus",
    "TERMINAL_STATUSES",
]
