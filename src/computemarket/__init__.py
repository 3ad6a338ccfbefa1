"""Compute market engine: staked providers, escrowed requests, oscillator pricing."""

from computemarket.errors import MarketError
from computemarket.escrow.token import InMemoryTokenLedger, TokenLedger
from computemarket.models.provider import PricingModel
from computemarket.models.request import RequestStatus
from computemarket.policy.resolver import PolicyResolver
from computemarket.service import MarketService

__all__ = [
    "InMemoryTokenLedger",
    "MarketError",
    "MarketService",
    "PolicyResolver",
    "PricingModel",
    "RequestStatus",
    "TokenLedger",
]

__version__ = "0.1.0"
