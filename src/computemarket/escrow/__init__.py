"""Custody of market funds — token interface and escrow ledger."""

from computemarket.escrow.ledger import EscrowLedger
from computemarket.escrow.token import InMemoryTokenLedger, TokenLedger

__all__ = ["EscrowLedger", "InMemoryTokenLedger", "TokenLedger"]
