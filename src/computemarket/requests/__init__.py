"""Compute request lifecycle."""

from computemarket.requests.ledger import RequestLedger
from computemarket.requests.state_machine import RequestStateMachine

__all__ = ["RequestLedger", "RequestStateMachine"]
