"""Dispute adjudication."""

from computemarket.disputes.resolver import DisputeOutcome, DisputeResolver

__all__ = ["DisputeOutcome", "DisputeResolver"]
