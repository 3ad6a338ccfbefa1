"""Compute request models — escrowed work orders and their lifecycle.

Request lifecycle:
    PENDING → ACTIVE → COMPLETED → VERIFIED
    PENDING → ACTIVE → COMPLETED → DISPUTED → VERIFIED | CANCELLED
    PENDING → CANCELLED
    PENDING → ACTIVE → SLASHED      (deadline passed, no result)

VERIFIED, CANCELLED and SLASHED are terminal. Records are never deleted;
terminal requests are retained for audit.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional


class RequestStatus(str, enum.Enum):
    """Lifecycle state of a compute request."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    VERIFIED = "verified"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    SLASHED = "slashed"


# Valid request transitions
REQUEST_TRANSITIONS: Dict[RequestStatus, frozenset] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.ACTIVE,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.ACTIVE: frozenset({
        RequestStatus.COMPLETED,
        RequestStatus.SLASHED,
    }),
    RequestStatus.COMPLETED: frozenset({
        RequestStatus.VERIFIED,
        RequestStatus.DISPUTED,
    }),
    RequestStatus.DISPUTED: frozenset({
        RequestStatus.VERIFIED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.VERIFIED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
    RequestStatus.SLASHED: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    RequestStatus.VERIFIED,
    RequestStatus.CANCELLED,
    RequestStatus.SLASHED,
})


@dataclass
class ComputeRequest:
    """A requester's order for compute, funded by escrow at creation."""
    request_id: str
    requester: str
    escrow: int
    estimated_size: int
    created_at: int
    deadline: int
    input_hash: str
    workload_id: str
    status: RequestStatus = RequestStatus.PENDING
    provider: Optional[str] = None
    result_hash: Optional[str] = None
    accepted_at: Optional[int] = None
    submitted_at: Optional[int] = None
    settled_at: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "requester": self.requester,
            "provider": self.provider,
            "escrow": self.escrow,
            "estimated_size": self.estimated_size,
            "created_at": self.created_at,
            "deadline": self.deadline,
            "status": self.status.value,
            "input_hash": self.input_hash,
            "result_hash": self.result_hash,
            "workload_id": self.workload_id,
        }
