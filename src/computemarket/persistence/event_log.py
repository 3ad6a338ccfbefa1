"""Append-only event log — the audit record of every market transition.

Every state change in the market produces one event, appended here.
Events are immutable once written. Each payload carries enough fields
to reconstruct the transition without replaying internal state, so the
log doubles as the feed for indexers and as the audit trail for
escrow conservation.

Timestamps are the external time markers (block timestamps) the
operation ran at, not wall-clock time.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of market events."""
    # Providers
    PROVIDER_REGISTERED = "provider_registered"
    PROVIDER_UPDATED = "provider_updated"
    PROVIDER_DEACTIVATED = "provider_deactivated"
    STAKE_ADDED = "stake_added"
    STAKE_WITHDRAWN = "stake_withdrawn"
    # Requests
    REQUEST_CREATED = "request_created"
    REQUEST_ASSIGNED = "request_assigned"
    RESULT_SUBMITTED = "result_submitted"
    REQUEST_VERIFIED = "request_verified"
    REQUEST_DISPUTED = "request_disputed"
    REQUEST_CANCELLED = "request_cancelled"
    PROVIDER_SLASHED = "provider_slashed"
    DISPUTE_RESOLVED = "dispute_resolved"
    # Market
    MARKET_STATE_UPDATED = "market_state_updated"
    FEES_WITHDRAWN = "fees_withdrawn"
    TREASURY_UPDATED = "treasury_updated"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp: int,
    actor: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp": timestamp,
            "actor": actor,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable market event.

    event_hash is computed at creation over the canonical JSON of the
    other fields and is re-verified when a log is loaded from disk.
    """
    event_id: str
    event_kind: EventKind
    timestamp: int
    actor: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        timestamp: int,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp=timestamp,
            actor=actor,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, timestamp, actor, payload,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted. With a
    storage path, each event is also written as one JSON line and the
    file is loaded (and integrity-checked) on construction.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for(self, key: str, value: Any) -> list[EventRecord]:
        """Return events whose payload[key] equals value."""
        return [e for e in self._events if e.payload.get(key) == value]

    def events_since(
        self,
        since: int,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events at or after a timestamp, optionally filtered by kind."""
        result = [e for e in self._events if e.timestamp >= since]
        if kind is not None:
            result = [e for e in result if e.event_kind == kind]
        return result

    def counts_by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for e in self._events:
            counts[e.event_kind.value] = counts.get(e.event_kind.value, 0) + 1
        return counts

    def contains(self, event_id: str) -> bool:
        return event_id in self._event_ids

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        """Append a single event to the JSONL file."""
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs (replay protection on recovery).
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["timestamp"],
                    data["actor"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp=data["timestamp"],
                    actor=data["actor"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
