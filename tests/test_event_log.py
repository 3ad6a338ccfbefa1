"""Tests for the event log — proves append-only persistence and tamper detection."""

import json
from pathlib import Path

import pytest

from computemarket.persistence.event_log import EventKind, EventLog, EventRecord

from support import PROVIDER, T0


def _event(n: int, kind: EventKind = EventKind.STAKE_ADDED) -> EventRecord:
    return EventRecord.create(
        event_id=f"EVT-{n:08d}",
        event_kind=kind,
        actor=PROVIDER,
        payload={"provider": PROVIDER, "amount": n},
        timestamp=T0 + n,
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _event(1).event_hash == _event(1).event_hash
        assert _event(1).event_hash.startswith("sha256:")

    def test_hash_covers_payload(self) -> None:
        assert _event(1).event_hash != _event(2).event_hash


class TestInMemoryLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(_event(2, EventKind.STAKE_WITHDRAWN))
        assert log.count == 2
        assert len(log.events(EventKind.STAKE_ADDED)) == 1
        assert log.last_event.event_id == "EVT-00000002"
        assert log.counts_by_kind() == {"stake_added": 1, "stake_withdrawn": 1}

    def test_duplicate_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event(1))

    def test_events_for_and_since(self) -> None:
        log = EventLog()
        for n in range(1, 4):
            log.append(_event(n))
        assert [e.event_id for e in log.events_for("amount", 2)] == ["EVT-00000002"]
        assert len(log.events_since(T0 + 2)) == 2


class TestPersistence:
    def test_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        log.append(_event(2))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events()[0] == log.events()[0]

    def test_tampered_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event(1))
        record = json.loads(path.read_text())
        record["payload"]["amount"] = 10**30
        path.write_text(json.dumps(record) + "\n")
        with pytest.raises(ValueError, match="Integrity"):
            EventLog(storage_path=path)

    def test_replayed_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event(1))
        line = path.read_text()
        path.write_text(line + line)
        with pytest.raises(ValueError, match="Duplicate"):
            EventLog(storage_path=path)
