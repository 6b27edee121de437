"""Tests for the Monitor facade."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from src.health.errors import NotFoundError, StorageError, ValidationError, ValidationErrorKind
from src.health.models import HealthState, ServiceDefinition
from src.health.monitor import Monitor
from src.storage import MemoryStorage, SqliteStorage

from tests.helpers import VALID_SERVICE, ScriptedProbe, fail, ok, service


class TestAddAndGet:
    def test_new_service_is_unknown_without_history(self, monitor, valid_service) -> None:
        service_id = monitor.add_service(valid_service)
        snap = monitor.get_service(service_id)
        assert snap.runtime.state == HealthState.UNKNOWN
        assert snap.runtime.total_probes == 0
        assert monitor.list_outcomes(service_id) == []
        assert monitor.list_events(service_id) == []

    def test_add_persists_definition(self, monitor, storage, valid_service) -> None:
        service_id = monitor.add_service(valid_service)
        stored = storage.get_service(service_id)
        assert stored is not None
        assert stored.name == valid_service["name"]

    def test_to_dict_merges_definition_and_health(self, monitor, valid_service) -> None:
        service_id = monitor.add_service(valid_service)
        data = monitor.get_service(service_id).to_dict()
        assert data["id"] == service_id
        assert data["interval"] == 60000
        assert data["status"] == "unknown"
        assert data["lastOutcome"] is None
        assert data["nextDelay"] == 0

    def test_invalid_definition_rejected(self, monitor, valid_service) -> None:
        del valid_service["interval"]
        with pytest.raises(ValidationError) as exc:
            monitor.add_service(valid_service)
        assert exc.value.kind == ValidationErrorKind.MISSING_FIELD
        assert monitor.list_services() == []

    def test_duplicate_id_rejected(self, monitor, valid_service) -> None:
        monitor.add_service(dict(valid_service, id="fixed"))
        with pytest.raises(ValidationError) as exc:
            monitor.add_service(dict(valid_service, id="fixed"))
        assert exc.value.field == "id"

    def test_duplicate_id_keeps_first_definition(self, monitor, storage, valid_service) -> None:
        monitor.add_service(dict(valid_service, id="fixed", name="first"))
        with pytest.raises(ValidationError):
            monitor.add_service(dict(valid_service, id="fixed", name="second"))
        assert storage.get_service("fixed").name == "first"
        assert monitor.get_service("fixed").definition.name == "first"

    def test_concurrent_adds_with_same_id(self, monitor, valid_service) -> None:
        barrier = threading.Barrier(8)
        results: list[str] = []

        def add() -> None:
            barrier.wait()
            try:
                monitor.add_service(dict(valid_service, id="racy"))
                results.append("ok")
            except ValidationError as e:
                results.append(e.kind.value)

        threads = [threading.Thread(target=add) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count("ok") == 1
        assert results.count("invalid_value") == 7

    def test_accepts_definition_object(self, monitor) -> None:
        service_id = monitor.add_service(ServiceDefinition.from_dict(VALID_SERVICE))
        assert monitor.get_service(service_id).definition.interval == 60000

    def test_storage_failure_schedules_in_memory(self, probe) -> None:
        storage = MagicMock()
        storage.create_service.side_effect = StorageError("read-only")
        m = Monitor(storage, probe=probe)
        service_id = m.add_service(VALID_SERVICE)
        assert service_id
        assert m.get_service(service_id).runtime.state == HealthState.UNKNOWN

    def test_get_unknown(self, monitor) -> None:
        with pytest.raises(NotFoundError):
            monitor.get_service("22222")

    def test_list(self, monitor) -> None:
        monitor.add_service(service("a"))
        monitor.add_service(service("b"))
        assert sorted(s.definition.name for s in monitor.list_services()) == ["a", "b"]


class TestCheckService:
    def test_failure_sequence(self, storage) -> None:
        probe = ScriptedProbe(fail(), fail(), fail(), ok())
        m = Monitor(storage, probe=probe)
        service_id = m.add_service(service(interval=60000, failure_interval=30000, warning_threshold=30000))

        snap = asyncio.run(m.check_service(service_id))
        assert snap.runtime.state == HealthState.WARNING

        asyncio.run(m.check_service(service_id))
        snap = asyncio.run(m.check_service(service_id))
        assert snap.runtime.state == HealthState.FAILING
        assert snap.runtime.next_delay_ms == 30000

        snap = asyncio.run(m.check_service(service_id))
        assert snap.runtime.state == HealthState.HEALTHY
        assert snap.runtime.next_delay_ms == 60000

        assert len(m.list_outcomes(service_id)) == 4
        assert [e.to_state for e in m.list_events(service_id)] == [
            HealthState.HEALTHY, HealthState.FAILING, HealthState.WARNING,
        ]
        asyncio.run(m.stop())

    def test_check_unknown(self, monitor) -> None:
        with pytest.raises(NotFoundError):
            asyncio.run(monitor.check_service("nope"))

    def test_history_limit(self, storage) -> None:
        m = Monitor(storage, probe=ScriptedProbe(), history_limit=2)
        service_id = m.add_service(VALID_SERVICE)
        for _ in range(4):
            asyncio.run(m.check_service(service_id))
        assert len(m.list_outcomes(service_id)) == 2
        assert len(m.list_outcomes(service_id, limit=3)) == 3
        asyncio.run(m.stop())


class TestResetAndDelete:
    def test_reset_clears_state_and_history(self, monitor, probe) -> None:
        probe.push(fail())
        service_id = monitor.add_service(VALID_SERVICE)
        asyncio.run(monitor.check_service(service_id))

        monitor.reset_service(service_id)

        snap = monitor.get_service(service_id)
        assert snap.runtime.state == HealthState.UNKNOWN
        assert snap.runtime.consecutive_failures == 0
        assert monitor.list_outcomes(service_id) == []
        assert monitor.list_events(service_id) == []

    def test_reset_unknown(self, monitor) -> None:
        with pytest.raises(NotFoundError):
            monitor.reset_service("nope")

    def test_delete(self, monitor, storage) -> None:
        service_id = monitor.add_service(VALID_SERVICE)
        monitor.delete_service(service_id)
        assert storage.get_service(service_id) is None
        with pytest.raises(NotFoundError):
            monitor.get_service(service_id)
        with pytest.raises(NotFoundError):
            monitor.list_outcomes(service_id)

    def test_delete_unknown(self, monitor) -> None:
        with pytest.raises(NotFoundError):
            monitor.delete_service("222")

    def test_delete_only_in_storage(self, monitor, storage) -> None:
        service_id = storage.create_service(ServiceDefinition.from_dict(VALID_SERVICE))
        monitor.delete_service(service_id)
        assert storage.get_service(service_id) is None


class TestLoadPersisted:
    def test_schedules_stored_services(self, probe) -> None:
        storage = MemoryStorage()
        first = storage.create_service(ServiceDefinition.from_dict(service("a")))
        second = storage.create_service(ServiceDefinition.from_dict(service("b")))

        m = Monitor(storage, probe=probe)
        assert m.load_persisted() == 2
        assert {s.id for s in m.list_services()} == {first, second}
        # idempotent
        assert m.load_persisted() == 0

    def test_storage_failure_loads_nothing(self, probe) -> None:
        storage = MagicMock()
        storage.list_services.side_effect = StorageError("locked")
        m = Monitor(storage, probe=probe)
        assert m.load_persisted() == 0

    def test_history_read_failure_returns_empty(self, probe) -> None:
        storage = MagicMock()
        storage.list_outcomes.side_effect = StorageError("locked")
        m = Monitor(storage, probe=probe)
        service_id = m.add_service(VALID_SERVICE)
        assert m.list_outcomes(service_id) == []

    def test_unreadable_stored_row_does_not_block_startup(self, probe, tmp_path) -> None:
        storage = SqliteStorage(db_path=tmp_path / "monitor.db")
        good = storage.create_service(ServiceDefinition.from_dict(service("a")))
        with storage._tx() as conn:
            conn.execute("INSERT INTO services (id, definition) VALUES (?, ?)", ("bad", "{oops"))

        m = Monitor(storage, probe=probe)
        assert m.load_persisted() == 1
        assert [s.id for s in m.list_services()] == [good]
        storage.close()
