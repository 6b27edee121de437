"""In-memory storage backend, used by tests and ``storage_backend=memory``."""

from __future__ import annotations

import threading
from collections import defaultdict

from src.health.models import ProbeOutcome, ServiceDefinition, StateChangeEvent, new_service_id

from .base import Storage


class MemoryStorage(Storage):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._services: dict[str, ServiceDefinition] = {}
        self._outcomes: dict[str, list[ProbeOutcome]] = defaultdict(list)
        self._events: dict[str, list[StateChangeEvent]] = defaultdict(list)

    def create_service(self, definition: ServiceDefinition) -> str:
        service_id = definition.id or new_service_id()
        with self._lock:
            self._services[service_id] = definition.with_id(service_id)
        return service_id

    def get_service(self, service_id: str) -> ServiceDefinition | None:
        with self._lock:
            return self._services.get(service_id)

    def list_services(self) -> list[ServiceDefinition]:
        with self._lock:
            return list(self._services.values())

    def delete_service(self, service_id: str) -> bool:
        with self._lock:
            self._outcomes.pop(service_id, None)
            self._events.pop(service_id, None)
            return self._services.pop(service_id, None) is not None

    def append_outcome(self, service_id: str, outcome: ProbeOutcome) -> None:
        with self._lock:
            self._outcomes[service_id].append(outcome)

    def list_outcomes(self, service_id: str, limit: int = 100) -> list[ProbeOutcome]:
        with self._lock:
            return list(reversed(self._outcomes.get(service_id, [])))[:limit]

    def clear_outcomes(self, service_id: str) -> None:
        with self._lock:
            self._outcomes.pop(service_id, None)
            self._events.pop(service_id, None)

    def append_event(self, service_id: str, event: StateChangeEvent) -> None:
        with self._lock:
            self._events[service_id].append(event)

    def list_events(self, service_id: str, limit: int = 50) -> list[StateChangeEvent]:
        with self._lock:
            return list(reversed(self._events.get(service_id, [])))[:limit]

    def flush_all(self) -> None:
        with self._lock:
            self._services.clear()
            self._outcomes.clear()
            self._events.clear()
