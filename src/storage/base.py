"""Persistence interface consumed by the monitor core.

All operations are keyed by an opaque service id. ``get_service`` returns None
for an unknown id, which is distinct from a known service with no history.
Backends raise StorageError for any failure of the underlying store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.health.models import ProbeOutcome, ServiceDefinition, StateChangeEvent


class Storage(ABC):
    @abstractmethod
    def create_service(self, definition: ServiceDefinition) -> str:
        """Persist a definition and return its id (the definition's own id if set)."""

    @abstractmethod
    def get_service(self, service_id: str) -> ServiceDefinition | None: ...

    @abstractmethod
    def list_services(self) -> list[ServiceDefinition]: ...

    @abstractmethod
    def delete_service(self, service_id: str) -> bool:
        """Remove the definition and all of its history. False if unknown."""

    @abstractmethod
    def append_outcome(self, service_id: str, outcome: ProbeOutcome) -> None: ...

    @abstractmethod
    def list_outcomes(self, service_id: str, limit: int = 100) -> list[ProbeOutcome]:
        """Most recent first."""

    @abstractmethod
    def clear_outcomes(self, service_id: str) -> None:
        """Atomically drop all outcomes and state-change events of a service."""

    @abstractmethod
    def append_event(self, service_id: str, event: StateChangeEvent) -> None: ...

    @abstractmethod
    def list_events(self, service_id: str, limit: int = 50) -> list[StateChangeEvent]:
        """Most recent first."""

    @abstractmethod
    def flush_all(self) -> None:
        """Drop everything. Test/ops utility."""

    def close(self) -> None:
        pass
