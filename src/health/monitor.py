"""Monitor facade — the operations the API layer consumes.

Wires storage, the history recorder and the scheduler together. Only
ValidationError and NotFoundError escape from here; storage failures are
logged and the in-memory schedule carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from src.storage.base import Storage

from .errors import NotFoundError, StorageError, ValidationError, ValidationErrorKind
from .models import ProbeOutcome, ServiceDefinition, StateChangeEvent, new_service_id
from .probes import execute
from .recorder import HistoryRecorder
from .scheduler import HealthScheduler, ProbeFn, RuntimeSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceSnapshot:
    """Definition fields plus current health, as returned by get/list."""

    definition: ServiceDefinition
    runtime: RuntimeSnapshot

    @property
    def id(self) -> str:
        return self.definition.id

    def to_dict(self) -> dict[str, Any]:
        data = self.definition.to_dict()
        rt = self.runtime
        data.update({
            "status": rt.state.value,
            "consecutiveFailures": rt.consecutive_failures,
            "consecutiveSuccesses": rt.consecutive_successes,
            "totalProbes": rt.total_probes,
            "lastProbeAt": rt.last_probe_at,
            "stateChangedAt": rt.state_changed_at,
            "nextDelay": rt.next_delay_ms,
            "nextRunIn": rt.next_run_in_ms,
            "lastOutcome": rt.last_outcome.to_dict() if rt.last_outcome else None,
        })
        return data


class Monitor:
    def __init__(
        self,
        storage: Storage,
        probe: ProbeFn = execute,
        failure_threshold: int = 3,
        max_workers: int = 8,
        probe_grace_ms: int = 1000,
        history_limit: int = 100,
        scheduler: HealthScheduler | None = None,
    ) -> None:
        self.storage = storage
        self.recorder = HistoryRecorder(storage)
        self.failure_threshold = failure_threshold
        self.history_limit = history_limit
        self.scheduler = scheduler or HealthScheduler(
            self.recorder,
            probe=probe,
            failure_threshold=failure_threshold,
            max_workers=max_workers,
            probe_grace_ms=probe_grace_ms,
        )

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

    def load_persisted(self) -> int:
        """Schedule every service already in storage. Returns how many were armed."""
        try:
            definitions = self.storage.list_services()
        except StorageError:
            logger.exception("Could not load persisted services")
            return 0
        count = 0
        for definition in definitions:
            if self.scheduler.get(definition.id):
                continue
            try:
                definition.validate()
                self.scheduler.add(definition)
                count += 1
            except ValidationError as e:
                logger.warning("Skipping invalid stored service %s: %s", definition.id, e)
        logger.info("Loaded %d persisted services", count)
        return count

    # ── Mutations ────────────────────────────────────────────────────────

    def add_service(self, data: dict[str, Any] | ServiceDefinition) -> str:
        """Validate, persist and schedule a service. Returns its id."""
        definition = data if isinstance(data, ServiceDefinition) else ServiceDefinition.from_dict(data)
        definition.validate()
        definition.thresholds(self.failure_threshold)  # raises on malformed thresholds

        service_id = definition.id or new_service_id()
        definition = definition.with_id(service_id)
        # the scheduler registry is the point of truth for duplicate ids
        try:
            self.scheduler.add(definition)
        except ValueError:
            raise ValidationError(
                "id", ValidationErrorKind.INVALID_VALUE, f"Service '{service_id}' already exists",
            ) from None
        try:
            self.storage.create_service(definition)
        except StorageError:
            logger.exception("Could not persist service %s, scheduling in memory only", service_id)
        return service_id

    def delete_service(self, service_id: str) -> None:
        removed = self.scheduler.remove(service_id)
        try:
            stored = self.storage.delete_service(service_id)
        except StorageError:
            logger.exception("Could not delete stored service %s", service_id)
            stored = False
        if not (removed or stored):
            raise NotFoundError(service_id)
        logger.info("Deleted service %s", service_id)

    def reset_service(self, service_id: str) -> None:
        if not self.scheduler.reset(service_id):
            raise NotFoundError(service_id)

    async def check_service(self, service_id: str) -> ServiceSnapshot:
        """Probe a service right now and return its updated snapshot."""
        await self.scheduler.probe_now(service_id)
        return self.get_service(service_id)

    # ── Reads ────────────────────────────────────────────────────────────

    def get_service(self, service_id: str) -> ServiceSnapshot:
        runtime = self.scheduler.get(service_id)
        if runtime is None:
            raise NotFoundError(service_id)
        return ServiceSnapshot(definition=runtime.definition, runtime=self.scheduler.snapshot(service_id))

    def list_services(self) -> list[ServiceSnapshot]:
        snapshots = []
        for service_id in self.scheduler.service_ids():
            try:
                snapshots.append(self.get_service(service_id))
            except NotFoundError:
                continue  # deleted while listing
        return snapshots

    def list_outcomes(self, service_id: str, limit: int | None = None) -> list[ProbeOutcome]:
        self._require(service_id)
        try:
            return self.recorder.list_outcomes(service_id, limit or self.history_limit)
        except StorageError:
            logger.exception("Could not read outcomes for %s", service_id)
            return []

    def list_events(self, service_id: str, limit: int | None = None) -> list[StateChangeEvent]:
        self._require(service_id)
        try:
            return self.recorder.list_events(service_id, limit or self.history_limit)
        except StorageError:
            logger.exception("Could not read events for %s", service_id)
            return []

    def _require(self, service_id: str) -> None:
        if self.scheduler.get(service_id) is None:
            raise NotFoundError(service_id)
