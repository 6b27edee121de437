"""History recorder — appends outcomes and state changes to storage.

Write failures are logged and dropped. The in-memory state machine stays the
source of truth for scheduling; storage is the source of truth for reporting,
and the two may briefly diverge while storage is failing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import StorageError
from .models import ProbeOutcome, StateChangeEvent
from .state_machine import ServiceHealthMachine

if TYPE_CHECKING:
    from src.storage.base import Storage

logger = logging.getLogger(__name__)


class HistoryRecorder:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def record_outcome(self, service_id: str, outcome: ProbeOutcome) -> bool:
        try:
            self.storage.append_outcome(service_id, outcome)
            return True
        except StorageError as e:
            logger.error("Failed to record outcome for %s: %s", service_id, e)
            return False

    def record_event(self, service_id: str, event: StateChangeEvent) -> bool:
        try:
            self.storage.append_event(service_id, event)
            return True
        except StorageError as e:
            logger.error("Failed to record state change for %s: %s", service_id, e)
            return False

    def reset(self, service_id: str, machine: ServiceHealthMachine | None = None) -> bool:
        """Drop all history of a service, then reset its state machine.

        The machine is reset even if storage fails; returns False in that case.
        """
        cleared = True
        try:
            self.storage.clear_outcomes(service_id)
        except StorageError as e:
            logger.error("Failed to clear history for %s: %s", service_id, e)
            cleared = False
        if machine is not None:
            machine.reset()
        logger.info("History reset for service %s", service_id)
        return cleared

    def list_outcomes(self, service_id: str, limit: int = 100) -> list[ProbeOutcome]:
        return self.storage.list_outcomes(service_id, limit)

    def list_events(self, service_id: str, limit: int = 50) -> list[StateChangeEvent]:
        return self.storage.list_events(service_id, limit)
