"""Per-service health state machine.

Holds the current HealthState and counters for one service and applies the
threshold evaluator to each probe outcome. Not thread-safe on its own: the
scheduler only touches a machine while holding that service's lock.
"""

from __future__ import annotations

import logging

from .evaluator import Counters, evaluate
from .models import HealthState, ProbeOutcome, StateChangeEvent, Thresholds

logger = logging.getLogger(__name__)


class ServiceHealthMachine:
    """unknown → {healthy, warning, failing}; healthy ⇄ warning ⇄ failing."""

    def __init__(self, service_id: str, thresholds: Thresholds) -> None:
        self.service_id = service_id
        self.thresholds = thresholds
        self.state = HealthState.UNKNOWN
        self.counters = Counters()
        self.last_outcome: ProbeOutcome | None = None
        self.last_probe_at: str | None = None
        self.state_changed_at: str | None = None
        self.pending_event: StateChangeEvent | None = None

    def on_probe_result(self, outcome: ProbeOutcome) -> bool:
        """Apply one outcome. Returns True when a state-change event must be persisted."""
        decision = evaluate(self.state, self.counters, outcome, self.thresholds)
        previous = self.state

        self.state = decision.new_state
        self.counters = decision.counters
        self.last_outcome = outcome
        self.last_probe_at = outcome.timestamp

        if not decision.should_record:
            self.pending_event = None
            return False

        self.state_changed_at = outcome.timestamp
        self.pending_event = StateChangeEvent(
            service_id=self.service_id,
            from_state=previous,
            to_state=decision.new_state,
            message=decision.reason,
            timestamp=outcome.timestamp,
        )
        log = logger.warning if decision.new_state == HealthState.FAILING else logger.info
        log("Service %s: %s → %s (%s)", self.service_id, previous.value, decision.new_state.value, decision.reason)
        return True

    def reset(self) -> None:
        self.state = HealthState.UNKNOWN
        self.counters = Counters()
        self.last_outcome = None
        self.last_probe_at = None
        self.state_changed_at = None
        self.pending_event = None
