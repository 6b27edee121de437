"""Threshold evaluator — maps (state, counters, outcome, thresholds) to a decision.

Degradation is gradual: the first failure only warns, ``failure_threshold``
consecutive failures mark the service failing. Recovery is one-shot: any fast
success is healthy again. A success slower than ``warning_threshold_ms`` is a
warning regardless of the previous state.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import HealthState, ProbeOutcome, Thresholds


@dataclass(frozen=True)
class Counters:
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    total_probes: int = 0


@dataclass(frozen=True)
class Decision:
    new_state: HealthState
    should_record: bool
    counters: Counters
    reason: str = ""


def is_slow(outcome: ProbeOutcome, thresholds: Thresholds) -> bool:
    return thresholds.warning_threshold_ms > 0 and outcome.latency_ms > thresholds.warning_threshold_ms


def evaluate(
    current_state: HealthState,
    counters: Counters,
    outcome: ProbeOutcome,
    thresholds: Thresholds,
) -> Decision:
    if outcome.success:
        updated = Counters(
            consecutive_successes=counters.consecutive_successes + 1,
            consecutive_failures=0,
            total_probes=counters.total_probes + 1,
        )
        if is_slow(outcome, thresholds):
            new_state = HealthState.WARNING
            reason = (
                f"latency {outcome.latency_ms:.0f}ms above warning threshold "
                f"{thresholds.warning_threshold_ms}ms"
            )
        else:
            new_state = HealthState.HEALTHY
            reason = outcome.message or "probe succeeded"
    else:
        updated = Counters(
            consecutive_successes=0,
            consecutive_failures=counters.consecutive_failures + 1,
            total_probes=counters.total_probes + 1,
        )
        if updated.consecutive_failures >= thresholds.failure_threshold:
            new_state = HealthState.FAILING
        else:
            new_state = HealthState.WARNING
        reason = (
            f"{updated.consecutive_failures} consecutive failure(s): "
            f"{outcome.error or 'error'} {outcome.message}".rstrip()
        )

    return Decision(
        new_state=new_state,
        should_record=new_state != current_state,
        counters=updated,
        reason=reason,
    )
