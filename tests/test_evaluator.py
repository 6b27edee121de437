"""Tests for the threshold evaluator and the per-service state machine."""

from __future__ import annotations

from src.health.evaluator import Counters, evaluate
from src.health.models import HealthState, Thresholds
from src.health.state_machine import ServiceHealthMachine

from tests.helpers import fail, ok

THRESHOLDS = Thresholds(warning_threshold_ms=30000, failure_threshold=3)


# ── evaluate ─────────────────────────────────────────────────────────────────


class TestEvaluate:
    def test_first_success_from_unknown(self) -> None:
        d = evaluate(HealthState.UNKNOWN, Counters(), ok(), THRESHOLDS)
        assert d.new_state == HealthState.HEALTHY
        assert d.should_record is True
        assert d.counters == Counters(consecutive_successes=1, consecutive_failures=0, total_probes=1)

    def test_success_while_healthy_records_nothing(self) -> None:
        d = evaluate(HealthState.HEALTHY, Counters(1, 0, 1), ok(), THRESHOLDS)
        assert d.new_state == HealthState.HEALTHY
        assert d.should_record is False

    def test_single_failure_only_warns(self) -> None:
        d = evaluate(HealthState.HEALTHY, Counters(5, 0, 5), fail(), THRESHOLDS)
        assert d.new_state == HealthState.WARNING
        assert d.counters.consecutive_failures == 1
        assert d.counters.consecutive_successes == 0

    def test_failure_threshold_reached(self) -> None:
        d = evaluate(HealthState.WARNING, Counters(0, 2, 7), fail(), THRESHOLDS)
        assert d.new_state == HealthState.FAILING
        assert d.should_record is True
        assert d.counters.consecutive_failures == 3

    def test_failure_while_failing_keeps_failing_silently(self) -> None:
        d = evaluate(HealthState.FAILING, Counters(0, 3, 8), fail(), THRESHOLDS)
        assert d.new_state == HealthState.FAILING
        assert d.should_record is False

    def test_slow_success_warns(self) -> None:
        d = evaluate(HealthState.HEALTHY, Counters(1, 0, 1), ok(latency_ms=30001), THRESHOLDS)
        assert d.new_state == HealthState.WARNING
        assert "latency" in d.reason

    def test_latency_at_threshold_is_healthy(self) -> None:
        d = evaluate(HealthState.HEALTHY, Counters(), ok(latency_ms=30000), THRESHOLDS)
        assert d.new_state == HealthState.HEALTHY

    def test_zero_warning_threshold_disables_latency_check(self) -> None:
        d = evaluate(HealthState.HEALTHY, Counters(), ok(latency_ms=99999), Thresholds())
        assert d.new_state == HealthState.HEALTHY

    def test_one_success_recovers_from_failing(self) -> None:
        d = evaluate(HealthState.FAILING, Counters(0, 9, 9), ok(), THRESHOLDS)
        assert d.new_state == HealthState.HEALTHY
        assert d.counters.consecutive_failures == 0

    def test_slow_success_while_failing_lands_in_warning(self) -> None:
        d = evaluate(HealthState.FAILING, Counters(0, 4, 4), ok(latency_ms=40000), THRESHOLDS)
        assert d.new_state == HealthState.WARNING
        assert d.counters.consecutive_failures == 0

    def test_custom_failure_threshold(self) -> None:
        t = Thresholds(failure_threshold=1)
        d = evaluate(HealthState.HEALTHY, Counters(), fail(), t)
        assert d.new_state == HealthState.FAILING

    def test_pure(self) -> None:
        counters = Counters(2, 0, 2)
        evaluate(HealthState.HEALTHY, counters, fail(), THRESHOLDS)
        assert counters == Counters(2, 0, 2)


# ── ServiceHealthMachine ─────────────────────────────────────────────────────


class TestStateMachine:
    def test_starts_unknown(self) -> None:
        m = ServiceHealthMachine("s1", THRESHOLDS)
        assert m.state == HealthState.UNKNOWN
        assert m.counters == Counters()

    def test_escalates_one_step_at_a_time(self) -> None:
        m = ServiceHealthMachine("s1", THRESHOLDS)
        m.on_probe_result(ok())
        seen = []
        for _ in range(3):
            m.on_probe_result(fail())
            seen.append(m.state)
        assert seen == [HealthState.WARNING, HealthState.WARNING, HealthState.FAILING]

    def test_pending_event_describes_transition(self) -> None:
        m = ServiceHealthMachine("s1", THRESHOLDS)
        assert m.on_probe_result(ok()) is True
        assert m.pending_event is not None
        assert m.pending_event.from_state == HealthState.UNKNOWN
        assert m.pending_event.to_state == HealthState.HEALTHY
        assert m.on_probe_result(ok()) is False
        assert m.pending_event is None

    def test_tracks_last_outcome(self) -> None:
        m = ServiceHealthMachine("s1", THRESHOLDS)
        outcome = fail()
        m.on_probe_result(outcome)
        assert m.last_outcome == outcome
        assert m.last_probe_at == outcome.timestamp
        assert m.state_changed_at == outcome.timestamp

    def test_reset(self) -> None:
        m = ServiceHealthMachine("s1", THRESHOLDS)
        for _ in range(4):
            m.on_probe_result(fail())
        m.reset()
        assert m.state == HealthState.UNKNOWN
        assert m.counters == Counters()
        assert m.last_outcome is None
        # reset is independent of history: next failure starts the count again
        m.on_probe_result(fail())
        assert m.state == HealthState.WARNING
