"""Test doubles shared across test modules."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from src.health.models import ProbeOutcome, Target

VALID_SERVICE: dict[str, Any] = {
    "name": "my new service",
    "pingServiceName": "http-head",
    "url": "http://apple.com",
    "timeout": 10000,
    "port": 80,
    "interval": 60000,
    "failureInterval": 30000,
    "warningThreshold": 30000,
}


def ok(latency_ms: float = 12.0) -> ProbeOutcome:
    return ProbeOutcome(success=True, latency_ms=latency_ms, status_code=200, message="200 OK")


def fail(error: str = "connection_refused", latency_ms: float = 3.0) -> ProbeOutcome:
    return ProbeOutcome(success=False, latency_ms=latency_ms, error=error, message="Connection refused")


class ScriptedProbe:
    """Probe stand-in: returns queued outcomes, then ``default``. Thread-safe."""

    def __init__(self, *outcomes: ProbeOutcome | Callable[[], ProbeOutcome], default: ProbeOutcome | None = None) -> None:
        self._queue = list(outcomes)
        self._lock = threading.Lock()
        self.default = default or ok()
        self.calls: list[Target] = []

    def push(self, *outcomes: ProbeOutcome | Callable[[], ProbeOutcome]) -> None:
        with self._lock:
            self._queue.extend(outcomes)

    def __call__(self, target: Target, timeout_ms: int) -> ProbeOutcome:
        with self._lock:
            self.calls.append(target)
            item = self._queue.pop(0) if self._queue else self.default
        return item() if callable(item) else item


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def service(name: str = "svc", interval: int = 60000, failure_interval: int = 30000,
            timeout: int = 1000, warning_threshold: int = 30000, **extra: Any) -> dict[str, Any]:
    data = dict(VALID_SERVICE, name=name, interval=interval, failureInterval=failure_interval,
                timeout=timeout, warningThreshold=warning_threshold)
    data.update(extra)
    return data
