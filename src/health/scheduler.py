"""Health check scheduler — one timer per service, shared worker pool.

Timers live in a single min-heap keyed by next fire time. A dispatcher
coroutine pops due entries and runs each probe in a thread pool so a slow
probe only occupies one worker. Per service:

- at most one probe is in flight; a firing that comes due meanwhile is
  skipped, the in-flight completion re-arms the timer;
- outcomes carry the epoch and issue sequence they were started with, and
  are dropped if the service was reset or deleted since (stale epoch) or a
  newer probe was already applied;
- the next delay is chosen from the post-update state: ``failure_interval``
  while failing, ``interval`` otherwise;
- the deadline (``timeout`` plus grace) starts when a worker picks the probe
  up, not while it waits in the pool queue; an overrun is recorded as a
  timeout and the service stays in flight until the worker thread returns.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .errors import NotFoundError, ProbeErrorKind
from .models import HealthState, ProbeOutcome, ServiceDefinition, Target
from .probes import execute
from .recorder import HistoryRecorder
from .state_machine import ServiceHealthMachine

logger = logging.getLogger(__name__)

ProbeFn = Callable[[Target, int], ProbeOutcome]


def next_delay_ms(state: HealthState, definition: ServiceDefinition) -> int:
    """Delay before the next probe, given the state after the last one."""
    if state == HealthState.FAILING:
        return definition.failure_interval
    return definition.interval


# ── Runtime ──────────────────────────────────────────────────────────────────


@dataclass
class ServiceRuntime:
    """Mutable scheduling state of one service. Guarded by ``lock``."""

    definition: ServiceDefinition
    machine: ServiceHealthMachine
    lock: threading.Lock = field(default_factory=threading.Lock)
    epoch: int = 0
    in_flight: bool = False
    issued_seq: int = 0
    applied_seq: int = 0
    skipped_firings: int = 0
    removed: bool = False
    # owned by the heap lock
    timer_token: int = 0
    next_run_at: float | None = None
    next_delay_ms: int | None = None

    @property
    def service_id(self) -> str:
        return self.definition.id


@dataclass(frozen=True)
class RuntimeSnapshot:
    """Read-only view of a ServiceRuntime for reporting."""

    service_id: str
    state: HealthState
    consecutive_successes: int
    consecutive_failures: int
    total_probes: int
    last_probe_at: str | None
    state_changed_at: str | None
    last_outcome: ProbeOutcome | None
    in_flight: bool
    epoch: int
    skipped_firings: int
    next_delay_ms: int | None
    next_run_in_ms: int | None


# ── Scheduler ────────────────────────────────────────────────────────────────


class HealthScheduler:
    """Schedules and executes probes for every registered service."""

    def __init__(
        self,
        recorder: HistoryRecorder,
        probe: ProbeFn = execute,
        failure_threshold: int = 3,
        max_workers: int = 8,
        probe_grace_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.recorder = recorder
        self.failure_threshold = failure_threshold
        self.probe_grace_ms = probe_grace_ms
        self._probe = probe
        self._clock = clock
        self._max_workers = max_workers

        self._runtimes: dict[str, ServiceRuntime] = {}
        self._registry_lock = threading.Lock()
        self._heap: list[tuple[float, int, str]] = []
        self._heap_lock = threading.Lock()
        self._tokens = itertools.count(1)

        self._executor: ThreadPoolExecutor | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._probe_tasks: set[asyncio.Task[None]] = set()
        self._running = False

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the dispatcher. Services added earlier begin probing now."""
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._running = True
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="health-dispatcher")
        logger.info(
            "Health scheduler started: %d services, %d workers",
            len(self._runtimes), self._max_workers,
        )

    async def stop(self) -> None:
        """Stop dispatching and cancel pending probe tasks."""
        self._running = False
        tasks = list(self._probe_tasks)
        if self._dispatcher:
            tasks.append(self._dispatcher)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._probe_tasks.clear()
        self._dispatcher = None
        if self._executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._loop = None
        self._wakeup = None
        logger.info("Health scheduler stopped")

    # ── Registry ─────────────────────────────────────────────────────────

    def add(self, definition: ServiceDefinition) -> None:
        """Register a service and fire its first probe immediately."""
        if not definition.id:
            raise ValueError("Service definition must have an id before scheduling")
        runtime = ServiceRuntime(
            definition=definition,
            machine=ServiceHealthMachine(definition.id, definition.thresholds(self.failure_threshold)),
        )
        with self._registry_lock:
            if definition.id in self._runtimes:
                raise ValueError(f"Service already scheduled: {definition.id}")
            self._runtimes[definition.id] = runtime
        if definition.enabled:
            self._arm(runtime, 0)
        logger.info("Scheduled service %s (%s)", definition.id, definition.name)

    def remove(self, service_id: str) -> bool:
        """Unregister a service. Its heap entry goes stale, any in-flight result is dropped."""
        with self._registry_lock:
            runtime = self._runtimes.pop(service_id, None)
        if runtime is None:
            return False
        with runtime.lock:
            runtime.removed = True
            runtime.epoch += 1
        logger.info("Unscheduled service %s", service_id)
        return True

    def reset(self, service_id: str) -> bool:
        """Drop history and return to unknown; the timer keeps running."""
        runtime = self._runtimes.get(service_id)
        if runtime is None:
            return False
        with runtime.lock:
            if runtime.removed:
                return False
            runtime.epoch += 1
            self.recorder.reset(service_id, runtime.machine)
        return True

    def get(self, service_id: str) -> ServiceRuntime | None:
        return self._runtimes.get(service_id)

    def service_ids(self) -> list[str]:
        with self._registry_lock:
            return list(self._runtimes)

    def snapshot(self, service_id: str) -> RuntimeSnapshot:
        runtime = self._runtimes.get(service_id)
        if runtime is None:
            raise NotFoundError(service_id)
        return self._snapshot(runtime)

    def snapshots(self) -> list[RuntimeSnapshot]:
        with self._registry_lock:
            runtimes = list(self._runtimes.values())
        return [self._snapshot(r) for r in runtimes]

    def _snapshot(self, runtime: ServiceRuntime) -> RuntimeSnapshot:
        with runtime.lock:
            machine = runtime.machine
            next_run_in = None
            if runtime.next_run_at is not None:
                next_run_in = max(0, int((runtime.next_run_at - self._clock()) * 1000))
            return RuntimeSnapshot(
                service_id=runtime.service_id,
                state=machine.state,
                consecutive_successes=machine.counters.consecutive_successes,
                consecutive_failures=machine.counters.consecutive_failures,
                total_probes=machine.counters.total_probes,
                last_probe_at=machine.last_probe_at,
                state_changed_at=machine.state_changed_at,
                last_outcome=machine.last_outcome,
                in_flight=runtime.in_flight,
                epoch=runtime.epoch,
                skipped_firings=runtime.skipped_firings,
                next_delay_ms=runtime.next_delay_ms,
                next_run_in_ms=next_run_in,
            )

    # ── Timers ───────────────────────────────────────────────────────────

    def _arm(self, runtime: ServiceRuntime, delay_ms: int) -> None:
        with self._heap_lock:
            token = next(self._tokens)
            fire_at = self._clock() + delay_ms / 1000
            runtime.timer_token = token
            runtime.next_run_at = fire_at
            runtime.next_delay_ms = delay_ms
            heapq.heappush(self._heap, (fire_at, token, runtime.service_id))
        self._wake()

    def _wake(self) -> None:
        loop, event = self._loop, self._wakeup
        if loop is None or event is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(event.set)

    def _pop_due(self) -> tuple[list[ServiceRuntime], float | None]:
        """Pop every due, still-current heap entry. Returns them plus seconds to the next one."""
        due: list[ServiceRuntime] = []
        now = self._clock()
        with self._heap_lock:
            while self._heap:
                fire_at, token, service_id = self._heap[0]
                if fire_at > now:
                    return due, fire_at - now
                heapq.heappop(self._heap)
                runtime = self._runtimes.get(service_id)
                if runtime is None or runtime.timer_token != token:
                    continue  # deleted or re-armed since
                due.append(runtime)
        return due, None

    async def _dispatch_loop(self) -> None:
        assert self._wakeup is not None
        while self._running:
            try:
                self._wakeup.clear()
                due, wait = self._pop_due()
                for runtime in due:
                    self._fire(runtime)
                if due:
                    continue
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Health dispatcher error")
                await asyncio.sleep(1)

    def _fire(self, runtime: ServiceRuntime) -> None:
        started = self._begin(runtime)
        if started is None:
            return
        seq, epoch = started
        task = asyncio.create_task(
            self._run_probe(runtime, seq, epoch),
            name=f"probe-{runtime.service_id}-{seq}",
        )
        self._probe_tasks.add(task)
        task.add_done_callback(self._probe_tasks.discard)

    def _begin(self, runtime: ServiceRuntime) -> tuple[int, int] | None:
        """Mark a probe as issued. None when it must be skipped."""
        with runtime.lock:
            if runtime.removed:
                return None
            if runtime.in_flight:
                runtime.skipped_firings += 1
                logger.debug("Skipping probe for %s: previous probe still running", runtime.service_id)
                return None
            runtime.in_flight = True
            runtime.issued_seq += 1
            return runtime.issued_seq, runtime.epoch

    # ── Probe execution ──────────────────────────────────────────────────

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="probe")
        return self._executor

    def _call_probe(
        self, loop: asyncio.AbstractEventLoop, started: asyncio.Future[None], definition: ServiceDefinition,
    ) -> ProbeOutcome:
        """Worker-thread entry: signal the start, then run the probe."""
        try:
            loop.call_soon_threadsafe(_mark_started, started)
        except RuntimeError:
            pass  # loop already closed, nobody is waiting
        return self._probe(definition.target(), definition.timeout)

    async def _run_probe(self, runtime: ServiceRuntime, seq: int, epoch: int) -> None:
        definition = runtime.definition
        loop = asyncio.get_running_loop()
        budget = (definition.timeout + self.probe_grace_ms) / 1000
        started: asyncio.Future[None] = loop.create_future()
        work = loop.run_in_executor(self._get_executor(), self._call_probe, loop, started, definition)
        release = True
        try:
            # Time spent queued behind other services' probes does not count
            await asyncio.wait({started, work}, return_when=asyncio.FIRST_COMPLETED)
            outcome = await asyncio.wait_for(asyncio.shield(work), timeout=budget)
        except asyncio.TimeoutError:
            outcome = ProbeOutcome(
                success=False, latency_ms=float(definition.timeout),
                error=ProbeErrorKind.TIMEOUT.value,
                message=f"Probe did not finish within {definition.timeout}ms",
            )
            release = False
        except asyncio.CancelledError:
            with runtime.lock:
                runtime.in_flight = False
            raise
        except Exception as e:
            logger.exception("Probe error: %s", definition.id)
            outcome = ProbeOutcome(
                success=False, latency_ms=0.0, error=ProbeErrorKind.ERROR.value,
                message=f"{type(e).__name__}: {e}",
            )
        self.complete(runtime, seq, epoch, outcome.tagged(definition.id), release=release)
        if not release:
            # the worker thread is still busy; the service stays in flight until it returns
            work.add_done_callback(lambda fut: self._release_late(runtime, fut))

    def _release_late(self, runtime: ServiceRuntime, fut: asyncio.Future[ProbeOutcome]) -> None:
        if not fut.cancelled() and fut.exception() is not None:
            logger.debug("Late probe for %s failed: %s", runtime.service_id, fut.exception())
        else:
            logger.debug("Late probe for %s returned, result discarded", runtime.service_id)
        with runtime.lock:
            runtime.in_flight = False

    def complete(
        self, runtime: ServiceRuntime, seq: int, epoch: int, outcome: ProbeOutcome, release: bool = True,
    ) -> bool:
        """Apply a finished probe and re-arm the timer. Returns False if the outcome was dropped.

        ``release=False`` keeps the service in flight (its worker is still running).
        """
        applied = False
        with runtime.lock:
            if release:
                runtime.in_flight = False
            if runtime.removed:
                logger.debug("Dropping outcome for deleted service %s", runtime.service_id)
                return False
            if epoch != runtime.epoch or seq <= runtime.applied_seq:
                logger.debug(
                    "Dropping stale outcome for %s (epoch %d/%d, seq %d/%d)",
                    runtime.service_id, epoch, runtime.epoch, seq, runtime.applied_seq,
                )
            else:
                runtime.applied_seq = seq
                changed = runtime.machine.on_probe_result(outcome)
                self.recorder.record_outcome(runtime.service_id, outcome)
                if changed and runtime.machine.pending_event is not None:
                    self.recorder.record_event(runtime.service_id, runtime.machine.pending_event)
                applied = True
                logger.debug(
                    "Probe %s: %s (%.0fms) → %s",
                    runtime.service_id, "ok" if outcome.success else outcome.error,
                    outcome.latency_ms, runtime.machine.state.value,
                )
            delay = next_delay_ms(runtime.machine.state, runtime.definition)
        if runtime.definition.enabled:
            self._arm(runtime, delay)
        return applied

    async def probe_now(self, service_id: str) -> RuntimeSnapshot:
        """Run one probe immediately; skipped if one is already in flight."""
        runtime = self._runtimes.get(service_id)
        if runtime is None:
            raise NotFoundError(service_id)
        started = self._begin(runtime)
        if started is not None:
            await self._run_probe(runtime, *started)
        return self._snapshot(runtime)


def _mark_started(fut: asyncio.Future[None]) -> None:
    if not fut.done():
        fut.set_result(None)
