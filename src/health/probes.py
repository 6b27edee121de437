"""Probe strategies — one health check against one endpoint.

Supports: HTTP HEAD, HTTP GET, TCP connect, ICMP ping (via the system binary).
Every strategy returns a ProbeOutcome and never raises: network errors are
classified into ProbeErrorKind tags and folded into a failing outcome.
"""

from __future__ import annotations

import logging
import re
import socket
import ssl
import subprocess
import sys
import time
from collections.abc import Callable

import httpx

from .errors import ProbeError, ProbeErrorKind
from .models import ProbeKind, ProbeOutcome, Target

logger = logging.getLogger(__name__)

_PING_TIME = re.compile(r"time[=<]\s*([\d.]+)\s*ms")
_DNS_HINTS = ("name or service not known", "nodename nor servname", "unknown host",
              "cannot resolve", "getaddrinfo failed", "temporary failure in name resolution")


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 1)


def classify_exception(exc: BaseException) -> ProbeError:
    """Map an exception (and its cause chain) to a tagged ProbeError."""
    if isinstance(exc, ProbeError):
        return exc

    seen: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in seen:
        seen.append(current)
        current = current.__cause__ or current.__context__

    for e in seen:
        if isinstance(e, (httpx.TimeoutException, socket.timeout, TimeoutError, subprocess.TimeoutExpired)):
            return ProbeError(ProbeErrorKind.TIMEOUT, str(exc) or "timed out")
        if isinstance(e, socket.gaierror):
            return ProbeError(ProbeErrorKind.DNS_FAILURE, str(e))
        if isinstance(e, ssl.SSLError):
            return ProbeError(ProbeErrorKind.TLS_FAILURE, str(e))
        if isinstance(e, ConnectionRefusedError):
            return ProbeError(ProbeErrorKind.CONNECTION_REFUSED, str(e))

    text = " ".join(str(e) for e in seen).lower()
    if any(hint in text for hint in _DNS_HINTS):
        return ProbeError(ProbeErrorKind.DNS_FAILURE, str(exc))
    if "certificate" in text or "ssl" in text or "tls" in text:
        return ProbeError(ProbeErrorKind.TLS_FAILURE, str(exc))
    if "connection refused" in text:
        return ProbeError(ProbeErrorKind.CONNECTION_REFUSED, str(exc))
    return ProbeError(ProbeErrorKind.ERROR, f"{type(exc).__name__}: {exc}")


def _failure(latency_ms: float, err: ProbeError, status_code: int | None = None) -> ProbeOutcome:
    return ProbeOutcome(
        success=False, latency_ms=latency_ms, error=err.kind.value,
        message=err.message or err.kind.value, status_code=status_code,
    )


# ── Check runners ────────────────────────────────────────────────────────────


def deadline_hook(deadline: float) -> Callable[[httpx.Request], None]:
    """Request event hook bounding every hop (redirects included) by one overall deadline.

    httpx timeouts apply per phase and per hop; this shrinks each hop's
    timeouts to what is left of the budget and refuses hops past it. Phases
    inside one hop can still add up; the scheduler's own deadline around
    each probe is the hard bound.
    """

    def hook(request: httpx.Request) -> None:
        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            raise httpx.TimeoutException("Overall probe deadline exceeded", request=request)
        request.extensions["timeout"] = httpx.Timeout(remaining).as_dict()

    return hook


def run_http_check(target: Target, timeout_ms: int, method: str = "HEAD") -> ProbeOutcome:
    """HTTP(S) check — HEAD/GET, success when the expected status comes back."""
    t0 = time.perf_counter()
    hooks = {"request": [deadline_hook(t0 + timeout_ms / 1000)]}
    try:
        with httpx.Client(
            timeout=timeout_ms / 1000, follow_redirects=True, verify=True, event_hooks=hooks,
        ) as client:
            resp = client.request(method, target.url)
        latency = _elapsed_ms(t0)
    except Exception as e:
        latency = _elapsed_ms(t0)
        err = classify_exception(e)
        if err.kind == ProbeErrorKind.TIMEOUT:
            latency = float(timeout_ms)
        return _failure(latency, err)

    if resp.status_code != target.expected_status:
        return _failure(
            latency,
            ProbeError(
                ProbeErrorKind.HTTP_STATUS,
                f"Expected {target.expected_status}, got {resp.status_code}",
            ),
            status_code=resp.status_code,
        )
    return ProbeOutcome(
        success=True, latency_ms=latency, status_code=resp.status_code,
        message=f"{resp.status_code} OK",
    )


def run_tcp_check(target: Target, timeout_ms: int) -> ProbeOutcome:
    """Raw TCP port connectivity check."""
    t0 = time.perf_counter()
    try:
        sock = socket.create_connection((target.host, target.port), timeout=timeout_ms / 1000)
        sock.close()
    except Exception as e:
        err = classify_exception(e)
        latency = float(timeout_ms) if err.kind == ProbeErrorKind.TIMEOUT else _elapsed_ms(t0)
        return _failure(latency, err)
    return ProbeOutcome(success=True, latency_ms=_elapsed_ms(t0), message=f"Port {target.port} open")


def _ping_command(host: str, timeout_ms: int) -> list[str]:
    seconds = max(1, -(-timeout_ms // 1000))
    if sys.platform.startswith("win"):
        return ["ping", "-n", "1", "-w", str(timeout_ms), host]
    if sys.platform == "darwin":
        return ["ping", "-c", "1", "-t", str(seconds), host]
    return ["ping", "-c", "1", "-W", str(seconds), host]


def run_ping_check(target: Target, timeout_ms: int) -> ProbeOutcome:
    """ICMP echo via the system ``ping`` binary (no raw-socket privileges needed)."""
    t0 = time.perf_counter()
    try:
        proc = subprocess.run(
            _ping_command(target.host, timeout_ms),
            capture_output=True, text=True, timeout=timeout_ms / 1000,
        )
    except FileNotFoundError:
        return _failure(_elapsed_ms(t0), ProbeError(ProbeErrorKind.ERROR, "ping binary not found"))
    except Exception as e:
        err = classify_exception(e)
        latency = float(timeout_ms) if err.kind == ProbeErrorKind.TIMEOUT else _elapsed_ms(t0)
        return _failure(latency, err)

    latency = _elapsed_ms(t0)
    if proc.returncode == 0:
        match = _PING_TIME.search(proc.stdout)
        if match:
            latency = float(match.group(1))
        return ProbeOutcome(success=True, latency_ms=latency, message=f"Reply from {target.host}")

    output = f"{proc.stdout}\n{proc.stderr}".strip()
    if any(hint in output.lower() for hint in _DNS_HINTS):
        return _failure(latency, ProbeError(ProbeErrorKind.DNS_FAILURE, output.splitlines()[-1]))
    return _failure(latency, ProbeError(ProbeErrorKind.UNREACHABLE, f"No reply from {target.host}"))


# Dispatcher
PROBE_RUNNERS: dict[ProbeKind, Callable[[Target, int], ProbeOutcome]] = {
    ProbeKind.HTTP_HEAD: lambda t, ms: run_http_check(t, ms, "HEAD"),
    ProbeKind.HTTP_GET: lambda t, ms: run_http_check(t, ms, "GET"),
    ProbeKind.TCP: run_tcp_check,
    ProbeKind.PING: run_ping_check,
}


def execute(target: Target, timeout_ms: int) -> ProbeOutcome:
    """Run one probe for ``target``. Never raises."""
    runner = PROBE_RUNNERS.get(target.kind)
    if runner is None:
        return _failure(0.0, ProbeError(ProbeErrorKind.ERROR, f"Unknown probe kind: {target.kind}"))
    try:
        return runner(target, timeout_ms)
    except Exception as e:
        logger.exception("Probe runner crashed for %s", target)
        return _failure(0.0, classify_exception(e))
