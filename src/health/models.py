"""Data model for monitored services — definitions, outcomes, states, events.

Durations are milliseconds throughout, matching the JSON field names the REST
layer accepts (``interval``, ``failureInterval``, ``warningThreshold``,
``timeout``).
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from .errors import ValidationError, ValidationErrorKind

# ── Enums ────────────────────────────────────────────────────────────────────


class HealthState(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    WARNING = "warning"
    FAILING = "failing"


class ProbeKind(str, Enum):
    HTTP_HEAD = "http-head"
    HTTP_GET = "http-get"
    TCP = "tcp"
    PING = "ping"


HTTP_KINDS = (ProbeKind.HTTP_HEAD, ProbeKind.HTTP_GET)
DEFAULT_PORTS = {"http": 80, "https": 443}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Probe target + thresholds ────────────────────────────────────────────────


@dataclass(frozen=True)
class Target:
    """Where a probe goes. HTTP kinds use ``url``; tcp/ping use ``host``/``port``."""

    kind: ProbeKind
    url: str = ""
    host: str = ""
    port: int | None = None
    expected_status: int = 200


@dataclass(frozen=True)
class Thresholds:
    """Evaluator inputs for one service."""

    warning_threshold_ms: int = 0
    failure_threshold: int = 3

    def __post_init__(self) -> None:
        if self.warning_threshold_ms < 0:
            raise ValidationError(
                "warningThreshold", ValidationErrorKind.OUT_OF_RANGE,
                f"warningThreshold must be >= 0, got {self.warning_threshold_ms}",
            )
        if self.failure_threshold < 1:
            raise ValidationError(
                "failureThreshold", ValidationErrorKind.OUT_OF_RANGE,
                f"failureThreshold must be >= 1, got {self.failure_threshold}",
            )


# ── ServiceDefinition ────────────────────────────────────────────────────────

# wire name -> attribute name
_FIELD_ALIASES = {
    "pingServiceName": "ping_service_name",
    "failureInterval": "failure_interval",
    "warningThreshold": "warning_threshold",
    "expectedStatus": "expected_status",
    "failureThreshold": "failure_threshold",
    "restrictedTo": "restricted_to",
}

_REQUIRED = ("name", "ping_service_name", "timeout", "interval", "failure_interval", "warning_threshold")


@dataclass(frozen=True)
class ServiceDefinition:
    """Configuration of one monitored service. Replaced wholesale, never mutated."""

    name: str
    ping_service_name: ProbeKind
    timeout: int
    interval: int
    failure_interval: int
    warning_threshold: int
    url: str = ""
    host: str = ""
    port: int | None = None
    expected_status: int = 200
    enabled: bool = True
    restricted_to: str = ""
    failure_threshold: int | None = None  # overrides the global setting
    id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServiceDefinition":
        """Build and validate a definition from API/YAML input.

        Accepts both the camelCase wire names and snake_case attribute names.
        Raises ValidationError naming the first offending field.
        """
        if not isinstance(data, dict):
            raise ValidationError("body", ValidationErrorKind.INVALID_VALUE, "Service must be an object")
        raw = {_FIELD_ALIASES.get(k, k): v for k, v in data.items()}

        for name in _REQUIRED:
            if raw.get(name) in (None, ""):
                raise ValidationError(_wire_name(name), ValidationErrorKind.MISSING_FIELD)

        try:
            kind = ProbeKind(raw["ping_service_name"])
        except ValueError:
            raise ValidationError(
                "pingServiceName", ValidationErrorKind.INVALID_VALUE,
                f"Unknown probe kind '{raw['ping_service_name']}', "
                f"expected one of {[k.value for k in ProbeKind]}",
            ) from None

        port = raw.get("port")
        defn = cls(
            id=str(raw.get("id") or ""),
            name=str(raw["name"]).strip(),
            ping_service_name=kind,
            timeout=_as_int(raw, "timeout"),
            interval=_as_int(raw, "interval"),
            failure_interval=_as_int(raw, "failure_interval"),
            warning_threshold=_as_int(raw, "warning_threshold"),
            url=str(raw.get("url") or "").strip(),
            host=str(raw.get("host") or "").strip(),
            port=_as_int(raw, "port") if port not in (None, "") else None,
            expected_status=_as_int(raw, "expected_status") if raw.get("expected_status") else 200,
            enabled=_as_bool(raw, "enabled", default=True),
            restricted_to=str(raw.get("restricted_to") or ""),
            failure_threshold=(
                _as_int(raw, "failure_threshold") if raw.get("failure_threshold") not in (None, "") else None
            ),
        )
        defn.validate()
        return defn

    def validate(self) -> None:
        """Check the invariants between fields. Raises ValidationError."""
        if not self.name:
            raise ValidationError("name", ValidationErrorKind.MISSING_FIELD)
        if self.interval <= 0:
            _out_of_range("interval", f"interval must be > 0, got {self.interval}")
        if self.failure_interval <= 0:
            _out_of_range("failureInterval", f"failureInterval must be > 0, got {self.failure_interval}")
        if self.timeout <= 0:
            _out_of_range("timeout", f"timeout must be > 0, got {self.timeout}")
        if self.timeout >= self.interval:
            _out_of_range(
                "timeout", f"timeout ({self.timeout}) must be lower than interval ({self.interval})",
            )
        if self.warning_threshold < 0:
            _out_of_range("warningThreshold", f"warningThreshold must be >= 0, got {self.warning_threshold}")
        if self.port is not None and not 1 <= self.port <= 65535:
            _out_of_range("port", f"port must be between 1 and 65535, got {self.port}")
        if not 100 <= self.expected_status <= 599:
            _out_of_range("expectedStatus", f"expectedStatus must be an HTTP status, got {self.expected_status}")
        if self.failure_threshold is not None and self.failure_threshold < 1:
            _out_of_range("failureThreshold", f"failureThreshold must be >= 1, got {self.failure_threshold}")

        if self.ping_service_name in HTTP_KINDS:
            if not self.url:
                raise ValidationError("url", ValidationErrorKind.MISSING_FIELD)
            parts = urlsplit(self.url)
            if parts.scheme not in DEFAULT_PORTS or not parts.hostname:
                raise ValidationError(
                    "url", ValidationErrorKind.INVALID_VALUE,
                    f"url must be an absolute http(s) URL, got '{self.url}'",
                )
        else:
            target = self.target()
            if not target.host:
                raise ValidationError("host", ValidationErrorKind.MISSING_FIELD)
            if self.ping_service_name == ProbeKind.TCP and target.port is None:
                raise ValidationError("port", ValidationErrorKind.MISSING_FIELD)

    def target(self) -> Target:
        host = self.host
        port = self.port
        if self.url:
            parts = urlsplit(self.url if "//" in self.url else f"//{self.url}")
            host = host or (parts.hostname or "")
            if port is None:
                try:
                    port = parts.port or DEFAULT_PORTS.get(parts.scheme)
                except ValueError:
                    port = None
        return Target(
            kind=self.ping_service_name, url=self.url, host=host, port=port,
            expected_status=self.expected_status,
        )

    def thresholds(self, failure_threshold: int = 3) -> Thresholds:
        """Evaluator thresholds; ``failure_threshold`` applies unless the service sets its own."""
        return Thresholds(
            warning_threshold_ms=self.warning_threshold,
            failure_threshold=self.failure_threshold or failure_threshold,
        )

    def with_id(self, service_id: str) -> "ServiceDefinition":
        return replace(self, id=service_id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the wire field names."""
        return {
            "id": self.id,
            "name": self.name,
            "pingServiceName": self.ping_service_name.value,
            "url": self.url,
            "host": self.host,
            "port": self.port,
            "timeout": self.timeout,
            "interval": self.interval,
            "failureInterval": self.failure_interval,
            "warningThreshold": self.warning_threshold,
            "expectedStatus": self.expected_status,
            "enabled": self.enabled,
            "restrictedTo": self.restricted_to,
            "failureThreshold": self.failure_threshold,
        }


def new_service_id() -> str:
    return uuid.uuid4().hex[:12]


def _wire_name(attr: str) -> str:
    for wire, name in _FIELD_ALIASES.items():
        if name == attr:
            return wire
    return attr


def _as_int(raw: dict[str, Any], name: str) -> int:
    value = raw[name]
    if isinstance(value, bool):
        raise ValidationError(_wire_name(name), ValidationErrorKind.INVALID_VALUE, f"{_wire_name(name)} must be a number")
    if isinstance(value, str):
        value = value.strip()
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            _wire_name(name), ValidationErrorKind.INVALID_VALUE,
            f"{_wire_name(name)} must be a number, got {value!r}",
        ) from None


_TRUE = ("true", "yes", "on", "1")
_FALSE = ("false", "no", "off", "0")


def _as_bool(raw: dict[str, Any], name: str, default: bool) -> bool:
    value = raw.get(name)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _TRUE + _FALSE:
        return value.strip().lower() in _TRUE
    raise ValidationError(
        _wire_name(name), ValidationErrorKind.INVALID_VALUE,
        f"{_wire_name(name)} must be a boolean, got {value!r}",
    )


def _out_of_range(field_name: str, message: str) -> None:
    raise ValidationError(field_name, ValidationErrorKind.OUT_OF_RANGE, message)


# ── Outcomes + events ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one probe execution."""

    success: bool
    latency_ms: float
    service_id: str = ""
    error: str | None = None  # ProbeErrorKind value on failure
    message: str = ""
    status_code: int | None = None
    timestamp: str = field(default_factory=utc_now)

    def tagged(self, service_id: str) -> "ProbeOutcome":
        return replace(self, service_id=service_id)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProbeOutcome":
        return cls(
            service_id=row["service_id"],
            success=bool(row["success"]),
            latency_ms=float(row.get("latency_ms") or 0.0),
            error=row.get("error"),
            message=row.get("message") or "",
            status_code=row.get("status_code"),
            timestamp=row["timestamp"],
        )


@dataclass(frozen=True)
class StateChangeEvent:
    """A health state transition; surfaced as an incident by the API."""

    service_id: str
    from_state: HealthState
    to_state: HealthState
    message: str = ""
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "StateChangeEvent":
        return cls(
            service_id=row["service_id"],
            from_state=HealthState(row["from_state"]),
            to_state=HealthState(row["to_state"]),
            message=row.get("message") or "",
            timestamp=row["timestamp"],
        )
