"""Error taxonomy for the monitor core.

Only ValidationError and NotFoundError ever leave the core. Probe and storage
failures are contained: probes fold them into failing outcomes, the recorder
logs them.
"""

from __future__ import annotations

from enum import Enum


class MonitorError(Exception):
    """Base class for all monitor errors."""


class ValidationErrorKind(str, Enum):
    MISSING_FIELD = "missing_field"
    OUT_OF_RANGE = "out_of_range"
    INVALID_VALUE = "invalid_value"


class ValidationError(MonitorError):
    """A service definition (or threshold set) was rejected."""

    def __init__(self, field: str, kind: ValidationErrorKind, message: str = "") -> None:
        self.field = field
        self.kind = kind
        self.message = message or f"{kind.value}: {field}"
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind.value, "field": self.field, "message": self.message}


class NotFoundError(MonitorError):
    """Operation on a service id that does not exist."""

    def __init__(self, service_id: str) -> None:
        self.service_id = service_id
        super().__init__(f"Service not found: {service_id}")


class ProbeErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    DNS_FAILURE = "dns_failure"
    TLS_FAILURE = "tls_failure"
    HTTP_STATUS = "http_status"
    UNREACHABLE = "unreachable"
    ERROR = "error"


class ProbeError(MonitorError):
    """Network-level failure inside a probe strategy. Never escapes a probe."""

    def __init__(self, kind: ProbeErrorKind, message: str = "") -> None:
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}" if message else kind.value)


class StorageError(MonitorError):
    """Persistence read/write failure."""
