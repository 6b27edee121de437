"""Health subsystem — probes, threshold evaluation, state machines, scheduler."""

from .errors import NotFoundError, ProbeError, StorageError, ValidationError
from .models import HealthState, ProbeKind, ProbeOutcome, ServiceDefinition, StateChangeEvent
from .monitor import Monitor, ServiceSnapshot
from .scheduler import HealthScheduler
