"""
Job Scheduler Core Module.

The run-level wiring lives in jobfan.scheduler.service (JobRunner); it is
not re-exported here because it depends on the input and templating
layers, which themselves import the errors below.
"""

from .entities import (
    JobState,
    JobSpec,
    JobResult,
    CommandOutput,
    Host,
    HostRoster,
    ExecutionSlot,
)
from .errors import (
    JobfanError,
    MalformedInputError,
    PlaceholderResolutionError,
    TemplateSyntaxError,
    CapacityConfigurationError,
    ExecutionError,
    TransportError,
    DegradedCapabilityWarning,
)
from .capacity import CapacitySpec, SlotPool, detect_host_cores, detect_local_cores
from .transport import RemoteTransport, SSHTransport
from .backends import ExecutionBackend, LocalProcessBackend, RemoteHostBackend
from .retry_controller import RetryController
from .dispatcher import Scheduler, SchedulerState, SchedulerStats
from .collector import ResultCollector, RunSummary, exit_status_for

__all__ = [
    # Entities
    "JobState",
    "JobSpec",
    "JobResult",
    "CommandOutput",
    "Host",
    "HostRoster",
    "ExecutionSlot",
    # Errors
    "JobfanError",
    "MalformedInputError",
    "PlaceholderResolutionError",
    "TemplateSyntaxError",
    "CapacityConfigurationError",
    "ExecutionError",
    "TransportError",
    "DegradedCapabilityWarning",
    # Capacity
    "CapacitySpec",
    "SlotPool",
    "detect_host_cores",
    "detect_local_cores",
    # Transport
    "RemoteTransport",
    "SSHTransport",
    # Backends
    "ExecutionBackend",
    "LocalProcessBackend",
    "RemoteHostBackend",
    # Retry
    "RetryController",
    # Scheduler
    "Scheduler",
    "SchedulerState",
    "SchedulerStats",
    # Collector
    "ResultCollector",
    "RunSummary",
    "exit_status_for",
]
