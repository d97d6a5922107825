"""
jobfan exceptions.

Per-job errors (MalformedInputError, PlaceholderResolutionError,
ExecutionError) fail only the job they belong to. Startup errors
(TemplateSyntaxError, CapacityConfigurationError) abort the run before
any job is dispatched.
"""

from typing import Optional


class JobfanError(Exception):
    """Base exception for all jobfan errors."""
    pass


class MalformedInputError(JobfanError):
    """
    Raised when input does not match its declared structure.

    Examples:
    - A record with a different number of columns than the header
    - A duplicated or empty header column
    - A numeric range with a zero step
    """

    def __init__(self, message: str, record: Optional[str] = None):
        self.record = record
        super().__init__(message)


class PlaceholderResolutionError(JobfanError):
    """Raised when a template references a field absent from a job's arguments."""

    def __init__(self, placeholder: str, available: int):
        self.placeholder = placeholder
        self.available = available
        super().__init__(
            f"Cannot resolve placeholder {placeholder}: "
            f"argument group has {available} field(s)"
        )


class TemplateSyntaxError(JobfanError):
    """Raised when a command template contains an unknown placeholder."""

    def __init__(self, placeholder: str, template: str):
        self.placeholder = placeholder
        self.template = template
        super().__init__(f"Unknown placeholder {placeholder} in template: {template}")


class CapacityConfigurationError(JobfanError):
    """Raised when a concurrency cap is self-contradictory or unparseable."""
    pass


class ExecutionError(JobfanError):
    """
    Raised when a backend cannot run a job to completion.

    `attempts` is set by the RetryController to the number of attempts
    made before giving up.
    """

    attempts: int = 1


class TransportError(ExecutionError):
    """
    Raised when the remote transport fails.

    Covers staging, remote execution, retrieval and cleanup. The host
    name is kept for logging and the job log.
    """

    def __init__(self, host: str, message: str):
        self.host = host
        super().__init__(f"{host}: {message}")


class DegradedCapabilityWarning(UserWarning):
    """Emitted when a host's core count cannot be probed; the host gets one slot."""
    pass
