"""
Scheduler Test Fixtures.

Base fixtures:
  - FakeBackend: controllable ExecutionBackend that records concurrency
  - FakeTransport: in-memory RemoteTransport with failure injection

Per-test fixtures:
  - make_jobs: rendered JobSpecs in input order
  - local_pool: SlotPool of N local slots
"""

import threading
import time
from pathlib import Path
from typing import Callable

import pytest

from jobfan.config import CORE_PROBE_COMMAND
from jobfan.scheduler import (
    CapacitySpec,
    CommandOutput,
    ExecutionBackend,
    HostRoster,
    JobResult,
    JobSpec,
    RemoteTransport,
    SlotPool,
    TransportError,
)


class FakeBackend(ExecutionBackend):
    """
    Fake execution backend.

    Allows controlling execution outcome without subprocess. Results echo
    the rendered command on stdout so output ordering is observable.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.delays: dict = {}
        self.exit_statuses: dict = {}
        self.errors: dict = {}
        self.submitted = []
        self.running = 0
        self.peak_running = 0
        self.cancel_calls = 0
        self._lock = threading.Lock()
        self._gate = threading.Event()
        self._gate.set()

    def hold(self) -> None:
        """Block every submit() until release() or cancel()."""
        self._gate.clear()

    def release(self) -> None:
        self._gate.set()

    def fail(self, sequence_index: int, *errors: Exception) -> None:
        """Raise these errors, one per attempt, for a job."""
        self.errors[sequence_index] = list(errors)

    def submit(self, job: JobSpec, host) -> JobResult:
        with self._lock:
            self.submitted.append(job)
            self.running += 1
            self.peak_running = max(self.peak_running, self.running)
        try:
            delay = self.delays.get(job.sequence_index, self.delay)
            if delay:
                time.sleep(delay)
            self._gate.wait(timeout=10)

            with self._lock:
                pending = self.errors.get(job.sequence_index)
                error = pending.pop(0) if pending else None
            if error is not None:
                raise error

            return JobResult(
                sequence_index=job.sequence_index,
                exit_status=self.exit_statuses.get(job.sequence_index, 0),
                stdout_bytes=f"{job.rendered_command}\n".encode(),
                host=host.name,
            )
        finally:
            with self._lock:
                self.running -= 1

    def cancel(self) -> bool:
        self.cancel_calls += 1
        self._gate.set()
        return True

    @property
    def submitted_indices(self) -> list:
        with self._lock:
            return [job.sequence_index for job in self.submitted]


class FakeTransport(RemoteTransport):
    """
    In-memory remote transport.

    Records every call as a tuple. Commands starting with a prefix in
    `failing_prefixes` raise TransportError; `remote_files` supplies the
    content fetched by get().
    Commands starting with a prefix in `blocking_prefixes` hang until
    terminate(), then fail like a killed ssh.
    """

    def __init__(self):
        self.calls = []
        self.cores: dict = {}
        self.unreachable: set = set()
        self.failing_prefixes: list = []
        self.failing_operations: set = set()
        self.exit_status = 0
        self.remote_files: dict = {}
        self.terminated = 0
        self.blocking_prefixes: list = []
        self.blocked = threading.Event()
        self._terminated = threading.Event()

    def _check(self, host: str, what: str) -> None:
        if host in self.unreachable:
            raise TransportError(host, "connection refused")
        if what in self.failing_operations:
            raise TransportError(host, f"{what} failed")

    def put(self, host: str, local_path: str, remote_path: str) -> None:
        self.calls.append(("put", host, local_path, remote_path))
        self._check(host, "put")

    def get(self, host: str, remote_path: str, local_path: str) -> None:
        self.calls.append(("get", host, remote_path, local_path))
        self._check(host, "get")
        Path(local_path).write_bytes(self.remote_files.get(remote_path, b""))

    def run(self, host: str, command: str, timeout=None) -> CommandOutput:
        self.calls.append(("run", host, command))
        self._check(host, "run")
        if any(command.startswith(prefix) for prefix in self.failing_prefixes):
            raise TransportError(host, f"cannot run {command}")
        if any(command.startswith(prefix) for prefix in self.blocking_prefixes):
            self.blocked.set()
            self._terminated.wait(timeout=10)
            raise TransportError(host, "ssh terminated")

        if command == CORE_PROBE_COMMAND:
            if host not in self.cores:
                return CommandOutput(exit_status=127, stderr=b"nproc: not found\n")
            return CommandOutput(exit_status=0, stdout=f"{self.cores[host]}\n".encode())
        if command.startswith(("mkdir ", "rm ")):
            return CommandOutput(exit_status=0)
        return CommandOutput(
            exit_status=self.exit_status,
            stdout=f"{host}: {command}\n".encode(),
        )

    def terminate(self) -> bool:
        self.terminated += 1
        self._terminated.set()
        return True

    def commands(self, host: str = None) -> list:
        return [c[2] for c in self.calls if c[0] == "run" and (host is None or c[1] == host)]


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Create a fake backend that completes immediately."""
    return FakeBackend()


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Create an in-memory transport."""
    return FakeTransport()


@pytest.fixture
def local_pool() -> Callable:
    """Factory fixture for a pool of local slots."""

    def _create(jobs="2") -> SlotPool:
        return SlotPool.build(HostRoster(), CapacitySpec.parse(jobs))

    return _create


# =============================================================================
# Job Factory Fixtures
# =============================================================================


@pytest.fixture
def make_jobs() -> Callable:
    """
    Factory fixture for JobSpecs.

    make_jobs(3) -> "echo 1", "echo 2", "echo 3" with indices 0..2
    """

    def _create(count: int, template: str = "echo {}") -> list:
        return [
            JobSpec(
                sequence_index=i,
                raw_argument_group=(str(i + 1),),
                rendered_command=template.replace("{}", str(i + 1)),
            )
            for i in range(count)
        ]

    return _create
