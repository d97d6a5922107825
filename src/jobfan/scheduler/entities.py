"""
Scheduler Domain Entities.

- JobSpec: one immutable unit of work
- JobResult: outcome of one JobSpec
- Host / HostRoster: where jobs may run
- ExecutionSlot: one unit of concurrent capacity on a host
- CommandOutput: raw result of one remote command
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from jobfan.config import LOCAL_HOST, NO_EXIT_STATUS
from .errors import CapacityConfigurationError


class JobState(str, Enum):
    """
    JobSpec lifecycle.

    PENDING -> DISPATCHED -> COMPLETED | FAILED
    Retries stay inside DISPATCHED.
    """

    PENDING = "PENDING"
    DISPATCHED = "DISPATCHED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def generate_run_id() -> str:
    """Generate a new run identifier."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class JobSpec:
    """
    Single unit of work.

    Created by the JobFactory and never mutated; the scheduler binds the
    target host with dataclasses.replace() at dispatch time.

    A JobSpec with `rejection` set could not be built (malformed input or
    an unresolved placeholder). It is finalized as FAILED without being
    dispatched.
    """

    sequence_index: int
    raw_argument_group: tuple = ()
    rendered_command: str = ""
    target_slot_class: str = LOCAL_HOST
    transfer_paths: tuple = ()
    return_paths: tuple = ()
    rejection: Optional[str] = None
    rejection_type: Optional[str] = None

    @classmethod
    def rejected(
        cls,
        sequence_index: int,
        error: Exception,
        raw_argument_group: Iterable[str] = (),
    ) -> "JobSpec":
        """Create a JobSpec that records why it could not be built."""
        return cls(
            sequence_index=sequence_index,
            raw_argument_group=tuple(raw_argument_group),
            rejection=str(error),
            rejection_type=type(error).__name__,
        )

    @property
    def is_rejected(self) -> bool:
        return self.rejection is not None


@dataclass(frozen=True)
class JobResult:
    """
    Outcome of one JobSpec.

    A non-zero exit status is a normal COMPLETED result. FAILED means the
    job never ran to an exit status (rejection, transport failure, timeout)
    and `error` says why.
    """

    sequence_index: int
    exit_status: int
    stdout_bytes: bytes = b""
    stderr_bytes: bytes = b""
    completion_order: Optional[int] = None
    host: str = LOCAL_HOST
    started_at: float = 0.0
    runtime: float = 0.0
    attempts: int = 1
    error: Optional[str] = None
    signal: int = 0

    @classmethod
    def failure(
        cls,
        sequence_index: int,
        error: str,
        host: str = LOCAL_HOST,
        attempts: int = 0,
        started_at: float = 0.0,
        runtime: float = 0.0,
    ) -> "JobResult":
        """Create a FAILED result for a job that produced no exit status."""
        return cls(
            sequence_index=sequence_index,
            exit_status=NO_EXIT_STATUS,
            stderr_bytes=(error + "\n").encode("utf-8", "surrogateescape"),
            host=host,
            attempts=attempts,
            started_at=started_at,
            runtime=runtime,
            error=error,
        )

    @property
    def state(self) -> JobState:
        return JobState.FAILED if self.error is not None else JobState.COMPLETED

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.exit_status == 0


@dataclass(frozen=True)
class CommandOutput:
    """Raw result of one command run through a transport."""

    exit_status: int
    stdout: bytes = b""
    stderr: bytes = b""


@dataclass(frozen=True)
class Host:
    """
    A place jobs can run.

    `name` is ":" for the local machine, otherwise anything ssh accepts
    ("host", "user@host"). `slots` overrides the capacity spec for this
    host when set.
    """

    name: str
    slots: Optional[int] = None

    @classmethod
    def parse(cls, entry: str) -> "Host":
        """
        Parse a roster entry.

        Formats: "host", "user@host", "4/host", ":" (local), "2/:".
        """
        entry = entry.strip()
        if not entry:
            raise CapacityConfigurationError("Empty host entry")

        slots = None
        if "/" in entry:
            count, _, name = entry.partition("/")
            try:
                slots = int(count)
            except ValueError:
                raise CapacityConfigurationError(
                    f"Invalid slot count in host entry: {entry}"
                ) from None
            if slots < 1:
                raise CapacityConfigurationError(
                    f"Slot count must be at least 1: {entry}"
                )
            entry = name.strip()

        if entry in ("", LOCAL_HOST, "localhost"):
            entry = LOCAL_HOST

        return cls(name=entry, slots=slots)

    @property
    def is_local(self) -> bool:
        return self.name == LOCAL_HOST

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class HostRoster:
    """
    Ordered, read-only set of hosts.

    An empty roster means local execution only.
    """

    hosts: tuple = ()

    @classmethod
    def from_entries(cls, entries: Iterable[str]) -> "HostRoster":
        """Build a roster from entries, each possibly comma-separated."""
        hosts = []
        seen = set()
        for entry in entries:
            for part in entry.split(","):
                if not part.strip():
                    continue
                host = Host.parse(part)
                if host.name in seen:
                    continue
                seen.add(host.name)
                hosts.append(host)
        return cls(hosts=tuple(hosts))

    @classmethod
    def from_file(cls, path: Path) -> "HostRoster":
        """Read a roster file: one entry per line, '#' starts a comment."""
        entries = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.split("#", 1)[0].strip()
                if line:
                    entries.append(line)
        return cls.from_entries(entries)

    @property
    def is_local_only(self) -> bool:
        return all(host.is_local for host in self.effective_hosts())

    def effective_hosts(self) -> tuple:
        """Hosts to schedule on; the local machine when the roster is empty."""
        return self.hosts or (Host(LOCAL_HOST),)

    def __len__(self) -> int:
        return len(self.hosts)


@dataclass
class ExecutionSlot:
    """
    One concurrent execution capacity unit on a host.

    Owned by the scheduler's SlotPool; only the coordinator flips `in_use`.
    """

    slot_id: int
    host: Host
    in_use: bool = False
