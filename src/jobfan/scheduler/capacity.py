"""
Concurrency capacity.

CapacitySpec formats:
    "8"          absolute slot count
    "+2", "-1"   detected cores plus/minus N (never below 1)
    "50%"        percentage of detected cores (rounded down, at least 1)
    "0"          unbounded (no cap)

Unbounded capacity gives no backpressure: every input item is started at
once. It is allowed but logged as a caution.

Core detection:
- Local: os.cpu_count()
- Remote: `nproc` through the transport

A host whose cores cannot be determined gets exactly one slot and a
DegradedCapabilityWarning.
"""

import logging
import os
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence

from jobfan.config import CORE_PROBE_COMMAND, UNBOUNDED_CAPACITY_TOKENS
from .entities import ExecutionSlot, Host, HostRoster
from .errors import CapacityConfigurationError, DegradedCapabilityWarning, ExecutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacitySpec:
    """
    Parsed concurrency cap for one slot class.

    mode is one of "absolute", "relative", "percent", "unbounded".
    """

    mode: str
    value: int = 0

    @classmethod
    def parse(cls, text) -> "CapacitySpec":
        """
        Parse a capacity specification.

        Raises:
            CapacityConfigurationError: If the text is unparseable or
                self-contradictory
        """
        if isinstance(text, int) and not isinstance(text, bool):
            return cls.absolute(text) if text != 0 else cls(mode="unbounded")

        raw = str(text).strip().lower()
        if not raw:
            raise CapacityConfigurationError("Empty capacity specification")

        if raw in UNBOUNDED_CAPACITY_TOKENS:
            return cls(mode="unbounded")

        try:
            if raw.endswith("%"):
                percent = int(raw[:-1])
                if percent <= 0:
                    raise CapacityConfigurationError(
                        f"Capacity percentage must be positive: {text}"
                    )
                return cls(mode="percent", value=percent)

            if raw[0] in "+-":
                return cls(mode="relative", value=int(raw))

            return cls.absolute(int(raw))
        except ValueError:
            raise CapacityConfigurationError(f"Invalid capacity specification: {text}") from None

    @classmethod
    def absolute(cls, count: int) -> "CapacitySpec":
        if count < 0:
            raise CapacityConfigurationError(f"Absolute capacity must not be negative: {count}")
        if count == 0:
            return cls(mode="unbounded")
        return cls(mode="absolute", value=count)

    @property
    def is_unbounded(self) -> bool:
        return self.mode == "unbounded"

    @property
    def needs_cores(self) -> bool:
        return self.mode in ("relative", "percent")

    def resolve(self, cores: Optional[int]) -> Optional[int]:
        """
        Slot count for a host with `cores` cores.

        Returns None for unbounded capacity. A core-relative spec on a
        host whose cores are unknown resolves to 1.
        """
        if self.mode == "unbounded":
            return None
        if self.mode == "absolute":
            return self.value
        if cores is None:
            return 1

        if self.mode == "relative":
            count = cores + self.value
        else:
            count = cores * self.value // 100

        if count < 1:
            logger.warning(
                f"Capacity {self} on {cores} core(s) resolves to {count}; using 1"
            )
            count = 1
        return count

    def __str__(self) -> str:
        if self.mode == "unbounded":
            return "unbounded"
        if self.mode == "percent":
            return f"{self.value}%"
        if self.mode == "relative":
            return f"{self.value:+d}"
        return str(self.value)


def _degraded(host: Host, reason: str) -> None:
    message = f"Cannot determine cores on {host}: {reason}; using 1 slot"
    warnings.warn(message, DegradedCapabilityWarning, stacklevel=3)
    logger.warning(message)


def detect_local_cores() -> Optional[int]:
    """Detected local core count, or None."""
    return os.cpu_count()


def detect_host_cores(host: Host, transport=None) -> Optional[int]:
    """
    Probe a host's core count.

    Returns None (after a DegradedCapabilityWarning) when the count
    cannot be determined.
    """
    if host.is_local:
        cores = detect_local_cores()
        if cores is None:
            _degraded(host, "os.cpu_count() returned nothing")
        return cores

    if transport is None:
        _degraded(host, "no transport configured")
        return None

    try:
        output = transport.run(host.name, CORE_PROBE_COMMAND)
    except ExecutionError as e:
        _degraded(host, str(e))
        return None

    text = output.stdout.decode("utf-8", "replace").strip()
    if output.exit_status != 0 or not text.isdigit() or int(text) < 1:
        _degraded(host, f"probe exited {output.exit_status} with output {text!r}")
        return None

    cores = int(text)
    logger.info(f"Host {host}: {cores} core(s)")
    return cores


class SlotPool:
    """
    Fixed pool of execution slots.

    Slots are interleaved across hosts so consecutive dispatches spread
    over the roster. Hosts with unbounded capacity grow a new slot
    whenever every slot is busy.

    Only the scheduler's coordinator acquires and releases slots.
    """

    def __init__(self, slots: Sequence[ExecutionSlot], unbounded_hosts: Sequence[Host] = ()):
        self._slots = list(slots)
        self._unbounded = list(unbounded_hosts)
        self._next_unbounded = 0
        self._in_use = 0

    @classmethod
    def build(
        cls,
        roster: HostRoster,
        capacity: CapacitySpec,
        transport=None,
    ) -> "SlotPool":
        """
        Build the pool for a roster.

        Per-host slot overrides win over the capacity spec. Cores are only
        probed when the capacity is core-relative.
        """
        per_host = []
        unbounded = []
        for host in roster.effective_hosts():
            if host.slots is not None:
                count = host.slots
            elif capacity.is_unbounded:
                unbounded.append(host)
                continue
            elif capacity.needs_cores:
                cores = detect_host_cores(host, transport)
                count = capacity.resolve(cores)
            else:
                count = capacity.resolve(None)

            logger.info(f"Host {host}: {count} slot(s)")
            per_host.append((host, count))

        if unbounded:
            logger.warning(
                "Unbounded capacity: every job starts immediately with no "
                "backpressure; consider an explicit --jobs value"
            )

        slots = []
        round_index = 0
        while any(count > round_index for _, count in per_host):
            for host, count in per_host:
                if count > round_index:
                    slots.append(ExecutionSlot(slot_id=len(slots) + 1, host=host))
            round_index += 1

        return cls(slots, unbounded_hosts=unbounded)

    @property
    def size(self) -> Optional[int]:
        """Total slot count, or None when unbounded."""
        if self._unbounded:
            return None
        return len(self._slots)

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def slots(self) -> tuple:
        return tuple(self._slots)

    def has_free(self) -> bool:
        return bool(self._unbounded) or self._in_use < len(self._slots)

    def acquire(self) -> Optional[ExecutionSlot]:
        """Take a free slot, or None if all are busy."""
        for slot in self._slots:
            if not slot.in_use:
                slot.in_use = True
                self._in_use += 1
                return slot

        if self._unbounded:
            host = self._unbounded[self._next_unbounded % len(self._unbounded)]
            self._next_unbounded += 1
            slot = ExecutionSlot(slot_id=len(self._slots) + 1, host=host, in_use=True)
            self._slots.append(slot)
            self._in_use += 1
            return slot

        return None

    def release(self, slot: ExecutionSlot) -> None:
        if not slot.in_use:
            raise RuntimeError(f"Slot {slot.slot_id} released twice")
        slot.in_use = False
        self._in_use -= 1
