"""
Job Scheduler.

One coordinator (the thread calling Scheduler.run) owns the pending
input, the slot pool and the in-flight table. Each dispatched job runs on
its own worker thread, which reports back by putting
(job, slot, result) on a completion queue. Nothing but the coordinator
touches scheduler state.

Loop:
1. While a slot is free and input remains, pull the next JobSpec in
   input order
   a. If `admit` refuses it while other jobs are in flight, hold it back
      until the next completion
   b. Rejected JobSpec: finalize as FAILED without taking a slot
   c. Otherwise bind it to the slot's host and start a worker
2. Wait for the next completion, free its slot, finalize the result
3. Stop when input is exhausted and nothing is in flight

What the Scheduler MUST NOT do:
- Reorder input (completion reordering is the collector's business)
- Interpret exit codes
"""

import dataclasses
import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from .backends import ExecutionBackend
from .capacity import SlotPool
from .entities import ExecutionSlot, Host, JobResult, JobSpec, JobState
from .errors import ExecutionError, JobfanError
from .retry_controller import RetryController

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Scheduler lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    CANCELLING = "CANCELLING"


@dataclass
class SchedulerStats:
    """Counters for one run."""

    dispatched: int = 0
    completed: int = 0
    failed: int = 0
    peak_in_flight: int = 0
    cancelled: bool = False

    @property
    def finished(self) -> int:
        return self.completed + self.failed


ResultCallback = Callable[[JobSpec, JobResult], None]


class Scheduler:
    """
    Dispatches JobSpecs onto a SlotPool under its concurrency cap.

    Args:
        pool: Execution slots
        local_backend: Backend for slots on the local host
        remote_backend: Backend for slots on remote hosts
        retry_controller: Retry policy for backend errors
        on_result: Called on the coordinator thread for every finished job
        admit: Called with a sequence_index before the job starts; False
            defers it (keep-order output bounds its buffer this way)
        poll_interval: Seconds between cancellation checks while waiting
    """

    def __init__(
        self,
        pool: SlotPool,
        local_backend: Optional[ExecutionBackend] = None,
        remote_backend: Optional[ExecutionBackend] = None,
        retry_controller: Optional[RetryController] = None,
        on_result: Optional[ResultCallback] = None,
        admit: Optional[Callable[[int], bool]] = None,
        poll_interval: float = 0.5,
    ):
        self.pool = pool
        self.local_backend = local_backend
        self.remote_backend = remote_backend
        self.retry_controller = retry_controller or RetryController()
        self.on_result = on_result
        self.admit = admit
        self.poll_interval = poll_interval

        self.stats = SchedulerStats()
        self._state = SchedulerState.STOPPED
        self._cancel_event = threading.Event()
        self._completions: queue.Queue = queue.Queue()
        self._in_flight: dict = {}
        self._completion_counter = 0
        self._ran = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _backend_for(self, host: Host) -> ExecutionBackend:
        backend = self.local_backend if host.is_local else self.remote_backend
        if backend is None:
            kind = "local" if host.is_local else "remote"
            raise RuntimeError(f"No {kind} backend configured for host {host}")
        return backend

    # =========================================================================
    # Run Loop
    # =========================================================================

    def run(self, jobs: Iterable[JobSpec]) -> SchedulerStats:
        """
        Run every job to a result.

        Returns:
            Run counters

        Raises:
            JobfanError: If the input itself fails; dispatch stops and
                in-flight jobs are drained first
        """
        if self._ran:
            raise RuntimeError("Scheduler.run() may only be called once")
        self._ran = True
        self._state = SchedulerState.RUNNING

        source = iter(jobs)
        exhausted = False
        held: Optional[JobSpec] = None
        input_error: Optional[BaseException] = None

        logger.info(f"Scheduler started with {self._describe_capacity()}")

        try:
            while True:
                while (
                    (held is not None or not exhausted)
                    and not self.cancelled
                    and self.pool.has_free()
                ):
                    if held is not None:
                        job, held = held, None
                    else:
                        try:
                            job = next(source)
                        except StopIteration:
                            exhausted = True
                            break
                        except (JobfanError, OSError, UnicodeError) as e:
                            logger.error(f"Input failed, no further jobs will start: {e}")
                            input_error = e
                            exhausted = True
                            break

                    if self._in_flight and not self._admits(job):
                        held = job
                        break

                    if job.is_rejected:
                        self._finalize(job, JobResult.failure(
                            job.sequence_index, job.rejection, attempts=0,
                        ))
                        continue

                    self._dispatch(job, self.pool.acquire())

                if not self._in_flight:
                    break

                self._wait_for_completion()
        finally:
            self.stats.cancelled = self.cancelled
            self._state = SchedulerState.STOPPED

        logger.info(
            f"Scheduler finished: {self.stats.completed} completed, "
            f"{self.stats.failed} failed, peak {self.stats.peak_in_flight} in flight"
            + (" (cancelled)" if self.stats.cancelled else "")
        )

        if input_error is not None:
            raise input_error
        return self.stats

    def _admits(self, job: JobSpec) -> bool:
        return self.admit is None or self.admit(job.sequence_index)

    def _describe_capacity(self) -> str:
        size = self.pool.size
        return "unbounded capacity" if size is None else f"{size} slot(s)"

    def _dispatch(self, job: JobSpec, slot: ExecutionSlot) -> None:
        bound = dataclasses.replace(job, target_slot_class=slot.host.name)
        backend = self._backend_for(slot.host)

        self._in_flight[job.sequence_index] = (bound, slot)
        self.stats.dispatched += 1
        self.stats.peak_in_flight = max(self.stats.peak_in_flight, len(self._in_flight))

        logger.debug(
            f"Job {job.sequence_index + 1} {JobState.PENDING.value} -> "
            f"{JobState.DISPATCHED.value} on {slot.host} (slot {slot.slot_id})"
        )

        worker = threading.Thread(
            target=self._execute,
            args=(bound, slot, backend),
            name=f"jobfan-job-{job.sequence_index + 1}",
            daemon=True,
        )
        worker.start()

    def _wait_for_completion(self) -> None:
        try:
            job, slot, result = self._completions.get(timeout=self.poll_interval)
        except queue.Empty:
            return

        self.pool.release(slot)
        del self._in_flight[job.sequence_index]
        self._finalize(job, result)

    def _finalize(self, job: JobSpec, result: JobResult) -> None:
        self._completion_counter += 1
        result = dataclasses.replace(result, completion_order=self._completion_counter)

        if result.state is JobState.FAILED:
            self.stats.failed += 1
        else:
            self.stats.completed += 1

        logger.debug(
            f"Job {job.sequence_index + 1} -> {result.state.value} "
            f"(exit {result.exit_status}, completion #{result.completion_order})"
        )

        if self.on_result is not None:
            try:
                self.on_result(job, result)
            except Exception:
                logger.error("Result handler failed; terminating in-flight jobs")
                self.cancel(terminate=True)
                self._drain()
                raise

    def _drain(self) -> None:
        """Wait for every worker to report, discarding results."""
        while self._in_flight:
            job, slot, _ = self._completions.get()
            self.pool.release(slot)
            del self._in_flight[job.sequence_index]

    # =========================================================================
    # Worker
    # =========================================================================

    def _execute(self, job: JobSpec, slot: ExecutionSlot, backend: ExecutionBackend) -> None:
        """Worker thread body; always reports exactly one result."""
        started_at = time.time()
        try:
            result, attempts = self.retry_controller.run(
                job,
                lambda: backend.submit(job, slot.host),
                cancelled=self._cancel_event,
            )
            result = dataclasses.replace(result, attempts=attempts)
        except ExecutionError as e:
            result = JobResult.failure(
                job.sequence_index,
                str(e),
                host=slot.host.name,
                attempts=e.attempts,
                started_at=started_at,
                runtime=time.time() - started_at,
            )
        except Exception as e:
            logger.exception(f"Unexpected error executing job {job.sequence_index + 1}")
            result = JobResult.failure(
                job.sequence_index,
                f"Execution error: {e}",
                host=slot.host.name,
                started_at=started_at,
                runtime=time.time() - started_at,
            )

        self._completions.put((job, slot, result))

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(self, terminate: bool = False) -> None:
        """
        Stop dispatching new jobs.

        Args:
            terminate: Also signal every in-flight execution. Remote
                cleanup still runs for jobs that requested it.
        """
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested: no new jobs will be dispatched")
            self._cancel_event.set()
            if self._state == SchedulerState.RUNNING:
                self._state = SchedulerState.CANCELLING

        if terminate:
            for backend in {id(b): b for b in (self.local_backend, self.remote_backend) if b}.values():
                backend.cancel()
