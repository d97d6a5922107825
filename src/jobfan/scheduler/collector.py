"""
Result Collector.

Consumes JobResults in completion order and writes one merged output
stream:
- completion order: each result is written as soon as it arrives
- keep order: results are buffered and released as a contiguous prefix
  of sequence_index, so output order equals input order
  (at most `window` results are held; the scheduler asks can_dispatch()
  before starting a job so the buffer never outgrows the concurrency cap)

Also aggregates the run's exit status:
    0        every job succeeded
    1..100   number of failed jobs
    101      more than 100 jobs failed

A job fails when it exited non-zero or never produced an exit status.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Optional

from jobfan.config import (
    EXIT_SUCCESS,
    EXIT_TOO_MANY_FAILURES,
    MAX_REPORTED_FAILURES,
    TAG_SEPARATOR,
)
from .entities import JobResult, JobSpec

if TYPE_CHECKING:
    from jobfan.infra.joblog import JobLog

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Aggregate outcome of a run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def exit_status(self) -> int:
        return exit_status_for(self.failed)

    def describe(self) -> str:
        return f"{self.total} job(s): {self.succeeded} succeeded, {self.failed} failed"


def exit_status_for(failed: int) -> int:
    """Process exit status for a number of failed jobs."""
    if failed <= 0:
        return EXIT_SUCCESS
    if failed > MAX_REPORTED_FAILURES:
        return EXIT_TOO_MANY_FAILURES
    return failed


def tag_lines(data: bytes, tag: bytes) -> bytes:
    """Prefix every line of `data` with `tag`."""
    if not data:
        return data
    lines = data.splitlines(keepends=True)
    return b"".join(tag + line for line in lines)


class ResultCollector:
    """
    Writes job output and tracks the summary.

    Called only from the scheduler's coordinator thread, so it needs no
    locking.

    Args:
        stdout: Binary stream for job stdout
        stderr: Binary stream for job stderr
        keep_order: Emit in input order instead of completion order
        tag: Prefix each line with the job's arguments
        joblog: Optional JobLog receiving one row per job
        results_dir: Optional directory for per-job output files
        window: Keep-order buffer bound, normally the concurrency cap
            (None for unbounded)
    """

    def __init__(
        self,
        stdout: BinaryIO,
        stderr: BinaryIO,
        keep_order: bool = False,
        tag: bool = False,
        joblog: Optional["JobLog"] = None,
        results_dir: Optional[Path] = None,
        window: Optional[int] = None,
    ):
        self.stdout = stdout
        self.stderr = stderr
        self.keep_order = keep_order
        self.tag = tag
        self.joblog = joblog
        self.results_dir = Path(results_dir) if results_dir else None
        self.window = window

        self.summary = RunSummary()
        self._buffer: dict = {}
        self._next_index = 0
        self.peak_buffered = 0

    def __call__(self, job: JobSpec, result: JobResult) -> None:
        self.add(job, result)

    def can_dispatch(self, sequence_index: int) -> bool:
        """Whether starting this job keeps the keep-order buffer within `window`."""
        if not self.keep_order or self.window is None:
            return True
        return sequence_index < self._next_index + self.window

    def add(self, job: JobSpec, result: JobResult) -> None:
        """Accept one finished job."""
        self.summary.total += 1
        if result.succeeded:
            self.summary.succeeded += 1
        else:
            self.summary.failed += 1
            logger.info(
                f"Job {job.sequence_index + 1} failed: "
                + (result.error or f"exit status {result.exit_status}")
            )

        if self.joblog is not None:
            self.joblog.record(job, result)
        if self.results_dir is not None:
            self._write_results(job, result)

        if not self.keep_order:
            self._emit(job, result)
            return

        self._buffer[job.sequence_index] = (job, result)
        self.peak_buffered = max(self.peak_buffered, len(self._buffer))
        self._flush_prefix()

    def _flush_prefix(self) -> None:
        while self._next_index in self._buffer:
            job, result = self._buffer.pop(self._next_index)
            self._emit(job, result)
            self._next_index += 1

    def close(self) -> RunSummary:
        """
        Flush anything still buffered.

        After a cancelled run the buffer may have gaps; what remains is
        written in ascending sequence_index.
        """
        for index in sorted(self._buffer):
            job, result = self._buffer.pop(index)
            self._emit(job, result)
        self.stdout.flush()
        self.stderr.flush()
        return self.summary

    def _emit(self, job: JobSpec, result: JobResult) -> None:
        stdout, stderr = result.stdout_bytes, result.stderr_bytes
        if self.tag:
            prefix = (" ".join(job.raw_argument_group) + TAG_SEPARATOR).encode(
                "utf-8", "surrogateescape"
            )
            stdout = tag_lines(stdout, prefix)
            stderr = tag_lines(stderr, prefix)

        if stdout:
            self.stdout.write(stdout)
            self.stdout.flush()
        if stderr:
            self.stderr.write(stderr)
            self.stderr.flush()

    def _write_results(self, job: JobSpec, result: JobResult) -> None:
        job_dir = self.results_dir / str(job.sequence_index + 1)
        job_dir.mkdir(parents=True, exist_ok=True)
        (job_dir / "stdout").write_bytes(result.stdout_bytes)
        (job_dir / "stderr").write_bytes(result.stderr_bytes)
        (job_dir / "exit_status").write_text(f"{result.exit_status}\n", encoding="utf-8")
        (job_dir / "command").write_text(
            (job.rendered_command or job.rejection or "") + "\n",
            encoding="utf-8",
            errors="surrogateescape",
        )
