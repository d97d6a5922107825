"""
Job log writer.

One tab-separated row per finished job:
Seq  Host  Starttime  JobRuntime  Send  Receive  Exitval  Signal  Command

Seq is 1-based. Send/Receive are the byte counts of staged input and
captured output.
"""

import logging
import os
from pathlib import Path
from typing import Optional, TextIO

from jobfan.config import JOBLOG_COLUMNS
from jobfan.scheduler.entities import JobResult, JobSpec

logger = logging.getLogger(__name__)


class JobLog:
    """Append-only job log; written only by the result collector."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file: Optional[TextIO] = None

    def open(self) -> "JobLog":
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w", encoding="utf-8", errors="surrogateescape")
        self._file.write("\t".join(JOBLOG_COLUMNS) + "\n")
        self._file.flush()
        return self

    def record(self, job: JobSpec, result: JobResult) -> None:
        """Write one row for a finished job."""
        if self._file is None:
            self.open()

        send = sum(_file_size(p) for p in job.transfer_paths)
        receive = len(result.stdout_bytes) + len(result.stderr_bytes)
        command = job.rendered_command or (job.rejection or "")

        row = [
            str(job.sequence_index + 1),
            result.host,
            f"{result.started_at:.3f}",
            f"{result.runtime:.3f}",
            str(send),
            str(receive),
            str(result.exit_status),
            str(result.signal),
            command.replace("\t", " ").replace("\n", " "),
        ]
        self._file.write("\t".join(row) + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "JobLog":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _file_size(path: str) -> int:
    try:
        return os.path.getsize(path)
    except OSError:
        return 0
