"""
Execution backends.

Every backend runs one rendered command to completion and reports a
JobResult:
- LocalProcessBackend: a shell subprocess on this machine
- RemoteHostBackend: stage files, run over a RemoteTransport, fetch
  results, clean up

What a backend MUST NOT do:
- Interpret exit codes (a non-zero exit is a normal result)
- Retry (the RetryController's responsibility)
- Touch slot or queue state
"""

import logging
import os
import posixpath
import shlex
import signal
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from jobfan.config import SHELL
from .entities import Host, JobResult, JobSpec, generate_run_id
from .errors import ExecutionError, TransportError
from .transport import RemoteTransport

logger = logging.getLogger(__name__)


def decode_returncode(returncode: int) -> tuple[int, int]:
    """
    Map a Popen return code to (exit_status, signal).

    A process killed by signal N reports exit status 128 + N, the shell
    convention.
    """
    if returncode < 0:
        sig = -returncode
        return 128 + sig, sig
    return returncode, 0


class ExecutionBackend(ABC):
    """
    Abstract base class for execution backends.

    The scheduler is written against this interface only.
    """

    @abstractmethod
    def submit(self, job: JobSpec, host: Host) -> JobResult:
        """
        Run the job on `host` and return its result.

        Raises:
            ExecutionError: If the job could not be run (TransportError for
                remote failures)
        """
        ...

    @abstractmethod
    def cancel(self) -> bool:
        """
        Terminate every in-flight execution.

        Returns:
            True if anything was signalled
        """
        ...


class LocalProcessBackend(ExecutionBackend):
    """
    Runs jobs as local shell subprocesses.

    stdout and stderr are drained concurrently by communicate(), so any
    output volume is safe. Each job runs in its own session so
    cancellation can signal the whole process group.
    """

    def __init__(self, timeout: Optional[float] = None, shell: str = SHELL):
        self.timeout = timeout
        self.shell = shell
        self._processes: set = set()
        self._lock = threading.Lock()

    def submit(self, job: JobSpec, host: Host) -> JobResult:
        started_at = time.time()
        logger.debug(f"Job {job.sequence_index + 1}: {job.rendered_command}")

        try:
            process = subprocess.Popen(
                job.rendered_command,
                shell=True,
                executable=self.shell,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise ExecutionError(f"cannot start job {job.sequence_index + 1}: {e}") from e

        with self._lock:
            self._processes.add(process)

        error = None
        try:
            stdout, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            error = f"timed out after {self.timeout}s"
            _signal_group(process, signal.SIGKILL)
            stdout, stderr = process.communicate()
            stderr += f"jobfan: job {job.sequence_index + 1} {error}\n".encode()
        finally:
            with self._lock:
                self._processes.discard(process)

        exit_status, sig = decode_returncode(process.returncode)
        return JobResult(
            sequence_index=job.sequence_index,
            exit_status=exit_status,
            stdout_bytes=stdout,
            stderr_bytes=stderr,
            host=host.name,
            started_at=started_at,
            runtime=time.time() - started_at,
            error=error,
            signal=sig,
        )

    def cancel(self) -> bool:
        with self._lock:
            processes = list(self._processes)
        for process in processes:
            _signal_group(process, signal.SIGTERM)
        if processes:
            logger.info(f"Sent SIGTERM to {len(processes)} local job(s)")
        return bool(processes)


def _signal_group(process: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.error(f"Error signalling process {process.pid}: {e}")


class RemoteHostBackend(ExecutionBackend):
    """
    Runs jobs on remote hosts through a RemoteTransport.

    Per job:
    1. transfer: create <remote_base>/<run_id>/<seq> and stage the job's
       transfer paths into it
    2. run the command (inside that directory when it exists)
    3. return: fetch the job's return paths to the same local paths
    4. cleanup: remove the directory, even when an earlier step failed

    The working directory is unique per job, so concurrent jobs on one
    host never collide.
    """

    def __init__(
        self,
        transport: RemoteTransport,
        transfer: bool = False,
        return_files: bool = False,
        cleanup: bool = False,
        remote_base: str = ".jobfan",
        run_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.transfer = transfer
        self.return_files = return_files
        self.cleanup = cleanup
        self.remote_base = remote_base
        self.run_id = run_id or generate_run_id()
        self.timeout = timeout

    def workdir_for(self, job: JobSpec) -> Optional[str]:
        """Per-job remote working directory, or None if the job needs none."""
        staging = self.transfer and bool(job.transfer_paths)
        fetching = self.return_files and bool(job.return_paths)
        if not (staging or fetching):
            return None
        return posixpath.join(self.remote_base, self.run_id, str(job.sequence_index))

    def submit(self, job: JobSpec, host: Host) -> JobResult:
        started_at = time.time()
        workdir = self.workdir_for(job)
        failed = True

        try:
            if workdir is not None:
                self._stage(host, workdir, job)

            command = job.rendered_command
            if workdir is not None:
                command = f"cd {shlex.quote(workdir)} && {command}"
            output = self.transport.run(host.name, command, timeout=self.timeout)

            if workdir is not None and self.return_files:
                self._retrieve(host, workdir, job)

            failed = False
        finally:
            if workdir is not None and self.cleanup:
                try:
                    self.transport.remove(host.name, [workdir])
                    logger.debug(f"[{host}] removed {workdir}")
                except TransportError as e:
                    if not failed:
                        raise
                    logger.warning(f"Cleanup after failed job {job.sequence_index + 1}: {e}")

        return JobResult(
            sequence_index=job.sequence_index,
            exit_status=output.exit_status,
            stdout_bytes=output.stdout,
            stderr_bytes=output.stderr,
            host=host.name,
            started_at=started_at,
            runtime=time.time() - started_at,
        )

    def _stage(self, host: Host, workdir: str, job: JobSpec) -> None:
        targets = []
        if self.transfer:
            targets = [(path, posixpath.join(workdir, remote_relative(path)))
                       for path in job.transfer_paths]

        directories = {workdir} | {posixpath.dirname(remote) for _, remote in targets}
        command = "mkdir -p -- " + " ".join(shlex.quote(d) for d in sorted(directories))
        output = self.transport.run(host.name, command)
        if output.exit_status != 0:
            raise TransportError(
                host.name,
                f"cannot create {workdir}: {output.stderr.decode('utf-8', 'replace').strip()}",
            )

        for local, remote in targets:
            if not os.path.exists(local):
                raise TransportError(host.name, f"cannot stage {local}: no such file")
            self.transport.put(host.name, local, remote)
            logger.debug(f"[{host}] staged {local} -> {remote}")

    def _retrieve(self, host: Host, workdir: str, job: JobSpec) -> None:
        for path in job.return_paths:
            remote = posixpath.join(workdir, remote_relative(path))
            local = Path(path)
            local.parent.mkdir(parents=True, exist_ok=True)
            self.transport.get(host.name, remote, str(local))
            logger.debug(f"[{host}] returned {remote} -> {local}")

    def cancel(self) -> bool:
        return self.transport.terminate()


def remote_relative(path: str) -> str:
    """
    Where a local path lives inside a job's remote working directory.

    Relative paths keep their layout; absolute paths and paths escaping
    upwards keep only their basename.
    """
    normalized = posixpath.normpath(path.replace(os.sep, "/"))
    if posixpath.isabs(normalized) or normalized.startswith(".."):
        return posixpath.basename(normalized)
    return normalized
