"""
Remote transport.

The remote-execution primitive the RemoteHostBackend is written against:
- put: copy a local file to a host
- get: copy a file from a host
- run: run a command on a host, capturing stdout/stderr and exit status
- remove: delete paths on a host
- terminate: best-effort stop of every in-flight transfer or command

SSHTransport implements it with the ssh and scp executables.
"""

import logging
import shlex
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

from jobfan.config import (
    DEFAULT_SCP_COMMAND,
    DEFAULT_SSH_COMMAND,
    SSH_CONNECT_TIMEOUT,
    SSH_TRANSPORT_FAILURE,
)
from .entities import CommandOutput
from .errors import TransportError

logger = logging.getLogger(__name__)


class RemoteTransport(ABC):
    """Abstract remote-execution channel."""

    @abstractmethod
    def put(self, host: str, local_path: str, remote_path: str) -> None:
        """Copy a local file to the host. Raises TransportError."""
        ...

    @abstractmethod
    def get(self, host: str, remote_path: str, local_path: str) -> None:
        """Copy a file from the host. Raises TransportError."""
        ...

    @abstractmethod
    def run(self, host: str, command: str, timeout: Optional[float] = None) -> CommandOutput:
        """
        Run a shell command on the host.

        A non-zero exit status of the command itself is returned, not raised.

        Raises:
            TransportError: If the host cannot be reached
        """
        ...

    def remove(self, host: str, paths: Iterable[str]) -> None:
        """Delete paths on the host. Raises TransportError."""
        paths = list(paths)
        if not paths:
            return
        command = "rm -rf -- " + " ".join(shlex.quote(p) for p in paths)
        output = self.run(host, command)
        if output.exit_status != 0:
            raise TransportError(
                host,
                f"cleanup failed ({output.exit_status}): "
                f"{output.stderr.decode('utf-8', 'replace').strip()}",
            )

    def terminate(self) -> bool:
        """Stop in-flight operations. Returns True if anything was signalled."""
        return False


class SSHTransport(RemoteTransport):
    """
    Transport over the ssh and scp executables.

    ssh exit status 255 means the connection failed; any other status is
    the remote command's own.
    """

    def __init__(
        self,
        ssh_command: str = DEFAULT_SSH_COMMAND,
        scp_command: str = DEFAULT_SCP_COMMAND,
        connect_timeout: int = SSH_CONNECT_TIMEOUT,
        extra_options: Sequence[str] = (),
    ):
        self.ssh_command = shlex.split(ssh_command)
        self.scp_command = shlex.split(scp_command)
        self.options = [
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={connect_timeout}",
            *extra_options,
        ]
        self._processes: set = set()
        self._lock = threading.Lock()

    def _spawn(self, host: str, argv: list, timeout: Optional[float]) -> CommandOutput:
        logger.debug(f"[{host}] {' '.join(argv)}")
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(host, f"cannot start {argv[0]}: {e}") from e

        with self._lock:
            self._processes.add(process)
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            raise TransportError(host, f"timed out after {timeout}s") from None
        finally:
            with self._lock:
                self._processes.discard(process)

        return CommandOutput(exit_status=process.returncode, stdout=stdout, stderr=stderr)

    def run(self, host: str, command: str, timeout: Optional[float] = None) -> CommandOutput:
        argv = [*self.ssh_command, *self.options, host, "--", command]
        output = self._spawn(host, argv, timeout)
        if output.exit_status == SSH_TRANSPORT_FAILURE:
            raise TransportError(
                host,
                f"ssh failed: {output.stderr.decode('utf-8', 'replace').strip()}",
            )
        return output

    def put(self, host: str, local_path: str, remote_path: str) -> None:
        argv = [*self.scp_command, "-q", *self.options, local_path, f"{host}:{remote_path}"]
        self._check_copy(host, argv, f"cannot stage {local_path}")

    def get(self, host: str, remote_path: str, local_path: str) -> None:
        argv = [*self.scp_command, "-q", *self.options, f"{host}:{remote_path}", local_path]
        self._check_copy(host, argv, f"cannot retrieve {remote_path}")

    def _check_copy(self, host: str, argv: list, what: str) -> None:
        output = self._spawn(host, argv, None)
        if output.exit_status != 0:
            raise TransportError(
                host,
                f"{what}: {output.stderr.decode('utf-8', 'replace').strip()}",
            )

    def terminate(self) -> bool:
        with self._lock:
            processes = list(self._processes)
        for process in processes:
            try:
                process.terminate()
            except OSError as e:
                logger.error(f"Error terminating ssh process: {e}")
        return bool(processes)
