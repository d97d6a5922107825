"""
Job Runner - wires every component for one run.

    input source -> Tokenizer -> JobFactory -> Scheduler -> ResultCollector

Usage:
    runner = JobRunner(RunConfig(command="gzip {}", jobs="4"))
    outcome = runner.run()
    sys.exit(outcome.exit_status)

Startup errors (TemplateSyntaxError, CapacityConfigurationError) are
raised by the constructor, before any job runs.
"""

import io
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, TextIO

from jobfan.config import EXIT_CANCELLED
from jobfan.infra.joblog import JobLog
from jobfan.inputs.sources import (
    argument_product,
    iter_file_paths,
    numeric_range,
    parse_range,
    read_records,
)
from jobfan.inputs.tokenizer import Tokenizer
from jobfan.schemas import RunConfig
from jobfan.templating.factory import JobFactory
from jobfan.templating.template import CommandTemplate
from .backends import LocalProcessBackend, RemoteHostBackend
from .capacity import CapacitySpec, SlotPool
from .collector import ResultCollector, RunSummary
from .dispatcher import Scheduler, SchedulerStats
from .entities import HostRoster, JobSpec, generate_run_id
from .retry_controller import RetryController
from .transport import RemoteTransport, SSHTransport

logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    """What a run produced."""

    summary: RunSummary
    stats: Optional[SchedulerStats]
    exit_status: int


class JobRunner:
    """
    Coordinates one jobfan run.

    Args:
        config: Validated run configuration
        stdin: Text stream used when no other input source is configured
        stdout: Binary stream for job output
        stderr: Binary stream for job errors
        transport: Remote transport (default: SSHTransport from config)
    """

    def __init__(
        self,
        config: RunConfig,
        stdin: Optional[TextIO] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        transport: Optional[RemoteTransport] = None,
    ):
        self.config = config
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self.stderr = stderr if stderr is not None else sys.stderr.buffer
        self.run_id = generate_run_id()

        self.capacity = CapacitySpec.parse(config.jobs)
        self.roster = self._load_roster()
        self.factory = self._build_factory()

        self._transport = transport
        self.scheduler: Optional[Scheduler] = None
        self.collector: Optional[ResultCollector] = None
        self._cancel_requested = False

    # =========================================================================
    # Construction
    # =========================================================================

    def _load_roster(self) -> HostRoster:
        entries = list(self.config.hosts)
        if self.config.host_file:
            entries.extend(
                host.name if host.slots is None else f"{host.slots}/{host.name}"
                for host in HostRoster.from_file(Path(self.config.host_file)).hosts
            )
        roster = HostRoster.from_entries(entries)
        if not roster.is_local_only:
            logger.info(f"Host roster: {', '.join(str(h) for h in roster.hosts)}")
        return roster

    def _build_factory(self) -> JobFactory:
        config = self.config
        template = CommandTemplate.parse(
            config.command,
            named_fields=config.header,
            quote=config.quote,
        )

        def path_templates(texts):
            return [
                CommandTemplate.parse(
                    text, named_fields=config.header, quote=False, implicit_append=False,
                )
                for text in texts
            ]

        remote = config.remote
        return JobFactory(
            template,
            transfer_templates=path_templates(remote.transfer_files) if remote.transfer else (),
            return_templates=path_templates(remote.return_files),
        )

    @property
    def transport(self) -> RemoteTransport:
        if self._transport is None:
            self._transport = SSHTransport(
                ssh_command=self.config.remote.ssh_command,
                scp_command=self.config.remote.scp_command,
            )
        return self._transport

    def build_pool(self) -> SlotPool:
        transport = None if self.roster.is_local_only else self.transport
        return SlotPool.build(self.roster, self.capacity, transport=transport)

    # =========================================================================
    # Input
    # =========================================================================

    def _items(self) -> Iterator:
        config = self.config
        if config.arg_lists:
            return argument_product(config.arg_lists)
        if config.arg_file is not None:
            if config.arg_file == "-":
                return read_records(self.stdin, config.delimiter)
            return self._read_file(config.arg_file)
        if config.numeric_range is not None:
            return numeric_range(*parse_range(config.numeric_range))
        if config.file_patterns:
            return iter_file_paths(config.file_patterns)
        return read_records(self.stdin, config.delimiter)

    def _read_file(self, path: str) -> Iterator[str]:
        with open(path, "r", encoding="utf-8", errors="surrogateescape") as f:
            yield from read_records(f, self.config.delimiter)

    def build_jobs(self) -> Iterator[JobSpec]:
        """Lazy JobSpec stream for this run's input."""
        tokenizer = Tokenizer(
            group_size=self.config.group_size,
            column_separator=self.config.column_separator,
            header=self.config.header,
        )
        return self.factory.jobs(tokenizer.groups(self._items()))

    # =========================================================================
    # Run
    # =========================================================================

    def dry_run(self) -> RunOutcome:
        """Print every rendered command; no backend is ever invoked."""
        summary = RunSummary()
        for job in self.build_jobs():
            summary.total += 1
            if job.is_rejected:
                summary.failed += 1
                self.stderr.write(
                    f"jobfan: job {job.sequence_index + 1}: {job.rejection}\n".encode(
                        "utf-8", "surrogateescape"
                    )
                )
            else:
                summary.succeeded += 1
                self.stdout.write(
                    (job.rendered_command + "\n").encode("utf-8", "surrogateescape")
                )
        self.stdout.flush()
        return RunOutcome(summary=summary, stats=None, exit_status=summary.exit_status)

    def run(self) -> RunOutcome:
        """Run every job and return the aggregate outcome."""
        if self.config.dry_run:
            return self.dry_run()

        config = self.config
        pool = self.build_pool()

        remote_backend = None
        if not self.roster.is_local_only:
            remote_backend = RemoteHostBackend(
                self.transport,
                transfer=config.remote.transfer,
                return_files=bool(config.remote.return_files),
                cleanup=config.remote.cleanup,
                remote_base=config.remote.remote_base,
                run_id=self.run_id,
                timeout=config.timeout,
            )

        joblog = JobLog(Path(config.joblog)).open() if config.joblog else None
        collector = self.collector = ResultCollector(
            self.stdout,
            self.stderr,
            keep_order=config.keep_order,
            tag=config.tag,
            joblog=joblog,
            results_dir=Path(config.results_dir) if config.results_dir else None,
            window=pool.size,
        )

        self.scheduler = Scheduler(
            pool,
            local_backend=LocalProcessBackend(timeout=config.timeout),
            remote_backend=remote_backend,
            retry_controller=RetryController(
                max_retries=config.retries,
                base_delay_seconds=config.retry_delay,
            ),
            on_result=collector,
            admit=collector.can_dispatch,
        )
        if self._cancel_requested:
            self.scheduler.cancel()

        try:
            stats = self.scheduler.run(self.build_jobs())
        finally:
            summary = collector.close()
            if joblog is not None:
                joblog.close()

        exit_status = EXIT_CANCELLED if stats.cancelled else summary.exit_status
        return RunOutcome(summary=summary, stats=stats, exit_status=exit_status)

    def cancel(self, terminate: bool = False) -> None:
        """Request cancellation; safe to call from a signal handler."""
        self._cancel_requested = True
        if self.scheduler is not None:
            self.scheduler.cancel(terminate=terminate)


def text_stdin() -> TextIO:
    """stdin as text that tolerates undecodable bytes."""
    return io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="surrogateescape")
