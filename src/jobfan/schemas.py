"""
Run configuration schemas.

RunConfig is built by the CLI (or directly by library callers) and
validated once at startup; invalid values raise pydantic's
ValidationError before any job runs.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from jobfan.config import DEFAULT_DELIMITER
from jobfan.infra import env


class RemoteOptions(BaseModel):
    """Per-job staging behaviour on remote hosts."""

    transfer: bool = Field(default=False, description="Stage transfer files on the remote host")
    transfer_files: List[str] = Field(
        default_factory=lambda: ["{}"],
        description="Templates naming local files to stage (default: the input item)",
    )
    return_files: List[str] = Field(
        default_factory=list,
        description="Templates naming files to fetch back after the job",
    )
    cleanup: bool = Field(default=False, description="Remove staged and produced files afterwards")
    remote_base: str = Field(
        default_factory=env.get_remote_base,
        min_length=1,
        description="Remote directory holding per-job working directories",
    )
    ssh_command: str = Field(default_factory=env.get_ssh_command, min_length=1)
    scp_command: str = Field(default_factory=env.get_scp_command, min_length=1)


class RunConfig(BaseModel):
    """Everything one jobfan run needs."""

    command: str = Field(default="", description="Command template; empty runs each item as a command")
    jobs: str = Field(
        default_factory=env.get_default_jobs,
        description="Capacity: N, +N, -N, N% or 0 (unbounded)",
    )
    group_size: int = Field(default=1, ge=0, description="Input records per job")
    keep_order: bool = Field(default=False, description="Emit output in input order")
    tag: bool = Field(default=False, description="Prefix output lines with the job's arguments")
    dry_run: bool = Field(default=False, description="Print commands instead of running them")
    quote: bool = Field(default=True, description="Shell-quote substituted values")

    # Input
    delimiter: str = Field(default=DEFAULT_DELIMITER, min_length=1)
    column_separator: Optional[str] = Field(default=None, min_length=1)
    header: bool = Field(default=False, description="First record names the columns")
    arg_lists: List[List[str]] = Field(default_factory=list, description="':::' argument lists")
    arg_file: Optional[str] = Field(default=None, description="Read records from this file ('-' = stdin)")
    numeric_range: Optional[str] = Field(default=None, description="START:END[:STEP]")
    file_patterns: List[str] = Field(default_factory=list, description="Glob patterns of input files")

    # Hosts
    hosts: List[str] = Field(default_factory=list, description="Roster entries, e.g. '4/server1'")
    host_file: Optional[str] = Field(default=None, description="File with one roster entry per line")
    remote: RemoteOptions = Field(default_factory=RemoteOptions)

    # Execution
    timeout: Optional[float] = Field(default=None, gt=0, description="Per-job timeout in seconds")
    retries: int = Field(default_factory=env.get_default_retries, ge=0)
    retry_delay: float = Field(default_factory=env.get_retry_delay, ge=0)
    terminate_on_cancel: bool = Field(default_factory=env.get_terminate_on_cancel)

    # Output
    joblog: Optional[str] = Field(default=None, description="Write a job log to this file")
    results_dir: Optional[str] = Field(default=None, description="Write per-job output files here")

    @property
    def reads_stdin(self) -> bool:
        """True when job arguments come from standard input."""
        if self.arg_file is not None:
            return self.arg_file == "-"
        return not (self.arg_lists or self.numeric_range is not None or self.file_patterns)

    @model_validator(mode="after")
    def _single_input_source(self) -> "RunConfig":
        sources = [
            bool(self.arg_lists),
            self.arg_file is not None,
            self.numeric_range is not None,
            bool(self.file_patterns),
        ]
        if sum(sources) > 1:
            raise ValueError(
                "Choose one input source: ':::' lists, --arg-file, --range or --files"
            )
        return self
