"""
jobfan CLI.

    jobfan [options] [command ...] [::: arg ...]...

Examples:
    seq 1 5 | jobfan -j2 echo {}
    jobfan -k 'echo $(({} * {}))' ::: 1 2 3 4 5
    jobfan --colsep , mv {1} {2} < renames.csv
    jobfan -S 4/server1,server2 --trc {.}.out 'process {} > {.}.out' ::: *.dat
"""

import argparse
import logging
import signal
import sys
from typing import BinaryIO, Optional, Sequence, TextIO

from pydantic import ValidationError

from jobfan import __version__
from jobfan.config import EXIT_FATAL
from jobfan.infra import env
from jobfan.infra.logging_config import setup_logging
from jobfan.schemas import RemoteOptions, RunConfig
from jobfan.scheduler.errors import JobfanError
from jobfan.scheduler.service import JobRunner, text_stdin

logger = logging.getLogger(__name__)

ARGUMENT_SEPARATOR = ":::"


def split_argument_lists(argv: Sequence[str]) -> tuple[list, list]:
    """
    Split argv at ':::' markers.

    Returns:
        (options and command, [argument list, ...])
    """
    argv = list(argv)
    if ARGUMENT_SEPARATOR not in argv:
        return argv, []

    first = argv.index(ARGUMENT_SEPARATOR)
    lists: list = []
    for token in argv[first:]:
        if token == ARGUMENT_SEPARATOR:
            lists.append([])
        else:
            lists[-1].append(token)
    return argv[:first], lists


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobfan",
        description="Run a command template once per input item, in parallel, locally or over ssh.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Scheduling
    parser.add_argument(
        "-j", "--jobs",
        type=str,
        default=None,
        help="Concurrency cap: N, +N/-N (cores +/- N), N%% of cores, 0 for unbounded (default: 100%%)",
    )
    parser.add_argument(
        "-n", "--max-args",
        dest="group_size",
        type=int,
        default=1,
        help="Input records per job; 0 runs the command once per record without inserting it",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Per-job timeout in seconds")
    parser.add_argument(
        "--retries",
        type=int,
        default=None,
        help="Retry jobs whose execution failed (transport errors) this many times",
    )
    parser.add_argument(
        "--terminate-on-cancel",
        action="store_true",
        default=None,
        help="Terminate running jobs on the first interrupt instead of letting them finish",
    )

    # Output
    parser.add_argument("-k", "--keep-order", action="store_true", help="Output in input order")
    parser.add_argument("--tag", action="store_true", help="Prefix output lines with the job's arguments")
    parser.add_argument("--dry-run", action="store_true", help="Print the commands instead of running them")
    parser.add_argument("--joblog", type=str, default=None, help="Write a job log to this file")
    parser.add_argument("--results", dest="results_dir", type=str, default=None,
                        help="Store each job's stdout/stderr/exit status under this directory")

    # Input
    parser.add_argument("-a", "--arg-file", type=str, default=None, help="Read input records from a file")
    parser.add_argument("--range", dest="numeric_range", type=str, default=None,
                        help="Numeric input range START:END[:STEP] (inclusive)")
    parser.add_argument("--files", dest="file_patterns", action="append", default=[],
                        help="Glob pattern of input files (repeatable)")
    parser.add_argument("-d", "--delimiter", type=str, default=None, help="Input record delimiter")
    parser.add_argument("-0", "--null", action="store_true", help="Records are NUL-separated")
    parser.add_argument("--colsep", dest="column_separator", type=str, default=None,
                        help="Split records into fields {1} {2} ... on this separator")
    parser.add_argument("--header", action="store_true", help="First record names the columns for {name}")
    parser.add_argument("--no-quote", action="store_true", help="Do not shell-quote substituted values")

    # Remote
    parser.add_argument("-S", "--sshlogin", dest="hosts", action="append", default=[],
                        help="Hosts, comma-separated, e.g. 4/server1,user@server2 (':' is the local machine)")
    parser.add_argument("--sshloginfile", "--slf", dest="host_file", type=str, default=None,
                        help="File with one host entry per line")
    parser.add_argument("--transfer", action="store_true", help="Stage input files on the remote host")
    parser.add_argument("--transferfile", dest="transfer_files", action="append", default=[],
                        help="Template of a file to stage (default: {}); implies --transfer")
    parser.add_argument("--return", dest="return_files", action="append", default=[],
                        help="Template of a file to fetch back after the job (repeatable)")
    parser.add_argument("--cleanup", action="store_true", help="Remove staged and returned files on the remote host")
    parser.add_argument("--trc", dest="trc", action="append", default=[],
                        help="Shorthand for --transfer --return FILE --cleanup")
    parser.add_argument("--remote-base", type=str, default=None, help="Remote staging directory")
    parser.add_argument("--ssh", dest="ssh_command", type=str, default=None, help="ssh command to use")

    # Logging
    parser.add_argument("--log-level", type=str, default=None,
                        help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Shortcut for --log-level DEBUG")

    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command template")
    return parser


def config_from_args(args: argparse.Namespace, arg_lists: list) -> RunConfig:
    """Build a validated RunConfig from parsed arguments."""
    delimiter = "\0" if args.null else (args.delimiter or "\n")

    remote = {
        "transfer": args.transfer or bool(args.transfer_files) or bool(args.trc),
        "return_files": list(args.return_files) + list(args.trc),
        "cleanup": args.cleanup or bool(args.trc),
    }
    if args.transfer_files:
        remote["transfer_files"] = list(args.transfer_files)
    if args.remote_base:
        remote["remote_base"] = args.remote_base
    if args.ssh_command:
        remote["ssh_command"] = args.ssh_command

    values = {
        "command": " ".join(args.command),
        "group_size": args.group_size,
        "keep_order": args.keep_order,
        "tag": args.tag,
        "dry_run": args.dry_run,
        "quote": not args.no_quote,
        "delimiter": delimiter,
        "column_separator": args.column_separator,
        "header": args.header,
        "arg_lists": arg_lists,
        "arg_file": args.arg_file,
        "numeric_range": args.numeric_range,
        "file_patterns": args.file_patterns,
        "hosts": args.hosts,
        "host_file": args.host_file,
        "remote": RemoteOptions(**remote),
        "timeout": args.timeout,
        "joblog": args.joblog,
        "results_dir": args.results_dir,
    }
    if args.jobs is not None:
        values["jobs"] = args.jobs
    if args.retries is not None:
        values["retries"] = args.retries
    if args.terminate_on_cancel is not None:
        values["terminate_on_cancel"] = args.terminate_on_cancel

    return RunConfig(**values)


def install_signal_handlers(runner: JobRunner, terminate_first: bool) -> dict:
    """
    SIGINT / SIGTERM handler.

    The first signal stops dispatching (and terminates running jobs when
    terminate_first is set); the second one terminates running jobs.
    """
    received = {"count": 0}

    def handler(signum, frame):
        received["count"] += 1
        terminate = terminate_first or received["count"] > 1
        name = signal.Signals(signum).name
        if terminate:
            logger.warning(f"{name} received - terminating running jobs")
        else:
            logger.warning(f"{name} received - waiting for running jobs (repeat to terminate)")
        runner.cancel(terminate=terminate)

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def restore_signal_handlers(previous: dict) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def main(
    argv: Optional[Sequence[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
) -> int:
    env.load_env()

    head, arg_lists = split_argument_lists(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(head)

    log_level = "DEBUG" if args.verbose else (args.log_level or env.get_log_level())
    setup_logging(log_level, env.get_log_dir())

    err = stderr if stderr is not None else sys.stderr.buffer

    try:
        config = config_from_args(args, arg_lists)
        if stdin is None and config.reads_stdin:
            stdin = text_stdin()
        runner = JobRunner(config, stdin=stdin, stdout=stdout, stderr=err)
    except ValidationError as e:
        logger.error(f"Invalid configuration:\n{e}")
        return EXIT_FATAL
    except (JobfanError, OSError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return EXIT_FATAL

    previous = install_signal_handlers(runner, config.terminate_on_cancel)
    try:
        outcome = runner.run()
    except (JobfanError, OSError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return EXIT_FATAL
    finally:
        restore_signal_handlers(previous)

    if not config.dry_run:
        err.write(f"jobfan: {outcome.summary.describe()}\n".encode())
        err.flush()

    return outcome.exit_status


if __name__ == "__main__":
    sys.exit(main())
