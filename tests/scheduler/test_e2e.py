"""
End-to-End Tests for JobRunner.

Full runs: input source -> tokenizer -> templates -> scheduler ->
collector, with real local shell jobs. Remote runs use the in-memory
transport.
"""

import io
import os

import pytest

from jobfan.config import EXIT_CANCELLED
from jobfan.schemas import RemoteOptions, RunConfig
from jobfan.scheduler import CapacityConfigurationError, TemplateSyntaxError
from jobfan.scheduler.backends import LocalProcessBackend
from jobfan.scheduler.service import JobRunner

from .conftest import FakeTransport


def _run(stdin_text: str = "", transport=None, **config):
    stdout, stderr = io.BytesIO(), io.BytesIO()
    runner = JobRunner(
        RunConfig(**config),
        stdin=io.StringIO(stdin_text),
        stdout=stdout,
        stderr=stderr,
        transport=transport,
    )
    outcome = runner.run()
    return outcome, stdout.getvalue(), stderr.getvalue()


class TestLocalRuns:
    """Local shell jobs."""

    def test_echo_from_argument_list(self):
        outcome, out, _ = _run(command="echo {}", arg_lists=[["5"]])

        assert out == b"5\n"
        assert outcome.exit_status == 0
        assert outcome.summary.describe() == "1 job(s): 1 succeeded, 0 failed"

    @pytest.mark.parametrize("keep_order", [True, False])
    def test_squares(self, keep_order):
        outcome, out, _ = _run(
            command="echo $(({}*{}))",
            arg_lists=[["1", "2", "3", "4", "5"]],
            jobs="2",
            keep_order=keep_order,
        )

        lines = out.decode().splitlines()
        if keep_order:
            assert lines == ["1", "4", "9", "16", "25"]
        else:
            assert sorted(lines, key=int) == ["1", "4", "9", "16", "25"]
        assert outcome.stats.peak_in_flight <= 2

    def test_single_slot_matches_serial_output(self):
        _, out, _ = _run(command="echo {}", numeric_range="1:5", jobs="1")
        assert out == b"1\n2\n3\n4\n5\n"

    def test_keep_order_despite_reversed_durations(self):
        outcome, out, _ = _run(
            command="sleep 0.$((4-{})); echo {}",
            arg_lists=[["1", "2", "3"]],
            jobs="3",
            keep_order=True,
        )
        assert out == b"1\n2\n3\n"

    def test_keep_order_buffer_is_bounded_by_capacity(self):
        stdout = io.BytesIO()
        runner = JobRunner(
            RunConfig(
                command="if [ {} = 0 ]; then sleep 1; fi; echo {}",
                arg_lists=[[str(i) for i in range(20)]],
                jobs="2",
                keep_order=True,
            ),
            stdout=stdout,
            stderr=io.BytesIO(),
        )

        outcome = runner.run()

        assert outcome.exit_status == 0
        assert runner.collector.peak_buffered <= 2
        assert stdout.getvalue().decode().splitlines() == [str(i) for i in range(20)]

    def test_stdin_records(self):
        _, out, _ = _run("a\nb c\n", command="echo {}", jobs="1")
        assert out == b"a\nb c\n"

    def test_null_delimited_stdin(self):
        _, out, _ = _run("one\0two\0", command="printf '%s.' {}", delimiter="\0", jobs="1")
        assert out == b"one.two."

    def test_empty_command_runs_items(self):
        _, out, _ = _run("echo hi\necho there\n", jobs="1")
        assert out == b"hi\nthere\n"

    def test_arg_file(self, tmp_path):
        items = tmp_path / "items.txt"
        items.write_text("x\ny\n")

        _, out, _ = _run(command="echo {}", arg_file=str(items), jobs="1")
        assert out == b"x\ny\n"

    def test_file_patterns(self, tmp_path):
        (tmp_path / "a.txt").write_text("one\n")
        (tmp_path / "b.txt").write_text("two\nthree\n")

        _, out, _ = _run(
            command="wc -l < {}",
            file_patterns=[str(tmp_path / "*.txt")],
            jobs="1",
        )
        assert [line.strip() for line in out.decode().splitlines()] == ["1", "2"]

    def test_product_of_argument_lists(self):
        _, out, _ = _run(
            command="echo {1}{2}",
            arg_lists=[["a", "b"], ["1", "2"]],
            jobs="1",
        )
        assert out == b"a1\na2\nb1\nb2\n"

    def test_failures_set_exit_status(self):
        outcome, _, _ = _run(command="exit {}", arg_lists=[["0", "1", "2", "3"]], jobs="2")

        assert outcome.summary.failed == 3
        assert outcome.exit_status == 3

    def test_rejected_record_fails_only_its_job(self):
        outcome, out, err = _run(
            "name,n\nbob,1\nbroken\nal,2\n",
            command="echo {name}",
            column_separator=",",
            header=True,
            jobs="1",
            keep_order=True,
        )

        assert out == b"bob\nal\n"
        assert b"field(s)" in err
        assert outcome.summary.failed == 1
        assert outcome.exit_status == 1

    def test_timeout(self):
        outcome, _, err = _run(command="sleep {}", arg_lists=[["10"]], timeout=0.3)

        assert outcome.summary.failed == 1
        assert b"timed out" in err

    def test_tag(self):
        _, out, _ = _run(command="echo out", arg_lists=[["x"]], tag=True)
        assert out == b"x\tout x\n"

    def test_joblog_and_results(self, tmp_path):
        joblog = tmp_path / "joblog.tsv"
        results = tmp_path / "results"

        _run(
            command="echo {}",
            arg_lists=[["a", "b"]],
            jobs="1",
            joblog=str(joblog),
            results_dir=str(results),
        )

        assert len(joblog.read_text().splitlines()) == 3
        assert (results / "2" / "stdout").read_bytes() == b"b\n"

    def test_cancel_before_run(self):
        runner = JobRunner(
            RunConfig(command="echo {}", arg_lists=[["1", "2"]]),
            stdout=io.BytesIO(),
            stderr=io.BytesIO(),
        )
        runner.cancel()

        outcome = runner.run()

        assert outcome.exit_status == EXIT_CANCELLED
        assert outcome.stats.dispatched == 0


class TestDryRun:
    """Dry runs render commands without executing anything."""

    def test_colsep(self):
        _, out, _ = _run("a.txt,b.txt\n", command="mv {1} {2}", column_separator=",", dry_run=True)
        assert out == b"mv a.txt b.txt\n"

    def test_group_size(self):
        lines = "".join(f"{i}\n" for i in range(1000))
        outcome, out, _ = _run(lines, command="echo {}", group_size=100, dry_run=True)

        assert len(out.splitlines()) == 10
        assert outcome.summary.total == 10
        assert out.splitlines()[1].startswith(b"echo 100 101 ")

    def test_never_invokes_a_backend(self, monkeypatch):
        def fail(self, job, host):
            raise AssertionError("backend invoked during dry run")

        monkeypatch.setattr(LocalProcessBackend, "submit", fail)

        outcome, out, _ = _run(command="rm {}", arg_lists=[["a", "b"]], dry_run=True)

        assert out == b"rm a\nrm b\n"
        assert outcome.exit_status == 0


class TestStartupErrors:
    """Errors raised before any job runs."""

    def test_unknown_placeholder(self):
        with pytest.raises(TemplateSyntaxError):
            JobRunner(RunConfig(command="echo {1x}"))

    def test_invalid_capacity(self):
        with pytest.raises(CapacityConfigurationError):
            JobRunner(RunConfig(command="echo", jobs="lots"))


class TestRemoteRuns:
    """Remote hosts through the in-memory transport."""

    def test_jobs_spread_over_hosts(self):
        transport = FakeTransport()
        outcome, out, _ = _run(
            command="echo {}",
            arg_lists=[["1", "2", "3", "4"]],
            hosts=["1/server1", "1/server2"],
            keep_order=True,
            transport=transport,
        )

        assert outcome.exit_status == 0
        assert transport.commands("server1")
        assert transport.commands("server2")
        assert len(out.splitlines()) == 4

    def test_transfer_return_cleanup(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "in.txt").write_text("data\n")
        transport = FakeTransport()

        outcome, _, _ = _run(
            command="wc -l {} > {.}.out",
            arg_lists=[["in.txt"]],
            hosts=["server1"],
            jobs="1",
            remote=RemoteOptions(
                transfer=True,
                return_files=["{.}.out"],
                cleanup=True,
                remote_base="/tmp/jf",
            ),
            transport=transport,
        )

        assert outcome.exit_status == 0
        operations = [call[0] for call in transport.calls]
        assert operations == ["run", "put", "run", "get", "run"]
        assert transport.calls[1][2] == "in.txt"
        assert transport.commands()[-1].startswith("rm -rf -- /tmp/jf/")
        assert os.path.exists(tmp_path / "in.out")

    def test_unreachable_host_fails_its_jobs(self):
        transport = FakeTransport()
        transport.unreachable.add("server1")

        outcome, _, err = _run(
            command="echo {}",
            arg_lists=[["1", "2"]],
            hosts=["1/server1"],
            transport=transport,
        )

        assert outcome.summary.failed == 2
        assert b"connection refused" in err
