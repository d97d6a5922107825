"""
Tests for the RetryController.
"""

import threading

import pytest

from jobfan.scheduler import ExecutionError, JobResult, JobSpec, RetryController, TransportError

JOB = JobSpec(sequence_index=0, rendered_command="echo 1")


class FlakyAttempt:
    """Raises the given errors in turn, then returns a result."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self) -> JobResult:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return JobResult(sequence_index=0, exit_status=0)


class TestBackoff:
    """Tests for backoff calculation."""

    def test_exponential(self):
        controller = RetryController(base_delay_seconds=0.5)
        assert [controller._calculate_backoff(n) for n in range(4)] == [0.5, 1.0, 2.0, 4.0]

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryController(max_retries=-1)


class TestRun:
    """Tests for RetryController.run()."""

    def test_success_first_try(self):
        attempt = FlakyAttempt()
        result, attempts = RetryController().run(JOB, attempt)

        assert result.exit_status == 0
        assert attempts == 1

    def test_no_retries_by_default(self):
        attempt = FlakyAttempt(TransportError("server1", "down"))

        with pytest.raises(TransportError) as exc_info:
            RetryController().run(JOB, attempt)

        assert attempt.calls == 1
        assert exc_info.value.attempts == 1

    def test_retries_then_succeeds(self):
        sleeps = []
        attempt = FlakyAttempt(TransportError("a", "down"), ExecutionError("boom"))
        controller = RetryController(max_retries=3, base_delay_seconds=0.5, sleep=sleeps.append)

        result, attempts = controller.run(JOB, attempt)

        assert attempts == 3
        assert sleeps == [0.5, 1.0]

    def test_gives_up_after_max_attempts(self):
        attempt = FlakyAttempt(*[TransportError("a", "down") for _ in range(5)])
        controller = RetryController(max_retries=2, sleep=lambda s: None)

        with pytest.raises(TransportError) as exc_info:
            controller.run(JOB, attempt)

        assert attempt.calls == 3
        assert exc_info.value.attempts == 3

    def test_other_exceptions_are_not_retried(self):
        attempt = FlakyAttempt(ValueError("bug"))
        controller = RetryController(max_retries=3, sleep=lambda s: None)

        with pytest.raises(ValueError):
            controller.run(JOB, attempt)
        assert attempt.calls == 1

    def test_no_retry_once_cancelled(self):
        cancelled = threading.Event()
        cancelled.set()
        attempt = FlakyAttempt(TransportError("a", "down"))
        controller = RetryController(max_retries=3, sleep=lambda s: None)

        with pytest.raises(TransportError):
            controller.run(JOB, attempt, cancelled=cancelled)
        assert attempt.calls == 1

    def test_zero_delay_does_not_sleep(self):
        sleeps = []
        attempt = FlakyAttempt(TransportError("a", "down"))
        controller = RetryController(max_retries=1, base_delay_seconds=0, sleep=sleeps.append)

        controller.run(JOB, attempt)
        assert sleeps == []
