"""
Retry Controller.

- Retries a job whose backend raised ExecutionError (TransportError
  included) up to max_retries more times
- Retries happen inside the job's slot; the job stays DISPATCHED
- Non-zero exit statuses are results, never retried
- No retries once the run has been cancelled

Backoff calculation:
    delay = base_delay * (2 ^ attempt_number)
    Example with 0.5s base: 0.5s -> 1s -> 2s
"""

import logging
import threading
import time
from typing import Callable, Optional

from jobfan.config import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_BASE_DELAY
from .entities import JobResult, JobSpec
from .errors import ExecutionError

logger = logging.getLogger(__name__)


class RetryController:
    """
    Runs a backend call under the retry policy.

    Args:
        max_retries: Additional attempts after the first
        base_delay_seconds: Base delay for exponential backoff
        sleep: Injectable sleep for tests
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _calculate_backoff(self, attempt_number: int) -> float:
        """
        Calculate exponential backoff delay.

        Formula: delay = base_delay * (2 ^ attempt_number)
        """
        return self.base_delay_seconds * (2 ** attempt_number)

    def run(
        self,
        job: JobSpec,
        attempt: Callable[[], JobResult],
        cancelled: Optional[threading.Event] = None,
    ) -> tuple[JobResult, int]:
        """
        Call `attempt` until it returns or the retries are used up.

        Returns:
            (result, attempts made)

        Raises:
            ExecutionError: The last error once no attempts remain
        """
        attempt_number = 0
        while True:
            try:
                return attempt(), attempt_number + 1
            except ExecutionError as e:
                attempt_number += 1
                if attempt_number >= self.max_attempts:
                    logger.error(
                        f"Job {job.sequence_index + 1} failed after "
                        f"{attempt_number} attempt(s): {e}"
                    )
                    e.attempts = attempt_number
                    raise
                if cancelled is not None and cancelled.is_set():
                    logger.info(f"Job {job.sequence_index + 1}: not retrying, run cancelled")
                    e.attempts = attempt_number
                    raise

                delay = self._calculate_backoff(attempt_number - 1)
                logger.warning(
                    f"Job {job.sequence_index + 1} attempt "
                    f"{attempt_number}/{self.max_attempts} failed: {e}; "
                    f"retrying in {delay:.1f}s"
                )
                if delay > 0:
                    self._sleep(delay)
