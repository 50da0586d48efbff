"""Step execution capabilities.

The core depends on two small capabilities: `Heartbeat.record(progress)` for
long loops and `StepRunner.execute(fn, key)` for every call that may block on
a provider. `LocalStepRunner` is the in-process implementation used by the
CLI and the worker; an external orchestrator can supply its own.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from paysync.config import RetryConfig
from paysync.errors import CancelledError, TransientError, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Heartbeat(Protocol):
    def record(self, progress: Any) -> None: ...


class StepRunner(Protocol):
    def execute(self, fn: Callable[[], T], key: str) -> T: ...


class LoggingHeartbeat:
    """Heartbeat that logs progress and remembers the last value."""

    def __init__(self, level: int = logging.DEBUG):
        self.level = level
        self.last: Any = None
        self.count = 0

    def record(self, progress: Any) -> None:
        self.last = progress
        self.count += 1
        logger.log(self.level, f"Heartbeat: {progress}")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff between attempts of one step."""

    initial_interval: float = 1.0
    backoff_coefficient: float = 2.0
    maximum_interval: float = 60.0
    maximum_attempts: int = 5

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            initial_interval=config.initial_interval,
            backoff_coefficient=config.backoff_coefficient,
            maximum_interval=config.maximum_interval,
            maximum_attempts=config.maximum_attempts,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay = self.initial_interval * self.backoff_coefficient ** (attempt - 1)
        return min(delay, self.maximum_interval)


def check_cancelled(cancel_event: threading.Event | None) -> None:
    """Raise CancelledError if cancellation was requested."""
    if cancel_event is not None and cancel_event.is_set():
        raise CancelledError()


class LocalStepRunner:
    """Runs steps in-process with a timeout and a retry policy.

    Timeouts are transient. Non-retryable errors are raised on the first
    attempt; transient ones are retried until the policy is exhausted, then
    the last error is raised.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.cancel_event = cancel_event
        self._sleep = sleep

    def execute(self, fn: Callable[[], T], key: str) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._run_once(fn, key)
            except CancelledError:
                raise
            except Exception as e:
                kind = classify(e)
                if not kind.retryable:
                    logger.debug(f"Step {key} failed with non-retryable {kind.value}: {e}")
                    raise
                if attempt >= self.retry_policy.maximum_attempts:
                    logger.warning(f"Step {key} failed after {attempt} attempts: {e}")
                    raise

                delay = self.retry_policy.delay(attempt)
                logger.warning(
                    f"Step {key} failed (attempt {attempt}/"
                    f"{self.retry_policy.maximum_attempts}), retrying in {delay:.1f}s: {e}"
                )
                self._wait(delay)

    def _wait(self, delay: float) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif self.cancel_event is not None:
            if self.cancel_event.wait(delay):
                raise CancelledError()
        else:
            time.sleep(delay)
        check_cancelled(self.cancel_event)

    def _run_once(self, fn: Callable[[], T], key: str) -> T:
        if self.timeout is None:
            return fn()

        # A fresh worker per call so a hung provider call cannot block later steps
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="paysync-step")
        try:
            future = executor.submit(fn)
            try:
                return future.result(timeout=self.timeout)
            except FutureTimeoutError:
                future.cancel()
                raise TransientError(
                    f"step {key} timed out after {self.timeout}s", reason="TIMEOUT"
                ) from None
        finally:
            executor.shutdown(wait=False)
