"""Bounded polling with tenacity integration.

Restore verification is the only time-bounded wait in docker-cr: after the
engine returns, the restored target is polled until it reports live or the
bound (attempt count or overall deadline, whichever comes first) is hit.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_result, stop_after_attempt, stop_after_delay, wait_fixed

from dockercr.core.logging import get_logger

if TYPE_CHECKING:
    from dockercr.core.config import VerifySettings

T = TypeVar("T")

logger = get_logger(__name__)


class PollingExhausted(Exception):
    """Raised when the condition was not met within the polling bound."""

    def __init__(self, attempts: int, elapsed: float) -> None:
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(f"condition not met after {attempts} attempts ({elapsed:.1f}s)")


@dataclass(frozen=True)
class PollConfig:
    """Polling bounds.

    max_attempts is the TOTAL number of checks, including the first one.
    """

    max_attempts: int = 10
    backoff_seconds: float = 0.5
    timeout_seconds: float = 15.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")

    @classmethod
    def from_settings(cls, settings: "VerifySettings") -> "PollConfig":
        return cls(
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.backoff_seconds,
            timeout_seconds=settings.timeout_seconds,
        )


def _log_pending(retry_state: RetryCallState) -> None:
    logger.debug("condition not met yet", attempt=retry_state.attempt_number)


def poll_until(
    check: Callable[[], T | None],
    config: PollConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call check until it returns something other than None.

    Exceptions raised by check are not retried; they propagate at once.

    Args:
        check: Returns the observed value once the condition holds, else None
        config: Polling bounds
        sleep: Sleep function (injectable for tests)

    Returns:
        The first non-None value check returned

    Raises:
        PollingExhausted: If the bound is hit first
    """
    retrying = Retrying(
        stop=stop_after_attempt(config.max_attempts) | stop_after_delay(config.timeout_seconds),
        wait=wait_fixed(config.backoff_seconds),
        retry=retry_if_result(lambda value: value is None),
        before_sleep=_log_pending,
        sleep=sleep,
        reraise=True,
    )
    started = time.monotonic()
    try:
        result = retrying(check)
    except RetryError as e:
        raise PollingExhausted(e.last_attempt.attempt_number, time.monotonic() - started) from None
    # retry_if_result guarantees a non-None value here
    return result  # type: ignore[return-value]
