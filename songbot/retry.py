from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

SleepFn = Callable[[float], Awaitable[None]]


class RetryExhausted(RetryError):
    """Raised by tenacity once every attempt has failed.

    Carries the attempt count and either the last error or, when the last
    attempt returned an unacceptable value, that value.
    """

    def __init__(self, last_attempt):
        super().__init__(last_attempt)
        self.attempts = last_attempt.attempt_number
        if last_attempt.failed:
            self.last_error: Optional[BaseException] = last_attempt.exception()
            self.last_value: object = None
        else:
            self.last_error = None
            self.last_value = last_attempt.result()

    def __str__(self) -> str:
        detail = f'gave up after {self.attempts} attempts'
        if self.last_error is not None:
            detail += f': {self.last_error}'
        return detail


def _log_attempt(label: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome.failed:
            logger.warning('%s attempt %d/%d failed: %s',
                           label, retry_state.attempt_number, max_attempts, outcome.exception())
        else:
            logger.info('%s attempt %d/%d did not succeed', label, retry_state.attempt_number, max_attempts)
    return log


def _log_sleep(label: str) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        logger.info('Retrying %s in %.1fs', label, retry_state.next_action.sleep)
    return log


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay: float,
    factor: float = 2.0,
    succeeded: Optional[Callable[[T], bool]] = None,
    sleep: SleepFn = asyncio.sleep,
    label: str = 'operation',
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` are used.

    An attempt fails when it raises ``Exception`` or when ``succeeded`` returns
    false for its result. The wait before attempt ``n + 1`` is
    ``base_delay * factor ** (n - 1)``; there is no wait after the last attempt.
    Raises ``RetryExhausted`` carrying the last error or result.
    """
    if max_attempts < 1:
        raise ValueError('max_attempts must be at least 1')
    if factor == 1:
        wait = wait_fixed(base_delay)
    else:
        wait = wait_exponential(multiplier=base_delay, exp_base=factor)
    retry = retry_if_exception_type(Exception)
    if succeeded is not None:
        retry = retry | retry_if_result(lambda value: not succeeded(value))

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait,
        retry=retry,
        sleep=sleep,
        after=_log_attempt(label, max_attempts),
        before_sleep=_log_sleep(label),
        retry_error_cls=RetryExhausted,
    )
    return await retrying(operation)
