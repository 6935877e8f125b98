import asyncio
import logging
from typing import Awaitable, Callable, TypeVar


logger = logging.getLogger("sitegen.retry")

T = TypeVar("T")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_multiplier: float = 2.0,
    retry_if: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Call `fn` until it succeeds, sleeping with exponential backoff between attempts.

    The delay starts at `initial_delay` seconds, is multiplied by
    `backoff_multiplier` after every failure and never exceeds `max_delay`.
    The last error is re-raised once attempts are exhausted or `retry_if`
    rejects it. No delay follows the final attempt.
    """
    delay = initial_delay
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            retryable = retry_if is None or retry_if(e)
            if attempt >= max_attempts or not retryable:
                logger.error(
                    "%s failed after %d/%d attempts: %s", label, attempt, max_attempts, e
                )
                raise
            logger.warning(
                "%s attempt %d/%d failed: %s (retrying in %.1fs)",
                label,
                attempt,
                max_attempts,
                e,
                delay,
            )
            await sleep(delay)
            delay = min(delay * backoff_multiplier, max_delay)


def retry_on_rate_limit(error: Exception) -> bool:
    message = str(error).lower()
    return "rate limit" in message or "429" in message or "too many requests" in message


def retry_on_timeout(error: Exception) -> bool:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    message = str(error).lower()
    return "timeout" in message or "etimedout" in message


def retry_on_transient(error: Exception) -> bool:
    message = str(error)
    return (
        retry_on_rate_limit(error)
        or retry_on_timeout(error)
        or "503" in message
        or "502" in message
    )
