import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from gmboard.domain.exceptions import TransientSourceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    description: str,
    attempts: int,
    timeout: float,
    base_delay: float,
    max_delay: float,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Runs `func` with a per-attempt timeout and exponential backoff.

    Errors matching `retry_on` (and timeouts) are retried up to `attempts`
    times in total; the last one is re-raised as TransientSourceError.
    Anything else propagates untouched.
    """
    delay = base_delay
    last_error: BaseException = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            return await asyncio.wait_for(func(), timeout=timeout)
        except asyncio.TimeoutError as e:
            last_error = e
        except retry_on as e:
            last_error = e

        if attempt < attempts:
            logger.warning(f"{description} failed (attempt {attempt}/{attempts}): {last_error!r}; retrying in {delay:.2f}s")
            await sleep(delay)
            delay = min(delay * 2, max_delay)

    raise TransientSourceError(f"{description} failed after {attempts} attempts: {last_error!r}") from last_error
