import asyncio
import logging
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_fixed


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def fixed_retrying(attempts: int, delay: float, sleep: Sleep = asyncio.sleep) -> AsyncRetrying:
    """Bounded retry with a fixed pause between attempts.

    The last exception is re-raised unchanged; callers wrap it into their
    own failure type. Build one per call: a retrying object keeps per-run state.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        sleep=sleep,
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
