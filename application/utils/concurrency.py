"""Retry helpers for optimistic-concurrency conflicts."""
from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from core.logging_config import get_logger
from domain.common.exceptions import ConcurrentUpdateException


logger = get_logger(__name__)

T = TypeVar("T")


async def retry_on_conflict(fn: Callable[[], Awaitable[T]], *, attempts: int = 3, op: str = "apply") -> T:
    """
    Run `fn` (one complete unit of work: load, mutate, conditional write)
    and re-run it from scratch when the write loses a version race.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_random(min=0.0, max=0.05),
        retry=retry_if_exception_type(ConcurrentUpdateException),
        before_sleep=lambda state: logger.info(
            "concurrent_update_retry", op=op, attempt=state.attempt_number
        ),
        reraise=True,
    ):
        with attempt:
            return await fn()
