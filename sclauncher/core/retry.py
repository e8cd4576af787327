"""Retry wrapper for download and connect attempts."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sclauncher.core.errors import LauncherError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def try_run(
    fn: Callable[[], Awaitable[T]],
    retries: int = 0,
    retry_delay: float = 2.0,
    label: str = "attempt",
) -> T:
    """Await ``fn()``, retrying up to *retries* more times on LauncherError.

    The last error propagates unchanged.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except LauncherError as e:
            if attempt >= retries:
                raise
            attempt += 1
            logger.warning(
                "%s failed (%s), retrying in %.1fs (%d/%d)",
                label, e, retry_delay, attempt, retries,
            )
            await asyncio.sleep(retry_delay)
