from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ...core.errors import TransientBackendError

logger = logging.getLogger(__name__)

R = TypeVar("R")


async def retry_transient(
    operation: Callable[[], Awaitable[R]],
    *,
    name: str,
    max_attempts: int = 3,
    backoff_seconds: float = 0.5,
) -> R:
    """Run ``operation`` with exponential backoff on transient failures.

    Only for idempotent reads. Non-transient errors propagate immediately; the
    last transient error is re-raised once attempts are exhausted.
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except TransientBackendError as e:
            if attempt >= attempts - 1:
                logger.error("RETRY_EXHAUSTED op=%s attempts=%s err=%s", name, attempts, e)
                raise
            wait_time = backoff_seconds * (2 ** attempt)
            logger.warning("RETRY op=%s attempt=%s/%s wait=%.2fs err=%s", name, attempt + 1, attempts, wait_time, e)
            await asyncio.sleep(wait_time)
    raise RuntimeError("retry loop exited without result")  # pragma: no cover
