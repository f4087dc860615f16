"""
Retry with exponential backoff.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from multipost.core.config import RetryPolicy

logger = logging.getLogger("multipost")


async def retry(
    operation: Callable[[], Awaitable[Any]],
    policy: Optional[RetryPolicy] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
) -> Any:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Errors outside ``retry_on`` propagate immediately; after the final
    attempt the last error is re-raised.
    """
    policy = policy or RetryPolicy()
    delays = policy.delays()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            delay = next(delays, None)
            if delay is None:
                logger.error(
                    f"{operation_name} failed after {attempt} attempts: {e}",
                    extra={"error_type": type(e).__name__}
                )
                raise
            logger.warning(
                f"{operation_name} failed (attempt {attempt}/{policy.max_attempts}): {e}. "
                f"Retrying in {delay:.2f}s...",
                extra={"error_type": type(e).__name__}
            )
            await asyncio.sleep(delay)
