"""
Timeouts for calls to the synthesis collaborator.

Every external synthesis call is blocking-with-timeout. A timeout becomes a
TransientExternalError so the caller can skip the operation for this run; the
next scheduled invocation is the retry.
"""

import asyncio
from functools import wraps
from typing import Awaitable, Optional, TypeVar

from skillbank.exceptions import TransientExternalError
from skillbank.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def call_with_timeout(
    coro: Awaitable[T],
    timeout: float,
    operation: Optional[str] = None,
) -> T:
    """
    Await ``coro`` for at most ``timeout`` seconds. Never retries.

    Raises:
        TransientExternalError: If the timeout elapses

    Example:
        text = await call_with_timeout(
            synthesizer.compose(PromptKind.MERGE, evidence),
            timeout=45.0,
            operation="merge",
        )
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "external_call_timeout",
            extra={"operation": operation, "timeout_seconds": timeout},
        )
        raise TransientExternalError(
            f"no response within {timeout}s", operation=operation
        )


def with_timeout(seconds: float):
    """
    Decorator form of call_with_timeout; the operation name is the function name.

    Example:
        @with_timeout(45.0)
        async def compose_merge(evidence: dict) -> str:
            return await client.complete(prompt)
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await call_with_timeout(func(*args, **kwargs), seconds, operation=func.__name__)

        return wrapper

    return decorator
