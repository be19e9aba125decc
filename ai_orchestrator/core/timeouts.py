"""
AI Orchestrator - Timeout Race

Every network-facing call is raced against a deadline. asyncio.wait_for
cancels the awaited task when the deadline wins, which is as much
cancellation as the transport underneath supports.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from .errors import ProviderTimeoutError

T = TypeVar("T")


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_ms: Optional[float],
    provider_id: str,
    operation: str = "chat",
) -> T:
    """
    Await `awaitable`, raising ProviderTimeoutError if it outlives timeout_ms.

    A timeout of None or <= 0 disables the deadline.
    """
    if timeout_ms is None or timeout_ms <= 0:
        return await awaitable

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as e:
        raise ProviderTimeoutError(provider_id, timeout_ms, operation) from e
