"""
Async wrapper for the blocking docker SDK.

Every docker SDK call made from async code goes through async_docker_call so
the event loop is never blocked by HTTP round-trips to the daemon.
"""

import asyncio
from typing import Any, Callable


async def async_docker_call(func: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Run a synchronous docker SDK call in a worker thread.

    Examples:
        >>> container = await async_docker_call(client.containers.get, "abc123def456")
    """
    return await asyncio.to_thread(func, *args, **kwargs)
