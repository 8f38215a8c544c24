"""
Shared types for the update core.

Configuration (UpdateParams), per-workload stages, the cancel token that is
threaded through every runtime call, and the result returned by a cycle.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Set

from updates.errors import ContextCanceledError, UpdateError

if TYPE_CHECKING:
    from updates.container import Container
    from updates.progress import Report


# Signature: def predicate(container) -> bool
ContainerFilter = Callable[["Container"], bool]


def accept_all(container: "Container") -> bool:
    """Base filter that accepts every container."""
    return True


class CPUCopyMode(Enum):
    """How CPU limits are carried into a recreated container."""
    AUTO = "auto"
    PRESERVE = "preserve"
    IGNORE = "ignore"


class HeadFailureWarning(Enum):
    """When to warn about failed HEAD requests during pulls."""
    ALWAYS = "always"
    AUTO = "auto"
    NEVER = "never"


class WorkloadState(Enum):
    """Final (or pending) state of a workload as reported."""
    UNKNOWN = "unknown"
    SCANNED = "scanned"
    FRESH = "fresh"
    STALE = "stale"
    UPDATED = "updated"
    FAILED = "failed"
    SKIPPED = "skipped"


class UpdateStage(Enum):
    """Stages a workload passes through inside the update engine."""
    SCANNED = "scanned"
    STALE = "stale"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REMOVED = "removed"
    RENAMED = "renamed"
    CREATED = "created"
    STARTED = "started"
    POST_HOOK_RAN = "post_hook_ran"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class UpdateParams:
    """
    Configuration for a single update cycle.

    Durations are in seconds. The filter decides which listed containers
    take part in the cycle.
    """
    filter: ContainerFilter = accept_all
    filter_description: str = ""
    cleanup: bool = False
    no_restart: bool = False
    no_pull: bool = False
    monitor_only: bool = False
    no_self_update: bool = False
    lifecycle_hooks: bool = False
    lifecycle_uid: int = 0
    lifecycle_gid: int = 0
    rolling_restart: bool = False
    cpu_copy_mode: CPUCopyMode = CPUCopyMode.AUTO
    timeout: float = 10.0
    health_timeout: float = 300.0
    stop_retries: int = 0
    label_precedence: bool = False
    pull_failure_delay: float = 300.0

    # Optional logger threaded into the cycle instead of the module logger
    logger: Optional[logging.Logger] = None


class CancelToken:
    """
    Cooperative cancellation for one update cycle.

    A token is canceled explicitly via cancel() or implicitly once its
    optional deadline passes. Runtime calls are awaited through guard(),
    which abandons the call as soon as the token fires.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event: Optional[asyncio.Event] = None
        self._cancelled = False
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._reason = "update canceled"

    def cancel(self, reason: str = "update canceled"):
        self._reason = reason
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def error(self) -> ContextCanceledError:
        if not self._cancelled and self._deadline is not None:
            return ContextCanceledError("update canceled: deadline exceeded")
        return ContextCanceledError(self._reason)

    def raise_if_cancelled(self):
        if self.cancelled:
            raise self.error()

    async def guard(self, awaitable: Awaitable[Any]) -> Any:
        """
        Await a runtime call unless the token fires first.

        Raises:
            ContextCanceledError: If canceled before or during the call
        """
        if self.cancelled:
            # Close un-started coroutines so they don't warn about never being awaited
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise self.error()

        if self._event is None:
            # Created inside the running loop
            self._event = asyncio.Event()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        raise self.error()

    async def sleep(self, seconds: float):
        """Sleep that ends early (with ContextCanceledError) when canceled."""
        await self.guard(asyncio.sleep(seconds))


@dataclass
class UpdateSessionResult:
    """
    Outcome of one update cycle.

    At least one of report or error is set.
    """
    report: Optional["Report"] = None
    cleanup_image_ids: Set[str] = field(default_factory=set)
    error: Optional[UpdateError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def success_result(cls, report: "Report", cleanup_image_ids: Set[str]) -> 'UpdateSessionResult':
        """Create a successful result."""
        return cls(report=report, cleanup_image_ids=set(cleanup_image_ids))

    @classmethod
    def failure_result(
        cls,
        error: UpdateError,
        report: Optional["Report"] = None,
        cleanup_image_ids: Optional[Set[str]] = None
    ) -> 'UpdateSessionResult':
        """Create a failed result, optionally carrying a partial report."""
        return cls(report=report, cleanup_image_ids=set(cleanup_image_ids or ()), error=error)
