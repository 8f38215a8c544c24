"""
Error taxonomy for the update core.

Cycle-fatal errors (CircularReferenceError, IdentifierCollisionError,
ContextCanceledError before any change, RuntimeCallError from listing) end a
cycle early. The others are recorded per workload in Progress.
"""

import asyncio
from typing import List, Optional, Sequence, Tuple


class UpdateError(Exception):
    """Base class for all update-core errors."""


class MalformedIdentifierError(UpdateError):
    """Container has no labels, no name and no ID."""


class CircularReferenceError(UpdateError):
    """Dependency graph contains a cycle."""

    def __init__(self, start: str, cycle_path: Sequence[str]):
        self.start = start
        self.cycle_path: List[str] = list(cycle_path)
        super().__init__(f"circular reference detected: {' -> '.join(self.cycle_path)}")


class IdentifierCollisionError(UpdateError):
    """Two distinct containers resolve to the same identifier."""

    def __init__(self, identifier: str, containers: Sequence[Tuple[str, str]]):
        """
        Args:
            identifier: The duplicated identifier
            containers: (name, container_id) pairs sharing the identifier
        """
        self.identifier = identifier
        self.containers: List[Tuple[str, str]] = list(containers)
        affected = ", ".join(f"{name} ({cid[:12]})" for name, cid in self.containers)
        super().__init__(
            f"identifier collision detected: '{identifier}' used by containers: {affected}"
        )


class RollingRestartDependencyError(UpdateError):
    """A container with links cannot be updated with rolling restarts."""

    def __init__(self, container_name: str):
        self.container_name = container_name
        super().__init__(
            f"{container_name} depends on at least one other container, "
            f"which is not compatible with rolling restarts"
        )


class StalenessProbeError(UpdateError):
    """Staleness could not be determined for a container."""

    def __init__(self, container_name: str, message: str):
        self.container_name = container_name
        super().__init__(f"staleness check failed for {container_name}: {message}")


class ConfigurationVerificationError(StalenessProbeError):
    """Container inspect data is insufficient to recreate it."""


class LifecycleCommandError(UpdateError):
    """Lifecycle hook command exited with a failure code."""

    def __init__(self, command: str, exit_code: Optional[int] = None, output: str = "", message: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        if not message:
            message = f"command '{command}' exited with code {exit_code}"
            if output:
                message += f": {output.strip()}"
        super().__init__(message)


class SkipUpdate(UpdateError):
    """Pre-update hook asked for this workload to be skipped (exit code 75)."""

    def __init__(self, message: str = "pre-update command returned exit code 75, skipping update"):
        super().__init__(message)


class RuntimeCallError(UpdateError):
    """A container runtime operation failed. The original error is chained as __cause__."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class ContainerNotFoundError(RuntimeCallError):
    """Container does not exist (anymore)."""

    def __init__(self, operation: str, container: str):
        self.container = container
        super().__init__(operation, f"no such container: {container}")


class HealthCheckError(RuntimeCallError):
    """Container did not become healthy in time."""


class ContextCanceledError(UpdateError):
    """The cycle's cancel token fired or its deadline passed."""

    def __init__(self, message: str = "update canceled"):
        super().__init__(message)


def is_context_error(error: Optional[BaseException]) -> bool:
    """True for cancellation or deadline errors, including asyncio's own."""
    return isinstance(error, (ContextCanceledError, asyncio.CancelledError, asyncio.TimeoutError))
