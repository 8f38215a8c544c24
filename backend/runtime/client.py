"""
Container runtime capability set consumed by the update core.

The core only talks to the runtime through this interface. Implementations
are constructed once at startup and handed to every cycle.

Error contract:
- operations raise RuntimeCallError (or a subclass) on runtime failures
- stop/remove treat "not running" and "not found" as success
- execute_command raises LifecycleCommandError for non-zero exit codes other than 75
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional, Tuple

if TYPE_CHECKING:
    from updates.container import Container
    from updates.types import ContainerFilter, UpdateParams

# Exit code a pre-update hook uses to ask for the workload to be skipped (EX_TEMPFAIL)
SKIP_UPDATE_EXIT_CODE = 75


class RuntimeClient(ABC):
    """Abstract container runtime client."""

    @abstractmethod
    async def list_containers(self, container_filter: Optional["ContainerFilter"] = None) -> List["Container"]:
        """List containers, optionally narrowed by a filter, in runtime order."""

    @abstractmethod
    async def get_container(self, container_id: str) -> "Container":
        """Inspect a single container (raises ContainerNotFoundError)."""

    @abstractmethod
    async def is_container_stale(self, container: "Container", params: "UpdateParams") -> Tuple[bool, str]:
        """
        Pull (unless disabled) and compare images.

        Returns:
            (stale, newest_image_id)
        """

    @abstractmethod
    async def stop_container(self, container: "Container", timeout: float):
        """Send the stop signal and wait up to timeout seconds for the container to exit."""

    @abstractmethod
    async def remove_container(self, container: "Container"):
        """Remove a stopped container."""

    async def stop_and_remove_container(self, container: "Container", timeout: float):
        """Stop then remove a container."""
        await self.stop_container(container, timeout)
        await self.remove_container(container)

    @abstractmethod
    async def create_container(self, container: "Container") -> str:
        """Create (without starting) a replacement from the container's config and newest image."""

    @abstractmethod
    async def start_container(self, container: "Container") -> str:
        """Create and start a replacement; returns the new container ID."""

    @abstractmethod
    async def rename_container(self, container: "Container", new_name: str):
        """Rename a container."""

    def is_container_running(self, container: "Container") -> bool:
        return container.is_running

    @abstractmethod
    async def wait_for_container_healthy(self, container_id: str, timeout: float):
        """
        Wait for a container to be running and, if it has a HEALTHCHECK, healthy.

        Raises:
            HealthCheckError: If the container is unhealthy, exits, or times out
        """

    @abstractmethod
    async def execute_command(
        self,
        container: "Container",
        command: str,
        timeout: float,
        uid: int = 0,
        gid: int = 0
    ) -> bool:
        """
        Run a shell command inside the container.

        Returns:
            True when the command exited with SKIP_UPDATE_EXIT_CODE
        """

    @abstractmethod
    async def remove_image_by_id(self, image_id: str, image_name: str = ""):
        """Remove an image; a missing image is not an error."""

    @abstractmethod
    def warn_on_head_pull_failed(self, container: "Container") -> bool:
        """Whether a failed registry HEAD request for this container deserves a warning."""
