"""
Staleness probe for an update cycle.

Asks the runtime client, container by container, whether a newer image is
available and records the outcome in Progress. Probe failures skip the
workload; cancellation ends the probe for the whole cycle.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Set

from runtime.client import RuntimeClient
from updates.container import Container
from updates.errors import StalenessProbeError, is_context_error
from updates.progress import Progress
from updates.types import CancelToken, UpdateParams

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Outcome of probing all filtered containers."""
    stale_ids: Set[str] = field(default_factory=set)
    failed_count: int = 0
    self_probe_failed: bool = False


class UpdateChecker:
    """
    Runs the staleness probe over a list of containers.

    Workflow per container:
    1. Check cancellation
    2. Short-circuit pinned images and (optionally) the updater itself
    3. Ask the runtime client for (stale, newest_image_id)
    4. Verify the container can be recreated before marking it for update
    """

    def __init__(
        self,
        client: RuntimeClient,
        params: UpdateParams,
        progress: Progress,
        cancel: CancelToken
    ):
        self.client = client
        self.params = params
        self.progress = progress
        self.cancel = cancel
        self.log = params.logger or logger

    async def check_containers(self, containers: List[Container]) -> ProbeResult:
        """
        Probe every container.

        Raises:
            ContextCanceledError: If the cycle is canceled while probing
        """
        result = ProbeResult()

        for container in containers:
            self.cancel.raise_if_cancelled()
            await self._check_container(container, result)

        self.log.debug(
            f"Staleness check completed: {len(containers)} total, "
            f"{len(result.stale_ids)} to update, {result.failed_count} failed"
        )
        return result

    async def _check_container(self, container: Container, result: ProbeResult):
        if self.params.no_self_update and container.is_watchtower:
            self.log.debug(f"Skipping updater container {container.name}: self-update disabled")
            self.progress.add_scanned(container, container.safe_image_id, self.params)
            return

        if container.is_pinned:
            self.log.debug(f"Container {container.name} uses a pinned image, not checking for updates")
            self.progress.add_scanned(container, container.safe_image_id, self.params)
            return

        try:
            stale, newest_image_id = await self.cancel.guard(
                self.client.is_container_stale(container, self.params)
            )
            should_update = (
                stale
                and not container.is_monitor_only(self.params)
                and not container.is_no_pull(self.params)
            )
            if should_update:
                container.verify_configuration()
        except Exception as e:
            if is_context_error(e):
                raise
            self._record_failure(container, e, result)
            return

        self.log.debug(
            f"Checked {container.name}: stale={stale}, newest image={newest_image_id[:19] if newest_image_id else '-'}"
        )
        self.progress.add_scanned(container, newest_image_id, self.params)
        if should_update:
            self.progress.mark_for_update(container.id)
            result.stale_ids.add(container.id)

    def _record_failure(self, container: Container, error: Exception, result: ProbeResult):
        if not isinstance(error, StalenessProbeError):
            wrapped = StalenessProbeError(container.name, str(error))
            wrapped.__cause__ = error
            error = wrapped

        self.log.warning(f"Cannot update {container.name}, skipping: {error}")
        self.progress.add_skipped(container, error, self.params)
        result.failed_count += 1
        if container.is_watchtower:
            result.self_probe_failed = True
