"""
Update Executor

Drives stale workloads through the replacement workflow:
1. Run the pre-update hook (exit code 75 skips the workload)
2. Stop the old container (retried up to stop_retries times)
3. Remove the old container
4. Create and start the replacement from the same configuration
5. Wait for the replacement to become healthy
6. Run the post-update hook
7. Queue the previous image for cleanup

Non-rolling mode stops every workload (dependents first) before starting
any replacement (dependencies first). Rolling mode runs the whole workflow
for one workload before moving to the next.

The running updater is never stopped: it is renamed out of the way and its
replacement is started under the original name. The new instance removes
the old one when it starts (see updates.cleanup).
"""

import logging
import time
from typing import Awaitable, Callable, List, Set

from runtime.client import RuntimeClient
from updates.container import Container
from updates.errors import ContextCanceledError, SkipUpdate, UpdateError, is_context_error
from updates.lifecycle import execute_post_update_command, execute_pre_update_command
from updates.progress import Progress
from updates.state_machine import Workload, WorkloadStateMachine
from updates.types import CancelToken, UpdateParams, UpdateStage

logger = logging.getLogger(__name__)

# Stages in which a workload's container has not been touched yet
_INTERRUPTIBLE_STAGES = {UpdateStage.SCANNED, UpdateStage.STALE}


class UpdateExecutor:
    """
    Applies updates to sorted, probed containers for one cycle.

    Per-workload failures are recorded in Progress and never abort the cycle.
    Cancellation fails the workload in flight (and any workload left without
    a running container) and is re-raised as ContextCanceledError.
    """

    STOP_RETRY_DELAY = 1.0  # seconds between stop attempts

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
        self.state_machine = WorkloadStateMachine()
        self.cleanup_image_ids: Set[str] = set()

    async def execute(self, containers: List[Container], stale_ids: Set[str]) -> Set[str]:
        """
        Update the stale containers (and restart containers linked to them).

        Args:
            containers: Containers in dependency order, updater instances last
            stale_ids: IDs of containers marked for update

        Returns:
            Previous image IDs of successfully updated workloads

        Raises:
            ContextCanceledError: If the cycle was canceled
        """
        workloads = self.build_workloads(containers, stale_ids)
        if not workloads:
            self.log.debug("No containers to update")
            return self.cleanup_image_ids

        self.log.info(
            f"Updating {sum(1 for w in workloads if w.stale)} containers, "
            f"restarting {sum(1 for w in workloads if not w.stale)} linked containers"
        )

        try:
            if self.params.rolling_restart:
                await self._run_rolling(workloads)
            else:
                await self._run_grouped(workloads)
        except ContextCanceledError as e:
            self._fail_interrupted(workloads, e)
            raise

        return self.cleanup_image_ids

    def build_workloads(self, containers: List[Container], stale_ids: Set[str]) -> List[Workload]:
        """
        Select workloads in dependency order.

        A container that is not stale but links to a container being
        restarted is restarted too, so its links point at the replacement.
        """
        workloads: List[Workload] = []
        restarting: Set[str] = set()

        for container in containers:
            if container.id in stale_ids:
                workloads.append(Workload(container, stage=UpdateStage.STALE, stale=True))
                restarting.update({container.identifier, container.name})
                continue

            if (
                self.params.no_restart
                or container.is_watchtower
                or container.is_monitor_only(self.params)
                or container.id not in self.progress
                or self.progress.is_terminal(container.id)
            ):
                continue

            linked = next((link for link in container.links if link in restarting), None)
            if linked:
                self.log.debug(f"Marked {container.name} for restart, linked to restarting {linked}")
                workloads.append(Workload(container))
                restarting.update({container.identifier, container.name})

        return workloads

    # ==================== Ordering ====================

    async def _run_grouped(self, workloads: List[Workload]):
        for workload in reversed(workloads):
            if workload.container.is_watchtower:
                continue
            await self._drive(workload, self._stop_workload)

        for workload in workloads:
            if workload.container.is_watchtower and workload.stage == UpdateStage.STALE:
                await self._drive(workload, self._replace_self)
            elif workload.stage == UpdateStage.REMOVED:
                await self._drive(workload, self._start_workload)

    async def _run_rolling(self, workloads: List[Workload]):
        for workload in workloads:
            if workload.container.is_watchtower:
                await self._drive(workload, self._replace_self)
                continue
            if await self._drive(workload, self._stop_workload):
                await self._drive(workload, self._start_workload)

    async def _drive(self, workload: Workload, step: Callable[[Workload], Awaitable[None]]) -> bool:
        """
        Run one step for a workload.

        Returns:
            True if the step completed, False if the workload was skipped or failed
        """
        self.cancel.raise_if_cancelled()
        try:
            await step(workload)
            return True
        except SkipUpdate as e:
            self._skip(workload, e)
        except Exception as e:
            if is_context_error(e):
                error = e if isinstance(e, ContextCanceledError) else ContextCanceledError()
                self._fail(workload, error)
                if error is e:
                    raise
                raise error from e
            self.log.error(f"Failed to update {workload.name}: {e}")
            self._fail(workload, e)
        return False

    # ==================== Steps ====================

    async def _stop_workload(self, workload: Workload):
        container = workload.container

        if self.params.lifecycle_hooks:
            skip = await execute_pre_update_command(self.client, container, self.params, self.cancel)
            if skip:
                raise SkipUpdate()

        self.state_machine.transition(workload, UpdateStage.STOPPING)
        timeout = container.stop_timeout(self.params.timeout, self.params.label_precedence)
        self.log.info(f"Stopping {container.name} ({container.short_id}) with {timeout}s timeout")
        await self._stop_with_retries(container, timeout)
        self.state_machine.transition(workload, UpdateStage.STOPPED)

        await self.cancel.guard(self.client.remove_container(container))
        self.state_machine.transition(workload, UpdateStage.REMOVED)

    async def _stop_with_retries(self, container: Container, timeout: float):
        attempts = max(self.params.stop_retries, 0) + 1
        for attempt in range(1, attempts + 1):
            try:
                await self.cancel.guard(self.client.stop_container(container, timeout))
                return
            except Exception as e:
                if is_context_error(e) or attempt == attempts:
                    raise
                self.log.warning(
                    f"Stopping {container.name} failed (attempt {attempt}/{attempts}), retrying: {e}"
                )
                if self.STOP_RETRY_DELAY:
                    await self.cancel.sleep(self.STOP_RETRY_DELAY)

    async def _start_workload(self, workload: Workload):
        container = workload.container

        if self.params.no_restart:
            workload.new_container_id = await self.cancel.guard(self.client.create_container(container))
            self.state_machine.transition(workload, UpdateStage.CREATED)
            self.log.info(f"Created {container.name} ({workload.new_container_id[:12]}), not starting (no-restart)")
            self._complete(workload)
            return

        self.log.info(f"Starting replacement for {container.name}")
        workload.new_container_id = await self.cancel.guard(self.client.start_container(container))
        self.state_machine.transition(workload, UpdateStage.CREATED)
        self.state_machine.transition(workload, UpdateStage.STARTED)
        await self._finish_started(workload)

    async def _replace_self(self, workload: Workload):
        container = workload.container

        if self.params.no_restart:
            raise SkipUpdate("updater instance cannot replace itself without a restart")

        new_name = f"{container.name}-old-{int(time.time())}"
        self.log.info(f"Renaming running updater {container.name} to {new_name} before replacing it")
        await self.cancel.guard(self.client.rename_container(container, new_name))
        workload.renamed = True
        self.state_machine.transition(workload, UpdateStage.RENAMED)

        try:
            workload.new_container_id = await self.cancel.guard(self.client.start_container(container))
        except Exception:
            try:
                await self.client.rename_container(container, container.name)
            except UpdateError as rename_error:
                self.log.error(f"Failed to restore name of updater {container.name}: {rename_error}")
            raise

        self.state_machine.transition(workload, UpdateStage.CREATED)
        self.state_machine.transition(workload, UpdateStage.STARTED)
        await self._finish_started(workload)

    async def _finish_started(self, workload: Workload):
        await self.cancel.guard(
            self.client.wait_for_container_healthy(workload.new_container_id, self.params.health_timeout)
        )
        if self.params.lifecycle_hooks:
            await execute_post_update_command(self.client, workload.new_container_id, self.params, self.cancel)
        self.state_machine.transition(workload, UpdateStage.POST_HOOK_RAN)
        self._complete(workload)

    # ==================== Bookkeeping ====================

    def _complete(self, workload: Workload):
        self.state_machine.transition(workload, UpdateStage.UPDATED)
        container = workload.container

        if not workload.stale:
            self.log.info(f"Restarted linked container {container.name}")
            return

        self.progress.mark_updated(container.id)
        if not workload.renamed and container.image_id:
            self.cleanup_image_ids.add(container.image_id)
        self.log.info(f"Updated {container.name} ({container.image_name})")

    def _fail(self, workload: Workload, error: BaseException):
        if workload.is_terminal:
            return
        self.state_machine.fail(workload, error)
        self.progress.update_failed({workload.container_id: error})

    def _skip(self, workload: Workload, error: BaseException):
        self.log.info(f"Skipping update of {workload.name}: {error}")
        self.state_machine.transition(workload, UpdateStage.SKIPPED, error)
        self.progress.add_skipped(workload.container, error, self.params)

    def _fail_interrupted(self, workloads: List[Workload], error: ContextCanceledError):
        """Fail workloads whose container was already taken down when the cycle was canceled."""
        for workload in workloads:
            if workload.is_terminal or workload.stage in _INTERRUPTIBLE_STAGES:
                continue
            self.log.warning(f"Update of {workload.name} interrupted at {workload.stage.value}")
            self._fail(workload, error)
