"""
Update session: one complete update cycle.

The cycle runs in this order:
1. Pre-check hooks (optional)
2. List containers matching the filter
3. Staleness probe
4. Dependency sort (cycles and identifier collisions abort the cycle)
5. Stop, recreate and restart stale workloads
6. Post-check hooks (optional)

update() never raises; every outcome is returned as an UpdateSessionResult
carrying a report, an error, or both. Unexpected exceptions are wrapped in
RuntimeCallError.
"""

import logging
from typing import List, Optional

from runtime.client import RuntimeClient
from updates.container import Container
from updates.dependency_analyzer import DependencyGraph, sort_by_dependencies
from updates.errors import (
    CircularReferenceError,
    ContextCanceledError,
    IdentifierCollisionError,
    RollingRestartDependencyError,
    RuntimeCallError,
    UpdateError,
    is_context_error,
)
from updates.lifecycle import execute_post_checks, execute_pre_checks
from updates.progress import Progress
from updates.types import CancelToken, UpdateParams, UpdateSessionResult
from updates.update_checker import UpdateChecker
from updates.update_executor import UpdateExecutor

logger = logging.getLogger(__name__)


def check_for_sanity(containers: List[Container], rolling_restart: bool = False):
    """
    Pre-flight validation of a container list.

    Resolves identifiers and builds the dependency graph so that cycles and
    identifier collisions are reported before any container is touched.

    Raises:
        CircularReferenceError: If the dependencies contain a cycle
        IdentifierCollisionError: If two containers resolve to the same identifier
        RollingRestartDependencyError: If rolling restarts are requested and a
            container depends on another container in the list
    """
    regular = [c for c in containers if not c.is_watchtower]
    graph = DependencyGraph(regular)
    graph.topological_order()

    if rolling_restart:
        for ident, container in graph.container_by_ident.items():
            if graph.indegree[ident] > 0:
                raise RollingRestartDependencyError(container.name)


def _runtime_error(operation: str, error: Exception) -> UpdateError:
    if isinstance(error, UpdateError):
        return error
    wrapped = RuntimeCallError(operation, str(error))
    wrapped.__cause__ = error
    return wrapped


def _cancel_error(error: BaseException) -> ContextCanceledError:
    if isinstance(error, ContextCanceledError):
        return error
    canceled = ContextCanceledError()
    canceled.__cause__ = error
    return canceled


async def update(
    client: RuntimeClient,
    params: UpdateParams,
    cancel: Optional[CancelToken] = None
) -> UpdateSessionResult:
    """
    Run one update cycle.

    Args:
        client: Runtime client handle
        params: Cycle configuration
        cancel: Cancel token for the cycle (a fresh, never-firing token if omitted)

    Returns:
        UpdateSessionResult with the report, the image IDs eligible for
        cleanup, and the cycle-fatal error if there was one
    """
    cancel = cancel or CancelToken()
    log = params.logger or logger
    progress = Progress()

    if cancel.cancelled:
        log.info("Update canceled before listing containers")
        return UpdateSessionResult.failure_result(cancel.error())

    log.debug("Checking containers for updated images")

    try:
        if params.lifecycle_hooks:
            await execute_pre_checks(client, params, cancel)
        containers = await cancel.guard(client.list_containers(params.filter))
    except Exception as e:
        if is_context_error(e):
            return UpdateSessionResult.failure_result(_cancel_error(e))
        error = _runtime_error("list containers", e)
        log.error(f"Listing containers failed: {error}")
        return UpdateSessionResult.failure_result(error)

    checker = UpdateChecker(client, params, progress, cancel)
    try:
        probe = await checker.check_containers(containers)
    except Exception as e:
        report = progress.report() if len(progress) else None
        if is_context_error(e):
            return UpdateSessionResult.failure_result(_cancel_error(e), report)
        error = _runtime_error("check containers", e)
        log.error(f"Staleness check failed: {error}", exc_info=True)
        return UpdateSessionResult.failure_result(error, report)

    try:
        sort_by_dependencies(containers)
    except (CircularReferenceError, IdentifierCollisionError) as e:
        log.error(f"Cannot order containers, no container will be updated: {e}")
        return UpdateSessionResult.failure_result(e)

    executor = UpdateExecutor(client, params, progress, cancel)
    try:
        await executor.execute(containers, probe.stale_ids)
        if params.lifecycle_hooks:
            await execute_post_checks(client, params, cancel)
        if probe.self_probe_failed and params.pull_failure_delay > 0:
            log.info(
                f"Staleness check of the updater failed, waiting {params.pull_failure_delay:.0f}s "
                f"before the next cycle"
            )
            await cancel.sleep(params.pull_failure_delay)
    except Exception as e:
        if is_context_error(e):
            log.warning(f"Update cycle interrupted: {e}")
            return UpdateSessionResult.failure_result(
                _cancel_error(e), progress.report(), executor.cleanup_image_ids
            )
        error = _runtime_error("update containers", e)
        log.error(f"Update cycle failed: {error}", exc_info=True)
        return UpdateSessionResult.failure_result(error, progress.report(), executor.cleanup_image_ids)

    report = progress.report()
    log.info(
        f"Update cycle finished: {len(report.scanned)} scanned, {len(report.updated)} updated, "
        f"{len(report.failed)} failed, {len(report.skipped)} skipped"
    )
    return UpdateSessionResult.success_result(report, executor.cleanup_image_ids)
