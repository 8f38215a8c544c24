"""
Lifecycle hook execution.

Hook commands come from container labels and run inside the container via
the runtime client's exec operation:

- pre-check / post-check: around the whole cycle, failures are only logged
- pre-update: before a workload is stopped; exit code 75 skips the workload
- post-update: after the replacement is started and healthy
"""

import logging

from runtime.client import RuntimeClient
from updates.container import DEFAULT_HOOK_TIMEOUT, Container
from updates.errors import is_context_error
from updates.types import CancelToken, UpdateParams

logger = logging.getLogger(__name__)


async def execute_pre_checks(client: RuntimeClient, params: UpdateParams, cancel: CancelToken):
    """Run the pre-check command of every container matching the cycle filter."""
    await _execute_checks(client, params, cancel, "pre-check")


async def execute_post_checks(client: RuntimeClient, params: UpdateParams, cancel: CancelToken):
    """Run the post-check command of every container matching the cycle filter."""
    await _execute_checks(client, params, cancel, "post-check")


async def _execute_checks(client: RuntimeClient, params: UpdateParams, cancel: CancelToken, hook: str):
    try:
        containers = await cancel.guard(client.list_containers(params.filter))
    except Exception as e:
        if is_context_error(e):
            raise
        logger.warning(f"Skipping {hook} hooks, listing containers failed: {e}")
        return

    for container in containers:
        command = container.pre_check_command if hook == "pre-check" else container.post_check_command
        if not command:
            continue
        try:
            await cancel.guard(client.execute_command(
                container, command, DEFAULT_HOOK_TIMEOUT, params.lifecycle_uid, params.lifecycle_gid
            ))
        except Exception as e:
            if is_context_error(e):
                raise
            logger.error(f"{hook} command failed for {container.name}: {e}")


async def execute_pre_update_command(
    client: RuntimeClient,
    container: Container,
    params: UpdateParams,
    cancel: CancelToken
) -> bool:
    """
    Run the pre-update command of a container.

    The command only runs when the container is running and not restarting.

    Returns:
        True if the command asked to skip the update (exit code 75)

    Raises:
        LifecycleCommandError: If the command exits with another non-zero code
    """
    command = container.pre_update_command
    if not command:
        logger.debug(f"No pre-update command for {container.name}")
        return False

    if not container.is_running or container.is_restarting:
        logger.debug(f"Container {container.name} is not running, skipping pre-update command")
        return False

    logger.info(f"Executing pre-update command for {container.name}")
    return await cancel.guard(client.execute_command(
        container,
        command,
        container.pre_update_timeout,
        params.lifecycle_uid,
        params.lifecycle_gid,
    ))


async def execute_post_update_command(
    client: RuntimeClient,
    new_container_id: str,
    params: UpdateParams,
    cancel: CancelToken
) -> Container:
    """
    Run the post-update command of a freshly started container.

    The command is read from the new container, so labels introduced by the
    new image take effect.

    Raises:
        LifecycleCommandError: If the command exits with a non-zero code
    """
    container = await cancel.guard(client.get_container(new_container_id))
    command = container.post_update_command
    if not command:
        logger.debug(f"No post-update command for {container.name}")
        return container

    logger.info(f"Executing post-update command for {container.name}")
    await cancel.guard(client.execute_command(
        container,
        command,
        container.post_update_timeout,
        params.lifecycle_uid,
        params.lifecycle_gid,
    ))
    return container
