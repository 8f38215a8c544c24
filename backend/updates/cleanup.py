"""
Image cleanup and updater-instance housekeeping.

Both run outside the update engine: the engine only collects image IDs,
and the caller removes them once the cycle is over.
"""

import logging
from typing import Iterable, List, Optional, Set

from runtime.client import RuntimeClient
from updates.container import Container
from updates.errors import UpdateError, is_context_error
from updates.filters import filter_by_scope
from updates.time_sorter import sort_by_created
from updates.types import CancelToken
from utils.image_id import normalize_image_id

logger = logging.getLogger(__name__)


async def cleanup_images(
    client: RuntimeClient,
    image_ids: Iterable[str],
    cancel: Optional[CancelToken] = None
) -> List[str]:
    """
    Remove images left behind by replaced containers.

    Empty IDs are skipped; a failure to remove one image is logged and does
    not stop the others.

    Returns:
        IDs that were removed
    """
    cancel = cancel or CancelToken()
    removed: List[str] = []

    for image_id in sorted(set(image_ids)):
        if not image_id:
            continue
        try:
            await cancel.guard(client.remove_image_by_id(image_id))
            removed.append(image_id)
            logger.info(f"Removed image {normalize_image_id(image_id)}")
        except UpdateError as e:
            if is_context_error(e):
                raise
            logger.error(f"Failed to remove image {normalize_image_id(image_id)}: {e}")

    return removed


def _updater_filter(scope: str):
    def _is_updater(container: Container) -> bool:
        return container.is_watchtower

    if scope:
        return filter_by_scope(scope, _is_updater)

    def _is_unscoped_updater(container: Container) -> bool:
        return container.is_watchtower and not container.scope()

    return _is_unscoped_updater


async def check_for_multiple_instances(
    client: RuntimeClient,
    cleanup: bool,
    scope: str = "",
    stop_timeout: float = 600.0,
    cancel: Optional[CancelToken] = None
) -> Set[str]:
    """
    Keep only the newest updater instance running.

    Lists updater containers in the same scope, sorts them by creation time
    and stops and removes all but the newest. With cleanup enabled, the
    images of removed instances are removed too when they differ from the
    newest instance's image.

    Returns:
        IDs of the removed instances

    Raises:
        UpdateError: If listing fails or an instance could not be removed
    """
    cancel = cancel or CancelToken()
    containers = await cancel.guard(client.list_containers(_updater_filter(scope)))

    if len(containers) <= 1:
        logger.debug("No additional updater instances found")
        return set()

    logger.info(f"Found {len(containers)} updater instances, keeping only the newest")
    sort_by_created(containers)
    newest = containers[-1]

    removed: Set[str] = set()
    stale_images: Set[str] = set()
    failures: List[str] = []

    for container in containers[:-1]:
        try:
            await cancel.guard(client.stop_and_remove_container(container, stop_timeout))
        except UpdateError as e:
            if is_context_error(e):
                raise
            logger.error(f"Failed to stop updater instance {container.name}: {e}")
            failures.append(container.name)
            continue

        removed.add(container.id)
        if container.image_id and container.image_id != newest.image_id:
            stale_images.add(container.image_id)

    if cleanup and stale_images:
        await cleanup_images(client, stale_images, cancel)

    if failures:
        raise UpdateError(f"failed to stop updater instances: {', '.join(failures)}")

    return removed
