"""
Container filter chain.

Each primitive takes a base filter and returns a new filter that applies its
own check before delegating to the base. build_filter() composes the
primitives from configuration and returns a human readable description of
the result.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from updates.container import Container
from updates.types import ContainerFilter, accept_all
from utils.names import normalize_container_name

logger = logging.getLogger(__name__)

NO_SCOPE = "none"


def _matches_name(entry: str, container: Container) -> bool:
    """
    Exact match on the raw or normalized name, else a regex that spans
    (almost) the whole name.
    """
    name = container.name
    if entry == name or normalize_container_name(entry) == name:
        return True

    try:
        pattern = re.compile(entry)
    except re.error as e:
        logger.warning(f"Invalid container name pattern '{entry}': {e}")
        return False

    match = pattern.search(name)
    if match is None:
        return False
    return match.start() <= 1 and match.end() >= len(name) - 1


def filter_by_names(names: Sequence[str], base_filter: ContainerFilter) -> ContainerFilter:
    """Accept containers whose name matches one of the entries."""
    if not names:
        return base_filter

    names = list(names)

    def _filter(container: Container) -> bool:
        for entry in names:
            if _matches_name(entry, container):
                return base_filter(container)
        return False

    return _filter


def filter_by_disable_names(disable_names: Sequence[str], base_filter: ContainerFilter) -> ContainerFilter:
    """Reject containers whose name matches one of the entries."""
    if not disable_names:
        return base_filter

    disable_names = list(disable_names)

    def _filter(container: Container) -> bool:
        for entry in disable_names:
            if _matches_name(entry, container):
                logger.debug(f"Container {container.name} excluded by name '{entry}'")
                return False
        return base_filter(container)

    return _filter


def filter_by_enable_label(base_filter: ContainerFilter) -> ContainerFilter:
    """Accept only containers carrying the enable label, whatever its value."""
    def _filter(container: Container) -> bool:
        if not container.has_enable_label:
            return False
        return base_filter(container)

    return _filter


def filter_by_disabled_label(base_filter: ContainerFilter) -> ContainerFilter:
    """Reject containers whose enable label parses to false."""
    def _filter(container: Container) -> bool:
        if container.enabled() is False:
            return False
        return base_filter(container)

    return _filter


def filter_by_scope(scope: str, base_filter: ContainerFilter) -> ContainerFilter:
    """
    Accept containers in the given scope.

    A container without a scope label (or with an empty one) is in scope
    "none". An empty scope argument disables the filter.
    """
    if not scope:
        return base_filter

    def _filter(container: Container) -> bool:
        container_scope = container.scope() or NO_SCOPE
        if container_scope == scope:
            return base_filter(container)
        return False

    return _filter


def _split_image_reference(reference: str) -> Tuple[str, Optional[str]]:
    """Split "registry:5000/app:1.2" into ("registry:5000/app", "1.2")."""
    reference = reference.split("@", 1)[0]
    slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > slash:
        return reference[:colon], reference[colon + 1:]
    return reference, None


def filter_by_image(images: Optional[Sequence[str]], base_filter: ContainerFilter) -> ContainerFilter:
    """
    Accept containers running one of the given images.

    An entry with a tag requires the same tag; an entry without a tag
    matches every tag of that image name.
    """
    if not images:
        return base_filter

    targets = [_split_image_reference(image.strip()) for image in images if image.strip()]

    def _filter(container: Container) -> bool:
        name, tag = _split_image_reference(container.image_name)
        for target_name, target_tag in targets:
            if target_name != name:
                continue
            if target_tag is None or target_tag == tag:
                return base_filter(container)
        return False

    return _filter


def build_filter(
    names: Sequence[str],
    disable_names: Sequence[str],
    enable_label: bool,
    scope: str,
) -> Tuple[ContainerFilter, str]:
    """
    Compose the filter chain from configuration.

    Order: names, disable names, enable label (optional), scope (optional),
    and the disabled-label check outermost.

    Returns:
        (filter, description)

    Examples:
        >>> _, description = build_filter(["web"], [], False, "")
        >>> description
        'Only checking containers which name matches "web"'
    """
    clauses: List[str] = []

    container_filter = accept_all
    container_filter = filter_by_names(names, container_filter)
    container_filter = filter_by_disable_names(disable_names, container_filter)

    if names:
        clauses.append('which name matches "' + '" or "'.join(names) + '", ')
    if disable_names:
        clauses.append('not named one of "' + '" or "'.join(disable_names) + '", ')

    if enable_label:
        container_filter = filter_by_enable_label(container_filter)
        clauses.append("using enable label, ")

    if scope:
        container_filter = filter_by_scope(scope, container_filter)
        if scope == NO_SCOPE:
            clauses.append("without a scope, ")
        else:
            clauses.append(f'in scope "{scope}", ')

    container_filter = filter_by_disabled_label(container_filter)

    if clauses:
        description = ("Only checking containers " + "".join(clauses))[:-2]
    else:
        description = "Checking all containers (except explicitly disabled with label)"

    logger.debug(f"Built container filter: {description}")
    return container_filter, description
