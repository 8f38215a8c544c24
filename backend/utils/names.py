"""
Container name and identifier helpers.

Every identifier that ends up as a key in a dependency graph or a filter
comparison goes through these functions.
"""

from typing import Mapping, Optional

COMPOSE_SERVICE_LABEL = "com.docker.compose.service"
COMPOSE_PROJECT_LABEL = "com.docker.compose.project"


def normalize_container_name(name: Optional[str]) -> str:
    """
    Strip a single leading slash from a container name.

    Docker reports names as "/web"; links and labels use "web".

    Examples:
        >>> normalize_container_name("/web")
        'web'
        >>> normalize_container_name("web")
        'web'
        >>> normalize_container_name("")
        ''
    """
    if not name:
        return ""
    if name.startswith("/"):
        return name[1:]
    return name


def resolve_container_identifier(
    labels: Optional[Mapping[str, str]],
    name: Optional[str],
    container_id: Optional[str],
) -> str:
    """
    Resolve the identifier used as a dependency-graph node key.

    Resolution order:
    1. "<project>-<service>" when both compose labels are non-empty
    2. "<service>" when only the service label is set
    3. the normalized container name
    4. the container ID

    Raises:
        MalformedIdentifierError: If nothing usable is present
    """
    labels = labels or {}
    service = labels.get(COMPOSE_SERVICE_LABEL, "")
    project = labels.get(COMPOSE_PROJECT_LABEL, "")

    if service and project:
        return f"{project}-{service}"
    if service:
        return service

    normalized = normalize_container_name(name)
    if normalized:
        return normalized
    if container_id:
        return container_id

    from updates.errors import MalformedIdentifierError
    raise MalformedIdentifierError("container has no labels, no name and no ID")
