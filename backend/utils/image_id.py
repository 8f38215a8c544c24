"""
Image ID and image reference helpers.

Docker image IDs come in multiple formats:
- Full SHA256: "sha256:abc123def456..." (71 chars)
- Short ID: "abc123def456" (12 chars)

Image references may carry a registry host ("ghcr.io/org/app:1.0") or rely
on the Docker Hub default ("nginx:latest").
"""

DEFAULT_REGISTRY_HOST = "docker.io"

_DOCKER_HUB_HOSTS = {"docker.io", "index.docker.io", "registry-1.docker.io"}


def normalize_image_id(image_id: str) -> str:
    """
    Normalize image ID to 12-char short format without sha256: prefix.

    Examples:
        >>> normalize_image_id("sha256:abc123def456789")
        'abc123def456'
        >>> normalize_image_id("abc123def456")
        'abc123def456'
    """
    return (image_id or "").replace('sha256:', '')[:12]


def registry_host(image_name: str) -> str:
    """
    Registry host an image reference is pulled from.

    The first path segment is a host when it contains a dot or a port, or is
    "localhost"; otherwise the image lives on Docker Hub.

    Examples:
        >>> registry_host("nginx:latest")
        'docker.io'
        >>> registry_host("ghcr.io/org/app:1.0")
        'ghcr.io'
        >>> registry_host("localhost:5000/app")
        'localhost:5000'
    """
    if "/" not in image_name:
        return DEFAULT_REGISTRY_HOST
    first = image_name.split("/", 1)[0]
    if "." in first or ":" in first or first == "localhost":
        return DEFAULT_REGISTRY_HOST if first in _DOCKER_HUB_HOSTS else first
    return DEFAULT_REGISTRY_HOST
