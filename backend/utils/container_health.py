"""
Container health wait used after a replacement container is started.

A container with a Docker HEALTHCHECK must report "healthy"; a container
without one must be running and still running after a short stability delay.
"""

import asyncio
import logging
import time

import docker

from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)

# Seconds a container without HEALTHCHECK must stay up to count as stable
STABILITY_DELAY = 3.0


async def wait_for_container_health(
    client: docker.DockerClient,
    container_id: str,
    timeout: float = 300.0
) -> bool:
    """
    Wait for a container to become healthy or stable.

    1. Wait for the container to reach "running" state
    2. If it has a HEALTHCHECK, poll until "healthy" (fail fast on "unhealthy")
    3. Otherwise wait STABILITY_DELAY and verify it is still running

    Args:
        client: Docker SDK client instance
        container_id: Container ID
        timeout: Maximum time to wait in seconds

    Returns:
        True if the container is healthy or stable, False otherwise

    Examples:
        >>> is_healthy = await wait_for_container_health(client, "abc123def456", timeout=60)
    """
    start_time = time.time()
    short_id = container_id[:12]

    while time.time() - start_time < timeout:
        try:
            container = await async_docker_call(client.containers.get, container_id)
            state = container.attrs["State"]

            if not state.get("Running", False):
                # Might still be starting up
                if state.get("Status") in ("exited", "dead"):
                    logger.error(f"Container {short_id} exited with code {state.get('ExitCode')}")
                    return False
                await asyncio.sleep(1)
                continue

            health = state.get("Health")
            if health:
                status = health.get("Status")
                if status == "healthy":
                    logger.info(f"Container {short_id} is healthy")
                    return True
                elif status == "unhealthy":
                    logger.error(f"Container {short_id} is unhealthy")
                    return False
                logger.debug(f"Container {short_id} health status: {status}, waiting...")
                await asyncio.sleep(2)
            else:
                logger.debug(f"Container {short_id} has no health check, waiting {STABILITY_DELAY}s for stability")
                await asyncio.sleep(STABILITY_DELAY)

                container = await async_docker_call(client.containers.get, container_id)
                if container.attrs["State"].get("Running", False):
                    logger.info(f"Container {short_id} stable after {STABILITY_DELAY}s, considering healthy")
                    return True
                logger.error(f"Container {short_id} crashed within {STABILITY_DELAY}s of starting")
                return False

        except docker.errors.NotFound:
            logger.error(f"Container {short_id} not found during health check")
            return False
        except docker.errors.APIError as e:
            logger.error(f"Error checking container health: {e}")
            return False

    logger.error(f"Health check timeout after {timeout}s for container {short_id}")
    return False
