"""
Docker SDK implementation of the runtime client (Docker and Podman).

All blocking SDK calls run through async_docker_call. docker.errors.* are
wrapped in RuntimeCallError (or a subclass) with the original chained.

Recreation uses the low-level API (client.api.create_container) with
HostConfig passthrough so every host setting of the old container is kept.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from packaging import version

from runtime.client import SKIP_UPDATE_EXIT_CODE, RuntimeClient
from updates.container import Container
from updates.errors import (
    ContainerNotFoundError,
    HealthCheckError,
    LifecycleCommandError,
    RuntimeCallError,
    StalenessProbeError,
)
from updates.types import ContainerFilter, CPUCopyMode, HeadFailureWarning, UpdateParams
from utils.async_docker import async_docker_call
from utils.container_health import wait_for_container_health
from utils.image_id import normalize_image_id, registry_host

logger = logging.getLogger(__name__)

DEFAULT_STOP_SIGNAL = "SIGTERM"
DEFAULT_PULL_TIMEOUT = 1800  # seconds

CONTAINER_ID_SHORT_LENGTH = 12

# Registries that answer HEAD requests without counting them as pulls
_HEAD_REQUEST_REGISTRIES = {"docker.io", "ghcr.io"}

# HostConfig keys dropped by CPUCopyMode.IGNORE
_CPU_LIMIT_KEYS = ("NanoCpus", "CpuShares", "CpuQuota", "CpuPeriod", "CpusetCpus")

_BUILTIN_NETWORKS = ("bridge", "host", "none")


def _wrap(operation: str, error: Exception) -> RuntimeCallError:
    wrapped = RuntimeCallError(operation, str(error))
    wrapped.__cause__ = error
    return wrapped


def exec_user(uid: int, gid: int) -> str:
    """
    User string for docker exec.

    Examples:
        >>> exec_user(1000, 1000)
        '1000:1000'
        >>> exec_user(0, 50)
        ':50'
        >>> exec_user(0, 0)
        ''
    """
    if uid > 0 and gid > 0:
        return f"{uid}:{gid}"
    if uid > 0:
        return str(uid)
    if gid > 0:
        return f":{gid}"
    return ""


def apply_cpu_copy_mode(host_config: Dict[str, Any], mode: CPUCopyMode, is_podman: bool) -> Dict[str, Any]:
    """
    Adjust CPU limits of a copied HostConfig.

    - ignore: drop all CPU limits
    - preserve: copy verbatim
    - auto: on Podman, convert NanoCpus into CpuPeriod/CpuQuota and drop
      MemorySwappiness (both rejected by Podman's compat API)

    Returns:
        A new HostConfig dict
    """
    host_config = dict(host_config)

    if mode == CPUCopyMode.IGNORE:
        for key in _CPU_LIMIT_KEYS:
            host_config.pop(key, None)
        return host_config

    if mode == CPUCopyMode.AUTO and is_podman:
        nano_cpus = host_config.pop('NanoCpus', None)
        host_config.pop('MemorySwappiness', None)

        if nano_cpus and not host_config.get('CpuPeriod'):
            cpu_period = 100000
            cpu_quota = int(nano_cpus / 1e9 * cpu_period)
            host_config['CpuPeriod'] = cpu_period
            host_config['CpuQuota'] = cpu_quota

    return host_config


def extract_endpoints_config(info: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Endpoint settings for every custom network the container is attached to.

    Keeps user-configured static IPs, aliases (minus the auto-generated short
    ID alias) and links.
    """
    networks = (info.get("NetworkSettings") or {}).get("Networks") or {}
    short_id = (info.get("Id") or "")[:CONTAINER_ID_SHORT_LENGTH]
    endpoints: Dict[str, Dict[str, Any]] = {}

    for network_name, network_data in networks.items():
        if network_name in _BUILTIN_NETWORKS:
            continue
        network_data = network_data or {}
        endpoint: Dict[str, Any] = {}

        ipam_raw = network_data.get("IPAMConfig") or {}
        ipam = {k: ipam_raw[k] for k in ("IPv4Address", "IPv6Address") if ipam_raw.get(k)}
        if ipam:
            endpoint["IPAMConfig"] = ipam

        aliases = [a for a in network_data.get("Aliases") or [] if a != short_id]
        if aliases:
            endpoint["Aliases"] = aliases

        if network_data.get("Links"):
            endpoint["Links"] = network_data["Links"]

        endpoints[network_name] = endpoint

    return endpoints


class DockerRuntimeClient(RuntimeClient):
    """
    Runtime client backed by a docker.DockerClient.

    Args:
        client: Docker SDK client
        include_stopped: Also list created and exited containers
        include_restarting: Also list restarting containers
        cpu_copy_mode: How CPU limits are copied into recreated containers
        warn_on_head_failure: When failed registry checks are logged as warnings
        pull_timeout: Seconds before an image pull is abandoned
    """

    def __init__(
        self,
        client: docker.DockerClient,
        include_stopped: bool = False,
        include_restarting: bool = False,
        cpu_copy_mode: CPUCopyMode = CPUCopyMode.AUTO,
        warn_on_head_failure: HeadFailureWarning = HeadFailureWarning.AUTO,
        pull_timeout: float = DEFAULT_PULL_TIMEOUT
    ):
        self.client = client
        self.include_stopped = include_stopped
        self.include_restarting = include_restarting
        self.cpu_copy_mode = cpu_copy_mode
        self.warn_on_head_failure = warn_on_head_failure
        self.pull_timeout = pull_timeout
        self._is_podman: Optional[bool] = None

    @classmethod
    def from_env(cls, base_url: Optional[str] = None, **kwargs) -> 'DockerRuntimeClient':
        """Connect to base_url, or to the daemon described by DOCKER_HOST and friends."""
        client = docker.DockerClient(base_url=base_url) if base_url else docker.from_env()
        return cls(client, **kwargs)

    # ==================== Listing ====================

    def _status_filter(self) -> List[str]:
        statuses = ["running"]
        if self.include_stopped:
            statuses.extend(["created", "exited"])
        if self.include_restarting:
            statuses.append("restarting")
        return statuses

    async def _inspect(self, container_id: str) -> Container:
        info = await async_docker_call(self.client.api.inspect_container, container_id)
        image_info = None
        image_id = info.get("Image")
        if image_id:
            try:
                image_info = await async_docker_call(self.client.api.inspect_image, image_id)
            except NotFound:
                logger.debug(f"Image {normalize_image_id(image_id)} of {info.get('Name')} no longer exists")
        return Container(info, image_info)

    async def list_containers(self, container_filter: Optional[ContainerFilter] = None) -> List[Container]:
        statuses = self._status_filter()
        logger.debug(f"Retrieving containers with status {statuses}")

        try:
            summaries = await async_docker_call(self.client.api.containers, filters={"status": statuses})
        except DockerException as e:
            raise _wrap("list containers", e) from e

        containers: List[Container] = []
        for summary in summaries:
            try:
                container = await self._inspect(summary["Id"])
            except NotFound:
                # Removed between listing and inspecting
                logger.debug(f"Container {summary['Id'][:12]} disappeared while listing")
                continue
            except DockerException as e:
                raise _wrap("list containers", e) from e

            if container_filter is None or container_filter(container):
                containers.append(container)

        return containers

    async def get_container(self, container_id: str) -> Container:
        try:
            return await self._inspect(container_id)
        except NotFound as e:
            raise ContainerNotFoundError("get container", container_id[:12]) from e
        except DockerException as e:
            raise _wrap("get container", e) from e

    # ==================== Images ====================

    def warn_on_head_pull_failed(self, container: Container) -> bool:
        if self.warn_on_head_failure == HeadFailureWarning.ALWAYS:
            return True
        if self.warn_on_head_failure == HeadFailureWarning.NEVER:
            return False
        return registry_host(container.image_name) in _HEAD_REQUEST_REGISTRIES

    async def _pull_image(self, container: Container):
        image_name = container.image_name
        try:
            await asyncio.wait_for(
                async_docker_call(self.client.images.pull, image_name),
                timeout=self.pull_timeout
            )
            logger.debug(f"Successfully pulled image {image_name}")
        except asyncio.TimeoutError as e:
            raise RuntimeCallError("pull image", f"timed out after {self.pull_timeout}s for {image_name}") from e
        except DockerException as e:
            level = logging.WARNING if self.warn_on_head_pull_failed(container) else logging.DEBUG
            logger.log(level, f"Error pulling image {image_name} for {container.name}: {e}")
            raise _wrap("pull image", e) from e

    async def is_container_stale(self, container: Container, params: UpdateParams) -> Tuple[bool, str]:
        image_name = container.image_name

        if image_name.startswith("sha256:"):
            raise StalenessProbeError(container.name, "image is referenced by ID and cannot be pulled")

        if container.is_no_pull(params):
            logger.debug(f"Skipping image pull for {container.name}")
            return False, container.safe_image_id

        await self._pull_image(container)

        try:
            new_image = await async_docker_call(self.client.api.inspect_image, image_name)
        except DockerException as e:
            raise _wrap("inspect image", e) from e

        new_image_id = new_image.get("Id", "")
        if new_image_id == container.image_id:
            logger.debug(f"No new images found for {container.name}")
            return False, container.image_id

        logger.info(f"Found new {image_name} image ({normalize_image_id(new_image_id)})")
        return True, new_image_id

    async def remove_image_by_id(self, image_id: str, image_name: str = ""):
        label = image_name or normalize_image_id(image_id)
        logger.info(f"Removing image {label}")
        try:
            await async_docker_call(self.client.api.remove_image, image_id, force=True)
        except ImageNotFound:
            logger.debug(f"Image {label} already removed")
        except DockerException as e:
            raise _wrap("remove image", e) from e

    # ==================== Stop / remove ====================

    async def _wait_for_stop(self, container_id: str, timeout: float) -> bool:
        """Poll until the container stopped or is gone; False on timeout."""
        deadline = time.monotonic() + timeout
        while True:
            try:
                info = await async_docker_call(self.client.api.inspect_container, container_id)
            except NotFound:
                return True
            if not (info.get("State") or {}).get("Running", False):
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(1)

    async def stop_container(self, container: Container, timeout: float):
        signal = container.stop_signal or DEFAULT_STOP_SIGNAL

        if not container.is_running:
            logger.debug(f"Container {container.name} is not running, nothing to stop")
            return

        logger.info(f"Stopping {container.name} ({container.short_id}) with {signal}")
        try:
            await async_docker_call(self.client.api.kill, container.id, signal=signal)
            stopped = await self._wait_for_stop(container.id, timeout)
            if not stopped:
                logger.warning(f"Container {container.name} did not stop within {timeout}s, killing it")
                await async_docker_call(self.client.api.kill, container.id, signal="SIGKILL")
        except NotFound:
            logger.debug(f"Container {container.name} already gone")
        except APIError as e:
            if e.status_code == 409:
                # Not running anymore
                logger.debug(f"Container {container.name} is not running: {e.explanation}")
                return
            raise _wrap("stop container", e) from e
        except DockerException as e:
            raise _wrap("stop container", e) from e

    async def remove_container(self, container: Container):
        logger.debug(f"Removing container {container.name} ({container.short_id})")
        try:
            await async_docker_call(self.client.api.remove_container, container.id, force=True)
        except NotFound:
            logger.debug(f"Container {container.name} already removed")
        except DockerException as e:
            raise _wrap("remove container", e) from e

    # ==================== Create / start ====================

    async def _detect_podman(self) -> bool:
        if self._is_podman is not None:
            return self._is_podman

        is_podman = False
        try:
            info = await async_docker_call(self.client.info)
            if str(info.get("Name", "")).lower() == "podman":
                is_podman = True
            else:
                server_version = await async_docker_call(self.client.version)
                platform_name = (server_version.get("Platform") or {}).get("Name", "")
                components = server_version.get("Components") or []
                is_podman = "podman" in str(platform_name).lower() or any(
                    "podman" in str(c.get("Name", "")).lower() for c in components
                )
        except DockerException as e:
            logger.warning(f"Could not detect runtime flavour, assuming Docker: {e}")

        self._is_podman = is_podman
        if is_podman:
            logger.info("Detected Podman runtime")
        return is_podman

    async def _resolve_network_mode(self, host_config: Dict[str, Any]):
        # container:<id> must be rewritten to container:<name>, the ID changes on recreation
        network_mode = host_config.get('NetworkMode', '') or ''
        if not network_mode.startswith('container:'):
            return
        ref = network_mode.split(':', 1)[1]
        try:
            ref_info = await async_docker_call(self.client.api.inspect_container, ref)
            host_config['NetworkMode'] = f"container:{ref_info.get('Name', '').lstrip('/')}"
        except DockerException as e:
            logger.warning(f"Failed to resolve NetworkMode {network_mode}: {e}")

    async def create_container(self, container: Container) -> str:
        config = container.config
        is_podman = await self._detect_podman()
        host_config = apply_cpu_copy_mode(container.host_config, self.cpu_copy_mode, is_podman)
        await self._resolve_network_mode(host_config)
        network_mode = host_config.get('NetworkMode', '') or ''
        shares_network = network_mode.startswith('container:')

        endpoints = extract_endpoints_config(container.info) if not shares_network else {}
        api_version = version.parse(self.client.api.api_version)
        use_networking_config = api_version >= version.parse("1.44")

        # Older APIs accept a single endpoint at creation; the rest are connected afterwards
        if use_networking_config:
            initial_endpoints, deferred = endpoints, {}
        else:
            names = list(endpoints)
            initial_endpoints = {names[0]: endpoints[names[0]]} if names else {}
            deferred = {name: endpoints[name] for name in names[1:]}

        networking_config = {"EndpointsConfig": initial_endpoints} if initial_endpoints else None

        logger.debug(f"Creating replacement for {container.name} from {container.image_name}")
        try:
            response = await async_docker_call(
                self.client.api.create_container,
                image=container.image_name,
                name=container.name,
                hostname=config.get('Hostname') if not shares_network else None,
                user=config.get('User'),
                environment=config.get('Env'),
                command=config.get('Cmd'),
                entrypoint=config.get('Entrypoint'),
                working_dir=config.get('WorkingDir'),
                labels=config.get('Labels') or {},
                host_config=host_config,
                networking_config=networking_config,
                healthcheck=config.get('Healthcheck'),
                stop_signal=config.get('StopSignal'),
                domainname=config.get('Domainname'),
                mac_address=config.get('MacAddress') if not shares_network else None,
                tty=config.get('Tty', False),
                stdin_open=config.get('OpenStdin', False),
            )
        except DockerException as e:
            raise _wrap("create container", e) from e

        new_id = response['Id']

        for network_name, endpoint in deferred.items():
            try:
                await async_docker_call(
                    self.client.api.connect_container_to_network,
                    new_id,
                    network_name,
                    aliases=endpoint.get("Aliases"),
                    links=endpoint.get("Links"),
                    ipv4_address=(endpoint.get("IPAMConfig") or {}).get("IPv4Address"),
                    ipv6_address=(endpoint.get("IPAMConfig") or {}).get("IPv6Address"),
                )
            except DockerException as e:
                raise _wrap("connect network", e) from e

        logger.debug(f"Created container {new_id[:12]} for {container.name}")
        return new_id

    async def start_container(self, container: Container) -> str:
        new_id = await self.create_container(container)
        try:
            await async_docker_call(self.client.api.start, new_id)
        except DockerException as e:
            raise _wrap("start container", e) from e
        logger.info(f"Started {container.name} ({new_id[:12]})")
        return new_id

    async def rename_container(self, container: Container, new_name: str):
        logger.debug(f"Renaming {container.name} ({container.short_id}) to {new_name}")
        try:
            await async_docker_call(self.client.api.rename, container.id, new_name)
        except NotFound as e:
            raise ContainerNotFoundError("rename container", container.short_id) from e
        except DockerException as e:
            raise _wrap("rename container", e) from e

    async def wait_for_container_healthy(self, container_id: str, timeout: float):
        healthy = await wait_for_container_health(self.client, container_id, timeout)
        if not healthy:
            raise HealthCheckError(
                "health check", f"container {container_id[:12]} did not become healthy within {timeout}s"
            )

    # ==================== Exec ====================

    async def execute_command(
        self,
        container: Container,
        command: str,
        timeout: float,
        uid: int = 0,
        gid: int = 0
    ) -> bool:
        user = exec_user(uid, gid)
        metadata = json.dumps(container.to_metadata())

        try:
            exec_info = await async_docker_call(
                self.client.api.exec_create,
                container.id,
                ["sh", "-c", command],
                environment={"WT_CONTAINER": metadata},
                user=user,
                tty=True,
            )
            exec_id = exec_info["Id"]

            run = async_docker_call(self.client.api.exec_start, exec_id, tty=True)
            if timeout and timeout > 0:
                output = await asyncio.wait_for(run, timeout=timeout)
            else:
                output = await run

            result = await async_docker_call(self.client.api.exec_inspect, exec_id)
        except asyncio.TimeoutError as e:
            raise LifecycleCommandError(
                command, message=f"command '{command}' timed out after {timeout}s"
            ) from e
        except DockerException as e:
            raise _wrap("execute command", e) from e

        if isinstance(output, bytes):
            output = output.decode("utf-8", errors="replace")
        exit_code = result.get("ExitCode")
        logger.debug(f"Command '{command}' in {container.name} exited with {exit_code}: {output}")

        if exit_code == SKIP_UPDATE_EXIT_CODE:
            return True
        if exit_code != 0:
            raise LifecycleCommandError(command, exit_code, output or "")
        return False
