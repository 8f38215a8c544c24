"""
Read-only container view used throughout the update core.

Wraps the runtime's inspect record (and optionally the image inspect record)
and exposes the label vocabulary the updater understands. Instances are never
mutated by the core; per-cycle flags such as "stale" live in the session.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from updates.errors import ConfigurationVerificationError
from utils.duration_parser import parse_duration_seconds
from utils.names import (
    COMPOSE_PROJECT_LABEL,
    normalize_container_name,
    resolve_container_identifier,
)

logger = logging.getLogger(__name__)

# Label vocabulary
LABEL_PREFIX = "com.centurylinklabs.watchtower"
WATCHTOWER_LABEL = LABEL_PREFIX
ENABLE_LABEL = f"{LABEL_PREFIX}.enable"
SCOPE_LABEL = f"{LABEL_PREFIX}.scope"
DEPENDS_ON_LABEL = f"{LABEL_PREFIX}.depends-on"
STOP_SIGNAL_LABEL = f"{LABEL_PREFIX}.stop-signal"
STOP_TIMEOUT_LABEL = f"{LABEL_PREFIX}.stop-timeout"
MONITOR_ONLY_LABEL = f"{LABEL_PREFIX}.monitor-only"
NO_PULL_LABEL = f"{LABEL_PREFIX}.no-pull"
PRE_CHECK_LABEL = f"{LABEL_PREFIX}.lifecycle.pre-check"
POST_CHECK_LABEL = f"{LABEL_PREFIX}.lifecycle.post-check"
PRE_UPDATE_LABEL = f"{LABEL_PREFIX}.lifecycle.pre-update"
POST_UPDATE_LABEL = f"{LABEL_PREFIX}.lifecycle.post-update"
PRE_UPDATE_TIMEOUT_LABEL = f"{LABEL_PREFIX}.lifecycle.pre-update-timeout"
POST_UPDATE_TIMEOUT_LABEL = f"{LABEL_PREFIX}.lifecycle.post-update-timeout"

COMPOSE_DEPENDS_ON_LABEL = "com.docker.compose.depends_on"

DEFAULT_HOOK_TIMEOUT = 60  # seconds

_TRUE_VALUES = {"1", "t", "true"}
_FALSE_VALUES = {"0", "f", "false"}


def parse_label_bool(value: Optional[str]) -> Optional[bool]:
    """
    Parse a boolean label value, case-insensitive.

    Returns:
        True/False, or None if the value is missing or not a boolean
    """
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return None


class Container:
    """Read-only view over a container inspect record."""

    def __init__(self, container_info: Dict[str, Any], image_info: Optional[Dict[str, Any]] = None):
        self._info = container_info or {}
        self._image_info = image_info

    def __repr__(self) -> str:
        return f"Container(name={self.name!r}, id={self.short_id!r})"

    # ==================== Identity ====================

    @property
    def info(self) -> Dict[str, Any]:
        return self._info

    @property
    def image_info(self) -> Optional[Dict[str, Any]]:
        return self._image_info

    @property
    def id(self) -> str:
        return self._info.get("Id", "") or ""

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @property
    def name(self) -> str:
        return normalize_container_name(self._info.get("Name", ""))

    @property
    def config(self) -> Dict[str, Any]:
        return self._info.get("Config") or {}

    @property
    def host_config(self) -> Dict[str, Any]:
        return self._info.get("HostConfig") or {}

    @property
    def labels(self) -> Mapping[str, str]:
        return self.config.get("Labels") or {}

    @property
    def identifier(self) -> str:
        return resolve_container_identifier(self.labels, self.name, self.id)

    # ==================== Image attribution ====================

    @property
    def image_id(self) -> str:
        return self._info.get("Image", "") or ""

    @property
    def safe_image_id(self) -> str:
        """Image ID, or an empty string when the container has no image info."""
        if self._image_info is None and not self.image_id:
            return ""
        return self.image_id

    @property
    def image_name(self) -> str:
        """
        Image reference the container was created from.

        An untagged reference gets ":latest" appended; digest references are
        returned unchanged.
        """
        image_name = self.config.get("Image", "") or ""
        if not image_name and self._image_info:
            tags = self._image_info.get("RepoTags") or []
            image_name = tags[0] if tags else ""
        if not image_name or "@" in image_name or image_name.startswith("sha256:"):
            return image_name
        last_segment = image_name.rsplit("/", 1)[-1]
        if ":" not in last_segment:
            image_name = f"{image_name}:latest"
        return image_name

    @property
    def is_pinned(self) -> bool:
        """Reference pins a digest (name@sha256:...)."""
        return "@sha256:" in (self.config.get("Image", "") or "")

    # ==================== State ====================

    @property
    def state(self) -> Dict[str, Any]:
        return self._info.get("State") or {}

    @property
    def is_running(self) -> bool:
        return bool(self.state.get("Running", False))

    @property
    def is_restarting(self) -> bool:
        return bool(self.state.get("Restarting", False))

    @property
    def created(self) -> str:
        return self._info.get("Created", "") or ""

    @property
    def is_watchtower(self) -> bool:
        """True when this container is an instance of the updater itself."""
        return self.labels.get(WATCHTOWER_LABEL) == "true"

    # ==================== Labels ====================

    @property
    def has_enable_label(self) -> bool:
        return ENABLE_LABEL in self.labels

    def enabled(self) -> Optional[bool]:
        """Parsed enable label, None if absent or not a boolean."""
        return parse_label_bool(self.labels.get(ENABLE_LABEL))

    def scope(self) -> Optional[str]:
        value = self.labels.get(SCOPE_LABEL)
        return value if value else None

    @property
    def stop_signal(self) -> str:
        return self.labels.get(STOP_SIGNAL_LABEL, "") or ""

    def stop_timeout(self, default: float, label_precedence: bool = False) -> float:
        """Stop grace period, overridden by the stop-timeout label when labels take precedence."""
        value = self.labels.get(STOP_TIMEOUT_LABEL)
        if not value or not label_precedence:
            return default
        try:
            return parse_duration_seconds(value)
        except ValueError:
            logger.warning(f"Invalid stop timeout label '{value}' on {self.name}, using {default}s")
            return default

    def _container_or_global_bool(self, label: str, global_value: bool, label_precedence: bool) -> bool:
        value = parse_label_bool(self.labels.get(label))
        if value is None:
            return global_value
        if label_precedence:
            return value
        return value or global_value

    def is_monitor_only(self, params) -> bool:
        return self._container_or_global_bool(MONITOR_ONLY_LABEL, params.monitor_only, params.label_precedence)

    def is_no_pull(self, params) -> bool:
        return self._container_or_global_bool(NO_PULL_LABEL, params.no_pull, params.label_precedence)

    # ==================== Lifecycle hooks ====================

    @property
    def pre_check_command(self) -> str:
        return self.labels.get(PRE_CHECK_LABEL, "") or ""

    @property
    def post_check_command(self) -> str:
        return self.labels.get(POST_CHECK_LABEL, "") or ""

    @property
    def pre_update_command(self) -> str:
        return self.labels.get(PRE_UPDATE_LABEL, "") or ""

    @property
    def post_update_command(self) -> str:
        return self.labels.get(POST_UPDATE_LABEL, "") or ""

    def _hook_timeout(self, label: str) -> int:
        value = self.labels.get(label)
        if value is None or value.strip() == "":
            return DEFAULT_HOOK_TIMEOUT
        try:
            timeout = int(value)
        except ValueError:
            logger.warning(f"Invalid hook timeout '{value}' on {self.name}, using {DEFAULT_HOOK_TIMEOUT}s")
            return DEFAULT_HOOK_TIMEOUT
        return max(timeout, 0)

    @property
    def pre_update_timeout(self) -> int:
        """Seconds; 0 disables the timeout."""
        return self._hook_timeout(PRE_UPDATE_TIMEOUT_LABEL)

    @property
    def post_update_timeout(self) -> int:
        """Seconds; 0 disables the timeout."""
        return self._hook_timeout(POST_UPDATE_TIMEOUT_LABEL)

    # ==================== Links ====================

    @property
    def links(self) -> List[str]:
        """
        Normalized identifiers this container depends on.

        Sources in order of precedence (first non-empty wins):
        1. depends-on label (comma separated)
        2. compose depends_on label ("service:condition:required", qualified
           with this container's compose project)
        3. HostConfig.Links ("name:alias") plus NetworkMode "container:<name>"
        """
        depends_on = self.labels.get(DEPENDS_ON_LABEL, "")
        if depends_on:
            links = [normalize_container_name(part.strip()) for part in depends_on.split(",")]
            links = [link for link in links if link]
            if links:
                return links

        compose_depends_on = self.labels.get(COMPOSE_DEPENDS_ON_LABEL, "")
        if compose_depends_on:
            project = self.labels.get(COMPOSE_PROJECT_LABEL, "")
            links = []
            for dep in compose_depends_on.split(","):
                service = dep.strip().split(":")[0].strip()
                if not service:
                    continue
                service = normalize_container_name(service)
                links.append(f"{project}-{service}" if project else service)
            if links:
                return links

        links = []
        for link in self.host_config.get("Links") or []:
            if ":" not in link:
                logger.warning(f"Invalid link format '{link}' on {self.name}, expected 'name:alias'")
                continue
            target = link.split(":", 1)[0]
            if not target:
                continue
            links.append(normalize_container_name(target))

        network_mode = self.host_config.get("NetworkMode", "") or ""
        if network_mode.startswith("container:"):
            links.append(normalize_container_name(network_mode.split(":", 1)[1]))

        return links

    # ==================== Verification ====================

    def verify_configuration(self):
        """
        Check the inspect record carries enough to recreate the container.

        Raises:
            ConfigurationVerificationError: If Config, HostConfig or the image name is missing
        """
        if not self._info.get("Config"):
            raise ConfigurationVerificationError(self.name, "container has no Config")
        if self._info.get("HostConfig") is None:
            raise ConfigurationVerificationError(self.name, "container has no HostConfig")
        if not self.image_name:
            raise ConfigurationVerificationError(self.name, "container has no image name")
        exposed_ports = self.config.get("ExposedPorts") or {}
        if exposed_ports and self.host_config.get("PortBindings") is None:
            raise ConfigurationVerificationError(
                self.name, "container exposes ports but has no port bindings"
            )

    def to_metadata(self) -> Dict[str, Any]:
        """Metadata passed to lifecycle hooks as JSON."""
        return {
            "id": self.id,
            "name": self.name,
            "image_name": self.image_name,
            "image_id": self.image_id,
            "stop_signal": self.stop_signal,
            "labels": dict(self.labels),
        }
