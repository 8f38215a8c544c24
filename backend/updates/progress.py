"""
Progress tracking for an update cycle.

Progress is mutated while a cycle runs and frozen into an immutable Report
at the end. All lists in the Report keep the order in which containers were
first recorded.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from updates.container import Container
from updates.types import UpdateParams, WorkloadState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerStatus:
    """Lightweight, immutable outcome record for one workload."""
    container_id: str
    name: str
    image_name: str
    current_image_id: str
    latest_image_id: str
    state: WorkloadState
    error: Optional[BaseException] = None
    monitor_only: bool = False

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.container_id,
            "name": self.name,
            "image_name": self.image_name,
            "current_image_id": self.current_image_id,
            "latest_image_id": self.latest_image_id,
            "state": self.state.value,
            "error": self.error_message,
        }


@dataclass(frozen=True)
class Report:
    """Immutable grouping of workload outcomes for one cycle."""
    scanned: Tuple[ContainerStatus, ...] = ()
    updated: Tuple[ContainerStatus, ...] = ()
    failed: Tuple[ContainerStatus, ...] = ()
    skipped: Tuple[ContainerStatus, ...] = ()
    stale: Tuple[ContainerStatus, ...] = ()
    fresh: Tuple[ContainerStatus, ...] = ()

    def summary(self) -> Dict[str, int]:
        return {
            "scanned": len(self.scanned),
            "updated": len(self.updated),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "stale": len(self.stale),
            "fresh": len(self.fresh),
        }


@dataclass
class _Entry:
    container: Container
    new_image_id: str
    monitor_only: bool = False
    marked: bool = False


@dataclass
class Progress:
    """
    Mutable per-cycle aggregator.

    Invariants:
    - every ID in the pending, updated, failed or skipped buckets is scanned
    - an ID is never pending and terminal at the same time
    """
    _scanned: Dict[str, _Entry] = field(default_factory=dict)
    _pending: Set[str] = field(default_factory=set)
    _updated: Set[str] = field(default_factory=set)
    _failed: Dict[str, BaseException] = field(default_factory=dict)
    _skipped: Dict[str, BaseException] = field(default_factory=dict)

    def __contains__(self, container_id: str) -> bool:
        return container_id in self._scanned

    def __len__(self) -> int:
        return len(self._scanned)

    def is_terminal(self, container_id: str) -> bool:
        return (
            container_id in self._updated
            or container_id in self._failed
            or container_id in self._skipped
        )

    def add_scanned(self, container: Container, new_image_id: str, params: Optional[UpdateParams] = None):
        """Record a scanned container and the newest image ID the runtime resolved for it."""
        monitor_only = container.is_monitor_only(params) if params is not None else False
        entry = self._scanned.get(container.id)
        if entry is None:
            self._scanned[container.id] = _Entry(container, new_image_id or "", monitor_only)
        else:
            entry.new_image_id = new_image_id or ""
            entry.monitor_only = monitor_only

    def add_skipped(self, container: Container, reason: BaseException, params: Optional[UpdateParams] = None):
        """Record a container that will not be updated in this cycle."""
        if container.id not in self._scanned:
            monitor_only = container.is_monitor_only(params) if params is not None else False
            self._scanned[container.id] = _Entry(container, "", monitor_only)
        self._pending.discard(container.id)
        self._skipped[container.id] = reason

    def mark_for_update(self, container_id: str):
        """
        Flag a scanned container as stale and pending update.

        Raises:
            KeyError: If the container was never scanned
            ValueError: If the container already reached a terminal state
        """
        if container_id not in self._scanned:
            raise KeyError(f"container {container_id[:12]} was not scanned")
        if self.is_terminal(container_id):
            raise ValueError(f"container {container_id[:12]} already reached a terminal state")
        self._scanned[container_id].marked = True
        self._pending.add(container_id)

    def mark_updated(self, container_id: str):
        """Move a pending container to updated."""
        if container_id not in self._pending:
            logger.debug(f"Ignoring update mark for {container_id[:12]}: not pending")
            return
        self._pending.discard(container_id)
        self._updated.add(container_id)

    def update_failed(self, failures: Mapping[str, BaseException]):
        """Mark containers as failed; unknown IDs are ignored."""
        for container_id, error in failures.items():
            if container_id not in self._scanned:
                logger.debug(f"Ignoring failure for unscanned container {container_id[:12]}")
                continue
            self._pending.discard(container_id)
            self._updated.discard(container_id)
            self._failed[container_id] = error

    def pending_ids(self) -> Set[str]:
        return set(self._pending)

    def _final_state(self, container_id: str, entry: _Entry) -> WorkloadState:
        if container_id in self._failed:
            return WorkloadState.FAILED
        if container_id in self._skipped:
            return WorkloadState.SKIPPED
        if container_id in self._updated:
            return WorkloadState.UPDATED
        stale = entry.marked or (
            bool(entry.new_image_id) and entry.new_image_id != entry.container.image_id
        )
        if not stale:
            return WorkloadState.FRESH
        return WorkloadState.STALE

    def report(self) -> Report:
        """Freeze the current progress into a Report."""
        groups: Dict[WorkloadState, List[ContainerStatus]] = {state: [] for state in WorkloadState}
        scanned: List[ContainerStatus] = []

        for container_id, entry in self._scanned.items():
            state = self._final_state(container_id, entry)
            error = self._failed.get(container_id) or self._skipped.get(container_id)
            status = ContainerStatus(
                container_id=container_id,
                name=entry.container.name,
                image_name=entry.container.image_name,
                current_image_id=entry.container.image_id,
                latest_image_id=entry.new_image_id,
                state=state,
                error=error,
                monitor_only=entry.monitor_only,
            )
            scanned.append(status)
            groups[state].append(status)

        return Report(
            scanned=tuple(scanned),
            updated=tuple(groups[WorkloadState.UPDATED]),
            failed=tuple(groups[WorkloadState.FAILED]),
            skipped=tuple(groups[WorkloadState.SKIPPED]),
            stale=tuple(groups[WorkloadState.STALE]),
            fresh=tuple(groups[WorkloadState.FRESH]),
        )
