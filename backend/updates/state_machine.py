"""
Workload state machine for update cycles.

Every workload driven by the update engine moves through these stages:

    scanned -> stale -> stopping -> stopped -> removed -> created -> started
            -> post_hook_ran -> updated

    stale   -> skipped            (pre-update hook exit code 75)
    stale   -> renamed -> created (running updater instance replaces itself)
    scanned -> stopping           (restart forced by a restarting dependency)
    created -> updated            (no-restart mode)
    (any non-terminal) -> failed

Usage:
    sm = WorkloadStateMachine()
    workload = Workload(container)
    sm.transition(workload, UpdateStage.STALE)
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from updates.container import Container
from updates.types import UpdateStage

logger = logging.getLogger(__name__)


@dataclass
class Workload:
    """Mutable per-cycle record for one container driven by the engine."""
    container: Container
    stage: UpdateStage = UpdateStage.SCANNED
    stale: bool = False
    new_container_id: Optional[str] = None
    renamed: bool = False
    error: Optional[BaseException] = None
    history: List[UpdateStage] = field(default_factory=list)

    @property
    def container_id(self) -> str:
        return self.container.id

    @property
    def name(self) -> str:
        return self.container.name

    @property
    def is_terminal(self) -> bool:
        return self.stage in WorkloadStateMachine.TERMINAL_STAGES


class WorkloadStateMachine:
    """Enforces valid stage transitions for workloads."""

    # Valid stage transitions (from_stage -> to_stages)
    VALID_TRANSITIONS = {
        UpdateStage.SCANNED: [UpdateStage.STALE, UpdateStage.STOPPING, UpdateStage.SKIPPED, UpdateStage.FAILED],
        UpdateStage.STALE: [UpdateStage.STOPPING, UpdateStage.RENAMED, UpdateStage.SKIPPED, UpdateStage.FAILED],
        UpdateStage.STOPPING: [UpdateStage.STOPPED, UpdateStage.FAILED],
        UpdateStage.STOPPED: [UpdateStage.REMOVED, UpdateStage.FAILED],
        UpdateStage.REMOVED: [UpdateStage.CREATED, UpdateStage.FAILED],
        UpdateStage.RENAMED: [UpdateStage.CREATED, UpdateStage.FAILED],
        UpdateStage.CREATED: [UpdateStage.STARTED, UpdateStage.UPDATED, UpdateStage.FAILED],
        UpdateStage.STARTED: [UpdateStage.POST_HOOK_RAN, UpdateStage.FAILED],
        UpdateStage.POST_HOOK_RAN: [UpdateStage.UPDATED, UpdateStage.FAILED],
        UpdateStage.UPDATED: [],  # Terminal
        UpdateStage.SKIPPED: [],  # Terminal
        UpdateStage.FAILED: [],  # Terminal
    }

    TERMINAL_STAGES = {UpdateStage.UPDATED, UpdateStage.SKIPPED, UpdateStage.FAILED}

    def can_transition(self, from_stage: UpdateStage, to_stage: UpdateStage) -> bool:
        """
        Check if a stage transition is valid.

        Examples:
            >>> sm = WorkloadStateMachine()
            >>> sm.can_transition(UpdateStage.STALE, UpdateStage.STOPPING)
            True
            >>> sm.can_transition(UpdateStage.UPDATED, UpdateStage.FAILED)
            False
        """
        return to_stage in self.VALID_TRANSITIONS.get(from_stage, [])

    def transition(self, workload: Workload, to_stage: UpdateStage, error: Optional[BaseException] = None) -> bool:
        """
        Move a workload to a new stage.

        Returns:
            True if the transition happened, False if it is not allowed
        """
        from_stage = workload.stage
        if not self.can_transition(from_stage, to_stage):
            logger.error(
                f"Invalid stage transition for {workload.name}: "
                f"{from_stage.value} -> {to_stage.value}"
            )
            return False

        workload.history.append(from_stage)
        workload.stage = to_stage
        if error is not None:
            workload.error = error

        logger.debug(f"Workload {workload.name} transitioned: {from_stage.value} -> {to_stage.value}")
        return True

    def fail(self, workload: Workload, error: BaseException) -> bool:
        """Move a non-terminal workload to FAILED."""
        return self.transition(workload, UpdateStage.FAILED, error)
