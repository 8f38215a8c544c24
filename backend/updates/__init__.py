"""
Updates Module

Update-orchestration core: decides which containers are stale, orders them
by dependency and replaces them safely.

Architecture:
- update(): one complete cycle (probe -> sort -> stop/recreate/start)
- UpdateChecker: staleness probe
- UpdateExecutor: per-workload replacement engine
- UpdateScheduler: periodic cycles with a single-cycle lock
"""

from updates.filters import build_filter
from updates.progress import ContainerStatus, Report
from updates.scheduler import UpdateScheduler
from updates.session import check_for_sanity, update
from updates.types import CancelToken, UpdateParams, UpdateSessionResult, UpdateStage

__all__ = [
    'update',
    'check_for_sanity',
    'build_filter',
    'UpdateScheduler',
    'UpdateParams',
    'UpdateSessionResult',
    'UpdateStage',
    'CancelToken',
    'Report',
    'ContainerStatus',
]
