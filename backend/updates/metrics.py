"""
Update cycle metrics.

Gauges describe the most recent cycle, counters accumulate over the
process lifetime:

- shipwatch_containers_scanned / _updated / _failed (last cycle)
- shipwatch_scans_total (every cycle, including skipped ones)
- shipwatch_scans_skipped_total (scheduled cycles skipped because one was running)

A failed cycle (no report) counts as a scan with all gauges at zero.
"""

import logging
from typing import Dict, Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest

from updates.types import UpdateSessionResult

logger = logging.getLogger(__name__)

METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST


class UpdateMetrics:
    """Prometheus collectors for update cycles, kept on a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.scanned = Gauge(
            "shipwatch_containers_scanned",
            "Number of containers scanned during the last cycle",
            registry=self.registry,
        )
        self.updated = Gauge(
            "shipwatch_containers_updated",
            "Number of containers updated during the last cycle",
            registry=self.registry,
        )
        self.failed = Gauge(
            "shipwatch_containers_failed",
            "Number of containers whose update failed during the last cycle",
            registry=self.registry,
        )
        self.scans = Counter(
            "shipwatch_scans",
            "Number of update cycles since shipwatch started",
            registry=self.registry,
        )
        self.skipped_scans = Counter(
            "shipwatch_scans_skipped",
            "Number of scheduled cycles skipped since shipwatch started",
            registry=self.registry,
        )

    def record_cycle(self, result: UpdateSessionResult):
        """Record the outcome of a finished cycle."""
        report = result.report
        if result.error is not None or report is None:
            self._set_gauges(0, 0, 0)
        else:
            self._set_gauges(len(report.scanned), len(report.updated), len(report.failed))
        self.scans.inc()

    def record_skipped(self):
        """Record a scheduled cycle that did not run."""
        self._set_gauges(0, 0, 0)
        self.scans.inc()
        self.skipped_scans.inc()

    def _set_gauges(self, scanned: int, updated: int, failed: int):
        self.scanned.set(scanned)
        self.updated.set(updated)
        self.failed.set(failed)
        logger.debug(f"Metrics updated: {scanned} scanned, {updated} updated, {failed} failed")

    def snapshot(self) -> Dict[str, int]:
        samples = {
            "scanned": "shipwatch_containers_scanned",
            "updated": "shipwatch_containers_updated",
            "failed": "shipwatch_containers_failed",
            "scans_total": "shipwatch_scans_total",
            "scans_skipped": "shipwatch_scans_skipped_total",
        }
        return {key: int(self.registry.get_sample_value(name) or 0) for key, name in samples.items()}

    def render(self) -> bytes:
        """Exposition format for a scrape."""
        return generate_latest(self.registry)
