"""
Creation-time ordering for containers.
"""

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from updates.container import Container

logger = logging.getLogger(__name__)

# Malformed timestamps sort after every real one
FAR_FUTURE = datetime(9999, 1, 1, tzinfo=timezone.utc)

_NANOS_PER_SECOND = 1_000_000_000
_FAR_FUTURE_NANOS = int(FAR_FUTURE.timestamp()) * _NANOS_PER_SECOND

_RFC3339_PATTERN = re.compile(
    r'^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?([Zz]|[+-]\d{2}:\d{2})$'
)


def parse_created_nanos(value: str) -> Optional[int]:
    """
    Parse an RFC3339 timestamp into nanoseconds since the epoch.

    Docker reports nanosecond precision ("2024-01-02T03:04:05.123456789Z"),
    which datetime cannot hold, so the fraction is kept separately.

    Returns:
        Nanoseconds since the epoch, or None if the value is malformed
    """
    if not value:
        return None
    match = _RFC3339_PATTERN.match(value.strip())
    if not match:
        return None

    date_part, time_part, fraction, offset = match.groups()
    if offset in ("Z", "z"):
        offset = "+00:00"

    try:
        whole_seconds = datetime.fromisoformat(f"{date_part}T{time_part}{offset}")
    except ValueError:
        return None

    nanos = int((fraction or "0").ljust(9, "0"))
    return int(whole_seconds.timestamp()) * _NANOS_PER_SECOND + nanos


def sort_by_created(containers: List[Container]):
    """
    Stable in-place sort by creation time, oldest first.

    Each timestamp is parsed once. Unparseable values map to FAR_FUTURE
    (9999-01-01 UTC) and keep their relative input order.
    """
    keys = {}
    for container in containers:
        created = parse_created_nanos(container.created)
        if created is None:
            logger.debug(f"Unparseable creation time '{container.created}' for {container.name}")
            created = _FAR_FUTURE_NANOS
        keys[id(container)] = created

    containers.sort(key=lambda c: keys[id(c)])
