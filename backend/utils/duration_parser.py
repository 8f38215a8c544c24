"""
Duration parsing utilities for configuration values and labels.

Converts duration strings (e.g., "30s", "5m", "1h30m") to seconds.
"""

import re
from typing import Union

_DURATION_PATTERN = re.compile(r'(\d+(?:\.\d+)?)(ns|us|ms|s|m|h)')

_SECONDS_PER_UNIT = {
    'ns': 1e-9,
    'us': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}


def parse_duration_seconds(duration: Union[str, int, float, None]) -> float:
    """
    Parse a duration string to seconds.

    Supported units: ns, us, ms, s, m, h. Compound values like "1h30m" are
    summed. A bare number is taken as seconds.

    Args:
        duration: Duration string, number of seconds, or None

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the string is not a valid duration

    Examples:
        >>> parse_duration_seconds("30s")
        30.0
        >>> parse_duration_seconds("1m30s")
        90.0
        >>> parse_duration_seconds("10")
        10.0
        >>> parse_duration_seconds(None)
        0.0
    """
    if duration is None or duration == '':
        return 0.0

    if isinstance(duration, (int, float)):
        if duration < 0:
            raise ValueError(f"Duration must not be negative: {duration}")
        return float(duration)

    duration_str = str(duration).strip()
    if not duration_str:
        return 0.0

    if re.fullmatch(r'\d+(?:\.\d+)?', duration_str):
        return float(duration_str)

    # The whole string must be consumed by <number><unit> pairs
    if not re.fullmatch(r'(?:\d+(?:\.\d+)?(?:ns|us|ms|s|m|h))+', duration_str):
        raise ValueError(
            f"Invalid duration format: '{duration}'. "
            f"Expected format: <number><unit> (e.g., '30s', '5m', '1h30m'). "
            f"Valid units: ns, us, ms, s, m, h"
        )

    return sum(float(value) * _SECONDS_PER_UNIT[unit] for value, unit in _DURATION_PATTERN.findall(duration_str))
