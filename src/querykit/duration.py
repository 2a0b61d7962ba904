"""Durations for cache lifetimes, polling intervals and age thresholds.

A duration string is one or more ``<amount><unit>`` parts with units
``ms``, ``s``, ``m``, ``h`` and ``d``, so ``"90s"`` and ``"1m30s"`` are
equal. Bare integers are milliseconds, except in ``parse_seconds``.
"""

import re

Duration = str | int

_SHAPE = re.compile(r"(?:\d+(?:ms|s|m|h|d))+")
_PART = re.compile(r"(\d+)(ms|s|m|h|d)")
_MS_PER_UNIT: dict[str, int] = {
    "ms": 1,
    "s": 1_000,
    "m": 60 * 1_000,
    "h": 60 * 60 * 1_000,
    "d": 24 * 60 * 60 * 1_000,
}


def _invalid(duration: object) -> ValueError:
    return ValueError(f"Invalid duration: {duration!r}")


def parse_duration(duration: Duration) -> int:
    """Return ``duration`` in milliseconds."""
    if isinstance(duration, int):
        if duration < 0:
            raise _invalid(duration)
        return duration
    if not _SHAPE.fullmatch(duration):
        raise _invalid(duration)
    return sum(int(amount) * _MS_PER_UNIT[unit] for amount, unit in _PART.findall(duration))


def parse_seconds(duration: Duration | float) -> float:
    """Age threshold in seconds. Numbers are already seconds."""
    if isinstance(duration, str):
        return parse_duration(duration) / 1000
    if duration < 0:
        raise _invalid(duration)
    return float(duration)
