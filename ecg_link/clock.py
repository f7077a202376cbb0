"""Reconciliation of the device's free-running clock against host wall-clock time."""

import time
from typing import Optional, Tuple

from ecg_link.models import ClockOffset, DeviceReading, NormalizedReading


def wall_clock_millis() -> int:
    """Current host time as Unix epoch milliseconds."""
    return time.time_ns() // 1_000_000


def reconcile(
    offset: Optional[ClockOffset], reading: DeviceReading, now_millis: int
) -> Tuple[ClockOffset, NormalizedReading]:
    """Map a device reading onto the wall clock.

    The first reading of a session anchors the offset at ``now_millis``; every
    later reading keeps the device's own spacing relative to that anchor, so
    the device clock epoch (boot time, rollover point) does not matter.

    Args:
        offset: Session offset, or None if no valid reading was seen yet
        reading: Parsed device reading
        now_millis: Host epoch milliseconds, only used when capturing the offset

    Returns:
        Tuple of (offset to keep for the session, normalized reading)
    """
    if offset is None:
        offset = ClockOffset(
            device_millis_at_start=reading.device_millis,
            wall_millis_at_start=now_millis,
        )

    wall_millis = (
        reading.device_millis - offset.device_millis_at_start + offset.wall_millis_at_start
    )
    return offset, NormalizedReading(wall_millis=wall_millis, value=reading.value)


def sentinel_reading(now_millis: int) -> NormalizedReading:
    """Zero-value reading published in place of a frame that failed to parse."""
    return NormalizedReading(wall_millis=now_millis, value=0.0)
