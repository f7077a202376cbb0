"""Row format for session log files.

Each row is ``<RFC-3339 timestamp>,<value>`` with no header. Timestamps are
rendered in the host's local timezone with millisecond precision, e.g.
``2024-05-01T14:03:22.517+02:00``.
"""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import List, Optional

from ecg_link.errors import RowRejected
from ecg_link.models import NormalizedReading

# Column names used when loading a session file (the file itself has no header)
COLUMNS = ["timestamp", "value"]


def millis_to_rfc3339(wall_millis: int, tz: Optional[tzinfo] = None) -> str:
    """Format epoch milliseconds as an RFC-3339 timestamp.

    Args:
        wall_millis: Unix epoch milliseconds
        tz: Target timezone. None means the host's local timezone.

    Returns:
        ISO 8601 / RFC-3339 string with explicit UTC offset

    Raises:
        RowRejected: If the instant is outside the range datetime can represent
    """
    seconds, millis = divmod(wall_millis, 1000)
    try:
        ts = datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)
        ts = ts.astimezone(tz) if tz is not None else ts.astimezone()
    except (OverflowError, OSError, ValueError) as e:
        raise RowRejected(f"Timestamp out of range: {wall_millis} ms ({e})") from e
    return ts.isoformat(timespec="milliseconds")


def reading_to_row(reading: NormalizedReading, tz: Optional[tzinfo] = None) -> List[str]:
    """Convert a normalized reading to a CSV row."""
    return [millis_to_rfc3339(reading.wall_millis, tz), repr(float(reading.value))]
