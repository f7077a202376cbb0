"""
ecg_link - Serial acquisition library for an ECG front-end.

Discovers the device, keeps the link alive with heartbeats, frames and parses
its ``(<millis> <value>)`` lines, maps the device clock onto wall-clock time
and hands normalized readings to a subscriber and a per-session CSV log.
"""

from ecg_link.controller import ConnectionManager
from ecg_link.errors import (
    DecodeError,
    DiscoveryError,
    EcgLinkError,
    LinkError,
    OpenError,
    ParseError,
    RowRejected,
    StorageError,
)
from ecg_link.models import (
    ClockOffset,
    Connected,
    ConnectionState,
    DeviceReading,
    Disconnected,
    NormalizedReading,
)
from ecg_link.publisher import Event, EventBus, EventSink

__version__ = "0.1.0"

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "Connected",
    "Disconnected",
    "DeviceReading",
    "NormalizedReading",
    "ClockOffset",
    "Event",
    "EventBus",
    "EventSink",
    "EcgLinkError",
    "DiscoveryError",
    "OpenError",
    "LinkError",
    "ParseError",
    "DecodeError",
    "RowRejected",
    "StorageError",
]
