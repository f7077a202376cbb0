"""Data models for the ECG serial link library."""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class DeviceReading:
    """A reading exactly as reported by the sensor.

    Attributes:
        device_millis: Device clock in milliseconds (free-running, e.g. since boot).
        value: Sampled ECG value.
    """

    device_millis: int
    value: float


@dataclass(frozen=True)
class NormalizedReading:
    """A device reading mapped onto host wall-clock time.

    This is what gets persisted and published.

    Attributes:
        wall_millis: Unix epoch milliseconds on the host clock.
        value: Sampled ECG value.
    """

    wall_millis: int
    value: float

    def to_payload(self) -> dict:
        """Build the ``new-reading`` event payload."""
        return {"milliseconds": self.wall_millis, "value": self.value}


@dataclass(frozen=True)
class ClockOffset:
    """Fixed mapping from device clock to wall clock, captured once per session.

    Attributes:
        device_millis_at_start: Device clock of the first valid reading.
        wall_millis_at_start: Host epoch milliseconds when that reading was parsed.
    """

    device_millis_at_start: int
    wall_millis_at_start: int


@dataclass(frozen=True)
class Disconnected:
    """No serial handle is held."""

    @property
    def name(self) -> str:
        return "disconnected"


@dataclass(frozen=True)
class Connected:
    """A serial handle is open and a session is live.

    Attributes:
        last_keepalive_at: Monotonic time of the last heartbeat write, or None
            if no heartbeat has been sent on this connection yet.
        offset: Clock offset for this session; None until the first valid reading.
    """

    last_keepalive_at: Optional[float] = None
    offset: Optional[ClockOffset] = None

    @property
    def name(self) -> str:
        return "connected"


ConnectionState = Union[Disconnected, Connected]
