"""Pure transition functions for the connection state machine.

Each transition takes the current ``ConnectionState`` plus an input and returns
the next state together with the side effects the connection manager must
carry out. Nothing in here touches a port, a file or a clock.
"""

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

from ecg_link import protocol
from ecg_link.clock import reconcile, sentinel_reading
from ecg_link.errors import ParseError
from ecg_link.models import (
    ClockOffset,
    Connected,
    ConnectionState,
    Disconnected,
    NormalizedReading,
)
from ecg_link.parsing import parse_reading


@dataclass(frozen=True)
class OpenSession:
    """Create a fresh session log file."""


@dataclass(frozen=True)
class CloseSession:
    """Flush and release the current session log file."""


@dataclass(frozen=True)
class PublishReset:
    """Tell subscribers a new session started."""


@dataclass(frozen=True)
class PublishReading:
    """Forward a reading (real or sentinel) to subscribers."""

    reading: NormalizedReading
    sentinel: bool = False


@dataclass(frozen=True)
class PersistReading:
    """Append a reading to the session log."""

    reading: NormalizedReading


Effect = Union[OpenSession, CloseSession, PublishReset, PublishReading, PersistReading]
Transition = Tuple[ConnectionState, List[Effect]]


def port_opened(state: ConnectionState) -> Transition:
    """A port was opened successfully.

    A still-live session is closed before the new one is opened, so two
    unflushed writers never coexist. The reset goes out before the session
    is opened, so a storage error raised while opening reaches subscribers
    after it. The clock offset starts empty.
    """
    effects: List[Effect] = []
    if isinstance(state, Connected):
        effects.append(CloseSession())
    effects.extend([PublishReset(), OpenSession()])
    return Connected(), effects


def link_lost(state: ConnectionState) -> Transition:
    """Any I/O failure (or cancellation) on the open port."""
    if isinstance(state, Disconnected):
        return state, []
    return Disconnected(), [CloseSession()]


def heartbeat_due(
    state: ConnectionState,
    now: float,
    interval_ms: int = protocol.HEARTBEAT_INTERVAL_MS,
) -> bool:
    """Whether a heartbeat should be written at monotonic time ``now``."""
    if not isinstance(state, Connected):
        return False
    if state.last_keepalive_at is None:
        return True
    return (now - state.last_keepalive_at) * 1000.0 >= interval_ms


def heartbeat_sent(state: ConnectionState, now: float) -> ConnectionState:
    if not isinstance(state, Connected):
        return state
    return replace(state, last_keepalive_at=now)


def frame_received(
    state: ConnectionState, frame: str, now_millis: int
) -> Transition:
    """Process one frame read while connected.

    A valid frame is reconciled against the session clock offset (capturing it
    on the first valid frame), then published and persisted. A malformed frame
    degrades to a published zero-value sentinel that is never persisted.

    Args:
        state: Current state; frames are ignored unless Connected
        frame: Raw frame text, surrounding whitespace allowed
        now_millis: Host epoch milliseconds

    Returns:
        Tuple of (next state, effects)
    """
    if not isinstance(state, Connected):
        return state, []

    try:
        device_reading = parse_reading(frame.strip())
    except ParseError:
        return state, [PublishReading(sentinel_reading(now_millis), sentinel=True)]

    offset, reading = reconcile(state.offset, device_reading, now_millis)
    next_state = state if offset is state.offset else replace(state, offset=offset)
    return next_state, [PublishReading(reading), PersistReading(reading)]


def current_offset(state: ConnectionState) -> Optional[ClockOffset]:
    return state.offset if isinstance(state, Connected) else None
