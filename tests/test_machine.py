"""Tests for the pure connection state machine."""

from ecg_link import machine
from ecg_link.models import ClockOffset, Connected, Disconnected, NormalizedReading


def test_port_opened_from_disconnected() -> None:
    """Test opening a port starts a session and signals a reset."""
    state, effects = machine.port_opened(Disconnected())

    assert state == Connected(last_keepalive_at=None, offset=None)
    assert effects == [machine.PublishReset(), machine.OpenSession()]


def test_port_opened_while_connected_closes_old_session_first() -> None:
    """Test a new session is never opened before the old one is closed."""
    old = Connected(last_keepalive_at=10.0, offset=ClockOffset(1, 2))

    state, effects = machine.port_opened(old)

    assert state == Connected()
    assert effects == [machine.CloseSession(), machine.PublishReset(), machine.OpenSession()]


def test_link_lost_closes_session_once() -> None:
    """Test teardown emits one CloseSession and repeating it is a no-op."""
    state, effects = machine.link_lost(Connected())
    assert state == Disconnected()
    assert effects == [machine.CloseSession()]

    state, effects = machine.link_lost(state)
    assert state == Disconnected()
    assert effects == []


def test_heartbeat_due_immediately_after_connect() -> None:
    """Test the first heartbeat of a connection is sent right away."""
    assert machine.heartbeat_due(Connected(), now=0.0)
    assert not machine.heartbeat_due(Disconnected(), now=0.0)


def test_heartbeat_interval() -> None:
    """Test heartbeats are due only after 500 ms."""
    state = machine.heartbeat_sent(Connected(), now=100.0)

    assert state.last_keepalive_at == 100.0
    assert not machine.heartbeat_due(state, now=100.25)
    assert not machine.heartbeat_due(state, now=100.4990234375)
    assert machine.heartbeat_due(state, now=100.5)
    assert machine.heartbeat_due(state, now=101.0)


def test_heartbeat_sent_ignored_when_disconnected() -> None:
    """Test heartbeat bookkeeping does not resurrect a connection."""
    assert machine.heartbeat_sent(Disconnected(), now=1.0) == Disconnected()


def test_first_valid_frame_captures_offset() -> None:
    """Test the offset is captured by the first valid frame and persisted."""
    state, effects = machine.frame_received(Connected(), "(1000 0.5)\n", now_millis=5_000_000)

    reading = NormalizedReading(5_000_000, 0.5)
    assert state.offset == ClockOffset(1000, 5_000_000)
    assert effects == [machine.PublishReading(reading), machine.PersistReading(reading)]


def test_offset_is_not_recaptured() -> None:
    """Test later frames reuse the session offset."""
    state, _ = machine.frame_received(Connected(), "(1000 0.5)", now_millis=5_000_000)
    state2, effects = machine.frame_received(state, "(1200 0.7)", now_millis=7_777_777)

    assert state2.offset == state.offset
    assert effects[0].reading == NormalizedReading(5_000_200, 0.7)


def test_malformed_frame_publishes_sentinel_only() -> None:
    """Test a parse failure yields a sentinel that is never persisted."""
    state = Connected(offset=ClockOffset(1000, 5_000_000))

    next_state, effects = machine.frame_received(state, "()\n", now_millis=6_000_000)

    assert next_state == state
    assert effects == [
        machine.PublishReading(NormalizedReading(6_000_000, 0.0), sentinel=True)
    ]


def test_malformed_frame_does_not_capture_offset() -> None:
    """Test the offset comes from the first *valid* reading."""
    state, _ = machine.frame_received(Connected(), "garbage", now_millis=1)
    assert state.offset is None

    state, _ = machine.frame_received(state, "(300 1.0)", now_millis=2)
    assert state.offset == ClockOffset(300, 2)


def test_sequence_with_one_malformed_frame() -> None:
    """Test three frames give three published readings and two persisted rows."""
    state = Connected()
    published, persisted = [], []

    for frame in ["(100 0.1)", "()", "(200 0.2)"]:
        state, effects = machine.frame_received(state, frame, now_millis=5_000_000)
        published += [e for e in effects if isinstance(e, machine.PublishReading)]
        persisted += [e for e in effects if isinstance(e, machine.PersistReading)]

    assert len(published) == 3
    assert published[1].sentinel
    assert [p.reading for p in persisted] == [
        NormalizedReading(5_000_000, 0.1),
        NormalizedReading(5_000_100, 0.2),
    ]


def test_frames_ignored_while_disconnected() -> None:
    """Test no effects are produced for frames without a connection."""
    assert machine.frame_received(Disconnected(), "(1 1.0)", now_millis=0) == (Disconnected(), [])
