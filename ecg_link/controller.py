"""Connection manager: discovery, reconnection and the acquisition loop."""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Union

from ecg_link import machine, protocol
from ecg_link.clock import wall_clock_millis
from ecg_link.errors import DiscoveryError, LinkError, OpenError, RowRejected, StorageError
from ecg_link.framing import LineFramer
from ecg_link.models import ClockOffset, Connected, ConnectionState, Disconnected, NormalizedReading
from ecg_link.publisher import (
    Event,
    EventSink,
    NullSink,
    new_reading_event,
    reset_monitor_event,
    storage_error_event,
)
from ecg_link.transport import Transport, discover_ports

logger = logging.getLogger(__name__)


class SessionLike(Protocol):
    """What the manager needs from a session log (see session_store.SessionRecorder)."""

    @property
    def path(self) -> Path:
        ...

    def append(self, reading: NormalizedReading) -> None:
        ...

    def close(self) -> bool:
        ...


@dataclass
class AcquisitionStats:
    """Counters for status reporting."""

    connects: int = 0
    disconnects: int = 0
    heartbeats: int = 0
    frames: int = 0
    sentinels: int = 0
    rows_written: int = 0
    rows_dropped: int = 0
    storage_errors: int = 0
    decode_errors: int = 0
    overlong_frames: int = 0


class ConnectionManager:
    """Owns the serial handle and the current session; drives the pipeline.

    One instance runs on one background thread (``start()``) or is stepped
    manually (``step()``). Per iteration while connected: heartbeat if due,
    read one frame, parse, reconcile, publish, persist. Any link failure
    tears the session down and returns to discovery.
    """

    def __init__(
        self,
        sink: Optional[EventSink] = None,
        records_dir: Union[str, Path] = "records",
        preferred_port: Optional[str] = None,
        baud: int = protocol.BAUD_RATE,
        read_timeout_s: float = protocol.READ_TIMEOUT_S,
        port_lister: Callable[[], List[str]] = discover_ports,
        port_opener: Optional[Callable[[str], Transport]] = None,
        session_factory: Optional[Callable[[], SessionLike]] = None,
        monotonic: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], int] = wall_clock_millis,
        discovery_retry_s: float = protocol.DISCOVERY_RETRY_S,
        open_retry_s: float = protocol.OPEN_RETRY_S,
    ) -> None:
        """Initialize manager (does not start automatically).

        Args:
            sink: Receiver of reset-monitor / new-reading / storage-error events
            records_dir: Directory for session log files
            preferred_port: Port to use when present; otherwise the first one found
            baud: Baud rate. Default 57600.
            read_timeout_s: Per-byte read timeout. Default 3s.
            port_lister: Returns available port names (injectable for tests)
            port_opener: Opens a port name into a Transport (injectable for tests)
            session_factory: Creates a new session log (injectable for tests)
            monotonic: Clock for heartbeat scheduling and storage backoff
            wall_clock: Epoch-milliseconds clock for reading timestamps
            discovery_retry_s: Wait after finding no ports
            open_retry_s: Wait after a failed open
        """
        self._sink: EventSink = sink or NullSink()
        self._records_dir = Path(records_dir)
        self._preferred_port = preferred_port
        self._baud = baud
        self._read_timeout_s = read_timeout_s
        self._port_lister = port_lister
        self._port_opener = port_opener or self._open_serial
        self._session_factory = session_factory or self._create_session
        self._monotonic = monotonic
        self._wall_clock = wall_clock
        self._discovery_retry_s = discovery_retry_s
        self._open_retry_s = open_retry_s

        self._state: ConnectionState = Disconnected()
        self._transport: Optional[Transport] = None
        self._session: Optional[SessionLike] = None
        self._framer = LineFramer()
        self._stats = AcquisitionStats()

        # Storage retry with exponential backoff while the link stays up
        self._storage_retry_at: Optional[float] = None
        self._storage_backoff_s = protocol.STORAGE_RETRY_MIN_S

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self) -> None:
        """Start the acquisition loop on a background thread.

        Raises:
            RuntimeError: If already running
        """
        if self._thread and self._thread.is_alive():
            raise RuntimeError("Acquisition already running")

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run,
            name="EcgAcquisition",
            daemon=True,
        )
        self._thread.start()
        logger.info("Acquisition thread started")

    def stop(self) -> None:
        """Cancel the loop, flush the current session and release the port.

        Cancellation is cooperative: a blocking read may take up to the read
        timeout to notice it.
        """
        self._stop_event.set()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=protocol.THREAD_JOIN_TIMEOUT_S)
            if self._thread.is_alive():
                logger.warning("Acquisition thread did not stop cleanly")
                return
        self._thread = None

        # Loop not running (or already exited): make sure teardown happened
        self._drop_link("stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        """Run the acquisition loop until ``stop()`` is called."""
        logger.info(f"Acquisition loop started (thread {threading.get_ident()})")

        while not self._stop_event.is_set():
            try:
                self.step()
            except Exception as e:
                logger.error(f"Error in acquisition loop: {e}", exc_info=True)
                self._drop_link("unexpected error")
                # Don't spin on a persistent fault
                self._stop_event.wait(timeout=0.1)

        self._drop_link("stopped")
        logger.info("Acquisition loop stopped")

    # ========================================================================
    # State Machine Driver
    # ========================================================================

    def step(self) -> None:
        """Run one loop iteration: connect if disconnected, else heartbeat + one frame."""
        if isinstance(self._state, Disconnected):
            self._try_connect()
            return

        assert self._transport is not None

        now = self._monotonic()
        if machine.heartbeat_due(self._state, now):
            try:
                self._transport.send_heartbeat()
            except LinkError as e:
                logger.warning(f"Heartbeat failed: {e}")
                self._drop_link("heartbeat failed")
                return
            self._state = machine.heartbeat_sent(self._state, now)
            self._stats.heartbeats += 1

        try:
            frame = self._framer.read_frame(self._transport)
        except LinkError as e:
            logger.warning(f"Read failed: {e}")
            self._drop_link("read failed")
            return
        finally:
            self._stats.decode_errors = self._framer.decode_errors
            self._stats.overlong_frames = self._framer.overlong_frames

        self._stats.frames += 1
        self._state, effects = machine.frame_received(self._state, frame, self._wall_clock())
        self._apply(effects)

    def _try_connect(self) -> None:
        try:
            ports = self._port_lister()
        except DiscoveryError as e:
            logger.warning(f"Port discovery failed: {e}")
            self._stop_event.wait(timeout=self._discovery_retry_s)
            return

        if not ports:
            logger.debug("No serial ports found, waiting...")
            self._stop_event.wait(timeout=self._discovery_retry_s)
            return

        port = self._choose_port(ports)
        try:
            transport = self._port_opener(port)
        except OpenError as e:
            logger.warning(f"Could not open {port}: {e}")
            self._stop_event.wait(timeout=self._open_retry_s)
            return

        logger.info(f"Connected to {port}")
        self._transport = transport
        self._framer.reset()
        self._stats.connects += 1

        self._state, effects = machine.port_opened(self._state)
        self._apply(effects)

    def _choose_port(self, ports: List[str]) -> str:
        if self._preferred_port and self._preferred_port in ports:
            return self._preferred_port
        return ports[0]

    def _drop_link(self, reason: str) -> None:
        """Transition to Disconnected; idempotent."""
        if self._transport is not None:
            self._transport.close()
            self._transport = None

        if isinstance(self._state, Connected):
            logger.info(f"Link lost ({reason}), tearing down session")
            self._stats.disconnects += 1

        self._state, effects = machine.link_lost(self._state)
        self._apply(effects)
        self._framer.reset()

    # ========================================================================
    # Side Effects
    # ========================================================================

    def _apply(self, effects: List[machine.Effect]) -> None:
        for effect in effects:
            if isinstance(effect, machine.OpenSession):
                self._open_session()
            elif isinstance(effect, machine.CloseSession):
                self._close_session()
            elif isinstance(effect, machine.PublishReset):
                self._publish(reset_monitor_event())
            elif isinstance(effect, machine.PublishReading):
                if effect.sentinel:
                    self._stats.sentinels += 1
                self._publish(new_reading_event(effect.reading))
            elif isinstance(effect, machine.PersistReading):
                self._persist(effect.reading)

    def _publish(self, event: Event) -> None:
        """Best-effort delivery; a failing sink never stops acquisition."""
        try:
            self._sink.publish(event)
        except Exception as e:
            logger.warning(f"Failed to publish {event.name}: {e}", exc_info=True)

    def _open_session(self) -> None:
        # Never two live writers
        self._release_session()

        try:
            self._session = self._session_factory()
        except StorageError as e:
            self._report_storage_error(f"Cannot start session log: {e}")
            return

        # Backoff resets only once a row has actually been written
        self._storage_retry_at = None

    def _close_session(self) -> None:
        self._release_session()
        self._storage_retry_at = None
        self._storage_backoff_s = protocol.STORAGE_RETRY_MIN_S

    def _release_session(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return

        try:
            session.close()
        except StorageError as e:
            logger.warning(f"Session log did not flush cleanly: {e}")
            self._stats.storage_errors += 1

    def _persist(self, reading: NormalizedReading) -> None:
        if self._session is None and self._storage_retry_due():
            logger.info("Retrying session log creation")
            self._open_session()

        if self._session is None:
            self._stats.rows_dropped += 1
            return

        try:
            self._session.append(reading)
        except RowRejected as e:
            # Bad data point, not a storage fault: keep the session
            logger.warning(f"Reading not persisted: {e}")
            self._stats.rows_dropped += 1
            return
        except StorageError as e:
            self._stats.rows_dropped += 1
            self._release_session()
            self._report_storage_error(f"Session log write failed: {e}")
            return

        self._stats.rows_written += 1
        self._storage_backoff_s = protocol.STORAGE_RETRY_MIN_S

    def _storage_retry_due(self) -> bool:
        return self._storage_retry_at is not None and self._monotonic() >= self._storage_retry_at

    def _report_storage_error(self, message: str) -> None:
        logger.warning(f"{message} (retrying in {self._storage_backoff_s:.0f}s)")
        self._stats.storage_errors += 1
        self._storage_retry_at = self._monotonic() + self._storage_backoff_s
        self._storage_backoff_s = min(
            self._storage_backoff_s * 2, protocol.STORAGE_RETRY_MAX_S
        )
        self._publish(storage_error_event(message))

    # ========================================================================
    # Defaults
    # ========================================================================

    def _open_serial(self, port: str) -> Transport:
        return Transport.open(port, baud=self._baud, timeout_s=self._read_timeout_s)

    def _create_session(self) -> SessionLike:
        # Imported here: session_store depends on ecg_link models
        from session_store.recorder import SessionRecorder

        return SessionRecorder.create(self._records_dir)

    # ========================================================================
    # Status
    # ========================================================================

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    def is_connected(self) -> bool:
        return isinstance(self._state, Connected)

    @property
    def port(self) -> Optional[str]:
        """Name of the open port, or None."""
        transport = self._transport
        return transport.port_name if transport is not None else None

    @property
    def session_path(self) -> Optional[Path]:
        """Log file of the live session, or None."""
        session = self._session
        return session.path if session is not None else None

    @property
    def clock_offset(self) -> Optional[ClockOffset]:
        return machine.current_offset(self._state)

    @property
    def stats(self) -> dict:
        return asdict(self._stats)
