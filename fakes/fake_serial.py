"""Fake serial port that simulates the ECG front-end firmware.

The simulator speaks the device's wire protocol: it emits
``(<millis> <value>)\\n`` lines one byte per ``read(1)`` call and records the
``OK\\n`` heartbeats written by the host. Tests can script exact byte streams,
inject read/write failures, simulate unplugging, and drive time with a
``FakeClock`` so heartbeat timing is deterministic.
"""

import logging
import math
import threading
import time
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ecg_link.errors import OpenError
from ecg_link.transport import Transport

logger = logging.getLogger(__name__)


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds


def ecg_frame(device_millis: int, value: float) -> bytes:
    """Encode one reading exactly as the firmware prints it."""
    return f"({device_millis} {value})\n".encode("ascii")


def synthetic_ecg_value(t_s: float, heart_rate_bpm: float = 72.0) -> float:
    """Crude PQRST-shaped waveform around a 512 ADC baseline."""
    phase = (t_s * heart_rate_bpm / 60.0) % 1.0
    p = 30.0 * math.exp(-(((phase - 0.20) / 0.025) ** 2))
    q = -40.0 * math.exp(-(((phase - 0.36) / 0.008) ** 2))
    r = 380.0 * math.exp(-(((phase - 0.40) / 0.010) ** 2))
    s = -80.0 * math.exp(-(((phase - 0.44) / 0.010) ** 2))
    t = 60.0 * math.exp(-(((phase - 0.65) / 0.040) ** 2))
    return round(512.0 + p + q + r + s + t, 2)


class FakeSerial:
    """Deterministic simulator of the ECG front-end serial port.

    Implements:
    - Byte-at-a-time reads of queued output (``feed()`` / ``feed_frames()``)
    - Read timeout: ``read()`` returns b"" when nothing is queued
    - Optional synthetic stream generation at a fixed sample rate
    - Heartbeat capture with timestamps from an injectable clock
    - Fault injection: failing reads, failing writes, unplugging
    """

    def __init__(
        self,
        output: Union[bytes, Iterable[bytes]] = b"",
        clock: Optional[FakeClock] = None,
        byte_interval_s: float = 0.0,
        stream_hz: Optional[float] = None,
        device_start_ms: int = 0,
    ) -> None:
        """Initialize fake device.

        Args:
            output: Bytes (or chunks of bytes) the device will send to the host
            clock: Clock used to timestamp writes; advanced by byte_interval_s per read byte
            byte_interval_s: Simulated time taken by each byte on the wire
            stream_hz: If set, generate synthetic frames at this rate once
                       scripted output is exhausted (real-time sleeps)
            device_start_ms: Device clock value of the first synthetic frame
        """
        self._output = bytearray()
        self._lock = threading.Lock()
        self.clock = clock
        self.byte_interval_s = byte_interval_s
        self.stream_hz = stream_hz
        self._device_ms = device_start_ms

        # Host -> device traffic
        self.writes: List[Tuple[float, bytes]] = []

        # Fault injection
        self.fail_reads = False
        self.fail_writes = False
        self.fail_reads_after: Optional[int] = None
        self._bytes_read = 0

        self.is_open = True
        self.timeout = 3.0

        self.feed(output)

    # ========================================================================
    # Scripting
    # ========================================================================

    def feed(self, data: Union[bytes, Iterable[bytes]]) -> None:
        """Queue raw bytes for the host to read."""
        chunks = [data] if isinstance(data, (bytes, bytearray)) else list(data)
        with self._lock:
            for chunk in chunks:
                self._output.extend(chunk)

    def feed_frames(self, frames: Iterable[str]) -> None:
        """Queue text frames, appending the LF terminator to each."""
        self.feed([f"{frame}\n".encode("utf-8") for frame in frames])

    def unplug(self) -> None:
        """Simulate the cable being pulled: every later read and write fails."""
        self.fail_reads = True
        self.fail_writes = True

    @property
    def pending_output(self) -> int:
        with self._lock:
            return len(self._output)

    # ========================================================================
    # SerialLike Interface
    # ========================================================================

    def write(self, data: bytes) -> int:
        if not self.is_open:
            raise RuntimeError("Port is closed")
        if self.fail_writes:
            raise OSError("Write failed: device disconnected")

        now = self.clock() if self.clock else time.monotonic()
        self.writes.append((now, bytes(data)))
        logger.debug(f"FakeSerial received: {data!r}")
        return len(data)

    def read(self, size: int = 1) -> bytes:
        if not self.is_open:
            raise RuntimeError("Port is closed")
        if self.fail_reads:
            raise OSError("Read failed: device disconnected")
        if self.fail_reads_after is not None and self._bytes_read >= self.fail_reads_after:
            raise OSError("Read failed: device disconnected")

        with self._lock:
            if not self._output and self.stream_hz:
                self._generate_frame()
            if not self._output:
                return b""  # Timeout

            data = bytes(self._output[:size])
            del self._output[:size]

        self._bytes_read += len(data)
        if self.clock and self.byte_interval_s:
            self.clock.advance(self.byte_interval_s * len(data))
        return data

    def flush(self) -> None:
        """Flush output buffer (no-op, writes are immediate)."""
        pass

    def close(self) -> None:
        self.is_open = False
        logger.debug("FakeSerial closed")

    # ========================================================================
    # Inspection
    # ========================================================================

    @property
    def heartbeat_times(self) -> List[float]:
        """Clock values at which ``OK\\n`` was written."""
        return [t for t, data in self.writes if data == b"OK\n"]

    # ========================================================================
    # Internal: Synthetic Stream
    # ========================================================================

    def _generate_frame(self) -> None:
        assert self.stream_hz is not None
        period_s = 1.0 / self.stream_hz
        time.sleep(period_s)
        self._device_ms += int(round(period_s * 1000))
        value = synthetic_ecg_value(self._device_ms / 1000.0)
        self._output.extend(ecg_frame(self._device_ms, value))


class FakePortRegistry:
    """Stand-in for port enumeration and opening.

    Each port name maps to a queue of FakeSerial instances; every successful
    open hands out the next one, so a test can script one device per
    connection session.
    """

    def __init__(self) -> None:
        self._ports: Dict[str, List[FakeSerial]] = {}
        self.open_attempts: List[str] = []
        self.busy: set = set()

    def plug(self, port: str, *devices: FakeSerial) -> None:
        self._ports.setdefault(port, []).extend(devices)

    def remove(self, port: str) -> None:
        self._ports.pop(port, None)

    def list_ports(self) -> List[str]:
        return list(self._ports)

    def open(self, port: str) -> Transport:
        self.open_attempts.append(port)
        if port in self.busy:
            raise OpenError(f"Failed to open {port}: port busy")

        devices = self._ports.get(port)
        if not devices:
            raise OpenError(f"Failed to open {port}: no such device")
        return Transport(devices.pop(0), port_name=port)
