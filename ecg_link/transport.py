"""Serial transport layer for ECG front-end communication."""

import logging
from typing import List, Protocol

import serial
from serial.tools import list_ports

from ecg_link import protocol
from ecg_link.errors import DiscoveryError, LinkError, OpenError

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Protocol for serial port interface (allows test doubles)."""

    def write(self, data: bytes) -> int:
        """Write bytes to serial port."""
        ...

    def read(self, size: int = 1) -> bytes:
        """Read up to size bytes from serial port."""
        ...

    def flush(self) -> None:
        """Flush output buffer (force transmission)."""
        ...

    def close(self) -> None:
        """Close serial port."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if port is open."""
        ...


def discover_ports() -> List[str]:
    """List serial port device names currently present on the host.

    Returns:
        Device names (e.g., ["/dev/ttyACM0", "/dev/ttyUSB0"]), possibly empty

    Raises:
        DiscoveryError: If the OS port enumeration fails
    """
    try:
        ports = [p.device for p in list_ports.comports()]
    except Exception as e:
        raise DiscoveryError(f"Failed to enumerate serial ports: {e}") from e

    logger.debug(f"Discovered serial ports: {ports}")
    return ports


class Transport:
    """Wrapper around pyserial with protocol-specific helpers.

    The device is read one byte at a time; the sample rate is low enough
    that per-byte reads keep up with the stream.
    """

    def __init__(self, serial_port: SerialLike, port_name: str = "") -> None:
        """Initialize transport with a serial port instance.

        Args:
            serial_port: Object implementing SerialLike protocol
                        (e.g., serial.Serial or FakeSerial for testing)
            port_name: Device name, for logging and status reporting
        """
        self._port = serial_port
        self.port_name = port_name

    @classmethod
    def open(
        cls,
        port: str,
        baud: int = protocol.BAUD_RATE,
        timeout_s: float = protocol.READ_TIMEOUT_S,
    ) -> "Transport":
        """Open a real serial port.

        Args:
            port: Serial port device name (e.g., "/dev/ttyACM0")
            baud: Baud rate. Default 57600 matches the front-end firmware.
            timeout_s: Per-read timeout in seconds. Default 3s.

        Returns:
            Transport instance wrapping opened serial port

        Raises:
            OpenError: If port cannot be opened
        """
        try:
            ser = serial.Serial(
                port=port,
                baudrate=baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=timeout_s,
                write_timeout=timeout_s,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False,
            )
            logger.info(f"Opened serial port {port} at {baud} baud, timeout={timeout_s}s")
            return cls(ser, port_name=port)
        except Exception as e:
            raise OpenError(f"Failed to open {port} at {baud} baud: {e}") from e

    def close(self) -> None:
        """Close the serial port. Errors from an already-dead handle are logged."""
        try:
            if self._port.is_open:
                self._port.close()
                logger.info(f"Closed serial port {self.port_name}")
        except (OSError, serial.SerialException) as e:
            logger.warning(f"Error closing serial port {self.port_name}: {e}")

    @property
    def is_open(self) -> bool:
        """Check if port is currently open."""
        return self._port.is_open

    def write_bytes(self, data: bytes) -> None:
        """Write raw bytes to port.

        Args:
            data: Raw bytes to send

        Raises:
            LinkError: If port is closed or write fails
        """
        if not self._port.is_open:
            raise LinkError("Serial port is not open")

        try:
            sent = self._port.write(data)
            self._port.flush()  # Force immediate transmission
            logger.debug(f"Sent {sent} bytes: {data!r}")
        except Exception as e:
            raise LinkError(f"Failed to write to port: {e}") from e

    def send_heartbeat(self) -> None:
        """Send the ``OK`` liveness heartbeat.

        Raises:
            LinkError: If write fails
        """
        self.write_bytes(protocol.HEARTBEAT)

    def read_byte(self) -> bytes:
        """Read exactly one byte.

        Returns:
            A single byte

        Raises:
            LinkError: If port is closed, read fails, or the read times out
        """
        if not self._port.is_open:
            raise LinkError("Serial port is not open")

        try:
            data = self._port.read(1)
        except Exception as e:
            raise LinkError(f"Failed to read from port: {e}") from e

        if not data:
            raise LinkError("Timed out waiting for data")
        return data
