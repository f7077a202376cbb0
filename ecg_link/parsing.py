"""Pure functions for parsing ECG reading frames."""

import logging
from typing import Optional

from ecg_link import protocol
from ecg_link.errors import ParseError
from ecg_link.models import DeviceReading

logger = logging.getLogger(__name__)


def parse_reading(frame: str) -> DeviceReading:
    """Parse one trimmed frame into a device reading.

    Expected format: (<millis> <value>)
    Example: "(123456 512.25)"

    Args:
        frame: Frame text with the line terminator already stripped

    Returns:
        DeviceReading with the device clock and value

    Raises:
        ParseError: If the frame is empty, not parenthesised, has a missing
                    field, or a field is not numeric
    """
    if not frame:
        raise ParseError("Empty frame")

    if not (
        len(frame) >= 2
        and frame.startswith(protocol.FRAME_OPEN)
        and frame.endswith(protocol.FRAME_CLOSE)
    ):
        raise ParseError(f"Frame is not enclosed in parentheses: {frame!r}")

    interior = frame[1:-1]
    millis_str, sep, value_str = interior.partition(protocol.FIELD_SEPARATOR)
    if not sep:
        raise ParseError(f"Frame is missing the value field: {frame!r}")

    return DeviceReading(
        device_millis=parse_device_millis(millis_str),
        value=parse_value(value_str),
    )


def parse_device_millis(text: str) -> int:
    """Parse the device clock field as a signed 64-bit integer.

    Raises:
        ParseError: If text is not an integer literal or overflows int64
    """
    if not protocol.RE_DEVICE_MILLIS.fullmatch(text):
        raise ParseError(f"Device millis is not an integer: {text!r}")

    millis = int(text)
    if not (protocol.INT64_MIN <= millis <= protocol.INT64_MAX):
        raise ParseError(f"Device millis out of int64 range: {text!r}")
    return millis


def parse_value(text: str) -> float:
    """Parse the sample field as a 64-bit float.

    Raises:
        ParseError: If text is not a float literal
    """
    if not protocol.RE_VALUE.fullmatch(text):
        raise ParseError(f"Value is not a number: {text!r}")

    try:
        return float(text)
    except ValueError as e:
        raise ParseError(f"Value is not a number: {text!r}") from e


def try_parse_reading(frame: str) -> Optional[DeviceReading]:
    """Parse a frame, returning None instead of raising on malformed input."""
    try:
        return parse_reading(frame)
    except ParseError as e:
        logger.debug(f"Skipping unparseable frame: {e}")
        return None
