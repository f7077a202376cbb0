"""Byte-level line framing for the serial link.

Bytes are fed through an incremental UTF-8 decoder, so a lead byte of a
multi-byte character is held until its continuation bytes arrive instead of
being dropped. Only bytes that can never decode are discarded.
"""

import codecs
import logging
from enum import Enum
from typing import List, Optional

from ecg_link import protocol
from ecg_link.errors import DecodeError
from ecg_link.transport import Transport

logger = logging.getLogger(__name__)


class FramerState(Enum):
    """Line framer states."""

    AWAITING_FRAME = "awaiting_frame"
    FRAME_COMPLETE = "frame_complete"


class LineFramer:
    """Accumulates decoded characters until a newline completes a frame."""

    def __init__(
        self,
        encoding: str = protocol.TEXT_ENCODING,
        max_frame_chars: int = protocol.MAX_FRAME_CHARS,
    ) -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
        self._max_frame_chars = max_frame_chars
        self._buffer: List[str] = []
        self._length = 0
        self._state = FramerState.AWAITING_FRAME
        self.decode_errors = 0
        self.overlong_frames = 0

    @property
    def state(self) -> FramerState:
        """Current framer state."""
        return self._state

    @property
    def pending(self) -> str:
        """Characters accumulated for the frame in progress."""
        return "".join(self._buffer)

    def reset(self) -> None:
        """Drop any partial frame and pending multi-byte sequence."""
        self._decoder.reset()
        self._buffer.clear()
        self._length = 0
        self._state = FramerState.AWAITING_FRAME

    def push(self, byte: bytes) -> Optional[str]:
        """Feed one byte to the framer.

        Args:
            byte: A single byte from the serial link

        Returns:
            The complete frame (newline included) once a newline is decoded,
            the accumulated text if it reaches the frame length limit first,
            otherwise None
        """
        if self._state is FramerState.FRAME_COMPLETE:
            self._buffer.clear()
            self._length = 0
            self._state = FramerState.AWAITING_FRAME

        try:
            text = self._decode(byte)
        except DecodeError as e:
            # The byte that broke the sequence may itself start a valid one
            self.decode_errors += 1
            logger.debug(f"Discarding undecodable bytes: {e}")
            try:
                text = self._decode(byte)
            except DecodeError:
                return None

        if not text:
            return None

        self._buffer.append(text)
        self._length += len(text)
        if text.endswith(protocol.FRAME_TERMINATOR):
            self._state = FramerState.FRAME_COMPLETE
            return "".join(self._buffer)
        if self._length >= self._max_frame_chars:
            # No terminator in sight; hand the run back so it parses as garbage
            self.overlong_frames += 1
            logger.debug(f"Frame exceeded {self._max_frame_chars} chars without a newline")
            self._state = FramerState.FRAME_COMPLETE
            return "".join(self._buffer)
        return None

    def read_frame(self, transport: Transport) -> str:
        """Read bytes from the transport until a frame is complete.

        Args:
            transport: Open transport to read from

        Returns:
            Frame text including the trailing newline, or an overlong run
            of text that never saw one

        Raises:
            LinkError: If a read fails or times out; the partial frame is dropped
        """
        try:
            while True:
                frame = self.push(transport.read_byte())
                if frame is not None:
                    logger.debug(f"Received frame: {frame!r}")
                    return frame
        except Exception:
            self.reset()
            raise

    def _decode(self, byte: bytes) -> str:
        try:
            return self._decoder.decode(byte)
        except UnicodeDecodeError as e:
            self._decoder.reset()
            raise DecodeError(f"Invalid byte sequence ending in {byte!r}") from e
