"""Tests for byte-level line framing."""

from typing import List, Optional

import pytest

from ecg_link import protocol
from ecg_link.errors import LinkError
from ecg_link.framing import FramerState, LineFramer
from ecg_link.transport import Transport
from fakes.fake_serial import FakeSerial


def push_all(framer: LineFramer, data: bytes) -> List[str]:
    """Feed bytes one at a time, collecting completed frames."""
    frames = []
    for i in range(len(data)):
        frame: Optional[str] = framer.push(data[i : i + 1])
        if frame is not None:
            frames.append(frame)
    return frames


def test_frame_completes_on_newline() -> None:
    """Test a frame is returned only once the newline arrives, newline included."""
    framer = LineFramer()

    for byte in b"(1 2)":
        assert framer.push(bytes([byte])) is None
        assert framer.state == FramerState.AWAITING_FRAME

    assert framer.push(b"\n") == "(1 2)\n"
    assert framer.state == FramerState.FRAME_COMPLETE


def test_next_byte_after_complete_starts_new_frame() -> None:
    """Test the buffer restarts after a completed frame."""
    framer = LineFramer()

    assert push_all(framer, b"(1 2)\n(3 4)\n") == ["(1 2)\n", "(3 4)\n"]


def test_crlf_is_kept_for_caller_to_strip() -> None:
    """Test CR stays in the frame; the caller trims whitespace."""
    framer = LineFramer()

    assert push_all(framer, b"(1 2)\r\n") == ["(1 2)\r\n"]


def test_multibyte_character_is_deferred_not_dropped() -> None:
    """Test each byte of a multi-byte character is retained until it completes."""
    framer = LineFramer()
    euro = "€".encode("utf-8")  # 3 bytes

    assert framer.push(euro[0:1]) is None
    assert framer.pending == ""
    assert framer.push(euro[1:2]) is None
    assert framer.pending == ""
    assert framer.push(euro[2:3]) is None
    assert framer.pending == "€"

    assert framer.push(b"\n") == "€\n"
    assert framer.decode_errors == 0


def test_invalid_byte_is_discarded() -> None:
    """Test a byte that can never decode contributes nothing."""
    framer = LineFramer()

    assert push_all(framer, b"(1\xff 2)\n") == ["(1 2)\n"]
    assert framer.decode_errors == 1


def test_broken_sequence_keeps_following_ascii() -> None:
    """Test a truncated lead byte is dropped but the byte after it survives."""
    framer = LineFramer()

    # \xe2 starts a 3-byte sequence; "5" cannot continue it
    assert push_all(framer, b"(1 \xe25)\n") == ["(1 5)\n"]
    assert framer.decode_errors == 1


def test_read_frame_from_transport() -> None:
    """Test reading consecutive frames through a transport."""
    transport = Transport(FakeSerial(b"(10 1.5)\n(20 2.5)\n"))
    framer = LineFramer()

    assert framer.read_frame(transport) == "(10 1.5)\n"
    assert framer.read_frame(transport) == "(20 2.5)\n"


def test_read_timeout_raises_instead_of_partial_frame() -> None:
    """Test a timeout mid-frame surfaces as LinkError and drops the partial frame."""
    transport = Transport(FakeSerial(b"(10 1."))
    framer = LineFramer()

    with pytest.raises(LinkError, match="Timed out"):
        framer.read_frame(transport)

    assert framer.pending == ""
    assert framer.state == FramerState.AWAITING_FRAME


def test_read_error_raises_link_error() -> None:
    """Test an OS-level read failure is reported as LinkError."""
    fake = FakeSerial(b"(10 1.5)\n")
    fake.unplug()
    framer = LineFramer()

    with pytest.raises(LinkError, match="Failed to read"):
        framer.read_frame(Transport(fake))


def test_overlong_run_is_returned_at_the_limit() -> None:
    """Test text with no newline is cut into frames of at most the limit."""
    framer = LineFramer()

    frames = push_all(framer, b"A" * (protocol.MAX_FRAME_CHARS * 2 + 5))

    assert frames == ["A" * protocol.MAX_FRAME_CHARS] * 2
    assert framer.pending == "AAAAA"
    assert framer.overlong_frames == 2


def test_overlong_limit_counts_characters_not_bytes() -> None:
    """Test multi-byte characters count once toward the limit."""
    framer = LineFramer(max_frame_chars=4)

    assert push_all(framer, "€€€€".encode("utf-8")) == ["€€€€"]


def test_read_frame_returns_overlong_run() -> None:
    """Test read_frame comes back after the limit instead of reading on."""
    fake = FakeSerial(b"B" * 1000)
    framer = LineFramer(max_frame_chars=64)

    frame = framer.read_frame(Transport(fake))

    assert frame == "B" * 64
    assert fake.pending_output == 1000 - 64


def test_read_failure_mid_frame_drops_partial_frame() -> None:
    """Test a device that dies after a few bytes leaves no partial frame behind."""
    fake = FakeSerial(b"(10 1.5)\n(20 2.5)\n")
    fake.fail_reads_after = 13  # inside the second frame
    transport = Transport(fake)
    framer = LineFramer()

    assert framer.read_frame(transport) == "(10 1.5)\n"
    with pytest.raises(LinkError, match="Failed to read"):
        framer.read_frame(transport)

    assert framer.pending == ""
    assert framer.state == FramerState.AWAITING_FRAME
