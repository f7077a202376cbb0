"""Wire protocol constants and patterns for the ECG front-end firmware.

The device prints one reading per line as ``(<millis> <value>)`` terminated by
LF, and expects the host to answer with ``OK`` heartbeats so it can detect that
the host is still alive.
"""

import re
from typing import Final

# ============================================================================
# Serial Settings
# ============================================================================

BAUD_RATE: Final[int] = 57600

# Per-read timeout. Also the upper bound on how long a dead link takes to surface.
READ_TIMEOUT_S: Final[float] = 3.0

# ============================================================================
# Line Termination
# ============================================================================

FRAME_TERMINATOR: Final[str] = "\n"

TEXT_ENCODING: Final[str] = "utf-8"

# ============================================================================
# Heartbeat
# ============================================================================

HEARTBEAT: Final[bytes] = b"OK\n"

# Device gives up on the host after this much silence
MAX_SILENCE_MS: Final[int] = 1000

# Half the silence window leaves one retry before the device times out
HEARTBEAT_INTERVAL_MS: Final[int] = MAX_SILENCE_MS // 2

# ============================================================================
# Reading Frames
# ============================================================================

FRAME_OPEN: Final[str] = "("
FRAME_CLOSE: Final[str] = ")"
FIELD_SEPARATOR: Final[str] = " "

# Longest run without a newline before it is returned as a (malformed) frame.
# About 45 ms of line time at 57600 baud.
MAX_FRAME_CHARS: Final[int] = 256

INT64_MIN: Final[int] = -(2**63)
INT64_MAX: Final[int] = 2**63 - 1

# Signed decimal integer, no underscores or padding
RE_DEVICE_MILLIS: Final[re.Pattern[str]] = re.compile(r"[+-]?[0-9]+")

# Decimal float with optional exponent, or inf/infinity/nan
RE_VALUE: Final[re.Pattern[str]] = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf|infinity|nan)",
    re.IGNORECASE,
)

# ============================================================================
# Timing (seconds)
# ============================================================================

DISCOVERY_RETRY_S: Final[float] = 1.0  # Wait before re-enumerating ports
OPEN_RETRY_S: Final[float] = 1.0  # Wait after a failed open
STORAGE_RETRY_MIN_S: Final[float] = 1.0
STORAGE_RETRY_MAX_S: Final[float] = 30.0
THREAD_JOIN_TIMEOUT_S: Final[float] = READ_TIMEOUT_S + 2.0
