"""Append-only CSV log for one connection session.

Every successful device connection gets its own file under ``records/``:
``<YYYY-MM-DD>.csv`` for the first session of the day, then
``<YYYY-MM-DD> (1).csv``, ``<YYYY-MM-DD> (2).csv`` and so on. A recorder owns
one open writer for its whole life and flushes it exactly once on close.
"""

import csv
import logging
from datetime import date, tzinfo
from pathlib import Path
from typing import Optional, TextIO, Union

from ecg_link.errors import StorageError
from ecg_link.models import NormalizedReading
from session_store.schemas import reading_to_row

logger = logging.getLogger(__name__)

DEFAULT_RECORDS_DIR = "records"
SESSION_SUFFIX = ".csv"

# Upper bound on the " (n)" counter, to fail loudly instead of looping forever
MAX_SESSIONS_PER_DAY = 100000


def session_file_name(day: date, n: int = 0) -> str:
    """Build a session file name.

    Args:
        day: Calendar day of the session
        n: Collision counter; 0 means the plain ``<date>.csv`` name

    Returns:
        e.g. "2024-05-01.csv" or "2024-05-01 (2).csv"
    """
    stem = day.isoformat()
    if n:
        stem = f"{stem} ({n})"
    return f"{stem}{SESSION_SUFFIX}"


def next_session_path(records_dir: Path, day: date) -> Path:
    """Return the first unused session file path for ``day``.

    Raises:
        StorageError: If every candidate name is taken
    """
    for n in range(MAX_SESSIONS_PER_DAY):
        candidate = records_dir / session_file_name(day, n)
        if not candidate.exists():
            return candidate
    raise StorageError(f"No free session file name for {day} in {records_dir}")


class SessionRecorder:
    """Owns the log file and writer of one connection session.

    Not thread-safe: a recorder belongs to the acquisition thread that
    created it.
    """

    def __init__(self, path: Path, handle: TextIO, tz: Optional[tzinfo] = None) -> None:
        """Wrap an already-open file. Use ``create()`` to start a new session."""
        self._path = path
        self._handle = handle
        self._writer = csv.writer(handle, lineterminator="\n")
        self._tz = tz
        self._flushed = False
        self._rows_written = 0

    @classmethod
    def create(
        cls,
        records_dir: Union[str, Path] = DEFAULT_RECORDS_DIR,
        today: Optional[date] = None,
        tz: Optional[tzinfo] = None,
    ) -> "SessionRecorder":
        """Create the next session file and open a writer on it.

        Args:
            records_dir: Directory for session files; created if absent
            today: Calendar day for the file name. Defaults to local today.
            tz: Timezone for row timestamps. None means local time.

        Returns:
            SessionRecorder bound to a brand new, empty file

        Raises:
            StorageError: If the directory or file cannot be created
        """
        records_dir = Path(records_dir)
        day = today or date.today()

        try:
            records_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create records directory {records_dir}: {e}") from e

        while True:
            path = next_session_path(records_dir, day)
            try:
                # "x" refuses to reuse a file created after our existence check
                handle = open(path, "x", encoding="utf-8", newline="")
            except FileExistsError:
                logger.debug(f"Session file appeared concurrently, retrying: {path}")
                continue
            except OSError as e:
                raise StorageError(f"Cannot create session file {path}: {e}") from e

            logger.info(f"Session log created: {path}")
            return cls(path, handle, tz=tz)

    @property
    def path(self) -> Path:
        """Path of this session's log file."""
        return self._path

    @property
    def rows_written(self) -> int:
        return self._rows_written

    @property
    def flushed(self) -> bool:
        """True once the session has been torn down."""
        return self._flushed

    def append(self, reading: NormalizedReading) -> None:
        """Append one reading as a CSV row.

        Raises:
            StorageError: If the session is closed or the write fails
            RowRejected: If the reading has no representable timestamp;
                the session stays usable
        """
        if self._flushed:
            raise StorageError(f"Session {self._path.name} is already closed")

        row = reading_to_row(reading, self._tz)
        try:
            self._writer.writerow(row)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to write to {self._path}: {e}") from e

        self._rows_written += 1

    def close(self) -> bool:
        """Flush buffered rows and release the file.

        Safe to call repeatedly; only the first call does anything.

        Returns:
            True if this call performed the flush, False if already closed

        Raises:
            StorageError: If the flush fails (the handle is released regardless)
        """
        if self._flushed:
            return False
        self._flushed = True

        try:
            self._handle.flush()
        except OSError as e:
            raise StorageError(f"Failed to flush {self._path}: {e}") from e
        finally:
            try:
                self._handle.close()
            except OSError as e:
                logger.warning(f"Error closing {self._path}: {e}")

        logger.info(f"Session log closed: {self._path} ({self._rows_written} rows)")
        return True

    def __enter__(self) -> "SessionRecorder":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
