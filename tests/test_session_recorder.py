"""Tests for per-session CSV persistence and the session loader.

These tests use tmp_path only - no hardware required.
Tests verify:
- Collision-safe file naming within one calendar day
- Row format (RFC-3339 timestamp, value, no header)
- Exactly-once flush on close
- Storage failures surface as StorageError
- Loading recorded sessions back with pandas
"""

from datetime import date, timedelta, timezone

import pandas as pd
import pytest

from ecg_link.errors import RowRejected, StorageError
from ecg_link.models import NormalizedReading
from session_store import (
    COLUMNS,
    SessionRecorder,
    list_sessions,
    load_session,
    millis_to_rfc3339,
    next_session_path,
    reading_to_row,
    session_file_name,
    session_stats,
)

DAY = date(2024, 5, 1)
MAY_1_MIDNIGHT_UTC_MS = 1_714_521_600_000


# =============================================================================
# Row Format
# =============================================================================


def test_millis_to_rfc3339_utc() -> None:
    """Test epoch millis render as RFC-3339 with millisecond precision."""
    assert millis_to_rfc3339(MAY_1_MIDNIGHT_UTC_MS + 123, timezone.utc) == (
        "2024-05-01T00:00:00.123+00:00"
    )


def test_millis_to_rfc3339_fixed_offset() -> None:
    """Test a non-UTC zone keeps the same instant with its own offset."""
    tz = timezone(timedelta(hours=2))
    assert millis_to_rfc3339(MAY_1_MIDNIGHT_UTC_MS, tz) == "2024-05-01T02:00:00.000+02:00"


def test_millis_to_rfc3339_local_has_offset() -> None:
    """Test the default local rendering always carries a UTC offset."""
    ts = millis_to_rfc3339(MAY_1_MIDNIGHT_UTC_MS)
    assert ts[-6] in "+-"
    assert pd.Timestamp(ts).value // 1_000_000 == MAY_1_MIDNIGHT_UTC_MS


def test_reading_to_row() -> None:
    """Test a reading becomes [timestamp, value]."""
    row = reading_to_row(NormalizedReading(MAY_1_MIDNIGHT_UTC_MS, 0.25), timezone.utc)
    assert row == ["2024-05-01T00:00:00.000+00:00", "0.25"]


def test_out_of_range_timestamp_is_rejected() -> None:
    """Test instants datetime cannot hold raise RowRejected, not a storage error."""
    with pytest.raises(RowRejected, match="out of range"):
        millis_to_rfc3339(2**63 + 5_000_000, timezone.utc)


# =============================================================================
# File Naming
# =============================================================================


def test_session_file_name() -> None:
    """Test plain and counter-suffixed names."""
    assert session_file_name(DAY) == "2024-05-01.csv"
    assert session_file_name(DAY, 1) == "2024-05-01 (1).csv"
    assert session_file_name(DAY, 12) == "2024-05-01 (12).csv"


def test_same_day_sessions_get_distinct_files(tmp_path) -> None:
    """Test three sessions on one day produce .csv, (1).csv, (2).csv."""
    names = []
    for _ in range(3):
        recorder = SessionRecorder.create(tmp_path, today=DAY)
        names.append(recorder.path.name)
        recorder.close()

    assert names == ["2024-05-01.csv", "2024-05-01 (1).csv", "2024-05-01 (2).csv"]


def test_next_session_path_fills_smallest_gap(tmp_path) -> None:
    """Test the smallest unused counter is chosen."""
    (tmp_path / "2024-05-01.csv").touch()
    (tmp_path / "2024-05-01 (2).csv").touch()

    assert next_session_path(tmp_path, DAY).name == "2024-05-01 (1).csv"


def test_sessions_on_different_days_start_fresh(tmp_path) -> None:
    """Test the counter is per calendar day."""
    SessionRecorder.create(tmp_path, today=DAY).close()
    other = SessionRecorder.create(tmp_path, today=date(2024, 5, 2))

    assert other.path.name == "2024-05-02.csv"
    other.close()


def test_records_directory_is_created(tmp_path) -> None:
    """Test the records directory is created on first use."""
    records_dir = tmp_path / "nested" / "records"

    recorder = SessionRecorder.create(records_dir, today=DAY)

    assert records_dir.is_dir()
    assert recorder.path.parent == records_dir
    assert recorder.path.exists()
    recorder.close()


# =============================================================================
# Writing and Flushing
# =============================================================================


def test_rows_written_without_header(tmp_path) -> None:
    """Test each appended reading becomes exactly one headerless row."""
    recorder = SessionRecorder.create(tmp_path, today=DAY, tz=timezone.utc)
    recorder.append(NormalizedReading(MAY_1_MIDNIGHT_UTC_MS, 0.1))
    recorder.append(NormalizedReading(MAY_1_MIDNIGHT_UTC_MS + 200, -3.5))
    recorder.close()

    assert recorder.rows_written == 2
    assert recorder.path.read_text(encoding="utf-8").splitlines() == [
        "2024-05-01T00:00:00.000+00:00,0.1",
        "2024-05-01T00:00:00.200+00:00,-3.5",
    ]


def test_close_flushes_exactly_once(tmp_path) -> None:
    """Test repeated teardown is idempotent."""
    recorder = SessionRecorder.create(tmp_path, today=DAY)
    recorder.append(NormalizedReading(MAY_1_MIDNIGHT_UTC_MS, 1.0))

    assert recorder.close() is True
    assert recorder.flushed
    assert recorder.close() is False
    assert recorder.close() is False
    assert len(recorder.path.read_text().splitlines()) == 1


def test_append_after_close_raises(tmp_path) -> None:
    """Test a torn-down session refuses further rows."""
    recorder = SessionRecorder.create(tmp_path, today=DAY)
    recorder.close()

    with pytest.raises(StorageError, match="already closed"):
        recorder.append(NormalizedReading(MAY_1_MIDNIGHT_UTC_MS, 1.0))


def test_rejected_row_leaves_session_usable(tmp_path) -> None:
    """Test a reading with no representable timestamp is skipped cleanly."""
    recorder = SessionRecorder.create(tmp_path, today=DAY, tz=timezone.utc)

    with pytest.raises(RowRejected):
        recorder.append(NormalizedReading(2**63, 1.0))
    recorder.append(NormalizedReading(MAY_1_MIDNIGHT_UTC_MS, 2.0))
    recorder.close()

    assert recorder.rows_written == 1
    assert recorder.path.read_text(encoding="utf-8").splitlines() == [
        "2024-05-01T00:00:00.000+00:00,2.0"
    ]


def test_context_manager_closes(tmp_path) -> None:
    """Test the recorder flushes when used as a context manager."""
    with SessionRecorder.create(tmp_path, today=DAY) as recorder:
        recorder.append(NormalizedReading(MAY_1_MIDNIGHT_UTC_MS, 1.0))

    assert recorder.flushed


def test_unwritable_records_dir_raises_storage_error(tmp_path) -> None:
    """Test directory creation failure is reported as StorageError."""
    blocker = tmp_path / "records"
    blocker.write_text("not a directory")

    with pytest.raises(StorageError, match="records directory"):
        SessionRecorder.create(blocker, today=DAY)


# =============================================================================
# Loader
# =============================================================================


def _record(tmp_path, values, start_ms=MAY_1_MIDNIGHT_UTC_MS, step_ms=4, day=DAY):
    recorder = SessionRecorder.create(tmp_path, today=day)
    for i, value in enumerate(values):
        recorder.append(NormalizedReading(start_ms + i * step_ms, value))
    recorder.close()
    return recorder.path


def test_load_session_round_trip(tmp_path) -> None:
    """Test a recorded session loads back with tz-aware timestamps."""
    path = _record(tmp_path, [510.0, 530.5, 890.25])

    df = load_session(path)

    assert list(df.columns) == COLUMNS
    assert len(df) == 3
    assert str(df["timestamp"].dt.tz) == "UTC"
    assert df["timestamp"].iloc[0] == pd.Timestamp(MAY_1_MIDNIGHT_UTC_MS, unit="ms", tz="UTC")
    assert df["value"].tolist() == [510.0, 530.5, 890.25]


def test_load_empty_session(tmp_path) -> None:
    """Test a session with no rows loads as an empty frame."""
    path = _record(tmp_path, [])

    df = load_session(path)

    assert df.empty
    assert list(df.columns) == COLUMNS


def test_load_missing_session_raises(tmp_path) -> None:
    """Test loading a nonexistent file."""
    with pytest.raises(FileNotFoundError):
        load_session(tmp_path / "nope.csv")


def test_session_stats(tmp_path) -> None:
    """Test summary statistics for a 250 Hz session."""
    path = _record(tmp_path, [1.0, 2.0, 3.0, 4.0, 5.0], step_ms=4)

    stats = session_stats(load_session(path))

    assert stats["row_count"] == 5
    assert stats["duration_s"] == pytest.approx(0.016)
    assert stats["est_sample_rate_hz"] == pytest.approx(250.0)
    assert stats["min_value"] == 1.0
    assert stats["max_value"] == 5.0
    assert stats["mean_value"] == 3.0
    assert stats["start_time"].startswith("2024-05-01T00:00:00")


def test_session_stats_empty() -> None:
    """Test statistics of an empty session."""
    stats = session_stats(pd.DataFrame(columns=COLUMNS))

    assert stats["row_count"] == 0
    assert stats["start_time"] is None
    assert stats["est_sample_rate_hz"] == 0.0


def test_list_sessions(tmp_path) -> None:
    """Test only CSV session files are listed."""
    first = _record(tmp_path, [1.0])
    second = _record(tmp_path, [2.0])
    (tmp_path / "notes.txt").write_text("ignore me")

    assert set(list_sessions(tmp_path)) == {first, second}
    assert list_sessions(tmp_path / "missing") == []
