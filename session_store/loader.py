"""Read recorded session files back into pandas DataFrames."""

import logging
from pathlib import Path
from typing import List, Union

import pandas as pd

from session_store.recorder import DEFAULT_RECORDS_DIR, SESSION_SUFFIX
from session_store.schemas import COLUMNS

logger = logging.getLogger(__name__)


def list_sessions(records_dir: Union[str, Path] = DEFAULT_RECORDS_DIR) -> List[Path]:
    """List session files, oldest first (by modification time).

    Returns:
        Paths of ``*.csv`` files in records_dir; empty if the directory is missing
    """
    records_dir = Path(records_dir)
    if not records_dir.is_dir():
        return []

    sessions = [p for p in records_dir.iterdir() if p.is_file() and p.suffix == SESSION_SUFFIX]
    return sorted(sessions, key=lambda p: (p.stat().st_mtime, p.name))


def load_session(path: Union[str, Path]) -> pd.DataFrame:
    """Load one session file.

    Args:
        path: Session CSV file (headerless ``timestamp,value`` rows)

    Returns:
        DataFrame with columns ``timestamp`` (tz-aware, UTC) and ``value`` (float)

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Session not found: {path}")

    if path.stat().st_size == 0:
        df = pd.DataFrame(columns=COLUMNS)
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        df["value"] = df["value"].astype(float)
        return df

    df = pd.read_csv(path, header=None, names=COLUMNS, dtype={"value": float})
    df["timestamp"] = pd.to_datetime(df["timestamp"], format="ISO8601", utc=True)
    logger.debug(f"Loaded {len(df)} rows from {path}")
    return df


def session_stats(df: pd.DataFrame) -> dict:
    """Summary statistics for a loaded session.

    Returns:
        Dictionary with keys:
            - row_count: Total number of readings
            - start_time: ISO timestamp of first reading (or None)
            - end_time: ISO timestamp of last reading (or None)
            - duration_s: Time span of data in seconds (or 0)
            - est_sample_rate_hz: Estimated sample rate (or 0)
            - min_value / max_value / mean_value: Value range (or None)
    """
    if df.empty:
        return {
            "row_count": 0,
            "start_time": None,
            "end_time": None,
            "duration_s": 0.0,
            "est_sample_rate_hz": 0.0,
            "min_value": None,
            "max_value": None,
            "mean_value": None,
        }

    start = df["timestamp"].iloc[0]
    end = df["timestamp"].iloc[-1]
    duration_s = (end - start).total_seconds()

    rate_hz = 0.0
    if duration_s > 0 and len(df) > 1:
        rate_hz = (len(df) - 1) / duration_s

    return {
        "row_count": len(df),
        "start_time": start.isoformat(),
        "end_time": end.isoformat(),
        "duration_s": duration_s,
        "est_sample_rate_hz": rate_hz,
        "min_value": float(df["value"].min()),
        "max_value": float(df["value"].max()),
        "mean_value": float(df["value"].mean()),
    }
