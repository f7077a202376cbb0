"""Per-session CSV persistence for ECG readings."""

from session_store.loader import list_sessions, load_session, session_stats
from session_store.recorder import SessionRecorder, next_session_path, session_file_name
from session_store.schemas import COLUMNS, millis_to_rfc3339, reading_to_row

__all__ = [
    "COLUMNS",
    "SessionRecorder",
    "list_sessions",
    "load_session",
    "millis_to_rfc3339",
    "next_session_path",
    "reading_to_row",
    "session_file_name",
    "session_stats",
]
