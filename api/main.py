"""FastAPI WebSocket bridge between the ECG acquisition loop and the UI.

Single-process, single-device lifecycle:
- ConnectionManager runs the acquisition loop on its own thread
- EventBus fans its events out to every connected WebSocket client
- Recorded session files are listed and summarized from the records directory

Error mapping:
- StorageError → 503
- Missing session file → 404
- Other exceptions → 500
"""

import asyncio
import logging
import os
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from ecg_link import ConnectionManager, EventBus
from ecg_link.errors import StorageError
from ecg_link.publisher import Event
from session_store import list_sessions, load_session, session_stats

# =============================================================================
# Environment Configuration
# =============================================================================

API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "9160"))
PREFERRED_SERIAL_PORT = os.getenv("SERIAL_PORT") or None
RECORDS_DIR = Path(os.getenv("RECORDS_DIR", "records"))
AUTOSTART = os.getenv("ACQUISITION_AUTOSTART", "1").lower() in ("1", "true", "yes")
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:1420,http://127.0.0.1:1420,http://localhost:3000,http://127.0.0.1:3000",
).split(",")

# Per-client backlog; oldest messages are dropped when a client falls behind
CLIENT_QUEUE_SIZE = 2048

API_VERSION = "0.1.0"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Global Singletons
# =============================================================================

_bus = EventBus()
_manager: Optional[ConnectionManager] = None
_lock = RLock()  # Protects manager start/stop

# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="ECG Link API",
    description="Live WebSocket stream and recorded sessions for a serial ECG front-end",
    version=API_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Response Models
# =============================================================================


class StatusResponse(BaseModel):
    """Response for GET /status."""

    running: bool
    connected: bool
    state: str
    port: Optional[str]
    session_file: Optional[str]
    subscribers: int
    stats: Dict[str, int]


class SessionInfo(BaseModel):
    """Entry in GET /sessions."""

    name: str
    size_bytes: int


class SessionStatsResponse(BaseModel):
    """Response for GET /sessions/{name}/stats."""

    name: str
    row_count: int
    start_time: Optional[str]
    end_time: Optional[str]
    duration_s: float
    est_sample_rate_hz: float
    min_value: Optional[float]
    max_value: Optional[float]
    mean_value: Optional[float]


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc: StorageError):
    """Map StorageError to 503 Service Unavailable."""
    logger.error(f"Storage error: {exc}")
    return JSONResponse(status_code=503, content={"detail": f"Storage unavailable: {exc}"})


# =============================================================================
# Acquisition Lifecycle
# =============================================================================


def start_acquisition() -> ConnectionManager:
    """Create and start the acquisition loop if it isn't running yet."""
    global _manager

    with _lock:
        if _manager is not None and _manager.is_running():
            return _manager

        _manager = ConnectionManager(
            sink=_bus,
            records_dir=RECORDS_DIR,
            preferred_port=PREFERRED_SERIAL_PORT,
        )
        _manager.start()
        return _manager


def stop_acquisition() -> None:
    """Stop the acquisition loop, flushing the current session."""
    with _lock:
        if _manager is not None:
            _manager.stop()


# =============================================================================
# WebSocket Streaming
# =============================================================================


def _enqueue_dropping_oldest(queue: "asyncio.Queue[Dict[str, Any]]", message: Dict[str, Any]) -> None:
    """Runs on the event loop thread."""
    if queue.full():
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(message)


async def _forward_events(websocket: WebSocket, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _wait_for_client_close(websocket: WebSocket) -> None:
    # Clients don't send anything; this returns when the socket closes
    while True:
        await websocket.receive_text()


@app.websocket("/stream")
async def websocket_stream(websocket: WebSocket):
    """Stream acquisition events to the client.

    Messages are JSON objects ``{"event": <name>, "payload": <payload>}`` where
    name is "reset-monitor" (payload null), "new-reading" (payload
    ``{"milliseconds", "value"}``) or "storage-error" (payload ``{"message"}``).
    """
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)

    def on_event(event: Event) -> None:
        # Called on the acquisition thread
        loop.call_soon_threadsafe(_enqueue_dropping_oldest, queue, event.to_message())

    # Subscribe before accepting so no event is missed after the handshake
    unsubscribe = _bus.subscribe(on_event)
    try:
        await websocket.accept()
        logger.info(f"WebSocket client connected: {websocket.client}")

        sender = asyncio.ensure_future(_forward_events(websocket, queue))
        watcher = asyncio.ensure_future(_wait_for_client_close(websocket))
        done, pending = await asyncio.wait(
            {sender, watcher}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"WebSocket stream ended with error: {exc}")
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        logger.info(f"WebSocket client disconnected: {websocket.client}")


# =============================================================================
# REST Endpoints
# =============================================================================


@app.get("/status", response_model=StatusResponse)
async def get_status():
    """Acquisition loop state, open port, live session file and counters."""
    manager = _manager
    if manager is None:
        return StatusResponse(
            running=False,
            connected=False,
            state="disconnected",
            port=None,
            session_file=None,
            subscribers=len(_bus),
            stats={},
        )

    session_path = manager.session_path
    return StatusResponse(
        running=manager.is_running(),
        connected=manager.is_connected(),
        state=manager.state.name,
        port=manager.port,
        session_file=session_path.name if session_path else None,
        subscribers=len(_bus),
        stats=manager.stats,
    )


@app.post("/start", response_model=StatusResponse)
async def post_start():
    """Start the acquisition loop (no-op if running)."""
    start_acquisition()
    return await get_status()


@app.post("/stop", response_model=StatusResponse)
async def post_stop():
    """Stop the acquisition loop and flush the current session."""
    await asyncio.get_running_loop().run_in_executor(None, stop_acquisition)
    return await get_status()


@app.get("/sessions", response_model=List[SessionInfo])
async def get_sessions():
    """Recorded session files, oldest first."""
    return [
        SessionInfo(name=path.name, size_bytes=path.stat().st_size)
        for path in list_sessions(RECORDS_DIR)
    ]


def _session_path(name: str) -> Path:
    """Resolve a session file name inside RECORDS_DIR, rejecting traversal."""
    path = RECORDS_DIR / name
    if Path(name).name != name or not path.is_file():
        raise HTTPException(status_code=404, detail=f"Session not found: {name}")
    return path


@app.get("/sessions/{name}/stats", response_model=SessionStatsResponse)
async def get_session_stats(name: str):
    """Row count, time span, sample rate and value range of a session."""
    path = _session_path(name)
    try:
        df = load_session(path)
    except (ValueError, OSError) as e:
        raise HTTPException(status_code=500, detail=f"Failed to read session {name}: {e}")
    return SessionStatsResponse(name=name, **session_stats(df))


@app.get("/sessions/{name}")
async def download_session(name: str):
    """Download a session CSV file."""
    path = _session_path(name)
    return FileResponse(path=str(path), media_type="text/csv", filename=name)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"service": "ECG Link API", "version": API_VERSION, "status": "online"}


# =============================================================================
# Startup/Shutdown Events
# =============================================================================


@app.on_event("startup")
async def startup_event():
    """Log configuration and start acquisition when autostart is enabled."""
    logger.info("=" * 60)
    logger.info("ECG Link API started")
    logger.info(f"Version: {API_VERSION}")
    logger.info(f"Host: {API_HOST}")
    logger.info(f"Port: {API_PORT}")
    logger.info(f"Preferred Serial Port: {PREFERRED_SERIAL_PORT or '(first found)'}")
    logger.info(f"Records Dir: {RECORDS_DIR}")
    logger.info(f"Autostart: {AUTOSTART}")
    logger.info("=" * 60)

    if AUTOSTART:
        start_acquisition()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop acquisition so the open session is flushed."""
    logger.info("Shutting down ECG Link API...")
    stop_acquisition()
    logger.info("Shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())
