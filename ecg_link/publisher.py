"""Event publishing boundary between the acquisition loop and the host application.

The acquisition loop only knows the narrow ``EventSink`` interface. The host
application (a WebSocket bridge, a console printer, a test recorder) supplies
the concrete sink.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from ecg_link.models import NormalizedReading

logger = logging.getLogger(__name__)

RESET_MONITOR = "reset-monitor"
NEW_READING = "new-reading"
STORAGE_ERROR = "storage-error"


@dataclass(frozen=True)
class Event:
    """An outbound signal for the UI bridge.

    Attributes:
        name: Event name ("reset-monitor", "new-reading", "storage-error").
        payload: JSON-serializable payload, or None for "reset-monitor".
    """

    name: str
    payload: Optional[Dict[str, Any]] = None

    def to_message(self) -> Dict[str, Any]:
        """Wire form used by the WebSocket bridge."""
        return {"event": self.name, "payload": self.payload}


def reset_monitor_event() -> Event:
    return Event(RESET_MONITOR)


def new_reading_event(reading: NormalizedReading) -> Event:
    return Event(NEW_READING, reading.to_payload())


def storage_error_event(message: str) -> Event:
    return Event(STORAGE_ERROR, {"message": message})


class EventSink(Protocol):
    """Receiver of events produced by the acquisition loop."""

    def publish(self, event: Event) -> None:
        """Deliver one event. Must not block for long."""
        ...


Subscriber = Callable[[Event], None]


class EventBus:
    """Thread-safe fan-out of events to any number of subscribers.

    A subscriber that raises is logged and skipped; the remaining subscribers
    still receive the event and the caller never sees the exception.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Args:
            callback: Called with every published Event, on the publishing thread

        Returns:
            Function that removes this subscription
        """
        with self._lock:
            self._subscribers.append(callback)
            logger.debug(f"Subscriber added, total: {len(self._subscribers)}")

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
                    logger.debug(f"Subscriber removed, total: {len(self._subscribers)}")

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber failed on {event.name} event: {e}", exc_info=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


class NullSink:
    """Sink that discards every event."""

    def publish(self, event: Event) -> None:
        pass
