#!/usr/bin/env python3
"""
Console runner: acquire from the ECG front-end and print events as they arrive.

Runs the same acquisition loop the API bridge uses, with a console sink in
place of the WebSocket clients. Ctrl+C stops the loop and flushes the session.
"""

import argparse
import logging
import time

from ecg_link import ConnectionManager, Event, EventBus
from ecg_link.errors import RowRejected
from ecg_link.publisher import NEW_READING, RESET_MONITOR, STORAGE_ERROR
from session_store.schemas import millis_to_rfc3339


class ConsolePrinter:
    """Prints every Nth reading plus all lifecycle events."""

    def __init__(self, every: int = 1) -> None:
        self.every = max(1, every)
        self.readings = 0
        self.sentinels = 0

    def __call__(self, event: Event) -> None:
        if event.name == RESET_MONITOR:
            print("---- new session ----")
        elif event.name == STORAGE_ERROR:
            print(f"!! storage error: {event.payload['message']}")
        elif event.name == NEW_READING:
            self.readings += 1
            if event.payload["value"] == 0.0:
                self.sentinels += 1
            if self.readings % self.every == 0:
                try:
                    ts = millis_to_rfc3339(event.payload["milliseconds"])
                except RowRejected:
                    ts = f"{event.payload['milliseconds']} ms"
                print(f"{ts}  {event.payload['value']:10.3f}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Stream readings from a serial ECG front-end")
    parser.add_argument("--port", help="Preferred serial port (default: first one found)")
    parser.add_argument("--records-dir", default="records", help="Session log directory")
    parser.add_argument("--duration", type=float, default=0.0, help="Stop after N seconds (0 = until Ctrl+C)")
    parser.add_argument("--every", type=int, default=1, help="Print every Nth reading")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    bus = EventBus()
    printer = ConsolePrinter(every=args.every)
    bus.subscribe(printer)

    manager = ConnectionManager(sink=bus, records_dir=args.records_dir, preferred_port=args.port)
    manager.start()

    start_time = time.time()
    try:
        while args.duration <= 0 or time.time() - start_time < args.duration:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print()
    finally:
        manager.stop()

    stats = manager.stats
    print("=" * 70)
    print(f"Readings published: {printer.readings} ({printer.sentinels} zero/sentinel)")
    print(f"Rows written:       {stats['rows_written']}")
    print(f"Connects:           {stats['connects']}")
    print(f"Disconnects:        {stats['disconnects']}")
    print("=" * 70)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
