"""Diagnose what the ECG front-end sends after the port is opened."""

import sys
import time

from ecg_link import protocol
from ecg_link.errors import LinkError, OpenError
from ecg_link.framing import LineFramer
from ecg_link.parsing import try_parse_reading
from ecg_link.transport import Transport, discover_ports


def diagnose_connection(port=None, duration_s=5.0):
    """Open the port, send heartbeats and print every frame with its parse result."""

    ports = discover_ports()
    print(f"\n=== Available ports: {ports or 'none'} ===")
    if port is None:
        if not ports:
            print("No serial ports found. Is the device plugged in?")
            return
        port = ports[0]

    print(f"\n=== Opening {port} at {protocol.BAUD_RATE} baud ===")
    try:
        transport = Transport.open(port)
    except OpenError as e:
        print(f"*** OPEN FAILED: {e} ***")
        print("\nPossible reasons:")
        print("1. Another program (serial monitor, IDE) holds the port")
        print("2. Missing permission (dialout group on Linux)")
        return

    framer = LineFramer()
    frames = valid = 0
    last_ok = 0.0
    start = time.time()

    print(f"\n=== Reading for {duration_s}s ===")
    try:
        while time.time() - start < duration_s:
            if time.time() - last_ok >= protocol.HEARTBEAT_INTERVAL_MS / 1000.0:
                transport.send_heartbeat()
                last_ok = time.time()

            frame = framer.read_frame(transport)
            frames += 1
            reading = try_parse_reading(frame.strip())
            if reading is not None:
                valid += 1
                print(f"RX: {frame.strip()!r:40} -> millis={reading.device_millis} value={reading.value}")
            else:
                print(f"RX: {frame.strip()!r:40} -> *** NOT A READING ***")
    except LinkError as e:
        print(f"\n*** LINK ERROR: {e} ***")
    finally:
        transport.close()

    print(f"\nFrames: {frames}, valid readings: {valid}, undecodable byte runs: {framer.decode_errors}")
    if frames == 0:
        print("\n*** NO DATA ***")
        print("\nPossible reasons:")
        print("1. Wrong baud rate in firmware (expected 57600)")
        print("2. Firmware waits for host heartbeats on a different port")


if __name__ == "__main__":
    port = sys.argv[1] if len(sys.argv) > 1 else None
    diagnose_connection(port)
