#!/usr/bin/env python3
"""
Live polling runbook: connect to an ELM327 adapter and print decoded readings.

Port and protocol come from ELM327_PORT / ELM327_BAUD / ELM327_PROTOCOL /
ELM327_DRAIN_MS (see ReaderConfig.from_env). LOG_LEVEL controls verbosity.
"""

import logging
import os
import sys
import time

from elm327_lib import ELM327Error, OBDReader, ReaderConfig

# ============================================================================
# CONFIGURATION - EDIT THIS
# ============================================================================
POLLERS = ["rpm", "vss", "temp", "throttlepos"]
RUN_DURATION_S = 10.0

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

config = ReaderConfig.from_env()
if config.port is None:
    print("Set ELM327_PORT (e.g., /dev/rfcomm0 or /dev/ttyUSB0)")
    sys.exit(2)

print("=" * 70)
print("ELM327 Live Polling")
print("=" * 70)
print(f"Port: {config.port}")
print(f"Baud: {config.baud}")
print(f"Protocol: {config.protocol}")
print(f"Pollers: {', '.join(POLLERS)}")
print()

reader = OBDReader(config)
reader.on("error", lambda error: print(f"      ! {type(error).__name__}: {error}"))

try:
    print("[1/3] Connecting to adapter...")
    reader.connect()
    print(f"      State: {reader.state.value}")
    print()

    print("[2/3] Starting pollers...")
    for name in POLLERS:
        reader.add_poller(name)
    interval = reader.start_polling()
    print(f"      Polling {reader.active_pollers} every {interval * 1000:.0f} ms")
    print()

    print(f"[3/3] Reading for {RUN_DURATION_S}s...")
    start_time = time.time()
    last_count = 0
    while time.time() - start_time < RUN_DURATION_S:
        time.sleep(0.5)
        readings = reader.read_buffer_snapshot()
        for reading in readings[last_count:]:
            elapsed = time.time() - start_time
            print(f"      [{elapsed:5.1f}s] {reading.reply.to_dict() or reading.reply}")
        last_count = len(readings)

    print()
    print(f"Collected {last_count} readings")

except ELM327Error as e:
    print(f"\nFAILED: {e}")
    sys.exit(1)

except KeyboardInterrupt:
    print("\nInterrupted")

finally:
    reader.disconnect()
