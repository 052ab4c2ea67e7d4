"""
Runtime configuration for the presence relay, read from the environment
"""
import os


SERVER_HOST = os.environ.get("SERVER_HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", 3000))

# Liveness: one tick every HEARTBEAT_INTERVAL seconds, clients silent for
# longer than IDLE_TIMEOUT seconds are pruned on the next tick
HEARTBEAT_INTERVAL = float(os.environ.get("RELAY_HEARTBEAT_INTERVAL", 5))
IDLE_TIMEOUT = float(os.environ.get("RELAY_IDLE_TIMEOUT", 20))

# Room served behind the bare /ws front door
DEFAULT_ROOM = os.environ.get("RELAY_DEFAULT_ROOM", "global-room")

# Requests per minute per remote address
RATE_LIMIT = int(os.environ.get("RELAY_RATE_LIMIT", 100))

LOG_LEVEL = os.environ.get("RELAY_LOG_LEVEL", "INFO").upper()

# Frames queued per connection before further sends to it are dropped
OUTBOX_SIZE = int(os.environ.get("RELAY_OUTBOX_SIZE", 256))
