"""
Protocol constants and default limits for the relay server
"""

# Keepalive / rate limiting
KEEPALIVE_INTERVAL_SECONDS = 10.0  # also the userlist push interval
MAX_PACKETS_PER_WINDOW = 750  # soft cap per keepalive window, hard cap is twice this
HARD_CAP_MULTIPLIER = 2

# Size limits (bytes)
MAX_PACKET_SIZE_BYTES = 2500
MAX_USERNAME_SIZE_BYTES = 200

# Policy defaults
ALLOW_USERNAME_CHANGE = False
ALLOW_ROOM_CHANGE = False
ALLOW_CROSS_ROOM_MESSAGING = False
AUTH_REQUIRED = False
AUTH_URL = "http://localhost:9846/v1/auth-token"
AUTH_TIMEOUT_SECONDS = 5.0

# Empty rooms are kept forever unless this is > 0
ROOM_IDLE_TICKS = 0

# Outbound frames queued per connection before deliveries start failing
OUTBOX_LIMIT = 1024

# Server
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 1958

# Logging
LOG_LEVEL = "INFO"

# Wire value reported for "not in a room"
NO_ROOM_WIRE = -1

# originType reported for frames that could not be decoded
INVALID_ORIGIN = "INVALID"

# WebSocket close codes
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011

CLOSE_REASONS = {
    "keepalive": "Keepalive timeout",
    "rate_limit": "Ratelimit exceeded",
    "send_failed": "Delivery failed",
}
