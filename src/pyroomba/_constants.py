"""Internal constants shared across the library."""

MQTT_PORT = 8883
COMMAND_TOPIC = "cmd"
COMMAND_INITIATOR = "localApp"

# Tried in this order; the negotiator remembers the last suite that worked.
ROBOT_CIPHERS: tuple[str, ...] = ("AES128-SHA256", "TLS_AES_256_GCM_SHA384")

# ------------------------------------------------------------------
# Timeouts and cadences (seconds)
# ------------------------------------------------------------------

CONNECT_TIMEOUT: float = 60.0
STATUS_TIMEOUT: float = 60.0
COMMAND_TIMEOUT: float = 10.0
DOCK_POLL_INTERVAL: float = 3.0
INITIAL_POLL_RETRY_DELAY: float = 10.0
DEFAULT_IDLE_POLL_INTERVAL: float = 15 * 60.0

MQTT_KEEPALIVE = 60

# ------------------------------------------------------------------
# Report interpretation
# ------------------------------------------------------------------

LOW_BATTERY_THRESHOLD = 20
"""Battery percentage at or below which the robot reports low battery."""

MISSION_STATUS_FIELD = "cleanMissionStatus"
LAST_COMMAND_FIELD = "lastCommand"
