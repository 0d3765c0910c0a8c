"""Internal constants shared across the library."""

CONTROLLER_URL = "http://192.168.0.213"
STATUS_PATH = "/getvar.csv"
COMMAND_PATH = "/setvar.csv"
RESOURCE_URL = "http://192.168.0.158:3001/api/watering"

NO_CACHE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

# ------------------------------------------------------------------
# Status feed layout
# ------------------------------------------------------------------

FEED_DELIMITER = ","
FEED_QUOTE = '"'
FEED_MIN_FIELDS = 6
FEED_NAME_INDEX = 0
FEED_TYPE_INDEX = 3
FEED_VALUE_INDEX = 5

# ------------------------------------------------------------------
# Default rig schema
# ------------------------------------------------------------------

#: Names (as they appear in the feed) a poll must contain to count as connected.
REQUIRED_VARIABLES: tuple[str, ...] = ("light1", "light2", "Vent1", "Vent2", "temp1", "humidity1")

#: Logical name -> controller wire name for every actuator we may write.
WRITABLE_VARIABLES: dict[str, str] = {
    "light1": "light1",
    "light2": "light2",
    "vent1": "Vent1",
    "vent2": "Vent2",
}

# ------------------------------------------------------------------
# Watering defaults (2 litres every 5 minutes)
# ------------------------------------------------------------------

FLOW_QUANTITY = 2.0
FLOW_PERIOD_SECONDS = 300.0
REFILL_AMOUNT = 10.0

#: Remaining levels at or below this are treated as an empty tank.
LEVEL_EPSILON = 1e-9

INSECURE_SCHEMES: frozenset[str] = frozenset({"http", "ws"})
