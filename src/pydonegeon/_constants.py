"""Internal constants shared across the library."""

BASE_URL = "http://localhost:3000"
USER_AGENT = "pydonegeon"

SYNC_ENDPOINT = "/api/data/sync"
EVENTS_ENDPOINT = "/api/data/events"
STATUS_ENDPOINT = "/api/system/status"

#: Query parameter carrying the cursor on a Delta Pull.
CURSOR_PARAM = "lastSync"

#: SSE event payloads emitted by the server on the push channel.
SIGNAL_SYNC = "sync"
SIGNAL_CONNECTED = "connected"

# ------------------------------------------------------------------
# Server-owned fields the store knows about before the first pull
# ------------------------------------------------------------------

KNOWN_COLLECTIONS: tuple[str, ...] = (
    "users",
    "quests",
    "questGroups",
    "questCompletions",
    "rotations",
    "markets",
    "gameAssets",
    "purchaseRequests",
    "rewardTypes",
    "tradeOffers",
    "gifts",
    "ranks",
    "trophies",
    "userTrophies",
    "guilds",
    "systemLogs",
    "adminAdjustments",
    "systemNotifications",
    "scheduledEvents",
    "chatMessages",
    "bugReports",
    "modifierDefinitions",
    "appliedModifiers",
    "themes",
    "chronicleEvents",
    "minigames",
    "gameScores",
    "aiTutors",
    "aiTutorSessionLogs",
    "setbackDefinitions",
    "appliedSetbacks",
)

KNOWN_SINGLETONS: tuple[str, ...] = ("settings",)

KNOWN_SCALARS: tuple[str, ...] = ("loginHistory",)

USERS_COLLECTION = "users"
QUESTS_COLLECTION = "quests"
ALL_TAGS_INDEX = "allTags"

#: Key under which the users directory persists the selected user.
LAST_USER_ID_KEY = "lastUserId"
