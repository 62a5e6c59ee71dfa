from __future__ import annotations

DEFAULT_SESSIONS_PATH = "./sessions"
SESSION_DIR_PREFIX = "session-"
STORE_FILENAME = "store.json"

# Address suffixes: the wrapper API speaks the legacy convention, the
# protocol speaks the native one.
LEGACY_USER_SERVER = "c.us"
USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"
BROADCAST_SERVER = "broadcast"
STATUS_BROADCAST = "status@broadcast"

# proto.WebMessageInfo.Status
STATUS_ERROR = 0
STATUS_PENDING = 1
STATUS_SERVER_ACK = 2
STATUS_DELIVERY_ACK = 3
STATUS_READ = 4
STATUS_PLAYED = 5

# proto.Message.ProtocolMessage.Type
PROTOCOL_REVOKE = 0

# proto.PinInChat.Type
PIN_FOR_ALL = 1
UNPIN_FOR_ALL = 2

# Pin durations accepted by WhatsApp: 24h, 7d, 30d.
PIN_DURATIONS_S = (86400, 604800, 2592000)

DEFAULT_MUTE_S = 8 * 60 * 60

MAX_FETCH_LIMIT = 500
DEFAULT_FETCH_LIMIT = 50
