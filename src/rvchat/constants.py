from __future__ import annotations

ENCODING = "utf-8"
MAX_DATAGRAM = 1024

DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 9000
DEFAULT_BIND_HOST = "0.0.0.0"

CLIENT_TIMEOUT_S = 30.0
REAP_INTERVAL_S = 5.0
DEFAULT_WORKERS = 8

REGISTER_TIMEOUT_S = 5.0
REGISTER_ATTEMPTS = 3
HEARTBEAT_INTERVAL_S = 10.0

# receive slices; bounds how long close() takes to unblock a reader
POLL_INTERVAL_S = 0.2

COMMAND_SEP = ":"
FIELD_SEP = ","
ENTRY_SEP = ";"
FORBIDDEN_USERNAME_CHARS = COMMAND_SEP + FIELD_SEP + ENTRY_SEP
