from __future__ import annotations

SHA1_LEN = 20
HEADER_FORMAT = "!BBH"  # version, kind, payload length
VERSION = 1

HANDSHAKE = 0
PING = 1
DATA = 2
DISCONNECT = 3

# HANDSHAKE payload marking an answer; answers are never answered themselves
HANDSHAKE_REPLY = b"\x01"

DEFAULT_PORT = 7777
DEFAULT_HOST = "::"
DEFAULT_INTERVAL_MS = 40
DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_PING_INTERVAL_MS = 1_000
DEFAULT_MTU = 1200
