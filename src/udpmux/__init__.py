"""UDP session multiplexer (udpmux)

One datagram socket, many peers:
- datagrams are demultiplexed to per-peer sessions keyed by the full address
- every session is driven once per tick by the host's frame loop
- sessions that disconnect while being ticked are reaped after the pass

The multiplexer is payload-agnostic; `DatagramSession` is the bundled default.
"""

from .config import ServerConfig, server_config_from_env
from .server import Multiplexer, MuxStats, PeerKey, peer_key
from .session import DatagramSession, Session, SessionState

__all__ = [
    "DatagramSession",
    "Multiplexer",
    "MuxStats",
    "PeerKey",
    "ServerConfig",
    "Session",
    "SessionState",
    "peer_key",
    "server_config_from_env",
]
