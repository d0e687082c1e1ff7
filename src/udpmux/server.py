from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, List, Optional, Set

from .config import ServerConfig
from .net import Address, UdpEndpoint
from .session import DatagramSession, Session

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PeerKey:
    """Connection id: the peer's full socket address."""

    host: str
    port: int
    scope_id: int = 0

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def peer_key(address: Address) -> PeerKey:
    # IPv6 addresses are (host, port, flowinfo, scope_id); flowinfo is per-packet, not identity
    scope_id = int(address[3]) if len(address) >= 4 else 0
    return PeerKey(host=str(address[0]), port=int(address[1]), scope_id=scope_id)


SessionFactory = Callable[[UdpEndpoint, Address, ServerConfig], Session]
EndpointFactory = Callable[[ServerConfig], UdpEndpoint]


def default_session_factory(endpoint: UdpEndpoint, address: Address, config: ServerConfig) -> Session:
    return DatagramSession(
        endpoint,
        address,
        no_delay=config.no_delay,
        interval_ms=config.interval_ms,
        timeout_ms=config.timeout_ms,
        ping_interval_ms=config.ping_interval_ms,
        mtu=config.mtu,
    )


def default_endpoint_factory(config: ServerConfig) -> UdpEndpoint:
    return UdpEndpoint.listening(config.host, config.port)


@dataclass(slots=True)
class MuxStats:
    datagrams_received: int = 0
    bytes_received: int = 0
    receive_errors: int = 0
    sessions_created: int = 0
    sessions_removed: int = 0
    session_errors: int = 0


class Multiplexer:
    """Serves many peers from one UDP socket.

    Drive it with `update()` once per frame. Sessions are created on the first
    datagram from an unknown address and removed only at the end of a tick,
    after their disconnected callback has fired.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        *,
        on_connected: Optional[Callable[[PeerKey], None]] = None,
        on_data: Optional[Callable[[PeerKey, bytes], None]] = None,
        on_disconnected: Optional[Callable[[PeerKey], None]] = None,
        session_factory: Optional[SessionFactory] = None,
        endpoint_factory: Optional[EndpointFactory] = None,
    ) -> None:
        self.config = config or ServerConfig()
        self.on_connected = on_connected
        self.on_data = on_data
        self.on_disconnected = on_disconnected
        self._session_factory = session_factory or default_session_factory
        self._endpoint_factory = endpoint_factory or default_endpoint_factory

        self._endpoint: Optional[UdpEndpoint] = None
        self.sessions: Dict[PeerKey, Session] = {}
        # keys whose disconnected callback fired; swept after the tick pass
        self._to_remove: Set[PeerKey] = set()
        self.stats = MuxStats()

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, conn_id: object) -> bool:
        return conn_id in self.sessions

    # lifecycle -------------------------------------------------------------

    def active(self) -> bool:
        return self._endpoint is not None

    def start_server(self) -> None:
        if self._endpoint is not None:
            log.warning("server already started")
            return

        log.info("starting server on port %d", self.config.port)
        self._endpoint = self._endpoint_factory(self.config)
        log.info("server started on %s", self._endpoint.local_address())

    def stop_server(self) -> None:
        if self._endpoint is None:
            return
        self._endpoint.close()
        self._endpoint = None
        # rebind rather than clear: a tick may still be iterating the old table
        self.sessions = {}
        self._to_remove = set()
        log.info("server stopped")

    def local_address(self) -> Optional[Address]:
        if self._endpoint is None:
            return None
        return self._endpoint.local_address()

    def connections(self) -> List[PeerKey]:
        return list(self.sessions)

    # application operations -------------------------------------------------

    def send(self, conn_id: PeerKey, data: bytes) -> None:
        session = self._live(conn_id)
        if session is not None:
            session.send_outbound(data)

    def disconnect(self, conn_id: PeerKey) -> bool:
        session = self._live(conn_id)
        if session is None:
            return False
        session.request_disconnect()
        return True

    def get_address(self, conn_id: PeerKey) -> str:
        session = self._live(conn_id)
        if session is None:
            return ""
        return str(session.remote_address()[0])

    # frame loop --------------------------------------------------------------

    def update(self) -> None:
        if self._endpoint is None:
            return
        self.receive_loop()
        self.tick()

    def receive_loop(self) -> None:
        endpoint = self._endpoint
        # poll() turns False once the endpoint is closed by stop_server()
        while endpoint is not None and endpoint.poll():
            try:
                received = endpoint.recvfrom(self.config.mtu)
            except BlockingIOError:
                break
            except OSError as e:
                # e.g. ICMP port unreachable from an earlier send, reported as a reset
                self.stats.receive_errors += 1
                log.warning("receive error: %s", e)
                continue
            if received is None:
                continue

            data, address = received
            self.stats.datagrams_received += 1
            self.stats.bytes_received += len(data)
            key = peer_key(address)

            if key in self._to_remove:
                log.debug("datagram from %s while disconnecting, dropped", key)
                continue

            session = self.sessions.get(key)
            if session is None:
                session = self._add_session(key, endpoint, address)

            try:
                session.deliver_inbound(data)
            except Exception:
                self.stats.session_errors += 1
                log.exception("connection %s failed on inbound datagram", key)
                self._abort(key, session)

    def tick(self) -> None:
        for key, session in self.sessions.items():
            if self._endpoint is None:
                break
            if key in self._to_remove:
                continue
            try:
                session.advance_timer()
                session.drain_inbound()
            except Exception:
                self.stats.session_errors += 1
                log.exception("connection %s failed during tick", key)
                self._abort(key, session)

        self._sweep()

    # internals ---------------------------------------------------------------

    def _live(self, conn_id: PeerKey) -> Optional[Session]:
        if conn_id in self._to_remove:
            return None
        return self.sessions.get(conn_id)

    def _add_session(self, key: PeerKey, endpoint: UdpEndpoint, address: Address) -> Session:
        session = self._session_factory(endpoint, address, self.config)
        session.on_connected = partial(self._session_connected, key)
        session.on_data = partial(self._session_data, key)
        session.on_disconnected = partial(self._session_disconnected, key)

        self.sessions[key] = session
        self.stats.sessions_created += 1
        log.info("added connection %s", key)

        # the server answers first contact with its own handshake
        session.initiate_handshake()
        return session

    def _session_connected(self, key: PeerKey) -> None:
        log.info("connection %s connected", key)
        if self.on_connected is not None:
            self.on_connected(key)

    def _session_data(self, key: PeerKey, message: bytes) -> None:
        log.debug("connection %s received %d bytes", key, len(message))
        if self.on_data is not None:
            self.on_data(key, message)

    def _session_disconnected(self, key: PeerKey) -> None:
        if key in self._to_remove:
            return
        self._to_remove.add(key)
        log.info("connection %s disconnected", key)
        if self.on_disconnected is not None:
            self.on_disconnected(key)

    def _abort(self, key: PeerKey, session: Session) -> None:
        try:
            session.request_disconnect()
        except Exception:
            log.exception("connection %s failed to disconnect", key)
        self._to_remove.add(key)

    def _sweep(self) -> None:
        for key in self._to_remove:
            if self.sessions.pop(key, None) is not None:
                self.stats.sessions_removed += 1
                log.debug("removed connection %s", key)
        self._to_remove.clear()
