from __future__ import annotations

from collections import deque
from types import SimpleNamespace
from typing import Any, List

import pytest

from udpmux.config import ServerConfig
from udpmux.server import Multiplexer
from udpmux.session import SessionState


class FakeEndpoint:
    """In-memory stand-in for UdpEndpoint; tests queue datagrams or errors."""

    def __init__(self) -> None:
        self.inbox: deque = deque()
        self.sent: List[tuple] = []
        self.closed = False

    def queue(self, data: bytes, addr: tuple) -> None:
        self.inbox.append((data, addr))

    def queue_error(self, exc: BaseException) -> None:
        self.inbox.append(exc)

    def poll(self) -> bool:
        return not self.closed and bool(self.inbox)

    def recvfrom(self, bufsize: int = 65535):
        item = self.inbox.popleft()
        if isinstance(item, BaseException):
            raise item
        return item

    def sendto(self, data: bytes, addr: tuple) -> None:
        self.sent.append((data, addr))

    def local_address(self) -> tuple:
        return ("127.0.0.1", 7777)

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """
    Scripted session. Inbound payloads are interpreted on drain_inbound():
      b"hs"  -> handshake completes
      b"bye" -> peer disconnects
    and b"boom" makes deliver_inbound() raise.
      other  -> one application message
    """

    def __init__(self, endpoint: Any, address: tuple, config: ServerConfig) -> None:
        self.endpoint = endpoint
        self.address = address
        self.config = config
        self.state = SessionState.CONNECTING
        self.on_connected = None
        self.on_data = None
        self.on_disconnected = None

        self.inbound: List[bytes] = []
        self.outbound: List[bytes] = []
        self._undrained: deque = deque()
        self.handshakes = 0
        self.ticks = 0
        self.drains = 0
        self.disconnect_requests = 0
        self.disconnect_on_tick = False
        self.fail_on_tick = False

    def deliver_inbound(self, raw: bytes) -> None:
        if raw == b"boom":
            raise ValueError("cannot parse")
        self.inbound.append(raw)
        self._undrained.append(raw)

    def advance_timer(self) -> None:
        self.ticks += 1
        if self.fail_on_tick:
            raise RuntimeError("session exploded")
        if self.disconnect_on_tick:
            self.request_disconnect()

    def drain_inbound(self) -> None:
        self.drains += 1
        while self._undrained and self.state is not SessionState.DISCONNECTED:
            raw = self._undrained.popleft()
            if raw == b"hs":
                if self.state is SessionState.CONNECTING:
                    self.state = SessionState.CONNECTED
                    self.on_connected()
            elif raw == b"bye":
                self._teardown()
            else:
                self.on_data(raw)

    def initiate_handshake(self) -> None:
        self.handshakes += 1

    def send_outbound(self, data: bytes) -> None:
        self.outbound.append(data)

    def request_disconnect(self) -> None:
        self.disconnect_requests += 1
        if self.state is not SessionState.DISCONNECTED:
            self._teardown()

    def remote_address(self) -> tuple:
        return self.address

    def _teardown(self) -> None:
        self.state = SessionState.DISCONNECTED
        self.on_disconnected()


@pytest.fixture
def endpoint() -> FakeEndpoint:
    return FakeEndpoint()


@pytest.fixture
def peer_endpoint() -> FakeEndpoint:
    return FakeEndpoint()


@pytest.fixture
def harness(endpoint: FakeEndpoint) -> SimpleNamespace:
    events: List[tuple] = []
    created: List[FakeSession] = []

    def session_factory(ep, address, config):
        s = FakeSession(ep, address, config)
        created.append(s)
        return s

    mux = Multiplexer(
        ServerConfig(port=7777),
        on_connected=lambda cid: events.append(("connected", cid)),
        on_data=lambda cid, msg: events.append(("data", cid, msg)),
        on_disconnected=lambda cid: events.append(("disconnected", cid)),
        session_factory=session_factory,
        endpoint_factory=lambda cfg: endpoint,
    )
    mux.start_server()
    return SimpleNamespace(mux=mux, endpoint=endpoint, events=events, sessions=created)
