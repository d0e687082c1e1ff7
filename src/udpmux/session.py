from __future__ import annotations

import enum
import logging
from collections import deque
from typing import Callable, Deque, List, Protocol, runtime_checkable

from .constants import DEFAULT_INTERVAL_MS, DEFAULT_MTU, DEFAULT_PING_INTERVAL_MS, DEFAULT_TIMEOUT_MS
from .net import Address, UdpEndpoint
from .packet import OVERHEAD, Frame, FrameKind

log = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


def _noop(*_args: object) -> None:
    return None


@runtime_checkable
class Session(Protocol):
    """
    One remote peer's transport endpoint, as the multiplexer drives it.

    The owner assigns the three callbacks right after construction:
      - on_connected()      once, when the handshake completes
      - on_data(message)    once per complete inbound message
      - on_disconnected()   at most once
    """

    on_connected: Callable[[], None]
    on_data: Callable[[bytes], None]
    on_disconnected: Callable[[], None]

    def deliver_inbound(self, raw: bytes) -> None: ...
    def advance_timer(self) -> None: ...
    def drain_inbound(self) -> None: ...
    def initiate_handshake(self) -> None: ...
    def send_outbound(self, data: bytes) -> None: ...
    def request_disconnect(self) -> None: ...
    def remote_address(self) -> Address: ...


class DatagramSession:
    """Framed, keepalive-supervised session over a shared UDP socket.

    Every datagram carries one `Frame`. There is no acknowledgement or
    retransmission: a lost DATA frame is lost. Liveness is tracked on an
    internal clock that only moves when `advance_timer()` is called, one
    `interval_ms` step at a time.

    Handshakes are the exception: a connecting session resends its handshake
    every `ping_interval_ms`, and a connected one answers a repeated handshake
    with a reply frame, which is never answered in turn.
    """

    def __init__(
        self,
        endpoint: UdpEndpoint,
        address: Address,
        *,
        no_delay: bool = True,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        ping_interval_ms: int = DEFAULT_PING_INTERVAL_MS,
        mtu: int = DEFAULT_MTU,
    ) -> None:
        self.endpoint = endpoint
        self.address = address
        self.no_delay = no_delay
        self.interval_ms = max(1, int(interval_ms))
        self.timeout_ms = int(timeout_ms)
        self.ping_interval_ms = int(ping_interval_ms)
        self.max_payload = int(mtu) - OVERHEAD
        if self.max_payload <= 0:
            raise ValueError(f"mtu {mtu} leaves no room for payload (overhead {OVERHEAD})")

        self.state = SessionState.CONNECTING
        self.on_connected: Callable[[], None] = _noop
        self.on_data: Callable[[bytes], None] = _noop
        self.on_disconnected: Callable[[], None] = _noop

        self.clock_ms = 0
        self.last_receive_ms = 0
        self.last_ping_ms = 0
        self._inbox: Deque[Frame] = deque()
        self._outbox: List[bytes] = []

    def __repr__(self) -> str:
        return f"DatagramSession({self.address!r}, state={self.state.value})"

    def remote_address(self) -> Address:
        return self.address

    # inbound ---------------------------------------------------------------

    def deliver_inbound(self, raw: bytes) -> None:
        if self.state is SessionState.DISCONNECTED:
            return
        try:
            frame = Frame.from_bytes(raw)
        except ValueError as e:
            log.debug("%s: dropped malformed datagram (%d bytes): %s", self.address, len(raw), e)
            return
        self.last_receive_ms = self.clock_ms
        self._inbox.append(frame)

    def drain_inbound(self) -> None:
        while self._inbox and self.state is not SessionState.DISCONNECTED:
            frame = self._inbox.popleft()

            if frame.kind == FrameKind.HANDSHAKE:
                if self.state is SessionState.CONNECTING:
                    self.state = SessionState.CONNECTED
                    log.debug("%s: handshake complete", self.address)
                    self.on_connected()
                elif not frame.is_reply:
                    # peer never saw our handshake (lost, or it restarted on the same port)
                    self._send_now(Frame.handshake(reply=True).to_bytes())
            elif frame.kind == FrameKind.DATA:
                if self.state is SessionState.CONNECTED:
                    self.on_data(frame.payload)
                else:
                    log.debug("%s: data before handshake, dropped", self.address)
            elif frame.kind == FrameKind.DISCONNECT:
                log.debug("%s: peer requested disconnect", self.address)
                self._teardown()
            # PING only refreshes last_receive_ms

    # timer -----------------------------------------------------------------

    def advance_timer(self) -> None:
        if self.state is SessionState.DISCONNECTED:
            return
        self.clock_ms += self.interval_ms

        if self.timeout_ms > 0 and self.clock_ms - self.last_receive_ms >= self.timeout_ms:
            log.warning(
                "%s: no datagram for %d ms (timeout %d ms), disconnecting",
                self.address,
                self.clock_ms - self.last_receive_ms,
                self.timeout_ms,
            )
            self.request_disconnect()
            return

        if self.ping_interval_ms > 0 and self.clock_ms - self.last_ping_ms >= self.ping_interval_ms:
            self.last_ping_ms = self.clock_ms
            if self.state is SessionState.CONNECTED:
                self._send_now(Frame.ping().to_bytes())
            else:
                self._send_now(Frame.handshake().to_bytes())

        if not self.no_delay:
            self.flush()

    # outbound --------------------------------------------------------------

    def initiate_handshake(self) -> None:
        self.last_ping_ms = self.clock_ms
        self._send_now(Frame.handshake().to_bytes())

    def send_outbound(self, data: bytes) -> None:
        if self.state is not SessionState.CONNECTED:
            log.debug("%s: send while %s, dropped %d bytes", self.address, self.state.value, len(data))
            return
        if len(data) > self.max_payload:
            raise ValueError(f"message of {len(data)} bytes exceeds max payload {self.max_payload}")
        self._outbox.append(Frame.data(bytes(data)).to_bytes())
        if self.no_delay:
            self.flush()

    def flush(self) -> None:
        pending, self._outbox = self._outbox, []
        for raw in pending:
            self._send_now(raw)

    def request_disconnect(self) -> None:
        if self.state is SessionState.DISCONNECTED:
            return
        self.flush()
        self._send_now(Frame.disconnect().to_bytes())
        self._teardown()

    # internals -------------------------------------------------------------

    def _send_now(self, raw: bytes) -> None:
        try:
            self.endpoint.sendto(raw, self.address)
        except OSError as e:
            log.warning("%s: send failed: %s", self.address, e)

    def _teardown(self) -> None:
        self.state = SessionState.DISCONNECTED
        self._inbox.clear()
        self._outbox.clear()
        self.on_disconnected()
