from __future__ import annotations

import logging
import random
import selectors
import socket
import time
from dataclasses import dataclass
from typing import Any, Optional, Tuple

log = logging.getLogger(__name__)

Address = Tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


def _family_for(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


class UdpEndpoint:
    """Non-blocking datagram socket.

    `poll()` never waits; callers check it before every `recvfrom()` so a
    frame loop can drain whatever is queued and move on.
    """

    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        sock.setblocking(False)
        self.sock = sock
        self.impairment = impairment or Impairment()
        self._sel = selectors.DefaultSelector()
        self._sel.register(sock, selectors.EVENT_READ)
        self.closed = False

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        family = _family_for(host)
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            if family == socket.AF_INET6:
                # dual stack: IPv4 peers arrive as ::ffff:a.b.c.d
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        return cls(sock, impairment)

    @classmethod
    def sending(
        cls,
        host: str = "127.0.0.1",
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(_family_for(host), socket.SOCK_DGRAM)
        return cls(sock, impairment)

    def poll(self) -> bool:
        if self.closed:
            return False
        return bool(self._sel.select(timeout=0))

    def sendto(self, data: bytes, addr: Address) -> None:
        if self.impairment.should_drop():
            log.debug("dropped outbound %d bytes to %s", len(data), addr)
            return
        self.impairment.sleep_if_needed()
        self.sock.sendto(data, addr)

    def recvfrom(self, bufsize: int = 65535) -> Optional[Tuple[bytes, Address]]:
        """Read one datagram; None when the impairment dropped it."""
        data, addr = self.sock.recvfrom(bufsize)
        if self.impairment.should_drop():
            log.debug("dropped inbound %d bytes from %s", len(data), addr)
            return None
        self.impairment.sleep_if_needed()
        return data, addr

    def local_address(self) -> Address:
        return self.sock.getsockname()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._sel.close()
        self.sock.close()
