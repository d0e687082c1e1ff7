from __future__ import annotations

import enum
import hashlib
import struct
from dataclasses import dataclass

from .constants import DATA, DISCONNECT, HANDSHAKE, HANDSHAKE_REPLY, HEADER_FORMAT, PING, SHA1_LEN, VERSION

HEADER_LEN = struct.calcsize(HEADER_FORMAT)
OVERHEAD = HEADER_LEN + SHA1_LEN


class ChecksumError(ValueError):
    pass


class FrameKind(enum.IntEnum):
    HANDSHAKE = HANDSHAKE
    PING = PING
    DATA = DATA
    DISCONNECT = DISCONNECT


@dataclass(frozen=True, slots=True)
class Frame:
    kind: FrameKind
    payload: bytes = b""
    version: int = VERSION

    @property
    def is_reply(self) -> bool:
        return self.kind == FrameKind.HANDSHAKE and self.payload == HANDSHAKE_REPLY

    def to_bytes(self) -> bytes:
        header = struct.pack(HEADER_FORMAT, self.version, int(self.kind), len(self.payload))
        checksum = hashlib.sha1(header + self.payload).digest()
        return header + checksum + self.payload

    @staticmethod
    def from_bytes(raw: bytes) -> "Frame":
        if len(raw) < OVERHEAD:
            raise ValueError("datagram too small to be a valid frame")

        header = raw[:HEADER_LEN]
        checksum = raw[HEADER_LEN:OVERHEAD]
        version, kind, length = struct.unpack(HEADER_FORMAT, header)
        payload = raw[OVERHEAD : OVERHEAD + length]
        if len(payload) != length:
            raise ValueError(f"truncated payload: expected {length} bytes, got {len(payload)}")

        if hashlib.sha1(header + payload).digest() != checksum:
            raise ChecksumError("checksum mismatch")

        if version != VERSION:
            raise ValueError(f"version mismatch: expected {VERSION}, got {version}")

        try:
            frame_kind = FrameKind(kind)
        except ValueError:
            raise ValueError(f"unknown frame kind {kind}") from None

        return Frame(kind=frame_kind, payload=bytes(payload), version=version)

    @staticmethod
    def handshake(reply: bool = False) -> "Frame":
        return Frame(kind=FrameKind.HANDSHAKE, payload=HANDSHAKE_REPLY if reply else b"")

    @staticmethod
    def ping() -> "Frame":
        return Frame(kind=FrameKind.PING)

    @staticmethod
    def data(payload: bytes) -> "Frame":
        return Frame(kind=FrameKind.DATA, payload=payload)

    @staticmethod
    def disconnect() -> "Frame":
        return Frame(kind=FrameKind.DISCONNECT)
