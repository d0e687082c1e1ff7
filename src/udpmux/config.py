from __future__ import annotations

import os
from dataclasses import dataclass

from .constants import (
    DEFAULT_HOST,
    DEFAULT_INTERVAL_MS,
    DEFAULT_MTU,
    DEFAULT_PING_INTERVAL_MS,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_MS,
)


def _env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None:
        return bool(default)
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return int(default)


@dataclass(frozen=True, slots=True)
class ServerConfig:
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    # flush outbound frames as soon as they are queued instead of on the next tick
    no_delay: bool = True
    interval_ms: int = DEFAULT_INTERVAL_MS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    ping_interval_ms: int = DEFAULT_PING_INTERVAL_MS
    mtu: int = DEFAULT_MTU

    @property
    def interval_s(self) -> float:
        return self.interval_ms / 1000.0


def server_config_from_env() -> ServerConfig:
    return ServerConfig(
        port=_env_int("UDPMUX_PORT", DEFAULT_PORT),
        host=os.environ.get("UDPMUX_HOST", DEFAULT_HOST).strip() or DEFAULT_HOST,
        no_delay=_env_bool("UDPMUX_NO_DELAY", True),
        interval_ms=max(1, _env_int("UDPMUX_INTERVAL_MS", DEFAULT_INTERVAL_MS)),
        timeout_ms=_env_int("UDPMUX_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        ping_interval_ms=_env_int("UDPMUX_PING_INTERVAL_MS", DEFAULT_PING_INTERVAL_MS),
        mtu=_env_int("UDPMUX_MTU", DEFAULT_MTU),
    )
