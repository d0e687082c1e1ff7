from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import time

from .config import ServerConfig, server_config_from_env
from .net import Impairment, UdpEndpoint
from .server import Multiplexer, PeerKey
from .session import DatagramSession, SessionState

log = logging.getLogger("udpmux")


def _emit(payload: dict, as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def cmd_serve(args: argparse.Namespace) -> int:
    base = server_config_from_env()
    config = dataclasses.replace(
        base,
        port=args.port if args.port is not None else base.port,
        host=args.host or base.host,
        no_delay=args.no_delay if args.no_delay is not None else base.no_delay,
        interval_ms=max(1, args.interval_ms) if args.interval_ms is not None else base.interval_ms,
        timeout_ms=args.timeout_ms if args.timeout_ms is not None else base.timeout_ms,
    )
    impair = Impairment(args.loss_rate, args.delay_ms)

    def on_data(conn_id: PeerKey, message: bytes) -> None:
        log.info("%s sent %s", conn_id, message.hex())
        if args.echo:
            mux.send(conn_id, message)

    mux = Multiplexer(
        config,
        on_data=on_data,
        endpoint_factory=lambda cfg: UdpEndpoint.listening(cfg.host, cfg.port, impairment=impair),
    )
    mux.start_server()

    deadline = time.monotonic() + args.duration_s if args.duration_s > 0 else None
    try:
        while deadline is None or time.monotonic() < deadline:
            mux.update()
            time.sleep(config.interval_s)
    except KeyboardInterrupt:
        log.info("interrupted")
    finally:
        mux.stop_server()

    _emit({"role": "server", **dataclasses.asdict(mux.stats)}, args.json)
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    udp = UdpEndpoint.sending(args.dest_host)
    session = DatagramSession(
        udp,
        (args.dest_host, args.dest_port),
        interval_ms=args.interval_ms,
        timeout_ms=args.timeout_ms,
    )
    replies: list[bytes] = []
    session.on_connected = lambda: log.info("connected to %s:%d", args.dest_host, args.dest_port)
    session.on_data = replies.append
    session.on_disconnected = lambda: log.info("disconnected")

    message = args.message.encode("utf-8")
    if len(message) > session.max_payload:
        log.error("message is %d bytes, at most %d fit in one datagram", len(message), session.max_payload)
        udp.close()
        return 2

    sent = 0
    was_connected = False
    deadline = time.monotonic() + args.wait_ms / 1000.0

    session.initiate_handshake()
    try:
        while time.monotonic() < deadline and session.state is not SessionState.DISCONNECTED:
            while udp.poll():
                try:
                    received = udp.recvfrom()
                except OSError as e:
                    log.warning("receive error: %s", e)
                    continue
                if received is not None:
                    session.deliver_inbound(received[0])
            session.advance_timer()
            session.drain_inbound()

            if session.state is SessionState.CONNECTED:
                was_connected = True
                if sent < args.count:
                    for _ in range(args.count):
                        session.send_outbound(message)
                    sent = args.count
                elif not args.expect_echo or len(replies) >= sent:
                    break
            time.sleep(args.interval_ms / 1000.0)
    finally:
        session.request_disconnect()
        udp.close()

    _emit(
        {
            "role": "client",
            "connected": was_connected,
            "sent": sent,
            "replies": [r.decode("utf-8", errors="replace") for r in replies],
        },
        args.json,
    )
    return 0 if was_connected else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="udpmux", description="Multiplexed UDP sessions on a single socket.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)
    defaults = ServerConfig()

    serve = sub.add_parser("serve", help="run the server frame loop")
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--host", default=None)
    serve.add_argument("--interval-ms", type=int, default=None)
    serve.add_argument("--timeout-ms", type=int, default=None)
    serve.add_argument("--no-delay", dest="no_delay", action="store_true", default=None)
    serve.add_argument("--delay", dest="no_delay", action="store_false", default=None, help="batch outbound frames per tick")
    serve.add_argument("--echo", action="store_true", help="send every message back to its sender")
    serve.add_argument("--duration-s", type=float, default=0.0, help="stop after this long (0 = until interrupted)")
    serve.add_argument("--loss-rate", type=float, default=0.0, help="simulate packet loss")
    serve.add_argument("--delay-ms", type=int, default=0, help="simulate per-datagram delay")
    serve.add_argument("--json", action="store_true")
    serve.set_defaults(func=cmd_serve)

    send = sub.add_parser("send", help="connect, send messages, print replies")
    send.add_argument("--dest-host", default="127.0.0.1")
    send.add_argument("--dest-port", type=int, default=defaults.port)
    send.add_argument("--message", default="hello")
    send.add_argument("--count", type=int, default=1)
    send.add_argument("--expect-echo", action="store_true", help="wait for one reply per message")
    send.add_argument("--wait-ms", type=int, default=3000)
    send.add_argument("--interval-ms", type=int, default=defaults.interval_ms)
    send.add_argument("--timeout-ms", type=int, default=defaults.timeout_ms)
    send.add_argument("--json", action="store_true")
    send.set_defaults(func=cmd_send)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
