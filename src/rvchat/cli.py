from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from .commands import HELP_TEXT
from .constants import (
    CLIENT_TIMEOUT_S,
    DEFAULT_BIND_HOST,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_WORKERS,
    HEARTBEAT_INTERVAL_S,
    REAP_INTERVAL_S,
    REGISTER_ATTEMPTS,
    REGISTER_TIMEOUT_S,
)
from .errors import RegistrationError
from .net import Impairment
from .server import RendezvousServer, ServerConfig
from .session import Session, SessionConfig


def cmd_server(args: argparse.Namespace) -> int:
    config = ServerConfig(
        host=args.host,
        port=args.port,
        client_timeout_s=args.client_timeout,
        reap_interval_s=args.reap_interval,
        workers=args.workers,
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
    )
    server = RendezvousServer.from_config(config)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        server.shutdown()
    return 0


def cmd_client(args: argparse.Namespace) -> int:
    username = args.username
    if username is None:
        try:
            username = input("Enter your username: ").strip()
        except EOFError:
            return 1

    config = SessionConfig(
        server=(args.server_host, args.server_port),
        register_timeout_s=args.register_timeout,
        register_attempts=args.register_attempts,
        heartbeat_interval_s=args.heartbeat_interval,
    )
    try:
        session = Session.open(
            username,
            config,
            bind_host=args.bind_host,
            impairment=Impairment(args.loss_rate, args.delay_ms),
        )
    except ValueError as exc:
        print(f"Invalid username: {exc}", file=sys.stderr)
        return 2

    try:
        session.start()
    except RegistrationError as exc:
        print(f"Registration failed: {exc}. Exiting...", file=sys.stderr)
        return 1

    print(HELP_TEXT)
    try:
        session.run_commands(sys.stdin)
    except KeyboardInterrupt:
        session.logout()
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rvchat", description="UDP rendezvous chat (presence server + direct peer messages).")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_impairment(x: argparse.ArgumentParser) -> None:
        x.add_argument("--loss-rate", type=float, default=0.0, help="simulate datagram loss")
        x.add_argument("--delay-ms", type=int, default=0, help="simulate per-datagram delay")

    server = sub.add_parser("server", help="run the rendezvous server")
    add_impairment(server)
    server.add_argument("--host", default=DEFAULT_BIND_HOST)
    server.add_argument("--port", type=int, default=DEFAULT_SERVER_PORT)
    server.add_argument("--client-timeout", type=float, default=CLIENT_TIMEOUT_S, help="seconds without heartbeat before eviction")
    server.add_argument("--reap-interval", type=float, default=REAP_INTERVAL_S)
    server.add_argument("--workers", type=int, default=DEFAULT_WORKERS)
    server.set_defaults(func=cmd_server)

    client = sub.add_parser("client", help="join the chat")
    add_impairment(client)
    client.add_argument("--username", default=None, help="prompted for when omitted")
    client.add_argument("--server-host", default=DEFAULT_SERVER_HOST)
    client.add_argument("--server-port", type=int, default=DEFAULT_SERVER_PORT)
    client.add_argument("--bind-host", default=DEFAULT_BIND_HOST)
    client.add_argument("--register-timeout", type=float, default=REGISTER_TIMEOUT_S)
    client.add_argument("--register-attempts", type=int, default=REGISTER_ATTEMPTS)
    client.add_argument("--heartbeat-interval", type=float, default=HEARTBEAT_INTERVAL_S)
    client.set_defaults(func=cmd_client)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
