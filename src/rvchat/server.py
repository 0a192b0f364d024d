from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from . import wire
from .constants import (
    CLIENT_TIMEOUT_S,
    DEFAULT_BIND_HOST,
    DEFAULT_SERVER_PORT,
    DEFAULT_WORKERS,
    REAP_INTERVAL_S,
)
from .directory import Directory, Reaper, RegisterOutcome
from .errors import MalformedMessage, TransportClosed, UnknownCommand
from .net import Address, Impairment, UdpEndpoint

log = logging.getLogger(__name__)

REGISTERED_TEXT = "Registration successful"
TAKEN_TEXT = "Username already taken"


class Dispatcher:
    """Turns one inbound datagram into directory calls and an optional reply.

    Stateless across requests. Only REGISTER and GET_USERS are answered;
    HEARTBEAT, LOGOUT and anything unparseable get no reply at all.
    """

    def __init__(self, directory: Directory) -> None:
        self.directory = directory

    def handle(self, raw: bytes, addr: Address) -> Optional[bytes]:
        try:
            msg = wire.decode(raw)
        except UnknownCommand as exc:
            log.info("dropping datagram from %s:%d: %s", addr[0], addr[1], exc)
            return None
        except MalformedMessage as exc:
            log.warning("dropping malformed datagram from %s:%d: %s", addr[0], addr[1], exc)
            return None

        if isinstance(msg, wire.Register):
            return self._register(msg, addr)
        if isinstance(msg, wire.GetUsers):
            return wire.Users.from_records(self.directory.snapshot()).to_bytes()
        if isinstance(msg, wire.Heartbeat):
            if not self.directory.touch(msg.username):
                log.debug("heartbeat for unknown peer %s from %s:%d", msg.username, addr[0], addr[1])
            return None
        if isinstance(msg, wire.Logout):
            if self.directory.remove(msg.username):
                log.info("peer logged out: %s", msg.username)
            return None

        log.info("dropping %s from %s:%d: not a server request", type(msg).__name__.upper(), addr[0], addr[1])
        return None

    def _register(self, msg: wire.Register, addr: Address) -> bytes:
        # the peer is reachable at the packet's source ip, whatever it claims
        address = addr[0]
        outcome = self.directory.register(msg.username, address, msg.port)
        if outcome is RegisterOutcome.ALREADY_TAKEN:
            log.info("rejected registration of %s from %s:%d: name taken", msg.username, address, msg.port)
            return wire.Error(TAKEN_TEXT).to_bytes()
        log.info("registered peer %s at %s:%d", msg.username, address, msg.port)
        return wire.Success(REGISTERED_TEXT).to_bytes()


@dataclass(frozen=True, slots=True)
class ServerConfig:
    host: str = DEFAULT_BIND_HOST
    port: int = DEFAULT_SERVER_PORT
    client_timeout_s: float = CLIENT_TIMEOUT_S
    reap_interval_s: float = REAP_INTERVAL_S
    workers: int = DEFAULT_WORKERS
    loss_rate: float = 0.0
    delay_ms: int = 0


class RendezvousServer:
    """Receive loop on one well-known socket; each datagram runs on a worker."""

    def __init__(
        self,
        udp: UdpEndpoint,
        directory: Directory,
        *,
        workers: int = DEFAULT_WORKERS,
        reap_interval_s: float = REAP_INTERVAL_S,
    ) -> None:
        self.udp = udp
        self.directory = directory
        self.dispatcher = Dispatcher(directory)
        self.reaper = Reaper(directory, reap_interval_s)
        self.workers = max(1, workers)
        self._stopping = threading.Event()

    @classmethod
    def from_config(cls, config: ServerConfig) -> "RendezvousServer":
        impair = Impairment(config.loss_rate, config.delay_ms)
        udp = UdpEndpoint.listening(config.host, config.port, impairment=impair)
        directory = Directory(timeout_s=config.client_timeout_s)
        return cls(udp, directory, workers=config.workers, reap_interval_s=config.reap_interval_s)

    @property
    def address(self) -> Address:
        return self.udp.local_address

    def serve_forever(self) -> None:
        host, port = self.address
        log.info("rendezvous server listening on %s:%d", host, port)
        self.reaper.start()
        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="rvchat-handler")
        try:
            while not self._stopping.is_set():
                try:
                    raw, addr = self.udp.recvfrom()
                except TransportClosed:
                    break
                except OSError as exc:
                    log.warning("receive failed: %s", exc)
                    continue
                pool.submit(self._handle, raw, addr)
        finally:
            self.reaper.stop()
            pool.shutdown(wait=True)
            self.udp.close()
            log.info("rendezvous server stopped")

    def _handle(self, raw: bytes, addr: Address) -> None:
        try:
            reply = self.dispatcher.handle(raw, addr)
            if reply is not None:
                self.udp.sendto(reply, addr)
        except TransportClosed:
            log.debug("reply to %s:%d dropped: server shutting down", addr[0], addr[1])
        except Exception:
            log.exception("error handling datagram from %s:%d", addr[0], addr[1])

    def shutdown(self) -> None:
        self._stopping.set()
        self.udp.close()
