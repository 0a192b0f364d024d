from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Union

from . import wire
from .commands import HELP_TEXT, Command, CommandKind, parse_command
from .constants import (
    DEFAULT_BIND_HOST,
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    HEARTBEAT_INTERVAL_S,
    REGISTER_ATTEMPTS,
    REGISTER_TIMEOUT_S,
)
from .errors import (
    CommandError,
    MalformedMessage,
    RegistrationRejected,
    RegistrationTimeout,
    TransportClosed,
    UnknownPeer,
)
from .net import Address, Impairment, UdpEndpoint
from .peers import PeerCache

log = logging.getLogger(__name__)

DisplayFn = Callable[[str], None]


class SessionState(enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    ACTIVE = "active"
    LOGGED_OUT = "logged_out"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SessionConfig:
    server: Address = (DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT)
    register_timeout_s: float = REGISTER_TIMEOUT_S
    register_attempts: int = REGISTER_ATTEMPTS
    heartbeat_interval_s: float = HEARTBEAT_INTERVAL_S


class Session:
    """One client identity on one socket.

    ``start()`` registers and then runs two background duties, the receiver
    and the heartbeat; the caller's thread drives the command loop through
    ``run_commands()``. ``logout()`` stops all three by closing the socket.
    """

    def __init__(
        self,
        username: str,
        udp: UdpEndpoint,
        config: SessionConfig = SessionConfig(),
        display: DisplayFn = print,
    ) -> None:
        self.username = wire.validate_username(username)
        self.udp = udp
        self.config = config
        self.display = display
        self.peers = PeerCache(username)
        self.state = SessionState.UNREGISTERED
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @classmethod
    def open(
        cls,
        username: str,
        config: SessionConfig = SessionConfig(),
        *,
        bind_host: str = DEFAULT_BIND_HOST,
        impairment: Optional[Impairment] = None,
        display: DisplayFn = print,
    ) -> "Session":
        wire.validate_username(username)
        udp = UdpEndpoint.ephemeral(bind_host, impairment=impairment)
        return cls(username, udp, config, display)

    @property
    def running(self) -> bool:
        return self.state is SessionState.ACTIVE

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self) -> None:
        with self._lock:
            if self.state is not SessionState.UNREGISTERED:
                raise RuntimeError(f"cannot register a session that is {self.state.value}")
            self.state = SessionState.REGISTERING

        port = self.udp.local_address[1]
        request = wire.Register(self.username, port).to_bytes()
        attempts = max(1, self.config.register_attempts)

        for attempt in range(1, attempts + 1):
            try:
                self.udp.sendto(request, self.config.server)
                reply = self._await_reply(self.config.register_timeout_s)
            except TimeoutError:
                log.warning("server did not respond; retrying (%d/%d)", attempt, attempts)
                continue
            except OSError as exc:
                log.warning("error during registration: %s (%d/%d)", exc, attempt, attempts)
                continue

            if isinstance(reply, wire.Error):
                self._fail()
                raise RegistrationRejected(reply.text or "registration refused")

            with self._lock:
                self.state = SessionState.ACTIVE
            log.info("registered as %s on port %d", self.username, port)
            return

        self._fail()
        host, server_port = self.config.server
        raise RegistrationTimeout(f"no reply from {host}:{server_port} after {attempts} attempts")

    def _await_reply(self, timeout_s: float) -> Union[wire.Success, wire.Error]:
        deadline = time.monotonic() + timeout_s
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("registration reply timed out")
            raw, addr = self.udp.recvfrom(timeout_s=remaining)
            try:
                msg = wire.decode(raw)
            except MalformedMessage as exc:
                log.debug("ignoring datagram from %s:%d while registering: %s", addr[0], addr[1], exc)
                continue
            if isinstance(msg, (wire.Success, wire.Error)):
                return msg
            log.debug("ignoring %s while registering", type(msg).__name__)

    def _fail(self) -> None:
        with self._lock:
            self.state = SessionState.FAILED
        self.udp.close()

    # ------------------------------------------------------------------
    # Active duties
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.register()
        for name, target in (("receiver", self._receive_loop), ("heartbeat", self._heartbeat_loop)):
            t = threading.Thread(target=target, name=f"rvchat-{name}-{self.username}", daemon=True)
            self._threads.append(t)
            t.start()
        self.request_users()
        self.display(f"Chat client started. You are logged in as: {self.username}")

    def _receive_loop(self) -> None:
        while not self._stop.is_set():
            try:
                raw, addr = self.udp.recvfrom()
            except TransportClosed:
                if self.state is not SessionState.LOGGED_OUT:
                    log.error("socket closed while session was %s", self.state.value)
                break
            except OSError as exc:
                log.warning("receive failed: %s", exc)
                continue
            self.handle_datagram(raw, addr)

    def handle_datagram(self, raw: bytes, addr: Optional[Address] = None) -> None:
        try:
            msg = wire.decode(raw)
        except MalformedMessage as exc:
            log.debug("ignoring datagram from %s: %s", addr, exc)
            return

        if isinstance(msg, wire.Users):
            self.peers.replace(msg)
            self.show_peers()
        elif isinstance(msg, (wire.Success, wire.Error)):
            self.display(f"Server: {msg.text}")
        elif isinstance(msg, wire.Chat):
            self.display(f"{msg.sender}: {msg.body}")
        else:
            log.debug("ignoring %s from %s", type(msg).__name__, addr)

    def _heartbeat_loop(self) -> None:
        beat = wire.Heartbeat(self.username).to_bytes()
        while True:
            try:
                self.udp.sendto(beat, self.config.server)
            except TransportClosed:
                break
            except OSError as exc:
                log.warning("heartbeat send failed: %s", exc)
            if self._stop.wait(self.config.heartbeat_interval_s):
                break

    def show_peers(self) -> None:
        names = self.peers.names()
        if not names:
            self.display("No other users are online.")
            return
        self.display("Online Users:\n" + "\n".join(f"- {n}" for n in names))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _require_active(self) -> None:
        if self.state is not SessionState.ACTIVE:
            raise TransportClosed(f"session is {self.state.value}")

    def request_users(self) -> None:
        self._require_active()
        self.udp.sendto(wire.GetUsers().to_bytes(), self.config.server)

    def send_chat(self, recipient: str, body: str) -> Address:
        """Send ``body`` straight to ``recipient`` using the cached address.

        Raises UnknownPeer when the name is not in the cache; there is no
        acknowledgement, so a stale address just means a lost message.
        """
        self._require_active()
        addr = self.peers.resolve(recipient)
        if addr is None:
            raise UnknownPeer(recipient)
        self.udp.sendto(wire.Chat(self.username, body).to_bytes(), addr)
        return addr

    def logout(self, join_timeout_s: float = 2.0) -> None:
        with self._lock:
            if self.state in (SessionState.LOGGED_OUT, SessionState.FAILED):
                return
            was_active = self.state is SessionState.ACTIVE
            self.state = SessionState.LOGGED_OUT

        if was_active:
            try:
                self.udp.sendto(wire.Logout(self.username).to_bytes(), self.config.server)
            except (OSError, TransportClosed) as exc:
                log.warning("logout notice not sent: %s", exc)

        self._stop.set()
        self.udp.close()
        current = threading.current_thread()
        for t in self._threads:
            if t is not current:
                t.join(timeout=join_timeout_s)
        log.info("session %s logged out", self.username)

    # ------------------------------------------------------------------
    # Command loop
    # ------------------------------------------------------------------

    def execute(self, command: Command) -> bool:
        """Run one user command; returns False once the session should end."""
        kind = command.kind
        if kind is CommandKind.REFRESH:
            self.request_users()
        elif kind is CommandKind.LIST:
            self.show_peers()
        elif kind is CommandKind.MESSAGE:
            try:
                self.send_chat(command.recipient, command.body)
            except UnknownPeer:
                self.display(f"User '{command.recipient}' is not online or doesn't exist.")
                self.display("Use /users to see the list of online users.")
            except ValueError as exc:
                self.display(f"Message not sent: {exc}")
            else:
                self.display(f"To {command.recipient}: {command.body}")
        elif kind is CommandKind.HELP:
            self.display(HELP_TEXT)
        elif kind is CommandKind.LOGOUT:
            self.display("Logging out...")
            self.logout()
            self.display("Logged out successfully.")
            return False
        return True

    def run_commands(self, lines: Iterable[str]) -> None:
        for line in lines:
            if not self.running:
                break
            try:
                command = parse_command(line)
            except CommandError as exc:
                self.display(str(exc))
                continue
            if command is None:
                continue
            try:
                if not self.execute(command):
                    break
            except TransportClosed:
                break
            except OSError as exc:
                log.warning("command %s failed: %s", command.kind.value, exc)
        self.logout()
