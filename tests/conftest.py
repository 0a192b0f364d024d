from __future__ import annotations

import socket
import threading
import time
from typing import Callable, List

import pytest

from rvchat.net import UdpEndpoint
from rvchat.session import Session, SessionConfig


class Transcript:
    """Collects what a session would print."""

    def __init__(self) -> None:
        self.lines: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, text: str) -> None:
        with self._lock:
            self.lines.append(text)

    def text(self) -> str:
        with self._lock:
            return "\n".join(self.lines)


def wait_for(predicate: Callable[[], bool], timeout_s: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def raw_socket():
    """A bare loopback socket standing in for a server or a peer."""
    socks = []

    def make() -> socket.socket:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.bind(("127.0.0.1", 0))
        s.settimeout(2.0)
        socks.append(s)
        return s

    yield make
    for s in socks:
        s.close()


@pytest.fixture
def make_session():
    sessions = []

    def make(username: str, server, **overrides) -> Session:
        config = SessionConfig(
            server=server,
            register_timeout_s=overrides.pop("register_timeout_s", 1.0),
            register_attempts=overrides.pop("register_attempts", 3),
            heartbeat_interval_s=overrides.pop("heartbeat_interval_s", 10.0),
        )
        udp = UdpEndpoint.ephemeral("127.0.0.1", poll_interval_s=0.05, **overrides)
        s = Session(username, udp, config, display=Transcript())
        sessions.append(s)
        return s

    yield make
    for s in sessions:
        s.logout()
