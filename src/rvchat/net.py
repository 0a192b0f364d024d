from __future__ import annotations

import logging
import random
import socket
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from .constants import MAX_DATAGRAM, POLL_INTERVAL_S
from .errors import TransportClosed

log = logging.getLogger(__name__)

Address = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return self.loss_rate > 0 and random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class UdpEndpoint:
    """One bound UDP socket shared by every duty of a process.

    The socket always carries a short timeout; ``recvfrom`` loops over it so a
    receive with no deadline still notices ``close()`` from another thread.
    """

    def __init__(
        self,
        sock: socket.socket,
        impairment: Impairment | None = None,
        poll_interval_s: float = POLL_INTERVAL_S,
    ):
        self.sock = sock
        self.impairment = impairment or Impairment()
        self.sock.settimeout(poll_interval_s)
        self._closed = False

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        impairment: Impairment | None = None,
        poll_interval_s: float = POLL_INTERVAL_S,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind((host, port))
        return cls(sock, impairment, poll_interval_s)

    @classmethod
    def ephemeral(
        cls,
        host: str = "0.0.0.0",
        impairment: Impairment | None = None,
        poll_interval_s: float = POLL_INTERVAL_S,
    ) -> "UdpEndpoint":
        return cls.listening(host, 0, impairment, poll_interval_s)

    @property
    def local_address(self) -> Address:
        host, port = self.sock.getsockname()[:2]
        return host, port

    @property
    def closed(self) -> bool:
        return self._closed

    def sendto(self, data: bytes, addr: Address) -> None:
        if self._closed:
            raise TransportClosed("send on closed endpoint")
        if self.impairment.should_drop():
            log.debug("impairment dropped outbound %d bytes to %s:%d", len(data), *addr)
            return
        self.impairment.sleep_if_needed()
        try:
            self.sock.sendto(data, addr)
        except OSError as exc:
            if self._closed:
                raise TransportClosed("endpoint closed during send") from exc
            raise

    def recvfrom(
        self,
        bufsize: int = MAX_DATAGRAM,
        timeout_s: Optional[float] = None,
    ) -> Tuple[bytes, Address]:
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        while True:
            if self._closed:
                raise TransportClosed("receive on closed endpoint")
            try:
                data, addr = self.sock.recvfrom(bufsize)
            except TimeoutError:
                if deadline is not None and time.monotonic() >= deadline:
                    raise
                continue
            except OSError as exc:
                if self._closed:
                    raise TransportClosed("endpoint closed during receive") from exc
                raise
            if self._closed:
                raise TransportClosed("endpoint closed during receive")
            if self.impairment.should_drop():
                log.debug("impairment dropped inbound %d bytes from %s:%d", len(data), *addr)
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError("timed out")
                continue
            self.impairment.sleep_if_needed()
            return data, addr

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            # wakes a reader blocked in recvfrom on Linux, even for unconnected UDP
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()
