from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from .constants import CLIENT_TIMEOUT_S, REAP_INTERVAL_S

log = logging.getLogger(__name__)

NowFn = Callable[[], float]


@dataclass(frozen=True, slots=True)
class PeerRecord:
    username: str
    address: str
    port: int
    last_seen: float


class RegisterOutcome(enum.Enum):
    OK = "ok"
    ALREADY_TAKEN = "already_taken"


class Directory:
    """Online peers keyed by username.

    Every operation runs under one lock, so register/touch/remove and the
    reaper's sweep never interleave on a key. Records are immutable; a
    heartbeat swaps in a new record rather than editing the old one.
    """

    def __init__(self, timeout_s: float = CLIENT_TIMEOUT_S, now: NowFn = time.monotonic) -> None:
        self.timeout_s = timeout_s
        self.now = now
        self._lock = threading.Lock()
        self._records: Dict[str, PeerRecord] = {}

    def _expired(self, rec: PeerRecord, now: float) -> bool:
        return now - rec.last_seen > self.timeout_s

    def register(self, username: str, address: str, port: int) -> RegisterOutcome:
        """Claim ``username`` for ``(address, port)``.

        A live name held by another source is ALREADY_TAKEN. The same source
        registering again only refreshes ``last_seen``, so a client retrying
        after a lost SUCCESS is not turned away by its own first attempt.
        """
        with self._lock:
            now = self.now()
            current = self._records.get(username)
            if current is not None and not self._expired(current, now):
                if (current.address, current.port) != (address, port):
                    return RegisterOutcome.ALREADY_TAKEN
                # same source re-registering, e.g. a retry after a lost SUCCESS
                self._records[username] = replace(current, last_seen=now)
                return RegisterOutcome.OK
            if current is not None:
                # drop first so the replacement takes a fresh insertion slot
                del self._records[username]
            self._records[username] = PeerRecord(username, address, port, now)
            return RegisterOutcome.OK

    def touch(self, username: str) -> bool:
        with self._lock:
            now = self.now()
            current = self._records.get(username)
            if current is None:
                return False
            if self._expired(current, now):
                del self._records[username]
                log.info("dropped expired peer %s on late heartbeat", username)
                return False
            self._records[username] = replace(current, last_seen=now)
            return True

    def remove(self, username: str) -> bool:
        with self._lock:
            return self._records.pop(username, None) is not None

    def get(self, username: str) -> Optional[PeerRecord]:
        with self._lock:
            rec = self._records.get(username)
            if rec is None or self._expired(rec, self.now()):
                return None
            return rec

    def snapshot(self) -> List[PeerRecord]:
        with self._lock:
            now = self.now()
            return [rec for rec in self._records.values() if not self._expired(rec, now)]

    def evict_expired(self) -> List[str]:
        with self._lock:
            now = self.now()
            stale = [name for name, rec in self._records.items() if self._expired(rec, now)]
            for name in stale:
                del self._records[name]
        for name in stale:
            log.info("removing inactive peer: %s", name)
        return stale

    def __len__(self) -> int:
        return len(self.snapshot())

    def __contains__(self, username: object) -> bool:
        return isinstance(username, str) and self.get(username) is not None


class Reaper:
    """Background sweep that evicts peers whose heartbeats stopped."""

    def __init__(self, directory: Directory, interval_s: float = REAP_INTERVAL_S) -> None:
        self.directory = directory
        self.interval_s = interval_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="rvchat-reaper", daemon=True)
        self._thread.start()

    def stop(self, timeout_s: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout_s)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            try:
                self.directory.evict_expired()
            except Exception:  # pragma: no cover - keep sweeping
                log.exception("reaper sweep failed")
