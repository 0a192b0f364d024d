from __future__ import annotations

from types import MappingProxyType
from typing import List, Mapping, Optional

from .net import Address
from .wire import Users


class PeerCache:
    """Client-side copy of the last USERS response.

    Written only by the receiver and read by the command loop. Each refresh
    builds a new mapping and swaps the reference, so a reader never sees a
    half-built cache.
    """

    def __init__(self, own_username: str) -> None:
        self.own_username = own_username
        self._peers: Mapping[str, Address] = MappingProxyType({})

    def replace(self, users: Users) -> Mapping[str, Address]:
        fresh = {
            e.username: (e.address, e.port)
            for e in users.entries
            if e.username != self.own_username
        }
        self._peers = MappingProxyType(fresh)
        return self._peers

    def resolve(self, username: str) -> Optional[Address]:
        return self._peers.get(username)

    def snapshot(self) -> Mapping[str, Address]:
        return self._peers

    def names(self) -> List[str]:
        return list(self._peers)

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, username: object) -> bool:
        return username in self._peers
