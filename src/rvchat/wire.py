"""Text datagram codec.

Every message on the wire is ``COMMAND:payload`` in UTF-8, at most
``MAX_DATAGRAM`` bytes. This module is the only place that touches the raw
text; everything else works with the dataclasses below.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Tuple, Union

from .constants import (
    COMMAND_SEP,
    ENCODING,
    ENTRY_SEP,
    FIELD_SEP,
    FORBIDDEN_USERNAME_CHARS,
    MAX_DATAGRAM,
)
from .errors import MalformedMessage, UnknownCommand

log = logging.getLogger(__name__)


class Command(str, enum.Enum):
    REGISTER = "REGISTER"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    GET_USERS = "GET_USERS"
    USERS = "USERS"
    HEARTBEAT = "HEARTBEAT"
    LOGOUT = "LOGOUT"
    CHAT = "CHAT"


def validate_username(name: str) -> str:
    if not name:
        raise ValueError("username must not be empty")
    if name != name.strip():
        raise ValueError("username must not start or end with whitespace")
    bad = sorted({c for c in name if c in FORBIDDEN_USERNAME_CHARS})
    if bad:
        raise ValueError(f"username must not contain {' '.join(repr(c) for c in bad)}")
    return name


def _parse_port(text: str) -> int:
    # plain ascii digits only; int() would also take "+5", "5_000" and other scripts
    if not (text.isascii() and text.isdigit()):
        raise MalformedMessage(f"port is not a number: {text!r}")
    port = int(text)
    if not 0 <= port <= 0xFFFF:
        raise MalformedMessage(f"port out of range: {port}")
    return port


def _username(text: str) -> str:
    try:
        return validate_username(text)
    except ValueError as exc:
        raise MalformedMessage(str(exc)) from None


def _frame(command: Command, payload: str) -> bytes:
    raw = f"{command.value}{COMMAND_SEP}{payload}".encode(ENCODING)
    if len(raw) > MAX_DATAGRAM:
        raise ValueError(f"{command.value} message too large: {len(raw)} > {MAX_DATAGRAM} bytes")
    return raw


@dataclass(frozen=True, slots=True)
class Register:
    username: str
    port: int

    def to_bytes(self) -> bytes:
        return _frame(Command.REGISTER, f"{self.username}{FIELD_SEP}{self.port}")


@dataclass(frozen=True, slots=True)
class Success:
    text: str = ""

    def to_bytes(self) -> bytes:
        return _frame(Command.SUCCESS, self.text)


@dataclass(frozen=True, slots=True)
class Error:
    text: str = ""

    def to_bytes(self) -> bytes:
        return _frame(Command.ERROR, self.text)


@dataclass(frozen=True, slots=True)
class GetUsers:
    def to_bytes(self) -> bytes:
        return _frame(Command.GET_USERS, "")


@dataclass(frozen=True, slots=True)
class UserEntry:
    username: str
    address: str
    port: int

    def encode(self) -> str:
        return f"{self.username}{FIELD_SEP}{self.address}{FIELD_SEP}{self.port}{ENTRY_SEP}"


@dataclass(frozen=True, slots=True)
class Users:
    entries: Tuple[UserEntry, ...] = ()

    def to_bytes(self) -> bytes:
        return _frame(Command.USERS, "".join(e.encode() for e in self.entries))

    @classmethod
    def from_records(cls, records: Iterable, limit: int = MAX_DATAGRAM) -> "Users":
        """Build a response from directory records, keeping whole entries that fit in one datagram."""
        budget = limit - len(Command.USERS.value) - len(COMMAND_SEP)
        entries = []
        skipped = 0
        for rec in records:
            entry = UserEntry(rec.username, rec.address, rec.port)
            size = len(entry.encode().encode(ENCODING))
            if size > budget:
                skipped += 1
                continue
            budget -= size
            entries.append(entry)
        if skipped:
            log.warning("USERS response truncated: %d entr%s left out", skipped, "y" if skipped == 1 else "ies")
        return cls(tuple(entries))


@dataclass(frozen=True, slots=True)
class Heartbeat:
    username: str

    def to_bytes(self) -> bytes:
        return _frame(Command.HEARTBEAT, self.username)


@dataclass(frozen=True, slots=True)
class Logout:
    username: str

    def to_bytes(self) -> bytes:
        return _frame(Command.LOGOUT, self.username)


@dataclass(frozen=True, slots=True)
class Chat:
    sender: str
    body: str

    def to_bytes(self) -> bytes:
        return _frame(Command.CHAT, f"{self.sender}{COMMAND_SEP}{self.body}")


Message = Union[Register, Success, Error, GetUsers, Users, Heartbeat, Logout, Chat]


def _decode_register(payload: str) -> Register:
    fields = payload.split(FIELD_SEP)
    if len(fields) != 2:
        raise MalformedMessage(f"REGISTER expects 2 fields, got {len(fields)}")
    return Register(_username(fields[0]), _parse_port(fields[1]))


def _decode_users(payload: str) -> Users:
    entries = []
    for chunk in payload.split(ENTRY_SEP):
        if not chunk.strip():
            continue
        fields = chunk.split(FIELD_SEP)
        if len(fields) != 3:
            log.debug("skipping USERS entry with %d fields: %r", len(fields), chunk)
            continue
        name, address, port = fields
        try:
            entries.append(UserEntry(_username(name), address, _parse_port(port)))
        except MalformedMessage as exc:
            log.debug("skipping USERS entry %r: %s", chunk, exc)
    return Users(tuple(entries))


def _decode_chat(payload: str) -> Chat:
    sender, sep, body = payload.partition(COMMAND_SEP)
    if not sep:
        raise MalformedMessage("CHAT expects <sender>:<body>")
    return Chat(_username(sender), body)


def decode(raw: bytes) -> Message:
    try:
        text = raw.decode(ENCODING)
    except UnicodeDecodeError:
        raise MalformedMessage("datagram is not valid UTF-8") from None

    name, sep, payload = text.partition(COMMAND_SEP)
    if not sep:
        raise MalformedMessage("missing command separator")
    try:
        command = Command(name)
    except ValueError:
        raise UnknownCommand(f"unknown command: {name!r}") from None

    if command is Command.REGISTER:
        return _decode_register(payload)
    if command is Command.SUCCESS:
        return Success(payload)
    if command is Command.ERROR:
        return Error(payload)
    if command is Command.GET_USERS:
        return GetUsers()
    if command is Command.USERS:
        return _decode_users(payload)
    if command is Command.HEARTBEAT:
        return Heartbeat(_username(payload))
    if command is Command.LOGOUT:
        return Logout(_username(payload))
    return _decode_chat(payload)
