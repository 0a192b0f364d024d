from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from .errors import CommandError

HELP_TEXT = """Available commands:
/users - Ask the server for the list of online users
/refresh - Same as /users
/list - Show the users from the last refresh
/msg <username> <message> - Send a private message to a user
/exit, /quit or /logout - Leave the chat
/help - Display this help message"""

MSG_USAGE = "Usage: /msg <username> <message>"


class CommandKind(enum.Enum):
    REFRESH = "refresh"
    LIST = "list"
    MESSAGE = "msg"
    LOGOUT = "logout"
    HELP = "help"


_ALIASES = {
    "users": CommandKind.REFRESH,
    "refresh": CommandKind.REFRESH,
    "list": CommandKind.LIST,
    "msg": CommandKind.MESSAGE,
    "exit": CommandKind.LOGOUT,
    "quit": CommandKind.LOGOUT,
    "logout": CommandKind.LOGOUT,
    "help": CommandKind.HELP,
}


@dataclass(frozen=True, slots=True)
class Command:
    kind: CommandKind
    recipient: str = ""
    body: str = ""


def parse_command(line: str) -> Optional[Command]:
    line = line.strip()
    if not line:
        return None
    if not line.startswith("/"):
        raise CommandError("Use /msg <username> <message> to send a message to a specific user.")

    name, _, rest = line[1:].partition(" ")
    kind = _ALIASES.get(name.lower())
    if kind is None:
        raise CommandError("Unknown command. Type /help for available commands.")
    if kind is not CommandKind.MESSAGE:
        return Command(kind)

    parts = rest.strip().split(None, 1)
    if len(parts) < 2:
        raise CommandError(MSG_USAGE)
    return Command(kind, recipient=parts[0], body=parts[1])
