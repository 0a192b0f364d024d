from __future__ import annotations


class ChatError(Exception):
    pass


class MalformedMessage(ChatError, ValueError):
    """A datagram that does not parse as any known message."""


class UnknownCommand(MalformedMessage):
    pass


class RegistrationError(ChatError):
    pass


class RegistrationTimeout(RegistrationError, TimeoutError):
    """The server never answered within the retry bound."""


class RegistrationRejected(RegistrationError):
    """The server refused the username; retrying will not help."""


class TransportClosed(ChatError):
    """The endpoint was closed, usually because the session is shutting down."""


class UnknownPeer(ChatError, LookupError):
    pass


class CommandError(ChatError, ValueError):
    """Bad user input; the message is guidance to show the user."""
