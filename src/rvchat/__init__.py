"""UDP rendezvous chat (rvchat)

A small presence server keeps a directory of who is online and where; clients
fetch that directory and then talk to each other directly:
- one text codec for every datagram, so nothing else handles raw strings
- server state owned by a single locked directory with a background reaper
- a client session state machine with bounded registration retry

Everything is best-effort UDP. Loss is handled with timeouts and retries,
never with acknowledgements the wire format does not define.
"""

__all__ = []
