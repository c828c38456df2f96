"""Transport-layer exceptions.

Every failure a caller of :meth:`tauri_mcp.client.Client.send_command` can
see derives from :class:`TransportError`. They live outside the protocol
package so the envelope model stays free of I/O concerns.
"""

from __future__ import annotations

from typing import List, Optional


class TransportError(Exception):
    """Base class for all transport-layer errors."""


class TransportConnectionError(TransportError, ConnectionError):
    """The transport could not establish or maintain a connection."""


class TransportBindError(TransportError):
    """The serving peer could not listen on its configured address."""


class TransportWriteError(TransportError):
    """A request frame could not be written to an open connection."""


class TransportTimeout(TransportError, TimeoutError):
    """A request did not receive a timely response."""


class TransportOverflow(TransportError):
    """The receive buffer grew past its ceiling without yielding a frame.

    Any frames that were decoded from the same chunk before the ceiling was
    hit are carried on the exception, so they can still be delivered.
    """

    def __init__(self, message: str, frames: Optional[List] = None):
        TransportError.__init__(self, message)
        self.frames = list(frames or ())


class ProtocolError(TransportError):
    """A complete frame did not contain a valid envelope."""

    def __init__(self, message: str, line: bytes = b''):
        TransportError.__init__(self, message)
        self.line = line


class CommandError(TransportError):
    """The serving peer reported that a command failed.

    The exception text is the message supplied by the serving peer.
    """

    def __init__(self, message: str, command: Optional[str] = None):
        TransportError.__init__(self, message)
        self.command = command


class UnknownCommand(CommandError):
    """No handler is registered for the requested command name."""


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
