"""Transport layer: framing, correlation, and connection management."""

from .base import (
    TransportError,
    TransportConnectionError,
    TransportBindError,
    TransportWriteError,
    TransportTimeout,
    TransportOverflow,
    ProtocolError,
    CommandError,
    UnknownCommand,
)

from . import framing
from . import timer
from . import session
from . import connection
from . import server

from .connection import Connection, CONNECTED, CONNECTING, DISCONNECTED
from .server import Server
