""" Python implementation of the desktop automation command transport.
    A requesting peer (:class:`Client`) sends named commands with JSON
    payloads to a serving peer (:class:`Server` with a :class:`Dispatcher`)
    over a local socket or TCP, one newline-delimited JSON frame per
    message.
"""

# Utility components.

from . import json
from . import config

# Submodules used by multiple other components.

from . import protocol
from . import transport
from . import dispatch

# Primary public-facing interfaces.

from .client import Client
from .config import IpcConfig, TcpConfig
from .dispatch import Dispatcher
from .transport import Server
from .transport.base import (
    TransportError,
    TransportConnectionError,
    TransportTimeout,
    TransportOverflow,
    TransportWriteError,
    CommandError,
    UnknownCommand,
)

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
