""" Connection addressing for both ends of the command transport. A
    connection is either a local socket (*ipc*) or a TCP socket (*tcp*);
    the two kinds are represented by distinct immutable classes so that
    the kind can never change after construction.
"""

from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass
from typing import Mapping, Optional, Union


SOCKET_FILENAME = 'tauri-mcp.sock'

DEFAULT_KIND = 'ipc'
DEFAULT_TCP_HOST = '127.0.0.1'
DEFAULT_TCP_PORT = 9999
DEFAULT_CORRELATION = 'id'

CORRELATIONS = ('id', 'fifo')

ENV_KIND = 'TAURI_MCP_CONNECTION_TYPE'
ENV_IPC_PATH = 'TAURI_MCP_IPC_PATH'
ENV_TCP_HOST = 'TAURI_MCP_TCP_HOST'
ENV_TCP_PORT = 'TAURI_MCP_TCP_PORT'
ENV_CORRELATION = 'TAURI_MCP_CORRELATION'
ENV_LOG_LEVEL = 'TAURI_MCP_LOG_LEVEL'


def default_ipc_path(platform: Optional[str] = None) -> str:
    """ Return the well-known local socket location for this host. Windows
        has no filesystem sockets, so the name of a named pipe is returned
        there instead.
    """

    if platform is None:
        platform = sys.platform

    if platform == 'win32':
        return '\\\\.\\pipe\\' + SOCKET_FILENAME

    return os.path.join(tempfile.gettempdir(), SOCKET_FILENAME)


@dataclass(frozen=True)
class IpcConfig:
    """ Local socket addressing. If *path* is None the platform default
        from :func:`default_ipc_path` is used.
    """

    path: Optional[str] = None
    kind = 'ipc'

    def resolved_path(self, platform: Optional[str] = None) -> str:
        if self.path:
            return self.path
        return default_ipc_path(platform)

    def describe(self) -> str:
        return 'IPC ' + self.resolved_path()


@dataclass(frozen=True)
class TcpConfig:
    """ TCP addressing; both the *host* and *port* are required. """

    host: str
    port: int
    kind = 'tcp'

    def __post_init__(self):
        if not self.host:
            raise ValueError('TCP configuration requires a host')

        port = int(self.port)
        if port < 0 or port > 65535:
            raise ValueError('TCP port out of range: %d' % (port))

        object.__setattr__(self, 'port', port)

    def describe(self) -> str:
        return 'TCP %s:%d' % (self.host, self.port)


ConnectionConfig = Union[IpcConfig, TcpConfig]


def from_environment(environ: Optional[Mapping[str, str]] = None) -> ConnectionConfig:
    """ Build a :class:`ConnectionConfig` from environment variables. The
        connection kind defaults to *ipc*; the TCP host and port default to
        the loopback interface and port 9999.
    """

    if environ is None:
        environ = os.environ

    kind = environ.get(ENV_KIND, DEFAULT_KIND).strip().lower() or DEFAULT_KIND

    if kind == 'tcp':
        host = environ.get(ENV_TCP_HOST, '').strip() or DEFAULT_TCP_HOST
        port = environ.get(ENV_TCP_PORT, '').strip() or str(DEFAULT_TCP_PORT)

        try:
            port = int(port, 10)
        except ValueError:
            raise ValueError("%s must be an integer, not %r" % (ENV_TCP_PORT, port))

        return TcpConfig(host, port)

    if kind == 'ipc':
        path = environ.get(ENV_IPC_PATH, '').strip() or None
        return IpcConfig(path)

    raise ValueError("%s must be 'ipc' or 'tcp', not %r" % (ENV_KIND, kind))


def correlation_from_environment(environ: Optional[Mapping[str, str]] = None) -> str:
    """ Return the response correlation mode requested via the environment,
        either 'id' (the default) or 'fifo'.
    """

    if environ is None:
        environ = os.environ

    mode = environ.get(ENV_CORRELATION, '').strip().lower() or DEFAULT_CORRELATION

    if mode not in CORRELATIONS:
        raise ValueError("%s must be one of %s, not %r" % (ENV_CORRELATION, CORRELATIONS, mode))

    return mode


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
