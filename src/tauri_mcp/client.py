""" The public face of the requesting peer. A :class:`Client` hides the
    socket entirely: :func:`Client.send_command` connects on demand, sends
    one command, and either returns the command's result or raises.

    There is deliberately no module-level client instance. Build one at the
    entry point of the program, for example with
    :func:`Client.from_environment`, and hand it to whatever needs it.
"""

import logging

from .config import IpcConfig, correlation_from_environment, from_environment
from .protocol.message import Request
from .transport import connection
from .transport.base import CommandError, TransportConnectionError, TransportTimeout
from .transport.session import DEFAULT_TIMEOUT


log = logging.getLogger(__name__)


class Client:
    """ Issue commands to a serving peer. The *config* is an
        :class:`tauri_mcp.config.IpcConfig` or
        :class:`tauri_mcp.config.TcpConfig`; if it is None the platform
        default local socket is used.

        *timeout* bounds how long any one command may wait for its response.
        *correlation* is 'id' (responses are matched by echoed request
        identifier) or 'fifo' (responses are matched by arrival order, for
        serving peers that do not echo identifiers). *scheduler* is the
        :class:`tauri_mcp.transport.timer.Scheduler` used for timeouts and
        reconnection; tests substitute one with a fake clock.

        A single :class:`Client` is safe to share between threads.
    """

    # Extra time to wait beyond the timeout before the caller gives up on
    # its own, in case the scheduler thread is running late.
    grace = 1.0

    def __init__(self, config=None, timeout=DEFAULT_TIMEOUT, correlation='id', scheduler=None):

        if config is None:
            config = IpcConfig()

        self.timeout = timeout
        self.connection = connection.Connection(config, timeout, correlation, scheduler)


    def __enter__(self):
        return self


    def __exit__(self, *exc_info):
        self.close()


    def __repr__(self):
        return '<Client %s>' % (self.connection.config.describe())


    @classmethod
    def from_environment(cls, environ=None, **kwargs):
        """ Construct a :class:`Client` from the ``TAURI_MCP_*`` environment
            variables. Keyword arguments are passed through to the
            constructor, and take precedence over the environment.
        """

        addressing = from_environment(environ)
        kwargs.setdefault('correlation', correlation_from_environment(environ))

        log.info('creating %s socket client: %s', addressing.kind.upper(), addressing.describe())
        return cls(addressing, **kwargs)


    @property
    def config(self):
        return self.connection.config


    @property
    def state(self):
        return self.connection.state


    def connect(self):
        """ Connect now rather than on the first command. Raises
            :class:`TransportConnectionError` on failure.
        """

        try:
            self.connection.connect()
        except TransportConnectionError as e:
            raise TransportConnectionError('Failed to connect to socket server: ' + str(e)) from e


    def close(self):
        self.connection.close()


    def send(self, command, payload=None):
        """ Send a command without waiting for it, and return the
            :class:`tauri_mcp.transport.session.PendingRequest` for it.
            :func:`send_command` is the blocking equivalent.
        """

        request = Request(command, payload)

        if isinstance(payload, str):
            log.debug('sending string payload as window_label: %s', payload)

        self.connect()
        return self.connection.submit(request)


    def send_command(self, command, payload=None):
        """ Send *command* with *payload* to the serving peer and return the
            data from its response. The *payload* is a dictionary of
            parameters, or a bare string naming the target window, which is
            shorthand for ``{'window_label': payload}``.

            Raises :class:`CommandError` if the serving peer reports a
            failure, :class:`TransportTimeout` if no response arrives in
            time, and another :class:`TransportError` subclass if the
            request could not be delivered at all.
        """

        pending = self.send(command, payload)
        response = pending.wait(self.timeout + self.grace)

        if response is None:
            # The scheduler should have evicted it by now. Do it here so the
            # caller is never left waiting.
            self.connection.pending.evict(pending.id)
            response = pending.wait(0)

            if response is None:
                raise TransportTimeout('Request timed out after %g seconds' % (self.timeout))

        if response.success:
            return response.data

        raise CommandError(response.error, command)


# end of class Client


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
