""" Command dispatch for the serving peer. A :class:`Dispatcher` maps a
    command name to the handler that implements it; the handlers themselves
    belong to the application, and are opaque to the transport.
"""

import logging
import threading

from .protocol.message import Request, Response
from .transport.base import ProtocolError, UnknownCommand


log = logging.getLogger(__name__)


class Dispatcher:
    """ The :class:`Dispatcher` owns the registry of command handlers. A
        handler is any callable accepting a single argument, the normalized
        payload dictionary of the request; its return value becomes the
        *data* of a successful response, and any exception it raises becomes
        the *error* of an unsuccessful one. Exceptions never escape
        :func:`handle`.

        A built-in ``ping`` handler is registered unless *builtins* is False.
    """

    def __init__(self, builtins=True):

        self._handlers = dict()
        self._lock = threading.Lock()

        if builtins:
            self.register('ping', ping)


    def __contains__(self, name):
        return name in self._handlers


    def names(self):
        """ Return the sorted list of registered command names.
        """

        with self._lock:
            return sorted(self._handlers)


    def register(self, name, handler):
        """ Register *handler* as the implementation of command *name*,
            replacing any previous registration.
        """

        if not callable(handler):
            raise TypeError('handler for %r is not callable' % (name))

        with self._lock:
            self._handlers[name] = handler


    def unregister(self, name):
        with self._lock:
            self._handlers.pop(name, None)


    def command(self, name):
        """ Decorator form of :func:`register`::

                @dispatcher.command('get_window_info')
                def window_info(payload):
                    ...
        """

        def decorator(handler):
            self.register(name, handler)
            return handler

        return decorator


    def lookup(self, name):
        """ Return the handler for *name*, or raise :class:`UnknownCommand`.
        """

        with self._lock:
            try:
                return self._handlers[name]
            except KeyError:
                pass

        raise UnknownCommand('Unknown command: ' + name, name)


    def handle(self, request):
        """ Run the handler for a :class:`Request` and return the
            :class:`Response` to send back. The identifier of the request,
            if any, is echoed in the response.
        """

        try:
            handler = self.lookup(request.command)
        except UnknownCommand as e:
            log.info('unknown command: %s', request.command)
            return Response.failed(str(e), request.id)

        log.debug('processing command: %s', request.command)

        try:
            data = handler(request.payload)
        except Exception as e:
            log.debug('command %s failed', request.command, exc_info=True)
            error = str(e) or type(e).__name__
            log.info('command error: %s: %s', request.command, error)
            return Response.failed(error, request.id)

        return Response.ok(data, request.id)


    def handle_frame(self, value):
        """ Handle one decoded frame from the wire. *value* is either the
            decoded JSON value, or the :class:`ProtocolError` the decoder
            produced for a line that was not JSON at all. Malformed requests
            are answered, not dropped, so a strictly ordered requester does
            not fall out of step.
        """

        if isinstance(value, ProtocolError):
            return Response.failed('Invalid request format: ' + str(value))

        try:
            request = Request.from_dict(value)
        except ValueError as e:
            id = value.get('id') if isinstance(value, dict) else None
            if id is not None:
                id = str(id)
            return Response.failed('Invalid request format: ' + str(e), id)

        return self.handle(request)


# end of class Dispatcher



def ping(payload):
    """ Liveness check; the payload is ignored.
    """

    return 'pong'


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
