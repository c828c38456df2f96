""" Command line access to the transport. Connection addressing comes from
    the ``TAURI_MCP_*`` environment variables unless overridden:

        python -m tauri_mcp serve
        python -m tauri_mcp send ping
        python -m tauri_mcp send get_window_info main
        python -m tauri_mcp --tcp 127.0.0.1:9999 send execute_js '{"code": "1 + 1"}'

    The ``serve`` subcommand only offers the built-in commands; it exists
    to exercise requesting peers without a desktop application.
"""

import argparse
import signal
import sys
import threading

from . import config
from . import json
from .client import Client
from .dispatch import Dispatcher
from .logging import configure_logging
from .transport.base import TransportError
from .transport.server import Server


def parse_address(arguments, environ=None):
    """ Return the :class:`config.ConnectionConfig` selected by the command
        line *arguments*, falling back to the environment.
    """

    if arguments.tcp:
        host, separator, port = arguments.tcp.rpartition(':')
        if separator == '' or host == '':
            raise ValueError('--tcp expects HOST:PORT, not %r' % (arguments.tcp))
        return config.TcpConfig(host, int(port))

    if arguments.ipc:
        return config.IpcConfig(arguments.ipc)

    return config.from_environment(environ)


def parse_payload(text):
    """ A payload on the command line is either a JSON object, or a bare
        window label.
    """

    if text is None:
        return None

    if text.lstrip().startswith('{'):
        return json.loads(text)

    return text


def build_parser():

    parser = argparse.ArgumentParser(prog='tauri_mcp', description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--log-level', default=None,
                        help='logging level (default: $TAURI_MCP_LOG_LEVEL or WARNING)')

    address = parser.add_mutually_exclusive_group()
    address.add_argument('--tcp', metavar='HOST:PORT', help='use a TCP connection')
    address.add_argument('--ipc', metavar='PATH', help='use a local socket at PATH')

    subparsers = parser.add_subparsers(dest='action', required=True)

    serve = subparsers.add_parser('serve', help='serve the built-in commands')
    serve.add_argument('--unordered', action='store_true',
                       help='write responses as soon as they are ready')

    send = subparsers.add_parser('send', help='send one command and print the result')
    send.add_argument('command')
    send.add_argument('payload', nargs='?', help='JSON object, or a window label')
    send.add_argument('--timeout', type=float, default=30.0)
    send.add_argument('--fifo', action='store_true',
                      help='correlate responses by arrival order, not by id')

    return parser


def serve(address, arguments):

    server = Server(address, Dispatcher(), ordered=not arguments.unordered)
    server.start()

    stopped = threading.Event()

    def interrupted(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, interrupted)
    signal.signal(signal.SIGTERM, interrupted)

    print('serving on', server.address, file=sys.stderr)

    while not stopped.wait(1):
        pass

    server.stop()
    return 0


def send(address, arguments, payload):

    correlation = 'fifo' if arguments.fifo else config.correlation_from_environment()

    with Client(address, timeout=arguments.timeout, correlation=correlation) as client:
        result = client.send_command(arguments.command, payload)

    print(json.dumps(result).decode())
    return 0


def main(argv=None):

    parser = build_parser()
    arguments = parser.parse_args(argv)

    try:
        configure_logging(arguments.log_level)
        address = parse_address(arguments)
        payload = parse_payload(getattr(arguments, 'payload', None))
    except ValueError as e:
        parser.error(str(e))

    try:
        if arguments.action == 'serve':
            return serve(address, arguments)
        return send(address, arguments, payload)
    except TransportError as e:
        print('error:', e, file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
