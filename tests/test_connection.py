import concurrent.futures
import errno
import socket
import threading
import time

import pytest
import zmq

import tauri_mcp
from tauri_mcp.transport import connection
from tauri_mcp.transport import framing


def make_client(peer, scheduler, correlation='id', timeout=30):
    return tauri_mcp.Client(peer.config, timeout=timeout, correlation=correlation, scheduler=scheduler)


def closed_port():
    sock = socket.socket()
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def test_ping_wire_format(peer, scheduler):

    with make_client(peer, scheduler, correlation='fifo') as client:
        with concurrent.futures.ThreadPoolExecutor(1) as executor:
            result = executor.submit(client.send_command, 'ping')

            request = peer.next_request()
            assert request == {'command': 'ping', 'payload': {}}
            assert bytes(peer.received) == b'{"command":"ping","payload":{}}\n'

            peer.reply(request, data='pong')
            assert result.result(5) == 'pong'


def test_identifier_sent(peer, scheduler):

    with make_client(peer, scheduler) as client:
        pending = client.send('ping')
        request = peer.next_request()

        assert request['id'] == pending.id
        assert request['command'] == 'ping'

        peer.reply(request, data='pong')
        assert pending.wait(5).data == 'pong'


def test_string_payload(peer, scheduler):

    with make_client(peer, scheduler) as client:
        pending = client.send('get_window_info', 'main')
        request = peer.next_request()

        assert request['payload'] == {'window_label': 'main'}
        peer.reply(request, data={'width': 800})
        assert pending.wait(5).data == {'width': 800}


def test_command_error(peer, scheduler):

    with make_client(peer, scheduler) as client:
        with concurrent.futures.ThreadPoolExecutor(1) as executor:
            result = executor.submit(client.send_command, 'get_element_position', {'selector': '#missing'})

            request = peer.next_request()
            peer.reply(request, success=False, error='bad selector')

            with pytest.raises(tauri_mcp.CommandError) as caught:
                result.result(5)

    assert str(caught.value) == 'bad selector'
    assert caught.value.command == 'get_element_position'


def test_failure_without_error(peer, scheduler):

    with make_client(peer, scheduler) as client:
        with concurrent.futures.ThreadPoolExecutor(1) as executor:
            result = executor.submit(client.send_command, 'take_screenshot')
            peer.reply(peer.next_request(), success=False)

            with pytest.raises(tauri_mcp.CommandError) as caught:
                result.result(5)

    assert str(caught.value) == 'Command failed without specific error'


def test_concurrent_connect(peer, scheduler):

    with make_client(peer, scheduler) as client:
        barrier = threading.Barrier(8)

        def connect():
            barrier.wait()
            client.connect()

        threads = [threading.Thread(target=connect) for count in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert client.state == 'connected'
        assert peer.wait_connections(1) == True

        time.sleep(0.2)
        assert peer.connections == 1


def test_write_order(peer, scheduler):

    with make_client(peer, scheduler) as client:
        pendings = [client.send('step', {'index': index}) for index in range(50)]

        for index in range(50):
            request = peer.next_request()
            assert request['payload'] == {'index': index}
            assert request['id'] == pendings[index].id

        assert client.connection.pending.ids() == [pending.id for pending in pendings]


def test_response_order_with_identifiers(peer, scheduler):

    # A serving peer that answers out of order is harmless when responses
    # carry identifiers.

    with make_client(peer, scheduler) as client:
        first = client.send('first')
        second = client.send('second')

        request_first = peer.next_request()
        request_second = peer.next_request()

        peer.reply(request_second, data='second')
        peer.reply(request_first, data='first')

        assert first.wait(5).data == 'first'
        assert second.wait(5).data == 'second'


def test_response_order_without_identifiers(peer, scheduler):

    # Without identifiers the same reordering cannot be detected: each
    # response goes to the oldest outstanding request.

    with make_client(peer, scheduler, correlation='fifo') as client:
        first = client.send('first')
        second = client.send('second')

        request_first = peer.next_request()
        request_second = peer.next_request()
        assert 'id' not in request_first

        peer.reply(request_second, data='second')
        peer.reply(request_first, data='first')

        assert first.wait(5).data == 'second'
        assert second.wait(5).data == 'first'


def test_late_response_with_identifiers(peer, scheduler):

    with make_client(peer, scheduler) as client:
        stale = client.send('slow')
        request_stale = peer.next_request()

        scheduler.advance(30)
        with pytest.raises(tauri_mcp.TransportTimeout):
            stale.wait(0)

        fresh = client.send('fast')
        request_fresh = peer.next_request()

        peer.reply(request_stale, data='stale')
        peer.reply(request_fresh, data='fresh')

        assert fresh.wait(5).data == 'fresh'


def test_late_response_without_identifiers(peer, scheduler):

    with make_client(peer, scheduler, correlation='fifo') as client:
        stale = client.send('slow')
        request_stale = peer.next_request()

        scheduler.advance(30)
        with pytest.raises(tauri_mcp.TransportTimeout):
            stale.wait(0)

        fresh = client.send('fast')
        request_fresh = peer.next_request()

        peer.reply(request_stale, data='stale')
        peer.reply(request_fresh, data='fresh')

        assert fresh.wait(5).data == 'fresh'


def test_unmatched_response_ignored(peer, scheduler, wait):

    with make_client(peer, scheduler) as client:
        client.connect()
        peer.wait_connections(1)

        peer.send({'success': True, 'data': 'nobody', 'id': 'f' * 24})
        peer.send({'not': 'a response'})

        pending = client.send('ping')
        peer.reply(peer.next_request(), data='pong')
        assert pending.wait(5).data == 'pong'
        assert client.state == 'connected'


def test_buffer_overflow(peer, scheduler):

    with make_client(peer, scheduler) as client:
        first = client.send('take_screenshot')
        second = client.send('take_screenshot')
        peer.next_request()
        peer.next_request()

        peer.send_raw(b'x' * (framing.MAXIMUM_BUFFER + 1))

        with pytest.raises(tauri_mcp.TransportOverflow):
            first.wait(10)
        with pytest.raises(tauri_mcp.TransportOverflow):
            second.wait(10)

        # The connection itself survives, with an empty buffer.

        assert client.state == 'connected'

        third = client.send('ping')
        peer.reply(peer.next_request(), data='pong')
        assert third.wait(5).data == 'pong'


class FailingSocket:
    """ Wraps a socket so that the next write fails.
    """

    def __init__(self, sock, error):
        self.sock = sock
        self.error = error

    def sendall(self, data):
        if self.error is not None:
            error = self.error
            self.error = None
            raise error
        return self.sock.sendall(data)

    def __getattr__(self, name):
        return getattr(self.sock, name)


def test_write_error(peer, scheduler):

    with make_client(peer, scheduler) as client:
        client.connect()

        link = client.connection._link
        link.socket = FailingSocket(link.socket, OSError(errno.EIO, 'I/O error'))

        failed = client.send('ping')
        with pytest.raises(tauri_mcp.TransportWriteError):
            failed.wait(5)

        assert client.state == 'connected'

        pending = client.send('ping')
        peer.reply(peer.next_request(), data='pong')
        assert pending.wait(5).data == 'pong'


def test_connect_failure(scheduler):

    config = tauri_mcp.TcpConfig('127.0.0.1', closed_port())

    with tauri_mcp.Client(config, scheduler=scheduler) as client:
        with pytest.raises(tauri_mcp.TransportConnectionError) as caught:
            client.send_command('ping')

        assert str(caught.value).startswith('Failed to connect to socket server: ')
        assert client.state == 'disconnected'

        # A failed connect on demand does not start automatic reconnection.
        assert scheduler.active() == []


def test_reconnect(peer, scheduler, wait):

    with make_client(peer, scheduler) as client:
        client.connect()
        peer.wait_connections(1)

        peer.drop()
        wait(lambda: client.connection._reconnect_timer is not None)
        assert client.state == 'disconnected'
        assert client.connection.reconnect_attempts == 1

        scheduler.advance(2.0)

        assert client.state == 'connected'
        assert client.connection.reconnect_attempts == 0
        assert peer.wait_connections(2) == True

        pending = client.send('ping')
        peer.reply(peer.next_request(), data='pong')
        assert pending.wait(5).data == 'pong'


def test_reconnect_limit(peer, scheduler, wait):

    with make_client(peer, scheduler) as client:
        client.connect()
        peer.wait_connections(1)

        # Nothing will accept the reconnect attempts.
        peer.close()

        wait(lambda: client.connection._reconnect_timer is not None)

        scheduler.advance(2.0)
        assert client.connection.reconnect_attempts == 2

        scheduler.advance(2.0)
        assert client.connection.reconnect_attempts == 3

        scheduler.advance(2.0)
        assert client.connection.reconnect_attempts == 3
        assert client.state == 'disconnected'
        assert scheduler.active() == []


def test_pending_survives_reconnect(peer, scheduler, wait):

    with make_client(peer, scheduler) as client:
        pending = client.send('slow')
        peer.next_request()

        peer.drop()
        wait(lambda: client.connection._reconnect_timer is not None)

        # The request is neither answered nor failed by the disconnect.
        assert pending.poll() == False

        scheduler.advance(2.0)
        assert client.state == 'connected'
        assert pending.poll() == False

        scheduler.advance(28.0)
        with pytest.raises(tauri_mcp.TransportTimeout):
            pending.wait(0)


def test_close_rejects_pending(peer, scheduler):

    client = make_client(peer, scheduler)
    pending = client.send('slow')
    peer.next_request()

    client.close()

    with pytest.raises(tauri_mcp.TransportConnectionError):
        pending.wait(0)

    assert client.state == 'disconnected'
    assert scheduler.active() == []

    with pytest.raises(tauri_mcp.TransportConnectionError):
        client.send('ping')


def test_no_orphans_with_identifiers(peer, scheduler):

    with make_client(peer, scheduler) as client:
        for count in range(5):
            pending = client.send('slow')
            peer.next_request()
            scheduler.advance(30)

            with pytest.raises(tauri_mcp.TransportTimeout):
                pending.wait(0)

        assert client.connection.pending._orphans == {}

    with make_client(peer, scheduler, correlation='fifo') as client:
        pending = client.send('slow')
        peer.next_request()
        scheduler.advance(30)

        assert list(client.connection.pending._orphans) == [pending.id]


def test_signal_socket_failure(peer, scheduler, monkeypatch):

    # A failure after the socket connects must still settle the attempt;
    # otherwise every later connect() would wait on it forever.

    real = connection._Link
    failures = list()

    def broken(sock, generation):
        if not failures:
            failures.append(generation)
            raise zmq.ZMQError(errno.EMFILE)
        return real(sock, generation)

    monkeypatch.setattr(connection, '_Link', broken)

    with make_client(peer, scheduler) as client:
        with pytest.raises(tauri_mcp.TransportConnectionError):
            client.connect()

        assert client.state == 'disconnected'

        client.connect()
        assert client.state == 'connected'

        pending = client.send('ping')
        peer.reply(peer.next_request(), data='pong')
        assert pending.wait(5).data == 'pong'


def test_invalid_correlation(peer):

    with pytest.raises(ValueError):
        connection.Connection(peer.config, correlation='random')


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
