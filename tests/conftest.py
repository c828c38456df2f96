import queue
import socket
import threading
import time

import pytest

import tauri_mcp
from tauri_mcp.transport import framing
from tauri_mcp.transport.timer import Timer


class ManualScheduler:
    """ Stand-in for tauri_mcp.transport.timer.Scheduler. Time only moves
        when a test calls advance(), and due callbacks run in the test's
        own thread.
    """

    def __init__(self):
        self.time = 0.0
        self.timers = list()
        self.lock = threading.Lock()

    def now(self):
        return self.time

    def call_later(self, delay, callback):
        timer = Timer(self.time + delay, callback)
        with self.lock:
            self.timers.append(timer)
        return timer

    def active(self):
        with self.lock:
            return [timer for timer in self.timers if timer.active]

    def advance(self, seconds):
        self.time += seconds

        while True:
            due = [timer for timer in self.active() if timer.deadline <= self.time]
            if not due:
                break

            due.sort(key=lambda timer: timer.deadline)
            for timer in due:
                if timer.active:
                    timer.fired = True
                    timer.callback()


class ScriptedPeer:
    """ A bare TCP serving peer whose every response is written by the
        test. Requests are decoded and queued as they arrive; the raw bytes
        are kept as well, for checks against the exact wire format.
    """

    def __init__(self):
        self.listener = socket.create_server(('127.0.0.1', 0))
        self.listener.settimeout(0.1)
        self.port = self.listener.getsockname()[1]

        self.requests = queue.Queue()
        self.received = bytearray()
        self.connection = None
        self.connections = 0
        self.shutdown = False
        self.changed = threading.Condition()

        self.thread = threading.Thread(target=self.run)
        self.thread.daemon = True
        self.thread.start()

    @property
    def config(self):
        return tauri_mcp.TcpConfig('127.0.0.1', self.port)

    def run(self):
        while self.shutdown == False:
            try:
                sock, _address = self.listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return

            with self.changed:
                self.connection = sock
                self.connections += 1
                self.changed.notify_all()

            reader = threading.Thread(target=self.read, args=(sock,))
            reader.daemon = True
            reader.start()

    def read(self, sock):
        decoder = framing.Decoder()
        while True:
            try:
                data = sock.recv(65536)
            except OSError:
                return
            if not data:
                return

            with self.changed:
                self.received += data

            for frame in decoder.feed(data):
                self.requests.put(frame)

    def wait_connections(self, count, timeout=5):
        with self.changed:
            return self.changed.wait_for(lambda: self.connections >= count, timeout)

    def next_request(self, timeout=5):
        return self.requests.get(timeout=timeout)

    def send(self, value):
        self.connection.sendall(framing.encode(value))

    def send_raw(self, data):
        self.connection.sendall(data)

    def reply(self, request, success=True, data=None, error=None, echo=True):
        response = {'success': success}
        if data is not None:
            response['data'] = data
        if error is not None:
            response['error'] = error
        if echo and 'id' in request:
            response['id'] = request['id']
        self.send(response)

    def drop(self):
        connection = self.connection
        self.connection = None
        if connection is not None:
            try:
                connection.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            connection.close()

    def close(self):
        self.shutdown = True
        self.listener.close()
        self.drop()
        self.thread.join(1)


def wait_for(condition, timeout=5):
    """ Poll *condition* until it returns True, or fail the test.
    """

    end = time.time() + timeout
    while time.time() < end:
        if condition():
            return
        time.sleep(0.005)

    raise AssertionError('condition not met within %.1f seconds' % (timeout))


@pytest.fixture
def wait():
    return wait_for


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def peer():
    peer = ScriptedPeer()
    yield peer
    peer.close()


@pytest.fixture
def dispatcher():
    return tauri_mcp.Dispatcher()


@pytest.fixture
def server(dispatcher):
    server = tauri_mcp.Server(tauri_mcp.TcpConfig('127.0.0.1', 0), dispatcher)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def server_config(server):
    host, port = server.address
    return tauri_mcp.TcpConfig(host, port)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
