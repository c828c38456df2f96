"""Requesting-peer connection manager.

One :class:`Connection` owns one socket at a time, reconnects it when it
drops, and correlates every incoming response with the request awaiting
it. Socket I/O happens on a background thread per socket, driven by a
ZeroMQ poller over the native socket and an inproc signal socket; caller
threads queue requests on a shared outbox and signal the I/O thread.
"""

from __future__ import annotations

import itertools
import logging
import queue
import socket
import threading
from typing import Optional

import zmq

from ..config import ConnectionConfig
from ..protocol.message import Request, Response
from . import framing
from . import timer
from .base import TransportConnectionError, TransportOverflow, TransportWriteError
from .session import DEFAULT_TIMEOUT, PendingRequest, PendingTable


log = logging.getLogger(__name__)

zmq_context = zmq.Context.instance()

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"

# Errors on write that mean the peer is gone, not just this one request.
_CLOSED_ERRORS = (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)

_link_ids = itertools.count()


class _Attempt:
    """One connect attempt, shared by every caller that asks to connect
    while it is in flight.
    """

    def __init__(self):
        self.error: Optional[BaseException] = None
        self.done = threading.Event()

    def finish(self, error: Optional[BaseException]) -> None:
        self.error = error
        self.done.set()

    def wait(self) -> None:
        self.done.wait()
        if self.error is not None:
            raise self.error


class _Link:
    """Everything that lives exactly as long as one socket: the socket
    itself, its receive buffer, its signal sockets, and its I/O thread.
    """

    def __init__(self, sock: socket.socket, generation: int):
        self.socket = sock
        self.generation = generation
        self.decoder = framing.Decoder()
        self.closed = False
        self.lost = False

        internal = f"inproc://tauri_mcp.connection.signal.{next(_link_ids)}"
        self.signal_rx = zmq_context.socket(zmq.PAIR)
        self.signal_rx.setsockopt(zmq.LINGER, 0)
        self.signal_rx.bind(internal)
        self.signal_tx = zmq_context.socket(zmq.PAIR)
        self.signal_tx.setsockopt(zmq.LINGER, 0)
        self.signal_tx.connect(internal)
        self.signal_lock = threading.Lock()

        self.thread: Optional[threading.Thread] = None

    def signal(self) -> None:
        # ZeroMQ sockets are not thread safe; callers share signal_tx.
        with self.signal_lock:
            if self.closed:
                return
            self.signal_tx.send(b"")

    def shutdown(self) -> None:
        """Ask the I/O thread to close the socket and exit."""

        with self.signal_lock:
            if self.closed:
                return
            self.closed = True
            self.signal_tx.send(b"")

    def release(self) -> None:
        """Close everything; only the I/O thread calls this, on its way out."""

        with self.signal_lock:
            self.closed = True
            self.signal_tx.close()
        self.signal_rx.close()

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.socket.close()


class Connection:
    """Maintain a connection to the serving peer described by *config*.

    :func:`submit` connects on demand, so callers never need to call
    :func:`connect` themselves. If the socket closes unexpectedly a
    reconnect is scheduled *reconnect_delay* seconds later, up to
    *reconnect_limit* consecutive attempts; after that the connection stays
    down until the next caller asks for it.

    *correlation* selects how responses are matched to requests: 'id'
    sends each request's identifier and expects it echoed back, 'fifo'
    sends the bare envelope and assumes responses arrive in request order.
    """

    reconnect_delay = 2.0
    reconnect_limit = 3
    connect_timeout = 5.0
    read_size = 65536

    def __init__(self, config: ConnectionConfig, timeout: float = DEFAULT_TIMEOUT,
                 correlation: str = "id", scheduler: Optional[timer.Scheduler] = None):

        if correlation not in ("id", "fifo"):
            raise ValueError(f"unknown correlation mode: {correlation!r}")

        if scheduler is None:
            scheduler = timer.default()

        self.config = config
        self.correlation = correlation
        self.scheduler = scheduler
        self.pending = PendingTable(timeout, scheduler, keep_orphans=(correlation == "fifo"))

        self.state = DISCONNECTED
        self.generation = 0
        self.reconnect_attempts = 0

        self._state_lock = threading.Lock()
        self._submit_lock = threading.Lock()
        self._attempt: Optional[_Attempt] = None
        self._link: Optional[_Link] = None
        self._reconnect_timer: Optional[timer.Timer] = None
        self._closed = False

        self._outbox: queue.SimpleQueue = queue.SimpleQueue()

    def __repr__(self):
        return f"<Connection {self.config.describe()} {self.state}>"

    @property
    def connected(self) -> bool:
        return self.state == CONNECTED

    # --- connection lifecycle ---

    def connect(self) -> None:
        """Ensure the socket is connected, blocking until it is.

        Returns immediately if already connected. If another thread is in
        the middle of connecting, wait for that attempt instead of opening a
        second socket. Raises :class:`TransportConnectionError` on failure.
        """

        with self._state_lock:
            if self._closed:
                raise TransportConnectionError("connection has been closed")

            if self.state == CONNECTED:
                return

            if self.state == CONNECTING:
                attempt = self._attempt
                owner = False
            else:
                self.state = CONNECTING
                attempt = self._attempt = _Attempt()
                owner = True

        if owner:
            self._open(attempt)

        attempt.wait()

    def _open(self, attempt: _Attempt) -> None:
        description = self.config.describe()
        log.info("connecting to %s (attempt %d)", description, self.reconnect_attempts + 1)

        try:
            sock = self._open_socket()
        except OSError as e:
            log.warning("socket connection error: %s: %s", description, e)
            error = TransportConnectionError(f"{description}: {e}")
            error.__cause__ = e

            with self._state_lock:
                self.state = DISCONNECTED
                self._attempt = None

            attempt.finish(error)
            return

        with self._state_lock:
            if self._closed:
                sock.close()
                self.state = DISCONNECTED
                self._attempt = None
                attempt.finish(TransportConnectionError("connection has been closed"))
                return

            try:
                link = _Link(sock, self.generation + 1)
            except zmq.ZMQError as e:
                log.error("cannot create I/O signal sockets: %s", e)
                sock.close()
                self.state = DISCONNECTED
                self._attempt = None

                error = TransportConnectionError(f"{description}: {e}")
                error.__cause__ = e
                attempt.finish(error)
                return

            self.generation = link.generation
            link.thread = threading.Thread(target=self.run, args=(link,), daemon=True,
                                           name=f"tauri_mcp.connection.{link.generation}")

            self._link = link
            self.reconnect_attempts = 0
            self.state = CONNECTED
            self._attempt = None

        self.pending.forget(link.generation)
        link.thread.start()

        log.info("connected to socket server at %s", description)
        attempt.finish(None)

    def _open_socket(self) -> socket.socket:
        config = self.config

        if config.kind == "tcp":
            sock = socket.create_connection((config.host, config.port), timeout=self.connect_timeout)
        else:
            path = config.resolved_path()

            if path.startswith("\\\\.\\pipe\\") or not hasattr(socket, "AF_UNIX"):
                raise TransportConnectionError(
                    f"named pipe {path} is not supported by this client, use a tcp connection")

            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.settimeout(self.connect_timeout)
            try:
                sock.connect(path)
            except OSError:
                sock.close()
                raise

        sock.settimeout(None)
        return sock

    def close(self) -> None:
        """Close the connection for good, rejecting anything still pending."""

        with self._state_lock:
            self._closed = True
            link = self._link
            self._link = None
            self.state = DISCONNECTED
            reconnect = self._reconnect_timer
            self._reconnect_timer = None

        if reconnect is not None:
            reconnect.cancel()

        if link is not None:
            link.lost = True
            link.shutdown()

        while True:
            try:
                self._outbox.get(block=False)
            except queue.Empty:
                break

        count = self.pending.reject_all(TransportConnectionError("connection closed"))
        if count:
            log.info("closed connection with %d requests pending", count)

    def _lost(self, link: _Link, error: Optional[BaseException]) -> None:
        """The socket behind *link* is gone; tear it down and maybe
        schedule a reconnect.
        """

        with self._state_lock:
            if link.lost:
                return
            link.lost = True

            current = self._link is link
            if current:
                self._link = None
                self.state = DISCONNECTED

            reconnect = current and not self._closed

        link.shutdown()

        if error is None:
            log.info("socket connection closed")
        else:
            log.warning("socket connection lost: %s", error)

        if reconnect:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._state_lock:
            if self._closed or self.state != DISCONNECTED:
                return

            if self.reconnect_attempts >= self.reconnect_limit:
                log.error("giving up on automatic reconnection after %d attempts", self.reconnect_attempts)
                return

            self.reconnect_attempts += 1
            attempt = self.reconnect_attempts
            self._reconnect_timer = self.scheduler.call_later(self.reconnect_delay, self._reconnect)

        log.warning("attempting to reconnect in %g seconds (%d of %d)",
                    self.reconnect_delay, attempt, self.reconnect_limit)

    def _reconnect(self) -> None:
        with self._state_lock:
            self._reconnect_timer = None

        try:
            self.connect()
        except TransportConnectionError as e:
            log.error("reconnection failed: %s", e)
            self._schedule_reconnect()

    # --- requests ---

    def submit(self, request: Request) -> PendingRequest:
        """Queue *request* for transmission and return its
        :class:`PendingRequest`. Connects first if necessary.
        """

        self.connect()

        with self._submit_lock:
            pending = self.pending.register(self.generation, request)
            if self.correlation == "id":
                request.id = pending.id
            self._outbox.put(pending)

        with self._state_lock:
            link = self._link

        # If the link dropped in the meantime the request stays queued and
        # goes out on the next connection, or times out.
        if link is not None:
            link.signal()

        return pending

    # --- I/O thread ---

    def run(self, link: _Link) -> None:
        # The poller reports native sockets by file descriptor.
        fileno = link.socket.fileno()

        poller = zmq.Poller()
        poller.register(link.socket, zmq.POLLIN)
        poller.register(link.signal_rx, zmq.POLLIN)

        try:
            # Anything queued while no socket was available goes first.
            self._handle_outgoing(link)

            while not link.closed:
                for active, _flag in poller.poll(10000):
                    if link.closed:
                        break
                    if active == link.signal_rx:
                        self._handle_outgoing(link)
                    elif active == fileno:
                        self._handle_incoming(link)
        except Exception as e:
            log.exception("connection I/O thread failed")
            self._lost(link, e)
        finally:
            link.release()

    def _handle_outgoing(self, link: _Link) -> None:
        while True:
            try:
                link.signal_rx.recv(flags=zmq.NOBLOCK)
            except zmq.Again:
                break

        while not link.lost:
            try:
                pending = self._outbox.get(block=False)
            except queue.Empty:
                break

            self._write(link, pending)

    def _write(self, link: _Link, pending: PendingRequest) -> None:
        if not self.pending.mark_written(pending.id, link.generation):
            # Timed out or rejected while it sat in the outbox.
            return

        frame = framing.encode(pending.request)
        log.debug("sending request %s: %s", pending.id, frame)

        try:
            link.socket.sendall(frame)
        except OSError as e:
            log.error("error writing to socket: %s", e)
            self.pending.reject(pending.id, TransportWriteError(f"Failed to send request: {e}"))

            if isinstance(e, _CLOSED_ERRORS):
                self._lost(link, e)

    def _handle_incoming(self, link: _Link) -> None:
        try:
            data = link.socket.recv(self.read_size)
        except OSError as e:
            self._lost(link, e)
            return

        if not data:
            self._lost(link, None)
            return

        log.debug("received %d bytes, buffer size: %d", len(data), len(link.decoder) + len(data))

        overflow = None
        try:
            frames = link.decoder.feed(data)
        except TransportOverflow as e:
            frames = e.frames
            overflow = e

        for value in frames:
            self._handle_frame(link, value)

        if overflow is not None:
            count = self.pending.reject_all(overflow)
            log.error("buffer overflow, cleared buffer and rejected %d pending requests", count)

    def _handle_frame(self, link: _Link, value) -> None:
        try:
            response = Response.from_dict(value)
        except ValueError as e:
            log.warning("ignoring frame that is not a response (%s): %r", e, value)
            return

        if self.correlation == "fifo":
            response.id = None

        pending = self.pending.settle(response, link.generation)

        if pending is not None and not response.success:
            log.info("command %s failed with error: %s", pending.request.command, response.error)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
