"""Serving-peer socket server.

Accepts any number of requesting peers on a local socket or TCP address,
decodes their request frames, runs the matching command handlers on a
worker pool, and writes the responses back.

Requesting peers that do not send request identifiers match responses
purely by arrival order, so by default every connection's responses are
written strictly in the order its requests arrived, however the handlers
interleave. Passing ``ordered=False`` writes each response as soon as its
handler finishes; that is only safe for requesters that correlate by
identifier.
"""

from __future__ import annotations

import collections
import concurrent.futures
import itertools
import logging
import os
import socket
import threading
from typing import Deque, Dict, Optional, Tuple, Union

import zmq

from ..config import ConnectionConfig
from .. import dispatch
from .. import json
from ..protocol.message import Response
from . import framing
from .base import TransportBindError, TransportOverflow


log = logging.getLogger(__name__)

zmq_context = zmq.Context.instance()

_server_ids = itertools.count()


class _Session:
    """One accepted requester connection, and the responses it is owed."""

    def __init__(self, sock: socket.socket, peer):
        self.socket = sock
        self.fileno = sock.fileno()
        self.peer = peer
        self.decoder = framing.Decoder(strict=True)
        self.outstanding: Deque[concurrent.futures.Future] = collections.deque()
        self.closed = False

    def __repr__(self):
        return f"<session {self.peer!r}>"


class Server:
    """Serve the commands registered with *dispatcher* on the address
    described by *config*. Call :func:`start` to begin accepting
    connections, and :func:`stop` to shut down; a :class:`Server` can also
    be used as a context manager.
    """

    worker_count = 8
    backlog = 16
    read_size = 65536

    def __init__(self, config: ConnectionConfig, dispatcher: Optional[dispatch.Dispatcher] = None,
                 ordered: bool = True, workers: Optional[int] = None):

        if dispatcher is None:
            dispatcher = dispatch.Dispatcher()
        if workers is None:
            workers = self.worker_count

        self.config = config
        self.dispatcher = dispatcher
        self.ordered = ordered

        self.listener: Optional[socket.socket] = None
        self.shutdown = False
        self.thread: Optional[threading.Thread] = None
        self.workers = concurrent.futures.ThreadPoolExecutor(max_workers=workers,
                                                             thread_name_prefix="tauri_mcp.worker")

        # Keyed by file descriptor; that is what the poller reports for
        # native sockets.
        self._sessions: Dict[int, _Session] = {}
        self._path: Optional[str] = None

        internal = f"inproc://tauri_mcp.server.signal.{next(_server_ids)}"
        self._signal_rx = zmq_context.socket(zmq.PAIR)
        self._signal_rx.setsockopt(zmq.LINGER, 0)
        self._signal_rx.bind(internal)
        self._signal_tx = zmq_context.socket(zmq.PAIR)
        self._signal_tx.setsockopt(zmq.LINGER, 0)
        self._signal_tx.connect(internal)
        self._signal_lock = threading.Lock()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.stop()

    @property
    def address(self) -> Union[str, Tuple[str, int], None]:
        """The bound address: a path for IPC, (host, port) for TCP."""

        if self.listener is None:
            return None
        if self._path is not None:
            return self._path
        return tuple(self.listener.getsockname()[:2])

    # --- lifecycle ---

    def start(self) -> None:
        if self.thread is not None:
            raise RuntimeError("server already started")

        self.listener = self._bind()
        log.info("socket server started at %s", self.address)

        self.thread = threading.Thread(target=self.run, name="tauri_mcp.server", daemon=True)
        self.thread.start()

    def _bind(self) -> socket.socket:
        config = self.config

        if config.kind == "tcp":
            try:
                return socket.create_server((config.host, config.port), backlog=self.backlog)
            except OSError as e:
                raise TransportBindError(f"Failed to bind to {config.host}:{config.port}: {e}") from e

        path = config.resolved_path()

        if path.startswith("\\\\.\\pipe\\") or not hasattr(socket, "AF_UNIX"):
            raise TransportBindError(f"named pipe {path} is not supported, use a tcp server")

        # A previous process that died without cleaning up leaves its socket
        # file behind, and bind() refuses to reuse it.
        if os.path.exists(path):
            log.info("removing stale socket file: %s", path)
            try:
                os.unlink(path)
            except OSError as e:
                raise TransportBindError(f"Failed to remove stale socket: {e}") from e

        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(path)
            listener.listen(self.backlog)
        except OSError as e:
            listener.close()
            raise TransportBindError(f"Failed to create local socket at {path}: {e}") from e

        self._path = path
        return listener

    def stop(self) -> None:
        """Stop accepting connections, drop every session, and release the
        listening address.
        """

        self.shutdown = True
        self.signal()

        if self.thread is not None and self.thread is not threading.current_thread():
            self.thread.join(5)

        self.workers.shutdown(wait=False)

        with self._signal_lock:
            self._signal_tx.close()
        self._signal_rx.close()

        log.info("socket server stopped")

    def signal(self) -> None:
        with self._signal_lock:
            if self._signal_tx.closed:
                return
            self._signal_tx.send(b"")

    # --- poll thread ---

    def run(self) -> None:
        listener = self.listener.fileno()

        poller = zmq.Poller()
        poller.register(self.listener, zmq.POLLIN)
        poller.register(self._signal_rx, zmq.POLLIN)

        try:
            while self.shutdown == False:
                for active, _flag in poller.poll(1000):
                    if active == self._signal_rx:
                        self._drain_signals()
                        for session in list(self._sessions.values()):
                            self._flush(session)
                    elif active == listener:
                        self._accept(poller)
                    else:
                        session = self._sessions.get(active)
                        if session is not None:
                            self._req_incoming(poller, session)
        finally:
            for session in list(self._sessions.values()):
                self._close_session(poller, session)

            self.listener.close()
            if self._path is not None:
                try:
                    os.unlink(self._path)
                except OSError:
                    pass

    def _drain_signals(self) -> None:
        while True:
            try:
                self._signal_rx.recv(flags=zmq.NOBLOCK)
            except zmq.Again:
                break

    def _accept(self, poller: zmq.Poller) -> None:
        try:
            sock, peer = self.listener.accept()
        except OSError as e:
            log.error("error accepting connection: %s", e)
            return

        sock.setblocking(True)
        session = _Session(sock, peer or self._path)
        self._sessions[session.fileno] = session
        poller.register(sock, zmq.POLLIN)

        log.info("accepted new connection from %s", session.peer)

    def _close_session(self, poller: zmq.Poller, session: _Session) -> None:
        if session.closed:
            return
        session.closed = True

        self._sessions.pop(session.fileno, None)
        poller.unregister(session.socket)

        for future in session.outstanding:
            future.cancel()
        session.outstanding.clear()

        try:
            session.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        session.socket.close()

    def _req_incoming(self, poller: zmq.Poller, session: _Session) -> None:
        try:
            data = session.socket.recv(self.read_size)
        except OSError as e:
            log.info("client %s disconnected during read: %s", session.peer, e)
            self._close_session(poller, session)
            return

        if not data:
            log.info("client %s disconnected cleanly", session.peer)
            self._close_session(poller, session)
            return

        overflow = None
        try:
            frames = session.decoder.feed(data)
        except TransportOverflow as e:
            frames = e.frames
            overflow = e

        for frame in frames:
            log.debug("received command frame: %r", frame)
            future = self.workers.submit(self._rep_build, frame)
            session.outstanding.append(future)
            future.add_done_callback(self._rep_ready)

        if overflow is not None:
            log.error("client %s: %s; dropping connection", session.peer, overflow)
            self._close_session(poller, session)

    def _rep_build(self, frame) -> bytes:
        """Run the command for one request frame and return the encoded
        response frame. Runs on a worker thread.
        """

        response = self.dispatcher.handle_frame(frame)

        try:
            return framing.encode(response)
        except json.JSONEncodeError as e:
            log.error("cannot encode response %r: %s", response, e)
            failed = Response.failed(f"Failed to serialize response: {e}", response.id)

        return framing.encode(failed)

    def _rep_ready(self, future: concurrent.futures.Future) -> None:
        # Runs on a worker thread; hand the write back to the poll thread.
        self.signal()

    def _flush(self, session: _Session) -> None:
        """Write every response that is ready to go."""

        outstanding = session.outstanding

        if self.ordered:
            while outstanding and outstanding[0].done():
                self._rep_outgoing(session, outstanding.popleft())
        else:
            for future in [future for future in outstanding if future.done()]:
                outstanding.remove(future)
                self._rep_outgoing(session, future)

    def _rep_outgoing(self, session: _Session, future: concurrent.futures.Future) -> None:
        if session.closed or future.cancelled():
            return

        try:
            frame = future.result()
        except Exception as e:
            log.exception("dispatcher failed")
            frame = framing.encode(Response.failed(str(e) or type(e).__name__))

        log.debug("sending response: length = %d bytes", len(frame))

        try:
            session.socket.sendall(frame)
        except OSError as e:
            # The poll loop notices the closed socket on its next read.
            log.info("client %s disconnected during write: %s", session.peer, e)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
