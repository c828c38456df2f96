"""Request/response correlation for the requesting peer."""

from __future__ import annotations

import functools
import logging
import random
import threading
import time
from typing import Dict, Optional

from ..protocol.message import Request, Response
from . import timer
from .base import TransportError, TransportTimeout


log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class PendingRequest:
    """Client-side handle for one in-flight request.

    The request is settled exactly once: with a :class:`Response`, with an
    error, or by timeout eviction. Callers block in :func:`wait`.
    """

    def __init__(self, id: str, generation: int = 0, request: Optional[Request] = None):
        self.id = id
        self.generation = generation
        self.request = request
        self.created = time.time()
        self.written = False

        self.response: Optional[Response] = None
        self.error: Optional[BaseException] = None
        self.timer: Optional[timer.Timer] = None
        self.rep_event = threading.Event()

    def __repr__(self):
        return f"PendingRequest({self.id!r}, generation={self.generation})"

    def poll(self) -> bool:
        """Return True if the request has been settled."""
        return self.rep_event.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[Response]:
        """Block until the request is settled and return the response.

        If the request was rejected the error is raised here. None is
        returned if *timeout* elapses first and the request is still pending.
        """

        self.rep_event.wait(timeout)

        if self.error is not None:
            raise self.error
        return self.response

    def _complete(self, response: Response) -> None:
        self.response = response
        self.rep_event.set()

    def _fail(self, error: BaseException) -> None:
        self.error = error
        self.rep_event.set()


class PendingTable:
    """Owns every :class:`PendingRequest` from registration to settlement.

    All mutation happens under one lock, so a timeout and an arriving
    response may race freely; whichever removes the entry first settles it
    and the other becomes a no-op.

    Requests are stamped with the connection *generation* they were sent
    on. Identifier-less responses are matched to the oldest request of the
    current generation, which is only correct when the serving peer answers
    strictly in arrival order. With *keep_orphans* set, requests that timed
    out after being written are remembered as orphans, so the late answer
    for one of them is discarded rather than handed to a newer request.
    Tables that only ever see identified responses leave it off; a late
    answer to an evicted identifier is discarded regardless.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, scheduler: Optional[timer.Scheduler] = None,
                 keep_orphans: bool = True):
        if scheduler is None:
            scheduler = timer.default()

        self.timeout = timeout
        self.scheduler = scheduler
        self.keep_orphans = keep_orphans

        self._lock = threading.Lock()
        self._pending: Dict[str, PendingRequest] = {}
        self._orphans: Dict[str, int] = {}

    def __contains__(self, id: str) -> bool:
        with self._lock:
            return id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def ids(self):
        with self._lock:
            return sorted(self._pending)

    def register(self, generation: int = 0, request: Optional[Request] = None) -> PendingRequest:
        """Create, store, and return a new :class:`PendingRequest`, and
        schedule its eviction.
        """

        with self._lock:
            pending = PendingRequest(_id_next(), generation, request)
            self._pending[pending.id] = pending

            evict = functools.partial(self.evict, pending.id)
            pending.timer = self.scheduler.call_later(self.timeout, evict)

        return pending

    def mark_written(self, id: str, generation: int) -> bool:
        """Record that a request is going onto the wire of connection
        *generation*. Returns False if the request is no longer pending, in
        which case it must not be written at all.
        """

        with self._lock:
            pending = self._pending.get(id)
            if pending is None:
                return False

            pending.generation = generation
            pending.written = True
            return True

    def _pop(self, id: str) -> Optional[PendingRequest]:
        # Caller holds the lock.
        pending = self._pending.pop(id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        return pending

    def resolve(self, id: str, response: Response) -> bool:
        with self._lock:
            pending = self._pop(id)
            self._orphans.pop(id, None)

        if pending is None:
            return False

        pending._complete(response)
        return True

    def reject(self, id: str, error: BaseException) -> bool:
        with self._lock:
            pending = self._pop(id)

        if pending is None:
            return False

        pending._fail(error)
        return True

    def evict(self, id: str) -> bool:
        """Reject a request that has waited too long for its response."""

        with self._lock:
            pending = self._pop(id)
            if pending is not None and pending.written and self.keep_orphans:
                self._orphans[id] = pending.generation

        if pending is None:
            return False

        log.warning("request %s (%s) timed out after %g seconds",
                    id, _describe(pending), self.timeout)
        pending._fail(TransportTimeout(f"Request timed out after {self.timeout:g} seconds"))
        return True

    def reject_all(self, error: TransportError) -> int:
        """Reject every pending request with *error*, returning the count."""

        with self._lock:
            rejected = [self._pop(id) for id in list(self._pending)]
            self._orphans.clear()

        for pending in rejected:
            pending._fail(error)

        return len(rejected)

    def settle(self, response: Response, generation: int = 0) -> Optional[PendingRequest]:
        """Hand an incoming *response* to the request it answers.

        A response carrying an identifier settles that request only. One
        without an identifier settles the oldest request sent on connection
        *generation*. Returns the settled request, or None if the response
        was discarded.
        """

        with self._lock:
            if response.id is not None:
                id = response.id
                self._orphans.pop(id, None)
            else:
                id = self._oldest(generation)
                if id is not None and id in self._orphans:
                    del self._orphans[id]
                    log.info("discarding late response for timed-out request %s", id)
                    return None

            pending = None if id is None else self._pop(id)

        if pending is None:
            log.warning("received response but no matching request was waiting: %r", response)
            return None

        pending._complete(response)
        return pending

    def _oldest(self, generation: int) -> Optional[str]:
        # Caller holds the lock. Identifiers sort in submission order.
        candidates = [id for id, pending in self._pending.items() if pending.generation == generation]
        candidates.extend(id for id, orphan in self._orphans.items() if orphan == generation)

        if candidates:
            return min(candidates)
        return None

    def forget(self, generation: int) -> None:
        """Drop the orphans of connections older than *generation*; their
        connection is gone, and so are any late responses to them.
        """

        with self._lock:
            for id, orphan in list(self._orphans.items()):
                if orphan < generation:
                    del self._orphans[id]


def _describe(pending: PendingRequest) -> str:
    if pending.request is None:
        return "?"
    return pending.request.command


_id_lock = threading.Lock()
_id_last = 0


def _id_next() -> str:
    """Return a new request identifier: 16 hex digits of a strictly
    increasing monotonic timestamp, then 8 random hex digits.
    """

    global _id_last

    with _id_lock:
        now = time.monotonic_ns()
        if now <= _id_last:
            now = _id_last + 1
        _id_last = now

    return "%016x%08x" % (now, random.getrandbits(32))


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
