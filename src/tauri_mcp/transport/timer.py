""" Cancellable one-shot timers. Request timeouts and delayed reconnect
    attempts are both scheduled through a :class:`Scheduler`; anything that
    needs timers accepts one as an argument, so tests can substitute a
    scheduler driven by a fake clock.
"""

import heapq
import itertools
import logging
import threading
import time


log = logging.getLogger(__name__)


class Timer:
    """ Handle for one scheduled callback. Cancelling a timer that already
        fired, or was already cancelled, is a no-op.
    """

    def __init__(self, deadline, callback):
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False
        self.fired = False


    def cancel(self):
        self.cancelled = True


    @property
    def active(self):
        return not (self.cancelled or self.fired)


# end of class Timer



class Scheduler:
    """ Invoke callbacks after a delay, from a single background thread.
        The thread is started on first use. Callbacks should be brief;
        a slow callback delays every timer behind it.
    """

    def __init__(self, clock=time.monotonic):

        self.clock = clock
        self.shutdown = False

        self._heap = list()
        self._lock = threading.Lock()
        self._sequence = itertools.count()
        self._thread = None

        self.alarm = threading.Event()


    def now(self):
        return self.clock()


    def call_later(self, delay, callback):
        """ Arrange for *callback* to be invoked with no arguments after
            *delay* seconds. Returns a :class:`Timer` that can be cancelled.
        """

        timer = Timer(self.clock() + delay, callback)

        with self._lock:
            heapq.heappush(self._heap, (timer.deadline, next(self._sequence), timer))

            if self._thread is None:
                self._thread = threading.Thread(target=self.run, name='tauri_mcp.timer')
                self._thread.daemon = True
                self._thread.start()

        self.wake()
        return timer


    def run(self):

        while self.shutdown == False:
            due = list()

            with self._lock:
                now = self.clock()
                while self._heap and self._heap[0][0] <= now:
                    due.append(heapq.heappop(self._heap)[2])

                if self._heap:
                    delay = self._heap[0][0] - now
                else:
                    delay = None

            for timer in due:
                if timer.cancelled:
                    continue
                timer.fired = True

                try:
                    timer.callback()
                except Exception:
                    log.exception('timer callback %r failed', timer.callback)

            if due:
                # Callbacks may have scheduled new timers; recompute the
                # delay before sleeping.
                continue

            self.alarm.wait(delay)
            self.alarm.clear()


    def stop(self):
        self.shutdown = True
        self.wake()


    def wake(self):
        self.alarm.set()


# end of class Scheduler


_default = None
_default_lock = threading.Lock()


def default():
    """ Return the shared :class:`Scheduler` used when no other scheduler is
        supplied.
    """

    global _default

    with _default_lock:
        if _default is None:
            _default = Scheduler()

    return _default


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
