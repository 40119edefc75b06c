import heapq
import itertools
import logging
import threading
import time
from collections import deque
from concurrent.futures import Future

from crashgame.exceptions import SchedulerStopped


logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancelable reference to a scheduled callback."""

    __slots__ = ('callback', 'args', 'cancelled')

    def __init__(self, callback, args=()):
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self):
        if self.cancelled:
            return None
        return self.callback(*self.args)


def _spawn_thread(target, *args):
    worker = threading.Thread(target=target, args=args, daemon=True, name='round-scheduler')
    worker.start()
    return worker


class SerialScheduler:
    """Single worker that runs round operations one at a time.

    Inbound calls (``run``) and timers (``call_later``) share one queue, so
    a join, a withdraw and a progression tick never interleave. ``spawn``
    starts the worker loop; the app passes ``socketio.start_background_task``
    so the worker cooperates with whatever async mode Socket.IO runs in.
    """

    def __init__(self, spawn=None, clock=time.monotonic):
        self._spawn = spawn or _spawn_thread
        self._clock = clock
        self._cond = threading.Condition()
        self._ready = deque()
        self._timers = []
        self._seq = itertools.count()
        self._running = False
        self._worker_ident = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._cond:
            if self._running:
                return
            self._running = True
        self._spawn(self._loop)

    def stop(self) -> None:
        with self._cond:
            self._running = False
            for _, _, handle in self._timers:
                handle.cancel()
            self._timers.clear()
            pending = list(self._ready)
            self._ready.clear()
            self._cond.notify_all()
        for _, _, _, future in pending:
            future.set_exception(SchedulerStopped('Round scheduler stopped'))

    def call_later(self, delay: float, callback, *args) -> TimerHandle:
        handle = TimerHandle(callback, args)
        due = self._clock() + max(0.0, delay)
        with self._cond:
            heapq.heappush(self._timers, (due, next(self._seq), handle))
            self._cond.notify_all()
        return handle

    def run(self, fn, *args, **kwargs):
        """Execute ``fn`` on the worker and return its result.

        Calls made from the worker itself, or before the worker has been
        started, run inline.
        """
        if not self._running or threading.get_ident() == self._worker_ident:
            return fn(*args, **kwargs)
        future = Future()
        with self._cond:
            if not self._running:
                raise SchedulerStopped('Round scheduler stopped')
            self._ready.append((fn, args, kwargs, future))
            self._cond.notify_all()
        return future.result()

    def _next_job(self):
        with self._cond:
            while self._running:
                if self._ready:
                    return self._ready.popleft()
                now = self._clock()
                if self._timers and self._timers[0][0] <= now:
                    _, _, handle = heapq.heappop(self._timers)
                    if handle.cancelled:
                        continue
                    return handle.fire, (), {}, None
                timeout = self._timers[0][0] - now if self._timers else None
                self._cond.wait(timeout)
            return None

    def _loop(self):
        self._worker_ident = threading.get_ident()
        logger.info("[scheduler-start] round worker running")
        while True:
            job = self._next_job()
            if job is None:
                break
            fn, args, kwargs, future = job
            if future is not None and not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args, **kwargs)
            except Exception as exc:
                if future is not None:
                    future.set_exception(exc)
                else:
                    logger.exception("[scheduler-error] timer callback failed")
                continue
            if future is not None:
                future.set_result(result)
        self._worker_ident = None
        logger.info("[scheduler-stop] round worker exited")
