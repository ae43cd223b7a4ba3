"""Wall-clock time and schedulable callbacks.

The engine never reads the system time or creates threads directly; it goes
through a ``Clock`` so the rotation and hard-timeout timers can run on
APScheduler in production and be driven by hand in tests.
"""
import heapq
import itertools
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle:
    """Cancel handle returned for every scheduled callback."""

    def __init__(self, cancel_fn: Callable[[], None]):
        self._cancel_fn = cancel_fn
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._cancel_fn()


class Clock:
    """Time source plus delayed and periodic callbacks."""

    def now(self) -> datetime:
        raise NotImplementedError

    def after(self, delay: timedelta, callback: Callback) -> TimerHandle:
        raise NotImplementedError

    def every_until_cancelled(self, interval: timedelta, callback: Callback) -> TimerHandle:
        raise NotImplementedError

    def shutdown(self) -> None:
        """Release timer resources."""


class SchedulerClock(Clock):
    """Clock backed by an APScheduler ``BackgroundScheduler``.

    Times are naive local datetimes, the same convention as the scheduled
    class start times they are compared against.
    """

    def __init__(self, scheduler: BackgroundScheduler = None):
        self._scheduler = scheduler or BackgroundScheduler()
        self._start_lock = threading.Lock()

    def now(self) -> datetime:
        return datetime.now()

    def _ensure_started(self) -> None:
        with self._start_lock:
            if not self._scheduler.running:
                self._scheduler.start()
                logger.info('Background scheduler started')

    def _remove(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            # One-shot job already ran.
            logger.debug('Job %s already gone', job_id)

    def after(self, delay: timedelta, callback: Callback) -> TimerHandle:
        self._ensure_started()
        job = self._scheduler.add_job(
            callback,
            trigger='date',
            run_date=self.now() + delay,
            misfire_grace_time=None
        )
        return TimerHandle(lambda: self._remove(job.id))

    def every_until_cancelled(self, interval: timedelta, callback: Callback) -> TimerHandle:
        self._ensure_started()
        job = self._scheduler.add_job(
            callback,
            trigger='interval',
            seconds=interval.total_seconds(),
            max_instances=1,
            coalesce=True
        )
        return TimerHandle(lambda: self._remove(job.id))

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)


class _ManualTimer:
    __slots__ = ('due', 'interval', 'callback', 'cancelled')

    def __init__(self, due: datetime, callback: Callback, interval: Optional[timedelta] = None):
        self.due = due
        self.interval = interval
        self.callback = callback
        self.cancelled = False


class ManualClock(Clock):
    """Deterministic clock whose timers fire only when time is advanced.

    Callbacks run synchronously on the thread calling ``advance``, in due
    order, with ``now()`` set to the moment each one was due.
    """

    def __init__(self, start: datetime):
        self._now = start
        self._queue: List[Tuple[datetime, int, _ManualTimer]] = []
        self._sequence = itertools.count()
        self._lock = threading.RLock()

    def now(self) -> datetime:
        return self._now

    def _push(self, timer: _ManualTimer) -> None:
        heapq.heappush(self._queue, (timer.due, next(self._sequence), timer))

    def _cancel(self, timer: _ManualTimer) -> None:
        timer.cancelled = True

    def after(self, delay: timedelta, callback: Callback) -> TimerHandle:
        with self._lock:
            timer = _ManualTimer(self._now + delay, callback)
            self._push(timer)
        return TimerHandle(lambda: self._cancel(timer))

    def every_until_cancelled(self, interval: timedelta, callback: Callback) -> TimerHandle:
        if interval <= timedelta(0):
            raise ValueError('interval must be positive')
        with self._lock:
            timer = _ManualTimer(self._now + interval, callback, interval)
            self._push(timer)
        return TimerHandle(lambda: self._cancel(timer))

    def _pop_due(self, moment: datetime) -> Optional[_ManualTimer]:
        with self._lock:
            while self._queue:
                due, _, timer = self._queue[0]
                if due > moment:
                    return None
                heapq.heappop(self._queue)
                if not timer.cancelled:
                    return timer
            return None

    def advance(self, delta: timedelta) -> None:
        self.advance_to(self._now + delta)

    def advance_to(self, moment: datetime) -> None:
        if moment < self._now:
            raise ValueError('ManualClock cannot move backwards')
        while True:
            timer = self._pop_due(moment)
            if timer is None:
                break
            self._now = timer.due
            timer.callback()
            if timer.interval is not None and not timer.cancelled:
                timer.due = timer.due + timer.interval
                with self._lock:
                    self._push(timer)
        self._now = moment

    def pending(self) -> int:
        """Number of live timers still queued."""
        with self._lock:
            return sum(1 for _, _, timer in self._queue if not timer.cancelled)


def build_clock(config) -> Clock:
    """Pick the clock named by ``ENGINE_CLOCK``."""
    kind = config.get('ENGINE_CLOCK', 'scheduler')
    if kind == 'manual':
        return ManualClock(datetime.now().replace(microsecond=0))
    if kind == 'scheduler':
        return SchedulerClock()
    raise ValueError(f'Unknown ENGINE_CLOCK: {kind}')
