from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from depthlut.config import LutConfig
from depthlut.core.builder import BuildCancelled
from depthlut.core.cache import LutCache
from depthlut.core.calibration_store import CalibrationStore
from depthlut.core.cancel import CancelToken

logger = logging.getLogger(__name__)


class SchedulerStopTimeout(RuntimeError):
    pass


@dataclass(frozen=True)
class TableBuilt:
    make: str
    model: str
    width: int
    height: int


@dataclass(frozen=True)
class BacklogDrained:
    pass


@dataclass(frozen=True)
class _Task:
    make: str
    model: str
    width: int
    height: int


_STOP = object()
_EVENT_QUEUE_SIZE = 256


class LutScheduler:
    """
    One worker thread that pre-builds tables for every known camera at the standard sizes,
    while letting callers jump the queue for the table they need right now.

    Priority requests always run before the background sweep. `pause()` holds the worker
    between tasks; `stop()` abandons queued work and cancels the build in progress.
    A scheduler runs once: it cannot be restarted after `stop()`.

    `on_table_built(make, model, width, height)` and `on_backlog_drained()` run on the worker
    thread. The same events are also put on `events`, a bounded queue: once it holds
    `max_events` unread events the oldest is dropped.
    """

    def __init__(
        self,
        cache: LutCache,
        store: CalibrationStore,
        config: LutConfig | None = None,
        on_table_built: Optional[Callable[[str, str, int, int], Any]] = None,
        on_backlog_drained: Optional[Callable[[], Any]] = None,
        max_events: int = _EVENT_QUEUE_SIZE,
    ) -> None:
        self._cache = cache
        self._store = store
        self._config = config or cache.config
        self._on_table_built = on_table_built
        self._on_backlog_drained = on_backlog_drained

        self._priority: "queue.Queue[Any]" = queue.Queue()
        self._background: deque[_Task] = deque()
        self._cond = threading.Condition()
        self._paused = False
        self._stopping = threading.Event()
        self._cancel = CancelToken()
        self._thread: threading.Thread | None = None
        self._idle = False

        self.events: "queue.Queue[TableBuilt | BacklogDrained]" = queue.Queue(maxsize=max_events)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_paused(self) -> bool:
        with self._cond:
            return self._paused

    def start(self) -> None:
        with self._cond:
            if self._thread is not None or self._stopping.is_set():
                raise RuntimeError("scheduler can only be started once")
            self._thread = threading.Thread(target=self._run, name="depthlut-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started (%d standard size(s))", len(self._config.standard_dimensions))

    def request_priority(self, make: str, model: str, width: int, height: int) -> None:
        if self._stopping.is_set():
            logger.debug("Scheduler stopping; dropped priority request for %s %s", make, model)
            return
        self._priority.put(_Task(make, model, int(width), int(height)))

    def pause(self) -> None:
        with self._cond:
            self._paused = True
        logger.info("Scheduler paused")

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()
        logger.info("Scheduler resumed")

    def stop(self, timeout: float | None = None) -> None:
        """
        Stop the worker and wait for it. Safe to call repeatedly and from any thread,
        including from inside a callback running on the worker.

        Raises SchedulerStopTimeout if the worker is still alive after `timeout`
        (default `config.stop_timeout_s`) seconds.
        """
        with self._cond:
            first = not self._stopping.is_set()
            self._stopping.set()
            self._paused = False
            self._background.clear()
            self._cond.notify_all()

        if first:
            self._cancel.cancel()
            while True:
                try:
                    self._priority.get_nowait()
                except queue.Empty:
                    break
            self._priority.put(_STOP)
            logger.info("Stopping scheduler")

        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        limit = self._config.stop_timeout_s if timeout is None else timeout
        thread.join(limit)
        if thread.is_alive():
            logger.critical("Scheduler worker did not exit within %.1fs", limit)
            raise SchedulerStopTimeout(f"scheduler worker still running after {limit:.1f}s")

    def _run(self) -> None:
        self._sweep()
        while True:
            if not self._wait_while_paused():
                break
            task = self._take()
            if task is None:
                self._note_idle()
                task = self._priority.get()
                if task is _STOP or not self._wait_while_paused():
                    break
            elif task is _STOP:
                break
            self._idle = False
            self._run_task(task)
        logger.info("Scheduler worker exited")

    def _sweep(self) -> None:
        try:
            cameras = self._store.list_all()
        except Exception:
            logger.exception("Listing calibrations failed; background sweep skipped")
            return
        queued = 0
        with self._cond:
            for make, model, _ in cameras:
                for width, height in self._config.standard_dimensions:
                    if self._stopping.is_set():
                        return
                    if self._cache.contains(make, model, width, height):
                        continue
                    self._background.append(_Task(make, model, width, height))
                    queued += 1
        logger.info("Background sweep queued %d table(s) for %d camera(s)", queued, len(cameras))

    def _wait_while_paused(self) -> bool:
        with self._cond:
            while self._paused and not self._stopping.is_set():
                self._cond.wait()
            return not self._stopping.is_set()

    def _take(self) -> Any:
        try:
            return self._priority.get_nowait()
        except queue.Empty:
            pass
        with self._cond:
            if self._background:
                return self._background.popleft()
        return None

    def _note_idle(self) -> None:
        if self._idle:
            return
        self._idle = True
        logger.debug("Scheduler backlog drained")
        self._emit(BacklogDrained())

    def _run_task(self, task: _Task) -> None:
        if self._cache.contains(task.make, task.model, task.width, task.height):
            logger.debug("%s %s %dx%d already cached", task.make, task.model, task.width, task.height)
            return
        try:
            vector = self._store.get(task.make, task.model)
            if vector is None:
                logger.warning("No calibration for %s %s; skipping", task.make, task.model)
                return
            self._cache.get_or_build(
                task.make, task.model, task.width, task.height, vector, cancel=self._cancel
            )
        except BuildCancelled:
            logger.info("Build of %s %s %dx%d cancelled", task.make, task.model, task.width, task.height)
            return
        except Exception:
            logger.exception("Building %s %s %dx%d failed", task.make, task.model, task.width, task.height)
            return
        self._emit(TableBuilt(task.make, task.model, task.width, task.height))

    def _emit(self, event: TableBuilt | BacklogDrained) -> None:
        self._queue_event(event)
        try:
            if isinstance(event, TableBuilt) and self._on_table_built is not None:
                self._on_table_built(event.make, event.model, event.width, event.height)
            elif isinstance(event, BacklogDrained) and self._on_backlog_drained is not None:
                self._on_backlog_drained()
        except Exception:
            logger.exception("Scheduler event callback failed for %r", event)

    def _queue_event(self, event: TableBuilt | BacklogDrained) -> None:
        # The worker is the only producer, so one eviction always makes room.
        try:
            self.events.put_nowait(event)
        except queue.Full:
            try:
                dropped = self.events.get_nowait()
            except queue.Empty:
                dropped = None
            logger.debug("Event queue full; dropped %r", dropped)
            self.events.put_nowait(event)
