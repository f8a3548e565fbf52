from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import date
from typing import Callable, Sequence, Union

import numpy as np

from depthlut.config import LutConfig
from depthlut.core.builder import BuildCancelled, ProgressSink, build_table
from depthlut.core.cancel import CancelToken
from depthlut.core.smart_update import UpdateAction, UpdateDecision, apply_update, decide_update
from depthlut.core.table import LookUpTable
from depthlut.jetr import CalibrationVector

logger = logging.getLogger(__name__)

TableBuilder = Callable[..., LookUpTable]
VectorLike = Union[CalibrationVector, Sequence[float], np.ndarray]

_WAIT_POLL_S = 0.05


@dataclass(frozen=True)
class CacheKey:
    make: str
    model: str
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.make}/{self.model}@{self.width}x{self.height}"


@dataclass(frozen=True)
class _Entry:
    table: LookUpTable
    vector: CalibrationVector
    as_of_date: date | None


@dataclass(frozen=True)
class _InFlight:
    future: Future
    vector: CalibrationVector
    as_of_date: date | None
    previous: _Entry | None = None


class LutCache:
    """
    Thread-safe map from (make, model, width, height) to built tables.

    Lookups always compare the caller's calibration vector with the one that produced the
    cached table and reuse, patch or rebuild accordingly. Builds run outside the lock; a key
    has at most one build in flight and concurrent callers for it share the result.
    """

    def __init__(self, builder: TableBuilder = build_table, config: LutConfig | None = None) -> None:
        self._builder = builder
        self._config = config or LutConfig()
        self._lock = threading.Lock()
        self._slots: dict[CacheKey, _Entry | _InFlight] = {}
        self._build_count = 0
        self._last_decision: UpdateDecision | None = None

    @property
    def config(self) -> LutConfig:
        return self._config

    @property
    def build_count(self) -> int:
        with self._lock:
            return self._build_count

    @property
    def last_decision(self) -> UpdateDecision | None:
        with self._lock:
            return self._last_decision

    def get_or_build(
        self,
        make: str,
        model: str,
        width: int,
        height: int,
        vector: VectorLike,
        as_of_date: date | None = None,
        progress: ProgressSink | None = None,
        cancel: CancelToken | None = None,
    ) -> LookUpTable:
        vec = vector if isinstance(vector, CalibrationVector) else CalibrationVector.from_sequence(vector)
        key = CacheKey(make, model, int(width), int(height))

        while True:
            owner = False
            with self._lock:
                slot = self._slots.get(key)
                if isinstance(slot, _Entry):
                    decision = decide_update(
                        slot.vector, slot.as_of_date, vec, as_of_date, make, model, self._config.quirk
                    )
                    self._last_decision = decision
                    if decision.action is UpdateAction.REUSE:
                        logger.debug("Cache hit for %s", key)
                        if slot.as_of_date != as_of_date:
                            self._slots[key] = _Entry(slot.table, vec, as_of_date)
                        return slot.table
                    if decision.action is UpdateAction.PATCH:
                        table = apply_update(slot.table, decision, vec)
                        self._slots[key] = _Entry(table, vec, as_of_date)
                        logger.debug("Cache patch for %s", key)
                        return table
                    logger.debug("Cache rebuild for %s: %s", key, "; ".join(decision.reasons))
                    previous, slot = slot, None
                else:
                    previous = None
                if slot is None:
                    slot = _InFlight(Future(), vec, as_of_date, previous)
                    self._slots[key] = slot
                    self._build_count += 1
                    owner = True

            if owner:
                return self._run_build(key, slot, progress, cancel)

            logger.debug("Waiting on in-flight build for %s", key)
            try:
                table = self._wait(slot.future, cancel)
            except BuildCancelled:
                if cancel is not None and cancel.cancelled:
                    raise
                # Another caller cancelled the shared build; try again under our own token.
                continue
            if slot.vector == vec and slot.as_of_date == as_of_date:
                return table
            # The shared build was for a different calibration; re-run the decision against it.

    @staticmethod
    def _wait(future: Future, cancel: CancelToken | None) -> LookUpTable:
        if cancel is None:
            return future.result()
        while True:
            try:
                return future.result(timeout=_WAIT_POLL_S)
            except FutureTimeout:
                if cancel.cancelled:
                    raise BuildCancelled("cancelled while waiting on a shared build") from None

    def _run_build(
        self,
        key: CacheKey,
        flight: _InFlight,
        progress: ProgressSink | None,
        cancel: CancelToken | None,
    ) -> LookUpTable:
        logger.info("Cache miss for %s; building", key)
        try:
            table = self._builder(
                key.width,
                key.height,
                flight.vector,
                make=key.make,
                model=key.model,
                as_of_date=flight.as_of_date,
                progress=progress,
                cancel=cancel,
                config=self._config,
            )
        except BaseException as exc:
            with self._lock:
                if self._slots.get(key) is flight:
                    if flight.previous is not None:
                        self._slots[key] = flight.previous
                    else:
                        del self._slots[key]
            flight.future.set_exception(exc)
            raise

        with self._lock:
            if self._slots.get(key) is flight:
                self._slots[key] = _Entry(table, flight.vector, flight.as_of_date)
            else:
                logger.info("%s was invalidated while building; result not cached", key)
        flight.future.set_result(table)
        return table

    def get(self, make: str, model: str, width: int, height: int) -> LookUpTable | None:
        with self._lock:
            slot = self._slots.get(CacheKey(make, model, int(width), int(height)))
        return slot.table if isinstance(slot, _Entry) else None

    def contains(self, make: str, model: str, width: int, height: int) -> bool:
        return self.get(make, model, width, height) is not None

    def insert(
        self,
        make: str,
        model: str,
        width: int,
        height: int,
        table: LookUpTable,
        vector: VectorLike | None = None,
        as_of_date: date | None = None,
    ) -> None:
        """
        Store an externally produced table. Without `vector`, the table's own metadata
        stands in as the calibration it was built from.
        """
        if not table.is_valid:
            raise ValueError("cannot cache an empty table")
        if vector is None:
            vec = table.jetr()
        elif isinstance(vector, CalibrationVector):
            vec = vector
        else:
            vec = CalibrationVector.from_sequence(vector)
        key = CacheKey(make, model, int(width), int(height))
        with self._lock:
            self._slots[key] = _Entry(table, vec, as_of_date)
        logger.debug("Inserted %s", key)

    def invalidate(self, make: str, model: str) -> int:
        """Drop every dimension variant of one camera, including builds still running."""
        with self._lock:
            doomed = [k for k in self._slots if k.make == make and k.model == model]
            for k in doomed:
                del self._slots[k]
        if doomed:
            logger.info("Invalidated %d table(s) for %s %s", len(doomed), make, model)
        return len(doomed)

    def clear(self) -> int:
        with self._lock:
            n = len(self._slots)
            self._slots.clear()
        logger.info("Cleared %d cache slot(s)", n)
        return n

    def keys(self) -> list[CacheKey]:
        with self._lock:
            return [k for k, s in self._slots.items() if isinstance(s, _Entry)]

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for s in self._slots.values() if isinstance(s, _Entry))
