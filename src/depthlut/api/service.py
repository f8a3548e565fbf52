from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Optional

from depthlut.config import LutConfig
from depthlut.core.builder import ProgressSink, build_table
from depthlut.core.cache import LutCache, TableBuilder, VectorLike
from depthlut.core.calibration_store import CalibrationStore
from depthlut.core.cancel import CancelToken
from depthlut.core.scheduler import LutScheduler
from depthlut.core.table import LookUpTable
from depthlut.jetr import CalibrationVector

logger = logging.getLogger(__name__)


class CalibrationNotFound(LookupError):
    pass


class LutService:
    """
    The one object an application holds: a table cache plus the background scheduler
    that keeps it warm for every camera in the calibration store.

        with LutService(store) as svc:
            svc.start()
            table = svc.get_or_build("Orbbec", "Femto Mega", 640, 480)
    """

    def __init__(
        self,
        store: CalibrationStore,
        config: LutConfig | None = None,
        builder: TableBuilder = build_table,
        on_table_built: Optional[Callable[[str, str, int, int], Any]] = None,
        on_backlog_drained: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.config = config or LutConfig()
        self.store = store
        self.cache = LutCache(builder=builder, config=self.config)
        self.scheduler = LutScheduler(
            self.cache,
            store,
            config=self.config,
            on_table_built=on_table_built,
            on_backlog_drained=on_backlog_drained,
        )
        self._builder = builder

    def __enter__(self) -> "LutService":
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def build_table(
        self,
        width: int,
        height: int,
        vector: VectorLike,
        make: str = "",
        model: str = "",
        as_of_date: date | None = None,
        progress: ProgressSink | None = None,
        cancel: CancelToken | None = None,
    ) -> LookUpTable:
        """Build without touching the cache."""
        return self._builder(
            width,
            height,
            vector,
            make=make,
            model=model,
            as_of_date=as_of_date,
            progress=progress,
            cancel=cancel,
            config=self.config,
        )

    def get_or_build(
        self,
        make: str,
        model: str,
        width: int,
        height: int,
        vector: VectorLike | None = None,
        as_of_date: date | None = None,
        progress: ProgressSink | None = None,
        cancel: CancelToken | None = None,
    ) -> LookUpTable:
        if vector is None:
            vector = self.store.get(make, model)
            if vector is None:
                raise CalibrationNotFound(f"no calibration for {make} {model}")
        return self.cache.get_or_build(make, model, width, height, vector, as_of_date, progress, cancel)

    def insert(
        self,
        make: str,
        model: str,
        width: int,
        height: int,
        table: LookUpTable,
        vector: CalibrationVector | None = None,
        as_of_date: date | None = None,
    ) -> None:
        self.cache.insert(make, model, width, height, table, vector, as_of_date)

    def invalidate(self, make: str, model: str) -> int:
        return self.cache.invalidate(make, model)

    def clear(self) -> int:
        return self.cache.clear()

    def calibration_changed(self, make: str, model: str) -> int:
        """Drop every cached size of one camera; the next request rebuilds from the store."""
        logger.info("Calibration changed for %s %s", make, model)
        return self.cache.invalidate(make, model)

    def start(self) -> None:
        self.scheduler.start()

    def stop(self, timeout: float | None = None) -> None:
        self.scheduler.stop(timeout)

    def pause(self) -> None:
        self.scheduler.pause()

    def resume(self) -> None:
        self.scheduler.resume()

    def request_priority(self, make: str, model: str, width: int, height: int) -> None:
        self.scheduler.request_priority(make, model, width, height)
