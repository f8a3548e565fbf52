from __future__ import annotations

import logging
import re
from pathlib import Path

from depthlut.api.service import LutService
from depthlut.api.table_io import save_lookup_table
from depthlut.config import LutConfig
from depthlut.core.calibration_store import JsonCalibrationStore
from depthlut.core.scheduler import BacklogDrained, TableBuilt

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def table_dir_name(make: str, model: str, width: int, height: int) -> str:
    return f"{_UNSAFE.sub('_', make)}_{_UNSAFE.sub('_', model)}_{width}x{height}"


def run_warm(store_path: Path, config: LutConfig, out_dir: Path | None = None) -> list[Path]:
    """
    Build every known camera at every standard size through the background scheduler,
    wait for the backlog to drain, and optionally save each table under `out_dir`.
    """
    store = JsonCalibrationStore(store_path)
    written: list[Path] = []
    built = 0
    with LutService(store, config=config) as svc:
        svc.start()
        while True:
            event = svc.scheduler.events.get()
            if isinstance(event, TableBuilt):
                built += 1
            elif isinstance(event, BacklogDrained):
                break
        svc.stop()

        if out_dir is not None:
            for key in svc.cache.keys():
                table = svc.cache.get(key.make, key.model, key.width, key.height)
                if table is None:
                    continue
                path = save_lookup_table(Path(out_dir) / table_dir_name(key.make, key.model, key.width, key.height), table)
                written.append(path)
    logger.info("Warm-up built %d table(s), wrote %d", built, len(written))
    return written
