from __future__ import annotations

import logging
import math
import re
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Sequence

import numpy as np

from depthlut.config import LutConfig
from depthlut.core.cancel import CancelToken
from depthlut.core.distortion import RationalDistortion
from depthlut.core.inversion import solve_rows
from depthlut.core.table import (
    CHANNELS,
    COEF_A,
    COEF_B,
    COEF_C,
    COEF_D,
    DEPTH_SAMPLE_MAX,
    POLY_H,
    LookUpTable,
    LookUpTableStyle,
    normalize_z_limits,
    symmetric_limits,
)
from depthlut.jetr import CalibrationVector

logger = logging.getLogger(__name__)

ProgressSink = Callable[[int, int], Optional[bool]]

_FOLDER_RE = re.compile(r"^folder.*(\d{8})$", re.IGNORECASE)


class BuildError(Exception):
    pass


class BuildCancelled(BuildError):
    pass


@dataclass
class _Bounds:
    """X/Y extent of resolved pixels at the far plane, merged across row batches."""

    x_min: float = math.inf
    x_max: float = -math.inf
    y_min: float = math.inf
    y_max: float = -math.inf

    def merge(self, other: "_Bounds") -> None:
        self.x_min = min(self.x_min, other.x_min)
        self.x_max = max(self.x_max, other.x_max)
        self.y_min = min(self.y_min, other.y_min)
        self.y_max = max(self.y_max, other.y_max)


def parse_folder_date(name: str) -> date | None:
    """
    Capture folders are named "Folder########" or "########" with a YYYYMMDD stamp.
    Returns None if no valid date can be read.
    """
    name = name.strip()
    m = _FOLDER_RE.match(name)
    if m is not None and len(name) >= 14:
        stamp = m.group(1)
    elif len(name) == 8 and name.isdigit():
        stamp = name
    else:
        return None
    try:
        return datetime.strptime(stamp, "%Y%m%d").date()
    except ValueError:
        return None


def _as_vector(vector: CalibrationVector | Sequence[float] | np.ndarray) -> CalibrationVector:
    if isinstance(vector, CalibrationVector):
        return vector
    return CalibrationVector.from_sequence(vector)


def _fill_rows(
    model: RationalDistortion,
    rows: np.ndarray,
    width: int,
    out: np.ndarray,
    z_far: float,
    cancel: CancelToken,
) -> _Bounds | None:
    block = solve_rows(model, rows, width, cancel=cancel)
    if not block.completed:
        return None

    ok = block.converged
    # Camera looks down -Z; X flips sign, Y does not.
    out[rows, :, COEF_A] = np.where(ok, -block.x, np.nan)
    out[rows, :, COEF_B] = np.where(ok, 0.0, np.nan)
    out[rows, :, COEF_C] = np.where(ok, block.y, np.nan)
    out[rows, :, COEF_D] = np.where(ok, 0.0, np.nan)

    local = _Bounds()
    if ok.any():
        xs = block.x[ok] * z_far
        ys = block.y[ok] * z_far
        local.x_min, local.x_max = float(xs.min()), float(xs.max())
        local.y_min, local.y_max = float(ys.min()), float(ys.max())
    return local


def _compute_table(
    width: int,
    height: int,
    vector: CalibrationVector,
    progress: ProgressSink | None,
    caller_cancel: CancelToken | None,
    config: LutConfig,
) -> LookUpTable:
    model = RationalDistortion.from_vector(vector)
    cancel = CancelToken(parent=caller_cancel)
    z_min, z_max = normalize_z_limits(*vector.z_limits)

    buffer = np.zeros((height, width, CHANNELS), dtype=np.float32)
    buffer[:, :, POLY_H] = -DEPTH_SAMPLE_MAX * vector.scale_factor
    buffer[:, :, 9:] = np.nan

    bounds = _Bounds()
    bounds_lock = threading.Lock()
    batches = [np.arange(r, min(r + config.rows_per_batch, height)) for r in range(0, height, config.rows_per_batch)]
    workers = config.resolved_worker_count()

    def run_batch(rows: np.ndarray) -> int:
        if cancel.cancelled:
            return 0
        local = _fill_rows(model, rows, width, buffer, z_min, cancel)
        if local is None:
            return 0
        with bounds_lock:
            bounds.merge(local)
        return int(rows.size)

    logger.debug("Building %dx%d table on %d workers (%d batches)", width, height, workers, len(batches))
    done_rows = 0
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="depthlut-rows") as pool:
        pending: set[Future[int]] = {pool.submit(run_batch, rows) for rows in batches}
        try:
            while pending:
                finished, pending = wait(pending, return_when=FIRST_COMPLETED)
                for fut in finished:
                    if not fut.cancelled():
                        done_rows += fut.result()
                if progress is not None and not cancel.cancelled:
                    if progress(done_rows, height) is False:
                        cancel.cancel()
                if cancel.cancelled:
                    for fut in pending:
                        fut.cancel()
        except BaseException:
            cancel.cancel()
            raise

    if cancel.cancelled:
        raise BuildCancelled(f"build of {width}x{height} table cancelled after {done_rows}/{height} rows")

    buffer.setflags(write=False)
    return LookUpTable(
        buffer=buffer,
        intrinsics=vector.intrinsics,
        transform=vector.transform,
        bounding_box=vector.bounding_box,
        scale_factor=vector.scale_factor,
        z_limits=(z_min, z_max),
        x_limits=symmetric_limits(bounds.x_min, bounds.x_max),
        y_limits=symmetric_limits(bounds.y_min, bounds.y_max),
        style=LookUpTableStyle.FOURTH_ORDER_POLY,
    )


def build_table(
    width: int,
    height: int,
    vector: CalibrationVector | Sequence[float] | np.ndarray,
    make: str = "",
    model: str = "",
    as_of_date: date | None = None,
    progress: ProgressSink | None = None,
    cancel: CancelToken | None = None,
    config: LutConfig | None = None,
) -> LookUpTable:
    """
    Build the per-pixel lookup table for one camera at width x height.

    Cameras matching the configured device quirk are built at their native sensor size,
    center-cropped to the requested size, and rotated 180 degrees if `as_of_date` predates
    the remount (or is unknown). Requests larger than the native size raise ValueError.

    Raises InvalidVectorError before any work on a malformed vector, and BuildCancelled if
    `cancel` trips or `progress` returns False. Nothing partial is ever returned.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"table size must be > 0, got {width}x{height}")
    vec = _as_vector(vector)
    cfg = config or LutConfig()
    t0 = time.perf_counter()

    quirk = cfg.quirk
    if quirk is not None and quirk.matches(make, model):
        nw, nh = quirk.native_width, quirk.native_height
        if width > nw or height > nh:
            raise ValueError(
                f"{make} {model} tables cannot exceed the native {nw}x{nh} sensor, got {width}x{height}"
            )
        table = _compute_table(nw, nh, vec, progress, cancel, cfg)
        if nw > width or nh > height:
            table = table.crop((nw - width) // 2, (nh - height) // 2, width, height)
        if quirk.should_rotate(as_of_date):
            table = table.rotate180()
        logger.debug(
            "%s %s: native %dx%d, rotated=%s, delivered %dx%d",
            make,
            model,
            nw,
            nh,
            quirk.should_rotate(as_of_date),
            table.width,
            table.height,
        )
    else:
        table = _compute_table(width, height, vec, progress, cancel, cfg)

    table = table.with_identity(make, model)
    logger.info(
        "Built %dx%d table for %s %s in %.2fs (%d unresolved pixels)",
        table.width,
        table.height,
        make or "<unknown>",
        model or "<unknown>",
        time.perf_counter() - t0,
        table.unresolved_count(),
    )
    return table
