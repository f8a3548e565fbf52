from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from depthlut.core.cancel import CancelToken
from depthlut.core.distortion import RationalDistortion

# Search happens on the plane Z = WORK_DEPTH, so a step of 1.0 is 1e-3 in normalized units.
WORK_DEPTH = 1000.0
STEP_SIZES = (1.0, 0.5, 0.25, 0.125)
CONVERGED_PX = 0.1
RESEED_PX = 1.0
MAX_MOVES_PER_STEP = 4096

# -x, +x, -y, +y; ties resolve in this order.
_NEIGHBOURS = np.array([[-1.0, 0.0], [1.0, 0.0], [0.0, -1.0], [0.0, 1.0]], dtype=np.float64)


@dataclass(frozen=True)
class PixelSolution:
    x: float
    y: float
    error_px: float

    @property
    def converged(self) -> bool:
        return bool(self.error_px < CONVERGED_PX)


@dataclass(frozen=True)
class RowBlockSolution:
    """Normalized rays and reprojection errors for a block of rows, each shaped (n_rows, width)."""

    rows: np.ndarray
    x: np.ndarray
    y: np.ndarray
    error_px: np.ndarray
    completed: bool

    @property
    def converged(self) -> np.ndarray:
        return self.error_px < CONVERGED_PX


def _errors(model: RationalDistortion, xw: np.ndarray, yw: np.ndarray, u: np.ndarray, v: np.ndarray) -> np.ndarray:
    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        pu, pv = model.project(xw / WORK_DEPTH, yw / WORK_DEPTH)
        e = np.hypot(pu - u, pv - v)
    return np.where(np.isnan(e), np.inf, e)


def _descend(
    model: RationalDistortion,
    u: np.ndarray,
    v: np.ndarray,
    xw: np.ndarray,
    yw: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Coordinate descent on the working plane, independently for every target (u[i], v[i]).

    At each step size, every still-active point compares its own error against its four
    axis neighbours and moves to the best neighbour only on strict improvement.
    """
    xw = np.array(xw, dtype=np.float64, copy=True)
    yw = np.array(yw, dtype=np.float64, copy=True)
    err = _errors(model, xw, yw, u, v)

    for dlt in STEP_SIZES:
        active = np.ones(err.shape, dtype=bool)
        for _ in range(MAX_MOVES_PER_STEP):
            idx = np.flatnonzero(active)
            if idx.size == 0:
                break
            cand_x = xw[idx][None, :] + dlt * _NEIGHBOURS[:, 0:1]  # (4,k)
            cand_y = yw[idx][None, :] + dlt * _NEIGHBOURS[:, 1:2]
            cand_e = _errors(model, cand_x, cand_y, u[idx][None, :], v[idx][None, :])
            best = np.argmin(cand_e, axis=0)
            best_e = cand_e[best, np.arange(idx.size)]

            improve = best_e < err[idx]
            moved = idx[improve]
            xw[moved] = cand_x[best[improve], np.flatnonzero(improve)]
            yw[moved] = cand_y[best[improve], np.flatnonzero(improve)]
            err[moved] = best_e[improve]
            active[idx[~improve]] = False

    return xw, yw, err


def solve_pixel(
    model: RationalDistortion,
    u: float,
    v: float,
    seed: tuple[float, float] | None = None,
) -> PixelSolution:
    """
    Find the normalized ray (x, y) at unit depth whose projection lands on pixel (u, v).

    `seed` is a normalized ray to start from; by default the undistorted pinhole ray.
    """
    if seed is None:
        sx, sy = model.pinhole_ray(u, v)
    else:
        sx, sy = seed
    uu = np.array([float(u)], dtype=np.float64)
    vv = np.array([float(v)], dtype=np.float64)
    xw, yw, err = _descend(
        model,
        uu,
        vv,
        np.array([float(sx) * WORK_DEPTH]),
        np.array([float(sy) * WORK_DEPTH]),
    )
    return PixelSolution(x=float(xw[0] / WORK_DEPTH), y=float(yw[0] / WORK_DEPTH), error_px=float(err[0]))


def solve_rows(
    model: RationalDistortion,
    rows: Sequence[int] | np.ndarray,
    width: int,
    cancel: CancelToken | None = None,
) -> RowBlockSolution:
    """
    Solve every pixel of the given rows.

    Columns are walked left to right; each pixel starts from the previous column's solution
    in the same row, unless that solution was off by more than RESEED_PX, in which case it
    restarts from the pinhole ray. The walk is vectorized across rows, so each row keeps its
    own warm-start chain. `cancel` is polled between columns.
    """
    rows = np.asarray(rows, dtype=np.int64).reshape(-1)
    n = rows.size
    out_x = np.full((n, width), np.nan, dtype=np.float64)
    out_y = np.full((n, width), np.nan, dtype=np.float64)
    out_e = np.full((n, width), np.inf, dtype=np.float64)

    v = rows.astype(np.float64)
    xw = np.zeros(n, dtype=np.float64)
    yw = np.zeros(n, dtype=np.float64)
    prev_err = np.full(n, np.inf, dtype=np.float64)

    for col in range(width):
        if cancel is not None and cancel.cancelled:
            return RowBlockSolution(rows=rows, x=out_x, y=out_y, error_px=out_e, completed=False)

        u = np.full(n, float(col), dtype=np.float64)
        reseed = ~(prev_err <= RESEED_PX)
        if reseed.any():
            px, py = model.pinhole_ray(u[reseed], v[reseed])
            xw[reseed] = px * WORK_DEPTH
            yw[reseed] = py * WORK_DEPTH

        xw, yw, prev_err = _descend(model, u, v, xw, yw)
        out_x[:, col] = xw / WORK_DEPTH
        out_y[:, col] = yw / WORK_DEPTH
        out_e[:, col] = prev_err

    return RowBlockSolution(rows=rows, x=out_x, y=out_y, error_px=out_e, completed=True)
