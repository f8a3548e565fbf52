from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np

from depthlut.jetr import BoundingBox, CalibrationVector, Intrinsics

CHANNELS = 12

# Per-pixel record layout.
COEF_A, COEF_B, COEF_C, COEF_D = 0, 1, 2, 3
POLY_E, POLY_F, POLY_G, POLY_H, POLY_I = 4, 5, 6, 7, 8

DEPTH_SAMPLE_MAX = 65535.0


class LookUpTableStyle(str, Enum):
    LINEAR = "linear"
    FOURTH_ORDER_POLY = "fourth_order_poly"
    UNDEFINED = "undefined"


def normalize_z_limits(z_min: float, z_max: float) -> tuple[float, float]:
    """Force both limits negative (camera looks down -Z) with z_min the farther plane."""
    z_min = -abs(float(z_min))
    z_max = -abs(float(z_max))
    if z_min > z_max:
        z_min, z_max = z_max, z_min
    return z_min, z_max


def symmetric_limits(lo: float, hi: float) -> tuple[float, float]:
    if not (math.isfinite(lo) and math.isfinite(hi)):
        return (math.nan, math.nan)
    hi = max(hi, -lo)
    return (-hi, hi)


@dataclass(frozen=True, eq=False)
class LookUpTable:
    """
    Per-pixel coefficients turning a raw depth sample into a world point.

    `buffer` is float32 shaped (H, W, 12). For the fourth-order-poly style, channel layout is

      A, B, C, D        X = A z + B,  Y = C z + D
      E, F, G, H, I     z(s) = E s^4 + F s^3 + G s^2 + H s + I for a normalized sample s in [0, 1]
      3 padding slots   NaN

    Unresolved pixels carry NaN in A..D. Instances are immutable: every transform returns a
    new table. A writeable buffer is copied on construction; a read-only float32 C-contiguous
    one is shared, which is how patched tables reuse their coefficients.
    """

    buffer: np.ndarray
    intrinsics: Intrinsics
    transform: np.ndarray
    bounding_box: BoundingBox
    scale_factor: float
    z_limits: tuple[float, float]
    x_limits: tuple[float, float] = (math.nan, math.nan)
    y_limits: tuple[float, float] = (math.nan, math.nan)
    make: str = ""
    model: str = ""
    style: LookUpTableStyle = LookUpTableStyle.FOURTH_ORDER_POLY

    def __post_init__(self) -> None:
        buf = self.buffer
        if not (
            isinstance(buf, np.ndarray)
            and buf.dtype == np.float32
            and buf.flags.c_contiguous
            and not buf.flags.writeable
        ):
            buf = np.array(buf, dtype=np.float32, order="C")
        if buf.ndim != 3 or buf.shape[2] != CHANNELS:
            raise ValueError(f"buffer must be shaped (H, W, {CHANNELS}), got {buf.shape}")
        buf.setflags(write=False)
        object.__setattr__(self, "buffer", buf)

        m = np.array(self.transform, dtype=np.float64).reshape(4, 4)
        m.setflags(write=False)
        object.__setattr__(self, "transform", m)
        object.__setattr__(self, "z_limits", (float(self.z_limits[0]), float(self.z_limits[1])))

    @property
    def width(self) -> int:
        return int(self.buffer.shape[1])

    @property
    def height(self) -> int:
        return int(self.buffer.shape[0])

    @property
    def is_valid(self) -> bool:
        return self.buffer.size > 0

    @property
    def field_of_view(self) -> tuple[float, float]:
        """(horizontal, vertical) in radians, measured at whichever z-limit is farther."""
        z_min, z_max = self.z_limits
        z = z_min if abs(z_min) > abs(z_max) else z_max
        if z == 0.0:
            return (math.nan, math.nan)
        x_lo, x_hi = self.x_limits
        y_lo, y_hi = self.y_limits
        h = abs(math.atan(x_lo / z)) + abs(math.atan(x_hi / z))
        v = abs(math.atan(y_lo / z)) + abs(math.atan(y_hi / z))
        return (h, v)

    def unresolved_mask(self) -> np.ndarray:
        return np.isnan(self.buffer[:, :, COEF_A])

    def unresolved_count(self) -> int:
        return int(np.count_nonzero(self.unresolved_mask()))

    def _require_poly(self, op: str) -> None:
        if self.style is not LookUpTableStyle.FOURTH_ORDER_POLY:
            raise ValueError(f"{op} needs a fourth-order-poly table, got {self.style.value}")

    def rotate180(self) -> "LookUpTable":
        self._require_poly("rotate180")
        return dataclasses.replace(self, buffer=self.buffer[::-1, ::-1, :])

    def crop(self, x: int, y: int, w: int, h: int) -> "LookUpTable":
        self._require_poly("crop")
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise ValueError(f"crop origin ({x},{y}) outside {self.width}x{self.height} table")
        w = min(int(w), self.width - x)
        h = min(int(h), self.height - y)
        if w <= 0 or h <= 0:
            raise ValueError("crop extent must be > 0")
        cropped = dataclasses.replace(self, buffer=self.buffer[y : y + h, x : x + w, :])
        return cropped.with_updated_limits()

    def with_updated_limits(self) -> "LookUpTable":
        """
        Recompute X/Y limits from the coefficients: X from a band of middle rows, Y from a
        band of middle columns, each evaluated at both z-limits, then made symmetric.
        """
        H, W = self.height, self.width
        row_band = self.buffer[max(0, H // 2 - 2) : min(H, H // 2 + 3), :, :]
        col_band = self.buffer[:, max(0, W // 2 - 2) : min(W, W // 2 + 3), :]
        z = np.asarray(self.z_limits, dtype=np.float32)

        xs = row_band[:, :, COEF_A, None] * z + row_band[:, :, COEF_B, None]
        ys = col_band[:, :, COEF_C, None] * z + col_band[:, :, COEF_D, None]
        if np.all(np.isnan(xs)) or np.all(np.isnan(ys)):
            return dataclasses.replace(self, x_limits=(math.nan, math.nan), y_limits=(math.nan, math.nan))
        x_lim = symmetric_limits(float(np.nanmin(xs)), float(np.nanmax(xs)))
        y_lim = symmetric_limits(float(np.nanmin(ys)), float(np.nanmax(ys)))
        return dataclasses.replace(self, x_limits=x_lim, y_limits=y_lim)

    def with_transform(self, transform: np.ndarray) -> "LookUpTable":
        return dataclasses.replace(self, transform=np.asarray(transform, dtype=np.float64).reshape(4, 4))

    def with_bounding_box(self, bounding_box: BoundingBox) -> "LookUpTable":
        return dataclasses.replace(self, bounding_box=bounding_box)

    def with_identity(self, make: str, model: str) -> "LookUpTable":
        return dataclasses.replace(self, make=make, model=model)

    def jetr(self) -> CalibrationVector:
        """
        Rebuild the calibration vector from table metadata. z-limits come back in the
        table's negative-Z convention.
        """
        return CalibrationVector.from_parts(
            self.intrinsics,
            transform=self.transform,
            bounding_box=self.bounding_box,
            scale_factor=self.scale_factor,
            z_min=self.z_limits[0],
            z_max=self.z_limits[1],
        )

    def range_masks(self, bounding_box: BoundingBox | None = None) -> np.ndarray:
        """
        For every pixel, the [min, max] span of raw depth samples (0..65535) whose world
        point lies inside the box, as uint16 shaped (H, W, 2). Unresolved pixels get [0, 0].

        Each pixel's line of sight is the segment from sample 0 to sample 65535 after the
        table's transform; the span is the slab intersection with the box.
        """
        self._require_poly("range_masks")
        bb = self.bounding_box if bounding_box is None else bounding_box
        buf = self.buffer.astype(np.float64)
        a, b, c, d = buf[..., COEF_A], buf[..., COEF_B], buf[..., COEF_C], buf[..., COEF_D]
        z0 = buf[..., POLY_I]
        z1 = buf[..., POLY_E] + buf[..., POLY_F] + buf[..., POLY_G] + buf[..., POLY_H] + buf[..., POLY_I]

        def world(z: np.ndarray) -> np.ndarray:
            p = np.stack([a * z + b, c * z + d, z, np.ones_like(z)], axis=-1)
            return p @ self.transform.T

        pa = world(z0)
        pb = world(z1) - pa

        with np.errstate(divide="ignore", invalid="ignore"):
            xa = (bb.x_min - pa[..., 0]) / pb[..., 0]
            xb = (bb.x_max - pa[..., 0]) / pb[..., 0]
            ya = (bb.y_min - pa[..., 1]) / pb[..., 1]
            yb = (bb.y_max - pa[..., 1]) / pb[..., 1]
            za = (bb.z_min - pa[..., 2]) / pb[..., 2]
            zb = (bb.z_max - pa[..., 2]) / pb[..., 2]

            lo = np.fmax(np.fmin(xa, xb), np.fmax(np.fmin(ya, yb), np.fmin(za, zb)))
            hi = np.fmin(np.fmax(xa, xb), np.fmin(np.fmax(ya, yb), np.fmax(za, zb)))

            missed = (lo > hi) | (lo > 1.0) | (hi < 0.0)

        out = np.stack([lo, hi], axis=-1)
        out = np.nan_to_num(np.clip(out, 0.0, 1.0), nan=0.0)
        out[self.unresolved_mask() | missed] = 0.0
        return np.rint(out * DEPTH_SAMPLE_MAX).astype(np.uint16)
