from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import numpy as np

JETR_LENGTH = 37

INTRINSICS_SLICE = slice(0, 12)
TRANSFORM_SLICE = slice(12, 28)
BOUNDING_BOX_SLICE = slice(28, 34)
DEPTH_SLICE = slice(34, 37)


class InvalidVectorError(ValueError):
    pass


@dataclass(frozen=True)
class BoundingBox:
    x_min: float = -math.inf
    x_max: float = math.inf
    y_min: float = -math.inf
    y_max: float = math.inf
    z_min: float = -math.inf
    z_max: float = math.inf

    def as_tuple(self) -> tuple[float, float, float, float, float, float]:
        return (self.x_min, self.x_max, self.y_min, self.y_max, self.z_min, self.z_max)

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "BoundingBox":
        if len(values) != 6:
            raise InvalidVectorError("bounding box needs 6 values")
        return cls(*(float(v) for v in values))


@dataclass(frozen=True)
class Intrinsics:
    """
    Pinhole intrinsics plus rational radial / tangential distortion.

    Layout matches JETR slots 0..11: fx, cx, fy, cy, k1..k6, p1, p2.
    """

    fx: float
    cx: float
    fy: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    k3: float = 0.0
    k4: float = 0.0
    k5: float = 0.0
    k6: float = 0.0
    p1: float = 0.0
    p2: float = 0.0

    def as_tuple(self) -> tuple[float, ...]:
        return (
            self.fx,
            self.cx,
            self.fy,
            self.cy,
            self.k1,
            self.k2,
            self.k3,
            self.k4,
            self.k5,
            self.k6,
            self.p1,
            self.p2,
        )


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise InvalidVectorError(msg)


@dataclass(frozen=True)
class CalibrationVector:
    """
    The 37-double "just enough to reconstruct" (JETR) record of one camera.

      [0..11]  intrinsics + distortion
      [12..27] 4x4 extrinsic transform, row-major
      [28..33] bounding box (may be +/-inf)
      [34..36] depth scale factor, zMin, zMax
    """

    values: tuple[float, ...]

    def __post_init__(self) -> None:
        _require(len(self.values) == JETR_LENGTH, f"JETR vector must have {JETR_LENGTH} entries, got {len(self.values)}")
        for i, v in enumerate(self.values):
            _require(not math.isnan(v), f"JETR[{i}] is NaN")
            if not (BOUNDING_BOX_SLICE.start <= i < BOUNDING_BOX_SLICE.stop):
                _require(math.isfinite(v), f"JETR[{i}] must be finite")

    @classmethod
    def from_sequence(cls, values: Sequence[float] | np.ndarray) -> "CalibrationVector":
        try:
            vals = tuple(float(v) for v in np.asarray(values, dtype=np.float64).reshape(-1))
        except (TypeError, ValueError) as e:
            raise InvalidVectorError(f"JETR vector is not numeric: {e}") from e
        return cls(vals)

    @classmethod
    def from_parts(
        cls,
        intrinsics: Intrinsics,
        *,
        transform: np.ndarray | None = None,
        bounding_box: BoundingBox | None = None,
        scale_factor: float = 0.25,
        z_min: float = 150.0,
        z_max: float = 3500.0,
    ) -> "CalibrationVector":
        if transform is None:
            transform = np.eye(4, dtype=np.float64)
        if bounding_box is None:
            bounding_box = BoundingBox()
        m = np.asarray(transform, dtype=np.float64).reshape(4, 4)
        vals = (
            intrinsics.as_tuple()
            + tuple(float(v) for v in m.reshape(-1))
            + bounding_box.as_tuple()
            + (float(scale_factor), float(z_min), float(z_max))
        )
        return cls(vals)

    @property
    def intrinsics(self) -> Intrinsics:
        return Intrinsics(*self.values[INTRINSICS_SLICE])

    @property
    def transform(self) -> np.ndarray:
        return np.asarray(self.values[TRANSFORM_SLICE], dtype=np.float64).reshape(4, 4)

    @property
    def bounding_box(self) -> BoundingBox:
        return BoundingBox.from_sequence(self.values[BOUNDING_BOX_SLICE])

    @property
    def scale_factor(self) -> float:
        return self.values[34]

    @property
    def z_limits(self) -> tuple[float, float]:
        return self.values[35], self.values[36]

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)

    def differs(self, other: "CalibrationVector", part: slice) -> bool:
        return self.values[part] != other.values[part]

    def __len__(self) -> int:
        return JETR_LENGTH


def identity_vector(
    fx: float,
    cx: float,
    fy: float,
    cy: float,
    *,
    scale_factor: float = 0.25,
    z_min: float = 150.0,
    z_max: float = 3500.0,
) -> CalibrationVector:
    """Distortion-free vector with identity transform and an unbounded box."""
    return CalibrationVector.from_parts(
        Intrinsics(fx=fx, cx=cx, fy=fy, cy=cy),
        scale_factor=scale_factor,
        z_min=z_min,
        z_max=z_max,
    )


def parse_jetr(data: dict[str, Any] | Sequence[float]) -> CalibrationVector:
    """
    Accept either a bare list of 37 numbers or {"jetr": [...]}.
    """
    if isinstance(data, dict):
        raw = data.get("jetr")
        _require(raw is not None, "document has no 'jetr' entry")
    else:
        raw = data
    _require(isinstance(raw, (list, tuple)), "jetr must be a list of numbers")
    return CalibrationVector.from_sequence(raw)


def load_jetr(path: str | Path) -> CalibrationVector:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_jetr(data)
