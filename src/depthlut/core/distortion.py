from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from depthlut.jetr import CalibrationVector, Intrinsics


@dataclass(frozen=True)
class RationalDistortion:
    """
    Pinhole projection with rational radial + tangential distortion on normalized
    camera coordinates (x=X/Z, y=Y/Z).

    Radial gain is (1 + k1 r + k2 r^2 + k3 r^3) / (1 + k4 r + k5 r^2 + k6 r^3) with r = x^2 + y^2,
    which is OpenCV's CALIB_RATIONAL_MODEL.
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

    @classmethod
    def from_intrinsics(cls, intr: Intrinsics) -> "RationalDistortion":
        return cls(*intr.as_tuple())

    @classmethod
    def from_vector(cls, vector: CalibrationVector) -> "RationalDistortion":
        return cls.from_intrinsics(vector.intrinsics)

    def distort(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        r = x * x + y * y
        r2 = r * r
        r3 = r2 * r
        g = (1.0 + self.k1 * r + self.k2 * r2 + self.k3 * r3) / (1.0 + self.k4 * r + self.k5 * r2 + self.k6 * r3)
        xy = x * y
        xd = x * g + 2.0 * self.p1 * xy + self.p2 * (r + 2.0 * x * x)
        yd = y * g + 2.0 * self.p2 * xy + self.p1 * (r + 2.0 * y * y)
        return xd, yd

    def project(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Normalized ray (x, y, 1) -> distorted pixel (u, v)."""
        xd, yd = self.distort(x, y)
        return self.fx * xd + self.cx, self.fy * yd + self.cy

    def pinhole_ray(self, u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Undistorted back-projection; the solver's cold-start seed."""
        u = np.asarray(u, dtype=np.float64)
        v = np.asarray(v, dtype=np.float64)
        return (u - self.cx) / self.fx, (v - self.cy) / self.fy

    def to_opencv(self) -> tuple[np.ndarray, np.ndarray]:
        """
        Camera matrix and distortion coefficients in OpenCV order
        (k1, k2, p1, p2, k3, k4, k5, k6).
        """
        K = np.array([[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]], dtype=np.float64)
        dist = np.array([self.k1, self.k2, self.p1, self.p2, self.k3, self.k4, self.k5, self.k6], dtype=np.float64)
        return K, dist
