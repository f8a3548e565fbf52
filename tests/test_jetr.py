from __future__ import annotations

import json
import math
from pathlib import Path

import numpy as np
import pytest

from depthlut.jetr import (
    JETR_LENGTH,
    TRANSFORM_SLICE,
    BoundingBox,
    CalibrationVector,
    Intrinsics,
    InvalidVectorError,
    identity_vector,
    load_jetr,
    parse_jetr,
)


def _values(**overrides: float) -> list[float]:
    vec = identity_vector(500.0, 320.0, 500.0, 240.0)
    vals = list(vec.values)
    for idx, v in overrides.items():
        vals[int(idx.lstrip("i"))] = v
    return vals


def test_from_parts_layout():
    intr = Intrinsics(fx=500.0, cx=320.0, fy=510.0, cy=240.0, k1=-0.1, p2=0.001)
    m = np.eye(4)
    m[0, 3] = 12.5
    bb = BoundingBox(x_min=-1.0, x_max=1.0)
    vec = CalibrationVector.from_parts(intr, transform=m, bounding_box=bb, scale_factor=0.5, z_min=100.0, z_max=2000.0)

    assert len(vec) == JETR_LENGTH
    assert vec.intrinsics == intr
    assert np.array_equal(vec.transform, m)
    assert vec.bounding_box == bb
    assert vec.scale_factor == 0.5
    assert vec.z_limits == (100.0, 2000.0)
    assert vec.values[15] == 12.5


def test_wrong_length_is_rejected():
    with pytest.raises(InvalidVectorError):
        CalibrationVector.from_sequence([1.0] * 36)


def test_nan_is_rejected_everywhere():
    with pytest.raises(InvalidVectorError):
        CalibrationVector.from_sequence(_values(i3=math.nan))
    with pytest.raises(InvalidVectorError):
        CalibrationVector.from_sequence(_values(i30=math.nan))


def test_infinity_only_allowed_in_bounding_box():
    vec = CalibrationVector.from_sequence(_values(i28=-math.inf, i33=math.inf))
    assert vec.bounding_box.x_min == -math.inf
    with pytest.raises(InvalidVectorError):
        CalibrationVector.from_sequence(_values(i0=math.inf))
    with pytest.raises(InvalidVectorError):
        CalibrationVector.from_sequence(_values(i36=math.inf))


def test_non_numeric_is_rejected():
    vals: list = _values()
    vals[5] = "abc"
    with pytest.raises(InvalidVectorError):
        CalibrationVector.from_sequence(vals)


def test_differs_by_part():
    a = identity_vector(500.0, 320.0, 500.0, 240.0)
    vals = list(a.values)
    vals[15] = 7.0
    b = CalibrationVector.from_sequence(vals)
    assert b.differs(a, TRANSFORM_SLICE)
    assert not b.differs(a, slice(0, 12))


def test_parse_jetr_accepts_list_and_document(tmp_path: Path):
    vals = _values()
    assert parse_jetr(vals) == parse_jetr({"jetr": vals})

    p = tmp_path / "cam.json"
    p.write_text(json.dumps({"jetr": vals}), encoding="utf-8")
    assert load_jetr(p).values == tuple(vals)

    with pytest.raises(InvalidVectorError):
        parse_jetr({"something": vals})
