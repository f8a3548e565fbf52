from __future__ import annotations

from datetime import date

import numpy as np
import pytest

from depthlut.config import DeviceQuirk, LutConfig
from depthlut.core.builder import build_table
from depthlut.core.smart_update import UpdateAction, apply_update, decide_update
from depthlut.jetr import CalibrationVector, identity_vector

QUIRK = DeviceQuirk()


def _base() -> CalibrationVector:
    return identity_vector(20.0, 4.0, 20.0, 3.0)


def _with(vec: CalibrationVector, **slots: float) -> CalibrationVector:
    vals = list(vec.values)
    for k, v in slots.items():
        vals[int(k[1:])] = v
    return CalibrationVector.from_sequence(vals)


def test_identical_vector_is_reused():
    d = decide_update(_base(), None, _base(), None, "Acme", "Z1", QUIRK)
    assert d.action is UpdateAction.REUSE
    assert d.reasons == ()


@pytest.mark.parametrize("slot", [0, 1, 4, 9, 11])
def test_intrinsics_change_rebuilds(slot):
    new = _with(_base(), **{f"s{slot}": _base().values[slot] + 0.5})
    d = decide_update(_base(), None, new, None, "Acme", "Z1", QUIRK)
    assert d.action is UpdateAction.REBUILD
    assert "intrinsics" in d.reasons[0]


@pytest.mark.parametrize("slot", [34, 35, 36])
def test_depth_scaling_change_rebuilds(slot):
    new = _with(_base(), **{f"s{slot}": _base().values[slot] * 2.0})
    d = decide_update(_base(), None, new, None, "Acme", "Z1", QUIRK)
    assert d.action is UpdateAction.REBUILD


def test_z_limit_sign_convention_is_not_a_change():
    new = _with(_base(), s35=-3500.0, s36=-150.0)
    d = decide_update(_base(), None, new, None, "Acme", "Z1", QUIRK)
    assert d.action is UpdateAction.REUSE


def test_transform_change_patches():
    new = _with(_base(), s15=42.0)
    d = decide_update(_base(), None, new, None, "Acme", "Z1", QUIRK)
    assert d.action is UpdateAction.PATCH
    assert d.transform_changed and not d.bounding_box_changed


def test_bounding_box_change_patches():
    new = _with(_base(), s32=-2000.0)
    d = decide_update(_base(), None, new, None, "Acme", "Z1", QUIRK)
    assert d.action is UpdateAction.PATCH
    assert d.bounding_box_changed and not d.transform_changed


def test_date_across_cutoff_rebuilds_quirk_camera_only():
    early, late = date(2025, 1, 1), date(2025, 10, 1)
    d = decide_update(_base(), early, _base(), late, "Orbbec", "Femto Mega", QUIRK)
    assert d.action is UpdateAction.REBUILD
    assert "cutoff" in d.reasons[0]

    d = decide_update(_base(), early, _base(), late, "Acme", "Z1", QUIRK)
    assert d.action is UpdateAction.REUSE


def test_date_change_on_same_side_is_reused():
    d = decide_update(_base(), date(2025, 1, 1), _base(), date(2025, 2, 1), "Orbbec", "Femto Mega", QUIRK)
    assert d.action is UpdateAction.REUSE
    d = decide_update(_base(), None, _base(), date(2024, 2, 1), "Orbbec", "Femto Mega", QUIRK)
    assert d.action is UpdateAction.REUSE


def test_apply_patch_keeps_buffer_and_updates_metadata():
    cfg = LutConfig(worker_count=1, quirk=None)
    table = build_table(8, 6, _base(), config=cfg)
    new = _with(_base(), s15=42.0, s32=-2000.0)
    d = decide_update(_base(), None, new, None, "Acme", "Z1", cfg.quirk)

    patched = apply_update(table, d, new)
    fresh = build_table(8, 6, new, config=cfg)
    assert np.shares_memory(patched.buffer, table.buffer)
    assert np.array_equal(patched.buffer, fresh.buffer, equal_nan=True)
    assert np.array_equal(patched.transform, fresh.transform)
    assert patched.bounding_box == fresh.bounding_box


def test_apply_refuses_rebuild():
    table = build_table(4, 4, _base(), config=LutConfig(worker_count=1, quirk=None))
    d = decide_update(_base(), None, _with(_base(), s0=30.0), None, "Acme", "Z1", QUIRK)
    with pytest.raises(ValueError):
        apply_update(table, d, _base())
