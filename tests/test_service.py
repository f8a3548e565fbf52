from __future__ import annotations

import json
from pathlib import Path

import pytest

from depthlut.api import CalibrationNotFound, LutService
from depthlut.config import LutConfig
from depthlut.core.calibration_store import (
    CALIBRATIONS_SCHEMA_VERSION,
    InMemoryCalibrationStore,
    JsonCalibrationStore,
    save_calibrations,
)
from depthlut.core.scheduler import BacklogDrained, TableBuilt
from depthlut.jetr import identity_vector

CFG = LutConfig(standard_dimensions=((8, 6),), worker_count=1, rows_per_batch=4, quirk=None)
VEC = identity_vector(20.0, 4.0, 20.0, 3.0)


def test_get_or_build_reads_calibration_from_store():
    store = InMemoryCalibrationStore([("Acme", "Z1", VEC)])
    with LutService(store, config=CFG) as svc:
        t = svc.get_or_build("Acme", "Z1", 8, 6)
        assert t.width == 8 and t.make == "Acme"
        assert svc.get_or_build("Acme", "Z1", 8, 6) is t
        with pytest.raises(CalibrationNotFound):
            svc.get_or_build("Acme", "Missing", 8, 6)


def test_build_table_bypasses_cache():
    with LutService(InMemoryCalibrationStore(), config=CFG) as svc:
        t = svc.build_table(8, 6, VEC, make="Acme", model="Z1")
        assert t.height == 6
        assert len(svc.cache) == 0


def test_calibration_changed_forces_rebuild_from_store():
    store = InMemoryCalibrationStore([("Acme", "Z1", VEC)])
    with LutService(store, config=CFG) as svc:
        first = svc.get_or_build("Acme", "Z1", 8, 6)
        store.put("Acme", "Z1", identity_vector(25.0, 4.0, 25.0, 3.0))
        assert svc.calibration_changed("Acme", "Z1") == 1
        second = svc.get_or_build("Acme", "Z1", 8, 6)
        assert second is not first
        assert second.intrinsics.fx == 25.0


def test_insert_invalidate_and_clear():
    with LutService(InMemoryCalibrationStore(), config=CFG) as svc:
        t = svc.build_table(8, 6, VEC, make="Acme", model="Z1")
        svc.insert("Acme", "Z1", 8, 6, t)
        assert svc.cache.get("Acme", "Z1", 8, 6) is t
        assert svc.invalidate("Acme", "Z1") == 1
        svc.insert("Acme", "Z1", 8, 6, t)
        assert svc.clear() == 1


def test_context_manager_stops_scheduler():
    store = InMemoryCalibrationStore([("Acme", "Z1", VEC)])
    with LutService(store, config=CFG) as svc:
        svc.start()
        events = [svc.scheduler.events.get(timeout=20), svc.scheduler.events.get(timeout=20)]
    assert events == [TableBuilt("Acme", "Z1", 8, 6), BacklogDrained()]
    assert not svc.scheduler.is_running


def test_json_store_skips_bad_entries(tmp_path: Path):
    p = tmp_path / "cals.json"
    good = list(VEC.values)
    p.write_text(
        json.dumps(
            {
                "schema_version": CALIBRATIONS_SCHEMA_VERSION,
                "cameras": [
                    {"make": "Acme", "model": "Z1", "jetr": good},
                    {"make": "Acme", "model": "Short", "jetr": good[:10]},
                    {"make": "", "model": "NoMake", "jetr": good},
                    {"make": "Other", "model": "Z9", "jetr": good},
                ],
            }
        ),
        encoding="utf-8",
    )
    store = JsonCalibrationStore(p)
    assert [(m, n) for m, n, _ in store.list_all()] == [("Acme", "Z1"), ("Other", "Z9")]
    assert store.makes() == ["Acme", "Other"]
    assert store.models("Acme") == ["Z1"]
    assert store.get("Acme", "Z1") == VEC
    assert store.get("Acme", "Short") is None


def test_json_store_roundtrip_and_bad_schema(tmp_path: Path):
    p = save_calibrations(tmp_path / "cals.json", [("Acme", "Z1", VEC)])
    assert JsonCalibrationStore(p).get("Acme", "Z1") == VEC

    p.write_text(json.dumps({"schema_version": "nope", "cameras": []}), encoding="utf-8")
    with pytest.raises(ValueError):
        JsonCalibrationStore(p)
    with pytest.raises(OSError):
        JsonCalibrationStore(tmp_path / "missing.json")
