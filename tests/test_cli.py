from __future__ import annotations

import json
from pathlib import Path

from depthlut.api.table_io import load_lookup_table
from depthlut.cli.main import main
from depthlut.core.calibration_store import save_calibrations
from depthlut.jetr import identity_vector

VEC = identity_vector(20.0, 4.0, 20.0, 3.0)


def test_build_then_inspect(tmp_path: Path, capsys):
    jetr = tmp_path / "cam.json"
    jetr.write_text(json.dumps({"jetr": list(VEC.values)}), encoding="utf-8")
    cfg = tmp_path / "lut.json"
    cfg.write_text(json.dumps({"worker_count": 1, "quirk": None}), encoding="utf-8")

    out = tmp_path / "lut"
    rc = main(
        [
            "build",
            "--jetr", str(jetr),
            "--width", "8",
            "--height", "6",
            "--make", "Acme",
            "--model", "Z1",
            "--folder", "Folder20250101",
            "--config", str(cfg),
            "--out", str(out),
            "--quiet",
        ]
    )
    assert rc == 0
    assert load_lookup_table(out).make == "Acme"

    capsys.readouterr()
    assert main(["inspect", str(out)]) == 0
    text = capsys.readouterr().out
    assert "size:        8x6" in text
    assert "unresolved:  0 / 48" in text


def test_warm_builds_every_stored_camera(tmp_path: Path, capsys):
    store = save_calibrations(tmp_path / "cals.json", [("Acme", "Z1", VEC), ("Acme", "Z 2", VEC)])
    cfg = tmp_path / "lut.json"
    cfg.write_text(json.dumps({"standard_dimensions": [[8, 6]], "worker_count": 1, "quirk": None}), encoding="utf-8")

    out = tmp_path / "tables"
    assert main(["warm", "--store", str(store), "--config", str(cfg), "--out", str(out)]) == 0
    assert sorted(p.name for p in out.iterdir()) == ["Acme_Z1_8x6", "Acme_Z_2_8x6"]
    assert "Wrote" in capsys.readouterr().out
