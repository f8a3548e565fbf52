from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

import numpy as np

from depthlut.core.table import CHANNELS, LookUpTable, LookUpTableStyle
from depthlut.jetr import BoundingBox, Intrinsics

TABLE_SCHEMA_VERSION = "depthlut.lut.v0"


def _encode_float(x: float) -> float | str:
    # Strict JSON has no infinities; open box faces are written as strings.
    x = float(x)
    if math.isinf(x):
        return "inf" if x > 0 else "-inf"
    if math.isnan(x):
        return "nan"
    return x


def save_lookup_table(table_dir: Path, table: LookUpTable) -> Path:
    """
    Save a table into a directory:

      table.json + coefficients.npz

    The JSON carries every piece of metadata needed to rebuild the calibration vector;
    the NPZ stores the (H, W, 12) float32 coefficient buffer.
    """
    table_dir = Path(table_dir)
    table_dir.mkdir(parents=True, exist_ok=True)

    coeffs_path = table_dir / "coefficients.npz"
    np.savez_compressed(coeffs_path, buffer=np.asarray(table.buffer, dtype=np.float32))

    meta: dict[str, Any] = {
        "schema_version": TABLE_SCHEMA_VERSION,
        "image": {"width_px": table.width, "height_px": table.height},
        "style": table.style.value,
        "camera": {"make": table.make, "model": table.model},
        "intrinsics": dict(zip(Intrinsics.__dataclass_fields__, table.intrinsics.as_tuple())),
        "transform": np.asarray(table.transform, dtype=np.float64).tolist(),
        "bounding_box": dict(zip(BoundingBox.__dataclass_fields__, map(_encode_float, table.bounding_box.as_tuple()))),
        "depth": {
            "scale_factor": float(table.scale_factor),
            "z_limits": [float(z) for z in table.z_limits],
        },
        "limits": {
            "x": [_encode_float(v) for v in table.x_limits],
            "y": [_encode_float(v) for v in table.y_limits],
        },
        "coefficients": {"format": "npz", "path": coeffs_path.name, "key": "buffer"},
    }

    json_path = table_dir / "table.json"
    json_path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return json_path


def load_lookup_table(table_dir: Path) -> LookUpTable:
    table_dir = Path(table_dir)
    meta = json.loads((table_dir / "table.json").read_text(encoding="utf-8"))
    if str(meta.get("schema_version")) != TABLE_SCHEMA_VERSION:
        raise ValueError("unsupported table schema")

    image = meta["image"]
    coeffs = meta["coefficients"]
    with np.load(str(table_dir / str(coeffs["path"]))) as npz:
        buffer = np.asarray(npz[str(coeffs["key"])], dtype=np.float32)
    expected = (int(image["height_px"]), int(image["width_px"]), CHANNELS)
    if buffer.shape != expected:
        raise ValueError(f"coefficient buffer shape {buffer.shape} does not match {expected}")

    intr = meta["intrinsics"]
    bb = meta["bounding_box"]
    depth = meta["depth"]
    limits = meta["limits"]
    return LookUpTable(
        buffer=buffer,
        intrinsics=Intrinsics(**{k: float(intr[k]) for k in Intrinsics.__dataclass_fields__}),
        transform=np.asarray(meta["transform"], dtype=np.float64).reshape(4, 4),
        bounding_box=BoundingBox(**{k: float(bb[k]) for k in BoundingBox.__dataclass_fields__}),
        scale_factor=float(depth["scale_factor"]),
        z_limits=(float(depth["z_limits"][0]), float(depth["z_limits"][1])),
        x_limits=(float(limits["x"][0]), float(limits["x"][1])),
        y_limits=(float(limits["y"][0]), float(limits["y"][1])),
        make=str(meta["camera"]["make"]),
        model=str(meta["camera"]["model"]),
        style=LookUpTableStyle(meta["style"]),
    )
