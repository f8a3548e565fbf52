"""
Lookup-table service demo.

This script is meant to be:
- readable (one step per block),
- runnable (no hidden imports; OpenCV is only needed for --png),
- small enough to adapt into an application's startup code.

It does:
1) load a calibrations file (see depthlut.core.calibration_store),
2) start the service and its background scheduler,
3) ask for one camera's table with priority and wait for it,
4) print a summary and optionally save the depth range mask as a PNG.
"""

from __future__ import annotations

import argparse
import math
from pathlib import Path

import numpy as np

from depthlut.api import LutService, save_lookup_table
from depthlut.config import LutConfig, load_lut_config
from depthlut.core.calibration_store import JsonCalibrationStore
from depthlut.core.logging import setup_logging
from depthlut.core.scheduler import TableBuilt


def range_mask_preview(masks: np.ndarray) -> np.ndarray:
    """(H, W, 2) uint16 sample ranges -> 8-bit image of the in-box span per pixel."""
    span = masks[..., 1].astype(np.float64) - masks[..., 0].astype(np.float64)
    top = float(np.max(span)) if span.size else 0.0
    if top <= 0.0:
        return np.zeros(span.shape, dtype=np.uint8)
    return np.clip(255.0 * span / top, 0.0, 255.0).astype(np.uint8)


def main() -> int:
    ap = argparse.ArgumentParser(description="Build and inspect one lookup table through LutService.")
    ap.add_argument("calibrations", type=Path)
    ap.add_argument("--make", required=True)
    ap.add_argument("--model", required=True)
    ap.add_argument("--width", type=int, default=640)
    ap.add_argument("--height", type=int, default=480)
    ap.add_argument("--config", type=Path, default=None)
    ap.add_argument("--out", type=Path, default=None, help="Save the table (table.json + coefficients.npz).")
    ap.add_argument("--png", type=Path, default=None, help="Save a preview of the bounding-box range mask.")
    args = ap.parse_args()

    setup_logging()
    config = load_lut_config(args.config) if args.config else LutConfig()
    store = JsonCalibrationStore(args.calibrations)
    if store.get(args.make, args.model) is None:
        ap.error(f"no calibration for {args.make} {args.model} in {args.calibrations}")

    wanted = TableBuilt(args.make, args.model, args.width, args.height)
    with LutService(store, config=config) as svc:
        svc.start()
        svc.request_priority(args.make, args.model, args.width, args.height)
        while svc.scheduler.events.get() != wanted:
            pass
        # Served from the cache now.
        table = svc.get_or_build(args.make, args.model, args.width, args.height)

    h_fov, v_fov = table.field_of_view
    print(f"{table.make} {table.model}: {table.width}x{table.height}")
    print(f"  FOV {math.degrees(h_fov):.1f} x {math.degrees(v_fov):.1f} deg")
    print(f"  unresolved pixels: {table.unresolved_count()}")

    if args.out is not None:
        print(f"Wrote {save_lookup_table(args.out, table)}")

    if args.png is not None:
        import cv2  # type: ignore

        args.png.parent.mkdir(parents=True, exist_ok=True)
        cv2.imwrite(str(args.png), range_mask_preview(table.range_masks()))
        print(f"Wrote {args.png}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
