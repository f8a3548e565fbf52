from __future__ import annotations

import argparse
import logging
import math
from datetime import date
from pathlib import Path

from depthlut.api.table_io import load_lookup_table, save_lookup_table
from depthlut.cli.warm import run_warm
from depthlut.config import LutConfig, load_lut_config
from depthlut.core.builder import build_table, parse_folder_date
from depthlut.core.logging import setup_logging
from depthlut.jetr import load_jetr


def _print_progress(done: int, total: int) -> None:
    print(f"\r{done}/{total} rows", end="", flush=True)
    if done >= total:
        print()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="depthlut")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to a rotating file.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    build = sub.add_parser("build", help="Build one lookup table from a JETR calibration file.")
    build.add_argument("--jetr", type=Path, required=True, help="JSON file: a 37-number list or {\"jetr\": [...]}.")
    build.add_argument("--width", type=int, required=True)
    build.add_argument("--height", type=int, required=True)
    build.add_argument("--make", type=str, default="")
    build.add_argument("--model", type=str, default="")
    when = build.add_mutually_exclusive_group()
    when.add_argument("--date", type=date.fromisoformat, default=None, help="Capture date (YYYY-MM-DD).")
    when.add_argument("--folder", type=str, default=None, help="Capture folder name (Folder######## / ########).")
    build.add_argument("--config", type=Path, default=None, help="LutConfig JSON.")
    build.add_argument("--out", type=Path, required=True, help="Output directory (table.json + coefficients.npz).")
    build.add_argument("--quiet", action="store_true", help="No progress output.")

    inspect = sub.add_parser("inspect", help="Summarize a saved lookup table.")
    inspect.add_argument("table_dir", type=Path)

    warm = sub.add_parser("warm", help="Build every stored camera at the standard sizes.")
    warm.add_argument("--store", type=Path, required=True, help="Calibrations JSON.")
    warm.add_argument("--config", type=Path, default=None, help="LutConfig JSON.")
    warm.add_argument("--out", type=Path, default=None, help="Save every built table under this directory.")

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, log_file=args.log_file)

    if args.cmd == "build":
        config = load_lut_config(args.config) if args.config else LutConfig()
        as_of = args.date
        if args.folder is not None:
            as_of = parse_folder_date(args.folder)
            if as_of is None:
                print(f"Could not read a date from folder name {args.folder!r}; treating it as unknown")
        table = build_table(
            args.width,
            args.height,
            load_jetr(args.jetr),
            make=args.make,
            model=args.model,
            as_of_date=as_of,
            progress=None if args.quiet else _print_progress,
            config=config,
        )
        path = save_lookup_table(args.out, table)
        print(f"Wrote {path}")
        return 0

    if args.cmd == "inspect":
        table = load_lookup_table(args.table_dir)
        h_fov, v_fov = table.field_of_view
        print(f"camera:      {table.make or '-'} {table.model or '-'}")
        print(f"size:        {table.width}x{table.height}")
        print(f"style:       {table.style.value}")
        print(f"z-limits:    {table.z_limits[0]:.1f} .. {table.z_limits[1]:.1f}")
        print(f"x-limits:    {table.x_limits[0]:.1f} .. {table.x_limits[1]:.1f}")
        print(f"y-limits:    {table.y_limits[0]:.1f} .. {table.y_limits[1]:.1f}")
        print(f"fov (deg):   {math.degrees(h_fov):.2f} x {math.degrees(v_fov):.2f}")
        print(f"unresolved:  {table.unresolved_count()} / {table.width * table.height}")
        return 0

    if args.cmd == "warm":
        config = load_lut_config(args.config) if args.config else LutConfig()
        written = run_warm(args.store, config, out_dir=args.out)
        for path in written:
            print(f"Wrote {path}")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
