from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class DeviceQuirk:
    """
    A camera family whose raw frames are larger than the delivered depth image.

    Tables for these cameras are built at the native sensor size, rotated 180 degrees
    for captures taken before the camera was remounted, then center-cropped.
    """

    make: str = "orbbec"
    model_contains: str = "femto"
    native_width: int = 640
    native_height: int = 576
    remount_cutoff: date = date(2025, 9, 6)

    def matches(self, make: str, model: str) -> bool:
        return make.lower() == self.make.lower() and self.model_contains.lower() in model.lower()

    def should_rotate(self, as_of: date | None) -> bool:
        # Unknown capture dates predate the remount.
        return as_of is None or as_of < self.remount_cutoff


@dataclass(frozen=True)
class LutConfig:
    standard_dimensions: tuple[tuple[int, int], ...] = ((640, 480),)
    worker_count: int | None = None
    rows_per_batch: int = 8
    stop_timeout_s: float = 5.0
    quirk: DeviceQuirk | None = field(default_factory=DeviceQuirk)

    def resolved_worker_count(self) -> int:
        if self.worker_count is not None:
            return self.worker_count
        # Half the cores, at least one.
        return max(1, (os.cpu_count() or 2) // 2)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def _parse_date(raw: Any, name: str) -> date:
    _require(isinstance(raw, str), f"{name} must be an ISO date string")
    try:
        return date.fromisoformat(raw)
    except ValueError as e:
        raise ConfigValidationError(f"{name} is not a valid ISO date: {raw!r}") from e


def parse_device_quirk(data: dict[str, Any] | None) -> DeviceQuirk | None:
    if data is None:
        return None
    default = DeviceQuirk()
    make = str(data.get("make", default.make))
    model_contains = str(data.get("model_contains", default.model_contains))
    _require(bool(make) and bool(model_contains), "quirk.make and quirk.model_contains must be non-empty")
    native = data.get("native_size", [default.native_width, default.native_height])
    _require(isinstance(native, (list, tuple)) and len(native) == 2, "quirk.native_size must be [w,h]")
    nw, nh = int(native[0]), int(native[1])
    _require(nw > 0 and nh > 0, "quirk.native_size values must be > 0")
    cutoff_raw = data.get("remount_cutoff")
    cutoff = default.remount_cutoff if cutoff_raw is None else _parse_date(cutoff_raw, "quirk.remount_cutoff")
    return DeviceQuirk(
        make=make,
        model_contains=model_contains,
        native_width=nw,
        native_height=nh,
        remount_cutoff=cutoff,
    )


def parse_lut_config(data: dict[str, Any]) -> LutConfig:
    dims_raw = data.get("standard_dimensions", [[640, 480]])
    _require(isinstance(dims_raw, (list, tuple)) and len(dims_raw) > 0, "standard_dimensions must be a non-empty list")
    dims: list[tuple[int, int]] = []
    for d in dims_raw:
        _require(isinstance(d, (list, tuple)) and len(d) == 2, "each standard dimension must be [w,h]")
        w, h = int(d[0]), int(d[1])
        _require(w > 0 and h > 0, "standard dimensions must be > 0")
        dims.append((w, h))

    workers_raw = data.get("worker_count")
    workers = None if workers_raw is None else int(workers_raw)
    _require(workers is None or workers >= 1, "worker_count must be >= 1")

    rows_per_batch = int(data.get("rows_per_batch", 8))
    _require(rows_per_batch >= 1, "rows_per_batch must be >= 1")

    stop_timeout_s = float(data.get("stop_timeout_s", 5.0))
    _require(stop_timeout_s > 0.0, "stop_timeout_s must be > 0")

    if "quirk" in data:
        quirk = parse_device_quirk(data["quirk"])
    else:
        quirk = DeviceQuirk()

    return LutConfig(
        standard_dimensions=tuple(dims),
        worker_count=workers,
        rows_per_batch=rows_per_batch,
        stop_timeout_s=stop_timeout_s,
        quirk=quirk,
    )


def load_lut_config(path: str | Path) -> LutConfig:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    _require(isinstance(data, dict), "config must be a JSON object")
    return parse_lut_config(data)
