from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum

from depthlut.config import DeviceQuirk
from depthlut.core.table import LookUpTable, normalize_z_limits
from depthlut.jetr import (
    BOUNDING_BOX_SLICE,
    INTRINSICS_SLICE,
    TRANSFORM_SLICE,
    CalibrationVector,
)

logger = logging.getLogger(__name__)


def _depth_key(vector: CalibrationVector) -> tuple[float, float, float]:
    # The builder normalizes z-limits, so (150, 3500) and (-3500, -150) build the same table.
    return (vector.scale_factor, *normalize_z_limits(*vector.z_limits))


class UpdateAction(str, Enum):
    REUSE = "reuse"
    PATCH = "patch"
    REBUILD = "rebuild"


@dataclass(frozen=True)
class UpdateDecision:
    action: UpdateAction
    transform_changed: bool = False
    bounding_box_changed: bool = False
    reasons: tuple[str, ...] = ()


def decide_update(
    cached_vector: CalibrationVector,
    cached_date: date | None,
    new_vector: CalibrationVector,
    new_date: date | None,
    make: str,
    model: str,
    quirk: DeviceQuirk | None = None,
) -> UpdateDecision:
    """
    Pick the cheapest correct way to turn a cached table into the table for `new_vector`.

    Only the intrinsics, the depth scaling and (for the rotation-quirk family) the rotation
    decision are baked into the coefficient buffer; transform and bounding box are metadata.
    """
    reasons: list[str] = []
    if new_vector.differs(cached_vector, INTRINSICS_SLICE):
        changed = [
            name
            for i, name in enumerate(("fx", "cx", "fy", "cy", "k1", "k2", "k3", "k4", "k5", "k6", "p1", "p2"))
            if cached_vector.values[i] != new_vector.values[i]
        ]
        reasons.append("intrinsics/distortion changed: " + ", ".join(changed))
    if _depth_key(new_vector) != _depth_key(cached_vector):
        reasons.append("scale factor or z-limits changed")
    if quirk is not None and quirk.matches(make, model):
        if quirk.should_rotate(cached_date) != quirk.should_rotate(new_date):
            reasons.append(f"rotation changes across remount cutoff ({cached_date} -> {new_date})")
    if reasons:
        return UpdateDecision(UpdateAction.REBUILD, reasons=tuple(reasons))

    transform_changed = new_vector.differs(cached_vector, TRANSFORM_SLICE)
    bbox_changed = new_vector.differs(cached_vector, BOUNDING_BOX_SLICE)
    if transform_changed:
        reasons.append("transform changed")
    if bbox_changed:
        reasons.append("bounding box changed")
    if transform_changed or bbox_changed:
        return UpdateDecision(
            UpdateAction.PATCH,
            transform_changed=transform_changed,
            bounding_box_changed=bbox_changed,
            reasons=tuple(reasons),
        )
    return UpdateDecision(UpdateAction.REUSE)


def apply_update(table: LookUpTable, decision: UpdateDecision, new_vector: CalibrationVector) -> LookUpTable:
    """Apply a PATCH decision; the coefficient buffer is shared with `table`."""
    if decision.action is UpdateAction.REBUILD:
        raise ValueError("a REBUILD decision cannot be applied as a patch")
    out = table
    if decision.transform_changed:
        out = out.with_transform(new_vector.transform)
    if decision.bounding_box_changed:
        out = out.with_bounding_box(new_vector.bounding_box)
    if decision.action is UpdateAction.PATCH:
        logger.debug("Patched %s %s table in place: %s", table.make, table.model, "; ".join(decision.reasons))
    return out
