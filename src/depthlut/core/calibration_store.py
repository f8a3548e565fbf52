from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Protocol

from depthlut.jetr import CalibrationVector, InvalidVectorError, parse_jetr

logger = logging.getLogger(__name__)

CALIBRATIONS_SCHEMA_VERSION = "depthlut.calibrations.v0"


class CalibrationStore(Protocol):
    def get(self, make: str, model: str) -> CalibrationVector | None: ...

    def list_all(self) -> list[tuple[str, str, CalibrationVector]]: ...


class InMemoryCalibrationStore:
    """Dict-backed store; safe to read and update from several threads."""

    def __init__(self, cameras: Iterable[tuple[str, str, CalibrationVector]] = ()) -> None:
        self._lock = threading.Lock()
        self._cameras: dict[tuple[str, str], CalibrationVector] = {}
        for make, model, vector in cameras:
            self.put(make, model, vector)

    def put(self, make: str, model: str, vector: CalibrationVector) -> None:
        if not isinstance(vector, CalibrationVector):
            vector = CalibrationVector.from_sequence(vector)
        with self._lock:
            self._cameras[(make, model)] = vector

    def remove(self, make: str, model: str) -> bool:
        with self._lock:
            return self._cameras.pop((make, model), None) is not None

    def get(self, make: str, model: str) -> CalibrationVector | None:
        with self._lock:
            return self._cameras.get((make, model))

    def list_all(self) -> list[tuple[str, str, CalibrationVector]]:
        with self._lock:
            return [(make, model, vec) for (make, model), vec in self._cameras.items()]

    def makes(self) -> list[str]:
        with self._lock:
            return sorted({make for make, _ in self._cameras})

    def models(self, make: str) -> list[str]:
        with self._lock:
            return sorted(model for m, model in self._cameras if m == make)


def parse_calibrations(data: dict[str, Any]) -> list[tuple[str, str, CalibrationVector]]:
    """
    Read a calibrations document. Entries with a missing identity or a bad vector are
    logged and skipped; a wrong schema is an error.
    """
    if not isinstance(data, dict):
        raise ValueError("calibrations document must be a JSON object")
    schema = data.get("schema_version")
    if schema != CALIBRATIONS_SCHEMA_VERSION:
        raise ValueError(f"unsupported calibrations schema: {schema!r}")
    cameras = data.get("cameras", [])
    if not isinstance(cameras, list):
        raise ValueError("'cameras' must be a list")

    out: list[tuple[str, str, CalibrationVector]] = []
    for i, cam in enumerate(cameras):
        if not isinstance(cam, dict):
            logger.warning("Skipping calibrations entry %d: not an object", i)
            continue
        make, model = cam.get("make"), cam.get("model")
        if not isinstance(make, str) or not isinstance(model, str) or not make or not model:
            logger.warning("Skipping calibrations entry %d: make/model missing", i)
            continue
        try:
            vec = parse_jetr(cam)
        except InvalidVectorError as e:
            logger.warning("Skipping %s %s: %s", make, model, e)
            continue
        out.append((make, model, vec))
    return out


class JsonCalibrationStore(InMemoryCalibrationStore):
    """Calibrations read once from a JSON file; `reload()` re-reads it."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self.reload()

    def reload(self) -> int:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        cameras = parse_calibrations(data)
        with self._lock:
            self._cameras = {(make, model): vec for make, model, vec in cameras}
        logger.info("Loaded %d calibration(s) from %s", len(cameras), self.path)
        return len(cameras)


def save_calibrations(path: str | Path, cameras: Iterable[tuple[str, str, CalibrationVector]]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    doc = {
        "schema_version": CALIBRATIONS_SCHEMA_VERSION,
        "cameras": [{"make": make, "model": model, "jetr": list(vec.values)} for make, model, vec in cameras],
    }
    path.write_text(json.dumps(doc, indent=2) + "\n", encoding="utf-8")
    return path
