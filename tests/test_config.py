from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path

import pytest

from depthlut.config import (
    ConfigValidationError,
    DeviceQuirk,
    LutConfig,
    load_lut_config,
    parse_lut_config,
)
from depthlut.core.logging import setup_logging


def test_defaults():
    cfg = parse_lut_config({})
    assert cfg == LutConfig()
    assert cfg.standard_dimensions == ((640, 480),)
    assert cfg.quirk == DeviceQuirk()
    assert cfg.resolved_worker_count() >= 1


def test_parse_full_document(tmp_path: Path):
    p = tmp_path / "lut.json"
    p.write_text(
        json.dumps(
            {
                "standard_dimensions": [[640, 480], [320, 240]],
                "worker_count": 3,
                "rows_per_batch": 4,
                "stop_timeout_s": 1.5,
                "quirk": {"make": "Acme", "model_contains": "tof", "native_size": [100, 80], "remount_cutoff": "2024-01-02"},
            }
        ),
        encoding="utf-8",
    )
    cfg = load_lut_config(p)
    assert cfg.standard_dimensions == ((640, 480), (320, 240))
    assert cfg.resolved_worker_count() == 3
    assert cfg.rows_per_batch == 4
    assert cfg.stop_timeout_s == 1.5
    assert cfg.quirk == DeviceQuirk("Acme", "tof", 100, 80, date(2024, 1, 2))


def test_quirk_can_be_disabled():
    assert parse_lut_config({"quirk": None}).quirk is None


@pytest.mark.parametrize(
    "doc",
    [
        {"standard_dimensions": []},
        {"standard_dimensions": [[640]]},
        {"standard_dimensions": [[0, 480]]},
        {"worker_count": 0},
        {"rows_per_batch": 0},
        {"stop_timeout_s": 0},
        {"quirk": {"remount_cutoff": "not-a-date"}},
        {"quirk": {"native_size": [640]}},
    ],
)
def test_invalid_documents(doc):
    with pytest.raises(ConfigValidationError):
        parse_lut_config(doc)


def test_quirk_matching_is_case_insensitive():
    q = DeviceQuirk()
    assert q.matches("Orbbec", "Femto Mega")
    assert q.matches("ORBBEC", "femto bolt")
    assert not q.matches("Orbbec", "Astra")
    assert not q.matches("Lucid", "Femto")


def test_rotation_cutoff_boundary():
    q = DeviceQuirk()
    assert q.should_rotate(None)
    assert q.should_rotate(date(2025, 9, 5))
    assert not q.should_rotate(date(2025, 9, 6))
    assert not q.should_rotate(date(2026, 1, 1))


def test_setup_logging_does_not_duplicate_handlers(tmp_path: Path):
    logger = logging.getLogger("depthlut")
    saved = list(logger.handlers)
    try:
        for h in saved:
            logger.removeHandler(h)
        setup_logging(logging.DEBUG, log_file=tmp_path / "logs" / "depthlut.log")
        setup_logging(logging.DEBUG, log_file=tmp_path / "logs" / "depthlut.log")
        assert len(logger.handlers) == 2
        logger.info("hello")
        assert (tmp_path / "logs" / "depthlut.log").exists()
    finally:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
        for h in saved:
            logger.addHandler(h)
