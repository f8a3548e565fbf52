from depthlut import config, jetr
from depthlut.api import CalibrationNotFound, LutService, load_lookup_table, save_lookup_table
from depthlut.config import LutConfig
from depthlut.core.builder import BuildCancelled, BuildError, build_table
from depthlut.core.cache import LutCache
from depthlut.core.cancel import CancelToken
from depthlut.core.table import LookUpTable
from depthlut.jetr import CalibrationVector, InvalidVectorError

__all__ = [
    "config",
    "jetr",
    "BuildCancelled",
    "BuildError",
    "CalibrationNotFound",
    "CalibrationVector",
    "CancelToken",
    "InvalidVectorError",
    "LookUpTable",
    "LutCache",
    "LutConfig",
    "LutService",
    "build_table",
    "load_lookup_table",
    "save_lookup_table",
]
