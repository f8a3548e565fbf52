from depthlut.api.service import CalibrationNotFound, LutService
from depthlut.api.table_io import load_lookup_table, save_lookup_table

__all__ = [
    "CalibrationNotFound",
    "LutService",
    "load_lookup_table",
    "save_lookup_table",
]
