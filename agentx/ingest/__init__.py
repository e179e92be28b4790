"""
AgentX Engine - Intake

Upload parsing and shape validation for contact spreadsheets.
"""

from .spreadsheet import (
    CONTENT_TYPES,
    REQUIRED_COLUMNS,
    FileKind,
    load_tasks,
    parse_upload,
    resolve_file_kind,
    rows_to_tasks,
    validate_rows,
)

__all__ = [
    "CONTENT_TYPES",
    "REQUIRED_COLUMNS",
    "FileKind",
    "load_tasks",
    "parse_upload",
    "resolve_file_kind",
    "rows_to_tasks",
    "validate_rows",
]
