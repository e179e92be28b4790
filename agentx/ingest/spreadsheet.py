"""
AgentX Engine - Spreadsheet Intake

Parses an uploaded contact sheet into row records and validates its shape.
This is the only external-input boundary: everything here is synchronous and
performs no persistence, so a rejected file never leaves partial writes.

Accepted content types:
    text/csv                                                           (delimited text)
    application/vnd.ms-excel                                           (delimited text)
    application/vnd.openxmlformats-officedocument.spreadsheetml.sheet  (first sheet)

Browsers label ``.csv`` uploads as ``application/vnd.ms-excel`` on some
platforms, so that type is read as delimited text.

Usage:
    from agentx.ingest import parse_upload, validate_rows, rows_to_tasks

    rows = parse_upload(content, "text/csv")
    validate_rows(rows)
    tasks = rows_to_tasks(rows)
"""

from __future__ import annotations

import io
import logging
import zipfile
from enum import Enum
from typing import Sequence

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException
from pandas import errors as pd_errors

from ..core.errors import (
    EmptyInputError,
    ErrorDetail,
    SchemaError,
    UnsupportedFileTypeError,
)
from ..core.models import TaskCreate

logger = logging.getLogger(__name__)

# Row record: column name -> cell value (always a string)
Row = dict[str, str]

REQUIRED_COLUMNS: tuple[str, ...] = ("FirstName", "Phone", "Notes")


class FileKind(str, Enum):
    """How an upload's bytes are interpreted."""

    DELIMITED = "delimited"
    WORKBOOK = "workbook"


CONTENT_TYPES: dict[str, FileKind] = {
    "text/csv": FileKind.DELIMITED,
    "application/vnd.ms-excel": FileKind.DELIMITED,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FileKind.WORKBOOK,
}


def resolve_file_kind(content_type: str | None) -> FileKind:
    """
    Map a declared MIME type onto a parser.

    Parameters such as ``; charset=utf-8`` are ignored.

    Raises:
        UnsupportedFileTypeError: type is not CSV, XLS or XLSX
    """
    base = (content_type or "").split(";", 1)[0].strip().lower()
    kind = CONTENT_TYPES.get(base)
    if kind is None:
        logger.info(f"Rejected upload with content type {content_type!r}")
        raise UnsupportedFileTypeError()
    return kind


def _read_frame(content: bytes, kind: FileKind) -> pd.DataFrame:
    buffer = io.BytesIO(content)
    try:
        if kind is FileKind.WORKBOOK:
            df = pd.read_excel(
                buffer, sheet_name=0, dtype=str, keep_default_na=False, engine="openpyxl"
            )
        else:
            df = pd.read_csv(buffer, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except pd_errors.EmptyDataError:
        # No header and no rows at all
        return pd.DataFrame()
    except (pd_errors.ParserError, UnicodeDecodeError, ValueError, KeyError) as e:
        raise SchemaError(f"Could not parse file: {e}") from e
    except (zipfile.BadZipFile, InvalidFileException) as e:
        logger.warning(f"Workbook parse failed: {type(e).__name__}: {e}")
        raise SchemaError(f"Could not parse file: {type(e).__name__}") from e

    return df.fillna("")


def parse_upload(content: bytes, content_type: str | None) -> list[Row]:
    """
    Parse raw upload bytes into ordered row records.

    Every cell is returned as a string; empty cells become "". Blank lines
    in delimited text are skipped. Column names are kept exactly as written.

    Raises:
        UnsupportedFileTypeError: content type outside the accepted set
        SchemaError: bytes cannot be parsed as the declared type
    """
    kind = resolve_file_kind(content_type)
    df = _read_frame(content, kind)

    rows: list[Row] = [
        {str(column): str(value) for column, value in record.items()}
        for record in df.to_dict(orient="records")
    ]

    logger.debug(f"Parsed {len(rows)} rows ({kind.value}) with columns {list(df.columns)}")
    return rows


def validate_rows(
    rows: Sequence[Row],
    required: Sequence[str] = REQUIRED_COLUMNS,
) -> None:
    """
    Validate the shape of parsed rows.

    Every row must carry every required column (exact, case-sensitive).
    Cell values are not inspected.

    Raises:
        EmptyInputError: zero rows
        SchemaError: a required column is missing from any row
    """
    if not rows:
        raise EmptyInputError()

    details: list[ErrorDetail] = []
    for index, row in enumerate(rows):
        missing = [column for column in required if column not in row]
        if missing:
            details.append(
                ErrorDetail(
                    field=f"row[{index}]",
                    message=f"Missing columns: {', '.join(missing)}",
                    code="missing_column",
                )
            )

    if details:
        raise SchemaError(
            f"Invalid format. Required columns: {', '.join(required)}",
            details=details[:20],
        )


def rows_to_tasks(rows: Sequence[Row]) -> list[TaskCreate]:
    """Project validated rows onto task inputs, ignoring extra columns."""
    return [
        TaskCreate(
            first_name=row["FirstName"],
            phone=row["Phone"],
            notes=row["Notes"],
        )
        for row in rows
    ]


def load_tasks(content: bytes, content_type: str | None) -> list[TaskCreate]:
    """Parse, validate and project an upload in one call."""
    rows = parse_upload(content, content_type)
    validate_rows(rows)
    return rows_to_tasks(rows)
