from __future__ import annotations

import csv
import io
import logging
import re
import zipfile
from datetime import datetime, time
from pathlib import PurePath
from typing import Any

import numpy as np
import pandas as pd

from ..models.config_models import DEFAULT_MAX_FILE_BYTES
from ..models.raw_sheet import CellValue, HeaderMetadata, RawSheet, SourceFormat

"""Tabular extraction: file bytes -> RawSheet grid(s).

Two source formats are supported:
- delimited text (one table; first line is always the header)
- .xlsx workbooks (one RawSheet per tab, read with pandas + openpyxl)

The extractor is a pure transformation; it never touches the file system.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ParseError",
    "detect_format",
    "detect_header",
    "extract",
    "read_delimited",
    "read_workbook",
]

ZIP_MAGIC = b"PK\x03\x04"
OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"  # 旧 .xls (BIFF)

WORKBOOK_EXTENSIONS = {".xlsx"}
DELIMITED_EXTENSIONS = {".csv", ".txt", ".tsv"}
WORKBOOK_MIME_TYPES = {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"}
DELIMITED_MIME_TYPES = {"text/csv", "application/csv", "text/plain", "text/tab-separated-values"}
AMBIGUOUS_MIME_TYPES = {"application/vnd.ms-excel", "application/octet-stream", ""}

MIME_RE = re.compile(r"^(application|text)/[a-z0-9.+\-]+\s*(;.*)?$")

HEADER_SCAN_ROWS = 10
HEADER_MARKER_RE = re.compile(r"date|workout", re.IGNORECASE)


class ParseError(Exception):
    """Raised when the bytes cannot be interpreted as tabular data."""


def _is_mime(hint: str) -> bool:
    return MIME_RE.match(hint.strip().lower()) is not None


def _hint_kind(hint: str | None) -> SourceFormat | None:
    """Translate a file name / extension / MIME hint into a format (None = sniff)."""
    if not hint or not hint.strip():
        return None
    h = hint.strip().lower()
    if _is_mime(h):
        mime = h.split(";")[0].strip()
        if mime in WORKBOOK_MIME_TYPES:
            return SourceFormat.WORKBOOK
        if mime in DELIMITED_MIME_TYPES:
            return SourceFormat.DELIMITED
        if mime in AMBIGUOUS_MIME_TYPES:
            return None
        raise ParseError(f"unsupported content type: {hint}")
    if "." not in h:
        h = f".{h}"  # "xlsx" / "csv" のような拡張子のみの指定
    suffix = h if h.startswith(".") and "/" not in h else PurePath(h).suffix
    if suffix in WORKBOOK_EXTENSIONS:
        return SourceFormat.WORKBOOK
    if suffix in DELIMITED_EXTENSIONS:
        return SourceFormat.DELIMITED
    if suffix == ".xls":
        raise ParseError("legacy .xls workbooks are not supported; save the file as .xlsx or .csv")
    raise ParseError(f"unsupported file type: {hint} (allowed: .xlsx, .csv)")


def detect_format(data: bytes, hint: str | None = None) -> SourceFormat:
    """Decide the source format from the hint and the magic bytes.

    Raises ParseError when the hint contradicts the bytes (e.g. a ``.xlsx``
    name on something that is not a zip container).
    """
    declared = _hint_kind(hint)
    if data.startswith(OLE_MAGIC):
        raise ParseError("legacy .xls workbooks are not supported; save the file as .xlsx or .csv")
    sniffed = SourceFormat.WORKBOOK if data.startswith(ZIP_MAGIC) else SourceFormat.DELIMITED
    if declared is not None and declared is not sniffed:
        raise ParseError(
            f"file content does not match declared type {hint!r} (looks like {sniffed.value})"
        )
    return sniffed


def _to_cell(val: Any) -> CellValue:
    """Normalize one pandas cell into the CellValue domain."""
    if val is None:
        return None
    if isinstance(val, str):
        stripped = val.strip()
        return stripped if stripped else None
    if isinstance(val, pd.Timestamp):
        return None if pd.isna(val) else val.to_pydatetime()
    if isinstance(val, datetime):
        return val
    if isinstance(val, time):
        return val.isoformat()
    if isinstance(val, np.generic):
        val = val.item()
    if isinstance(val, float) and np.isnan(val):
        return None
    if isinstance(val, bool):
        return str(val)
    if isinstance(val, (int, float)):
        return val
    return str(val)


def _frame_to_cells(df: pd.DataFrame) -> tuple[tuple[CellValue, ...], ...]:
    rows: list[tuple[CellValue, ...]] = []
    for raw in df.itertuples(index=False, name=None):
        cells = tuple(_to_cell(v) for v in raw)
        # 全セル空の行は捨てる
        if all(c is None for c in cells):
            continue
        rows.append(cells)
    return tuple(rows)


def read_workbook(data: bytes) -> list[RawSheet]:
    """Parse every tab of an .xlsx workbook into a RawSheet (tab order kept)."""
    try:
        xls = pd.ExcelFile(io.BytesIO(data), engine="openpyxl")
    except (zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        raise ParseError(f"unreadable workbook: {e}") from e

    sheets: list[RawSheet] = []
    for name in xls.sheet_names:
        try:
            df = xls.parse(name, header=None, keep_default_na=False, na_values=[""])
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(f"unreadable sheet {name!r}: {e}") from e
        cells = _frame_to_cells(df)
        if not cells:
            logger.debug(f"sheet '{name}' has no non-empty rows")
        sheets.append(RawSheet(name=str(name), cells=cells, source_format=SourceFormat.WORKBOOK))
    return sheets


def _decode_text(data: bytes) -> str:
    if b"\x00" in data:
        raise ParseError("binary content is not delimited text")
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _detect_delimiter(text: str) -> str:
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    if "\t" in first_line:
        return "\t"
    if ";" in first_line:
        return ";"
    return ","


def _max_row_width(text: str, delimiter: str) -> int:
    # 引用符内の区切り文字は数えない
    try:
        return max((len(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)), default=0)
    except csv.Error as e:
        raise ParseError(f"malformed delimited file: {e}") from e


def read_delimited(data: bytes, name: str = "Sheet1") -> RawSheet:
    """Parse delimited text into a single RawSheet (header is always row 0).

    Rows wider or narrower than the header are kept: short rows are padded
    with None and extra cells stay in unnamed trailing columns.
    """
    text = _decode_text(data)
    if not text.strip():
        return RawSheet(name=name, cells=(), source_format=SourceFormat.DELIMITED)
    delimiter = _detect_delimiter(text)
    width = _max_row_width(text, delimiter)
    try:
        df = pd.read_csv(
            io.StringIO(text),
            header=None,
            names=list(range(width)),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            quotechar='"',
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ParseError(f"malformed delimited file: {e}") from e
    return RawSheet(name=name, cells=_frame_to_cells(df), source_format=SourceFormat.DELIMITED)


def extract(
    data: bytes,
    hint: str | None = None,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
) -> list[RawSheet]:
    """Extract all sheets from raw file bytes.

    Parameters
    ----------
    data: ファイル内容 (bytes)
    hint: file name, extension or MIME type declared by the caller
    max_file_bytes: upper bound on the accepted input size

    Raises ParseError on empty, oversized, mismatched or corrupt input.
    """
    if not data:
        raise ParseError("file is empty")
    if len(data) > max_file_bytes:
        raise ParseError(
            f"file too large ({len(data)} bytes); maximum is {max_file_bytes} bytes"
        )
    fmt = detect_format(data, hint)
    if fmt is SourceFormat.WORKBOOK:
        sheets = read_workbook(data)
        if not sheets:
            raise ParseError("no sheets found in workbook")
        return sheets
    return [read_delimited(data, name=_sheet_name_from_hint(hint))]


def _sheet_name_from_hint(hint: str | None) -> str:
    if not hint or _is_mime(hint):
        return "Sheet1"
    stem = PurePath(hint.strip()).stem
    if not stem or stem.startswith("."):
        return "Sheet1"
    return stem


def detect_header(sheet: RawSheet) -> HeaderMetadata:
    """Locate the header row and collect the label/value rows above it.

    Delimited sheets always use row 0 with no metadata. For workbook tabs the
    header is the first of the first 10 rows holding a cell that mentions
    "date" or "workout"; row 0 when none does.
    """
    if sheet.source_format is SourceFormat.DELIMITED or sheet.is_empty:
        return HeaderMetadata(header_row_index=0, preceding_key_values={})

    header_idx = 0
    for i, row in enumerate(sheet.cells[:HEADER_SCAN_ROWS]):
        if any(c is not None and HEADER_MARKER_RE.search(str(c)) for c in row):
            header_idx = i
            break

    metadata: dict[str, str] = {}
    for row in sheet.cells[:header_idx]:
        filled = [c for c in row if c is not None and str(c).strip()]
        if len(filled) < 2:
            continue
        key = str(filled[0]).strip().rstrip(":").strip().casefold()
        metadata[key] = str(filled[1]).strip()
    return HeaderMetadata(header_row_index=header_idx, preceding_key_values=metadata)
