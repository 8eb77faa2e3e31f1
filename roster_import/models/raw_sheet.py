from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

"""Raw tabular models produced by the extractor.

A RawSheet is one tab of a workbook (or the single table of a delimited file)
as a row-major grid of cell values. HeaderMetadata describes where the column
header row sits inside that grid and which label/value pairs precede it.
"""

__all__ = [
    "CellValue",
    "SourceFormat",
    "RawSheet",
    "HeaderMetadata",
]

CellValue = Union[str, int, float, datetime, None]


class SourceFormat(Enum):
    """Tabular source format a sheet was extracted from."""
    DELIMITED = "delimited"
    WORKBOOK = "workbook"


@dataclass(frozen=True)
class RawSheet:
    """One logical table of an input file.

    ``cells`` never contains fully blank rows; a tab without any content is
    kept with an empty grid so that later stages can decide what to do with it.
    """
    name: str  # タブ名 (delimited はファイル名 stem)
    cells: tuple[tuple[CellValue, ...], ...]
    source_format: SourceFormat = SourceFormat.WORKBOOK

    @property
    def is_empty(self) -> bool:
        return len(self.cells) == 0

    def row(self, index: int) -> tuple[CellValue, ...]:
        if 0 <= index < len(self.cells):
            return self.cells[index]
        return ()


@dataclass(frozen=True)
class HeaderMetadata:
    """Location of the header row plus the key/value rows above it.

    Keys of ``preceding_key_values`` are case-folded labels such as
    ``"membership type"`` or ``"goals"``.
    """
    header_row_index: int = 0
    preceding_key_values: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.header_row_index < 0:
            raise ValueError(f"header_row_index must be >= 0, got {self.header_row_index}")
