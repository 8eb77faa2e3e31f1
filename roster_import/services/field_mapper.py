from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from ..excel.reader import HEADER_MARKER_RE
from ..models.canonical_record import (
    PLACEHOLDER_NAMES,
    CanonicalRecord,
    is_placeholder_name,
    split_equipment,
)
from ..models.raw_sheet import CellValue, HeaderMetadata, RawSheet, SourceFormat

"""Header-to-canonical field mapping.

Header variants are resolved through one ordered alias table consumed by a
single generic resolver, so supporting a new spelling of a column is a data
change in FIELD_ALIASES only.

Resolution runs in passes over all fields, each pass only looking at columns
not already claimed by an earlier pass:
1. exact case-insensitive match against the alias list
2. normalized equality (non-alphanumerics stripped)
3. normalized mutual substring containment, where a column only goes to the
   field whose matching alias is the most specific (longest)
Within a pass the first alias in priority order wins, and for one alias the
left-most matching column wins.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "FIELD_ALIASES",
    "PLACEHOLDER_NAMES",
    "PLACEHOLDER_SHEET_PATTERNS",
    "FieldMapper",
    "SheetLayout",
    "is_placeholder_sheet",
    "normalize_header",
    "resolve_columns",
]

FIELD_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("full_name", ("Name", "Full Name", "Client Name", "Client", "Customer", "Member", "Athlete", "Person")),
    ("first_name", ("First Name", "Given Name", "Forename")),
    ("last_name", ("Last Name", "Surname", "Family Name")),
    ("email", ("Email", "Email Address", "E-mail", "Mail")),
    ("phone", ("Phone", "Phone Number", "Mobile", "Cell", "Tel", "Telephone")),
    ("goals", ("Goals", "Goal", "Fitness Goals", "Transformation Goal", "Objective")),
    ("injuries", ("Injuries", "Injury", "Medical History", "Medical", "Health", "Condition")),
    ("equipment", ("Equipment", "Available Equipment", "Gear")),
    ("notes", ("Notes", "Note", "Comments", "Additional")),
    ("membership_type", ("Membership Type", "Membership", "Plan Type")),
)

# シート名にこれらを含むものはクライアントではない
PLACEHOLDER_SHEET_PATTERNS = ("template", "example", "instructions", "readme")

_NON_ALNUM_RE = re.compile(r"[^0-9a-z]")
_DIGITS_ONLY_RE = re.compile(r"^\d+$")


class SheetLayout(Enum):
    """How a sheet's rows map onto clients."""
    ROSTER = "roster"  # 1 行 = 1 クライアント
    CLIENT_HISTORY = "client_history"  # 1 シート = 1 クライアント (本文は運動履歴)


def normalize_header(value: Any) -> str:
    """Lower-case and strip every non-alphanumeric character."""
    if value is None:
        return ""
    return _NON_ALNUM_RE.sub("", str(value).lower())


def is_placeholder_sheet(sheet_name: str) -> bool:
    lowered = sheet_name.lower()
    return any(p in lowered for p in PLACEHOLDER_SHEET_PATTERNS)


def _specificity(column_norm: str, aliases: Sequence[str]) -> int:
    best = 0
    for alias in aliases:
        a = normalize_header(alias)
        if a and (a in column_norm or column_norm in a):
            best = max(best, len(a))
    return best


def resolve_columns(
    headers: Sequence[Any],
    aliases: Sequence[tuple[str, Sequence[str]]] = FIELD_ALIASES,
    allow_containment: bool = True,
) -> dict[str, int]:
    """Resolve canonical field -> column index for one header row.

    Fields that match nothing are absent from the result. With
    ``allow_containment=False`` only passes 1 and 2 run.
    """
    exact = [str(h).strip().casefold() if h is not None else "" for h in headers]
    normalized = [normalize_header(h) for h in headers]
    resolved: dict[str, int] = {}
    claimed: set[int] = set()

    def _claim(field_name: str, predicate) -> None:
        if field_name in resolved:
            return
        for alias in dict(aliases)[field_name]:
            for idx in range(len(headers)):
                if idx in claimed or not normalized[idx]:
                    continue
                if predicate(idx, alias):
                    resolved[field_name] = idx
                    claimed.add(idx)
                    return

    # pass 1: exact
    for field_name, _ in aliases:
        _claim(field_name, lambda idx, alias: exact[idx] == alias.casefold())
    # pass 2: normalized equality
    for field_name, _ in aliases:
        _claim(field_name, lambda idx, alias: normalized[idx] == normalize_header(alias))
    if not allow_containment:
        return resolved

    # pass 3: mutual containment, most specific field only
    def _contains(field_name: str):
        def predicate(idx: int, alias: str) -> bool:
            a = normalize_header(alias)
            col = normalized[idx]
            if not a or not (a in col or col in a):
                return False
            mine = _specificity(col, dict(aliases)[field_name])
            return all(
                _specificity(col, other) <= mine
                for other_name, other in aliases
                if other_name != field_name and other_name not in resolved
            )
        return predicate

    for field_name, _ in aliases:
        _claim(field_name, _contains(field_name))
    return resolved


def _has_name(columns: dict[str, int]) -> bool:
    return "full_name" in columns or ("first_name" in columns and "last_name" in columns)


def _cell_text(value: CellValue) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        # Excel が電話番号等を float で返すケース
        value = int(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _get(row: Sequence[CellValue], idx: int | None) -> CellValue:
    if idx is None or idx >= len(row):
        return None
    return row[idx]


@dataclass(frozen=True)
class _SheetPlan:
    layout: SheetLayout
    headers: tuple[CellValue, ...]
    columns: dict[str, int]
    metadata_fields: dict[str, str]  # field -> metadata value


class FieldMapper:
    """Maps RawSheets onto CanonicalRecords.

    ``map`` returns the first record of a sheet (or None); ``map_sheet``
    returns every record a sheet yields and is what the pipeline uses.
    """

    def __init__(self, aliases: Sequence[tuple[str, Sequence[str]]] = FIELD_ALIASES) -> None:
        self.aliases = tuple((name, tuple(a)) for name, a in aliases)
        self._name_aliases = dict(self.aliases).get("full_name", ())

    def plan(self, sheet: RawSheet, header: HeaderMetadata) -> _SheetPlan:
        headers = sheet.row(header.header_row_index)
        columns = resolve_columns(headers, self.aliases)
        meta_keys = list(header.preceding_key_values.keys())
        meta_columns = resolve_columns(meta_keys, self.aliases)
        metadata_fields = {
            field_name: header.preceding_key_values[meta_keys[idx]]
            for field_name, idx in meta_columns.items()
        }
        layout = self._layout(sheet, headers, columns)
        return _SheetPlan(layout=layout, headers=headers, columns=columns, metadata_fields=metadata_fields)

    def _layout(
        self,
        sheet: RawSheet,
        headers: Sequence[CellValue],
        columns: dict[str, int],
    ) -> SheetLayout:
        if sheet.source_format is SourceFormat.DELIMITED:
            return SheetLayout.ROSTER
        if _has_name(resolve_columns(headers, self.aliases, allow_containment=False)):
            return SheetLayout.ROSTER
        # "Exercise Name" のような列だけで名簿と判定しない
        if any(h is not None and HEADER_MARKER_RE.search(str(h)) for h in headers):
            return SheetLayout.CLIENT_HISTORY
        if _has_name(columns):
            return SheetLayout.ROSTER
        return SheetLayout.CLIENT_HISTORY

    def map(self, sheet: RawSheet, header: HeaderMetadata) -> CanonicalRecord | None:
        records = self.map_sheet(sheet, header)
        return records[0] if records else None

    def map_sheet(self, sheet: RawSheet, header: HeaderMetadata) -> list[CanonicalRecord]:
        if is_placeholder_sheet(sheet.name):
            logger.debug(f"skipping placeholder sheet '{sheet.name}'")
            return []
        if sheet.is_empty:
            return []
        plan = self.plan(sheet, header)
        body = sheet.cells[header.header_row_index + 1:]
        if plan.layout is SheetLayout.CLIENT_HISTORY:
            record = self._history_record(sheet, plan, body)
            return [record] if record is not None else []

        records: list[CanonicalRecord] = []
        for row in body:
            record = self.map_row(row, plan, sheet.name)
            if record is not None:
                records.append(record)
        return records

    def resolve_name(self, row: Sequence[CellValue], columns: dict[str, int]) -> str | None:
        name = _cell_text(_get(row, columns.get("full_name")))
        if name:
            return name
        parts = [
            _cell_text(_get(row, columns.get(part)))
            for part in ("first_name", "last_name")
        ]
        joined = " ".join(p for p in parts if p)
        if joined:
            return joined
        if not self._name_aliases:
            return None
        # 最終手段: '@' を含まない最初の空でないセル
        for value in row:
            text = _cell_text(value)
            if text and "@" not in text and not _DIGITS_ONLY_RE.match(text):
                return text
        return None

    def map_row(self, row: Sequence[CellValue], plan: _SheetPlan, sheet_name: str) -> CanonicalRecord | None:
        name = self.resolve_name(row, plan.columns)
        if not name or is_placeholder_name(name):
            return None

        def value(field_name: str) -> str | None:
            text = _cell_text(_get(row, plan.columns.get(field_name)))
            return text if text is not None else plan.metadata_fields.get(field_name)

        return CanonicalRecord(
            full_name=name,
            email=value("email"),
            phone=value("phone"),
            goals=value("goals"),
            injuries=value("injuries"),
            equipment=split_equipment(value("equipment")),
            notes=value("notes"),
            source_sheet_name=sheet_name,
            membership_type=value("membership_type"),
        )

    def _history_record(
        self,
        sheet: RawSheet,
        plan: _SheetPlan,
        body: Sequence[Sequence[CellValue]],
    ) -> CanonicalRecord | None:
        name = sheet.name.strip()
        if not name or is_placeholder_name(name):
            return None
        history = workout_history(plan.headers, body)
        meta = plan.metadata_fields
        note = f"Imported from sheet: {sheet.name}. {len(history)} workout records."
        if meta.get("notes"):
            note = f"{meta['notes']} ({note})"
        return CanonicalRecord(
            full_name=name,
            email=meta.get("email"),
            phone=meta.get("phone"),
            goals=meta.get("goals"),
            injuries=meta.get("injuries"),
            equipment=split_equipment(meta.get("equipment")),
            notes=note,
            source_sheet_name=sheet.name,
            membership_type=meta.get("membership_type"),
            workout_history=tuple(history),
        )


def workout_history(
    headers: Sequence[CellValue],
    rows: Sequence[Sequence[CellValue]],
) -> list[dict[str, Any]]:
    """Turn the body of a client-history sheet into workout entries.

    ``date`` / ``completed`` / ``workoutType`` are recognised by header text,
    any other column is kept under its lower-cased header.
    """
    history: list[dict[str, Any]] = []
    for row in rows:
        entry: dict[str, Any] = {}
        for idx, header in enumerate(headers):
            if header is None:
                continue
            value = _get(row, idx)
            if value is None:
                continue
            key = str(header).strip().lower()
            if "date" in key:
                entry["date"] = value
            elif "workout" in key and "completed" in key:
                entry["completed"] = value
            elif "type" in key:
                entry["workoutType"] = value
            else:
                entry[key] = value
        if entry:
            history.append(entry)
    return history
