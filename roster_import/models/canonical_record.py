from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

"""CanonicalRecord: the normalized client shape shared by every pipeline stage.

All optional attributes are always present (``None`` or an empty tuple), so
downstream code never has to probe for missing keys.
"""

__all__ = [
    "CanonicalRecord",
    "PLACEHOLDER_NAMES",
    "is_placeholder_name",
    "split_equipment",
]

EQUIPMENT_SPLIT_RE = re.compile(r"[,;|]")
# 見出しがそのまま値として入ってしまった行
PLACEHOLDER_NAMES = frozenset({"name", "full name"})


def is_placeholder_name(name: str) -> bool:
    return name.strip().casefold() in PLACEHOLDER_NAMES


def split_equipment(value: Any) -> tuple[str, ...]:
    """Split delimited equipment text on ``,``, ``;`` or ``|``.

    Pieces are trimmed and empty pieces dropped. Lists/tuples are flattened
    through the same rule so pre-extracted payloads behave identically.
    """
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        pieces: list[str] = []
        for item in value:
            pieces.extend(split_equipment(item))
        return tuple(pieces)
    return tuple(p.strip() for p in EQUIPMENT_SPLIT_RE.split(str(value)) if p.strip())


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class CanonicalRecord:
    """Normalized client record created by the field mapper."""
    full_name: str
    email: str | None = None
    phone: str | None = None
    goals: str | None = None
    injuries: str | None = None
    equipment: tuple[str, ...] = ()
    notes: str | None = None
    source_sheet_name: str = ""  # エラー報告用の出所
    membership_type: str | None = None
    workout_history: tuple[dict[str, Any], ...] = ()

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict sent across the network / database boundary."""
        payload: dict[str, Any] = {
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "goals": self.goals,
            "injuries": self.injuries,
            "equipment": list(self.equipment),
            "notes": self.notes,
        }
        if self.membership_type is not None or self.workout_history:
            payload["preferences"] = {
                "membershipType": self.membership_type,
                "workoutHistory": _json_safe(list(self.workout_history)),
            }
        return payload

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> CanonicalRecord:
        """Build a record from an already extracted dict.

        Accepts ``full_name`` or ``name`` for the client name and ``sheetName``
        / ``source_sheet_name`` for provenance. The name is not validated here;
        that is the validator's job.
        """
        name = data.get("full_name") or data.get("name") or ""
        preferences = data.get("preferences") or {}
        history = preferences.get("workoutHistory") if isinstance(preferences, Mapping) else None
        return cls(
            full_name=str(name).strip(),
            email=_optional_text(data.get("email")),
            phone=_optional_text(data.get("phone")),
            goals=_optional_text(data.get("goals")),
            injuries=_optional_text(data.get("injuries")),
            equipment=split_equipment(data.get("equipment")),
            notes=_optional_text(data.get("notes")),
            source_sheet_name=str(data.get("source_sheet_name") or data.get("sheetName") or ""),
            membership_type=_optional_text(
                preferences.get("membershipType") if isinstance(preferences, Mapping) else None
            ),
            workout_history=tuple(history) if isinstance(history, list) else (),
        )
