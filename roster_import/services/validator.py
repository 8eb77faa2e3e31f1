from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..models.canonical_record import CanonicalRecord, is_placeholder_name

"""Per-record acceptance rule applied before a record may join a Chunk.

Validation is a pure function of the record: running it again on an
accepted record always accepts it again.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "MISSING_NAME",
    "NOT_AN_OBJECT",
    "PLACEHOLDER_NAME",
    "RecordValidator",
    "ValidationResult",
    "is_acceptable",
]

MISSING_NAME = "missing required field: full_name"
NOT_AN_OBJECT = "not a valid object"
PLACEHOLDER_NAME = "placeholder value in required field: full_name"


@dataclass(frozen=True)
class ValidationResult:
    """Accepted, or Rejected with a reason."""
    accepted: bool
    reason: str | None = None
    record: CanonicalRecord | None = None

    @classmethod
    def accept(cls, record: CanonicalRecord) -> ValidationResult:
        return cls(accepted=True, record=record)

    @classmethod
    def reject(cls, reason: str) -> ValidationResult:
        return cls(accepted=False, reason=reason)


def is_acceptable(record: Any, index: int) -> ValidationResult:
    """Check one candidate record at position ``index`` of the input."""
    if not isinstance(record, CanonicalRecord):
        return ValidationResult.reject(NOT_AN_OBJECT)
    if not isinstance(record.full_name, str) or not record.full_name.strip():
        return ValidationResult.reject(MISSING_NAME)
    if is_placeholder_name(record.full_name):
        return ValidationResult.reject(PLACEHOLDER_NAME)
    return ValidationResult.accept(record)


class RecordValidator:
    """Filters candidate records; rejected ones never enter the pipeline."""

    def coerce(self, item: Any, index: int) -> ValidationResult:
        """Validate an arbitrary item, turning dicts into CanonicalRecords first."""
        if isinstance(item, Mapping):
            try:
                item = CanonicalRecord.from_mapping(item)
            except (TypeError, AttributeError, ValueError):
                return ValidationResult.reject(NOT_AN_OBJECT)
        return is_acceptable(item, index)

    def filter(self, items: list[Any]) -> tuple[list[CanonicalRecord], list[tuple[int, str]]]:
        """Split items into accepted records and (input index, reason) rejections."""
        accepted: list[CanonicalRecord] = []
        rejected: list[tuple[int, str]] = []
        for index, item in enumerate(items):
            result = self.coerce(item, index)
            if result.accepted and result.record is not None:
                accepted.append(result.record)
            else:
                rejected.append((index, result.reason or NOT_AN_OBJECT))
                logger.warning(f"record {index + 1} skipped: {result.reason}")
        return accepted, rejected
