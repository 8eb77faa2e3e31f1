from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .canonical_record import CanonicalRecord

"""Chunk, outcome and report models for the roster importer.

Indices carried by ImportOutcome.errors are chunk-local; ImportReport.errors
always carry the 0-based position in the full validated record sequence.
Conversion to a 1-based display row happens only when rendering.
"""

__all__ = [
    "BatchStatsAccumulator",
    "Chunk",
    "DispatchStrategy",
    "ImportOutcome",
    "ImportReport",
    "RecordError",
]


class DispatchStrategy(Enum):
    """Submission strategy, decided once per dispatch run."""
    DIRECT = "direct"
    CHUNKED = "chunked"


@dataclass(frozen=True)
class Chunk:
    """Bounded, ordered slice of validated records submitted in one round trip."""
    records: tuple[CanonicalRecord, ...]
    index: int
    is_last: bool
    offset: int = 0  # 元シーケンス上の先頭位置
    total_chunks: int = 1

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class RecordError:
    """One failed record. ``record_index`` is chunk-local or global by context."""
    record_index: int
    message: str
    error_type: str = "CHUNK_SERVER_ERROR"
    sheet: str = ""

    @property
    def display_row(self) -> int:
        """1-based row number for people reading a report."""
        return self.record_index + 1


@dataclass(frozen=True)
class ImportOutcome:
    """Result of submitting one chunk.

    ``imported_count + failed_count`` never exceeds the chunk length.
    """
    imported_count: int = 0
    failed_count: int = 0
    errors: tuple[RecordError, ...] = ()
    chunk_index: int = 0
    elapsed_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.imported_count < 0 or self.failed_count < 0:
            raise ValueError("outcome counts must be >= 0")

    @classmethod
    def chunk_failed(cls, chunk: Chunk, message: str, error_type: str = "CHUNK_TRANSPORT_ERROR") -> ImportOutcome:
        """Whole-chunk failure: every record of the chunk is marked failed."""
        errors = tuple(
            RecordError(
                record_index=i,
                message=message,
                error_type=error_type,
                sheet=record.source_sheet_name,
            )
            for i, record in enumerate(chunk.records)
        )
        return cls(
            imported_count=0,
            failed_count=len(chunk.records),
            errors=errors,
            chunk_index=chunk.index,
        )

    @property
    def is_total_failure(self) -> bool:
        return self.imported_count == 0 and self.failed_count > 0


@dataclass(frozen=True)
class ImportReport:
    """Aggregated run result (summary counts plus per-record error detail)."""
    total_records: int
    total_imported: int
    total_failed: int
    errors: tuple[RecordError, ...] = ()
    strategy: DispatchStrategy | None = None
    total_chunks: int = 0
    skipped_sheets: tuple[str, ...] = ()  # テンプレート等で除外したシート
    warnings: tuple[str, ...] = ()
    start_time: datetime | None = None
    end_time: datetime | None = None
    elapsed_seconds: float = 0.0
    # chunk timing statistics
    avg_chunk_seconds: float = 0.0
    p95_chunk_seconds: float = 0.0
    completed: bool = True  # False のとき途中キャンセルされた部分レポート

    @property
    def has_failures(self) -> bool:
        return self.total_failed > 0 or bool(self.errors)


class BatchStatsAccumulator:
    """Helper class to accumulate chunk timing statistics for ImportReport.

    Collects individual chunk timing data and calculates summary statistics.
    """

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        """Add a chunk timing measurement."""
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate chunk statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 95th percentile (19th out of 20 quantiles, 0-indexed)
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
