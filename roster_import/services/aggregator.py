from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime

from ..models.processing_result import (
    BatchStatsAccumulator,
    DispatchStrategy,
    ImportOutcome,
    ImportReport,
    RecordError,
)

"""Reconciliation: per-chunk outcomes -> one ImportReport.

Chunk-local error indices are shifted by ``chunk_index * chunk_size`` so the
report speaks in 0-based positions of the full validated record sequence.
"""

__all__ = [
    "aggregate",
]


def aggregate(
    outcomes: Sequence[ImportOutcome],
    original_record_count: int,
    chunk_size: int,
    *,
    strategy: DispatchStrategy | None = None,
    skipped_sheets: Sequence[str] = (),
    warnings: Sequence[str] = (),
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    completed: bool = True,
) -> ImportReport:
    """Merge chunk outcomes into a run-level report.

    Args:
        outcomes: one outcome per finished chunk, in chunk order
        original_record_count: records that passed validation
        chunk_size: chunk size used for partitioning (offset = index * size)

    ``strategy`` etc. are carried through to the report unchanged.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    total_imported = 0
    total_failed = 0
    errors: list[RecordError] = []
    stats = BatchStatsAccumulator()
    for outcome in outcomes:
        total_imported += outcome.imported_count
        total_failed += outcome.failed_count
        stats.add_batch_time(outcome.elapsed_seconds)
        offset = outcome.chunk_index * chunk_size
        for err in outcome.errors:
            errors.append(replace(err, record_index=err.record_index + offset))

    total_chunks, avg_chunk, p95_chunk = stats.get_stats()
    elapsed = 0.0
    if start_time is not None and end_time is not None:
        elapsed = (end_time - start_time).total_seconds()

    return ImportReport(
        total_records=original_record_count,
        total_imported=total_imported,
        total_failed=total_failed,
        errors=tuple(errors),
        strategy=strategy,
        total_chunks=total_chunks,
        skipped_sheets=tuple(skipped_sheets),
        warnings=tuple(warnings),
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=elapsed,
        avg_chunk_seconds=avg_chunk,
        p95_chunk_seconds=p95_chunk,
        completed=completed,
    )
