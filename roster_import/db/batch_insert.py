from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import Json, execute_values

from ..models.processing_result import Chunk, ImportOutcome
from ..services.dispatcher import ChunkServerError

"""PostgreSQL chunk submitter built on psycopg2.extras.execute_values.

A chunk is inserted as one batch inside a SAVEPOINT. When the batch fails
(constraint violation, bad value) the savepoint is rolled back and the chunk
is retried record by record, so only the offending records are reported as
failed and the rest of the chunk is still stored.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "CLIENT_COLUMNS",
    "InsertResult",
    "PostgresChunkSubmitter",
    "batch_insert",
    "record_row",
]

CLIENT_COLUMNS = ("full_name", "email", "phone", "goals", "injuries", "equipment", "notes", "preferences")


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics data for a single batch insert operation."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名 (サニタイズ済み想定)
    columns: 挿入列
    rows: 行シーケンス
    page_size: execute_values の page_size (性能調整)
    metrics_callback: Optional callback to receive BatchMetrics for timing instrumentation.
        If `rows` is empty, this callback is not invoked (the function returns early).
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    base_sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"

    start_time = time.time()
    try:
        execute_values(cursor, base_sql, rows_list, page_size=page_size)
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list))


def record_row(payload: dict[str, Any]) -> tuple[Any, ...]:
    """Order a record payload as CLIENT_COLUMNS values (preferences as jsonb)."""
    preferences = payload.get("preferences")
    return (
        payload["full_name"],
        payload.get("email"),
        payload.get("phone"),
        payload.get("goals"),
        payload.get("injuries"),
        list(payload.get("equipment") or []),
        payload.get("notes"),
        Json(preferences) if preferences is not None else None,
    )


class PostgresChunkSubmitter:
    """ChunkSubmitter writing chunks into a PostgreSQL table.

    Runs on the caller's event loop thread; the cursor is only ever used by
    one chunk at a time because the dispatcher awaits each chunk in turn.
    """

    def __init__(
        self,
        cursor: Any,
        table: str = "workout_clients",
        *,
        commit: bool = True,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> None:
        self.cursor = cursor
        self.table = table
        self.commit = commit
        self.metrics_callback = metrics_callback

    async def __call__(self, chunk: Chunk) -> ImportOutcome:
        return self.insert_chunk(chunk)

    def insert_chunk(self, chunk: Chunk) -> ImportOutcome:
        rows = [record_row(r.to_payload()) for r in chunk.records]
        cur = self.cursor
        cur.execute("SAVEPOINT roster_chunk")
        try:
            batch_insert(cur, self.table, CLIENT_COLUMNS, rows, metrics_callback=self.metrics_callback)
        except BatchInsertError as e:
            cur.execute("ROLLBACK TO SAVEPOINT roster_chunk")
            logger.info(
                f"chunk {chunk.index + 1}: batch insert failed ({e}); retrying {len(rows)} records one by one"
            )
            failures = self._insert_each(rows)
        else:
            failures = {}
        cur.execute("RELEASE SAVEPOINT roster_chunk")
        if self.commit:
            cur.connection.commit()

        if failures:
            raise ChunkServerError(f"{len(failures)} of {len(rows)} records rejected", failures)
        return ImportOutcome(imported_count=len(rows), failed_count=0, chunk_index=chunk.index)

    def _insert_each(self, rows: list[tuple[Any, ...]]) -> dict[int, str]:
        failures: dict[int, str] = {}
        cur = self.cursor
        for i, row in enumerate(rows):
            cur.execute("SAVEPOINT roster_row")
            try:
                batch_insert(cur, self.table, CLIENT_COLUMNS, [row])
            except BatchInsertError as e:
                cur.execute("ROLLBACK TO SAVEPOINT roster_row")
                failures[i] = str(e).strip() or "insert failed"
            else:
                cur.execute("RELEASE SAVEPOINT roster_row")
        return failures
