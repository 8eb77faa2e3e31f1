from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from typing import Protocol

from ..models.canonical_record import CanonicalRecord
from ..models.config_models import DispatchPolicy, PacingConfig
from ..models.processing_result import (
    BatchStatsAccumulator,
    Chunk,
    DispatchStrategy,
    ImportOutcome,
    RecordError,
)

"""Chunked, paced submission of validated records.

The strategy (direct vs chunked) is decided once per dispatch run from the
serialized payload size and record count. Chunks are submitted strictly in
order, one at a time, with a pacing pause between them (none after the last).
A failing chunk is recorded as failed and the run moves on to the next one.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "BackoffPacer",
    "BatchDispatcher",
    "ChunkServerError",
    "ChunkSubmitter",
    "ChunkTransportError",
    "FixedDelayPacer",
    "Pacer",
    "ProgressSink",
    "choose_strategy",
    "estimate_payload_size",
    "make_chunks",
    "pacer_from_config",
]


class ChunkTransportError(Exception):
    """The chunk never got a usable answer (network error, bad status, bad body)."""


class ChunkServerError(Exception):
    """The collaborator answered, but rejected some records of the chunk.

    ``failures`` maps chunk-local record index -> message. Records not listed
    are counted as imported.
    """

    def __init__(self, message: str, failures: dict[int, str]) -> None:
        super().__init__(message)
        self.failures = dict(failures)


class ChunkSubmitter(Protocol):
    def __call__(self, chunk: Chunk) -> Awaitable[ImportOutcome]: ...


ProgressSink = Callable[[int], None]


class Pacer(Protocol):
    def delay_after(self, outcome: ImportOutcome) -> float: ...


class FixedDelayPacer:
    """Same pause after every chunk."""

    def __init__(self, delay_seconds: float = 0.1) -> None:
        self.delay_seconds = delay_seconds

    def delay_after(self, outcome: ImportOutcome) -> float:
        return self.delay_seconds


class BackoffPacer:
    """Exponential pause after failed chunks, back to ``base`` after a success."""

    def __init__(self, base: float = 0.1, factor: float = 2.0, maximum: float = 5.0) -> None:
        self.base = base
        self.factor = factor
        self.maximum = maximum
        self._current = base

    def delay_after(self, outcome: ImportOutcome) -> float:
        if outcome.is_total_failure:
            delay = self._current
            self._current = min(self._current * self.factor, self.maximum)
            return delay
        self._current = self.base
        return self.base


def pacer_from_config(pacing: PacingConfig) -> Pacer:
    if pacing.mode == "backoff":
        return BackoffPacer(base=pacing.base, factor=pacing.factor, maximum=pacing.maximum)
    return FixedDelayPacer(pacing.delay_seconds)


def estimate_payload_size(records: Sequence[CanonicalRecord]) -> int:
    """Byte size of the canonical JSON serialization of ``records``."""
    body = json.dumps(
        [r.to_payload() for r in records],
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return len(body.encode("utf-8"))


def choose_strategy(records: Sequence[CanonicalRecord], policy: DispatchPolicy) -> DispatchStrategy:
    """Direct iff size < threshold (strict) and count <= direct_record_limit."""
    if len(records) > policy.direct_record_limit:
        return DispatchStrategy.CHUNKED
    if estimate_payload_size(records) < policy.size_threshold_bytes:
        return DispatchStrategy.DIRECT
    return DispatchStrategy.CHUNKED


def make_chunks(
    records: Sequence[CanonicalRecord],
    strategy: DispatchStrategy,
    policy: DispatchPolicy,
) -> list[Chunk]:
    """Partition records in order. Direct yields a single chunk of everything."""
    if not records:
        return []
    size = len(records) if strategy is DispatchStrategy.DIRECT else policy.chunk_size
    starts = list(range(0, len(records), size))
    total = len(starts)
    return [
        Chunk(
            records=tuple(records[start:start + size]),
            index=i,
            is_last=(i == total - 1),
            offset=start,
            total_chunks=total,
        )
        for i, start in enumerate(starts)
    ]


def _check_outcome(outcome: object, chunk: Chunk) -> ImportOutcome:
    """Reject collaborator answers that break the outcome invariants."""
    if not isinstance(outcome, ImportOutcome):
        raise ChunkTransportError(f"malformed response: expected ImportOutcome, got {type(outcome).__name__}")
    if outcome.imported_count + outcome.failed_count > len(chunk):
        raise ChunkTransportError(
            f"malformed response: {outcome.imported_count} imported + {outcome.failed_count} failed "
            f"exceeds chunk size {len(chunk)}"
        )
    for err in outcome.errors:
        if not 0 <= err.record_index < len(chunk):
            raise ChunkTransportError(f"malformed response: error index {err.record_index} outside chunk")
    errors = tuple(
        err if err.sheet else replace(err, sheet=chunk.records[err.record_index].source_sheet_name)
        for err in outcome.errors
    )
    return replace(outcome, chunk_index=chunk.index, errors=errors)


def _server_error_outcome(chunk: Chunk, exc: ChunkServerError) -> ImportOutcome:
    failures = {i: msg for i, msg in exc.failures.items() if 0 <= i < len(chunk)}
    if not failures:
        return ImportOutcome.chunk_failed(chunk, str(exc), error_type="CHUNK_SERVER_ERROR")
    errors = tuple(
        RecordError(
            record_index=i,
            message=msg,
            error_type="CHUNK_SERVER_ERROR",
            sheet=chunk.records[i].source_sheet_name,
        )
        for i, msg in sorted(failures.items())
    )
    return ImportOutcome(
        imported_count=len(chunk) - len(failures),
        failed_count=len(failures),
        errors=errors,
        chunk_index=chunk.index,
    )


class BatchDispatcher:
    """Submit, await, pace, repeat.

    ``outcomes`` grows as chunks finish, so a caller that cancels the run can
    still aggregate whatever completed.
    """

    def __init__(
        self,
        submit: ChunkSubmitter,
        *,
        pacer: Pacer | None = None,
        progress_sink: ProgressSink | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.submit = submit
        self.pacer = pacer
        self.progress_sink = progress_sink
        self.sleep = sleep
        self.strategy: DispatchStrategy | None = None
        self.chunks: list[Chunk] = []
        self.outcomes: list[ImportOutcome] = []
        self.stats = BatchStatsAccumulator()

    async def dispatch(
        self,
        records: Sequence[CanonicalRecord],
        policy: DispatchPolicy,
    ) -> list[ImportOutcome]:
        """Submit every record; one ImportOutcome per chunk, in chunk order."""
        pacer = self.pacer or FixedDelayPacer(policy.pacing_delay_seconds)
        self.outcomes = []
        self.stats = BatchStatsAccumulator()
        if not records:
            self.strategy = None
            self.chunks = []
            logger.info("dispatch: no records to submit")
            return []
        self.strategy = choose_strategy(records, policy)
        self.chunks = make_chunks(records, self.strategy, policy)
        total = len(self.chunks)
        logger.info(
            f"dispatch strategy={self.strategy.value} records={len(records)} chunks={total}"
        )

        for chunk in self.chunks:
            outcome = await self._submit_one(chunk, policy)
            self.outcomes.append(outcome)
            self.stats.add_batch_time(outcome.elapsed_seconds)
            self._notify(len(self.outcomes), total)
            if not chunk.is_last:
                delay = pacer.delay_after(outcome)
                if delay > 0:
                    await self.sleep(delay)
        return list(self.outcomes)

    async def _submit_one(self, chunk: Chunk, policy: DispatchPolicy) -> ImportOutcome:
        label = f"chunk {chunk.index + 1}/{chunk.total_chunks}"
        start = time.perf_counter()
        try:
            if policy.chunk_timeout_seconds is not None:
                raw = await asyncio.wait_for(self.submit(chunk), timeout=policy.chunk_timeout_seconds)
            else:
                raw = await self.submit(chunk)
            outcome = _check_outcome(raw, chunk)
        except asyncio.TimeoutError:
            logger.warning(f"{label}: timed out after {policy.chunk_timeout_seconds}s")
            outcome = ImportOutcome.chunk_failed(
                chunk,
                f"chunk timed out after {policy.chunk_timeout_seconds}s",
                error_type="CHUNK_TIMEOUT",
            )
        except ChunkServerError as e:
            logger.warning(f"{label}: {len(e.failures)} record(s) rejected: {e}")
            outcome = _server_error_outcome(chunk, e)
        except Exception as e:
            # 1 チャンクの失敗で後続チャンクを止めない
            logger.error(f"{label}: failed: {e}")
            outcome = ImportOutcome.chunk_failed(chunk, str(e) or type(e).__name__)
        elapsed = time.perf_counter() - start
        logger.debug(
            f"{label}: imported={outcome.imported_count} failed={outcome.failed_count} "
            f"elapsed={elapsed:.3f}s"
        )
        return replace(outcome, elapsed_seconds=elapsed)

    def _notify(self, completed: int, total: int) -> None:
        if self.progress_sink is None or total == 0:
            return
        percent = int(completed * 100 / total + 0.5)
        try:
            self.progress_sink(percent)
        except Exception as e:
            logger.warning(f"progress sink raised: {e}")
