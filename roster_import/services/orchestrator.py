from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from ..excel.reader import ParseError, detect_header, extract
from ..logging.error_log import ErrorLogBuffer
from ..models.canonical_record import CanonicalRecord
from ..models.config_models import DEFAULT_MAX_FILE_BYTES, DispatchPolicy
from ..models.import_stage import ImportStage, can_transition
from ..models.processing_result import ImportReport
from ..models.raw_sheet import RawSheet
from .aggregator import aggregate
from .dispatcher import BatchDispatcher, ChunkSubmitter, Pacer, ProgressSink
from .field_mapper import FieldMapper, is_placeholder_sheet
from .validator import RecordValidator

"""Service orchestration for the roster importer.

ImportPipeline runs one import:
    extract -> map -> validate -> dispatch -> aggregate

Only ParseError escapes ``run``; chunk and record failures end up in the
returned ImportReport. A pipeline object is single use.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "ImportPipeline",
    "ProcessingError",
]


class ProcessingError(Exception):
    """The pipeline was driven in an order it does not support."""
    pass


class ImportPipeline:
    """One import run over a file (``run``) or pre-extracted records (``run_records``)."""

    def __init__(
        self,
        submit: ChunkSubmitter,
        *,
        policy: DispatchPolicy | None = None,
        pacer: Pacer | None = None,
        progress_sink: ProgressSink | None = None,
        mapper: FieldMapper | None = None,
        validator: RecordValidator | None = None,
        error_log: ErrorLogBuffer | None = None,
        file_name: str = "<input>",
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or DispatchPolicy()
        self.mapper = mapper or FieldMapper()
        self.validator = validator or RecordValidator()
        self.error_log = error_log
        self.file_name = file_name
        self.max_file_bytes = max_file_bytes
        self.dispatcher = BatchDispatcher(submit, pacer=pacer, progress_sink=progress_sink, sleep=sleep)

        self.stage = ImportStage.IDLE
        self.skipped_sheets: list[str] = []
        self.warnings: list[str] = []
        self.rejected: list[tuple[int, str]] = []
        self.accepted: list[CanonicalRecord] = []
        self.start_time: datetime | None = None
        self.report: ImportReport | None = None

    def _advance(self, nxt: ImportStage) -> None:
        if not can_transition(self.stage, nxt):
            raise ProcessingError(f"invalid stage transition {self.stage.value} -> {nxt.value}")
        logger.debug(f"stage {self.stage.value} -> {nxt.value}")
        self.stage = nxt

    def _begin(self) -> None:
        if self.stage is not ImportStage.IDLE:
            raise ProcessingError("ImportPipeline is single use; create a new one per run")
        self.start_time = datetime.now(UTC)
        self._advance(ImportStage.PARSING)

    async def run(self, data: bytes, hint: str | None = None) -> ImportReport:
        """Import a spreadsheet / delimited file given as raw bytes.

        Raises:
            ParseError: the bytes are not a supported tabular format
        """
        self._begin()
        try:
            sheets = extract(data, hint, max_file_bytes=self.max_file_bytes)
        except ParseError as e:
            self._advance(ImportStage.FAILED)
            logger.error(f"{self.file_name}: {e}")
            if self.error_log is not None:
                self.error_log.append_file_error(self.file_name, "PARSE_ERROR", str(e))
                self.error_log.flush()
            raise
        logger.info(f"{self.file_name}: {len(sheets)} sheet(s) extracted")

        self._advance(ImportStage.MAPPING)
        candidates: list[CanonicalRecord] = []
        for sheet in sheets:
            candidates.extend(self._map_sheet(sheet))
        return await self._validate_and_dispatch(candidates)

    async def run_records(self, items: Sequence[Any]) -> ImportReport:
        """Import records that were extracted elsewhere (CanonicalRecords or dicts)."""
        self._begin()
        self._advance(ImportStage.MAPPING)
        return await self._validate_and_dispatch(list(items))

    def _map_sheet(self, sheet: RawSheet) -> list[CanonicalRecord]:
        if is_placeholder_sheet(sheet.name):
            logger.info(f"sheet '{sheet.name}' skipped (template/example sheet)")
            self.skipped_sheets.append(sheet.name)
            return []
        if sheet.is_empty:
            self._warn(f"sheet '{sheet.name}' is empty")
            return []
        header = detect_header(sheet)
        records = self.mapper.map_sheet(sheet, header)
        if not records:
            self._warn(f"sheet '{sheet.name}' has no client rows")
        else:
            logger.debug(f"sheet '{sheet.name}': {len(records)} record(s)")
        return records

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    async def _validate_and_dispatch(self, candidates: list[Any]) -> ImportReport:
        self._advance(ImportStage.VALIDATING)
        self.accepted, self.rejected = self.validator.filter(candidates)
        if self.rejected:
            logger.info(f"{len(self.rejected)} record(s) skipped by validation")

        self._advance(ImportStage.DISPATCHING)
        await self.dispatcher.dispatch(self.accepted, self.policy)

        self._advance(ImportStage.AGGREGATING)
        report = self._aggregate(completed=True)
        self._advance(ImportStage.DONE)
        self.report = report
        if self.error_log is not None:
            self.error_log.extend_from_errors(self.file_name, report.errors)
            self.error_log.flush()
        return report

    def _aggregate(self, *, completed: bool) -> ImportReport:
        return aggregate(
            self.dispatcher.outcomes,
            len(self.accepted),
            self.policy.chunk_size,
            strategy=self.dispatcher.strategy,
            skipped_sheets=self.skipped_sheets,
            warnings=self.warnings,
            start_time=self.start_time,
            end_time=datetime.now(UTC),
            completed=completed,
        )

    def partial_report(self) -> ImportReport:
        """Report over the chunks finished so far.

        Meant for runs that were cancelled or timed out mid-dispatch; after a
        completed run it returns the final report.
        """
        if self.report is not None:
            return self.report
        if self.stage in (ImportStage.IDLE, ImportStage.FAILED):
            raise ProcessingError(f"no report available in stage {self.stage.value}")
        return self._aggregate(completed=False)
