from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import FILE_LEVEL_ROW, ErrorRecord
from ..models.processing_result import RecordError

"""Error log generation & buffering.

- JSON Lines with a fixed schema (no extra keys)
- one file per run: ``<log_dir>/errors-YYYYMMDD-HHMMSS.log`` (UTC), created lazily
- records are buffered and written in one go on flush()
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    The file path is fixed on first access. Not thread safe; the pipeline
    only touches it from its single control flow.
    """

    def __init__(self, logs_dir: Path | str = LOGS_DIR) -> None:
        self.logs_dir = Path(logs_dir)
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend_from_errors(self, file: str, errors: Iterable[RecordError]) -> None:
        """Buffer report errors; record_index (0-based) becomes the 1-based row."""
        for err in errors:
            self.append(
                ErrorRecord.create(
                    file=file,
                    sheet=err.sheet or "<FILE_LEVEL>",
                    row=err.display_row,
                    error_type=err.error_type,
                    message=err.message,
                )
            )

    def append_file_error(self, file: str, error_type: str, message: str) -> None:
        self.append(ErrorRecord.create(file=file, sheet="<FILE_LEVEL>", row=FILE_LEVEL_ROW,
                                       error_type=error_type, message=message))

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; None when nothing was buffered."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
