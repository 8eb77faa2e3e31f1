# Shared pytest fixtures
from __future__ import annotations

import io
import tempfile
from collections.abc import Iterator
from pathlib import Path

import pandas as pd
import pytest

from roster_import.logging.init import reset_logging
from roster_import.models.canonical_record import CanonicalRecord
from roster_import.models.processing_result import Chunk, ImportOutcome


@pytest.fixture()
def temp_workdir(monkeypatch) -> Iterator[Path]:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """dispatch:
  chunk_size: 20
  size_threshold_bytes: 4194304
  direct_record_limit: 20
  pacing:
    mode: fixed
    delay_seconds: 0
target:
  mode: dry-run
  table: workout_clients
log_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def make_workbook_bytes(sheets: dict[str, list[list[object]]]) -> bytes:
    """Build an .xlsx in memory; rows are written as-is (no header row added)."""
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for sheet_name, rows in sheets.items():
            df = pd.DataFrame(rows)
            df.to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return buf.getvalue()


@pytest.fixture()
def workbook_bytes():
    return make_workbook_bytes


def make_records(n: int, sheet: str = "Roster") -> list[CanonicalRecord]:
    return [
        CanonicalRecord(full_name=f"Client {i:03d}", email=f"client{i}@example.com", source_sheet_name=sheet)
        for i in range(n)
    ]


@pytest.fixture()
def records():
    return make_records


async def no_sleep(_delay: float) -> None:
    return None


class RecordingSubmitter:
    """Fake collaborator: succeeds unless the chunk index is listed in ``fail_chunks``."""

    def __init__(self, fail_chunks: set[int] | None = None) -> None:
        self.fail_chunks = fail_chunks or set()
        self.calls: list[Chunk] = []

    async def __call__(self, chunk: Chunk) -> ImportOutcome:
        self.calls.append(chunk)
        if chunk.index in self.fail_chunks:
            raise ConnectionError(f"chunk {chunk.index} unreachable")
        return ImportOutcome(imported_count=len(chunk), failed_count=0, chunk_index=chunk.index)


@pytest.fixture()
def submitter_factory():
    return RecordingSubmitter


@pytest.fixture(name="no_sleep")
def no_sleep_fixture():
    return no_sleep
