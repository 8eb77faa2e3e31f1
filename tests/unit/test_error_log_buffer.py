from __future__ import annotations

import json
import re
from pathlib import Path

from roster_import.logging.error_log import ErrorLogBuffer, ErrorRecord
from roster_import.models.processing_result import RecordError

KEYS = {"timestamp", "file", "sheet", "row", "error_type", "message"}


def test_error_record_creation_and_json_line():
    rec = ErrorRecord.create(
        file="roster.xlsx",
        sheet="Roster",
        row=10,
        error_type="CHUNK_SERVER_ERROR",
        message="duplicate email",
    )
    data = json.loads(rec.to_json_line())
    assert data["file"] == "roster.xlsx"
    assert data["row"] == 10
    assert data["timestamp"].endswith("Z")
    assert set(data) == KEYS


def test_error_log_buffer_flush(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    buf.append(ErrorRecord.create("f.xlsx", "S", 1, "CHUNK_SERVER_ERROR", "dup"))
    buf.append(ErrorRecord.create("f.xlsx", "S", 2, "CHUNK_TIMEOUT", "slow"))
    path = buf.flush()
    assert path is not None and path.exists()
    assert re.fullmatch(r"errors-\d{8}-\d{6}\.log", path.name)
    lines = path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 2
    assert all(set(json.loads(raw)) == KEYS for raw in lines)
    # flush 後バッファクリア
    assert len(buf) == 0


def test_error_log_buffer_multiple_flushes_append(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.append(ErrorRecord.create("f.xlsx", "S", 1, "CHUNK_SERVER_ERROR", "dup"))
    path = buf.flush()
    size1 = path.stat().st_size
    buf.append(ErrorRecord.create("f.xlsx", "S", 2, "CHUNK_SERVER_ERROR", "dup2"))
    path2 = buf.flush()
    assert path == path2
    assert path2.stat().st_size > size1


def test_empty_flush_creates_nothing(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


def test_report_errors_become_one_based_rows(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.extend_from_errors(
        "roster.xlsx",
        [RecordError(0, "dup", sheet="Roster"), RecordError(39, "down", error_type="CHUNK_TRANSPORT_ERROR")],
    )
    buf.append_file_error("broken.xlsx", "PARSE_ERROR", "unreadable workbook")
    rows = [json.loads(line) for line in buf.flush().read_text(encoding="utf-8").splitlines()]
    assert [(r["sheet"], r["row"], r["error_type"]) for r in rows] == [
        ("Roster", 1, "CHUNK_SERVER_ERROR"),
        ("<FILE_LEVEL>", 40, "CHUNK_TRANSPORT_ERROR"),
        ("<FILE_LEVEL>", -1, "PARSE_ERROR"),
    ]
