from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

import roster_import.cli.__main__ as cli
from roster_import.cli.__main__ import main as cli_main
from roster_import.models.processing_result import Chunk, ImportOutcome

"""End-to-end CLI runs against a dry-run target or an in-process fake target."""


def _roster_sheets(n: int) -> dict[str, list[list[object]]]:
    return {
        "README": [["Name", "Email"], ["Example", "example@x.com"]],
        "Roster": [["Client Name", "E-mail", "Goal"]]
        + [[f"Client {i:02d}", f"c{i}@x.com", "Strength"] for i in range(n)],
    }


def test_dry_run_workbook_success(write_config: Path, temp_workdir: Path, workbook_bytes, capsys):
    f = temp_workdir / "data" / "roster.xlsx"
    f.write_bytes(workbook_bytes(_roster_sheets(3)))
    code = cli_main([str(f), "--config", str(write_config)])
    out = capsys.readouterr().out
    assert code == 0
    assert (
        "SUMMARY records=3 imported=3 failed=0 chunks=1 strategy=direct skipped_sheets=1 elapsed_sec=" in out
    )
    assert not list((temp_workdir / "logs").glob("errors-*.log"))


def test_partial_failure_exit_code_and_error_log(
    write_config: Path, temp_workdir: Path, workbook_bytes, capsys, monkeypatch
):
    class FailSecondChunk:
        async def __call__(self, chunk: Chunk) -> ImportOutcome:
            if chunk.index == 1:
                raise ConnectionError("endpoint unavailable")
            return ImportOutcome(imported_count=len(chunk), chunk_index=chunk.index)

    @asynccontextmanager
    async def fake_open_submitter(cfg):
        yield FailSecondChunk()

    monkeypatch.setattr(cli, "_open_submitter", fake_open_submitter)
    f = temp_workdir / "data" / "roster.xlsx"
    f.write_bytes(workbook_bytes(_roster_sheets(45)))

    code = cli_main([str(f), "--config", str(write_config)])
    out = capsys.readouterr().out
    assert code == 2
    assert "SUMMARY records=45 imported=25 failed=20 chunks=3 strategy=chunked" in out
    assert "WARN row=21 sheet=Roster type=CHUNK_TRANSPORT_ERROR message=endpoint unavailable" in out

    (log_file,) = (temp_workdir / "logs").glob("errors-*.log")
    entries = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert [e["row"] for e in entries] == list(range(21, 41))
    assert {e["file"] for e in entries} == {"roster.xlsx"}


def test_records_json_input(write_config: Path, temp_workdir: Path, capsys):
    f = temp_workdir / "data" / "clients.json"
    f.write_text(
        json.dumps({"clients": [{"name": "Ann"}, {"full_name": ""}, {"full_name": "Bob", "equipment": "Mat|Bands"}]}),
        encoding="utf-8",
    )
    code = cli_main([str(f), "--config", str(write_config), "--records-json"])
    out = capsys.readouterr().out
    assert code == 0
    assert "SUMMARY records=2 imported=2 failed=0" in out
    assert "WARN record 2 skipped: missing required field: full_name" in out


def test_records_json_must_be_a_list(write_config: Path, temp_workdir: Path):
    f = temp_workdir / "data" / "clients.json"
    f.write_text('{"name": "Ann"}', encoding="utf-8")
    assert cli_main([str(f), "--config", str(write_config), "--records-json"]) == 1


def test_dry_run_flag_overrides_target(temp_workdir: Path, capsys):
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text("target:\n  mode: postgres\ndispatch:\n  pacing: {delay_seconds: 0}\n", encoding="utf-8")
    f = temp_workdir / "data" / "clients.csv"
    f.write_text("Name\nAnn\nBob\n", encoding="utf-8")
    code = cli_main([str(f), "--dry-run"])  # default config path config/import.yml
    assert code == 0
    assert "target=dry-run" in capsys.readouterr().out


def test_inspect_data(temp_workdir: Path, workbook_bytes, capsys):
    f = temp_workdir / "data" / "history.xlsx"
    f.write_bytes(
        workbook_bytes(
            {
                "Template": [["Name"]],
                "Jane Smith": [
                    ["Membership Type", "Premium"],
                    ["Date", "Workout Type"],
                    [datetime(2024, 1, 5), "Strength"],
                ],
            }
        )
    )
    code = cli_main([str(f), "--inspect-data"])
    out = capsys.readouterr().out
    assert code == 0
    assert "SHEET: Template (skipped: template/example)" in out
    assert "SHEET: Jane Smith layout=client_history header_row=1" in out
    assert '"membership type": "Premium"' in out
    assert "2024-01-05" in out
