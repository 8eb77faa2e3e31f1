from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx

from roster_import.http.submitter import HttpChunkSubmitter
from roster_import.logging.error_log import ErrorLogBuffer
from roster_import.models.config_models import DispatchPolicy
from roster_import.models.processing_result import DispatchStrategy
from roster_import.services.dispatcher import FixedDelayPacer
from roster_import.services.orchestrator import ImportPipeline
from roster_import.services.progress import ProgressTracker

URL = "https://coach.example.test/api/clients/import-chunked"


def _csv(n: int) -> bytes:
    lines = ["Client Name,E-mail,Equipment"]
    lines += [f"Client {i:02d},c{i}@x.com,Mat|Bands" for i in range(n)]
    return ("\n".join(lines) + "\n").encode("utf-8")


async def _no_sleep(_delay: float) -> None:
    return None


def test_csv_through_http_endpoint_with_failures(tmp_path: Path):
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        if body["chunkIndex"] == 1:
            return httpx.Response(500, json={"error": "database unavailable"})
        if body["chunkIndex"] == 2:
            return httpx.Response(
                200,
                json={"imported": 4, "failed": 1, "errors": [{"index": 1, "error": "duplicate email"}]},
            )
        return httpx.Response(200, json={"imported": len(body["clients"]), "failed": 0, "errors": []})

    progress = ProgressTracker(enabled=False)
    error_log = ErrorLogBuffer(tmp_path)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            pipeline = ImportPipeline(
                HttpChunkSubmitter(client, URL),
                policy=DispatchPolicy(chunk_size=20),
                pacer=FixedDelayPacer(0.5),
                progress_sink=progress,
                error_log=error_log,
                file_name="clients.csv",
                sleep=_no_sleep,
            )
            return await pipeline.run(_csv(45), "clients.csv")

    report = asyncio.run(go())

    assert [b["totalChunks"] for b in bodies] == [3, 3, 3]
    assert bodies[0]["clients"][0]["equipment"] == ["Mat", "Bands"]
    assert report.strategy is DispatchStrategy.CHUNKED
    assert (report.total_records, report.total_imported, report.total_failed) == (45, 24, 21)
    assert progress.history == [33, 67, 100]

    by_index = {e.record_index: e for e in report.errors}
    assert sorted(by_index) == list(range(20, 40)) + [41]
    assert by_index[20].error_type == "CHUNK_TRANSPORT_ERROR"
    assert by_index[20].message == "database unavailable"
    assert by_index[41].error_type == "CHUNK_SERVER_ERROR"
    assert by_index[41].message == "duplicate email"

    (log_file,) = tmp_path.glob("errors-*.log")
    rows = [json.loads(line)["row"] for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert rows == list(range(21, 41)) + [42]
