from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from roster_import.http.submitter import DryRunSubmitter, HttpChunkSubmitter, parse_import_response
from roster_import.models.canonical_record import CanonicalRecord
from roster_import.models.processing_result import Chunk
from roster_import.services.dispatcher import ChunkTransportError

URL = "https://coach.example.test/api/clients/import-chunked"


def _chunk(*names: str, index: int = 0, total: int = 1) -> Chunk:
    recs = tuple(CanonicalRecord(full_name=n, source_sheet_name="Roster") for n in names)
    return Chunk(records=recs, index=index, is_last=index == total - 1, offset=0, total_chunks=total)


def _submit(handler, chunk: Chunk, api_key: str | None = None):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpChunkSubmitter(client, URL, api_key=api_key)(chunk)

    return asyncio.run(go())


def test_request_body_and_success():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"imported": 2, "failed": 0, "errors": []})

    outcome = _submit(handler, _chunk("Ann", "Bob", index=1, total=3), api_key="k-123")
    assert (outcome.imported_count, outcome.failed_count, outcome.chunk_index) == (2, 0, 1)
    assert seen["auth"] == "Bearer k-123"
    assert seen["body"]["chunkIndex"] == 1
    assert seen["body"]["totalChunks"] == 3
    assert [c["full_name"] for c in seen["body"]["clients"]] == ["Ann", "Bob"]
    assert seen["body"]["clients"][0]["sheetName"] == "Roster"


def test_errors_matched_by_index_and_client_name():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "imported": 1,
                "failed": 2,
                "errors": [
                    {"client": "Cid", "error": "duplicate email", "details": "clients_email_key"},
                    {"index": 0, "error": "invalid phone"},
                ],
            },
        )

    outcome = _submit(handler, _chunk("Ann", "Bob", "Cid"))
    assert (outcome.imported_count, outcome.failed_count) == (1, 2)
    assert [(e.record_index, e.message) for e in outcome.errors] == [
        (2, "duplicate email (clients_email_key)"),
        (0, "invalid phone"),
    ]


def test_failed_defaults_from_imported():
    outcome = parse_import_response({"imported": 1}, _chunk("Ann", "Bob", "Cid"))
    assert outcome.failed_count == 2


@pytest.mark.parametrize(
    "status,text,expected",
    [
        (502, "<html>Bad Gateway</html>", "502"),
        (504, "<html>Gateway Timeout</html>", "504"),
        (413, "Request Entity Too Large", "too large"),
        (200, "<html>ok?</html>", "invalid response"),
    ],
)
def test_non_json_responses_raise_transport_error(status, text, expected):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=text)

    with pytest.raises(ChunkTransportError, match=expected):
        _submit(handler, _chunk("Ann"))


def test_json_error_status_uses_server_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "Unauthorized"})

    with pytest.raises(ChunkTransportError, match="Unauthorized"):
        _submit(handler, _chunk("Ann"))


@pytest.mark.parametrize(
    "exc",
    [
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("read timed out"),
    ],
)
def test_transport_failures(exc):
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc

    with pytest.raises(ChunkTransportError):
        _submit(handler, _chunk("Ann"))


@pytest.mark.parametrize("body", [[], {"imported": "2"}, {"imported": 1, "errors": "nope"}, {"error": "db down"}])
def test_malformed_bodies(body):
    with pytest.raises(ChunkTransportError):
        parse_import_response(body, _chunk("Ann", "Bob"))


def test_dry_run_accepts_everything():
    submit = DryRunSubmitter()
    outcome = asyncio.run(submit(_chunk("Ann", "Bob", index=2, total=3)))
    assert (outcome.imported_count, outcome.failed_count, outcome.chunk_index) == (2, 0, 2)
    assert len(submit.seen) == 1
