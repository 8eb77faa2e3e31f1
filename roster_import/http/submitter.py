from __future__ import annotations

import logging
from typing import Any

import httpx

from ..models.processing_result import Chunk, ImportOutcome, RecordError
from ..services.dispatcher import ChunkTransportError

"""HTTP chunk submitter (httpx.AsyncClient).

Request body: ``{"clients": [...], "chunkIndex": i, "totalChunks": n}``.
Expected response: ``{"imported": int, "failed": int, "errors": [...]}`` where
each error names the record by chunk-local ``index`` or by ``client`` name.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "DryRunSubmitter",
    "HttpChunkSubmitter",
    "parse_import_response",
]


def _friendly_status_message(status: int, text: str) -> str:
    if status == 413 or "Request Entity Too Large" in text:
        return "payload too large for the import endpoint; lower chunk_size"
    if status == 502 or "Bad Gateway" in text:
        return "server temporarily unavailable (502)"
    if status == 504 or "Gateway Timeout" in text:
        return "request timeout (504)"
    return f"unexpected status {status}"


def _error_index(item: dict[str, Any], chunk: Chunk, used: set[int]) -> int | None:
    idx = item.get("index")
    if isinstance(idx, int) and not isinstance(idx, bool):
        return idx
    name = item.get("client") or item.get("full_name")
    if name is None:
        return None
    for i, record in enumerate(chunk.records):
        if i not in used and record.full_name == str(name):
            return i
    return None


def parse_import_response(body: Any, chunk: Chunk) -> ImportOutcome:
    """Translate an endpoint JSON body into an ImportOutcome for ``chunk``.

    Raises ChunkTransportError when the body does not have the expected shape.
    """
    if not isinstance(body, dict):
        raise ChunkTransportError("malformed response body: expected a JSON object")
    if body.get("error") and "imported" not in body:
        raise ChunkTransportError(str(body["error"]))
    imported = body.get("imported")
    if not isinstance(imported, int) or isinstance(imported, bool) or imported < 0:
        raise ChunkTransportError("malformed response body: missing 'imported' count")

    raw_errors = body.get("errors") or []
    if not isinstance(raw_errors, list):
        raise ChunkTransportError("malformed response body: 'errors' must be a list")

    errors: list[RecordError] = []
    used: set[int] = set()
    unmatched: list[str] = []
    for item in raw_errors:
        if not isinstance(item, dict):
            continue
        message = str(item.get("error") or item.get("message") or "import failed")
        if item.get("details"):
            message = f"{message} ({item['details']})"
        idx = _error_index(item, chunk, used)
        if idx is None or not 0 <= idx < len(chunk) or idx in used:
            unmatched.append(message)
            continue
        used.add(idx)
        errors.append(RecordError(record_index=idx, message=message, error_type="CHUNK_SERVER_ERROR"))

    failed = body.get("failed")
    if not isinstance(failed, int) or isinstance(failed, bool):
        failed = max(len(chunk) - imported, len(errors))
    if unmatched:
        logger.warning(
            f"chunk {chunk.index + 1}: {len(unmatched)} error(s) could not be matched to a record: {unmatched[:3]}"
        )
    return ImportOutcome(
        imported_count=imported,
        failed_count=failed,
        errors=tuple(errors),
        chunk_index=chunk.index,
    )


class HttpChunkSubmitter:
    """ChunkSubmitter POSTing each chunk to an import endpoint."""

    def __init__(self, client: httpx.AsyncClient, url: str, *, api_key: str | None = None) -> None:
        self.client = client
        self.url = url
        self.api_key = api_key

    async def __call__(self, chunk: Chunk) -> ImportOutcome:
        payload = {
            "clients": [r.to_payload() | {"sheetName": r.source_sheet_name} for r in chunk.records],
            "chunkIndex": chunk.index,
            "totalChunks": chunk.total_chunks,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        try:
            response = await self.client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ChunkTransportError(f"request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise ChunkTransportError(f"transport error: {e}") from e

        text = response.text
        try:
            body = response.json()
        except ValueError as e:
            # HTML エラーページ等
            raise ChunkTransportError(
                f"server returned an invalid response: {_friendly_status_message(response.status_code, text)}"
            ) from e

        if response.is_error:
            detail = (body.get("error") or body.get("message")) if isinstance(body, dict) else None
            raise ChunkTransportError(detail or _friendly_status_message(response.status_code, text))
        return parse_import_response(body, chunk)


class DryRunSubmitter:
    """Accepts every record without sending anything anywhere."""

    def __init__(self) -> None:
        self.seen: list[Chunk] = []

    async def __call__(self, chunk: Chunk) -> ImportOutcome:
        self.seen.append(chunk)
        return ImportOutcome(imported_count=len(chunk), failed_count=0, chunk_index=chunk.index)
