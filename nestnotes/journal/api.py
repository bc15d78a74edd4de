"""HTTP gateway to the journal backend and the object-storage service."""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx
from loguru import logger

from .config import ApiConfig
from .errors import ApiError
from .models import EntryDraft, JournalEntry, UploadFile


ProgressCallback = Callable[[int, int], Awaitable[None]]

UPLOAD_DESTINATION_PATH = "/api/photos/upload"
FINALIZE_PATH = "/api/photos"
ENHANCED_SEARCH_PATH = "/api/search/enhanced"
BULK_ENTRIES_PATH = "/api/journal/entries/bulk"
ENTRIES_PATH = "/api/journal/entries"
TRANSCRIBE_PATH = "/api/ai/transcribe"


@dataclass
class UploadDestination:
    """A presigned upload URL and the permanent path the object will live at."""
    upload_url: str
    object_path: str


class JournalAPI:
    """
    Thin async client for the journal backend.

    Every call either returns parsed JSON or raises ApiError; callers decide
    whether a failure is per-file, per-search or fatal.
    """

    def __init__(self, config: ApiConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            headers=config.headers,
            timeout=config.timeout_seconds,
        )

    async def __aenter__(self) -> "JournalAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def request_upload_destination(self) -> UploadDestination:
        data = await self._request_json("POST", UPLOAD_DESTINATION_PATH)
        upload_url = data.get("uploadURL") if isinstance(data, dict) else None
        if not upload_url:
            raise ApiError("Upload destination response missing uploadURL", url=UPLOAD_DESTINATION_PATH)
        return UploadDestination(
            upload_url=upload_url,
            object_path=data.get("objectPath") or upload_url,
        )

    async def put_object(
        self,
        upload_url: str,
        file: UploadFile,
        chunk_size: int = 64 * 1024,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Stream a file's bytes to a presigned URL.

        on_progress receives (bytes_sent, total_bytes) after each chunk has
        been handed to the transport.
        """
        async def body() -> AsyncIterator[bytes]:
            sent = 0
            async for chunk in file.iter_chunks(chunk_size):
                sent += len(chunk)
                yield chunk
                if on_progress is not None:
                    await on_progress(sent, file.size)

        headers = {
            "Content-Type": file.mime_type,
            "Content-Length": str(file.size),
        }
        try:
            response = await self._client.put(
                upload_url,
                content=body(),
                headers=headers,
                timeout=self.config.upload_timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise ApiError(f"Upload failed: {e}", url=upload_url) from e

        if not response.is_success:
            raise ApiError(
                f"Upload failed with status {response.status_code}",
                status_code=response.status_code,
                url=upload_url,
            )
        logger.debug(f"Transferred {file.size} bytes for {file.name}")

    async def finalize_media(
        self,
        object_path: str,
        mime_type: str,
        original_name: Optional[str],
    ) -> Dict[str, Any]:
        payload = {
            "photoURL": object_path,
            "mimeType": mime_type,
            "originalName": original_name,
        }
        data = await self._request_json("PUT", FINALIZE_PATH, json=payload)
        return data if isinstance(data, dict) else {}

    async def search(
        self,
        query: str,
        mode: str,
        limit: int,
        filters: Optional[Dict[str, Any]] = None,
        previous_messages: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": query, "mode": mode, "limit": limit}
        if filters is not None:
            payload["filters"] = filters
        if previous_messages:
            payload["previousMessages"] = previous_messages
        data = await self._request_json("POST", ENHANCED_SEARCH_PATH, json=payload)
        if not isinstance(data, dict):
            raise ApiError("Search response was not an object", url=ENHANCED_SEARCH_PATH)
        return data

    async def fetch_entries(self, entry_ids: List[str]) -> List[Dict[str, Any]]:
        if not entry_ids:
            return []
        data = await self._request_json("POST", BULK_ENTRIES_PATH, json={"entryIds": entry_ids})
        if not isinstance(data, list):
            raise ApiError("Bulk entry response was not a list", url=BULK_ENTRIES_PATH)
        return [record for record in data if isinstance(record, dict)]

    async def transcribe(self, audio: bytes, filename: str = "recording.wav", mime_type: str = "audio/wav") -> str:
        files = {"audio": (filename, audio, mime_type)}
        data = await self._request_json("POST", TRANSCRIBE_PATH, files=files)
        if not isinstance(data, dict):
            raise ApiError("Transcription response was not an object", url=TRANSCRIBE_PATH)
        return data.get("text") or ""

    async def create_entry(self, draft: EntryDraft) -> JournalEntry:
        data = await self._request_json("POST", ENTRIES_PATH, json=draft.to_payload())
        if not isinstance(data, dict) or data.get("id") is None:
            raise ApiError("Created entry response had no id", url=ENTRIES_PATH)
        return JournalEntry.from_api(data)

    async def _request_json(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}", url=path) from e

        if not response.is_success:
            raise ApiError(
                self._error_message(response),
                status_code=response.status_code,
                url=path,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {path}", status_code=response.status_code, url=path) from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return f"Request failed with status {response.status_code}"
