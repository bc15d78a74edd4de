"""Shared fixtures: an in-memory journal backend behind httpx.MockTransport."""

import itertools
import json
from typing import Callable, Dict, List, Tuple, Union

import httpx
import pytest

from nestnotes.journal.api import JournalAPI
from nestnotes.journal.config import ApiConfig, SearchConfig, UploadConfig


BASE_URL = "http://journal.test"
STORAGE_URL = "https://storage.test"

Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeBackend:
    """
    Routes requests by method and path to canned responders, recording each one.

    A route path ending in "/" matches every path under it.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Responder] = {}

    def route(self, method: str, path: str, responder: Responder) -> None:
        self.routes[(method, path)] = responder

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self._find(request.method, request.url.path)
        if responder is None:
            return httpx.Response(404, json={"error": "Not found"})
        if isinstance(responder, httpx.Response):
            return responder
        response = responder(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    def _find(self, method: str, path: str):
        if (method, path) in self.routes:
            return self.routes[(method, path)]
        for (m, p), responder in self.routes.items():
            if m == method and p.endswith("/") and path.startswith(p):
                return responder
        return None

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and (r.url.path == path or (path.endswith("/") and r.url.path.startswith(path)))
        ]

    def json_bodies(self, method: str, path: str) -> List[dict]:
        return [json.loads(r.content) for r in self.calls(method, path)]

    def serve_uploads(self) -> None:
        """Install working destination, storage and finalize routes."""
        counter = itertools.count(1)

        def destination(request):
            n = next(counter)
            return httpx.Response(200, json={
                "uploadURL": f"{STORAGE_URL}/uploads/{n}?signature=abc",
                "objectPath": f"/objects/uploads/{n}",
            })

        def finalize(request):
            body = json.loads(request.content)
            return httpx.Response(200, json={"objectPath": body["photoURL"]})

        self.route("POST", "/api/photos/upload", destination)
        self.route("PUT", "/uploads/", httpx.Response(200))
        self.route("PUT", "/api/photos", finalize)

    def serve_entries(self, records: List[dict]) -> None:
        """Bulk fetch returns the known records among those requested, in reverse order."""
        by_id = {r["id"]: r for r in records}

        def bulk(request):
            ids = json.loads(request.content)["entryIds"]
            found = [by_id[i] for i in ids if i in by_id]
            return httpx.Response(200, json=list(reversed(found)))

        self.route("POST", "/api/journal/entries/bulk", bulk)


def entry(entry_id: str, **fields) -> dict:
    record = {
        "id": entry_id,
        "content": f"content of {entry_id}",
        "title": f"Entry {entry_id}",
        "privacy": "private",
        "createdAt": "2024-03-01T10:00:00Z",
    }
    record.update(fields)
    return record


def hit(entry_id: str, similarity: float = 0.9, snippet: str = "") -> dict:
    return {"entryId": entry_id, "similarity": similarity, "snippet": snippet or f"...{entry_id}...", "matchReason": "semantic"}


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def api(backend):
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(backend.handle))
    return JournalAPI(ApiConfig(base_url=BASE_URL), client=client)


@pytest.fixture
def upload_config():
    return UploadConfig(max_files=10, max_concurrent=3, chunk_size=1024)


@pytest.fixture
def search_config():
    # Short windows keep debounce tests fast
    return SearchConfig(debounce_ms=50, filter_debounce_ms=80)
