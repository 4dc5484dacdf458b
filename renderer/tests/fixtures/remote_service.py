import io
import json
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlsplit

import httpx
import pikepdf

from renderer.app.bridge.blob_store import InMemoryBlobStore


def pdf_artifact() -> bytes:
    buffer = io.BytesIO()
    with pikepdf.new() as pdf:
        pdf.add_blank_page(page_size=(595, 842))
        pdf.save(buffer)
    return buffer.getvalue()


PNG_ARTIFACT = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeRunScript:
    """
    MockTransport handler imitating the remote script service.

    ``statuses`` is served one entry per status query; the last entry
    repeats. Each entry is either a status payload dict or an int, which
    is answered as a bare HTTP error with that code. When a ``complete``
    status is served the artifact is written to the output key named by
    the submitted signed PUT URL.
    """

    def __init__(
        self,
        blob_store: InMemoryBlobStore,
        statuses: List[Any],
        *,
        artifact: Optional[bytes] = None,
        submit_status: int = 200,
    ) -> None:
        self.blob_store = blob_store
        self.statuses = list(statuses)
        self.artifact = artifact if artifact is not None else pdf_artifact()
        self.submit_status = submit_status
        self.submissions: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.status_queries = 0

    def _output_key(self) -> str:
        href = self.submissions[-1]["outputs"][0]["href"]
        path = urlsplit(href).path
        return unquote(path.lstrip("/"))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "POST":
            if self.submit_status != 200:
                return httpx.Response(self.submit_status, text="rejected")
            self.submissions.append(json.loads(request.content))
            return httpx.Response(200, json={"_id": "job-123"})

        index = min(self.status_queries, len(self.statuses) - 1)
        self.status_queries += 1
        entry = self.statuses[index]
        if isinstance(entry, int):
            return httpx.Response(entry, text="upstream trouble")
        if entry.get("status") == "complete" and self.artifact:
            self.blob_store.objects[self._output_key()] = self.artifact
        return httpx.Response(200, json=entry)


class NoSleep:
    """Records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
