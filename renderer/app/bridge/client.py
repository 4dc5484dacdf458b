"""
Remote script execution API client.

Two calls, both over a caller-owned ``httpx.AsyncClient`` with HTTP
Basic auth:

- submit:     POST {api_url}            -> {"_id": ...}
- get_status: GET  {api_url}/{job_id}   -> {"status": ..., "log": ..., ...}

Submission failures raise RemoteSubmitError. Status queries raise the
underlying httpx errors unchanged; the job state machine decides which
of them are transient.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from renderer.app.core.config import EngineSettings
from renderer.app.errors import RemoteSubmitError

logger = logging.getLogger("renderer.bridge")

STATUS_QUEUED = "queued"
STATUS_RUNNING = "running"
STATUS_COMPLETE = "complete"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETE, STATUS_FAILED})


@dataclass(frozen=True)
class JobStatus:
    status: str
    log: Optional[str] = None
    error: Optional[str] = None
    cost: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def failure_text(self) -> str:
        return self.log or self.error or "Unknown error"


def _as_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def _as_cost(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_status(data: Dict[str, Any]) -> JobStatus:
    return JobStatus(
        status=str(data.get("status", "")).strip().lower(),
        log=_as_text(data.get("log")),
        error=_as_text(data.get("error")),
        cost=_as_cost(data.get("cost")),
        raw=dict(data),
    )


class RemoteScriptClient:
    """
    Async client for the remote desktop-publishing script service.

    HARD GUARANTEES:
    - one POST per submit; submissions are never retried here
    - credentials come from settings only
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: EngineSettings,
    ) -> None:
        self.client = http_client
        self.settings = settings
        self.api_url = str(settings.runscript_api_url).rstrip("/")

    # ------------------------------------------------------------------
    # Auth helpers
    # ------------------------------------------------------------------

    def _auth(self) -> httpx.BasicAuth:
        key = self.settings.runscript_api_key
        secret = self.settings.runscript_api_secret
        if key is None or secret is None:
            raise RemoteSubmitError(
                "Remote script service credentials are not configured"
            )
        return httpx.BasicAuth(key.get_secret_value(), secret.get_secret_value())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(
        self,
        *,
        inputs: List[Dict[str, str]],
        outputs: List[Dict[str, str]],
        script: str,
        correlation_id: str,
    ) -> str:
        """Submit a job and return the remote job id."""
        payload = {
            "inputs": inputs,
            "outputs": outputs,
            "script": script,
            "ids": self.settings.runscript_ids_version,
        }

        try:
            response = await self.client.post(
                self.api_url,
                json=payload,
                auth=self._auth(),
                headers={"X-Correlation-ID": correlation_id},
                timeout=self.settings.http_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "remote_submit_rejected",
                extra={
                    "status_code": exc.response.status_code,
                    "response_body": exc.response.text[:2000],
                    "render_id": correlation_id,
                },
            )
            raise RemoteSubmitError(
                f"Remote service rejected the job (HTTP {exc.response.status_code})",
                details={
                    "status_code": exc.response.status_code,
                    "response": exc.response.text[:2000],
                },
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteSubmitError(
                f"Remote service unreachable: {exc}",
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteSubmitError("Remote service returned invalid JSON") from exc

        job_id = data.get("_id") if isinstance(data, dict) else None
        if not job_id:
            raise RemoteSubmitError(
                "Remote service response is missing the job id",
                details={"response": response.text[:2000]},
            )
        return str(job_id)

    async def get_status(self, job_id: str) -> JobStatus:
        response = await self.client.get(
            f"{self.api_url}/{job_id}",
            auth=self._auth(),
            timeout=self.settings.http_timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        return parse_status(data if isinstance(data, dict) else {})
