"""
Remote desktop-publishing job state machine.

    PREPARING -> SUBMITTED -> POLLING -> COMPLETE | FAILED | TIMED_OUT

PREPARING
    validate and repack the package, upload it and every present asset
    to the transient blob store, obtain signed GET URLs for the inputs
    and a signed PUT URL for the output key
SUBMITTED
    render the job script and submit it with the signed URLs as I/O
    bindings
POLLING
    one status query per interval, bounded attempts; a transport error
    or 5xx on a single poll is logged and counted, never fatal
COMPLETE
    settle, fetch the artifact (bounded retries), verify its magic bytes
FAILED / TIMED_OUT
    surface the remote error text and the attempt count; never retried

Every transition is recorded on the job and emitted as a RenderEvent.
A caller deadline cancels whatever await is in flight and ends the job
as TIMED_OUT. Transient blobs are deleted on every exit path.

Jobs are never reused: each render allocates a fresh local id, and
with it a fresh key prefix and a fresh remote job.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

import anyio
import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from renderer.app.bridge.blob_store import BlobStore, BlobStoreError
from renderer.app.bridge.client import JobStatus, RemoteScriptClient, STATUS_FAILED
from renderer.app.bridge.package import IDML_MIMETYPE, inspect_package, repack_package
from renderer.app.bridge.script import (
    INPUT_PATH,
    AssetBinding,
    asset_path,
    build_replacements,
    output_path,
    render_job_script,
)
from renderer.app.core.config import EngineSettings
from renderer.app.errors import (
    RemoteArtifactInvalid,
    RemotePollTimeout,
    RemoteSubmitError,
)
from renderer.app.events.emitter import RenderEventEmitter, emit_safely
from renderer.app.events.models import RenderEventType
from renderer.app.resolver.assets import SLOT_NAME_RE, ResolvedAssets
from renderer.app.resolver.fields import ResolvedFields
from renderer.app.schemas.render import MEDIA_TYPE_PDF, MEDIA_TYPE_PNG, OutputKind

logger = logging.getLogger("renderer.bridge")

Sleep = Callable[[float], Awaitable[None]]

PDF_MAGIC = b"%PDF-"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


class JobState(str, Enum):
    PREPARING = "preparing"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({JobState.COMPLETE, JobState.FAILED, JobState.TIMED_OUT})

_STATE_EVENTS = {
    JobState.PREPARING: RenderEventType.REMOTE_JOB_PREPARING,
    JobState.SUBMITTED: RenderEventType.REMOTE_JOB_SUBMITTED,
    JobState.POLLING: RenderEventType.REMOTE_JOB_POLLING,
    JobState.COMPLETE: RenderEventType.REMOTE_JOB_COMPLETE,
    JobState.FAILED: RenderEventType.REMOTE_JOB_FAILED,
    JobState.TIMED_OUT: RenderEventType.REMOTE_JOB_TIMED_OUT,
}

_ALLOWED: Dict[JobState, Tuple[JobState, ...]] = {
    JobState.PREPARING: (JobState.SUBMITTED, JobState.FAILED, JobState.TIMED_OUT),
    JobState.SUBMITTED: (JobState.POLLING, JobState.FAILED, JobState.TIMED_OUT),
    JobState.POLLING: (
        JobState.POLLING,
        JobState.COMPLETE,
        JobState.FAILED,
        JobState.TIMED_OUT,
    ),
    JobState.COMPLETE: (),
    JobState.FAILED: (),
    JobState.TIMED_OUT: (),
}


@dataclass
class RemoteJob:
    """Bridge-internal record of one remote job."""

    local_id: str
    remote_id: Optional[str] = None
    state: JobState = JobState.PREPARING
    poll_attempts: int = 0
    transient_errors: int = 0
    cost: Optional[float] = None
    blob_keys: List[str] = field(default_factory=list)
    history: List[JobState] = field(default_factory=lambda: [JobState.PREPARING])

    def transition(self, state: JobState) -> None:
        if state not in _ALLOWED[self.state]:
            raise RuntimeError(f"Illegal job transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


@dataclass(frozen=True)
class BridgeOutput:
    data: bytes
    media_type: str
    job: RemoteJob
    warnings: Tuple[str, ...] = ()
    phases: Dict[str, float] = field(default_factory=dict)


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 3)


class DesktopPublishingBridge:
    def __init__(
        self,
        *,
        client: RemoteScriptClient,
        blob_store: BlobStore,
        settings: EngineSettings,
        emitter: Optional[RenderEventEmitter] = None,
        sleep: Sleep = anyio.sleep,
    ) -> None:
        self.client = client
        self.blob_store = blob_store
        self.settings = settings
        self.emitter = emitter
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def render(
        self,
        *,
        package: bytes,
        fields: ResolvedFields,
        assets: ResolvedAssets,
        output_kind: OutputKind,
        render_id: str,
        resolution: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
    ) -> BridgeOutput:
        """
        Run one job to a terminal state.

        Raises:
            RemoteSubmitError: invalid package, upload or submit failure,
                or a job the remote service reports as failed.
            RemotePollTimeout: attempt ceiling or caller deadline reached.
            RemoteArtifactInvalid: completed job without a usable artifact.
        """
        job = RemoteJob(local_id=f"idml_{uuid4().hex}")
        await self._observe(job, render_id)

        try:
            with anyio.move_on_after(deadline_seconds):
                return await self._run(
                    job,
                    package=package,
                    fields=fields,
                    assets=assets,
                    output_kind=output_kind,
                    resolution=resolution,
                    render_id=render_id,
                )

            if job.state not in TERMINAL_STATES:
                await self._advance(job, JobState.TIMED_OUT, render_id)
            raise RemotePollTimeout(
                "Remote job did not finish before the caller deadline",
                details={
                    "job_id": job.remote_id,
                    "poll_attempts": job.poll_attempts,
                    "deadline_seconds": deadline_seconds,
                },
            )
        finally:
            with anyio.CancelScope(shield=True):
                await self._cleanup(job, render_id)

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _run(
        self,
        job: RemoteJob,
        *,
        package: bytes,
        fields: ResolvedFields,
        assets: ResolvedAssets,
        output_kind: OutputKind,
        resolution: Optional[int],
        render_id: str,
    ) -> BridgeOutput:
        phases: Dict[str, float] = {}
        warnings: List[str] = []
        media_type = MEDIA_TYPE_PNG if output_kind is OutputKind.RASTER else MEDIA_TYPE_PDF

        # PREPARING ------------------------------------------------------
        started = time.monotonic()
        try:
            info = inspect_package(package)
            replacements = build_replacements(info.tokens, fields, warnings)
            inputs, bindings, absent, output_key, put_url = await self._stage(
                job, repack_package(package), assets, output_kind, media_type
            )
        except BlobStoreError as exc:
            await self._advance(job, JobState.FAILED, render_id)
            raise RemoteSubmitError(f"Failed to stage job inputs: {exc}") from exc
        except RemoteSubmitError:
            await self._advance(job, JobState.FAILED, render_id)
            raise
        phases["prepare"] = _elapsed_ms(started)

        # SUBMITTED ------------------------------------------------------
        started = time.monotonic()
        script = render_job_script(
            replacements=replacements,
            assets=bindings,
            absent_slots=absent,
            output_kind=output_kind,
            resolution=resolution,
        )
        try:
            job.remote_id = await self.client.submit(
                inputs=inputs,
                outputs=[{"href": put_url, "path": output_path(output_kind)}],
                script=script,
                correlation_id=render_id,
            )
        except RemoteSubmitError:
            await self._advance(job, JobState.FAILED, render_id)
            raise
        await self._advance(job, JobState.SUBMITTED, render_id)

        # POLLING --------------------------------------------------------
        status = await self._poll(job, render_id)
        phases["remote"] = _elapsed_ms(started)

        if status is None:
            await self._advance(job, JobState.TIMED_OUT, render_id)
            raise RemotePollTimeout(
                f"Remote job did not finish after {job.poll_attempts} status checks",
                details={"job_id": job.remote_id, "poll_attempts": job.poll_attempts},
            )

        job.cost = status.cost
        if status.status == STATUS_FAILED:
            await self._advance(job, JobState.FAILED, render_id)
            raise RemoteSubmitError(
                f"Remote job failed: {status.failure_text}",
                details={
                    "job_id": job.remote_id,
                    "poll_attempts": job.poll_attempts,
                    "remote_error": status.failure_text,
                },
            )

        # COMPLETE -------------------------------------------------------
        await self._advance(job, JobState.COMPLETE, render_id)
        started = time.monotonic()
        await self.sleep(self.settings.artifact_settle_seconds)
        data = await self._fetch_artifact(job, output_key)
        _verify_artifact(data, output_kind, job)
        phases["fetch"] = _elapsed_ms(started)

        return BridgeOutput(
            data=data,
            media_type=media_type,
            job=job,
            warnings=tuple(warnings),
            phases=phases,
        )

    async def _stage(
        self,
        job: RemoteJob,
        package: bytes,
        assets: ResolvedAssets,
        output_kind: OutputKind,
        media_type: str,
    ):
        ttl = self.settings.signed_url_ttl_seconds
        prefix = f"{self.settings.s3_key_prefix}/{job.local_id}"

        input_key = f"{prefix}/input.idml"
        job.blob_keys.append(input_key)
        await self.blob_store.put(input_key, package, IDML_MIMETYPE)
        inputs = [
            {"href": await self.blob_store.signed_get_url(input_key, ttl), "path": INPUT_PATH}
        ]

        bindings: List[AssetBinding] = []
        absent: List[str] = []
        for slot, asset in assets.assets.items():
            if not SLOT_NAME_RE.fullmatch(slot):
                raise RemoteSubmitError(
                    f"Asset slot name {slot!r} cannot be staged", details={"slot": slot}
                )
            if asset is None:
                absent.append(slot)
                continue
            key = f"{prefix}/assets/{slot}.{asset.extension}"
            job.blob_keys.append(key)
            await self.blob_store.put(key, asset.data, asset.media_type)
            path = asset_path(slot, asset.extension)
            inputs.append(
                {"href": await self.blob_store.signed_get_url(key, ttl), "path": path}
            )
            bindings.append(AssetBinding(slot=slot, path=path))

        output_key = f"{prefix}/{output_path(output_kind).rsplit('/', 1)[-1]}"
        job.blob_keys.append(output_key)
        put_url = await self.blob_store.signed_put_url(output_key, media_type, ttl)

        logger.info(
            "remote_job_staged",
            extra={
                "job_local_id": job.local_id,
                "input_count": len(inputs),
                "absent_slots": absent,
            },
        )
        return inputs, bindings, absent, output_key, put_url

    async def _poll(self, job: RemoteJob, render_id: str) -> Optional[JobStatus]:
        """Return the terminal status, or None at the attempt ceiling."""
        for attempt in range(1, self.settings.poll_max_attempts + 1):
            await self.sleep(self.settings.poll_interval_seconds)
            job.poll_attempts = attempt
            await self._advance(job, JobState.POLLING, render_id, attempt=attempt)

            try:
                status = await self.client.get_status(job.remote_id)
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code < 500:
                    await self._advance(job, JobState.FAILED, render_id)
                    raise RemoteSubmitError(
                        f"Status query rejected (HTTP {exc.response.status_code})",
                        details={
                            "job_id": job.remote_id,
                            "poll_attempts": attempt,
                            "status_code": exc.response.status_code,
                        },
                    ) from exc
                self._transient(job, render_id, attempt, exc)
                continue
            except (httpx.TransportError, ValueError) as exc:
                self._transient(job, render_id, attempt, exc)
                continue

            logger.info(
                "remote_job_status",
                extra={
                    "render_id": render_id,
                    "job_id": job.remote_id,
                    "status": status.status,
                    "attempt": attempt,
                },
            )
            if status.terminal:
                return status
        return None

    def _transient(
        self, job: RemoteJob, render_id: str, attempt: int, exc: Exception
    ) -> None:
        job.transient_errors += 1
        logger.warning(
            "remote_poll_transient_error",
            extra={
                "render_id": render_id,
                "job_id": job.remote_id,
                "attempt": attempt,
                "error": str(exc),
            },
        )

    async def _fetch_artifact(self, job: RemoteJob, key: str) -> bytes:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.artifact_fetch_attempts),
            wait=wait_fixed(self.settings.poll_interval_seconds),
            retry=retry_if_exception_type(BlobStoreError),
            sleep=self.sleep,
            reraise=True,
        )
        data = b""
        try:
            async for attempt in retrying:
                with attempt:
                    data = await self.blob_store.get(key)
        except BlobStoreError as exc:
            raise RemoteArtifactInvalid(
                "Remote job completed but its artifact could not be retrieved",
                details={
                    "job_id": job.remote_id,
                    "poll_attempts": job.poll_attempts,
                    "fetch_attempts": self.settings.artifact_fetch_attempts,
                },
            ) from exc
        return data

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def _advance(
        self,
        job: RemoteJob,
        state: JobState,
        render_id: str,
        **details,
    ) -> None:
        job.transition(state)
        await self._observe(job, render_id, **details)

    async def _observe(self, job: RemoteJob, render_id: str, **details) -> None:
        logger.info(
            "remote_job_state",
            extra={
                "render_id": render_id,
                "job_local_id": job.local_id,
                "job_id": job.remote_id,
                "state": job.state.value,
            },
        )
        await emit_safely(
            self.emitter,
            render_id,
            _STATE_EVENTS[job.state],
            {
                "job_local_id": job.local_id,
                "job_id": job.remote_id,
                "poll_attempts": job.poll_attempts,
                **details,
            },
        )

    async def _cleanup(self, job: RemoteJob, render_id: str) -> None:
        for key in job.blob_keys:
            try:
                await self.blob_store.delete(key)
            except BlobStoreError as exc:
                logger.warning(
                    "transient_blob_cleanup_failed",
                    extra={"render_id": render_id, "key": key, "error": str(exc)},
                )


def _verify_artifact(data: bytes, output_kind: OutputKind, job: RemoteJob) -> None:
    magic = PNG_MAGIC if output_kind is OutputKind.RASTER else PDF_MAGIC
    details = {
        "job_id": job.remote_id,
        "poll_attempts": job.poll_attempts,
        "size": len(data or b""),
    }
    if not data:
        raise RemoteArtifactInvalid("Remote job produced an empty artifact", details=details)
    if not data.startswith(magic):
        raise RemoteArtifactInvalid(
            f"Remote job artifact is not a {output_kind.value} file",
            details={**details, "head": data[:8].hex()},
        )
