"""
Rendering engine.

Single entry point for every template format:

    request -> template lookup -> field / asset resolution
            -> strategy (by the template's declared format)
            -> RenderResult

Guarantees:
- exactly one strategy runs per request, chosen from one dispatch table
- every strategy sees the same resolved fields and assets
- every failure becomes a failed RenderResult without bytes; the engine
  never raises to its caller
- no engine-held mutable state besides the compile cache
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

import anyio
import httpx
from pydantic import ValidationError

from renderer.app.bridge.blob_store import BlobStore, S3BlobStore
from renderer.app.bridge.client import RemoteScriptClient
from renderer.app.bridge.job import DesktopPublishingBridge
from renderer.app.core.config import EngineSettings, get_settings
from renderer.app.errors import FieldResolutionError, RenderError, TemplateNotFound
from renderer.app.events.emitter import RenderEventEmitter, emit_safely
from renderer.app.events.models import RenderEventType
from renderer.app.layout.compositor import FlexCompositor
from renderer.app.registry.store import AssetStore, TemplateStore
from renderer.app.resolver.assets import resolve_assets
from renderer.app.resolver.fields import resolve_fields
from renderer.app.sandbox.compiler import CompileCache
from renderer.app.schemas.render import (
    OutputKind,
    RenderErrorInfo,
    RenderMetrics,
    RenderRequest,
    RenderResult,
)
from renderer.app.schemas.template import FieldType, Template, TemplateFormat
from renderer.app.services.markup_raster import CairoSvgRasterizer, MarkupRasterizer
from renderer.app.strategies.base import RenderContext, RenderStrategy, timed
from renderer.app.strategies.desktop import DesktopPublishingStrategy
from renderer.app.strategies.dynamic import DynamicTemplateStrategy
from renderer.app.strategies.flexdoc import FlexDocumentStrategy
from renderer.app.strategies.markup import MarkupStrategy
from renderer.app.utils.hashing import output_digest

logger = logging.getLogger("renderer.engine")

INTERNAL_ERROR_KIND = "InternalError"
INVALID_REQUEST_KIND = "InvalidRequest"


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 3)


def create_bridge(
    settings: EngineSettings,
    http_client: httpx.AsyncClient,
    *,
    blob_store: Optional[BlobStore] = None,
    emitter: Optional[RenderEventEmitter] = None,
) -> DesktopPublishingBridge:
    """Wire the remote bridge; an S3 store is built from settings when none is given."""
    if blob_store is None:
        blob_store = S3BlobStore(bucket=settings.s3_bucket, region=settings.s3_region)
    return DesktopPublishingBridge(
        client=RemoteScriptClient(http_client, settings),
        blob_store=blob_store,
        settings=settings,
        emitter=emitter,
    )


class RenderEngine:
    def __init__(
        self,
        *,
        templates: TemplateStore,
        assets: Optional[AssetStore] = None,
        settings: Optional[EngineSettings] = None,
        rasterizer: Optional[MarkupRasterizer] = None,
        bridge: Optional[DesktopPublishingBridge] = None,
        emitter: Optional[RenderEventEmitter] = None,
    ) -> None:
        self.templates = templates
        self.assets = assets
        self.settings = settings or get_settings()
        self.emitter = emitter
        self.compile_cache = CompileCache(maxsize=self.settings.compile_cache_size)

        compositor = FlexCompositor(
            font_path=self.settings.font_path,
            bold_font_path=self.settings.bold_font_path,
        )
        self.strategies: Dict[TemplateFormat, RenderStrategy] = {
            TemplateFormat.COMPONENT_CODE: DynamicTemplateStrategy(
                compositor=compositor,
                cache=self.compile_cache,
                settings=self.settings,
            ),
            TemplateFormat.VECTOR_MARKUP: MarkupStrategy(
                rasterizer or CairoSvgRasterizer()
            ),
            TemplateFormat.FLEX_DOCUMENT: FlexDocumentStrategy(compositor),
            TemplateFormat.DTP_PACKAGE: DesktopPublishingStrategy(bridge),
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def render(self, request: RenderRequest) -> RenderResult:
        render_id = uuid4().hex
        started = time.monotonic()
        await emit_safely(
            self.emitter,
            render_id,
            RenderEventType.RENDER_STARTED,
            {"template_id": request.template_id},
        )

        try:
            result = await self._render(render_id, request, started)
        except RenderError as exc:
            logger.warning(
                "render_failed",
                extra={
                    "render_id": render_id,
                    "template_id": request.template_id,
                    "error_kind": exc.kind,
                    "error_message": exc.message,
                },
            )
            result = failed_result(
                render_id,
                exc.kind,
                str(exc),
                exc.details,
                duration_ms=_elapsed_ms(started),
            )
        except Exception as exc:
            logger.exception(
                "render_crashed",
                extra={"render_id": render_id, "template_id": request.template_id},
            )
            result = failed_result(
                render_id,
                INTERNAL_ERROR_KIND,
                f"{type(exc).__name__}: {exc}",
                {},
                duration_ms=_elapsed_ms(started),
            )

        await emit_safely(
            self.emitter,
            render_id,
            RenderEventType.RENDER_COMPLETED if result.ok else RenderEventType.RENDER_FAILED,
            {
                "template_id": request.template_id,
                "duration_ms": result.metrics.duration_ms,
                "error_kind": result.error.kind if result.error else None,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _render(
        self,
        render_id: str,
        request: RenderRequest,
        started: float,
    ) -> RenderResult:
        phases: Dict[str, float] = {}

        template = self.templates.get_template(request.template_id)
        if request.format is not None and request.format is not template.format:
            raise TemplateNotFound(
                f"Template '{template.id}' is not a {request.format.value} template",
                details={
                    "template_id": template.id,
                    "requested_format": request.format.value,
                    "declared_format": template.format.value,
                },
            )

        dpi, dpi_warnings = self._raster_dpi(request)

        with timed(phases, "resolve"):
            fields = resolve_fields(
                request.field_values,
                template.fields,
                separator=self.settings.list_separator,
            )
            fetch = self.assets.get_asset if self.assets is not None else None
            assets = await anyio.to_thread.run_sync(
                resolve_assets, request.asset_refs, template.asset_slots, fetch
            )

        context = RenderContext(
            render_id=render_id,
            template=template,
            request=request,
            fields=fields,
            assets=assets,
            dpi=dpi,
            emitter=self.emitter,
        )

        logger.info(
            "render_started",
            extra={
                "render_id": render_id,
                "template_id": template.id,
                "format": template.format.value,
                "output_kind": request.output_kind.value,
            },
        )
        output = await self.strategies[template.format].render(context)
        phases.update(output.phases)

        duration_ms = _elapsed_ms(started)
        logger.info(
            "render_completed",
            extra={
                "render_id": render_id,
                "template_id": template.id,
                "duration_ms": duration_ms,
                "digest": output_digest(output.output),
                "variant": output.variant.value,
            },
        )
        return RenderResult(
            render_id=render_id,
            ok=True,
            output=output.output,
            raster_pages=list(output.raster_pages),
            media_type=output.media_type,
            metrics=RenderMetrics(
                duration_ms=duration_ms,
                cost=output.cost,
                poll_attempts=output.poll_attempts,
                phases=phases,
            ),
            warnings=[
                *dpi_warnings,
                *fields.warnings,
                *assets.warnings,
                *output.warnings,
            ],
            variant=output.variant,
        )

    def _raster_dpi(self, request: RenderRequest) -> Tuple[int, List[str]]:
        if request.output_kind is not OutputKind.RASTER:
            return 96, []
        dpi = request.resolution or self.settings.default_raster_dpi
        if dpi > self.settings.max_raster_dpi:
            return self.settings.max_raster_dpi, [
                f"Resolution {dpi} exceeds the maximum; "
                f"rendered at {self.settings.max_raster_dpi}"
            ]
        return dpi, []


def failed_result(
    render_id: str,
    kind: str,
    message: str,
    details: Mapping[str, Any],
    *,
    duration_ms: float = 0.0,
) -> RenderResult:
    poll_attempts = details.get("poll_attempts")
    return RenderResult(
        render_id=render_id,
        ok=False,
        error=RenderErrorInfo(kind=kind, message=message, details=dict(details)),
        metrics=RenderMetrics(
            duration_ms=duration_ms,
            poll_attempts=poll_attempts if isinstance(poll_attempts, int) else None,
        ),
    )


# ----------------------------------------------------------------------
# Module-level API
# ----------------------------------------------------------------------


async def render(
    engine: RenderEngine,
    template_id: str,
    format: Optional[TemplateFormat],
    field_values: Any,
    asset_refs: Any,
    output_kind: OutputKind = OutputKind.DOCUMENT,
    resolution: Optional[int] = None,
    **options: Any,
) -> RenderResult:
    """
    Build a RenderRequest and render it.

    ``options`` accepts ``deadline_seconds`` and ``fallback_source``.
    A request that does not validate yields a failed result; a
    ``field_values`` argument that is not a mapping is reported as
    FieldResolutionError.
    """
    if field_values is not None and not isinstance(field_values, Mapping):
        return failed_result(
            uuid4().hex,
            FieldResolutionError.kind,
            "Field values must be a mapping of field name to value",
            {"received": type(field_values).__name__},
        )

    try:
        request = RenderRequest(
            template_id=template_id,
            format=format,
            field_values=dict(field_values or {}),
            asset_refs=dict(asset_refs or {}),
            output_kind=output_kind,
            resolution=resolution,
            **options,
        )
    except (ValidationError, TypeError, ValueError) as exc:
        return failed_result(
            uuid4().hex,
            INVALID_REQUEST_KIND,
            f"Invalid render request: {exc}",
            {},
        )
    return await engine.render(request)


def preview_field_values(template: Template) -> Dict[str, Any]:
    """
    Placeholder values that render each field as its own token, used
    for template previews and thumbnails.
    """
    values: Dict[str, Any] = {}
    for definition in template.fields:
        token = f"{{{{{definition.name}}}}}"
        if definition.type is FieldType.ARRAY:
            values[definition.name] = [
                f"{{{{{definition.name}[0]}}}}",
                f"{{{{{definition.name}[1]}}}}",
            ]
        elif definition.type is FieldType.RECORD:
            values[definition.name] = {"value": token}
        elif definition.type is FieldType.BOOLEAN:
            values[definition.name] = True
        else:
            values[definition.name] = token
    return values
