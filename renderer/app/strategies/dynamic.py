"""
Component-code templates.

compile (cached) -> invoke in an isolated worker process under budget -> compose.

When the primary source fails to compile or run and the request carries
``fallback_source``, the fallback is compiled and invoked instead. The
result then reports the fallback variant plus a warning naming the
primary failure. If the fallback fails too, the primary error is raised.
"""

from __future__ import annotations

import functools
import logging
from typing import Dict, List, Optional

import anyio

from renderer.app.core.config import EngineSettings
from renderer.app.errors import CompileError, SandboxRuntimeError
from renderer.app.events.emitter import emit_safely
from renderer.app.events.models import RenderEventType
from renderer.app.layout.compositor import FlexCompositor
from renderer.app.sandbox.compiler import CompileCache
from renderer.app.sandbox.worker import invoke_isolated
from renderer.app.schemas.document import DocumentSpec
from renderer.app.schemas.render import MEDIA_TYPE_PDF, ResultVariant
from renderer.app.schemas.template import TemplateFormat
from renderer.app.services.pdf_postprocess import normalize_pdf
from renderer.app.strategies.base import RenderContext, StrategyOutput, timed

logger = logging.getLogger("renderer.sandbox")

_TEMPLATE_FAILURES = (CompileError, SandboxRuntimeError)


class DynamicTemplateStrategy:
    format = TemplateFormat.COMPONENT_CODE

    def __init__(
        self,
        *,
        compositor: FlexCompositor,
        cache: CompileCache,
        settings: EngineSettings,
    ) -> None:
        self.compositor = compositor
        self.cache = cache
        self.settings = settings

    async def render(self, context: RenderContext) -> StrategyOutput:
        phases: Dict[str, float] = {}
        warnings: List[str] = []
        variant = ResultVariant.PRIMARY

        try:
            spec = await self._evaluate(context.template.payload.source, context, phases)
        except _TEMPLATE_FAILURES as primary:
            spec = await self._fallback(primary, context, phases)
            variant = ResultVariant.FALLBACK
            warnings.append(
                f"{primary.kind}: primary template failed, fallback used: {primary}"
            )

        with timed(phases, "layout"):
            composed = await anyio.to_thread.run_sync(
                functools.partial(
                    self.compositor.compose,
                    spec,
                    context.fields,
                    context.assets,
                    output_kind=context.request.output_kind,
                    dpi=context.dpi,
                    fonts=context.template.fonts,
                )
            )
        warnings.extend(composed.warnings)

        output = composed.output
        if composed.media_type == MEDIA_TYPE_PDF:
            output = await anyio.to_thread.run_sync(normalize_pdf, output)

        return StrategyOutput(
            output=output,
            media_type=composed.media_type,
            raster_pages=composed.raster_pages,
            warnings=tuple(warnings),
            variant=variant,
            phases=phases,
        )

    async def _fallback(
        self,
        primary: Exception,
        context: RenderContext,
        phases: Dict[str, float],
    ) -> DocumentSpec:
        source: Optional[str] = context.request.fallback_source
        if not source:
            raise primary

        logger.warning(
            "primary_template_failed",
            extra={
                "render_id": context.render_id,
                "template_id": context.template.id,
                "error_kind": getattr(primary, "kind", type(primary).__name__),
            },
        )
        try:
            spec = await self._evaluate(source, context, phases)
        except _TEMPLATE_FAILURES as exc:
            logger.warning(
                "fallback_template_failed",
                extra={"render_id": context.render_id, "error_kind": exc.kind},
            )
            raise primary from exc

        await emit_safely(
            context.emitter,
            context.render_id,
            RenderEventType.FALLBACK_USED,
            {"template_id": context.template.id, "primary_error": str(primary)},
        )
        return spec

    async def _evaluate(
        self,
        source: str,
        context: RenderContext,
        phases: Dict[str, float],
    ) -> DocumentSpec:
        with timed(phases, "compile"):
            compiled = await anyio.to_thread.run_sync(self.cache.get, source)

        with timed(phases, "invoke"):
            return await invoke_isolated(
                compiled.code,
                context.fields.values,
                context.assets.data_uris(),
                timeout_seconds=self.settings.sandbox_timeout_seconds,
                max_nodes=self.settings.sandbox_max_nodes,
                grace_seconds=self.settings.sandbox_grace_seconds,
                memory_limit_mb=self.settings.sandbox_memory_limit_mb,
            )
