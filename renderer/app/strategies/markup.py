"""Vector-markup templates: substitution, then an external rasterizer."""

from __future__ import annotations

import functools
import logging

import anyio

from renderer.app.schemas.render import MEDIA_TYPE_PDF, MEDIA_TYPE_PNG, OutputKind
from renderer.app.schemas.template import TemplateFormat
from renderer.app.services.markup_raster import MarkupRasterizer
from renderer.app.services.pdf_postprocess import normalize_pdf
from renderer.app.strategies.base import (
    RenderContext,
    StrategyOutput,
    timed,
    unresolved_references,
)
from renderer.app.substitution.markup import substitute_markup
from renderer.app.substitution.placeholders import extract_placeholders

logger = logging.getLogger("renderer.strategies")


class MarkupStrategy:
    format = TemplateFormat.VECTOR_MARKUP

    def __init__(self, rasterizer: MarkupRasterizer) -> None:
        self.rasterizer = rasterizer

    async def render(self, context: RenderContext) -> StrategyOutput:
        markup = context.template.payload.markup
        phases = {}
        warnings = unresolved_references(extract_placeholders(markup), context.fields)

        with timed(phases, "substitute"):
            substituted = await anyio.to_thread.run_sync(
                functools.partial(
                    substitute_markup, markup, context.fields, context.assets
                )
            )
        warnings.extend(substituted.warnings)
        svg = substituted.svg.encode("utf-8")

        with timed(phases, "paint"):
            if context.request.output_kind is OutputKind.RASTER:
                png = await anyio.to_thread.run_sync(
                    self.rasterizer.to_png, svg, context.dpi
                )
                return StrategyOutput(
                    output=png,
                    media_type=MEDIA_TYPE_PNG,
                    raster_pages=(png,),
                    warnings=tuple(warnings),
                    phases=phases,
                )

            pdf = await anyio.to_thread.run_sync(self.rasterizer.to_pdf, svg)
            pdf = await anyio.to_thread.run_sync(normalize_pdf, pdf)

        return StrategyOutput(
            output=pdf,
            media_type=MEDIA_TYPE_PDF,
            warnings=tuple(warnings),
            phases=phases,
        )
