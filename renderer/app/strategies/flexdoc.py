"""Flex-document templates: the page tree goes straight to the compositor."""

from __future__ import annotations

import functools
import json

import anyio

from renderer.app.layout.compositor import FlexCompositor
from renderer.app.schemas.render import MEDIA_TYPE_PDF
from renderer.app.schemas.template import TemplateFormat
from renderer.app.services.pdf_postprocess import normalize_pdf
from renderer.app.strategies.base import (
    RenderContext,
    StrategyOutput,
    timed,
    unresolved_references,
)
from renderer.app.substitution.placeholders import extract_placeholders


class FlexDocumentStrategy:
    format = TemplateFormat.FLEX_DOCUMENT

    def __init__(self, compositor: FlexCompositor) -> None:
        self.compositor = compositor

    async def render(self, context: RenderContext) -> StrategyOutput:
        document = context.template.payload.document
        phases = {}
        warnings = unresolved_references(
            extract_placeholders(json.dumps(document, ensure_ascii=False)),
            context.fields,
        )

        with timed(phases, "layout"):
            composed = await anyio.to_thread.run_sync(
                functools.partial(
                    self.compositor.compose,
                    document,
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
            phases=phases,
        )
