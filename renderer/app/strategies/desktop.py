"""Desktop-publishing packages: delegated to the remote bridge."""

from __future__ import annotations

from typing import Optional

from renderer.app.bridge.job import DesktopPublishingBridge
from renderer.app.bridge.package import extract_package_placeholders
from renderer.app.errors import RemoteSubmitError
from renderer.app.schemas.render import OutputKind
from renderer.app.schemas.template import TemplateFormat
from renderer.app.strategies.base import (
    RenderContext,
    StrategyOutput,
    unresolved_references,
)


class DesktopPublishingStrategy:
    format = TemplateFormat.DTP_PACKAGE

    def __init__(self, bridge: Optional[DesktopPublishingBridge]) -> None:
        self.bridge = bridge

    async def render(self, context: RenderContext) -> StrategyOutput:
        if self.bridge is None:
            raise RemoteSubmitError(
                "Desktop-publishing templates need a configured remote bridge"
            )

        package = context.template.payload.package
        raster = context.request.output_kind is OutputKind.RASTER
        warnings = unresolved_references(
            extract_package_placeholders(package), context.fields
        )

        result = await self.bridge.render(
            package=package,
            fields=context.fields,
            assets=context.assets,
            output_kind=context.request.output_kind,
            render_id=context.render_id,
            resolution=context.dpi if raster else None,
            deadline_seconds=context.request.deadline_seconds,
        )
        warnings.extend(result.warnings)

        return StrategyOutput(
            output=result.data,
            media_type=result.media_type,
            raster_pages=(result.data,) if raster else (),
            warnings=tuple(warnings),
            cost=result.job.cost,
            poll_attempts=result.job.poll_attempts,
            phases=dict(result.phases),
        )
