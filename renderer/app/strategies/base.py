"""
Strategy contract.

One strategy per template format. Every strategy:
- receives the same RenderContext (resolved fields and assets included)
- returns a StrategyOutput or raises a RenderError
- never calls another strategy
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Tuple

from renderer.app.events.emitter import RenderEventEmitter
from renderer.app.resolver.assets import ResolvedAssets
from renderer.app.resolver.fields import ResolvedFields
from renderer.app.schemas.render import RenderRequest, ResultVariant
from renderer.app.schemas.template import Template, TemplateFormat


@dataclass(frozen=True)
class RenderContext:
    render_id: str
    template: Template
    request: RenderRequest
    fields: ResolvedFields
    assets: ResolvedAssets
    dpi: int
    emitter: Optional[RenderEventEmitter] = None


@dataclass(frozen=True)
class StrategyOutput:
    output: bytes
    media_type: str
    raster_pages: Tuple[bytes, ...] = ()
    warnings: Tuple[str, ...] = ()
    variant: ResultVariant = ResultVariant.PRIMARY
    cost: Optional[float] = None
    poll_attempts: Optional[int] = None
    phases: Dict[str, float] = field(default_factory=dict)


class RenderStrategy(Protocol):
    format: TemplateFormat

    async def render(self, context: RenderContext) -> StrategyOutput:
        ...


@contextmanager
def timed(phases: Dict[str, float], name: str) -> Iterator[None]:
    """Record the wall time of the enclosed block under ``name`` (ms)."""
    started = time.monotonic()
    try:
        yield
    finally:
        phases[name] = round((time.monotonic() - started) * 1000, 3)


def unresolved_references(names: Iterable[str], fields: ResolvedFields) -> List[str]:
    return [
        f"Unresolved field reference '{name}' renders empty"
        for name in names
        if name not in fields
    ]
