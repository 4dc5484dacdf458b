from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from renderer.app.events.models import RenderEvent, RenderEventType

logger = logging.getLogger("renderer.events")


class RenderEventEmitter(Protocol):
    """
    Interface for broadcasting render observations.

    Implementations must be:
    - non-blocking (or minimally blocking)
    - fail-safe (emission failures must not fail the render)
    """

    async def emit(self, event: RenderEvent) -> None:
        ...


class NullEventEmitter:
    """
    A no-op emitter.

    Used when nobody is listening: batch renders, thumbnails, tests that
    do not care about events.
    """

    async def emit(self, event: RenderEvent) -> None:
        return


async def emit_safely(
    emitter: Optional[RenderEventEmitter],
    render_id: str,
    event_type: RenderEventType,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Build and emit an event; emitter failures are logged and dropped."""
    if emitter is None:
        return
    try:
        await emitter.emit(
            RenderEvent(render_id=render_id, event_type=event_type, details=details)
        )
    except Exception:
        logger.warning(
            "event_emit_failed",
            extra={"render_id": render_id, "event_type": event_type.value},
            exc_info=True,
        )
