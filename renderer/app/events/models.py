from __future__ import annotations

from typing import Any, Dict, Optional
from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4, UUID

from pydantic import BaseModel, Field, ConfigDict


# ----------------------------------------------------------------------
# Event Types
# ----------------------------------------------------------------------
class RenderEventType(str, Enum):
    """
    Progression events emitted during a render.

    NOTE:
    This enum is finite. New entries must preserve observational
    semantics.
    """

    # ------------------------------------------------------------------
    # Render lifecycle
    # ------------------------------------------------------------------
    RENDER_STARTED = "render_started"
    RENDER_COMPLETED = "render_completed"
    RENDER_FAILED = "render_failed"

    # ------------------------------------------------------------------
    # Dynamic templates
    # ------------------------------------------------------------------
    FALLBACK_USED = "fallback_used"

    # ------------------------------------------------------------------
    # Remote desktop-publishing jobs
    # ------------------------------------------------------------------
    REMOTE_JOB_PREPARING = "remote_job_preparing"
    REMOTE_JOB_SUBMITTED = "remote_job_submitted"
    REMOTE_JOB_POLLING = "remote_job_polling"
    REMOTE_JOB_COMPLETE = "remote_job_complete"
    REMOTE_JOB_FAILED = "remote_job_failed"
    REMOTE_JOB_TIMED_OUT = "remote_job_timed_out"


TERMINAL_EVENT_TYPES = frozenset(
    {
        RenderEventType.RENDER_COMPLETED,
        RenderEventType.RENDER_FAILED,
    }
)


# ----------------------------------------------------------------------
# Event Model
# ----------------------------------------------------------------------
class RenderEvent(BaseModel):
    """
    An immutable observation of a phase transition within a render.

    Events are:
    - strictly observational
    - transport-agnostic
    - not part of the render result
    """

    event_id: UUID = Field(default_factory=uuid4)
    render_id: str = Field(..., description="The render identifier")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: RenderEventType

    # Optional contextual metadata (job id, attempt, state, ...)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
