"""
Render request and result contracts.

A RenderRequest is the single input the engine accepts regardless of
template format. A RenderResult is created exactly once per request and
is never persisted by the engine.

Result invariants (enforced by validation):
- A successful result carries output bytes and no error.
- A failed result carries an error and no bytes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from renderer.app.schemas.template import TemplateFormat


class OutputKind(str, Enum):
    DOCUMENT = "document"
    RASTER = "raster"


class ResultVariant(str, Enum):
    """Which compiled function produced the bytes."""

    PRIMARY = "primary"
    FALLBACK = "fallback"


MEDIA_TYPE_PDF = "application/pdf"
MEDIA_TYPE_PNG = "image/png"


class RenderRequest(BaseModel):
    """
    Format-agnostic render input.

    ``format`` is optional; when present it must agree with the stored
    template's declared format.
    """

    template_id: str = Field(..., min_length=1)
    format: Optional[TemplateFormat] = None
    field_values: Dict[str, Any] = Field(default_factory=dict)
    asset_refs: Dict[str, Any] = Field(default_factory=dict)
    output_kind: OutputKind = OutputKind.DOCUMENT
    resolution: Optional[int] = Field(default=None, ge=1)
    deadline_seconds: Optional[float] = Field(default=None, gt=0)
    fallback_source: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


# ----------------------------------------------------------------------
# Result
# ----------------------------------------------------------------------


class RenderErrorInfo(BaseModel):
    kind: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")


class RenderMetrics(BaseModel):
    """
    Observational render metrics.

    ``phases`` maps a phase name (resolve, substitute, layout, paint,
    remote, ...) to its elapsed milliseconds.
    """

    duration_ms: float = 0.0
    cost: Optional[float] = None
    poll_attempts: Optional[int] = None
    phases: Dict[str, float] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")


class RenderResult(BaseModel):
    render_id: str
    ok: bool
    output: Optional[bytes] = None
    raster_pages: List[bytes] = Field(default_factory=list)
    media_type: Optional[str] = None
    error: Optional[RenderErrorInfo] = None
    metrics: RenderMetrics = Field(default_factory=RenderMetrics)
    warnings: List[str] = Field(default_factory=list)
    variant: ResultVariant = ResultVariant.PRIMARY

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _outcome_is_consistent(self) -> "RenderResult":
        if self.ok:
            if not self.output:
                raise ValueError("Successful result requires output bytes")
            if self.error is not None:
                raise ValueError("Successful result must not carry an error")
        else:
            if self.error is None:
                raise ValueError("Failed result requires an error")
            if self.output is not None or self.raster_pages:
                raise ValueError("Failed result must not carry bytes")
        return self
