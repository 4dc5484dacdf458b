"""
Render error taxonomy.

Every failure the engine can report is one of the classes below. Each
class carries a stable ``kind`` string which is what callers see in a
failed RenderResult; the message is diagnostic text only.

Propagation policy:
- Substitution and layout degrade to safe defaults where one exists and
  raise only when the payload itself is unusable.
- Dynamic-code and remote-bridge errors always escalate.
- The engine boundary converts every RenderError into a failed result.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RenderError(RuntimeError):
    """Base class for all rendering failures."""

    kind: str = "RenderError"

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})


class TemplateNotFound(RenderError):
    """Raised when the template store has no template for an id."""

    kind = "TemplateNotFound"


class FieldResolutionError(RenderError):
    """Raised (or recorded) when a field value has a malformed shape."""

    kind = "FieldResolutionError"


class SubstitutionError(RenderError):
    """Raised (or recorded) for malformed placeholder syntax or markup."""

    kind = "SubstitutionError"


class CompileError(RenderError):
    """Raised when a dynamic template fails to transform or bind."""

    kind = "CompileError"

    def __init__(
        self,
        message: str,
        *,
        lineno: Optional[int] = None,
        fragment: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        if lineno is not None:
            merged["lineno"] = lineno
        if fragment is not None:
            merged["fragment"] = fragment
        super().__init__(message, details=merged)
        self.lineno = lineno
        self.fragment = fragment

    def __str__(self) -> str:
        if self.lineno is None:
            return self.message
        text = f"{self.message} (line {self.lineno})"
        if self.fragment:
            text += f": {self.fragment}"
        return text


class SandboxRuntimeError(RenderError):
    """Raised when a compiled template fails during invocation."""

    kind = "SandboxRuntimeError"


class SandboxTimeout(SandboxRuntimeError):
    """Raised when a template exceeds its wall-clock budget."""


class LayoutError(RenderError):
    """Raised for degenerate page trees (no pages, zero-size page)."""

    kind = "LayoutError"


class RemoteSubmitError(RenderError):
    """Raised when a remote job cannot be prepared, submitted or fails."""

    kind = "RemoteSubmitError"


class RemotePollTimeout(RenderError):
    """Raised when a remote job does not reach a terminal state in time."""

    kind = "RemotePollTimeout"


class RemoteArtifactInvalid(RenderError):
    """Raised when a completed remote job yields a missing or bad artifact."""

    kind = "RemoteArtifactInvalid"
