"""
Template and asset store collaborators.

The engine reads templates and asset bytes through these protocols and
never writes to either. Persistence, CRUD and versioning live outside
the engine; the in-memory stores below back tests and embedded use.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Optional, Protocol

from renderer.app.errors import TemplateNotFound
from renderer.app.schemas.template import Template


class TemplateStore(Protocol):
    def get_template(self, template_id: str) -> Template:
        """Return the template or raise TemplateNotFound."""
        ...


class AssetStore(Protocol):
    def get_asset(self, ref: str) -> bytes:
        """Return raw asset bytes or raise KeyError."""
        ...


class InMemoryTemplateStore:
    def __init__(self, templates: Optional[Iterable[Template]] = None) -> None:
        self._templates: Dict[str, Template] = {}
        self._lock = threading.Lock()
        for template in templates or ():
            self.put(template)

    def put(self, template: Template) -> None:
        with self._lock:
            self._templates[template.id] = template

    def get_template(self, template_id: str) -> Template:
        with self._lock:
            template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFound(
                f"Unknown template '{template_id}'",
                details={"template_id": template_id},
            )
        return template


class InMemoryAssetStore:
    def __init__(self, assets: Optional[Dict[str, bytes]] = None) -> None:
        self._assets: Dict[str, bytes] = dict(assets or {})

    def put(self, ref: str, data: bytes) -> None:
        self._assets[ref] = bytes(data)

    def get_asset(self, ref: str) -> bytes:
        try:
            return self._assets[ref]
        except KeyError:
            raise KeyError(f"asset '{ref}' not found") from None
