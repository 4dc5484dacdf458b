"""
Markup-to-output collaborator.

Turns a fully materialized SVG document into a PDF or a PNG. The engine
only ever hands over markup whose placeholders are already resolved and
whose images are embedded as ``data:`` URIs.
"""

from __future__ import annotations

import logging
from typing import Dict, Protocol

import cairosvg
from lxml import etree

logger = logging.getLogger("renderer.markup")

CSS_DPI = 96

_PHYSICAL_UNITS = ("mm", "cm", "in", "pt", "pc")


class MarkupRasterizer(Protocol):
    def to_pdf(self, svg: bytes) -> bytes:
        ...

    def to_png(self, svg: bytes, dpi: int) -> bytes:
        ...


class CairoSvgRasterizer:
    """
    CairoSVG-backed rasterizer.

    Blocking; callers run it in a worker thread. ``unsafe`` stays off so
    that markup cannot pull local files or resolve XML entities.
    """

    def to_pdf(self, svg: bytes) -> bytes:
        return cairosvg.svg2pdf(bytestring=svg, unsafe=False)

    def to_png(self, svg: bytes, dpi: int) -> bytes:
        return cairosvg.svg2png(bytestring=svg, unsafe=False, **raster_options(svg, dpi))


def raster_options(svg: bytes, dpi: int) -> Dict[str, float]:
    """
    Resolution keyword for ``svg2png``.

    CairoSVG converts physical lengths (mm, in, ...) with its ``dpi``
    setting and treats px lengths as output pixels. Only one of ``dpi``
    and ``scale`` may carry the resolution, chosen from the root width.
    """
    try:
        root = etree.fromstring(
            svg, etree.XMLParser(resolve_entities=False, no_network=True)
        )
    except etree.XMLSyntaxError:
        return {"scale": dpi / CSS_DPI}

    width = (root.get("width") or "").strip().lower()
    if width.endswith(_PHYSICAL_UNITS):
        return {"dpi": dpi}
    return {"scale": dpi / CSS_DPI}
