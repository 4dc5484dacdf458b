"""
Flexbox layout compositor.

Turns a DocumentSpec plus resolved fields and assets into a paginated
PDF or one PNG per page.

Per page, in order:
1. substitution over the node trees (repeats, text, image slots,
   ``pageNumber`` / ``totalPages``)
2. image binding
3. flex layout of the header band, the body band and the footer band
4. painting

Pages are rendered independently and concatenated in declared order.

Hard failures (LayoutError):
- the payload does not validate as a DocumentSpec
- the page list is empty
- the page has zero width or height
- the body band has no positive height
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from renderer.app.errors import LayoutError
from renderer.app.layout.flexbox import FlexLayout, LaidOutBox, TextMetrics
from renderer.app.layout.fonts import FontBook
from renderer.app.layout.paint import PageLayout, PdfPainter, RasterPainter
from renderer.app.resolver.assets import (
    ResolvedAsset,
    ResolvedAssets,
    decode_data_uri,
    normalize_image,
)
from renderer.app.resolver.fields import ResolvedFields
from renderer.app.schemas.document import DocumentSpec, ImageNode, Node, PageSize
from renderer.app.schemas.render import MEDIA_TYPE_PDF, MEDIA_TYPE_PNG, OutputKind
from renderer.app.schemas.template import TemplateFont
from renderer.app.substitution.placeholders import Scope
from renderer.app.substitution.tree import substitute_root

logger = logging.getLogger("renderer.layout")


@dataclass(frozen=True)
class ComposedOutput:
    output: bytes
    media_type: str
    raster_pages: Tuple[bytes, ...] = ()
    page_count: int = 0
    warnings: Tuple[str, ...] = field(default_factory=tuple)


def load_document(document: Union[DocumentSpec, Mapping[str, Any]]) -> DocumentSpec:
    """Validate a raw page tree. Raises LayoutError when it is invalid."""
    if isinstance(document, DocumentSpec):
        return document
    try:
        return DocumentSpec.model_validate(document)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        raise LayoutError(
            "Document is not a valid page tree",
            details={
                "error_count": exc.error_count(),
                "location": ".".join(str(p) for p in first.get("loc", ())),
                "reason": first.get("msg"),
            },
        ) from exc


def check_geometry(spec: DocumentSpec) -> PageSize:
    page = spec.page_dimensions()
    if page.width <= 0 or page.height <= 0:
        raise LayoutError(
            "Page size must be positive",
            details={"width": page.width, "height": page.height},
        )
    if not spec.pages:
        raise LayoutError("Document has no pages")
    body_height = page.height - spec.header_height - spec.footer_height
    if body_height <= 0:
        raise LayoutError(
            "Header and footer leave no room for the page body",
            details={
                "page_height": page.height,
                "header_height": spec.header_height,
                "footer_height": spec.footer_height,
            },
        )
    return page


class ImageBinder:
    """
    Resolves image nodes to normalized images for one render.

    Slots bind to resolved assets; ``src`` data URIs are decoded once and
    cached. Anything else stays unbound and paints as a placeholder.
    """

    def __init__(self, assets: ResolvedAssets, warnings: List[str]) -> None:
        self.assets = assets
        self.warnings = warnings
        self._sources: Dict[str, Optional[ResolvedAsset]] = {}

    def __call__(self, node: ImageNode) -> Optional[ResolvedAsset]:
        if node.src:
            return self._from_src(node.src)
        if node.asset:
            return self.assets.get(node.asset)
        return None

    def _from_src(self, src: str) -> Optional[ResolvedAsset]:
        if src in self._sources:
            return self._sources[src]
        image = None
        if src.startswith("data:"):
            try:
                image = normalize_image(decode_data_uri(src))
            except ValueError as exc:
                self.warnings.append(f"Image source is unusable: {exc}")
        else:
            self.warnings.append(
                "Image source is not an embedded data URI; "
                "rendering a placeholder"
            )
        self._sources[src] = image
        return image


class FlexCompositor:
    def __init__(
        self,
        *,
        font_path: Optional[str] = None,
        bold_font_path: Optional[str] = None,
    ) -> None:
        self.fonts = FontBook.from_paths(font_path, bold_font_path)

    def compose(
        self,
        document: Union[DocumentSpec, Mapping[str, Any]],
        fields: ResolvedFields,
        assets: ResolvedAssets,
        *,
        output_kind: OutputKind,
        dpi: int = 96,
        fonts: Sequence[TemplateFont] = (),
    ) -> ComposedOutput:
        spec = load_document(document)
        page = check_geometry(spec)

        warnings: List[str] = []
        metrics = TextMetrics(self.fonts.with_template_fonts(fonts, warnings))
        pages = self.layout_pages(spec, page, fields, assets, warnings, metrics=metrics)
        warnings.extend(metrics.fonts.missing_family_warnings())

        if output_kind is OutputKind.RASTER:
            painter = RasterPainter(page, dpi, metrics=metrics)
            images = painter.paint(pages)
            return ComposedOutput(
                output=images[0],
                media_type=MEDIA_TYPE_PNG,
                raster_pages=tuple(images),
                page_count=len(images),
                warnings=tuple(warnings),
            )

        pdf = PdfPainter(page, metrics=metrics).paint(pages)
        return ComposedOutput(
            output=pdf,
            media_type=MEDIA_TYPE_PDF,
            page_count=len(pages),
            warnings=tuple(warnings),
        )

    def layout_pages(
        self,
        spec: DocumentSpec,
        page: PageSize,
        fields: ResolvedFields,
        assets: ResolvedAssets,
        warnings: List[str],
        metrics: Optional[TextMetrics] = None,
    ) -> List[PageLayout]:
        if metrics is None:
            metrics = TextMetrics(self.fonts.with_template_fonts((), warnings))
        total = len(spec.pages)
        slots = tuple(assets.assets)
        binder = ImageBinder(assets, warnings)
        header_h, footer_h = spec.header_height, spec.footer_height
        body_h = page.height - header_h - footer_h

        layouts: List[PageLayout] = []
        for number, page_spec in enumerate(spec.pages, start=1):
            scope = Scope(fields=fields).with_page(number, total)
            engine = FlexLayout(bind_image=binder, metrics=metrics)
            bands: List[LaidOutBox] = []

            header = page_spec.header_override or (
                spec.header.content if spec.header else None
            )
            if header is not None and header_h > 0:
                bands.append(
                    self._band(engine, header, scope, warnings, slots,
                               0.0, page.width, header_h)
                )

            bands.append(
                self._band(engine, page_spec.body, scope, warnings, slots,
                           header_h, page.width, body_h)
            )

            footer = page_spec.footer_override or (
                spec.footer.content if spec.footer else None
            )
            if footer is not None and footer_h > 0:
                bands.append(
                    self._band(engine, footer, scope, warnings, slots,
                               page.height - footer_h, page.width, footer_h)
                )

            layouts.append(PageLayout(bands=bands))

        logger.debug(
            "flex_pages_laid_out",
            extra={"page_count": total, "warning_count": len(warnings)},
        )
        return layouts

    @staticmethod
    def _band(
        engine: FlexLayout,
        node: Node,
        scope: Scope,
        warnings: List[str],
        slots: Tuple[str, ...],
        top: float,
        width: float,
        height: float,
    ) -> LaidOutBox:
        materialized = substitute_root(node, scope, warnings, slots)
        return engine.layout(materialized, 0.0, top, width, height)
