"""
Painting of laid-out pages.

Two back ends share one box model:

- PDF via reportlab, one page per ``showPage``, invariant mode so that
  identical input yields identical bytes
- PNG via Pillow, one image per page at the requested resolution

Every box clips its content to its own border box. Unbound images are
painted as a placeholder box (grey fill, dashed border, slot label).
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

from PIL import Image, ImageColor, ImageDraw, ImageFont
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

from renderer.app.layout.flexbox import (
    LaidOutBox,
    TextMetrics,
    border_width,
    edges,
)
from renderer.app.layout.fonts import FontFace
from renderer.app.schemas.document import PX_TO_PT, PageSize
from renderer.app.substitution.markup import (
    PLACEHOLDER_FILL,
    PLACEHOLDER_LABEL,
    PLACEHOLDER_STROKE,
)

logger = logging.getLogger("renderer.layout")

PLACEHOLDER_BORDER = 2.0
DASH_PATTERN = (6.0, 4.0)
DEFAULT_TEXT_COLOR = "#000000"


@dataclass
class PageLayout:
    """Bands of one page, painted in order (header, body, footer)."""

    bands: List[LaidOutBox]


def _placeholder_font_size(width: float) -> float:
    return max(min(12.0, width / 10), 1.0)


def _text_origin(
    metrics: TextMetrics,
    box: LaidOutBox,
) -> Tuple[float, float, float, float]:
    """Content-box x, y, width and the first baseline offset."""
    style = box.style
    pad = edges(style, "padding", box.width)
    border = border_width(style)
    x = box.x + border + pad.left
    y = box.y + border + pad.top
    width = max(box.width - pad.horizontal - 2 * border, 0.0)
    size = metrics.font_size(style)
    line_height = metrics.line_height(style)
    ascent = pdfmetrics.getAscent(metrics.font_name(style)) / 1000.0 * size
    baseline = (line_height - size) / 2 + ascent
    return x, y, width, baseline


# ----------------------------------------------------------------------
# PDF
# ----------------------------------------------------------------------


def _rl_color(value: Optional[str]):
    if not value:
        return None
    try:
        return colors.toColor(value)
    except ValueError:
        logger.debug("pdf_color_ignored", extra={"color": value})
        return None


class PdfPainter:
    def __init__(self, page_size: PageSize, metrics: Optional[TextMetrics] = None) -> None:
        self.page_size = page_size
        self.metrics = metrics or TextMetrics()

    def paint(self, pages: Sequence[PageLayout]) -> bytes:
        buffer = io.BytesIO()
        pdf = canvas.Canvas(
            buffer,
            pagesize=(
                self.page_size.width * PX_TO_PT,
                self.page_size.height * PX_TO_PT,
            ),
            invariant=1,
            pageCompression=1,
        )
        for page in pages:
            for band in page.bands:
                self._box(pdf, band)
            pdf.showPage()
        pdf.save()
        return buffer.getvalue()

    # px (top-left origin) to pt (bottom-left origin)
    def _rect(self, x: float, y: float, w: float, h: float) -> Tuple[float, float, float, float]:
        return (
            x * PX_TO_PT,
            (self.page_size.height - y - h) * PX_TO_PT,
            w * PX_TO_PT,
            h * PX_TO_PT,
        )

    def _clip(self, pdf: canvas.Canvas, box: LaidOutBox) -> None:
        path = pdf.beginPath()
        path.rect(*self._rect(box.x, box.y, box.width, box.height))
        pdf.clipPath(path, stroke=0, fill=0)

    def _box(self, pdf: canvas.Canvas, box: LaidOutBox) -> None:
        if box.width <= 0 or box.height <= 0:
            return
        pdf.saveState()
        self._clip(pdf, box)
        self._background(pdf, box)

        if box.kind == "text":
            self._text(pdf, box)
        elif box.kind == "image":
            self._image(pdf, box)
        for child in box.children:
            self._box(pdf, child)

        self._border(pdf, box)
        pdf.restoreState()

    def _background(self, pdf: canvas.Canvas, box: LaidOutBox) -> None:
        fill = _rl_color(box.style.background_color)
        if fill is None:
            return
        pdf.setFillColor(fill)
        x, y, w, h = self._rect(box.x, box.y, box.width, box.height)
        radius = (box.style.border_radius or 0.0) * PX_TO_PT
        if radius:
            pdf.roundRect(x, y, w, h, radius, stroke=0, fill=1)
        else:
            pdf.rect(x, y, w, h, stroke=0, fill=1)

    def _border(self, pdf: canvas.Canvas, box: LaidOutBox) -> None:
        width = border_width(box.style)
        if not width:
            return
        stroke = _rl_color(box.style.border_color) or colors.black
        pdf.setStrokeColor(stroke)
        pdf.setLineWidth(width * PX_TO_PT)
        if box.style.border_style == "dashed":
            pdf.setDash(*(d * PX_TO_PT for d in DASH_PATTERN))
        half = width / 2
        x, y, w, h = self._rect(
            box.x + half, box.y + half, box.width - width, box.height - width
        )
        radius = (box.style.border_radius or 0.0) * PX_TO_PT
        if radius:
            pdf.roundRect(x, y, w, h, radius, stroke=1, fill=0)
        else:
            pdf.rect(x, y, w, h, stroke=1, fill=0)
        pdf.setDash()

    def _text(self, pdf: canvas.Canvas, box: LaidOutBox) -> None:
        if not box.lines:
            return
        style = box.style
        metrics = self.metrics
        x, y, width, baseline = _text_origin(metrics, box)
        size = metrics.font_size(style)
        line_height = metrics.line_height(style)

        pdf.setFont(metrics.font_name(style), size * PX_TO_PT)
        pdf.setFillColor(_rl_color(style.color) or colors.black)
        for index, line in enumerate(box.lines):
            top = y + index * line_height + baseline
            pt_y = (self.page_size.height - top) * PX_TO_PT
            if style.text_align == "center":
                pdf.drawCentredString((x + width / 2) * PX_TO_PT, pt_y, line)
            elif style.text_align == "right":
                pdf.drawRightString((x + width) * PX_TO_PT, pt_y, line)
            else:
                pdf.drawString(x * PX_TO_PT, pt_y, line)

    def _image(self, pdf: canvas.Canvas, box: LaidOutBox) -> None:
        x, y, w, h = self._rect(box.x, box.y, box.width, box.height)
        if box.image is not None:
            pdf.drawImage(
                ImageReader(io.BytesIO(box.image.data)),
                x,
                y,
                w,
                h,
                mask="auto",
                preserveAspectRatio=box.style.object_fit == "contain",
                anchor="c",
            )
            return

        pdf.setFillColor(colors.toColor(PLACEHOLDER_FILL))
        pdf.setStrokeColor(colors.toColor(PLACEHOLDER_STROKE))
        pdf.setLineWidth(PLACEHOLDER_BORDER * PX_TO_PT)
        pdf.setDash(*(d * PX_TO_PT for d in DASH_PATTERN))
        inset = PLACEHOLDER_BORDER / 2
        pdf.rect(
            *self._rect(
                box.x + inset,
                box.y + inset,
                box.width - PLACEHOLDER_BORDER,
                box.height - PLACEHOLDER_BORDER,
            ),
            stroke=1,
            fill=1,
        )
        pdf.setDash()

        size = _placeholder_font_size(box.width)
        pdf.setFont(self.metrics.fonts.regular.pdf_name, size * PX_TO_PT)
        pdf.setFillColor(colors.toColor(PLACEHOLDER_LABEL))
        pdf.drawCentredString(
            x + w / 2,
            y + h / 2 - size * PX_TO_PT / 3,
            box.placeholder or "Image",
        )


# ----------------------------------------------------------------------
# PNG
# ----------------------------------------------------------------------


def _pil_color(value: Optional[str]) -> Optional[Tuple[int, ...]]:
    if not value:
        return None
    try:
        rgb = ImageColor.getrgb(value)
    except ValueError:
        logger.debug("raster_color_ignored", extra={"color": value})
        return None
    return rgb if len(rgb) == 4 else rgb + (255,)


@lru_cache(maxsize=64)
def _load_font(path: Optional[str], size: int) -> ImageFont.ImageFont:
    if path:
        return ImageFont.truetype(path, size)
    return ImageFont.load_default(size=size)


Rect = Tuple[float, float, float, float]  # left, top, right, bottom


def _intersect(a: Rect, b: Rect) -> Optional[Rect]:
    left, top = max(a[0], b[0]), max(a[1], b[1])
    right, bottom = min(a[2], b[2]), min(a[3], b[3])
    if right <= left or bottom <= top:
        return None
    return left, top, right, bottom


class RasterPainter:
    def __init__(
        self,
        page_size: PageSize,
        dpi: int,
        *,
        metrics: Optional[TextMetrics] = None,
    ) -> None:
        self.page_size = page_size
        self.scale = dpi / 96.0
        self.dpi = dpi
        self.metrics = metrics or TextMetrics()

    def paint(self, pages: Sequence[PageLayout]) -> List[bytes]:
        return [self.paint_page(page) for page in pages]

    def paint_page(self, page: PageLayout) -> bytes:
        size = (
            max(round(self.page_size.width * self.scale), 1),
            max(round(self.page_size.height * self.scale), 1),
        )
        image = Image.new("RGBA", size, (255, 255, 255, 255))
        clip = (0.0, 0.0, float(size[0]), float(size[1]))
        for band in page.bands:
            self._box(image, band, clip)

        buffer = io.BytesIO()
        image.convert("RGB").save(buffer, format="PNG", dpi=(self.dpi, self.dpi))
        return buffer.getvalue()

    def _scaled(self, box: LaidOutBox) -> Rect:
        s = self.scale
        return (
            box.x * s,
            box.y * s,
            (box.x + box.width) * s,
            (box.y + box.height) * s,
        )

    def _fill(self, image: Image.Image, rect: Rect, clip: Rect, color) -> None:
        visible = _intersect(rect, clip)
        if visible is None or color is None:
            return
        draw = ImageDraw.Draw(image)
        left, top, right, bottom = (round(v) for v in visible)
        if right > left and bottom > top:
            draw.rectangle((left, top, right - 1, bottom - 1), fill=color)

    def _box(self, image: Image.Image, box: LaidOutBox, clip: Rect) -> None:
        rect = self._scaled(box)
        inner_clip = _intersect(rect, clip)
        if inner_clip is None:
            return

        self._fill(image, rect, inner_clip, _pil_color(box.style.background_color))
        if box.kind == "text":
            self._text(image, box, inner_clip)
        elif box.kind == "image":
            self._image(image, box, rect, inner_clip)
        for child in box.children:
            self._box(image, child, inner_clip)

        width = border_width(box.style)
        if width:
            color = _pil_color(box.style.border_color) or (0, 0, 0)
            self._outline(
                image,
                rect,
                inner_clip,
                width * self.scale,
                color,
                dashed=box.style.border_style == "dashed",
            )

    def _outline(
        self,
        image: Image.Image,
        rect: Rect,
        clip: Rect,
        width: float,
        color,
        *,
        dashed: bool,
    ) -> None:
        left, top, right, bottom = rect
        sides = [
            (left, top, right, top + width),
            (left, bottom - width, right, bottom),
            (left, top, left + width, bottom),
            (right - width, top, right, bottom),
        ]
        for side in sides:
            if not dashed:
                self._fill(image, side, clip, color)
                continue
            dash, space = (d * self.scale for d in DASH_PATTERN)
            horizontal = (side[2] - side[0]) >= (side[3] - side[1])
            start, end = (side[0], side[2]) if horizontal else (side[1], side[3])
            cursor = start
            while cursor < end:
                stop = min(cursor + dash, end)
                if horizontal:
                    segment = (cursor, side[1], stop, side[3])
                else:
                    segment = (side[0], cursor, side[2], stop)
                self._fill(image, segment, clip, color)
                cursor = stop + space

    def _font(self, face: FontFace, size_px: float) -> ImageFont.ImageFont:
        return _load_font(face.path, max(int(round(size_px * self.scale)), 1))

    def _draw_clipped_text(
        self,
        image: Image.Image,
        clip: Rect,
        lines: Sequence[Tuple[float, float, str, str]],
        font: ImageFont.ImageFont,
        color,
    ) -> None:
        left, top = int(clip[0]), int(clip[1])
        width = max(int(round(clip[2])) - left, 1)
        height = max(int(round(clip[3])) - top, 1)
        layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        for x, y, anchor, text in lines:
            draw.text((x - left, y - top), text, font=font, fill=color, anchor=anchor)
        image.alpha_composite(layer, dest=(left, top))

    def _text(self, image: Image.Image, box: LaidOutBox, clip: Rect) -> None:
        if not box.lines:
            return
        style = box.style
        metrics = self.metrics
        x, y, width, baseline = _text_origin(metrics, box)
        line_height = metrics.line_height(style)
        s = self.scale

        anchor = {"center": "ms", "right": "rs"}.get(style.text_align, "ls")
        if style.text_align == "center":
            origin_x = (x + width / 2) * s
        elif style.text_align == "right":
            origin_x = (x + width) * s
        else:
            origin_x = x * s

        lines = [
            (origin_x, (y + index * line_height + baseline) * s, anchor, text)
            for index, text in enumerate(box.lines)
        ]
        color = _pil_color(style.color) or _pil_color(DEFAULT_TEXT_COLOR)
        font = self._font(metrics.face(style), metrics.font_size(style))
        self._draw_clipped_text(image, clip, lines, font, color)

    def _image(self, image: Image.Image, box: LaidOutBox, rect: Rect, clip: Rect) -> None:
        left, top, right, bottom = rect
        target_w = max(int(round(right - left)), 1)
        target_h = max(int(round(bottom - top)), 1)

        if box.image is None:
            fill = _pil_color(PLACEHOLDER_FILL)
            self._fill(image, rect, clip, fill)
            self._outline(
                image,
                rect,
                clip,
                PLACEHOLDER_BORDER * self.scale,
                _pil_color(PLACEHOLDER_STROKE),
                dashed=True,
            )
            size = _placeholder_font_size(box.width)
            font = self._font(self.metrics.fonts.regular, size)
            color = _pil_color(PLACEHOLDER_LABEL)
            self._draw_clipped_text(
                image,
                clip,
                [((left + right) / 2, (top + bottom) / 2, "mm", box.placeholder or "Image")],
                font,
                color,
            )
            return

        with Image.open(io.BytesIO(box.image.data)) as source:
            picture = source.convert("RGBA")
        if box.style.object_fit == "contain":
            ratio = min(target_w / picture.width, target_h / picture.height)
            fit_w = max(int(round(picture.width * ratio)), 1)
            fit_h = max(int(round(picture.height * ratio)), 1)
            picture = picture.resize((fit_w, fit_h), Image.LANCZOS)
            left += (target_w - fit_w) / 2
            top += (target_h - fit_h) / 2
        else:
            picture = picture.resize((target_w, target_h), Image.LANCZOS)

        placed = (left, top, left + picture.width, top + picture.height)
        visible = _intersect(placed, clip)
        if visible is None:
            return
        crop = (
            int(round(visible[0] - left)),
            int(round(visible[1] - top)),
            int(round(visible[2] - left)),
            int(round(visible[3] - top)),
        )
        piece = picture.crop(crop)
        image.alpha_composite(piece, dest=(int(round(visible[0])), int(round(visible[1]))))
