"""
Flexbox layout.

Converts a substituted node tree into absolutely positioned boxes.

Supported model (CSS flexbox subset):
- flex-basis / explicit size / content size as hypothetical main size
- line breaking with ``flexWrap: wrap``
- free space distribution by ``flexGrow`` and weighted ``flexShrink``,
  with min / max clamping and freezing of violating items
- ``justifyContent``, ``gap``, ``alignItems`` / ``alignSelf``
- margins, padding, uniform borders, percentage lengths
- reversed directions

Text is wrapped to its box with the metrics of the face it is painted
with (see ``fonts.py``), so the same tree always produces the same
geometry regardless of the output kind. Content that does not fit is
clipped at paint time; it never enlarges the parent.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from reportlab.pdfbase import pdfmetrics

from renderer.app.layout.fonts import FontBook, FontFace
from renderer.app.resolver.assets import ResolvedAsset
from renderer.app.schemas.document import (
    ImageNode,
    Length,
    Node,
    Style,
    TextNode,
    ViewNode,
)

DEFAULT_FONT_SIZE = 16.0
DEFAULT_LINE_HEIGHT = 1.2
DEFAULT_IMAGE_SIZE = 100.0

_EPSILON = 1e-6

ImageBinder = Callable[[ImageNode], Optional[ResolvedAsset]]


# ----------------------------------------------------------------------
# Lengths and edges
# ----------------------------------------------------------------------


def resolve_length(value: Optional[Length], reference: Optional[float]) -> Optional[float]:
    """
    Resolve a style length to px.

    Returns None for ``auto``, unparsable values and percentages without
    a definite reference.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip().lower()
    if text.endswith("%"):
        if reference is None:
            return None
        try:
            return reference * float(text[:-1]) / 100.0
        except ValueError:
            return None
    if text.endswith("px"):
        text = text[:-2]
    try:
        return float(text)
    except ValueError:
        return None


def _clamp(value: float, low: Optional[float], high: Optional[float]) -> float:
    if high is not None and value > high:
        value = high
    if low is not None and value < low:
        value = low
    return max(value, 0.0)


@dataclass(frozen=True)
class Edges:
    top: float = 0.0
    right: float = 0.0
    bottom: float = 0.0
    left: float = 0.0

    @property
    def horizontal(self) -> float:
        return self.left + self.right

    @property
    def vertical(self) -> float:
        return self.top + self.bottom


def edges(style: Style, prefix: str, reference: Optional[float]) -> Edges:
    """Margin or padding edges; percentages resolve against width."""
    base = resolve_length(getattr(style, prefix), reference) or 0.0

    def side(name: str) -> float:
        value = resolve_length(getattr(style, f"{prefix}_{name}"), reference)
        return base if value is None else value

    return Edges(
        top=side("top"),
        right=side("right"),
        bottom=side("bottom"),
        left=side("left"),
    )


def border_width(style: Style) -> float:
    return max(style.border_width or 0.0, 0.0)


# ----------------------------------------------------------------------
# Text metrics
# ----------------------------------------------------------------------


class TextMetrics:
    """Font selection, measurement and line wrapping."""

    def __init__(self, fonts: Optional[FontBook] = None) -> None:
        self.fonts = fonts or FontBook()

    def face(self, style: Style) -> FontFace:
        return self.fonts.face(style)

    def font_name(self, style: Style) -> str:
        return self.face(style).pdf_name

    def font_size(self, style: Style) -> float:
        return style.font_size if style.font_size else DEFAULT_FONT_SIZE

    def line_height(self, style: Style) -> float:
        return self.font_size(style) * (style.line_height or DEFAULT_LINE_HEIGHT)

    def width(self, text: str, style: Style) -> float:
        return pdfmetrics.stringWidth(
            text, self.font_name(style), self.font_size(style)
        )

    def natural_width(self, text: str, style: Style) -> float:
        return max(
            (self.width(" ".join(p.split()), style) for p in text.split("\n")),
            default=0.0,
        )

    def wrap(self, text: str, style: Style, max_width: float) -> List[str]:
        if not text:
            return []
        lines: List[str] = []
        for paragraph in text.split("\n"):
            lines.extend(self._wrap_paragraph(paragraph.split(), style, max_width))
        return lines

    def _wrap_paragraph(
        self,
        words: List[str],
        style: Style,
        max_width: float,
    ) -> List[str]:
        lines: List[str] = []
        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if self.width(candidate, style) <= max_width + _EPSILON:
                current = candidate
                continue
            if current:
                lines.append(current)
                current = ""
            if self.width(word, style) <= max_width + _EPSILON:
                current = word
                continue
            # Break an over-long word by characters
            for char in word:
                if current and self.width(current + char, style) > max_width:
                    lines.append(current)
                    current = ""
                current += char
        lines.append(current)
        return lines


# ----------------------------------------------------------------------
# Output boxes
# ----------------------------------------------------------------------


@dataclass
class LaidOutBox:
    """
    An absolutely positioned border box in page px.

    Text boxes carry their wrapped ``lines``; image boxes carry the bound
    ``image`` or, when unbound, a ``placeholder`` label.
    """

    kind: str
    style: Style
    x: float
    y: float
    width: float
    height: float
    children: List["LaidOutBox"] = field(default_factory=list)
    lines: List[str] = field(default_factory=list)
    image: Optional[ResolvedAsset] = None
    placeholder: Optional[str] = None

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass
class _Item:
    node: Node
    grow: float
    shrink: float
    basis: float
    hyp: float
    min_main: Optional[float]
    max_main: Optional[float]
    margin: Edges
    align: str
    cross: float = 0.0
    cross_auto: bool = True
    min_cross: Optional[float] = None
    max_cross: Optional[float] = None
    main: float = 0.0
    frozen: bool = False
    main_pos: float = 0.0
    cross_pos: float = 0.0


@dataclass
class Arrangement:
    """Child placements relative to the container's content box."""

    placements: List[Tuple[Node, float, float, float, float]]
    content_main: float
    content_cross: float


# ----------------------------------------------------------------------
# Layout engine
# ----------------------------------------------------------------------


class FlexLayout:
    """
    One layout run. Not shared between renders; the measurement cache is
    keyed by node identity and only valid for the tree being laid out.
    """

    def __init__(
        self,
        *,
        bind_image: ImageBinder,
        metrics: Optional[TextMetrics] = None,
    ) -> None:
        self.bind_image = bind_image
        self.metrics = metrics or TextMetrics()
        self._measure_cache: Dict[tuple, Tuple[float, float]] = {}

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def layout(
        self,
        node: Node,
        x: float,
        y: float,
        width: float,
        height: float,
    ) -> LaidOutBox:
        """Lay out ``node`` with its border box fixed at the given rect."""
        style = node.style
        pad = edges(style, "padding", width)
        border = border_width(style)
        inner_x = x + border + pad.left
        inner_y = y + border + pad.top
        inner_w = max(width - pad.horizontal - 2 * border, 0.0)
        inner_h = max(height - pad.vertical - 2 * border, 0.0)

        if isinstance(node, TextNode):
            return LaidOutBox(
                kind="text",
                style=style,
                x=x,
                y=y,
                width=width,
                height=height,
                lines=self.metrics.wrap(node.text, style, inner_w),
            )

        if isinstance(node, ImageNode):
            image = self.bind_image(node)
            return LaidOutBox(
                kind="image",
                style=style,
                x=x,
                y=y,
                width=width,
                height=height,
                image=image,
                placeholder=None if image else (node.asset or "Image"),
            )

        box = LaidOutBox(
            kind="view", style=style, x=x, y=y, width=width, height=height
        )
        arrangement = self.arrange(node, inner_w, inner_h)
        for child, cx, cy, cw, ch in arrangement.placements:
            box.children.append(
                self.layout(child, inner_x + cx, inner_y + cy, cw, ch)
            )
        return box

    # ------------------------------------------------------------------
    # Measurement
    # ------------------------------------------------------------------

    def measure(
        self,
        node: Node,
        avail_w: float,
        *,
        fixed_w: Optional[float] = None,
        ref_h: Optional[float] = None,
    ) -> Tuple[float, float]:
        """Border-box size of ``node`` given the available width."""
        key = (id(node), round(avail_w, 4), fixed_w, ref_h)
        cached = self._measure_cache.get(key)
        if cached is None:
            cached = self._measure(node, max(avail_w, 0.0), fixed_w, ref_h)
            self._measure_cache[key] = cached
        return cached

    def _measure(
        self,
        node: Node,
        avail_w: float,
        fixed_w: Optional[float],
        ref_h: Optional[float],
    ) -> Tuple[float, float]:
        style = node.style
        pad = edges(style, "padding", avail_w)
        border = border_width(style)
        frame_w = pad.horizontal + 2 * border
        frame_h = pad.vertical + 2 * border

        min_w = resolve_length(style.min_width, avail_w)
        max_w = resolve_length(style.max_width, avail_w)
        min_h = resolve_length(style.min_height, ref_h)
        max_h = resolve_length(style.max_height, ref_h)

        width = fixed_w if fixed_w is not None else resolve_length(style.width, avail_w)
        height = resolve_length(style.height, ref_h)

        if isinstance(node, TextNode):
            if width is None:
                natural = self.metrics.natural_width(node.text, style) + frame_w
                width = min(natural, avail_w)
            width = _clamp(width, min_w, max_w)
            if height is None:
                lines = self.metrics.wrap(
                    node.text, style, max(width - frame_w, 0.0)
                )
                height = len(lines) * self.metrics.line_height(style) + frame_h
            return width, _clamp(height, min_h, max_h)

        if isinstance(node, ImageNode):
            image = self.bind_image(node)
            nat_w = float(image.width) if image else DEFAULT_IMAGE_SIZE
            nat_h = float(image.height) if image else DEFAULT_IMAGE_SIZE
            if width is None and height is None:
                width, height = nat_w, nat_h
            elif width is None:
                width = height * nat_w / nat_h if nat_h else height
            elif height is None:
                height = width * nat_h / nat_w if nat_w else width
            return _clamp(width, min_w, max_w), _clamp(height, min_h, max_h)

        row = style.is_row
        explicit_inner_h = None if height is None else max(height - frame_h, 0.0)

        if width is None:
            arrangement = self.arrange(
                node,
                max(avail_w - frame_w, 0.0),
                explicit_inner_h,
                intrinsic=True,
            )
            content_w = arrangement.content_main if row else arrangement.content_cross
            width = min(content_w + frame_w, avail_w)
        width = _clamp(width, min_w, max_w)

        if height is None:
            arrangement = self.arrange(node, max(width - frame_w, 0.0), None)
            content_h = arrangement.content_cross if row else arrangement.content_main
            height = content_h + frame_h
        return width, _clamp(height, min_h, max_h)

    # ------------------------------------------------------------------
    # Flex algorithm
    # ------------------------------------------------------------------

    def arrange(
        self,
        node: Node,
        inner_w: float,
        inner_h: Optional[float],
        *,
        intrinsic: bool = False,
    ) -> Arrangement:
        if not isinstance(node, ViewNode) or not node.children:
            return Arrangement(placements=[], content_main=0.0, content_cross=0.0)

        style = node.style
        row = style.is_row
        main_size = inner_w if row else inner_h
        cross_size = inner_h if row else inner_w

        gap = resolve_length(style.gap, inner_w) or 0.0
        row_gap = resolve_length(style.row_gap, inner_h)
        column_gap = resolve_length(style.column_gap, inner_w)
        row_gap = gap if row_gap is None else row_gap
        column_gap = gap if column_gap is None else column_gap
        main_gap, cross_gap = (column_gap, row_gap) if row else (row_gap, column_gap)

        items = [
            self._item(child, style, row, inner_w, inner_h, main_size, intrinsic)
            for child in node.children
        ]
        lines = self._break_lines(items, style, main_size, main_gap)

        content_main = 0.0
        line_crosses: List[float] = []
        for line in lines:
            content_main = max(
                content_main,
                sum(it.hyp + _main_margin(it, row) for it in line)
                + main_gap * (len(line) - 1),
            )
            self._resolve_flexible(line, main_size, main_gap, row)
            line_crosses.append(
                self._cross_sizes(line, row, inner_h, single=len(lines) == 1,
                                  cross_size=cross_size)
            )

        placements: List[Tuple[Node, float, float, float, float]] = []
        cross_cursor = 0.0
        used_main_max = 0.0
        for line, line_cross in zip(lines, line_crosses):
            used_main = self._justify(line, style, main_size, main_gap, row)
            used_main_max = max(used_main_max, used_main)
            self._align(line, line_cross, cross_cursor, row)
            cross_cursor += line_cross + cross_gap

        if style.is_reversed:
            extent = main_size if main_size is not None else used_main_max
            for line in lines:
                for it in line:
                    it.main_pos = extent - it.main_pos - it.main

        for line in lines:
            for it in line:
                if row:
                    placements.append((it.node, it.main_pos, it.cross_pos, it.main, it.cross))
                else:
                    placements.append((it.node, it.cross_pos, it.main_pos, it.cross, it.main))

        content_cross = sum(line_crosses) + cross_gap * max(len(lines) - 1, 0)
        if main_size is None:
            content_main = used_main_max
        return Arrangement(
            placements=placements,
            content_main=content_main,
            content_cross=content_cross,
        )

    def _item(
        self,
        child: Node,
        parent_style: Style,
        row: bool,
        inner_w: float,
        inner_h: Optional[float],
        main_size: Optional[float],
        intrinsic: bool,
    ) -> _Item:
        cs = child.style
        margin = edges(cs, "margin", inner_w)
        grow, shrink, basis_value = _flex_factors(cs)

        align = cs.align_self
        if align in (None, "auto"):
            align = parent_style.align_items

        basis = None
        if basis_value is not None:
            basis = resolve_length(basis_value, main_size)

        if row:
            if basis is None:
                basis = resolve_length(cs.width, inner_w)
            if basis is None:
                basis = self.measure(
                    child, inner_w - margin.horizontal, ref_h=inner_h
                )[0]
            item = _Item(
                node=child,
                grow=grow,
                shrink=shrink,
                basis=basis,
                hyp=0.0,
                min_main=resolve_length(cs.min_width, inner_w),
                max_main=resolve_length(cs.max_width, inner_w),
                margin=margin,
                align=align,
                min_cross=resolve_length(cs.min_height, inner_h),
                max_cross=resolve_length(cs.max_height, inner_h),
            )
        else:
            min_w = resolve_length(cs.min_width, inner_w)
            max_w = resolve_length(cs.max_width, inner_w)
            width = resolve_length(cs.width, inner_w)
            cross_auto = width is None
            if width is None:
                if align == "stretch" and not intrinsic:
                    width = inner_w - margin.horizontal
                else:
                    width = self.measure(
                        child, inner_w - margin.horizontal, ref_h=inner_h
                    )[0]
            width = _clamp(width, min_w, max_w)
            if basis is None:
                basis = resolve_length(cs.height, inner_h)
            if basis is None:
                basis = self.measure(
                    child,
                    inner_w - margin.horizontal,
                    fixed_w=width,
                    ref_h=inner_h,
                )[1]
            item = _Item(
                node=child,
                grow=grow,
                shrink=shrink,
                basis=basis,
                hyp=0.0,
                min_main=resolve_length(cs.min_height, inner_h),
                max_main=resolve_length(cs.max_height, inner_h),
                margin=margin,
                align=align,
                cross=width,
                cross_auto=cross_auto,
                min_cross=min_w,
                max_cross=max_w,
            )

        item.hyp = _clamp(item.basis, item.min_main, item.max_main)
        item.main = item.hyp
        return item

    @staticmethod
    def _break_lines(
        items: List[_Item],
        style: Style,
        main_size: Optional[float],
        main_gap: float,
    ) -> List[List[_Item]]:
        if style.flex_wrap != "wrap" or main_size is None:
            return [items]
        row = style.is_row
        lines: List[List[_Item]] = []
        current: List[_Item] = []
        used = 0.0
        for it in items:
            outer = it.hyp + _main_margin(it, row)
            extra = outer + (main_gap if current else 0.0)
            if current and used + extra > main_size + _EPSILON:
                lines.append(current)
                current, used = [it], outer
            else:
                current.append(it)
                used += extra
        if current:
            lines.append(current)
        return lines

    @staticmethod
    def _resolve_flexible(
        line: List[_Item],
        main_size: Optional[float],
        main_gap: float,
        row: bool,
    ) -> None:
        for it in line:
            it.main = it.hyp
            it.frozen = False
        if main_size is None:
            return

        gaps = main_gap * (len(line) - 1)
        used = sum(it.hyp + _main_margin(it, row) for it in line) + gaps
        growing = main_size - used > 0

        for it in line:
            if abs(main_size - used) < _EPSILON:
                it.frozen = True
            elif growing and (it.grow <= 0 or it.basis > it.hyp):
                it.frozen = True
            elif not growing and (it.shrink <= 0 or it.basis < it.hyp):
                it.frozen = True

        for _round in range(len(line) + 1):
            active = [it for it in line if not it.frozen]
            if not active:
                break

            remaining = (
                main_size
                - gaps
                - sum(it.main + _main_margin(it, row) for it in line if it.frozen)
                - sum(it.basis + _main_margin(it, row) for it in active)
            )

            if growing:
                total = sum(it.grow for it in active)
                if total < 1:
                    remaining *= total
                for it in active:
                    it.main = it.basis + (remaining * it.grow / total if total else 0.0)
            else:
                total = sum(it.shrink * it.basis for it in active)
                for it in active:
                    share = it.shrink * it.basis / total if total else 0.0
                    it.main = it.basis + remaining * share

            violation = 0.0
            adjustments = []
            for it in active:
                clamped = _clamp(it.main, it.min_main, it.max_main)
                adjustments.append((it, clamped - it.main))
                violation += clamped - it.main
                it.main = clamped

            if abs(violation) < _EPSILON:
                break
            for it, delta in adjustments:
                if (violation > 0 and delta > 0) or (violation < 0 and delta < 0):
                    it.frozen = True

    def _cross_sizes(
        self,
        line: List[_Item],
        row: bool,
        inner_h: Optional[float],
        *,
        single: bool,
        cross_size: Optional[float],
    ) -> float:
        for it in line:
            if not row:
                continue
            explicit = resolve_length(it.node.style.height, inner_h)
            if explicit is not None:
                it.cross = _clamp(explicit, it.min_cross, it.max_cross)
                it.cross_auto = False
            else:
                it.cross = self.measure(
                    it.node, it.main, fixed_w=it.main, ref_h=inner_h
                )[1]
                it.cross_auto = True

        if single and cross_size is not None:
            line_cross = cross_size
        else:
            line_cross = max(
                (it.cross + _cross_margin(it, row) for it in line), default=0.0
            )

        for it in line:
            if it.align == "stretch" and it.cross_auto:
                it.cross = _clamp(
                    line_cross - _cross_margin(it, row),
                    it.min_cross,
                    it.max_cross,
                )
        return line_cross

    @staticmethod
    def _justify(
        line: List[_Item],
        style: Style,
        main_size: Optional[float],
        main_gap: float,
        row: bool,
    ) -> float:
        count = len(line)
        used = sum(it.main + _main_margin(it, row) for it in line)
        used += main_gap * (count - 1)
        free = (main_size - used) if main_size is not None else 0.0
        positive = max(free, 0.0)

        start, between = 0.0, 0.0
        mode = style.justify_content
        if mode == "flex-end":
            start = free
        elif mode == "center":
            start = free / 2
        elif mode == "space-between":
            between = positive / (count - 1) if count > 1 else 0.0
        elif mode == "space-around":
            between = positive / count if count else 0.0
            start = between / 2
        elif mode == "space-evenly":
            between = positive / (count + 1)
            start = between

        cursor = start
        for it in line:
            lead, trail = _main_margins(it, row)
            cursor += lead
            it.main_pos = cursor
            cursor += it.main + trail + main_gap + between
        return used if main_size is None else max(main_size, used)

    @staticmethod
    def _align(
        line: List[_Item],
        line_cross: float,
        offset: float,
        row: bool,
    ) -> None:
        for it in line:
            lead, trail = _cross_margins(it, row)
            free = line_cross - it.cross - lead - trail
            if it.align == "flex-end":
                shift = free
            elif it.align == "center":
                shift = free / 2
            else:
                shift = 0.0
            it.cross_pos = offset + lead + shift


# ----------------------------------------------------------------------
# Item helpers
# ----------------------------------------------------------------------


def _flex_factors(style: Style) -> Tuple[float, float, Optional[Length]]:
    grow = style.flex_grow
    shrink = style.flex_shrink
    basis = style.flex_basis
    if style.flex is not None:
        if grow is None:
            grow = style.flex
        if shrink is None:
            shrink = 1.0
        if basis is None and style.flex > 0:
            basis = 0
    if isinstance(basis, str) and basis.strip().lower() in ("auto", "content"):
        basis = None
    return (
        grow if grow is not None and not math.isnan(grow) else 0.0,
        shrink if shrink is not None else 1.0,
        basis,
    )


def _main_margins(it: _Item, row: bool) -> Tuple[float, float]:
    return (it.margin.left, it.margin.right) if row else (it.margin.top, it.margin.bottom)


def _cross_margins(it: _Item, row: bool) -> Tuple[float, float]:
    return (it.margin.top, it.margin.bottom) if row else (it.margin.left, it.margin.right)


def _main_margin(it: _Item, row: bool) -> float:
    return sum(_main_margins(it, row))


def _cross_margin(it: _Item, row: bool) -> float:
    return sum(_cross_margins(it, row))
