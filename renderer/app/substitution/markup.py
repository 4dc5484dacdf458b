"""
Vector markup substitution.

Walks an SVG document with lxml and materializes every placeholder:

- tokens in text runs (``.text`` / ``.tail``) and attribute values
- ``data-repeat="X"`` elements cloned once per element of X, in order,
  at the original sibling position (``data-repeat-dx`` / ``data-repeat-dy``
  translate clone k by k times the offset)
- ``<image href="{{SLOT}}">`` and ``data-asset="SLOT"`` bound to the
  resolved image as a data URI, or replaced by a placeholder group with
  exactly the declared geometry

Unparsable markup raises SubstitutionError. Everything else degrades to
empty text plus a warning.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from lxml import etree

from renderer.app.errors import SubstitutionError
from renderer.app.resolver.assets import ResolvedAssets
from renderer.app.resolver.fields import ResolvedFields
from renderer.app.substitution.placeholders import (
    Scope,
    has_tokens,
    is_path,
    path_head,
    repeat_items,
    substitute_text,
)

logger = logging.getLogger("renderer.substitution")

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
XLINK_HREF = f"{{{XLINK_NS}}}href"

REPEAT_ATTR = "data-repeat"
REPEAT_DX_ATTR = "data-repeat-dx"
REPEAT_DY_ATTR = "data-repeat-dy"
ASSET_ATTR = "data-asset"

PLACEHOLDER_FILL = "#e5e7eb"
PLACEHOLDER_STROKE = "#9ca3af"
PLACEHOLDER_LABEL = "#6b7280"
DEFAULT_IMAGE_SIZE = 100.0

_SLOT_TOKEN_RE = re.compile(r"^\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")


@dataclass(frozen=True)
class SubstitutedMarkup:
    svg: str
    warnings: Tuple[str, ...] = field(default_factory=tuple)


def _parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        huge_tree=False,
    )


def parse_markup(markup: str) -> etree._Element:
    try:
        return etree.fromstring(markup.encode("utf-8"), _parser())
    except etree.XMLSyntaxError as exc:
        raise SubstitutionError(
            f"Markup is not well-formed: {exc}",
            details={"line": getattr(exc, "lineno", None)},
        ) from exc


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _length(value: Optional[str], fallback: float) -> float:
    if value is None:
        return fallback
    match = re.match(r"^\s*(-?\d+(?:\.\d+)?)", value)
    return float(match.group(1)) if match else fallback


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------


def substitute_markup(
    markup: str,
    fields: ResolvedFields,
    assets: ResolvedAssets,
    *,
    page_number: int = 1,
    total_pages: int = 1,
) -> SubstitutedMarkup:
    """
    Materialize every placeholder in an SVG document.

    Raises:
        SubstitutionError: if the markup cannot be parsed.
    """
    root = parse_markup(markup)
    warnings: List[str] = []
    scope = Scope(fields=fields).with_page(page_number, total_pages)

    pass_ = _MarkupPass(assets=assets, warnings=warnings)
    pass_.element(root, scope)

    svg = etree.tostring(root, encoding="unicode")
    if warnings:
        logger.info(
            "markup_substitution_warnings",
            extra={"warning_count": len(warnings)},
        )
    return SubstitutedMarkup(svg=svg, warnings=tuple(warnings))


# ----------------------------------------------------------------------
# Tree pass
# ----------------------------------------------------------------------


class _MarkupPass:
    def __init__(self, *, assets: ResolvedAssets, warnings: List[str]) -> None:
        self.assets = assets
        self.warnings = warnings

    def text(self, value: Optional[str], scope: Scope) -> Optional[str]:
        if not has_tokens(value):
            return value
        return substitute_text(value, scope, self.warnings)

    def element(self, el: etree._Element, scope: Scope) -> etree._Element:
        """Process ``el`` and return the node now standing in its place."""
        replacement = self.bind_asset(el)
        if replacement is not None:
            replacement.tail = el.tail
            parent = el.getparent()
            if parent is not None:
                parent.replace(el, replacement)
            return replacement

        for key, value in el.attrib.items():
            if has_tokens(value):
                el.set(key, self.text(value, scope))
        el.text = self.text(el.text, scope)
        self.children(el, scope)
        return el

    def children(self, parent: etree._Element, scope: Scope) -> None:
        for child in list(parent):
            if not isinstance(child.tag, str):
                child.tail = self.text(child.tail, scope)
                continue

            expr = child.get(REPEAT_ATTR)
            if expr is not None and not is_path(expr.strip()):
                self.warnings.append(
                    f"{SubstitutionError.kind}: malformed repeat {expr!r}"
                )
                _strip_repeat_attrs(child)
                expr = None

            if expr is None:
                node = self.element(child, scope)
                node.tail = self.text(node.tail, scope)
                continue

            self.repeat(parent, child, expr.strip(), scope)

    def repeat(
        self,
        parent: etree._Element,
        template: etree._Element,
        expr: str,
        scope: Scope,
    ) -> None:
        items = repeat_items(expr, scope)
        name = path_head(expr)
        dx = _length(template.get(REPEAT_DX_ATTR), 0.0)
        dy = _length(template.get(REPEAT_DY_ATTR), 0.0)
        tail = self.text(template.tail, scope)
        position = parent.index(template)

        clones: List[etree._Element] = []
        for index, item in enumerate(items):
            clone = copy.deepcopy(template)
            _strip_repeat_attrs(clone)
            clone.tail = None
            if (dx or dy) and index:
                _translate(clone, dx * index, dy * index)
            clones.append(self.element(clone, scope.push(name, index, item)))

        parent.remove(template)

        if not clones:
            _append_text_at(parent, position, tail)
            return

        for offset, clone in enumerate(clones):
            is_last = offset == len(clones) - 1
            if is_last or (tail is not None and not tail.strip()):
                clone.tail = tail
            parent.insert(position + offset, clone)

    # ------------------------------------------------------------------
    # Asset binding
    # ------------------------------------------------------------------

    def bind_asset(self, el: etree._Element) -> Optional[etree._Element]:
        """
        Bind an image element in place, or return a placeholder to swap
        in. Returns None when the element is not an asset reference.
        """
        slot = el.get(ASSET_ATTR)
        href_attr = None
        if slot is None and etree.QName(el).localname == "image":
            for attr in ("href", XLINK_HREF):
                match = _SLOT_TOKEN_RE.match(el.get(attr) or "")
                if match and match.group(1) in self.assets:
                    slot, href_attr = match.group(1), attr
                    break
        if slot is None:
            return None

        slot = slot.strip()
        asset = self.assets.get(slot)
        if asset is None:
            if slot not in self.assets:
                self.warnings.append(f"Unknown asset slot '{slot}' in markup")
            return _placeholder_group(el, slot)

        if etree.QName(el).localname == "image":
            el.attrib.pop(ASSET_ATTR, None)
            el.set(href_attr or "href", asset.data_uri())
            return None

        image = el.makeelement(_qualified(el, "image"), {})
        for attr in ("x", "y", "width", "height", "transform", "id", "class"):
            if el.get(attr) is not None:
                image.set(attr, el.get(attr))
        image.set("href", asset.data_uri())
        image.set("preserveAspectRatio", "xMidYMid meet")
        return image


def _qualified(el: etree._Element, local: str) -> str:
    namespace = etree.QName(el).namespace
    return f"{{{namespace}}}{local}" if namespace else local


def _placeholder_group(el: etree._Element, slot: str) -> etree._Element:
    x = _length(el.get("x"), 0.0)
    y = _length(el.get("y"), 0.0)
    width = _length(el.get("width"), DEFAULT_IMAGE_SIZE)
    height = _length(el.get("height"), DEFAULT_IMAGE_SIZE)

    group = el.makeelement(_qualified(el, "g"), {"data-placeholder": slot})
    if el.get("transform"):
        group.set("transform", el.get("transform"))

    rect = etree.SubElement(group, _qualified(el, "rect"))
    rect.set("x", format_number(x))
    rect.set("y", format_number(y))
    rect.set("width", format_number(width))
    rect.set("height", format_number(height))
    rect.set("fill", PLACEHOLDER_FILL)
    rect.set("stroke", PLACEHOLDER_STROKE)
    rect.set("stroke-width", "2")
    rect.set("stroke-dasharray", "6 4")

    label = etree.SubElement(group, _qualified(el, "text"))
    label.set("x", format_number(x + width / 2))
    label.set("y", format_number(y + height / 2))
    label.set("text-anchor", "middle")
    label.set("dominant-baseline", "middle")
    label.set("font-family", "Helvetica, Arial, sans-serif")
    label.set("font-size", format_number(min(12.0, width / 10)))
    label.set("fill", PLACEHOLDER_LABEL)
    label.text = slot
    return group


def _strip_repeat_attrs(el: etree._Element) -> None:
    for attr in (REPEAT_ATTR, REPEAT_DX_ATTR, REPEAT_DY_ATTR):
        el.attrib.pop(attr, None)


def _translate(el: etree._Element, dx: float, dy: float) -> None:
    offset = f"translate({format_number(dx)},{format_number(dy)})"
    existing = el.get("transform")
    el.set("transform", f"{offset} {existing}" if existing else offset)


def _append_text_at(
    parent: etree._Element,
    position: int,
    text: Optional[str],
) -> None:
    if not text:
        return
    if position == 0:
        parent.text = (parent.text or "") + text
    else:
        sibling = parent[position - 1]
        sibling.tail = (sibling.tail or "") + text
