"""
The ``pagekit`` primitive module.

These are the only names a dynamic template may import. Each primitive
returns an opaque Element handle around validated DocumentSpec data.
Templates can nest and pass handles around but cannot reach the wrapped
models; the runtime unwraps the returned Document after ``render``
finishes.

    from pagekit import Document, Page, View, Text, Image, StyleSheet

    styles = StyleSheet.create({"title": {"fontSize": 24}})

    def render(fields, assets):
        return Document(
            Page(Text(fields["TITLE"], style=styles["title"])),
            size="A4",
        )
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from renderer.app.schemas.document import (
    BandSpec,
    DocumentSpec,
    ImageNode,
    PageSize,
    PageSpec,
    Style,
    TextNode,
    ViewNode,
)

PRIMITIVE_MODULE = "pagekit"

StyleInput = Union[None, Style, Mapping[str, Any], Iterable[Any]]

_BoxNode = (ViewNode, TextNode, ImageNode)


class Element:
    """
    Handle returned by every primitive.

    It has no public attributes; the wrapped model sits in an
    underscore slot, which template code cannot name.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Any) -> None:
        self._value = value

    def __repr__(self) -> str:
        return f"<{type(self._value).__name__}>"


def unwrap(value: Any) -> Any:
    return value._value if isinstance(value, Element) else value


def unwrap_document(value: Any) -> Optional[DocumentSpec]:
    """The DocumentSpec behind a Document handle, else None."""
    inner = unwrap(value)
    return inner if isinstance(inner, DocumentSpec) else None


def merge_styles(style: StyleInput) -> Style:
    """
    Accept a Style, a mapping of CSS camelCase keys, or a list of
    either (later entries win). ``None`` and ``False`` entries are
    skipped so that conditional styles read naturally.
    """
    if style is None or style is False:
        return Style()
    if isinstance(style, Style):
        return style
    if isinstance(style, Mapping):
        return Style.model_validate(dict(style))

    merged: Dict[str, Any] = {}
    for part in style:
        if part is None or part is False:
            continue
        if isinstance(part, Style):
            merged.update(part.model_dump(exclude_unset=True, by_alias=True))
        elif isinstance(part, Mapping):
            merged.update(part)
        else:
            raise TypeError(f"style entries must be mappings, got {type(part).__name__}")
    return Style.model_validate(merged)


def _flatten_children(children: Iterable[Any]) -> List[Any]:
    flat: List[Any] = []
    for child in children:
        if child is None or child is False:
            continue
        if isinstance(child, (list, tuple)):
            flat.extend(_flatten_children(child))
            continue
        inner = unwrap(child)
        if isinstance(inner, _BoxNode):
            flat.append(inner)
        elif isinstance(inner, (str, int, float)):
            flat.append(TextNode(text=str(inner)))
        else:
            raise TypeError(f"unsupported child of type {type(inner).__name__}")
    return flat


def _band(value: Any) -> Optional[ViewNode]:
    if value is None:
        return None
    inner = unwrap(value)
    if not isinstance(inner, ViewNode):
        raise TypeError("header and footer must be View values")
    return inner


# ----------------------------------------------------------------------
# Primitives
# ----------------------------------------------------------------------


def View(*children: Any, style: StyleInput = None) -> Element:
    return Element(
        ViewNode(style=merge_styles(style), children=_flatten_children(children))
    )


def Text(*parts: Any, style: StyleInput = None) -> Element:
    text = "".join("" if part is None else str(part) for part in parts)
    return Element(TextNode(text=text, style=merge_styles(style)))


def Image(
    src: Optional[str] = None,
    *,
    asset: Optional[str] = None,
    style: StyleInput = None,
) -> Element:
    """
    Image box. ``src`` is a data URI (usually ``assets[SLOT]``, which may
    be None); ``asset`` names the slot used for the placeholder label.
    """
    return Element(ImageNode(src=src or None, asset=asset, style=merge_styles(style)))


def Page(
    *children: Any,
    style: StyleInput = None,
    header: Any = None,
    footer: Any = None,
) -> Element:
    base = {"flexDirection": "column"}
    body = ViewNode(
        style=merge_styles([base, style] if style is not None else base),
        children=_flatten_children(children),
    )
    return Element(
        PageSpec(body=body, header_override=_band(header), footer_override=_band(footer))
    )


def Document(
    *pages: Any,
    size: Union[str, Mapping[str, float]] = "A4",
    header: Any = None,
    header_height: float = 0,
    footer: Any = None,
    footer_height: float = 0,
) -> Element:
    page_list: List[PageSpec] = []
    for page in pages:
        for item in page if isinstance(page, (list, tuple)) else (page,):
            inner = unwrap(item)
            if not isinstance(inner, PageSpec):
                raise TypeError("Document accepts Page values only")
            page_list.append(inner)

    header_view, footer_view = _band(header), _band(footer)
    page_size = size if isinstance(size, str) else PageSize(**dict(size))
    return Element(
        DocumentSpec(
            page_size=page_size,
            header=BandSpec(height=header_height, content=header_view) if header_view else None,
            footer=BandSpec(height=footer_height, content=footer_view) if footer_view else None,
            pages=page_list,
        )
    )


class StyleSheet:
    @staticmethod
    def create(styles: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Named styles as plain camelCase mappings."""
        return {
            str(name): merge_styles(value).model_dump(exclude_unset=True, by_alias=True)
            for name, value in styles.items()
        }


PRIMITIVES: Dict[str, Any] = {
    "Document": Document,
    "Page": Page,
    "View": View,
    "Text": Text,
    "Image": Image,
    "StyleSheet": StyleSheet,
}
