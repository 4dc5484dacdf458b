"""
Flex document page tree.

A DocumentSpec is the payload of ``flex_document`` templates and the
return value of ``component_code`` templates. It is plain data: a page
size, optional repeating header and footer bands, and an ordered list of
pages each holding a body node tree.

Conventions:
- Geometry is expressed in CSS pixels at 96 DPI.
- Style keys use CSS camelCase names (``flexDirection``, ``flexGrow``).
- Lengths are numbers, ``"Npx"`` strings or ``"N%"`` strings.
- Unknown style keys are ignored; unknown node keys are rejected.
"""

from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Length = Union[int, float, str]


# ----------------------------------------------------------------------
# Page sizes
# ----------------------------------------------------------------------

NAMED_PAGE_SIZES: Dict[str, Tuple[int, int]] = {
    "A4": (794, 1123),
    "LETTER": (816, 1056),
    "LEGAL": (816, 1344),
}

# CSS px (1/96 in) to PDF points (1/72 in)
PX_TO_PT = 0.75


class PageSize(BaseModel):
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


# ----------------------------------------------------------------------
# Style
# ----------------------------------------------------------------------


class Style(BaseModel):
    """
    Subset of CSS understood by the layout engine.

    Defaults follow CSS flexbox (``flexDirection: row``,
    ``alignItems: stretch``, ``flexShrink: 1``).
    """

    # Flex container
    flex_direction: Literal[
        "row", "column", "row-reverse", "column-reverse"
    ] = "row"
    flex_wrap: Literal["nowrap", "wrap"] = "nowrap"
    justify_content: Literal[
        "flex-start",
        "flex-end",
        "center",
        "space-between",
        "space-around",
        "space-evenly",
    ] = "flex-start"
    align_items: Literal["stretch", "flex-start", "flex-end", "center"] = (
        "stretch"
    )
    gap: Optional[Length] = None
    row_gap: Optional[Length] = None
    column_gap: Optional[Length] = None

    # Flex item
    flex: Optional[float] = None
    flex_grow: Optional[float] = None
    flex_shrink: Optional[float] = None
    flex_basis: Optional[Length] = None
    align_self: Optional[
        Literal["auto", "stretch", "flex-start", "flex-end", "center"]
    ] = None

    # Box
    width: Optional[Length] = None
    height: Optional[Length] = None
    min_width: Optional[Length] = None
    min_height: Optional[Length] = None
    max_width: Optional[Length] = None
    max_height: Optional[Length] = None

    margin: Optional[Length] = None
    margin_top: Optional[Length] = None
    margin_right: Optional[Length] = None
    margin_bottom: Optional[Length] = None
    margin_left: Optional[Length] = None

    padding: Optional[Length] = None
    padding_top: Optional[Length] = None
    padding_right: Optional[Length] = None
    padding_bottom: Optional[Length] = None
    padding_left: Optional[Length] = None

    border_width: Optional[float] = None
    border_color: Optional[str] = None
    border_style: Literal["solid", "dashed"] = "solid"
    border_radius: Optional[float] = None

    background_color: Optional[str] = None

    # Text
    color: Optional[str] = None
    font_family: Optional[str] = None
    font_size: Optional[float] = None
    font_weight: Optional[Union[int, str]] = None
    line_height: Optional[float] = None
    text_align: Literal["left", "center", "right"] = "left"

    # Image
    object_fit: Literal["fill", "contain"] = "fill"

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @property
    def is_row(self) -> bool:
        return self.flex_direction.startswith("row")

    @property
    def is_reversed(self) -> bool:
        return self.flex_direction.endswith("-reverse")

    @property
    def is_bold(self) -> bool:
        weight = self.font_weight
        if weight is None:
            return False
        if isinstance(weight, int):
            return weight >= 600
        return weight in ("bold", "bolder") or (
            weight.isdigit() and int(weight) >= 600
        )


# ----------------------------------------------------------------------
# Nodes
# ----------------------------------------------------------------------


class _NodeBase(BaseModel):
    style: Style = Field(default_factory=Style)
    repeat: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class ViewNode(_NodeBase):
    type: Literal["view"] = "view"
    children: List["Node"] = Field(default_factory=list)


class TextNode(_NodeBase):
    type: Literal["text"] = "text"
    text: str = ""


class ImageNode(_NodeBase):
    """
    Image box.

    ``asset`` names an asset slot; ``src`` is an explicit data URI.
    A node whose image cannot be bound paints as a placeholder box.
    """

    type: Literal["image"] = "image"
    asset: Optional[str] = None
    src: Optional[str] = None


Node = Annotated[
    Union[ViewNode, TextNode, ImageNode],
    Field(discriminator="type"),
]

ViewNode.model_rebuild()


# ----------------------------------------------------------------------
# Document
# ----------------------------------------------------------------------


class BandSpec(BaseModel):
    """Repeating header or footer band."""

    height: float = Field(..., ge=0)
    content: Optional[Node] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class PageSpec(BaseModel):
    """
    One page.

    An override replaces the content of the repeating band on this page
    only; the band height is unchanged.
    """

    body: Node
    header_override: Optional[Node] = None
    footer_override: Optional[Node] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DocumentSpec(BaseModel):
    page_size: Union[Literal["A4", "LETTER", "LEGAL"], PageSize] = "A4"
    header: Optional[BandSpec] = None
    footer: Optional[BandSpec] = None
    pages: List[PageSpec] = Field(default_factory=list)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def page_dimensions(self) -> PageSize:
        if isinstance(self.page_size, str):
            width, height = NAMED_PAGE_SIZES[self.page_size]
            return PageSize(width=width, height=height)
        return self.page_size

    @property
    def header_height(self) -> float:
        return self.header.height if self.header else 0.0

    @property
    def footer_height(self) -> float:
        return self.footer.height if self.footer else 0.0


def count_nodes(node: Node) -> int:
    """Number of boxes in a node tree (the node itself included)."""
    if isinstance(node, ViewNode):
        return 1 + sum(count_nodes(child) for child in node.children)
    return 1
