"""
Node-tree substitution for flex documents.

Applies the shared placeholder grammar to a page tree before layout:

- ``repeat: "X"`` nodes expand to one copy per element of X, in order
- text runs and image sources are substituted
- an image whose ``src`` is exactly ``{{SLOT}}`` for a known asset slot
  is rebound to that slot

Substitution always completes before any layout or painting begins.
"""

from __future__ import annotations

import re
from typing import Collection, List

from renderer.app.errors import SubstitutionError
from renderer.app.schemas.document import ImageNode, Node, TextNode, ViewNode
from renderer.app.substitution.placeholders import (
    Scope,
    has_tokens,
    is_path,
    path_head,
    repeat_items,
    substitute_text,
)

_SLOT_TOKEN_RE = re.compile(r"^\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")


def expand_node(
    node: Node,
    scope: Scope,
    warnings: List[str],
    slots: Collection[str] = (),
) -> List[Node]:
    """Expand one node (and its subtree) into zero or more nodes."""
    if node.repeat is None:
        return [_materialize(node, scope, warnings, slots)]

    expr = node.repeat.strip()
    if not is_path(expr):
        warnings.append(f"{SubstitutionError.kind}: malformed repeat {expr!r}")
        return [_materialize(node, scope, warnings, slots)]

    name = path_head(expr)
    return [
        _materialize(node, scope.push(name, index, item), warnings, slots)
        for index, item in enumerate(repeat_items(expr, scope))
    ]


def substitute_root(
    node: Node,
    scope: Scope,
    warnings: List[str],
    slots: Collection[str] = (),
) -> Node:
    """
    Substitute a band or body root. A repeated root is wrapped in a
    column view so that the band always holds exactly one tree.
    """
    expanded = expand_node(node, scope, warnings, slots)
    if len(expanded) == 1:
        return expanded[0]
    return ViewNode(
        style={"flexDirection": "column"},
        children=expanded,
    )


def _materialize(
    node: Node,
    scope: Scope,
    warnings: List[str],
    slots: Collection[str],
) -> Node:
    if isinstance(node, TextNode):
        return node.model_copy(
            update={
                "text": substitute_text(node.text, scope, warnings),
                "repeat": None,
            }
        )

    if isinstance(node, ImageNode):
        asset, src = node.asset, node.src
        if src is not None:
            match = _SLOT_TOKEN_RE.match(src)
            if match and match.group(1) in slots:
                asset, src = match.group(1), None
            elif has_tokens(src):
                src = substitute_text(src, scope, warnings) or None
        if asset is not None and has_tokens(asset):
            asset = substitute_text(asset, scope, warnings).strip() or None
        return node.model_copy(
            update={"asset": asset, "src": src, "repeat": None}
        )

    children: List[Node] = []
    for child in node.children:
        children.extend(expand_node(child, scope, warnings, slots))
    return node.model_copy(update={"children": children, "repeat": None})
