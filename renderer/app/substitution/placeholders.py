"""
Placeholder token grammar shared by every template format.

Tokens:
    {{NAME}}              field value (arrays joined with the separator)
    {{NAME:default}}      field value, or the literal default when empty
    {{NAME[i]}}           i-th element of an array field
    {{NAME[i].FIELD}}     member of the i-th record element
    {{NAME[]}}            current element inside a repeat over NAME
    {{NAME[].FIELD}}      member of the current element
    {{NAME.FIELD}}        member of a record field (any depth)
    {{.}}  {{.FIELD}}     current element of the innermost repeat
    {{@index}}            zero-based index in the innermost repeat
    {{#NAME}}..{{/NAME}}  inline block repeated per element of NAME
    {{pageNumber}}, {{totalPages}}

Resolution rules:
- absent field, empty value or out-of-range index render as ""
- a malformed token renders as "" and adds a warning
- substitution never raises
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from renderer.app.errors import SubstitutionError
from renderer.app.resolver.fields import ResolvedFields, flatten

TOKEN_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)

_NAME = r"[A-Za-z_][A-Za-z0-9_]*"
_SEGMENTS = rf"(?:\[\d*\]|\.{_NAME})*"
_EXPR_RE = re.compile(
    rf"^(?:\.|@index|{_NAME}{_SEGMENTS}|\.{_NAME}{_SEGMENTS})$"
)
_BLOCK_RE = re.compile(rf"^([#/])\s*({_NAME}{_SEGMENTS})$")
_STEP_RE = re.compile(rf"\[(\d*)\]|\.({_NAME})")
_HEAD_RE = re.compile(_NAME)
_PATH_RE = re.compile(rf"^{_NAME}{_SEGMENTS}$")

PAGE_VARIABLES = ("pageNumber", "totalPages")


def is_path(expr: str) -> bool:
    return bool(_PATH_RE.match(expr))


def path_head(expr: str) -> str:
    return _HEAD_RE.match(expr).group(0)


# ----------------------------------------------------------------------
# Tokens
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    """
    One parsed ``{{...}}`` occurrence.

    kind is one of ``value``, ``open``, ``close`` or ``malformed``.
    """

    kind: str
    raw: str
    expr: str = ""
    default: Optional[str] = None


Segment = Union[str, Token]


def parse_token(raw: str, inner: str) -> Token:
    body = inner.strip()

    block = _BLOCK_RE.match(body)
    if block:
        kind = "open" if block.group(1) == "#" else "close"
        return Token(kind=kind, raw=raw, expr=block.group(2))

    expr, sep, default = body.partition(":")
    expr = expr.strip()
    if not _EXPR_RE.match(expr):
        return Token(kind="malformed", raw=raw)
    return Token(
        kind="value",
        raw=raw,
        expr=expr,
        default=default if sep else None,
    )


def tokenize(text: str) -> List[Segment]:
    """Split text into literal runs and tokens, in order."""
    segments: List[Segment] = []
    pos = 0
    for match in TOKEN_RE.finditer(text):
        if match.start() > pos:
            segments.append(text[pos:match.start()])
        segments.append(parse_token(match.group(0), match.group(1)))
        pos = match.end()
    if pos < len(text):
        segments.append(text[pos:])
    return segments


def has_tokens(text: Optional[str]) -> bool:
    return bool(text) and "{{" in text


def extract_placeholders(text: str) -> List[str]:
    """
    Field names referenced by value and block tokens, in first-seen
    order. Repeat-relative tokens (``{{.}}``, ``{{@index}}``) and page
    variables are not reported.
    """
    names: List[str] = []
    for segment in tokenize(text):
        if not isinstance(segment, Token) or segment.kind not in (
            "value",
            "open",
        ):
            continue
        head = _HEAD_RE.match(segment.expr)
        if head is None:
            continue
        name = head.group(0)
        if name in PAGE_VARIABLES or name in names:
            continue
        names.append(name)
    return names


# ----------------------------------------------------------------------
# Scope
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class RepeatFrame:
    name: str
    index: int
    item: Any


@dataclass(frozen=True)
class Scope:
    """
    Lookup context for one substitution.

    ``frames`` holds enclosing repeats, innermost last.
    """

    fields: ResolvedFields
    frames: Tuple[RepeatFrame, ...] = ()
    page_vars: Mapping[str, str] = field(default_factory=dict)

    def push(self, name: str, index: int, item: Any) -> "Scope":
        return Scope(
            fields=self.fields,
            frames=self.frames + (RepeatFrame(name, index, item),),
            page_vars=self.page_vars,
        )

    def with_page(self, page_number: int, total_pages: int) -> "Scope":
        return Scope(
            fields=self.fields,
            frames=self.frames,
            page_vars={
                "pageNumber": str(page_number),
                "totalPages": str(total_pages),
            },
        )

    @property
    def separator(self) -> str:
        return self.fields.separator


_MISSING = object()


def _walk(value: Any, steps: Sequence[Tuple[str, str]], scope: Scope, head: str) -> Any:
    for index_text, key in steps:
        if value is _MISSING or value is None:
            return _MISSING
        if key:
            if not isinstance(value, dict) or key not in value:
                return _MISSING
            value = value[key]
        elif index_text == "":
            # NAME[] : current element of the repeat over NAME
            frame = _frame_for(scope, head)
            if frame is None:
                return _MISSING
            value = frame.item
        else:
            if not isinstance(value, list):
                return _MISSING
            position = int(index_text)
            if position >= len(value):
                return _MISSING
            value = value[position]
    return value


def _frame_for(scope: Scope, name: str) -> Optional[RepeatFrame]:
    for frame in reversed(scope.frames):
        if frame.name == name:
            return frame
    return None


def lookup(expr: str, scope: Scope) -> Any:
    """
    Resolve a token expression. Returns ``None`` when nothing matches.
    """
    if expr == "@index":
        if not scope.frames:
            return None
        return str(scope.frames[-1].index)

    if expr.startswith("."):
        if not scope.frames:
            return None
        item = scope.frames[-1].item
        if expr == ".":
            return item
        steps = _STEP_RE.findall(expr)
        found = _walk(item, steps, scope, "")
        return None if found is _MISSING else found

    head_match = _HEAD_RE.match(expr)
    head = head_match.group(0)
    steps = _STEP_RE.findall(expr[head_match.end():])

    if steps and steps[0] == ("", ""):
        frame = _frame_for(scope, head)
        if frame is None:
            return None
        found = _walk(frame.item, steps[1:], scope, head)
        return None if found is _MISSING else found

    # Members of record elements shadow fields inside a repeat
    base: Any = _MISSING
    for frame in reversed(scope.frames):
        if isinstance(frame.item, dict) and head in frame.item:
            base = frame.item[head]
            break

    if base is _MISSING:
        if head in scope.fields:
            base = scope.fields.get(head)
        elif head in scope.page_vars:
            base = scope.page_vars[head]
        else:
            return None

    found = _walk(base, steps, scope, head)
    return None if found is _MISSING else found


def repeat_items(name: str, scope: Scope) -> List[Any]:
    """Elements a repeat over ``name`` iterates, in list order."""
    value = lookup(name, scope)
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def format_value(value: Any, separator: str = ", ") -> str:
    return flatten(value, separator)


# ----------------------------------------------------------------------
# Text substitution
# ----------------------------------------------------------------------


def malformed_warning(raw: str) -> str:
    return f"{SubstitutionError.kind}: malformed placeholder {raw!r}"


def substitute_text(text: str, scope: Scope, warnings: List[str]) -> str:
    """Replace every token in ``text``; inline blocks are expanded."""
    if not has_tokens(text):
        return text
    segments = tokenize(text)
    return "".join(_render(segments, scope, warnings))


def _render(
    segments: Sequence[Segment],
    scope: Scope,
    warnings: List[str],
) -> Iterator[str]:
    i = 0
    while i < len(segments):
        segment = segments[i]
        i += 1

        if isinstance(segment, str):
            yield segment
            continue

        if segment.kind == "value":
            text = format_value(lookup(segment.expr, scope), scope.separator)
            if text == "" and segment.default is not None:
                text = segment.default
            yield text
            continue

        if segment.kind == "open":
            end = _matching_close(segments, i, segment.expr)
            if end is None:
                warnings.append(
                    f"{SubstitutionError.kind}: unclosed block {segment.raw!r}"
                )
                continue
            body = segments[i:end]
            name = path_head(segment.expr)
            for index, item in enumerate(repeat_items(segment.expr, scope)):
                yield from _render(body, scope.push(name, index, item), warnings)
            i = end + 1
            continue

        if segment.kind == "close":
            warnings.append(
                f"{SubstitutionError.kind}: unmatched block end {segment.raw!r}"
            )
            continue

        warnings.append(malformed_warning(segment.raw))


def _matching_close(
    segments: Sequence[Segment],
    start: int,
    expr: str,
) -> Optional[int]:
    depth = 0
    for position in range(start, len(segments)):
        segment = segments[position]
        if not isinstance(segment, Token) or segment.expr != expr:
            continue
        if segment.kind == "open":
            depth += 1
        elif segment.kind == "close":
            if depth == 0:
                return position
            depth -= 1
    return None
