"""
Remote job script rendering.

Builds the ExtendScript program the remote desktop-publishing runtime
executes for one render. The program:

1. opens ``jobFolder/input.idml``
2. applies field substitutions with the runtime's native find/change
   (one literal pair per token found in the package), then clears any
   leftover ``{{...}}`` token
3. places every present asset: named rectangle, then XML tag, then the
   first empty unnamed rectangle
4. styles the frames of absent slots as placeholder boxes
5. exports PDF (``[High Quality Print]`` preset, default export as
   fallback) or a PNG of the first page, and closes without saving

Values are injected with ``tojson`` only; nothing from field data is
spliced into the program as code.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from renderer.app.errors import SubstitutionError
from renderer.app.resolver.fields import ResolvedFields
from renderer.app.schemas.document import PX_TO_PT
from renderer.app.schemas.render import OutputKind
from renderer.app.substitution.markup import (
    PLACEHOLDER_FILL,
    PLACEHOLDER_LABEL,
    PLACEHOLDER_STROKE,
)
from renderer.app.substitution.placeholders import (
    Scope,
    format_value,
    lookup,
    malformed_warning,
    parse_token,
)

TEMPLATE_ROOT = Path(__file__).resolve().parent / "templates"
JOB_SCRIPT_TEMPLATE = "job_script.jsx.jinja"

JOB_FOLDER = "jobFolder"
INPUT_PATH = f"{JOB_FOLDER}/input.idml"
PDF_PRESET = "[High Quality Print]"

PLACEHOLDER_STROKE_PX = 2.0


def output_path(output_kind: OutputKind) -> str:
    extension = "png" if output_kind is OutputKind.RASTER else "pdf"
    return f"{JOB_FOLDER}/output.{extension}"


def asset_path(slot: str, extension: str) -> str:
    return f"{JOB_FOLDER}/assets/{slot}.{extension}"


@dataclass(frozen=True)
class AssetBinding:
    slot: str
    path: str


_env = Environment(
    loader=FileSystemLoader(TEMPLATE_ROOT),
    variable_start_string="{=",
    variable_end_string="=}",
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


# ----------------------------------------------------------------------
# Field replacements
# ----------------------------------------------------------------------


def _escape_change_text(text: str) -> str:
    # ``^`` starts a metacharacter in the runtime's change-to text.
    escaped = text.replace("^", "^^")
    return escaped.replace("\r\n", "\n").replace("\n", "^n")


def build_replacements(
    tokens: Sequence[str],
    fields: ResolvedFields,
    warnings: List[str],
) -> List[Tuple[str, str]]:
    """
    One ``(find, change)`` pair per distinct value token.

    Tokens resolve with the shared grammar, so indexed and member
    tokens expand here. Block and malformed tokens get no pair and are
    cleared by the script's leftover pass.
    """
    scope = Scope(fields=fields)
    pairs: List[Tuple[str, str]] = []
    for raw in tokens:
        token = parse_token(raw, raw[2:-2])
        if token.kind == "malformed":
            warnings.append(malformed_warning(raw))
            continue
        if token.kind != "value":
            warnings.append(
                f"{SubstitutionError.kind}: inline blocks are not supported "
                f"in packages {raw!r}"
            )
            continue
        text = format_value(lookup(token.expr, scope), fields.separator)
        if not text and token.default is not None:
            text = token.default
        pairs.append((raw, _escape_change_text(text)))
    return pairs


# ----------------------------------------------------------------------
# Script
# ----------------------------------------------------------------------


def _rgb(hex_color: str) -> List[int]:
    value = hex_color.lstrip("#")
    return [int(value[i:i + 2], 16) for i in (0, 2, 4)]


def render_job_script(
    *,
    replacements: Sequence[Tuple[str, str]],
    assets: Sequence[AssetBinding],
    absent_slots: Sequence[str],
    output_kind: OutputKind,
    resolution: Optional[int] = None,
) -> str:
    template = _env.get_template(JOB_SCRIPT_TEMPLATE)
    return template.render(
        input_path=INPUT_PATH,
        output_path=output_path(output_kind),
        replacements=[list(pair) for pair in replacements],
        assets=[{"slot": a.slot, "path": a.path} for a in assets],
        absent_slots=list(absent_slots),
        placeholder={
            "fill": _rgb(PLACEHOLDER_FILL),
            "border": _rgb(PLACEHOLDER_STROKE),
            "label": _rgb(PLACEHOLDER_LABEL),
            "stroke_weight": PLACEHOLDER_STROKE_PX * PX_TO_PT,
        },
        output_kind=output_kind.value,
        resolution=resolution or 96,
        pdf_preset=PDF_PRESET,
    )
