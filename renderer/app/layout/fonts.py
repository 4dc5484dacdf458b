"""
Font faces for flex layout.

A FontBook maps a style (``fontFamily`` + ``fontWeight``) to one face.
A face is either a built-in PDF font or a TrueType file registered with
reportlab; the same file is used to measure text, to draw it into PDFs
and to rasterize it with Pillow.

Lookup order:
1. a family declared by the template, nearest declared weight
2. the engine default faces (``font_path`` / ``bold_font_path``)
3. Helvetica / Helvetica-Bold, with Pillow's bundled font for rasters
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Union

from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont

from renderer.app.schemas.document import Style
from renderer.app.schemas.template import TemplateFont
from renderer.app.utils.hashing import sha256_hex

logger = logging.getLogger("renderer.layout")

NORMAL_WEIGHT = 400
BOLD_WEIGHT = 700

_WEIGHT_KEYWORDS = {"normal": NORMAL_WEIGHT, "regular": NORMAL_WEIGHT, "bold": BOLD_WEIGHT}

_registry_lock = threading.Lock()


@dataclass(frozen=True)
class FontFace:
    pdf_name: str
    path: Optional[str] = None


HELVETICA = FontFace("Helvetica")
HELVETICA_BOLD = FontFace("Helvetica-Bold")


def weight_value(weight: Union[None, int, str]) -> int:
    if weight is None:
        return NORMAL_WEIGHT
    if isinstance(weight, int):
        return weight
    text = str(weight).strip().lower()
    if text in _WEIGHT_KEYWORDS:
        return _WEIGHT_KEYWORDS[text]
    try:
        return int(text)
    except ValueError:
        return NORMAL_WEIGHT


def register_truetype(path: str) -> FontFace:
    """
    Register a TrueType file with reportlab (once per path).

    Raises:
        TTFError / OSError: the file is missing or not a usable font.
    """
    name = f"ttf-{sha256_hex(str(path).encode('utf-8'))[:12]}"
    with _registry_lock:
        if name not in pdfmetrics.getRegisteredFontNames():
            pdfmetrics.registerFont(TTFont(name, path))
    return FontFace(name, str(path))


@dataclass
class FontBook:
    regular: FontFace = HELVETICA
    bold: FontFace = HELVETICA_BOLD
    families: Dict[str, Dict[int, FontFace]] = field(default_factory=dict)
    missing: Set[str] = field(default_factory=set)

    @classmethod
    def from_paths(
        cls,
        font_path: Optional[str] = None,
        bold_font_path: Optional[str] = None,
    ) -> "FontBook":
        regular = register_truetype(font_path) if font_path else HELVETICA
        if bold_font_path:
            bold = register_truetype(bold_font_path)
        else:
            bold = regular if font_path else HELVETICA_BOLD
        return cls(regular=regular, bold=bold)

    def with_template_fonts(
        self,
        fonts: Sequence[TemplateFont],
        warnings: List[str],
    ) -> "FontBook":
        """A per-render copy extended with the template's families."""
        families = dict(self.families)
        for font in fonts:
            faces: Dict[int, FontFace] = {}
            for weight, path in font.weights.items():
                if not path:
                    warnings.append(
                        f"Font '{font.family}' weight {weight} has no file; "
                        "using the default face"
                    )
                    continue
                try:
                    faces[weight_value(weight)] = register_truetype(path)
                except (TTFError, OSError) as exc:
                    logger.warning(
                        "template_font_unusable",
                        extra={"family": font.family, "path": path, "error": str(exc)},
                    )
                    warnings.append(
                        f"Font '{font.family}' weight {weight} is unusable: {exc}"
                    )
            if faces:
                families[_family_key(font.family)] = faces
        return FontBook(regular=self.regular, bold=self.bold, families=families)

    def face(self, style: Style) -> FontFace:
        if style.font_family:
            faces = self.families.get(_family_key(style.font_family))
            if faces:
                wanted = weight_value(style.font_weight)
                return faces[min(faces, key=lambda w: (abs(w - wanted), w))]
            self.missing.add(style.font_family)
        return self.bold if style.is_bold else self.regular

    def missing_family_warnings(self) -> List[str]:
        return [
            f"Font family '{family}' is not available; using the default face"
            for family in sorted(self.missing)
        ]


def _family_key(family: str) -> str:
    return family.strip().lower()
