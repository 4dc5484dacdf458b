import io
from pathlib import Path

import anyio
import pikepdf
import reportlab
from reportlab.pdfbase import pdfmetrics

from renderer.app.engine import RenderEngine, render
from renderer.app.layout.compositor import FlexCompositor
from renderer.app.layout.flexbox import TextMetrics
from renderer.app.layout.fonts import HELVETICA, HELVETICA_BOLD, FontBook
from renderer.app.layout.paint import RasterPainter
from renderer.app.registry.store import InMemoryTemplateStore
from renderer.app.resolver.assets import ResolvedAssets
from renderer.app.resolver.fields import ResolvedFields
from renderer.app.schemas.document import PageSize, Style
from renderer.app.schemas.render import OutputKind
from renderer.app.schemas.template import TemplateFont
from renderer.tests.fixtures.templates import engine_settings, flex_template

FONT_DIR = Path(reportlab.__file__).parent / "fonts"
VERA = str(FONT_DIR / "Vera.ttf")
VERA_BOLD = str(FONT_DIR / "VeraBd.ttf")

VERA_FAMILY = TemplateFont(family="Vera", weights={"400": VERA, "700": VERA_BOLD})


def _book(*fonts, warnings=None):
    return FontBook().with_template_fonts(fonts, warnings if warnings is not None else [])


def _document(style):
    return {
        "pageSize": {"width": 300, "height": 100},
        "pages": [{"body": {"type": "text", "text": "13W lamp", "style": style}}],
    }


def _base_fonts(pdf_bytes):
    with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
        fonts = pdf.pages[0].Resources.Font
        return sorted(str(fonts[name].BaseFont) for name in fonts.keys())


def test_template_family_is_measured_with_its_own_file():
    metrics = TextMetrics(_book(VERA_FAMILY))
    style = Style(font_family="Vera", font_size=20)

    face = metrics.face(style)

    assert face.path == VERA
    assert metrics.width("Wattage", style) == pdfmetrics.stringWidth("Wattage", face.pdf_name, 20)
    assert metrics.width("Wattage", style) != pdfmetrics.stringWidth("Wattage", "Helvetica", 20)


def test_nearest_declared_weight_is_chosen():
    book = _book(VERA_FAMILY)

    assert book.face(Style(font_family="vera", font_weight=600)).path == VERA_BOLD
    assert book.face(Style(font_family="Vera", font_weight="bold")).path == VERA_BOLD
    assert book.face(Style(font_family="Vera", font_weight=300)).path == VERA


def test_engine_default_faces_come_from_configured_paths():
    book = FontBook.from_paths(VERA)

    assert book.face(Style()).path == VERA
    assert book.face(Style(font_weight="bold")).path == VERA
    assert FontBook.from_paths(VERA, VERA_BOLD).face(Style(font_weight=700)).path == VERA_BOLD
    assert FontBook().face(Style(font_weight=700)) == HELVETICA_BOLD


def test_pdf_embeds_the_template_font():
    composed = FlexCompositor().compose(
        _document({"fontFamily": "Vera"}),
        ResolvedFields(values={}),
        ResolvedAssets(assets={}),
        output_kind=OutputKind.DOCUMENT,
        fonts=[VERA_FAMILY],
    )

    assert composed.warnings == ()
    assert any("Vera" in name for name in _base_fonts(composed.output))


def test_raster_text_uses_the_measured_file():
    metrics = TextMetrics(_book(VERA_FAMILY))
    painter = RasterPainter(PageSize(width=100, height=100), 192, metrics=metrics)
    style = Style(font_family="Vera", font_weight=700)

    font = painter._font(metrics.face(style), 10)

    assert font.path == VERA_BOLD
    assert font.size == 20


def test_missing_fonts_fall_back_with_warnings():
    warnings = []
    book = _book(
        TemplateFont(family="Brand", weights={"400": None}),
        TemplateFont(family="Broken", weights={"400": str(FONT_DIR / "missing.ttf")}),
        warnings=warnings,
    )

    assert book.face(Style(font_family="Brand")) == HELVETICA
    assert warnings[0] == "Font 'Brand' weight 400 has no file; using the default face"
    assert warnings[1].startswith("Font 'Broken' weight 400 is unusable")
    assert book.missing_family_warnings() == [
        "Font family 'Brand' is not available; using the default face"
    ]


def test_undeclared_family_is_reported_by_the_render():
    engine = RenderEngine(
        templates=InMemoryTemplateStore(
            [flex_template(_document({"fontFamily": "Inter"}), fonts=[VERA_FAMILY])]
        ),
        settings=engine_settings(),
    )

    async def main():
        return await render(engine, "flyer", None, {}, {})

    result = anyio.run(main)

    assert result.ok, result.error
    assert "Font family 'Inter' is not available; using the default face" in result.warnings
