import time

import pytest

from renderer.app.services.markup_raster import CairoSvgRasterizer, raster_options
from renderer.app.services.pdf_postprocess import count_pages, normalize_pdf
from renderer.tests.fixtures.images import png_size

SVG_NS = 'xmlns="http://www.w3.org/2000/svg"'


def _svg(width: str, height: str, view_box: str) -> bytes:
    return (
        f'<svg {SVG_NS} width="{width}" height="{height}" viewBox="{view_box}">'
        f'<rect x="0" y="0" width="10" height="10" fill="#c00"/>'
        f"<text x=\"1\" y=\"8\">13W</text></svg>"
    ).encode()


@pytest.mark.parametrize(
    "width, expected",
    [
        ("210mm", {"dpi": 300}),
        ("8.5in", {"dpi": 300}),
        ("595pt", {"dpi": 300}),
        ("400px", {"scale": 300 / 96}),
        ("400", {"scale": 300 / 96}),
        ("100%", {"scale": 300 / 96}),
    ],
)
def test_raster_options_pick_one_resolution_knob(width, expected):
    assert raster_options(_svg(width, "10", "0 0 10 10"), 300) == expected


def test_millimetre_sized_markup_is_not_scaled_twice():
    svg = _svg("25.4mm", "12.7mm", "0 0 20 10")

    png = CairoSvgRasterizer().to_png(svg, 300)

    assert png_size(png) == ("PNG", (300, 150))


def test_pixel_sized_markup_scales_with_resolution():
    svg = _svg("100", "50", "0 0 20 10")

    png = CairoSvgRasterizer().to_png(svg, 192)

    assert png_size(png) == ("PNG", (200, 100))


def test_normalized_cairo_pdf_is_reproducible():
    rasterizer = CairoSvgRasterizer()
    svg = _svg("100", "50", "0 0 20 10")

    first = normalize_pdf(rasterizer.to_pdf(svg))
    time.sleep(1.1)
    second = normalize_pdf(rasterizer.to_pdf(svg))

    assert first == second
    assert count_pages(first) == 1
