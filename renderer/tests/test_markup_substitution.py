import pytest
from lxml import etree

from renderer.app.errors import SubstitutionError
from renderer.app.resolver.assets import ResolvedAssets, normalize_image
from renderer.app.resolver.fields import ResolvedFields
from renderer.app.substitution.markup import (
    PLACEHOLDER_FILL,
    SVG_NS,
    substitute_markup,
)
from renderer.tests.fixtures.images import png_bytes
from renderer.tests.fixtures.templates import WATTAGE_MARKUP

NS = {"svg": SVG_NS}


def _fields(**values):
    return ResolvedFields(values=values)


def _render(markup, fields, assets=None):
    result = substitute_markup(markup, fields, assets or ResolvedAssets(assets={}))
    return etree.fromstring(result.svg.encode("utf-8")), result.warnings


def _svg(body: str) -> str:
    return f'<svg xmlns="{SVG_NS}" xmlns:xlink="http://www.w3.org/1999/xlink">{body}</svg>'


def test_text_run_reads_value_with_suffix():
    root, warnings = _render(
        WATTAGE_MARKUP,
        _fields(WATTAGE="13", MODELS=["A19", "BR30"]),
        ResolvedAssets(assets={"PHOTO": None}),
    )

    texts = [t.text for t in root.iterfind(".//svg:text", NS)]
    assert texts[0] == "13W"
    assert warnings == ()


def test_repeat_clones_in_list_order_with_offsets():
    root, _ = _render(
        WATTAGE_MARKUP,
        _fields(WATTAGE="13", MODELS=["A19", "BR30"]),
        ResolvedAssets(assets={"PHOTO": None}),
    )

    groups = root.findall("svg:g", NS)
    clones = [g for g in groups if g.get("data-placeholder") is None]
    assert [g.find("svg:text", NS).text for g in clones] == ["A19", "BR30"]
    assert clones[0].get("transform") is None
    assert clones[1].get("transform") == "translate(0,20)"
    assert all(g.get("data-repeat") is None for g in clones)


def test_three_element_repeat_yields_three_clauses():
    markup = _svg('<text data-repeat="ITEMS">- {{.}}</text><text>end</text>')

    root, _ = _render(markup, _fields(ITEMS=["one", "two", "three"]))

    texts = [t.text for t in root.iterfind("svg:text", NS)]
    assert texts == ["- one", "- two", "- three", "end"]


def test_empty_repeat_removes_the_clause():
    markup = _svg('<text data-repeat="ITEMS">{{.}}</text><text>end</text>')

    root, _ = _render(markup, _fields(ITEMS=[]))

    assert [t.text for t in root.iterfind("svg:text", NS)] == ["end"]


def test_attributes_are_substituted():
    markup = _svg('<rect width="{{W}}" height="10" fill="{{COLOR:#000}}"/>')

    root, _ = _render(markup, _fields(W="42"))

    rect = root.find("svg:rect", NS)
    assert rect.get("width") == "42"
    assert rect.get("fill") == "#000"


def test_absent_asset_becomes_placeholder_with_declared_geometry():
    root, _ = _render(
        WATTAGE_MARKUP,
        _fields(WATTAGE="13", MODELS=[]),
        ResolvedAssets(assets={"PHOTO": None}),
    )

    group = root.find("svg:g[@data-placeholder='PHOTO']", NS)
    assert group is not None
    rect = group.find("svg:rect", NS)
    assert (rect.get("x"), rect.get("y"), rect.get("width"), rect.get("height")) == (
        "100",
        "10",
        "80",
        "60",
    )
    assert rect.get("fill") == PLACEHOLDER_FILL
    assert group.find("svg:text", NS).text == "PHOTO"
    assert root.find("svg:image", NS) is None


def test_present_asset_binds_as_data_uri():
    asset = normalize_image(png_bytes())
    markup = _svg('<image href="{{PHOTO}}" x="0" y="0" width="10" height="10"/>')

    root, _ = _render(markup, _fields(), ResolvedAssets(assets={"PHOTO": asset}))

    image = root.find("svg:image", NS)
    assert image.get("href").startswith("data:image/png;base64,")


def test_unknown_asset_slot_warns_and_placeholds():
    markup = _svg('<rect data-asset="BADGE" width="20" height="20"/>')

    root, warnings = _render(markup, _fields())

    assert root.find("svg:g[@data-placeholder='BADGE']", NS) is not None
    assert warnings == ("Unknown asset slot 'BADGE' in markup",)


def test_no_literal_tokens_remain_for_declared_fields():
    result = substitute_markup(
        WATTAGE_MARKUP,
        _fields(WATTAGE="", MODELS=["x"]),
        ResolvedAssets(assets={"PHOTO": None}),
    )

    assert "{{" not in result.svg


def test_unparsable_markup_raises():
    with pytest.raises(SubstitutionError):
        substitute_markup("<svg><text>", _fields(), ResolvedAssets(assets={}))
