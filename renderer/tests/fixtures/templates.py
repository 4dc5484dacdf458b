import io
from typing import List

import pikepdf
from PIL import Image

from renderer.app.core.config import EngineSettings
from renderer.app.schemas.template import (
    AssetSlotDefinition,
    ComponentCodePayload,
    DtpPackagePayload,
    FieldDefinition,
    FieldType,
    FlexDocumentPayload,
    Template,
    VectorMarkupPayload,
)


def engine_settings(**overrides) -> EngineSettings:
    """Settings for tests: fast polling, fake credentials, no env file."""
    values = dict(
        runscript_api_key="test-key",
        runscript_api_secret="test-secret",
        poll_interval_seconds=0,
        poll_max_attempts=3,
        artifact_settle_seconds=0,
        sandbox_timeout_seconds=2.0,
        _env_file=None,
    )
    values.update(overrides)
    return EngineSettings(**values)


def text_field(name: str, **kwargs) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.TEXT, **kwargs)


def array_field(name: str, **kwargs) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.ARRAY, **kwargs)


def slot(name: str, **kwargs) -> AssetSlotDefinition:
    return AssetSlotDefinition(name=name, **kwargs)


# ------------------------------------------------------------------
# One template per format
# ------------------------------------------------------------------

WATTAGE_MARKUP = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="200" height="100">'
    '<text x="10" y="20">{{WATTAGE}}W</text>'
    '<g data-repeat="MODELS" data-repeat-dy="20">'
    '<text x="10" y="40">{{MODELS[]}}</text>'
    "</g>"
    '<image data-asset="PHOTO" x="100" y="10" width="80" height="60"/>'
    "</svg>"
)


def markup_template(markup: str = WATTAGE_MARKUP, template_id: str = "spec-sheet") -> Template:
    return Template(
        id=template_id,
        name="Spec sheet",
        fields=[text_field("WATTAGE"), array_field("MODELS")],
        asset_slots=[slot("PHOTO")],
        payload=VectorMarkupPayload(markup=markup),
    )


def flex_document(**overrides) -> dict:
    document = {
        "pageSize": {"width": 400, "height": 300},
        "footer": {
            "height": 30,
            "content": {"type": "text", "text": "Page {{pageNumber}} of {{totalPages}}"},
        },
        "pages": [
            {
                "body": {
                    "type": "view",
                    "style": {"flexDirection": "column", "padding": 10},
                    "children": [
                        {"type": "text", "text": "{{TITLE}}", "style": {"fontSize": 20}},
                        {
                            "type": "text",
                            "repeat": "MODELS",
                            "text": "Model {{@index}}: {{MODELS[]}}",
                        },
                        {
                            "type": "image",
                            "asset": "PHOTO",
                            "style": {"width": 120, "height": 80},
                        },
                    ],
                }
            },
            {"body": {"type": "text", "text": "Second page"}},
        ],
    }
    document.update(overrides)
    return document


def flex_template(document: dict = None, template_id: str = "flyer", fonts=()) -> Template:
    return Template(
        id=template_id,
        name="Flyer",
        fields=[text_field("TITLE"), array_field("MODELS")],
        asset_slots=[slot("PHOTO")],
        fonts=list(fonts),
        payload=FlexDocumentPayload(document=document or flex_document()),
    )


COMPONENT_SOURCE = '''
from pagekit import Document, Page, View, Text, Image, StyleSheet

styles = StyleSheet.create({
    "title": {"fontSize": 24, "fontWeight": "bold"},
    "row": {"flexDirection": "row", "gap": 8},
})


def render(fields, assets):
    models = [Text(model) for model in fields["MODELS"]]
    return Document(
        Page(
            Text(fields["TITLE"], style=styles["title"]),
            View(models, style=styles["row"]),
            Image(assets["PHOTO"], asset="PHOTO", style={"width": 120, "height": 80}),
        ),
        size={"width": 400, "height": 300},
    )
'''


def component_template(source: str = COMPONENT_SOURCE, template_id: str = "label") -> Template:
    return Template(
        id=template_id,
        name="Label",
        fields=[text_field("TITLE"), array_field("MODELS")],
        asset_slots=[slot("PHOTO")],
        payload=ComponentCodePayload(source=source),
    )


def package_template(package: bytes, template_id: str = "catalog") -> Template:
    return Template(
        id=template_id,
        name="Catalog page",
        fields=[text_field("WATTAGE"), array_field("MODELS")],
        asset_slots=[slot("PHOTO"), slot("LOGO")],
        payload=DtpPackagePayload(package=package),
    )


# ------------------------------------------------------------------
# Markup rasterizer double
# ------------------------------------------------------------------

class RecordingRasterizer:
    """Stands in for the SVG rasterizer and keeps every SVG it receives."""

    def __init__(self) -> None:
        self.svgs: List[bytes] = []

    def to_pdf(self, svg: bytes) -> bytes:
        self.svgs.append(svg)
        buffer = io.BytesIO()
        with pikepdf.new() as pdf:
            pdf.add_blank_page(page_size=(150, 75))
            pdf.save(buffer)
        return buffer.getvalue()

    def to_png(self, svg: bytes, dpi: int) -> bytes:
        self.svgs.append(svg)
        side = max(1, dpi // 12)
        buffer = io.BytesIO()
        Image.new("RGB", (side, side), (255, 255, 255)).save(buffer, format="PNG")
        return buffer.getvalue()
