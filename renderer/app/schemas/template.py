"""
Template schema.

A Template binds together a public identifier, the declared fields and
asset slots, and exactly one format-specific payload. The payload is a
tagged union on ``format`` so that the engine dispatches on data rather
than on scattered conditionals.

Templates are owned by the template store and are immutable once a
render begins (all models here are frozen).
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Slot names become object-store keys and remote job paths.
SLOT_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"


class TemplateFormat(str, Enum):
    """
    Supported template representations.

    This enum is finite; adding a format requires adding a strategy.
    """

    COMPONENT_CODE = "component_code"
    VECTOR_MARKUP = "vector_markup"
    FLEX_DOCUMENT = "flex_document"
    DTP_PACKAGE = "dtp_package"


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    RECORD = "record"


class AssetKind(str, Enum):
    PHOTO = "photo"
    GRAPH = "graph"
    LOGO = "logo"


class FieldDefinition(BaseModel):
    """
    Declared template field.

    ``default`` is the template-supplied fallback used when the caller
    passes null or omits the field.
    """

    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: FieldType = FieldType.TEXT
    description: str = ""
    default: Optional[Any] = None
    optional: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")


class AssetSlotDefinition(BaseModel):
    name: str = Field(..., pattern=SLOT_NAME_PATTERN)
    required: bool = False
    kind: AssetKind = AssetKind.PHOTO
    description: str = ""

    model_config = ConfigDict(frozen=True, extra="forbid")


class TemplateFont(BaseModel):
    """
    A font family shipped with a template.

    ``weights`` maps a CSS weight (``"400"``, ``"700"``, ``"bold"``) to a
    TrueType file path; ``None`` marks a weight the template names but
    does not ship.
    """

    family: str = Field(..., min_length=1)
    weights: Dict[str, Optional[str]] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Format-specific payloads
# ---------------------------------------------------------------------------


class ComponentCodePayload(BaseModel):
    format: Literal["component_code"] = "component_code"
    source: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class VectorMarkupPayload(BaseModel):
    format: Literal["vector_markup"] = "vector_markup"
    markup: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class FlexDocumentPayload(BaseModel):
    """
    Raw page-tree JSON.

    Kept as a plain mapping here; the compositor validates it against
    DocumentSpec at render time so that a malformed tree surfaces as a
    LayoutError instead of a template-store failure.
    """

    format: Literal["flex_document"] = "flex_document"
    document: dict

    model_config = ConfigDict(frozen=True, extra="forbid")


class DtpPackagePayload(BaseModel):
    format: Literal["dtp_package"] = "dtp_package"
    package: bytes

    model_config = ConfigDict(frozen=True, extra="forbid")


TemplatePayload = Annotated[
    Union[
        ComponentCodePayload,
        VectorMarkupPayload,
        FlexDocumentPayload,
        DtpPackagePayload,
    ],
    Field(discriminator="format"),
]


class Template(BaseModel):
    """
    Declarative description of a stored template.
    """

    id: str = Field(..., min_length=1)
    name: str = ""
    fields: List[FieldDefinition] = Field(default_factory=list)
    asset_slots: List[AssetSlotDefinition] = Field(default_factory=list)
    fonts: List[TemplateFont] = Field(default_factory=list)
    payload: TemplatePayload

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def format(self) -> TemplateFormat:
        return TemplateFormat(self.payload.format)

    @model_validator(mode="after")
    def _names_are_unique(self) -> "Template":
        for label, names in (
            ("field", [f.name for f in self.fields]),
            ("asset slot", [s.name for s in self.asset_slots]),
        ):
            seen = set()
            for name in names:
                if name in seen:
                    raise ValueError(f"Duplicate {label} name '{name}'")
                seen.add(name)
        return self
