"""
Field value resolution.

Normalizes caller-supplied field values into render-ready primitives:

- scalars become text (integral floats lose their ``.0``, booleans
  become ``Yes`` / ``No``)
- arrays stay arrays and records stay records, canonicalized recursively
- null or missing values fall back to the declared default, else to the
  empty value of the declared type

Resolution never fails on a value shape. Shape mismatches are recorded
as warnings and the closest safe rendering is used instead.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from renderer.app.errors import FieldResolutionError
from renderer.app.schemas.template import FieldDefinition, FieldType

logger = logging.getLogger("renderer.resolver")


@dataclass(frozen=True)
class ResolvedFields:
    """
    Canonical field values for one render.

    ``values`` holds text, lists and dicts only. Consumers that need a
    single text run pass a value and ``separator`` to ``flatten``.
    """

    values: Dict[str, Any]
    separator: str = ", "
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)


# ----------------------------------------------------------------------
# Canonicalization
# ----------------------------------------------------------------------


def format_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def canonicalize(value: Any) -> Any:
    """Recursively convert a raw value into text, lists and dicts."""
    if isinstance(value, Mapping):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    return format_scalar(value)


def to_json_text(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def flatten(value: Any, separator: str = ", ") -> str:
    """Render a canonical value as one text run."""
    if value is None:
        return ""
    if isinstance(value, list):
        return separator.join(flatten(item, separator) for item in value)
    if isinstance(value, dict):
        return to_json_text(value)
    return str(value)


def _empty_value(field_type: FieldType) -> Any:
    if field_type is FieldType.ARRAY:
        return []
    if field_type is FieldType.RECORD:
        return {}
    return ""


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------


def resolve_fields(
    field_values: Any,
    definitions: Sequence[FieldDefinition],
    *,
    separator: str = ", ",
) -> ResolvedFields:
    """
    Resolve raw field values against the template's declarations.

    Raises:
        FieldResolutionError:
            Only when ``field_values`` is not a mapping at all.
    """
    if field_values is None:
        field_values = {}
    if not isinstance(field_values, Mapping):
        raise FieldResolutionError(
            "field_values must be a mapping of field name to value",
            details={"received": type(field_values).__name__},
        )

    warnings: List[str] = []
    values: Dict[str, Any] = {}
    declared = set()

    for definition in definitions:
        declared.add(definition.name)
        raw = field_values.get(definition.name)

        if raw is None:
            raw = definition.default
        if raw is None:
            values[definition.name] = _empty_value(definition.type)
            continue

        values[definition.name] = _coerce(definition, raw, warnings)

    for name, raw in field_values.items():
        key = str(name)
        if key in declared:
            continue
        warnings.append(f"Undeclared field '{key}' passed through")
        values[key] = canonicalize(raw)

    if warnings:
        logger.info(
            "field_resolution_warnings",
            extra={"warning_count": len(warnings)},
        )

    return ResolvedFields(
        values=values,
        separator=separator,
        warnings=tuple(warnings),
    )


def _coerce(
    definition: FieldDefinition,
    raw: Any,
    warnings: List[str],
) -> Any:
    field_type = definition.type

    if field_type is FieldType.ARRAY:
        if isinstance(raw, (list, tuple)):
            return canonicalize(raw)
        return [canonicalize(raw)]

    if field_type is FieldType.RECORD:
        if isinstance(raw, Mapping):
            return canonicalize(raw)
        warnings.append(
            f"{FieldResolutionError.kind}: record field "
            f"'{definition.name}' received {type(raw).__name__}"
        )
        return canonicalize(raw)

    # text / number / boolean
    if isinstance(raw, Mapping):
        warnings.append(
            f"{FieldResolutionError.kind}: field '{definition.name}' "
            f"of type {field_type.value} received a record"
        )
        return to_json_text(canonicalize(raw))

    return canonicalize(raw)
