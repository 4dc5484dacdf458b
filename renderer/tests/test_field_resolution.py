import pytest

from renderer.app.errors import FieldResolutionError
from renderer.app.resolver.fields import flatten, resolve_fields
from renderer.app.schemas.template import FieldDefinition, FieldType


def _fields(*specs):
    return [FieldDefinition(name=name, type=kind, **extra) for name, kind, extra in specs]


def test_scalars_become_text():
    resolved = resolve_fields(
        {"WATTAGE": 13, "LUMENS": 800.0, "RATIO": 0.5, "DIMMABLE": True, "WET": False},
        _fields(
            ("WATTAGE", FieldType.NUMBER, {}),
            ("LUMENS", FieldType.NUMBER, {}),
            ("RATIO", FieldType.NUMBER, {}),
            ("DIMMABLE", FieldType.BOOLEAN, {}),
            ("WET", FieldType.BOOLEAN, {}),
        ),
    )

    assert resolved.values == {
        "WATTAGE": "13",
        "LUMENS": "800",
        "RATIO": "0.5",
        "DIMMABLE": "Yes",
        "WET": "No",
    }
    assert resolved.warnings == ()


def test_null_and_missing_fall_back_to_default_then_empty():
    resolved = resolve_fields(
        {"TITLE": None},
        _fields(
            ("TITLE", FieldType.TEXT, {"default": "Untitled"}),
            ("SUBTITLE", FieldType.TEXT, {}),
            ("MODELS", FieldType.ARRAY, {}),
            ("SPECS", FieldType.RECORD, {}),
        ),
    )

    assert resolved.get("TITLE") == "Untitled"
    assert resolved.get("SUBTITLE") == ""
    assert resolved.get("MODELS") == []
    assert resolved.get("SPECS") == {}


def test_array_field_wraps_a_scalar():
    resolved = resolve_fields({"MODELS": "A19"}, _fields(("MODELS", FieldType.ARRAY, {})))

    assert resolved.get("MODELS") == ["A19"]
    assert flatten(resolved.get("MODELS"), resolved.separator) == "A19"


def test_array_flattens_with_separator():
    resolved = resolve_fields(
        {"MODELS": ["A19", "BR30", 4]},
        _fields(("MODELS", FieldType.ARRAY, {})),
        separator=" / ",
    )

    assert resolved.get("MODELS") == ["A19", "BR30", "4"]
    assert flatten(resolved.get("MODELS"), resolved.separator) == "A19 / BR30 / 4"


def test_record_field_given_a_scalar_warns_and_degrades():
    resolved = resolve_fields({"SPECS": "oops"}, _fields(("SPECS", FieldType.RECORD, {})))

    assert resolved.get("SPECS") == "oops"
    assert resolved.warnings == (
        "FieldResolutionError: record field 'SPECS' received str",
    )


def test_text_field_given_a_record_renders_compact_json():
    resolved = resolve_fields(
        {"TITLE": {"en": "Lamp", "size": 2}},
        _fields(("TITLE", FieldType.TEXT, {})),
    )

    assert resolved.get("TITLE") == '{"en":"Lamp","size":"2"}'
    assert len(resolved.warnings) == 1
    assert resolved.warnings[0].startswith("FieldResolutionError:")


def test_undeclared_fields_pass_through_with_warning():
    resolved = resolve_fields({"EXTRA": 1.0}, [])

    assert "EXTRA" in resolved
    assert resolved.get("EXTRA") == "1"
    assert resolved.warnings == ("Undeclared field 'EXTRA' passed through",)


def test_non_mapping_field_values_are_rejected():
    with pytest.raises(FieldResolutionError) as exc:
        resolve_fields(["TITLE", "x"], [])

    assert exc.value.details == {"received": "list"}


def test_flatten_records_inside_arrays():
    assert flatten([{"a": "1"}, "b"], ", ") == '{"a":"1"}, b'
    assert flatten(None) == ""
