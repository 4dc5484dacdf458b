from renderer.app.resolver.fields import ResolvedFields
from renderer.app.substitution.placeholders import (
    Scope,
    extract_placeholders,
    parse_token,
    substitute_text,
    tokenize,
)


def _scope(**values):
    return Scope(fields=ResolvedFields(values=values))


def _sub(text, scope):
    warnings = []
    return substitute_text(text, scope, warnings), warnings


def test_value_token_with_suffix():
    text, warnings = _sub("{{WATTAGE}}W", _scope(WATTAGE="13"))

    assert text == "13W"
    assert warnings == []


def test_default_applies_only_to_empty_values():
    scope = _scope(COLOR="", SIZE="L")

    assert _sub("{{COLOR:white}}/{{SIZE:M}}", scope)[0] == "white/L"
    assert _sub("{{MISSING:n/a}}", scope)[0] == "n/a"


def test_indexed_and_member_tokens():
    scope = _scope(
        MODELS=["A19", "BR30"],
        SPECS={"beam": {"angle": "40"}},
        ROWS=[{"name": "Lamp", "qty": "2"}],
    )

    text, _ = _sub(
        "{{MODELS[1]}} {{MODELS[5]}}|{{SPECS.beam.angle}}|{{ROWS[0].name}}",
        scope,
    )

    assert text == "BR30 |40|Lamp"


def test_inline_block_repeats_in_order():
    scope = _scope(MODELS=["A19", "BR30", "PAR38"])

    text, warnings = _sub("{{#MODELS}}[{{@index}}:{{.}}]{{/MODELS}}", scope)

    assert text == "[0:A19][1:BR30][2:PAR38]"
    assert warnings == []


def test_current_element_and_record_members_in_blocks():
    scope = _scope(ROWS=[{"name": "Lamp"}, {"name": "Bulb"}], name="outer")

    text, _ = _sub("{{#ROWS}}{{ROWS[].name}}={{name}};{{/ROWS}}{{name}}", scope)

    assert text == "Lamp=Lamp;Bulb=Bulb;outer"


def test_arrays_join_with_the_separator():
    scope = Scope(fields=ResolvedFields(values={"MODELS": ["A19", "BR30"]}, separator=" | "))

    assert _sub("{{MODELS}}", scope)[0] == "A19 | BR30"


def test_page_variables():
    scope = _scope().with_page(2, 5)

    assert _sub("Page {{pageNumber}} of {{totalPages}}", scope)[0] == "Page 2 of 5"


def test_malformed_tokens_render_empty_with_warning():
    text, warnings = _sub("a{{ not valid! }}b{{/ORPHAN}}c{{#OPEN}}d", _scope())

    assert text == "abcd"
    assert len(warnings) == 3
    assert all(w.startswith("SubstitutionError:") for w in warnings)


def test_parse_token_kinds():
    assert parse_token("{{A}}", "A").kind == "value"
    assert parse_token("{{A:x}}", "A:x").default == "x"
    assert parse_token("{{#A}}", "#A").kind == "open"
    assert parse_token("{{/A}}", "/A").kind == "close"
    assert parse_token("{{1A}}", "1A").kind == "malformed"


def test_tokenize_keeps_literal_runs():
    segments = tokenize("x{{A}}y")

    assert segments[0] == "x"
    assert segments[1].expr == "A"
    assert segments[2] == "y"


def test_extract_placeholders_in_first_seen_order():
    names = extract_placeholders(
        "{{B}} {{A[0].x}} {{#C}}{{.}}{{@index}}{{/C}} {{B}} {{pageNumber}}"
    )

    assert names == ["B", "A", "C"]


def test_no_tokens_is_a_no_op():
    assert _sub("plain text", _scope())[0] == "plain text"
