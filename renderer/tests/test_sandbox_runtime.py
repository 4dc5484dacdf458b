import pytest

from renderer.app.errors import SandboxRuntimeError, SandboxTimeout
from renderer.app.sandbox.compiler import compile_template
from renderer.app.sandbox.runtime import invoke_template
from renderer.app.schemas.document import DocumentSpec, TextNode, ViewNode
from renderer.tests.fixtures.templates import COMPONENT_SOURCE


def _invoke(source, fields=None, assets=None, *, timeout_seconds=2.0, max_nodes=1000):
    compiled = compile_template(source)
    return invoke_template(
        compiled.code,
        fields or {},
        assets or {},
        timeout_seconds=timeout_seconds,
        max_nodes=max_nodes,
    )


def _source(body: str) -> str:
    return (
        "from pagekit import Document, Page, View, Text\n\n"
        "def render(fields, assets):\n"
        f"{body}\n"
    )


def test_template_builds_a_document_from_fields():
    spec = _invoke(
        COMPONENT_SOURCE,
        {"TITLE": "Lamps", "MODELS": ["A19", "BR30"]},
        {"PHOTO": None},
    )

    assert isinstance(spec, DocumentSpec)
    body = spec.pages[0].body
    assert body.style.flex_direction == "column"
    assert isinstance(body.children[0], TextNode)
    assert body.children[0].text == "Lamps"
    row = body.children[1]
    assert isinstance(row, ViewNode)
    assert [child.text for child in row.children] == ["A19", "BR30"]
    assert body.children[2].src is None
    assert body.children[2].asset == "PHOTO"


def test_template_cannot_mutate_caller_fields():
    fields = {"MODELS": ["A19"]}
    source = _source(
        "    fields['MODELS'].append('BR30')\n"
        "    return Document(Page(Text(len(fields['MODELS']))))"
    )

    spec = _invoke(source, fields)

    assert spec.pages[0].body.children[0].text == "2"
    assert fields == {"MODELS": ["A19"]}


def test_exception_in_template_is_a_runtime_error():
    with pytest.raises(SandboxRuntimeError, match="Template raised KeyError"):
        _invoke(_source("    return Document(Page(Text(fields['MISSING'])))"))


def test_template_may_handle_its_own_exceptions():
    source = _source(
        "    try:\n"
        "        value = fields['MISSING']\n"
        "    except KeyError:\n"
        "        value = 'n/a'\n"
        "    return Document(Page(Text(value)))"
    )

    assert _invoke(source).pages[0].body.children[0].text == "n/a"


def test_wrong_return_type_is_rejected():
    with pytest.raises(SandboxRuntimeError, match="must return a Document") as exc:
        _invoke(_source("    return {'pages': []}"))

    assert exc.value.details == {"returned": "dict"}


def test_endless_loop_hits_the_time_budget():
    source = _source(
        "    while True:\n"
        "        try:\n"
        "            pass\n"
        "        except Exception:\n"
        "            pass"
    )

    with pytest.raises(SandboxTimeout) as exc:
        _invoke(source, timeout_seconds=0.2)

    assert exc.value.kind == "SandboxRuntimeError"
    assert exc.value.details == {"timeout_seconds": 0.2}


def test_unbounded_recursion_is_reported():
    source = _source(
        "    return render(fields, assets)"
    )

    with pytest.raises(SandboxRuntimeError, match="recursed too deeply"):
        _invoke(source, timeout_seconds=30)


def test_oversized_tree_is_rejected():
    source = _source("    return Document(Page([Text(n) for n in range(50)]))")

    with pytest.raises(SandboxRuntimeError, match="too many boxes"):
        _invoke(source, max_nodes=10)


def test_safe_builtins_are_available():
    source = _source("    return Document(Page(Text(sorted(['b', 'a'])[0])))")

    assert _invoke(source).pages[0].body.children[0].text == "a"


def test_primitives_hand_out_opaque_handles():
    from renderer.app.sandbox.primitives import StyleSheet, Text, unwrap

    handle = Text("x", style={"fontSize": 9})

    assert [name for name in dir(handle) if not name.startswith("_")] == []
    assert isinstance(unwrap(handle), TextNode)
    assert StyleSheet.create({"title": {"fontSize": 24}}) == {"title": {"fontSize": 24.0}}


def test_template_only_sees_handles():
    source = _source(
        "    label = Text('x')\n"
        "    return Document(Page(Text(repr(label))))"
    )

    assert _invoke(source).pages[0].body.children[0].text == "<TextNode>"


def test_returning_a_page_is_not_a_document():
    with pytest.raises(SandboxRuntimeError, match="must return a Document") as exc:
        _invoke(_source("    return Page(Text('x'))"))

    assert exc.value.details == {"returned": "Element"}
