import pytest

from renderer.app.errors import CompileError
from renderer.app.sandbox.compiler import CompileCache, compile_template, source_digest
from renderer.tests.fixtures.templates import COMPONENT_SOURCE


def _render_body(body: str, imports: str = "from pagekit import Document, Page, Text") -> str:
    return f"{imports}\n\ndef render(fields, assets):\n{body}\n"


def test_valid_source_compiles():
    compiled = compile_template(COMPONENT_SOURCE)

    assert compiled.digest == source_digest(COMPONENT_SOURCE)
    assert len(compiled.digest) == 64


@pytest.mark.parametrize(
    "source, message",
    [
        ("import os\n\ndef render(fields, assets):\n    return None\n", "Import of 'os'"),
        (_render_body("    return None", imports="from socket import socket"), "Import from 'socket'"),
        (_render_body("    return None", imports="from pagekit import Text as T"), "Aliased"),
        (_render_body("    return fields.__class__"), "Attribute '__class__'"),
        (_render_body("    return open('/etc/passwd')"), "Name 'open'"),
        (_render_body("    return __import__('os')"), "Name '__import__'"),
        (_render_body("    return eval('1')"), "Name 'eval'"),
        (_render_body("    return '{0.x}'.format(fields)"), "Attribute 'format'"),
        (_render_body("    return Text('x').parse_file('/etc/passwd')"), "Attribute 'parse_file'"),
        (
            _render_body("    return Text('x').parse_raw(b'', proto='pickle', allow_pickle=True)"),
            "Attribute 'parse_raw'",
        ),
        (_render_body("    return Text('x').model_dump()"), "Attribute 'model_dump'"),
        (_render_body("    return Text.construct"), "Attribute 'construct'"),
        (_render_body("    class X:\n        pass"), "Class definitions"),
        (_render_body("    global counter"), "global"),
        (_render_body("    with fields:\n        pass"), "with statements"),
        (_render_body("    try:\n        pass\n    except:\n        pass"), "Bare except"),
        ("def helper(fields, assets):\n    return None\n", "top-level 'render'"),
        ("def render(fields):\n    return None\n", "must accept (fields, assets)"),
    ],
)
def test_forbidden_source_is_rejected_at_compile_time(source, message):
    with pytest.raises(CompileError) as exc:
        compile_template(source)

    assert message in str(exc.value)


def test_syntax_error_reports_line_and_fragment():
    source = "from pagekit import Document\n\ndef render(fields, assets)\n    return 1\n"

    with pytest.raises(CompileError) as exc:
        compile_template(source)

    assert exc.value.lineno == 3
    assert exc.value.fragment == "def render(fields, assets)"
    assert "line 3" in str(exc.value)


def test_empty_source_is_rejected():
    with pytest.raises(CompileError):
        compile_template("   \n")


def test_nested_import_is_rejected():
    source = _render_body("    from pagekit import View\n    return None")

    with pytest.raises(CompileError, match="module level"):
        compile_template(source)


def test_cache_reuses_compiled_templates_by_content():
    cache = CompileCache(maxsize=2)

    first = cache.get(COMPONENT_SOURCE)
    second = cache.get(COMPONENT_SOURCE)

    assert first is second
    assert len(cache) == 1


def test_cache_evicts_least_recently_used():
    cache = CompileCache(maxsize=2)
    sources = [_render_body(f"    return {n}") for n in range(3)]

    entries = [cache.get(source) for source in sources]

    assert len(cache) == 2
    assert cache.get(sources[2]) is entries[2]
    assert cache.get(sources[0]) is not entries[0]


def test_compile_failures_are_not_cached():
    cache = CompileCache()

    with pytest.raises(CompileError):
        cache.get("import os")
    assert len(cache) == 0
