import time

import anyio
import pytest

from renderer.app.errors import SandboxRuntimeError, SandboxTimeout
from renderer.app.sandbox.compiler import compile_template
from renderer.app.sandbox.worker import invoke_isolated
from renderer.app.schemas.document import DocumentSpec
from renderer.tests.fixtures.templates import COMPONENT_SOURCE


def _run(source, fields=None, assets=None, *, timeout_seconds=2.0, grace_seconds=2.0):
    compiled = compile_template(source)

    async def main():
        return await invoke_isolated(
            compiled.code,
            fields or {},
            assets or {},
            timeout_seconds=timeout_seconds,
            max_nodes=1000,
            grace_seconds=grace_seconds,
            memory_limit_mb=1024,
        )

    return anyio.run(main)


def _source(body: str) -> str:
    return (
        "from pagekit import Document, Page, Text\n\n"
        "def render(fields, assets):\n"
        f"{body}\n"
    )


def test_worker_returns_the_document():
    spec = _run(COMPONENT_SOURCE, {"TITLE": "Lamps", "MODELS": ["A19", "BR30"]}, {"PHOTO": None})

    assert isinstance(spec, DocumentSpec)
    assert spec.pages[0].body.children[0].text == "Lamps"
    assert spec.pages[0].body.children[0].style.font_size == 24
    assert [c.text for c in spec.pages[0].body.children[1].children] == ["A19", "BR30"]


def test_worker_reports_template_exceptions():
    with pytest.raises(SandboxRuntimeError, match="Template raised KeyError") as exc:
        _run(_source("    return Document(Page(Text(fields['MISSING'])))"))

    assert exc.value.details == {"exception": "KeyError"}


def test_long_builtin_call_is_killed_at_the_deadline():
    source = _source("    return Document(Page(Text(sum(range(10 ** 12)))))")

    started = time.monotonic()
    with pytest.raises(SandboxTimeout) as exc:
        _run(source, timeout_seconds=0.2, grace_seconds=1.0)
    elapsed = time.monotonic() - started

    assert exc.value.details == {"timeout_seconds": 0.2}
    assert elapsed < 10


def test_python_loop_is_stopped_by_the_inner_budget():
    source = _source("    while True:\n        pass")

    with pytest.raises(SandboxTimeout):
        _run(source, timeout_seconds=0.2, grace_seconds=5.0)


def test_cancelled_render_does_not_wait_for_the_worker():
    compiled = compile_template(_source("    return Document(Page(Text(sum(range(10 ** 12)))))"))

    async def main():
        with anyio.move_on_after(0.5):
            await invoke_isolated(
                compiled.code,
                {},
                {},
                timeout_seconds=30,
                max_nodes=1000,
                grace_seconds=30,
                memory_limit_mb=1024,
            )
        return "cancelled"

    started = time.monotonic()
    assert anyio.run(main) == "cancelled"
    assert time.monotonic() - started < 10
