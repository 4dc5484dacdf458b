"""
Dynamic template runtime.

Executes a compiled template inside a capability-restricted namespace:

- globals expose only the ``pagekit`` primitives
- ``__builtins__`` is a curated table (no open, __import__, getattr,
  eval, exec, compile, type, vars, globals, ...)
- fields and assets are deep copies; the template cannot mutate the
  caller's data

Budget:
- a per-thread trace hook enforces the wall-clock budget; it raises on
  every traced event once the deadline passes, so a template cannot
  catch its way past it
- the returned tree may not exceed the configured number of boxes

This is a blocking function. The engine calls it inside a dedicated
worker process (see ``worker.py``); the trace hook is the inner guard,
the process deadline and resource limits are the outer one.
"""

from __future__ import annotations

import builtins
import copy
import logging
import sys
import time
from types import CodeType
from typing import Any, Dict, Mapping, Optional

from renderer.app.errors import SandboxRuntimeError, SandboxTimeout
from renderer.app.sandbox.primitives import PRIMITIVES, unwrap_document
from renderer.app.schemas.document import DocumentSpec, count_nodes

logger = logging.getLogger("renderer.sandbox")

_SAFE_BUILTIN_NAMES = (
    "abs",
    "all",
    "any",
    "bool",
    "chr",
    "dict",
    "divmod",
    "enumerate",
    "filter",
    "float",
    "frozenset",
    "int",
    "isinstance",
    "len",
    "list",
    "map",
    "max",
    "min",
    "ord",
    "range",
    "repr",
    "reversed",
    "round",
    "set",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "Exception",
    "ArithmeticError",
    "IndexError",
    "KeyError",
    "LookupError",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)

SAFE_BUILTINS: Dict[str, Any] = {
    name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES
}


class _BudgetExceeded(BaseException):
    """Raised from the trace hook; not catchable as Exception."""


def _deadline_tracer(deadline: float):
    def tracer(frame, event, arg):
        if time.monotonic() > deadline:
            raise _BudgetExceeded()
        return tracer

    return tracer


def invoke_template(
    code: CodeType,
    fields: Mapping[str, Any],
    assets: Mapping[str, Optional[str]],
    *,
    timeout_seconds: float,
    max_nodes: int,
) -> DocumentSpec:
    """
    Run module body and ``render(fields, assets)`` under the budget.

    Raises:
        SandboxTimeout: when the wall-clock budget is exceeded.
        SandboxRuntimeError: for any exception raised by the template,
            a missing ``render``, a wrong return type or an oversized tree.
    """
    namespace: Dict[str, Any] = dict(PRIMITIVES)
    namespace["__builtins__"] = dict(SAFE_BUILTINS)
    namespace["__name__"] = "template"

    fields_copy = copy.deepcopy(dict(fields))
    assets_copy = copy.deepcopy(dict(assets))

    started = time.monotonic()
    previous = sys.gettrace()
    sys.settrace(_deadline_tracer(started + timeout_seconds))
    try:
        exec(code, namespace)
        render = namespace.get("render")
        if not callable(render):
            raise SandboxRuntimeError("Template did not define a callable 'render'")
        result = render(fields_copy, assets_copy)
    except _BudgetExceeded as exc:
        raise SandboxTimeout(
            f"Template exceeded its {timeout_seconds:g}s budget",
            details={"timeout_seconds": timeout_seconds},
        ) from exc
    except SandboxRuntimeError:
        raise
    except RecursionError as exc:
        raise SandboxRuntimeError("Template recursed too deeply") from exc
    except Exception as exc:
        raise SandboxRuntimeError(
            f"Template raised {type(exc).__name__}: {exc}",
            details={"exception": type(exc).__name__},
        ) from exc
    finally:
        sys.settrace(previous)

    elapsed_ms = (time.monotonic() - started) * 1000
    logger.debug("template_invoked", extra={"elapsed_ms": round(elapsed_ms, 2)})

    spec = unwrap_document(result)
    if spec is None:
        raise SandboxRuntimeError(
            "render() must return a Document",
            details={"returned": type(result).__name__},
        )

    nodes = 0
    for page in spec.pages:
        nodes += count_nodes(page.body)
        for override in (page.header_override, page.footer_override):
            if override is not None:
                nodes += count_nodes(override)
    if nodes > max_nodes:
        raise SandboxRuntimeError(
            "Template returned too many boxes",
            details={"nodes": nodes, "max_nodes": max_nodes},
        )
    return spec
