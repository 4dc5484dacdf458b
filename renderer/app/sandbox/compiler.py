"""
Dynamic template compiler.

Transforms author source into a code object that can only reach the
``pagekit`` primitives and a curated builtin table.

Transform rules (violations raise CompileError, nothing is executed):
- imports: only ``from pagekit import <primitive>`` without aliases
- rejected constructs: class definitions, async code, ``global`` /
  ``nonlocal``, ``with``, bare ``except``
- rejected names: anything starting with an underscore
- rejected attributes: underscore-prefixed names, string formatting
  entry points, frame / code introspection attributes and the model
  API of the schema classes (``parse_*``, ``model_*``, ``construct``, ...)
- a top-level ``def render(fields, assets)`` is required

Bind rule: every free name must be a primitive or a safe builtin.

Compiled templates are cached by the SHA-256 of their source.
"""

from __future__ import annotations

import ast
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from types import CodeType
from typing import Optional, Set

from renderer.app.errors import CompileError
from renderer.app.sandbox.primitives import PRIMITIVE_MODULE, PRIMITIVES
from renderer.app.sandbox.runtime import SAFE_BUILTINS
from renderer.app.utils.hashing import sha256_hex

logger = logging.getLogger("renderer.sandbox")

ENTRY_POINT = "render"

FORBIDDEN_ATTRIBUTES = frozenset(
    {
        "format",
        "format_map",
        "mro",
        "gi_frame",
        "gi_code",
        "gi_yieldfrom",
        "cr_frame",
        "cr_code",
        "cr_await",
        "ag_frame",
        "ag_code",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "tb_frame",
        "tb_next",
        "construct",
        "from_orm",
        "schema",
        "schema_json",
        "update_forward_refs",
        "validate",
    }
)

FORBIDDEN_ATTRIBUTE_PREFIXES = ("model_", "parse_")


@dataclass(frozen=True)
class CompiledTemplate:
    digest: str
    code: CodeType


def source_digest(source: str) -> str:
    return sha256_hex(source.encode("utf-8"))


def _fragment(source: str, lineno: Optional[int]) -> Optional[str]:
    if not lineno:
        return None
    lines = source.splitlines()
    if 0 < lineno <= len(lines):
        return lines[lineno - 1].strip()
    return None


# ----------------------------------------------------------------------
# AST validation
# ----------------------------------------------------------------------


class _Validator(ast.NodeVisitor):
    def __init__(self, source: str) -> None:
        self.source = source

    def fail(self, node: ast.AST, message: str) -> None:
        lineno = getattr(node, "lineno", None)
        raise CompileError(
            message,
            lineno=lineno,
            fragment=_fragment(self.source, lineno),
        )

    def _check_name(self, node: ast.AST, name: Optional[str]) -> None:
        if name and name.startswith("_"):
            self.fail(node, f"Name '{name}' is not allowed")

    # imports ----------------------------------------------------------

    def visit_Import(self, node: ast.Import) -> None:
        modules = ", ".join(alias.name for alias in node.names)
        self.fail(node, f"Import of '{modules}' is not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        if node.level or node.module != PRIMITIVE_MODULE:
            self.fail(node, f"Import from '{node.module}' is not allowed")
        for alias in node.names:
            if alias.name not in PRIMITIVES:
                self.fail(node, f"'{alias.name}' is not a {PRIMITIVE_MODULE} primitive")
            if alias.asname:
                self.fail(node, "Aliased imports are not allowed")

    # forbidden constructs ----------------------------------------------

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.fail(node, "Class definitions are not allowed")

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self.fail(node, "Async functions are not allowed")

    def visit_Await(self, node: ast.Await) -> None:
        self.fail(node, "await is not allowed")

    def visit_AsyncFor(self, node: ast.AsyncFor) -> None:
        self.fail(node, "async for is not allowed")

    def visit_AsyncWith(self, node: ast.AsyncWith) -> None:
        self.fail(node, "async with is not allowed")

    def visit_With(self, node: ast.With) -> None:
        self.fail(node, "with statements are not allowed")

    def visit_Global(self, node: ast.Global) -> None:
        self.fail(node, "global is not allowed")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self.fail(node, "nonlocal is not allowed")

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            self.fail(node, "Bare except is not allowed")
        self._check_name(node, node.name)
        self.generic_visit(node)

    # names -------------------------------------------------------------

    def visit_Name(self, node: ast.Name) -> None:
        self._check_name(node, node.id)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if (
            node.attr.startswith("_")
            or node.attr.startswith(FORBIDDEN_ATTRIBUTE_PREFIXES)
            or node.attr in FORBIDDEN_ATTRIBUTES
        ):
            self.fail(node, f"Attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._check_name(node, node.name)
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        self._check_name(node, node.arg)
        self.generic_visit(node)

    def visit_keyword(self, node: ast.keyword) -> None:
        self._check_name(node, node.arg)
        self.generic_visit(node)


def _check_entry_point(tree: ast.Module, source: str) -> None:
    for stmt in tree.body:
        if isinstance(stmt, ast.FunctionDef) and stmt.name == ENTRY_POINT:
            args = stmt.args
            positional = len(args.posonlyargs) + len(args.args)
            if positional < 2 and args.vararg is None:
                raise CompileError(
                    f"'{ENTRY_POINT}' must accept (fields, assets)",
                    lineno=stmt.lineno,
                    fragment=_fragment(source, stmt.lineno),
                )
            return
    raise CompileError(f"Template must define a top-level '{ENTRY_POINT}' function")


# ----------------------------------------------------------------------
# Bind-time name check
# ----------------------------------------------------------------------


def _bound_names(tree: ast.Module) -> Set[str]:
    bound: Set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
            bound.add(node.id)
        elif isinstance(node, ast.FunctionDef):
            bound.add(node.name)
        elif isinstance(node, ast.arg):
            bound.add(node.arg)
        elif isinstance(node, ast.ExceptHandler) and node.name:
            bound.add(node.name)
        elif isinstance(node, ast.alias):
            bound.add(node.asname or node.name)
    return bound


def check_free_names(tree: ast.Module, source: str) -> None:
    available = set(PRIMITIVES) | set(SAFE_BUILTINS)
    bound = _bound_names(tree)
    for node in ast.walk(tree):
        if not isinstance(node, ast.Name) or not isinstance(node.ctx, ast.Load):
            continue
        if node.id in bound or node.id in available:
            continue
        raise CompileError(
            f"Name '{node.id}' is not available to templates",
            lineno=node.lineno,
            fragment=_fragment(source, node.lineno),
        )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------


def compile_template(source: str) -> CompiledTemplate:
    """
    Transform and bind-check author source.

    Raises:
        CompileError: with the offending line and fragment.
    """
    if not isinstance(source, str) or not source.strip():
        raise CompileError("Template source is empty")

    try:
        tree = ast.parse(source, filename="<template>", mode="exec")
    except SyntaxError as exc:
        raise CompileError(
            f"Syntax error: {exc.msg}",
            lineno=exc.lineno,
            fragment=_fragment(source, exc.lineno),
        ) from exc

    _Validator(source).visit(tree)
    for node in ast.walk(tree):
        if isinstance(node, ast.ImportFrom) and node not in tree.body:
            raise CompileError(
                "Imports are only allowed at module level",
                lineno=node.lineno,
                fragment=_fragment(source, node.lineno),
            )
    _check_entry_point(tree, source)
    check_free_names(tree, source)

    tree.body = [stmt for stmt in tree.body if not isinstance(stmt, ast.ImportFrom)]
    digest = source_digest(source)
    code = compile(tree, f"<template:{digest[:12]}>", "exec")
    return CompiledTemplate(digest=digest, code=code)


class CompileCache:
    """
    Content-addressed LRU of compiled templates.

    Entries are immutable, so a hit can be shared between concurrent
    renders. Compile failures are not cached.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self.maxsize = maxsize
        self._entries: "OrderedDict[str, CompiledTemplate]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, source: str) -> CompiledTemplate:
        digest = source_digest(source)
        with self._lock:
            hit = self._entries.get(digest)
            if hit is not None:
                self._entries.move_to_end(digest)
                return hit

        compiled = compile_template(source)
        logger.debug("template_compiled", extra={"digest": digest})

        with self._lock:
            self._entries[digest] = compiled
            self._entries.move_to_end(digest)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)
        return compiled
