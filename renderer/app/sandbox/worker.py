"""
Process isolation for dynamic templates.

Each invocation runs in a fresh interpreter:

    parent: marshal code + JSON inputs -> stdin
    child:  resource limits -> invoke_template -> JSON reply on stdout

The parent kills the child once ``timeout_seconds + grace_seconds`` has
passed, whatever the template is doing (including a single long C-level
call the in-process trace hook cannot interrupt). The child caps its own
CPU time and address space before any template code runs.

Only the JSON form of the returned DocumentSpec crosses back; nothing
the template built is shared with the host process.
"""

from __future__ import annotations

import base64
import json
import logging
import marshal
import math
import os
import signal
import sys
from pathlib import Path
from types import CodeType
from typing import Any, Dict, Mapping, Optional

import anyio

from renderer.app.errors import SandboxRuntimeError, SandboxTimeout
from renderer.app.schemas.document import DocumentSpec

logger = logging.getLogger("renderer.sandbox")

WORKER_MODULE = "renderer.app.sandbox.worker"

# renderer/app/sandbox/worker.py -> project root
_PROJECT_ROOT = Path(__file__).resolve().parents[3]

_KILL_SIGNALS = {-signal.SIGKILL, -signal.SIGXCPU}


def _timeout(timeout_seconds: float) -> SandboxTimeout:
    return SandboxTimeout(
        f"Template exceeded its {timeout_seconds:g}s budget",
        details={"timeout_seconds": timeout_seconds},
    )


def _worker_env() -> Dict[str, str]:
    env = os.environ.copy()
    existing = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = (
        f"{_PROJECT_ROOT}{os.pathsep}{existing}" if existing else str(_PROJECT_ROOT)
    )
    return env


# ----------------------------------------------------------------------
# Parent side
# ----------------------------------------------------------------------


async def invoke_isolated(
    code: CodeType,
    fields: Mapping[str, Any],
    assets: Mapping[str, Optional[str]],
    *,
    timeout_seconds: float,
    max_nodes: int,
    grace_seconds: float,
    memory_limit_mb: int,
) -> DocumentSpec:
    """
    Run a compiled template in a child process and return its document.

    Raises:
        SandboxTimeout: the template overran its budget or the child was
            killed at the hard deadline / CPU limit.
        SandboxRuntimeError: any other template or worker failure.
    """
    request = {
        "code": base64.b64encode(marshal.dumps(code)).decode("ascii"),
        "fields": dict(fields),
        "assets": dict(assets),
        "timeout_seconds": timeout_seconds,
        "max_nodes": max_nodes,
        "cpu_seconds": math.ceil(timeout_seconds + grace_seconds),
        "memory_bytes": memory_limit_mb * 1024 * 1024,
    }
    payload = json.dumps(request, default=str).encode("utf-8")

    completed = None
    with anyio.move_on_after(timeout_seconds + grace_seconds):
        completed = await anyio.run_process(
            [sys.executable, "-m", WORKER_MODULE],
            input=payload,
            check=False,
            env=_worker_env(),
        )

    if completed is None:
        logger.warning(
            "sandbox_worker_killed",
            extra={"timeout_seconds": timeout_seconds, "grace_seconds": grace_seconds},
        )
        raise _timeout(timeout_seconds)

    if completed.returncode in _KILL_SIGNALS:
        raise _timeout(timeout_seconds)

    try:
        reply = json.loads(completed.stdout)
    except ValueError:
        reply = None
    if completed.returncode != 0 or not isinstance(reply, dict):
        stderr = (completed.stderr or b"").decode("utf-8", errors="replace")
        logger.error(
            "sandbox_worker_failed",
            extra={"returncode": completed.returncode, "stderr": stderr[-2000:]},
        )
        raise SandboxRuntimeError(
            "Template worker exited without a result",
            details={"returncode": completed.returncode},
        )

    if not reply.get("ok"):
        if reply.get("timeout"):
            raise _timeout(timeout_seconds)
        raise SandboxRuntimeError(
            str(reply.get("message") or "Template failed"),
            details=reply.get("details") or {},
        )
    return DocumentSpec.model_validate(reply["document"])


# ----------------------------------------------------------------------
# Child side
# ----------------------------------------------------------------------


def _apply_limits(cpu_seconds: int, memory_bytes: int) -> None:
    import resource

    for limit, value in (
        (resource.RLIMIT_CPU, cpu_seconds),
        (resource.RLIMIT_AS, memory_bytes),
    ):
        _, hard = resource.getrlimit(limit)
        if hard != resource.RLIM_INFINITY:
            value = min(value, hard)
        resource.setrlimit(limit, (value, hard))


def main() -> None:
    from renderer.app.sandbox.runtime import invoke_template

    request = json.loads(sys.stdin.buffer.read())
    _apply_limits(request["cpu_seconds"], request["memory_bytes"])
    code = marshal.loads(base64.b64decode(request["code"]))

    try:
        spec = invoke_template(
            code,
            request["fields"],
            request["assets"],
            timeout_seconds=request["timeout_seconds"],
            max_nodes=request["max_nodes"],
        )
    except SandboxRuntimeError as exc:
        reply: Dict[str, Any] = {
            "ok": False,
            "timeout": isinstance(exc, SandboxTimeout),
            "message": exc.message,
            "details": exc.details,
        }
    else:
        reply = {
            "ok": True,
            "document": spec.model_dump(mode="json", by_alias=True, exclude_none=True),
        }

    sys.stdout.write(json.dumps(reply, default=str))
    sys.stdout.flush()


if __name__ == "__main__":
    main()
