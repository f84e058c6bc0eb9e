"""Decorator that records coroutine calls as runs.

Usage:
    @traceable
    async def pipeline(question): ...

    @traceable(run_type="tool", name="search")
    async def search(query): ...

Calls made inside a traced coroutine become children of its run; the active
tree is tracked in a ContextVar so concurrent tasks keep separate parents.
"""

from __future__ import annotations

import asyncio
import inspect
from contextvars import ContextVar
from dataclasses import asdict, is_dataclass
from functools import wraps
from typing import Any, Callable, Dict, Optional

from runtrace.client import Client
from runtrace.exceptions import RunTraceError, RunTreeStateError
from runtrace.run_trees import RunTree
from runtrace.utils.logger import get_logger

logger = get_logger(__name__)

_current_run_tree: ContextVar[Optional[RunTree]] = ContextVar("current_run_tree", default=None)

SECRET_REDACT_KEYS = {
    "apikey", "accesstoken", "refreshtoken", "clientsecret", "secret", "password",
    "authorization", "bearer", "cookie", "setcookie", "privatekey", "sshkey",
}


def get_current_run_tree() -> Optional[RunTree]:
    """The run of the innermost traced call on this task, if any."""
    return _current_run_tree.get()


def _is_secret(key: Any) -> bool:
    return str(key).lower().replace("_", "").replace("-", "") in SECRET_REDACT_KEYS


def _redact(val: Any) -> Any:
    """Replace values under secret-looking keys; convert dataclasses and models to dicts."""
    if isinstance(val, dict):
        return {k: ("<redacted>" if _is_secret(k) else _redact(v)) for k, v in val.items()}
    if isinstance(val, (list, tuple)):
        return [_redact(v) for v in val]
    if is_dataclass(val) and not isinstance(val, type):
        return _redact(asdict(val))
    if hasattr(val, "model_dump"):
        return _redact(val.model_dump())
    return val


def _capture_inputs(fn: Callable[..., Any], args: tuple, kwargs: dict) -> Dict[str, Any]:
    try:
        bound = inspect.signature(fn).bind_partial(*args, **kwargs)
    except TypeError:
        # Let the call itself raise the argument error
        return {"args": _redact(list(args)), **_redact(kwargs)}
    inputs: Dict[str, Any] = {}
    for name, value in bound.arguments.items():
        if name in {"self", "cls"}:
            continue
        inputs[name] = "<redacted>" if _is_secret(name) else _redact(value)
    return inputs


async def _settle(run: RunTree, op: str, task: Any) -> None:
    try:
        await task
    except RunTraceError as exc:
        # Tracing failures are reported, not raised into the traced call
        logger.warning("trace_sync_failed", op=op, run_id=str(run.id), error=str(exc))


def traceable(
    _fn: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    run_type: str = "chain",
    project_name: Optional[str] = None,
    client: Optional[Client] = None,
) -> Callable[..., Any]:
    """Record each call of a coroutine function as a run.

    - Run name defaults to the function's qualified name
    - Inputs come from the bound arguments, secrets redacted
    - Dict results are stored as the outputs, anything else as ``{"output": result}``
    - Exceptions are stored as the error text
    - The wrapped function's return value and exceptions pass through unchanged
    """

    def _decorate(fn: Callable[..., Any]) -> Callable[..., Any]:
        if not inspect.iscoroutinefunction(fn):
            raise TypeError(f"@traceable requires a coroutine function, got {fn!r}")
        run_name = name or getattr(fn, "__qualname__", fn.__name__)

        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            parent = _current_run_tree.get()
            inputs = _capture_inputs(fn, args, kwargs)
            run = None
            if parent is not None:
                try:
                    run = parent.create_child(run_name, run_type, inputs=inputs)
                except RunTreeStateError as exc:
                    # Parent already ended; record this call as a new root
                    logger.warning("trace_parent_ended", run_name=run_name, parent_run_id=str(parent.id), error=str(exc))
            if run is None:
                run = RunTree(
                    run_name,
                    run_type,
                    inputs=inputs,
                    project_name=project_name or (parent.project_name if parent is not None else None),
                    client=client if client is not None else (parent.client if parent is not None else None),
                )
            post_task = run.post()
            token = _current_run_tree.set(run)
            try:
                result = await fn(*args, **kwargs)
            except asyncio.CancelledError:
                run.end(error="Cancelled")
                raise
            except Exception as exc:
                run.end(error=f"{type(exc).__name__}: {exc}")
                raise
            else:
                run.end(outputs=result if isinstance(result, dict) else {"output": result})
                return result
            finally:
                _current_run_tree.reset(token)
                await _settle(run, "post", post_task)
                await _settle(run, "patch", run.patch())

        return wrapper

    # Support both @traceable and @traceable() forms
    if callable(_fn):
        return _decorate(_fn)
    return _decorate


__all__ = ["traceable", "get_current_run_tree", "SECRET_REDACT_KEYS"]
