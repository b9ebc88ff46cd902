"""
Tool process side of sandboxed execution.

The host starts one process per call and listens on a one-way pipe. The
process sends tuples:

- ``("ready",)`` once the restricted environment is built; the host starts
  the deadline here, so interpreter startup is not billed to the tool
- ``("touch",)`` when the tool calls a helper (throttled)
- ``("log", logger_name, levelno, text)`` for every record logged here
- one final ``("loaded", metadata)``, ``("ok", output)`` or
  ``("error", kind, text)`` where kind is ``"load"`` or ``"crash"``

If the process dies without a final message the host sees end-of-file.
"""

from __future__ import annotations

import inspect
import logging
import pickle
import time
from dataclasses import dataclass, field
from multiprocessing.connection import Connection
from types import CodeType
from typing import Any, Callable, Literal

from toolsmith.config.settings import SandboxSettings
from toolsmith.sandbox.capabilities import (
    ExecutionMonitor,
    OperationBudget,
    TimerQueue,
    build_capabilities,
)
from toolsmith.sandbox.environment import build_globals

ENTRY_POINT = "invoke"
TOUCH_INTERVAL_SECONDS = 0.05

Message = tuple[Any, ...]
Send = Callable[[Message], None]


class InstantiationError(Exception):
    """The module body failed or did not produce a usable entry point."""


@dataclass(frozen=True)
class WorkerRequest:
    """One unit of work for a tool process. Must stay picklable."""

    mode: Literal["load", "invoke"]
    tool_name: str
    source: str
    filename: str
    settings: dict[str, Any]
    params: dict[str, Any] = field(default_factory=dict)


class _PipeHandler(logging.Handler):
    """Ships log records to the host, which re-emits them on its loggers."""

    def __init__(self, send: Send) -> None:
        super().__init__(logging.DEBUG)
        self._send = send

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._send(("log", record.name, record.levelno, self.format(record)))
        except Exception:
            self.handleError(record)


def _throttled(send: Send) -> Callable[[], None]:
    last = 0.0

    def touch() -> None:
        nonlocal last
        now = time.monotonic()
        if now - last >= TOUCH_INTERVAL_SECONDS:
            last = now
            send(("touch",))

    return touch


def instantiate(code: CodeType, namespace: dict[str, Any]) -> Callable[..., Any]:
    """Run the module body and return its synchronous ``invoke`` function."""
    try:
        exec(code, namespace)  # noqa: S102
    except Exception as e:
        raise InstantiationError(f"Module body raised {type(e).__name__}: {e}") from e

    entry = namespace.get(ENTRY_POINT)
    if entry is None:
        raise InstantiationError(f"Tool does not define an '{ENTRY_POINT}' function")
    if not callable(entry):
        raise InstantiationError(
            f"'{ENTRY_POINT}' is not callable (type: {type(entry).__name__})"
        )
    if inspect.iscoroutinefunction(entry):
        raise InstantiationError(f"'{ENTRY_POINT}' must be a regular function, not async")
    return entry


def serve(conn: Connection, request: WorkerRequest) -> None:
    """Process entry point: one load check or one ``invoke`` call."""
    send: Send = conn.send
    root = logging.getLogger()
    root.handlers[:] = [_PipeHandler(send)]
    root.setLevel(logging.DEBUG)

    try:
        message = _handle(request, send)
        try:
            send(message)
        except (pickle.PicklingError, TypeError, AttributeError, RecursionError) as e:
            send(("error", "crash", f"TypeError: Tool output cannot be returned to the host: {e}"))
    finally:
        conn.close()


def _handle(request: WorkerRequest, send: Send) -> Message:
    settings = SandboxSettings.model_construct(**request.settings)
    monitor = ExecutionMonitor(on_touch=_throttled(send))
    timers = TimerQueue()
    capabilities = build_capabilities(
        tool_name=request.tool_name,
        settings=settings,
        monitor=monitor,
        budget=OperationBudget(settings.max_operations),
        timers=timers,
    )
    namespace = build_globals(
        request.tool_name, capabilities, module_name=f"toolsmith_tool_{request.tool_name}"
    )
    try:
        code = compile(request.source, request.filename, "exec", dont_inherit=True)
    except (SyntaxError, ValueError) as e:
        return ("error", "load", f"Tool code does not compile: {e}")

    send(("ready",))
    try:
        entry = instantiate(code, namespace)
    except InstantiationError as e:
        return ("error", "load", str(e))

    if request.mode == "load":
        name = namespace.get("TOOL_NAME")
        description = namespace.get("DESCRIPTION")
        return (
            "loaded",
            {
                "tool_name": name if isinstance(name, str) and name else request.tool_name,
                "description": description if isinstance(description, str) else "",
            },
        )

    try:
        output = entry(request.params)
        timers.drain(monitor)
    except Exception as e:
        return ("error", "crash", f"{type(e).__name__}: {e}")
    return ("ok", output)
