"""
Sandboxed execution of synthesized tools.

Every call runs in its own short-lived process against a fresh restricted
globals dict, so nothing a tool does survives into the next call and a tool
stuck inside a C-level call (a catastrophic regex, a huge ``pow``) cannot
stall the host. Two signals race for each call:

1. the tool's own return (or exception), sent back over a pipe
2. a hard wall-clock deadline (``asyncio.wait_for``), after which the
   process is killed

A watchdog task polls every ``watchdog_interval_seconds``. It logs when the
tool has not called any helper for a while (probable infinite loop) and
kills the process at an absolute deadline as a second line of defense.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import multiprocessing
import pickle
from dataclasses import dataclass
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess
from typing import Any, Callable

from toolsmith.config.settings import SandboxSettings
from toolsmith.exceptions import RejectedAtLoadError
from toolsmith.sandbox.capabilities import ExecutionMonitor
from toolsmith.sandbox.verdicts import (
    Completed,
    Crashed,
    RejectedAtLoad,
    SandboxVerdict,
    TimedOut,
)
from toolsmith.sandbox.worker import WorkerRequest, serve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledTool:
    """Load-checked tool code. Safe to share between executions."""

    tool_name: str
    description: str
    filename: str
    source: str


@dataclass(frozen=True)
class _Outcome:
    # "ok" | "loaded" | "error" | "timeout" | "killed" | "failed"
    status: str
    value: Any = None
    elapsed_ms: float = 0.0


class Sandbox:
    """
    Restricted execution environment for synthesized tools.

    Usage:
        sandbox = Sandbox()
        tool = await sandbox.load(source, tool_name="add_numbers")
        verdict = await sandbox.execute(tool, {"a": 2, "b": 3})
        if isinstance(verdict, Completed):
            print(verdict.output)
    """

    def __init__(self, settings: SandboxSettings | None = None) -> None:
        self.settings = settings or SandboxSettings()
        self._context = multiprocessing.get_context(self.settings.start_method)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def compile(self, source: str, *, tool_name: str, location: str | None = None) -> str:
        """Syntax-check ``source`` in the host and return its filename."""
        filename = f"<tool:{tool_name}:{location or 'inline'}>"
        try:
            compile(source, filename, "exec", dont_inherit=True)
        except (SyntaxError, ValueError) as e:
            raise RejectedAtLoadError(f"Tool code does not compile: {e}", tool_name=tool_name)
        return filename

    async def load(
        self,
        source: str,
        *,
        tool_name: str,
        location: str | None = None,
    ) -> CompiledTool:
        """Compile the module and run its body once to confirm the entry point.

        Raises:
            RejectedAtLoadError: The code does not compile, the body raises or
                hangs, or there is no synchronous ``invoke`` function.
        """
        filename = self.compile(source, tool_name=tool_name, location=location)
        request = WorkerRequest(
            mode="load",
            tool_name=tool_name,
            source=source,
            filename=filename,
            settings=self.settings.model_dump(),
        )
        outcome = await self._run_bounded(request)

        if outcome.status == "loaded":
            logger.debug("Loaded tool '%s' from %s", tool_name, filename)
            return CompiledTool(
                tool_name=outcome.value["tool_name"],
                description=outcome.value["description"],
                filename=filename,
                source=source,
            )
        if outcome.status in ("timeout", "killed"):
            raise RejectedAtLoadError(
                f"Tool module body did not finish within {self.settings.timeout_seconds:g}s",
                tool_name=tool_name,
            )
        raise RejectedAtLoadError(
            self._truncate(f"Tool failed to load: {self._failure_text(outcome)}"),
            tool_name=tool_name,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, tool: CompiledTool, args: dict[str, Any]) -> SandboxVerdict:
        """Run ``invoke(args)`` in a fresh process and return exactly one verdict."""
        request = WorkerRequest(
            mode="invoke",
            tool_name=tool.tool_name,
            source=tool.source,
            filename=tool.filename,
            settings=self.settings.model_dump(),
            params=copy.deepcopy(dict(args)),
        )
        logger.info(
            "Executing tool '%s' (timeout %gs, %d args)",
            tool.tool_name,
            self.settings.timeout_seconds,
            len(request.params),
        )
        outcome = await self._run_bounded(request)

        if outcome.status == "ok":
            logger.info("Tool '%s' completed in %.0fms", tool.tool_name, outcome.elapsed_ms)
            return Completed(output=outcome.value, execution_ms=outcome.elapsed_ms)

        if outcome.status in ("timeout", "killed"):
            verdict = TimedOut(
                timeout=self.settings.timeout_seconds,
                execution_ms=outcome.elapsed_ms,
                killed_by_watchdog=outcome.status == "killed",
            )
            logger.warning("Tool '%s': %s", tool.tool_name, verdict.reason)
            return verdict

        reason = self._truncate(self._failure_text(outcome))
        if outcome.status == "error" and outcome.value[0] == "load":
            logger.warning("Tool '%s' rejected at load: %s", tool.tool_name, reason)
            return RejectedAtLoad(reason=reason, execution_ms=outcome.elapsed_ms)

        logger.warning("Tool '%s' crashed: %s", tool.tool_name, reason)
        return Crashed(reason=reason, execution_ms=outcome.elapsed_ms)

    async def run(self, source: str, args: dict[str, Any], *, tool_name: str) -> SandboxVerdict:
        """Load and execute in one step; load failures become ``RejectedAtLoad``."""
        try:
            tool = await self.load(source, tool_name=tool_name)
        except RejectedAtLoadError as e:
            return RejectedAtLoad(reason=self._truncate(e.message))
        return await self.execute(tool, args)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_bounded(self, request: WorkerRequest) -> _Outcome:
        s = self.settings
        loop = asyncio.get_running_loop()
        tool_name = request.tool_name
        monitor = ExecutionMonitor()
        ready: asyncio.Future[None] = loop.create_future()

        def _set_ready() -> None:
            if not ready.done():
                ready.set_result(None)

        def _on_ready() -> None:
            try:
                loop.call_soon_threadsafe(_set_ready)
            except RuntimeError:
                logger.debug("Tool '%s' became ready after its event loop closed", tool_name)

        parent_conn, child_conn = self._context.Pipe(duplex=False)
        process = self._context.Process(
            target=serve,
            args=(child_conn, request),
            name=f"toolsmith-{tool_name}",
            daemon=True,
        )
        try:
            process.start()
        except (OSError, pickle.PicklingError, TypeError, AttributeError) as e:
            parent_conn.close()
            return _Outcome("failed", f"Tool process could not start: {type(e).__name__}: {e}")
        finally:
            child_conn.close()

        reader = loop.run_in_executor(None, _pump, parent_conn, monitor, _on_ready)
        graceful = False
        try:
            await asyncio.wait(
                {ready, reader},
                timeout=s.startup_timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if not ready.done():
                if reader.done():
                    graceful = True
                    return await self._finished(reader.result(), process, monitor)
                return _Outcome(
                    "failed", f"Tool process did not start within {s.startup_timeout_seconds:g}s"
                )

            monitor.start()
            watchdog = asyncio.create_task(self._watchdog(tool_name, monitor, process, reader))
            try:
                message = await asyncio.wait_for(asyncio.shield(reader), timeout=s.timeout_seconds)
            except asyncio.TimeoutError:
                return _Outcome("timeout", elapsed_ms=monitor.elapsed_seconds * 1000)
            finally:
                watchdog.cancel()

            graceful = not monitor.killed
            outcome = await self._finished(message, process, monitor)
            if outcome.status in ("ok", "loaded") and monitor.elapsed_seconds > s.timeout_seconds:
                # The loop noticed the result only after the deadline had passed.
                return _Outcome("timeout", elapsed_ms=outcome.elapsed_ms)
            return outcome
        finally:
            # The reader only returns once the process has sent its result or is gone.
            if not graceful and process.is_alive():
                process.kill()
            await reader
            await loop.run_in_executor(None, _stop, process, s.kill_grace_seconds)
            parent_conn.close()

    async def _finished(
        self, message: tuple[Any, ...], process: BaseProcess, monitor: ExecutionMonitor
    ) -> _Outcome:
        elapsed_ms = monitor.elapsed_seconds * 1000
        status = message[0]
        if status == "exited":
            if monitor.killed:
                return _Outcome("killed", elapsed_ms=elapsed_ms)
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, process.join, self.settings.kill_grace_seconds)
            return _Outcome(
                "failed",
                f"Tool process exited unexpectedly (exit code {process.exitcode})",
                elapsed_ms,
            )
        if status == "error":
            return _Outcome("error", (message[1], message[2]), elapsed_ms)
        return _Outcome(status, message[1], elapsed_ms)

    async def _watchdog(
        self,
        tool_name: str,
        monitor: ExecutionMonitor,
        process: BaseProcess,
        reader: asyncio.Future[Any],
    ) -> None:
        s = self.settings
        kill_after = min(s.timeout_seconds + s.kill_margin_seconds, s.max_kill_seconds)
        warned = False
        while not reader.done():
            await asyncio.sleep(s.watchdog_interval_seconds)
            idle = monitor.idle_seconds
            if idle > s.stall_warning_seconds:
                if not warned:
                    logger.warning(
                        "Tool '%s' may be in an infinite loop (no yield for %.0fms)",
                        tool_name,
                        idle * 1000,
                    )
                    warned = True
            else:
                warned = False

            if monitor.elapsed_seconds > kill_after and not reader.done():
                monitor.killed = True
                process.kill()
                return

    @staticmethod
    def _failure_text(outcome: _Outcome) -> str:
        if outcome.status == "error":
            return outcome.value[1]
        return str(outcome.value)

    def _truncate(self, text: str) -> str:
        limit = self.settings.max_error_chars
        if len(text) <= limit:
            return text
        return text[: limit - 3] + "..."


def _pump(conn: Connection, monitor: ExecutionMonitor, on_ready: Callable[[], None]) -> tuple[Any, ...]:
    """Read messages until the final one; runs in an executor thread."""
    while True:
        try:
            message = conn.recv()
        except (EOFError, OSError):
            return ("exited",)
        except (pickle.UnpicklingError, AttributeError, ImportError) as e:
            return ("error", "crash", f"Tool output could not be read: {type(e).__name__}: {e}")
        kind = message[0]
        if kind == "touch":
            monitor.touch()
        elif kind == "log":
            _, name, level, text = message
            logging.getLogger(name).log(level, "%s", text)
        elif kind == "ready":
            on_ready()
        else:
            return message


def _stop(process: BaseProcess, grace: float) -> None:
    """Reap the process, killing it if it has not exited within ``grace`` seconds."""
    process.join(grace)
    if process.is_alive():
        process.kill()
        process.join()
