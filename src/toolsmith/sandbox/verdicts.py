"""Terminal outcomes of one sandboxed execution attempt."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Union


@dataclass(frozen=True)
class Completed:
    """The tool returned. ``output`` is whatever ``invoke`` returned."""

    output: Any
    execution_ms: float = 0.0

    kind: ClassVar[str] = "completed"
    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class TimedOut:
    """The deadline passed before the tool returned; the call was abandoned."""

    timeout: float
    execution_ms: float = 0.0
    killed_by_watchdog: bool = False

    kind: ClassVar[str] = "timeout"
    ok: ClassVar[bool] = False

    @property
    def reason(self) -> str:
        if self.killed_by_watchdog:
            return f"Tool execution killed after {self.execution_ms:.0f}ms (safety limit exceeded)"
        return f"Tool execution timed out after {self.timeout:g}s (possible infinite loop)"


@dataclass(frozen=True)
class Crashed:
    """The tool raised during execution."""

    reason: str
    execution_ms: float = 0.0

    kind: ClassVar[str] = "crashed"
    ok: ClassVar[bool] = False


@dataclass(frozen=True)
class RejectedAtLoad:
    """The module could not be instantiated into a callable tool."""

    reason: str
    execution_ms: float = 0.0

    kind: ClassVar[str] = "rejected_at_load"
    ok: ClassVar[bool] = False


SandboxVerdict = Union[Completed, TimedOut, Crashed, RejectedAtLoad]
