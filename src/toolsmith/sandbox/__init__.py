"""Sandboxed execution environment for synthesized tools."""

from toolsmith.sandbox.capabilities import (
    ExecutionMonitor,
    OperationBudget,
    TimerQueue,
    fetch_web_content,
    web_research,
)
from toolsmith.sandbox.sandbox import CompiledTool, Sandbox
from toolsmith.sandbox.verdicts import (
    Completed,
    Crashed,
    RejectedAtLoad,
    SandboxVerdict,
    TimedOut,
)

__all__ = [
    "CompiledTool",
    "Completed",
    "Crashed",
    "ExecutionMonitor",
    "OperationBudget",
    "RejectedAtLoad",
    "Sandbox",
    "SandboxVerdict",
    "TimedOut",
    "TimerQueue",
    "fetch_web_content",
    "web_research",
]
