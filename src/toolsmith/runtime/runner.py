"""
Tool runner: execute a registered tool and turn its output into an answer.

One call to ``ToolRunner.execute``:
1. Resolve the tool for the agent and check the per-tool rate limit
2. Run ``invoke(args)`` in the sandbox
3. Record exactly one telemetry outcome for the verdict
4. On success, ask the LLM to phrase the final answer (raw output on failure)
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from toolsmith.config.settings import RegistrySettings
from toolsmith.core.types import RunnerResult
from toolsmith.exceptions import LLMError, ToolRateLimitedError
from toolsmith.llm.client import LLMClient
from toolsmith.registry import CapabilityRegistry
from toolsmith.runtime.rate_limit import SlidingWindowRateLimiter
from toolsmith.sandbox import Completed, Sandbox, SandboxVerdict, TimedOut

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are drafting the final answer for the user. Use the supplied tool output strictly "
    "as facts, and respond directly to the user request. Do not mention tools, processes, "
    "or how the answer was produced. Provide only the answer content the user asked for."
)


def render_output(output: Any) -> str:
    """Serialize a tool's return value the way it is shown to users and the LLM."""
    if isinstance(output, str):
        return output
    try:
        return json.dumps(output, default=str)
    except (TypeError, ValueError):
        return repr(output)


def reported_failure(output: Any) -> str | None:
    """The tool's own error message if it returned ``{"success": False, ...}``."""
    if isinstance(output, str):
        try:
            output = json.loads(output)
        except ValueError:
            return None
    if isinstance(output, dict) and output.get("success") is False:
        error = output.get("error")
        return error if isinstance(error, str) and error else "Tool reported failure"
    return None


class ToolRunner:
    """
    Executes registry tools inside the sandbox and records telemetry.

    Usage:
        runner = ToolRunner(registry, sandbox, llm)
        result = await runner.execute("agent-1", "add_numbers", {"a": 2, "b": 3},
                                      job_prompt="Add 2 and 3")
        print(result.final_response)
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        sandbox: Sandbox,
        llm: LLMClient,
        settings: RegistrySettings | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
    ) -> None:
        self.registry = registry
        self.sandbox = sandbox
        self.llm = llm
        self.settings = settings or registry.settings
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            limit=self.settings.execution_limit_per_hour,
            window_seconds=self.settings.execution_reset_hours * 3600,
        )

    async def execute(
        self,
        agent_id: str,
        tool_name: str,
        args: dict[str, Any],
        job_prompt: str = "",
        rationale: str = "",
    ) -> RunnerResult:
        """
        Run one tool call end to end.

        Raises:
            RegistryError: The tool cannot be found, loaded or is quarantined.
        """
        start = time.perf_counter()
        tool = await self.registry.ensure(agent_id, tool_name)

        try:
            self.rate_limiter.acquire(tool.tool_id)
        except ToolRateLimitedError as e:
            return self._failure(
                tool_name,
                args,
                error=e.message,
                error_type="rate_limited",
                execution_ms=(time.perf_counter() - start) * 1000,
            )

        manifest = tool.manifest
        logger.info(
            "Executing tool %s (created by %s, used %d times)",
            tool_name,
            manifest.created_by,
            manifest.usage_count,
        )
        verdict = await self.sandbox.execute(tool.compiled, args)
        await self.registry.record_outcome(tool.tool_id, success=isinstance(verdict, Completed))
        # Quarantined or superseded tools no longer need a rate window.
        self.rate_limiter.retain(self.registry.current_ids())
        execution_ms = (time.perf_counter() - start) * 1000

        if not isinstance(verdict, Completed):
            return self._failure(
                tool_name,
                args,
                error=self._verdict_error(verdict),
                error_type=verdict.kind,
                execution_ms=execution_ms,
            )

        raw_output = render_output(verdict.output)
        error = reported_failure(verdict.output)
        if error is not None:
            logger.warning("Tool %s reported failure: %s", tool_name, error)
            return RunnerResult(
                ok=False,
                tool_name=tool_name,
                args=args,
                raw_output=raw_output,
                summarized_answer="",
                execution_ms=execution_ms,
                error=error,
                error_type="tool_reported",
            )

        answer, source = await self._summarize(job_prompt, raw_output, rationale)
        logger.info(
            "Tool %s finished in %.0fms (ok=True). Output preview: %s",
            tool_name,
            execution_ms,
            raw_output[:200],
        )
        return RunnerResult(
            ok=True,
            tool_name=tool_name,
            args=args,
            raw_output=raw_output,
            summarized_answer=answer,
            execution_ms=execution_ms,
            summary_source=source,
        )

    async def _summarize(self, job_prompt: str, raw_output: str, rationale: str) -> tuple[str, str]:
        prompt = (
            f"User request:\n{job_prompt}\n\n"
            f"Relevant data:\n{raw_output}\n\n"
            f"Notes from planner: {rationale}"
        )
        try:
            summary = (await self.llm.complete(prompt, system_prompt=SUMMARY_SYSTEM_PROMPT)).strip()
        except LLMError as e:
            logger.error("Failed to generate final answer, falling back to raw tool output: %s", e)
            return raw_output, "fallback"
        if not summary:
            logger.warning("Empty final answer from LLM, falling back to raw tool output")
            return raw_output, "fallback"
        return summary, "llm"

    def _verdict_error(self, verdict: SandboxVerdict) -> str:
        if isinstance(verdict, TimedOut):
            return verdict.reason
        return getattr(verdict, "reason", "Tool execution failed")

    def _failure(
        self,
        tool_name: str,
        args: dict[str, Any],
        *,
        error: str,
        error_type: str,
        execution_ms: float,
    ) -> RunnerResult:
        logger.error("Tool %s failed after %.0fms (%s): %s", tool_name, execution_ms, error_type, error)
        return RunnerResult(
            ok=False,
            tool_name=tool_name,
            args=args,
            raw_output=json.dumps({"success": False, "error": error}),
            summarized_answer="",
            execution_ms=execution_ms,
            error=error,
            error_type=error_type,
        )
