"""
Tool-builder agent: one request in, one artifact out.

Each request walks a fixed state machine::

    planning -> creating | reusing -> argument_enrichment -> executing
             -> summarizing -> done

with ``failed`` reachable from every state. Phases never run out of order
and a failed execution is reported, not retried with a new tool.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from toolsmith.config.settings import (
    LLMConfig,
    OrchestratorSettings,
    ToolsmithSettings,
    get_settings,
)
from toolsmith.core.types import (
    BuilderPlan,
    HandleResult,
    RequestState,
    ToolCreationSpec,
    build_artifact,
)
from toolsmith.exceptions import DuplicateToolError, SynthesisError, ToolsmithError
from toolsmith.llm.base import BaseLLMProvider
from toolsmith.llm.client import LLMClient, create_provider
from toolsmith.orchestrator.enrichment import enrich_execution_args
from toolsmith.orchestrator.planner import Planner
from toolsmith.registry import CapabilityRegistry, FileSystemManifestStore
from toolsmith.runtime import ToolRunner
from toolsmith.sandbox import Sandbox
from toolsmith.synthesis import CodeSynthesizer, Validator

logger = logging.getLogger(__name__)


def request_prompt(request: str | dict[str, Any]) -> str:
    """The prompt text of a request given as a string or a job payload."""
    if isinstance(request, str):
        return request
    prompt = request.get("prompt")
    if isinstance(prompt, str) and prompt:
        return prompt
    return json.dumps(request, default=str)


class ToolBuilderAgent:
    """
    Agent that reuses its own tools or synthesizes new ones to answer a request.

    Usage:
        agent = ToolBuilderAgent.from_settings("agent-1")
        result = await agent.handle("Add 2 and 3")
        print(result.ok, result.artifact)
    """

    archetype = "tool-builder"

    def __init__(
        self,
        agent_id: str,
        llm: LLMClient | BaseLLMProvider,
        registry: CapabilityRegistry,
        synthesizer: CodeSynthesizer,
        runner: ToolRunner,
        settings: OrchestratorSettings | None = None,
        planner: Planner | None = None,
    ) -> None:
        if isinstance(llm, BaseLLMProvider):
            llm = LLMClient(llm, LLMConfig())
        self.agent_id = agent_id
        self.llm = llm
        self.registry = registry
        self.synthesizer = synthesizer
        self.runner = runner
        self.settings = settings or OrchestratorSettings()
        self.planner = planner or Planner(llm, max_retries=self.settings.plan_retries)
        self._tools_available = 0

    @classmethod
    def from_settings(
        cls,
        agent_id: str,
        settings: ToolsmithSettings | None = None,
        *,
        provider: BaseLLMProvider | None = None,
    ) -> ToolBuilderAgent:
        """Wire every component from one settings object."""
        settings = settings or get_settings()
        llm = LLMClient(provider or create_provider(settings.llm), settings.llm)
        sandbox = Sandbox(settings.sandbox)
        registry = CapabilityRegistry(
            FileSystemManifestStore(settings.registry.root_dir), sandbox, settings.registry
        )
        synthesizer = CodeSynthesizer(
            llm,
            Validator(max_source_length=settings.sandbox.max_source_length),
            temperature=settings.llm.synthesis_temperature,
            max_tokens=settings.llm.synthesis_max_tokens,
        )
        runner = ToolRunner(registry, sandbox, llm, settings.registry)
        return cls(agent_id, llm, registry, synthesizer, runner, settings.orchestrator)

    async def handle(self, request: str | dict[str, Any]) -> HandleResult:
        """Plan, create or reuse, enrich, execute and summarize one request.

        Domain failures never raise; they come back as ``ok=False`` with a
        machine-readable ``error_type``.
        """
        prompt = request_prompt(request)
        states = [RequestState.PLANNING]
        plan: BuilderPlan | None = None
        new_tools_created = False

        try:
            available = await self.registry.available_tools(self.agent_id)
            self._tools_available = len(available)
            success_rate = await self.registry.success_rate(self.agent_id)
            plan = await self.planner.plan(
                prompt,
                available,
                success_rate=success_rate,
                strict_mode=self.settings.strict_mode,
            )

            tool_name = plan.reuse_tool
            if plan.create_tool is not None:
                states.append(RequestState.CREATING)
                tool_name, new_tools_created = await self._create_tool(plan.create_tool)
            elif tool_name:
                states.append(RequestState.REUSING)

            if not tool_name:
                return self._no_tool_selected(plan, states)

            loaded = await self.registry.ensure(self.agent_id, tool_name)

            states.append(RequestState.ARGUMENT_ENRICHMENT)
            args = await enrich_execution_args(
                self.llm,
                tool_name=tool_name,
                job_prompt=prompt,
                rationale=plan.rationale,
                current_args=dict(plan.execution_args),
                expected_inputs=loaded.manifest.original_request.expected_inputs,
            )

            states.append(RequestState.EXECUTING)
            result = await self.runner.execute(
                self.agent_id, tool_name, args, job_prompt=prompt, rationale=plan.rationale
            )
        except ToolsmithError as e:
            states.append(RequestState.FAILED)
            logger.error("Agent %s failed on request: %s", self.agent_id, e)
            return HandleResult(
                ok=False,
                artifact=build_artifact(
                    answer="Tool builder agent execution failed.",
                    tools_used=[],
                    error=True,
                    error_description=str(e),
                ),
                new_tools_created=new_tools_created,
                builder_rationale=plan.rationale if plan else "",
                execution_args=dict(plan.execution_args) if plan else {},
                error_type=e.code,
                state_history=states,
            )

        if result.ok:
            states.extend([RequestState.SUMMARIZING, RequestState.DONE])
        else:
            states.append(RequestState.FAILED)

        logger.info(
            "Agent %s executed %s (new_tool=%s) args=%s ok=%s",
            self.agent_id,
            tool_name,
            new_tools_created,
            json.dumps(args, default=str)[:200],
            result.ok,
        )
        return HandleResult(
            ok=result.ok,
            artifact=result.final_response,
            tools_used=True,
            selected_tool=tool_name,
            new_tools_created=new_tools_created,
            steps_used=2 + (1 if new_tools_created else 0),
            builder_rationale=plan.rationale,
            execution_args=args,
            tool_output_snippet=result.raw_output[: self.settings.output_snippet_chars],
            summary_source=result.summary_source if result.ok else None,
            error_type=result.error_type,
            state_history=states,
        )

    async def _create_tool(self, spec: ToolCreationSpec) -> tuple[str, bool]:
        """Synthesize and register a tool; returns its name and whether it is new."""
        feedback: str | None = None
        attempts = max(1, self.settings.synthesis_retries)
        for attempt in range(1, attempts + 1):
            try:
                tool = await self.synthesizer.synthesize(spec, self.agent_id, feedback=feedback)
                break
            except SynthesisError as e:
                logger.warning(
                    "Synthesis of %s rejected (attempt %d/%d, %s): %s",
                    spec.tool_name,
                    attempt,
                    attempts,
                    e.code,
                    e,
                )
                if attempt == attempts:
                    raise
                feedback = str(e)

        try:
            manifest = await self.registry.register(tool, self.agent_id)
        except DuplicateToolError:
            logger.info("Identical code for %s is already registered; reusing it", tool.tool_name)
            return tool.tool_name, False
        return manifest.tool_name, True

    def _no_tool_selected(self, plan: BuilderPlan, states: list[RequestState]) -> HandleResult:
        rationale = plan.rationale or "Builder did not select a usable tool."
        strict = self.settings.strict_mode
        logger.info(
            "Agent %s produced no tool selection (strict_mode=%s). Rationale: %s",
            self.agent_id,
            strict,
            rationale,
        )
        states.append(RequestState.FAILED if strict else RequestState.DONE)
        return HandleResult(
            ok=not strict,
            artifact=build_artifact(
                answer=rationale,
                tools_used=[],
                error=strict,
                error_description="Builder did not select a tool in strict mode." if strict else "",
            ),
            steps_used=1,
            builder_rationale=plan.rationale,
            execution_args=dict(plan.execution_args),
            error_type="no_tool_selected" if strict else None,
            state_history=states,
        )

    def get_stats(self) -> dict[str, Any]:
        registry_stats = self.registry.stats()
        return {
            "agentId": self.agent_id,
            "archetype": self.archetype,
            "totalTools": self._tools_available,
            "customToolsAvailable": registry_stats["totalTools"],
            "registryStats": registry_stats,
        }
