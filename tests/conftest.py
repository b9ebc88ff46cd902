"""Pytest configuration and fixtures for Toolsmith tests."""

from __future__ import annotations

import json
import textwrap
from typing import Any, Callable

import pytest

from toolsmith.config.settings import (
    LLMConfig,
    OrchestratorSettings,
    RegistrySettings,
    SandboxSettings,
)
from toolsmith.core.types import LLMProvider, Message, ModelConfig, ToolCreationSpec
from toolsmith.llm.client import LLMClient
from toolsmith.llm.providers.mock import MockProvider
from toolsmith.orchestrator.enrichment import ENRICHMENT_SYSTEM_PROMPT
from toolsmith.orchestrator.planner import PLANNER_SYSTEM_PROMPT
from toolsmith.registry import CapabilityRegistry, FileSystemManifestStore
from toolsmith.runtime import ToolRunner
from toolsmith.runtime.runner import SUMMARY_SYSTEM_PROMPT
from toolsmith.sandbox import Sandbox
from toolsmith.synthesis import CodeSynthesizer, Validator
from toolsmith.synthesis.synthesizer import SynthesizedTool, compute_content_hash


ADD_NUMBERS_SOURCE = '''\
TOOL_NAME = "add_numbers"
DESCRIPTION = "Add two numbers"


def invoke(params):
    try:
        a = float(params.get("a", 0))
        b = float(params.get("b", 0))
        total = a + b
        if total.is_integer():
            total = int(total)
        return {"success": True, "result": total, "toolName": TOOL_NAME}
    except (TypeError, ValueError) as e:
        return {"success": False, "error": str(e), "toolName": TOOL_NAME}
'''

_TOOL_TEMPLATE = '''\
TOOL_NAME = "{name}"
DESCRIPTION = "{description}"


def invoke(params):
    try:
{body}
    except Exception as e:
        return {{"success": False, "error": str(e), "toolName": TOOL_NAME}}
'''


def build_source(name: str, body: str, description: str = "Test tool") -> str:
    """Tool module with ``body`` placed inside invoke's try block."""
    return _TOOL_TEMPLATE.format(
        name=name,
        description=description,
        body=textwrap.indent(textwrap.dedent(body).strip("\n"), " " * 8),
    )


@pytest.fixture
def add_numbers_source() -> str:
    return ADD_NUMBERS_SOURCE


@pytest.fixture
def tool_source() -> Callable[..., str]:
    """Factory for small tool modules: ``tool_source(name, body)``."""
    return build_source


# =====================================================================
# Settings
# =====================================================================


@pytest.fixture
def sandbox_settings() -> SandboxSettings:
    """Short deadlines so timeout paths finish quickly."""
    return SandboxSettings(
        timeout_seconds=1.0,
        watchdog_interval_seconds=0.05,
        stall_warning_seconds=0.5,
        kill_margin_seconds=1.0,
        max_kill_seconds=3.0,
        max_timer_seconds=0.5,
        timer_cap_seconds=0.05,
        max_operations=1000,
    )


@pytest.fixture
def registry_settings(tmp_path) -> RegistrySettings:
    return RegistrySettings(root_dir=tmp_path / "tools", retry_delay_ms=1)


@pytest.fixture
def orchestrator_settings() -> OrchestratorSettings:
    return OrchestratorSettings(strict_mode=True, plan_retries=3, synthesis_retries=3)


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(default_provider=LLMProvider.MOCK, default_model="mock-model")


@pytest.fixture
def model_config() -> ModelConfig:
    return ModelConfig(provider=LLMProvider.MOCK, model_id="mock-model")


# =====================================================================
# Components
# =====================================================================


@pytest.fixture
def sandbox(sandbox_settings) -> Sandbox:
    return Sandbox(sandbox_settings)


@pytest.fixture
def store(registry_settings) -> FileSystemManifestStore:
    return FileSystemManifestStore(registry_settings.root_dir)


@pytest.fixture
def registry(store, sandbox, registry_settings) -> CapabilityRegistry:
    return CapabilityRegistry(store, sandbox, registry_settings)


@pytest.fixture
def make_client(llm_config) -> Callable[[MockProvider], LLMClient]:
    """Wrap a MockProvider in an LLMClient with mock model defaults."""

    def _make(provider: MockProvider) -> LLMClient:
        return LLMClient(provider, llm_config)

    return _make


@pytest.fixture
def make_tool() -> Callable[..., SynthesizedTool]:
    """Build a validated SynthesizedTool without calling an LLM."""

    def _make(
        name: str = "add_numbers",
        source: str | None = None,
        description: str = "Add two numbers",
        expected_inputs: dict[str, str] | None = None,
    ) -> SynthesizedTool:
        source = source if source is not None else ADD_NUMBERS_SOURCE
        spec = ToolCreationSpec(
            tool_name=name,
            task_description=description,
            expected_output="JSON result",
            expected_inputs=expected_inputs or {},
        )
        return SynthesizedTool(
            tool_name=name,
            source=source,
            content_hash=compute_content_hash(source),
            template_used="calculator",
            report=Validator().check(source, name),
            spec=spec,
        )

    return _make


@pytest.fixture
def make_runner(registry, sandbox, make_client) -> Callable[..., ToolRunner]:
    def _make(provider: MockProvider, **kwargs: Any) -> ToolRunner:
        return ToolRunner(registry, sandbox, make_client(provider), **kwargs)

    return _make


# =====================================================================
# Scripted LLM
# =====================================================================


class ScriptedLLM:
    """
    Responder that answers each kind of LLM call from its own script.

    Planner, enrichment and summary calls are told apart by their system
    prompt; synthesis calls have none. The last reply in each script repeats
    once the script runs out.
    """

    def __init__(
        self,
        plans: list[Any] = (),
        code: list[str] = (),
        args: list[Any] = (),
        summaries: list[str] = ("The answer is ready.",),
    ) -> None:
        self.scripts: dict[str, list[Any]] = {
            "plan": list(plans),
            "code": list(code),
            "args": list(args),
            "summary": list(summaries),
        }
        self.seen: dict[str, list[str]] = {kind: [] for kind in self.scripts}

    def _kind(self, system_prompt: str | None) -> str:
        if system_prompt == PLANNER_SYSTEM_PROMPT:
            return "plan"
        if system_prompt == ENRICHMENT_SYSTEM_PROMPT:
            return "args"
        if system_prompt == SUMMARY_SYSTEM_PROMPT:
            return "summary"
        return "code"

    def __call__(
        self,
        messages: list[Message],
        config: ModelConfig,
        system_prompt: str | None,
    ) -> str:
        kind = self._kind(system_prompt)
        self.seen[kind].append(messages[-1].content)
        script = self.scripts[kind]
        if not script:
            raise AssertionError(f"Unexpected {kind} call")
        reply = script.pop(0) if len(script) > 1 else script[0]
        return reply if isinstance(reply, str) else json.dumps(reply)


@pytest.fixture
def scripted() -> Callable[..., tuple[MockProvider, ScriptedLLM]]:
    """Factory for a MockProvider driven by a ScriptedLLM."""

    def _make(**scripts: Any) -> tuple[MockProvider, ScriptedLLM]:
        script = ScriptedLLM(**scripts)
        return MockProvider(responder=script), script

    return _make


@pytest.fixture
def make_agent(registry, sandbox, make_client, orchestrator_settings):
    """Build a ToolBuilderAgent sharing one registry across agents."""
    from toolsmith.orchestrator import ToolBuilderAgent

    def _make(
        provider: MockProvider,
        agent_id: str = "agent-1",
        settings: OrchestratorSettings | None = None,
    ) -> ToolBuilderAgent:
        client = make_client(provider)
        return ToolBuilderAgent(
            agent_id,
            client,
            registry,
            CodeSynthesizer(client),
            ToolRunner(registry, sandbox, client),
            settings or orchestrator_settings,
        )

    return _make
