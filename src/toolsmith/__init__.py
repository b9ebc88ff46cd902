"""
Toolsmith - runtime tool synthesis for self-extending agents.

An agent that lacks a tool asks an LLM to write one, the code is statically
vetted, stored in a per-agent capability registry and executed inside a
time- and operation-bounded sandbox.

Quick Start:
    import toolsmith

    toolsmith.load_dotenv()
    toolsmith.configure(registry_root="./generated-tools")

    agent = toolsmith.ToolBuilderAgent.from_settings("agent-1")
    result = await agent.handle("Add 2 and 3")
    print(result.ok, result.artifact)

Installation:
    pip install toolsmith
    pip install toolsmith[anthropic]  # For Claude
    pip install toolsmith[openai]     # For GPT
    pip install toolsmith[all]        # All providers
"""

from toolsmith.config import (
    ToolsmithSettings,
    configure,
    configure_logging,
    get_settings,
    load_dotenv,
)
from toolsmith.core.types import (
    BuilderPlan,
    HandleResult,
    LLMProvider,
    Message,
    ModelConfig,
    RequestState,
    RunnerResult,
    ShareMode,
    ToolCreationSpec,
    ToolManifest,
)
from toolsmith.exceptions import (
    LLMError,
    PlanError,
    RegistryError,
    SandboxError,
    SynthesisError,
    ToolsmithError,
)
from toolsmith.llm import BaseLLMProvider, LLMClient, create_provider
from toolsmith.orchestrator import Planner, PlanParser, ToolBuilderAgent
from toolsmith.registry import CapabilityRegistry, FileSystemManifestStore, ManifestStore
from toolsmith.runtime import ToolRunner
from toolsmith.sandbox import (
    Completed,
    Crashed,
    RejectedAtLoad,
    Sandbox,
    SandboxVerdict,
    TimedOut,
)
from toolsmith.synthesis import CodeSynthesizer, ValidationReport, Validator

__version__ = "0.1.0"
__all__ = [
    # Configuration
    "ToolsmithSettings",
    "configure",
    "configure_logging",
    "get_settings",
    "load_dotenv",
    # Types
    "BuilderPlan",
    "HandleResult",
    "LLMProvider",
    "Message",
    "ModelConfig",
    "RequestState",
    "RunnerResult",
    "ShareMode",
    "ToolCreationSpec",
    "ToolManifest",
    # Errors
    "ToolsmithError",
    "LLMError",
    "SynthesisError",
    "RegistryError",
    "SandboxError",
    "PlanError",
    # LLM
    "BaseLLMProvider",
    "LLMClient",
    "create_provider",
    # Synthesis
    "CodeSynthesizer",
    "Validator",
    "ValidationReport",
    # Registry
    "CapabilityRegistry",
    "ManifestStore",
    "FileSystemManifestStore",
    # Execution
    "Sandbox",
    "SandboxVerdict",
    "Completed",
    "TimedOut",
    "Crashed",
    "RejectedAtLoad",
    "ToolRunner",
    # Orchestration
    "Planner",
    "PlanParser",
    "ToolBuilderAgent",
]
