"""
Core type definitions for Toolsmith.

This module defines the fundamental types shared by the synthesizer, the
capability registry, the sandbox runner and the orchestrator:
- LLM message and model configuration types
- Tool creation requests and durable tool manifests
- Builder plans, runner results and request results
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal


# =============================================================================
# Enums
# =============================================================================


class LLMProvider(Enum):
    """Supported LLM providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OLLAMA = "ollama"
    MOCK = "mock"


class ShareMode(Enum):
    """Cross-agent visibility of synthesized tools."""

    STRICT = "strict"  # Own tools only (mutation model)
    RECENT = "recent"  # Own tools + others' tools created in the recency window
    ALL = "all"  # Every active tool
    SUCCESS_RATE = "success_rate"  # Own tools + others' proven tools


class RequestState(Enum):
    """States of one orchestrated request."""

    PLANNING = "planning"
    REUSING = "reusing"
    CREATING = "creating"
    ARGUMENT_ENRICHMENT = "argument_enrichment"
    EXECUTING = "executing"
    SUMMARIZING = "summarizing"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# LLM Types
# =============================================================================


@dataclass
class ModelConfig:
    """Configuration for one LLM call."""

    provider: LLMProvider
    model_id: str
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_seconds: float = 120.0
    response_format: Literal["json", "text"] | None = None
    extra_params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Message:
    """A message in a conversation with an LLM."""

    role: Literal["system", "user", "assistant"]
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


# =============================================================================
# Tool Types
# =============================================================================


def _to_text(value: Any) -> str:
    """Coerce an LLM-provided value into a string field."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, (dict, list, int, float, bool)):
        return json.dumps(value)
    return str(value)


@dataclass
class OriginalRequest:
    """The contract a tool's code was synthesized against."""

    task_description: str
    expected_inputs: dict[str, str] = field(default_factory=dict)
    expected_output: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskDescription": self.task_description,
            "expectedInputs": dict(self.expected_inputs),
            "expectedOutput": self.expected_output,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OriginalRequest:
        return cls(
            task_description=data.get("taskDescription", ""),
            expected_inputs=dict(data.get("expectedInputs") or {}),
            expected_output=data.get("expectedOutput", ""),
        )


@dataclass
class ToolCreationSpec:
    """A request to synthesize a new tool."""

    tool_name: str
    task_description: str
    expected_output: str
    expected_inputs: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ToolCreationSpec:
        """Normalize a loosely-typed ``createTool`` object from a plan.

        Non-string values are JSON-encoded; ``expectedInputs`` that is not an
        object is dropped.
        """
        expected_inputs: dict[str, str] = {}
        inputs_raw = raw.get("expectedInputs")
        if isinstance(inputs_raw, dict):
            for key, value in inputs_raw.items():
                if not key:
                    continue
                expected_inputs[str(key)] = _to_text(value)

        return cls(
            tool_name=_to_text(raw.get("toolName")),
            task_description=_to_text(raw.get("taskDescription")),
            expected_output=_to_text(raw.get("expectedOutput")),
            expected_inputs=expected_inputs,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "taskDescription": self.task_description,
            "expectedInputs": dict(self.expected_inputs),
            "expectedOutput": self.expected_output,
        }

    @property
    def original_request(self) -> OriginalRequest:
        return OriginalRequest(
            task_description=self.task_description,
            expected_inputs=dict(self.expected_inputs),
            expected_output=self.expected_output,
        )


_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def creator_namespace(agent_id: str) -> str:
    """Filesystem-safe namespace for one creator.

    Ids that need escaping get a short digest suffix so two different ids
    never share a namespace.
    """
    safe = _UNSAFE_KEY_CHARS.sub("_", agent_id)
    if safe and safe == agent_id:
        return safe
    digest = hashlib.md5(agent_id.encode("utf-8")).hexdigest()[:8]
    return f"{safe or 'agent'}-{digest}"


@dataclass
class ToolManifest:
    """
    Durable record of one synthesized tool.

    Counters only ever increase; ``usage_count`` always equals
    ``success_count + failure_count``.
    """

    tool_name: str
    original_request: OriginalRequest
    code_location: str
    created_by: str
    content_hash: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    template_used: str = ""
    usage_count: int = 0
    success_count: int = 0
    failure_count: int = 0

    @property
    def manifest_key(self) -> str:
        """Idempotent identifier: ``{creator}/{toolName}_{contentHash}``.

        Scoped by creator, so identical code synthesized by two agents yields
        two independent manifests.
        """
        return f"{creator_namespace(self.created_by)}/{self.tool_name}_{self.content_hash}"

    @property
    def description(self) -> str:
        return self.original_request.task_description

    @property
    def success_rate(self) -> float:
        if self.usage_count == 0:
            return 0.0
        return self.success_count / self.usage_count

    def record(self, success: bool) -> None:
        """Apply one execution outcome to the counters."""
        self.usage_count += 1
        if success:
            self.success_count += 1
        else:
            self.failure_count += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "originalRequest": self.original_request.to_dict(),
            "codeLocation": self.code_location,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat(),
            "contentHash": self.content_hash,
            "templateUsed": self.template_used,
            "usageCount": self.usage_count,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolManifest:
        created_at_raw = data.get("createdAt")
        if isinstance(created_at_raw, str) and created_at_raw:
            created_at = datetime.fromisoformat(created_at_raw.replace("Z", "+00:00"))
        else:
            created_at = datetime.now(timezone.utc)
        return cls(
            tool_name=data["toolName"],
            original_request=OriginalRequest.from_dict(data.get("originalRequest") or {}),
            code_location=data["codeLocation"],
            created_by=data.get("createdBy", "unknown"),
            content_hash=data["contentHash"],
            created_at=created_at,
            template_used=data.get("templateUsed", ""),
            usage_count=int(data.get("usageCount", 0)),
            success_count=int(data.get("successCount", 0)),
            failure_count=int(data.get("failureCount", 0)),
        )


@dataclass(frozen=True)
class AvailableToolSummary:
    """Name/description pair shown to the planner."""

    name: str
    description: str


# =============================================================================
# Orchestration Types
# =============================================================================


@dataclass
class BuilderPlan:
    """The LLM's structured decision for one request."""

    rationale: str
    reuse_tool: str | None = None
    create_tool: ToolCreationSpec | None = None
    execution_args: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def selects_tool(self) -> bool:
        return bool((self.reuse_tool or "").strip()) or self.create_tool is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuilderPlan:
        create_raw = data.get("createTool")
        reuse_raw = data.get("reuseTool")
        args_raw = data.get("executionArgs")
        return cls(
            rationale=_to_text(data.get("rationale")),
            reuse_tool=reuse_raw.strip() if isinstance(reuse_raw, str) and reuse_raw.strip() else None,
            create_tool=ToolCreationSpec.from_dict(create_raw) if isinstance(create_raw, dict) else None,
            execution_args=dict(args_raw) if isinstance(args_raw, dict) else {},
            raw=data,
        )


@dataclass
class RunnerResult:
    """Outcome of one sandboxed execution, including the user-facing summary."""

    ok: bool
    tool_name: str
    args: dict[str, Any]
    raw_output: str
    summarized_answer: str
    execution_ms: float
    summary_source: Literal["llm", "fallback"] = "fallback"
    error: str | None = None
    error_type: str | None = None

    @property
    def final_response(self) -> str:
        return build_artifact(
            answer=self.summarized_answer if self.ok else "",
            tools_used=[self.tool_name],
            error=not self.ok,
            error_description=self.error or "",
        )


@dataclass
class HandleResult:
    """Result of ``ToolBuilderAgent.handle``."""

    ok: bool
    artifact: str
    tools_used: bool = False
    selected_tool: str | None = None
    new_tools_created: bool = False
    steps_used: int = 0
    builder_rationale: str = ""
    execution_args: dict[str, Any] = field(default_factory=dict)
    tool_output_snippet: str = ""
    summary_source: str | None = None
    error_type: str | None = None
    state_history: list[RequestState] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "artifact": self.artifact,
            "toolsUsed": self.tools_used,
            "selectedTool": self.selected_tool,
            "newToolsCreated": self.new_tools_created,
            "stepsUsed": self.steps_used,
            "builderRationale": self.builder_rationale,
            "executionArgs": self.execution_args,
            "toolOutputSnippet": self.tool_output_snippet,
            "summarySource": self.summary_source,
            "errorType": self.error_type,
            "stateHistory": [state.value for state in self.state_history],
        }


def build_artifact(
    *,
    answer: str,
    tools_used: list[str],
    error: bool,
    error_description: str,
) -> str:
    """Serialize the user-facing artifact of a request."""
    payload = {
        "answer": answer,
        "tools_used": tools_used,
        "error": error,
        "error_description": error_description,
    }
    return json.dumps(payload, indent=2)
