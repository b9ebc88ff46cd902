"""Core types for Toolsmith."""

from toolsmith.core.types import (
    AvailableToolSummary,
    BuilderPlan,
    HandleResult,
    LLMProvider,
    Message,
    ModelConfig,
    OriginalRequest,
    RequestState,
    RunnerResult,
    ShareMode,
    ToolCreationSpec,
    ToolManifest,
    build_artifact,
)

__all__ = [
    "AvailableToolSummary",
    "BuilderPlan",
    "HandleResult",
    "LLMProvider",
    "Message",
    "ModelConfig",
    "OriginalRequest",
    "RequestState",
    "RunnerResult",
    "ShareMode",
    "ToolCreationSpec",
    "ToolManifest",
    "build_artifact",
]
