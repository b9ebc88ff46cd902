"""Plan/execute orchestration of tool reuse and creation."""

from toolsmith.orchestrator.agent import ToolBuilderAgent, request_prompt
from toolsmith.orchestrator.enrichment import enrich_execution_args, missing_inputs
from toolsmith.orchestrator.plan_parser import (
    DEFAULT_STRATEGIES,
    BraceMatchStrategy,
    FencedBlockStrategy,
    LenientJsonStrategy,
    ParseStrategy,
    PlanParser,
    StrictJsonStrategy,
    find_balanced,
    strip_json_noise,
    validate_plan,
)
from toolsmith.orchestrator.planner import Planner, build_planning_prompt, correction_message

__all__ = [
    "BraceMatchStrategy",
    "DEFAULT_STRATEGIES",
    "FencedBlockStrategy",
    "LenientJsonStrategy",
    "ParseStrategy",
    "PlanParser",
    "Planner",
    "StrictJsonStrategy",
    "ToolBuilderAgent",
    "build_planning_prompt",
    "correction_message",
    "enrich_execution_args",
    "find_balanced",
    "missing_inputs",
    "request_prompt",
    "strip_json_noise",
    "validate_plan",
]
