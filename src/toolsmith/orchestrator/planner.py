"""Builder planning: ask the LLM whether to reuse or create a tool."""

from __future__ import annotations

import logging
from typing import Sequence

from toolsmith.core.policy import ALLOWED_MODULES
from toolsmith.core.types import AvailableToolSummary, BuilderPlan, Message
from toolsmith.exceptions import InvalidPlanContractError, PlanUnparseableError
from toolsmith.llm.client import LLMClient
from toolsmith.orchestrator.plan_parser import PlanParser, validate_plan

logger = logging.getLogger(__name__)

FORMAT_INSTRUCTIONS = (
    'Return strict JSON with the shape {"rationale": string, "reuseTool"?: string, '
    '"createTool"?: {"taskDescription": string, "toolName": string, "expectedInputs"?: object, '
    '"expectedOutput": string}, "executionArgs": object}. '
    "All strings must use double quotes and objects must be valid JSON. No surrounding prose."
)

PLANNER_SYSTEM_PROMPT = (
    "You design or reuse JSON-callable Python tools that compute real results or fetch real "
    "data. Each tool you create is a unique mutation belonging only to you. Never create "
    "tools that return dummy or mock data. " + FORMAT_INSTRUCTIONS
)


def build_planning_prompt(
    request: str,
    available_tools: Sequence[AvailableToolSummary],
    *,
    success_rate: float,
    strict_mode: bool,
) -> str:
    listing = "\n".join(
        f"- {tool.name}: {tool.description or 'No description available.'}"
        for tool in available_tools
    )
    if strict_mode:
        strict_instruction = (
            "You must either reuse an existing tool or respond with a new createTool specification."
        )
    else:
        strict_instruction = (
            "Prefer to reuse or create a tool. If absolutely none fit, you may omit "
            "reuseTool/createTool but explain clearly why."
        )
    modules = ", ".join(sorted(ALLOWED_MODULES))

    lines = [
        f"Job request:\n{request}",
        "",
        f"Your tools (mutations):\n{listing or 'None yet - you will create your first tool.'}",
        f"Your tool success rate: {success_rate * 100:.1f}%",
        strict_instruction,
        "",
        "IMPORTANT: Tools you create are your unique mutations and have access to:",
        f"- Python standard library modules: {modules}",
        "- Web research: web_research(query) for web queries",
        "- Web fetching: fetch_web_content(url) for specific URLs",
        "",
        "CRITICAL: You MUST provide executionArgs - a non-empty JSON object with concrete "
        "arguments for the tool.",
        "Example for reusing a tool:",
        '{"rationale": "Using search_web to find information", "reuseTool": "search_web", '
        '"executionArgs": {"query": "latest AI news", "limit": 5}}',
        "",
        "Example for creating a new tool:",
        '{"rationale": "Need a new tool", "createTool": {"toolName": "add_numbers", '
        '"taskDescription": "Add two numbers", "expectedInputs": {"a": "first number", '
        '"b": "second number"}, "expectedOutput": "The sum as a number"}, '
        '"executionArgs": {"a": 2, "b": 3}}',
        "",
        "If you specify createTool, include taskDescription, toolName, expectedInputs, "
        "expectedOutput.",
        "Return ONLY JSON with NO surrounding text.",
    ]
    return "\n".join(lines)


def correction_message(error: Exception) -> str:
    """Follow-up prompt telling the LLM exactly what was wrong with its reply."""
    if isinstance(error, InvalidPlanContractError):
        message = f"Your previous reply was invalid: {error.message}. "
        if error.field == "executionArgs":
            message += (
                "You MUST include executionArgs as a non-empty JSON object with the actual "
                'arguments to pass to the tool. Example: {"executionArgs": {"query": '
                '"search term", "limit": 10}}'
            )
        else:
            message += "Respond again with ONLY valid JSON matching the required schema."
        return message
    reason = error.message if isinstance(error, PlanUnparseableError) else str(error)
    return (
        f"Your previous reply failed to parse ({reason}). "
        "Respond again with ONLY valid JSON matching the required schema."
    )


def infer_missing_args(plan: BuilderPlan) -> BuilderPlan:
    """Fill declared-but-missing inputs of a new tool with empty strings."""
    if plan.create_tool is None:
        return plan
    inferred = [key for key in plan.create_tool.expected_inputs if key not in plan.execution_args]
    if inferred:
        logger.info("Inferred executionArgs placeholders from expectedInputs: %s", ", ".join(inferred))
        for key in inferred:
            plan.execution_args[key] = ""
    return plan


class Planner:
    """
    Produces a ``BuilderPlan`` for one request, retrying with corrections.

    After ``max_retries`` rejected replies the last reply that parsed into an
    object with a rationale is returned anyway, so a semantically weak plan
    degrades the request instead of failing it.
    """

    def __init__(
        self,
        llm: LLMClient,
        parser: PlanParser | None = None,
        *,
        max_retries: int = 3,
    ) -> None:
        self.llm = llm
        self.parser = parser or PlanParser()
        self.max_retries = max(1, max_retries)

    async def plan(
        self,
        request: str,
        available_tools: Sequence[AvailableToolSummary],
        *,
        success_rate: float = 0.0,
        strict_mode: bool = True,
    ) -> BuilderPlan:
        """
        Raises:
            PlanUnparseableError: No reply parsed into a plan object.
            LLMError: The LLM call itself failed.
        """
        prompt = build_planning_prompt(
            request, available_tools, success_rate=success_rate, strict_mode=strict_mode
        )
        messages: list[Message] = [Message(role="user", content=prompt)]
        last_parsed: BuilderPlan | None = None
        last_error: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            raw = (
                await self.llm.complete(
                    messages, system_prompt=PLANNER_SYSTEM_PROMPT, response_format="json"
                )
            ).strip()

            try:
                data = self.parser.parse(raw)
                plan = BuilderPlan.from_dict(data)
                if plan.rationale.strip():
                    last_parsed = plan
                validate_plan(data)
            except (PlanUnparseableError, InvalidPlanContractError) as e:
                last_error = e
                logger.info(
                    "Plan rejected (attempt %d/%d): %s. Raw response: %s",
                    attempt,
                    self.max_retries,
                    e.message,
                    raw[:200],
                )
                messages.append(Message(role="assistant", content=raw or "(empty reply)"))
                messages.append(Message(role="user", content=correction_message(e)))
                continue

            logger.debug("Plan accepted on attempt %d: %s", attempt, plan.rationale[:200])
            return plan

        if last_parsed is not None:
            logger.warning(
                "Returning last parsed plan despite validation error: %s",
                last_error,
            )
            return infer_missing_args(last_parsed)

        raise PlanUnparseableError(
            f"Builder plan could not be parsed after {self.max_retries} attempts",
            cause=last_error,
        )
