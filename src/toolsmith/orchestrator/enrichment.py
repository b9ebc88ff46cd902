"""Fill in tool arguments the plan left out with one narrow LLM call."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from toolsmith.exceptions import LLMError, PlanUnparseableError
from toolsmith.llm.client import LLMClient
from toolsmith.orchestrator.plan_parser import PlanParser

logger = logging.getLogger(__name__)

ENRICHMENT_SYSTEM_PROMPT = (
    "You generate concrete JSON arguments to invoke a tool. "
    "Return ONLY a JSON object mapping input names to usable values. "
    "Numbers must be numeric (no quotes) and arrays must be proper JSON arrays."
)


def missing_inputs(current_args: Mapping[str, Any], expected_inputs: Mapping[str, str]) -> list[str]:
    """Declared inputs that are absent, None or an empty string."""
    return [
        key
        for key in expected_inputs
        if key not in current_args or current_args[key] is None or current_args[key] == ""
    ]


async def enrich_execution_args(
    llm: LLMClient,
    *,
    tool_name: str,
    job_prompt: str,
    rationale: str,
    current_args: dict[str, Any],
    expected_inputs: Mapping[str, str],
    parser: PlanParser | None = None,
) -> dict[str, Any]:
    """
    Ask the LLM for values of the missing declared inputs.

    Only missing keys are taken from the reply, so arguments the plan already
    set are never overwritten. Any failure leaves ``current_args`` as is.
    """
    missing = missing_inputs(current_args, expected_inputs)
    if not missing:
        return current_args

    fields = "\n".join(f"- {key}: {desc}" for key, desc in expected_inputs.items())
    prompt = "\n\n".join(
        [
            f"Tool: {tool_name}",
            f"Job request:\n{job_prompt}",
            f"Builder rationale: {rationale}",
            f"Expected inputs:\n{fields}",
            f"Existing arguments: {json.dumps(current_args, default=str)}",
            f"Missing inputs: {', '.join(missing)}",
            "Provide values for every missing input. Return ONLY JSON.",
        ]
    )

    try:
        raw = await llm.complete(prompt, system_prompt=ENRICHMENT_SYSTEM_PROMPT, response_format="json")
        values = (parser or PlanParser()).parse(raw)
    except (LLMError, PlanUnparseableError) as e:
        logger.error("Failed to synthesise execution args for %s: %s", tool_name, e)
        return current_args

    enriched = dict(current_args)
    filled = [key for key in missing if key in values]
    for key in filled:
        enriched[key] = values[key]
    logger.info("Enriched arguments for %s: %s", tool_name, ", ".join(filled) or "none")
    return enriched
