"""Tests for builder planning and argument enrichment."""

from __future__ import annotations

import json

import pytest

from toolsmith.core.types import AvailableToolSummary
from toolsmith.exceptions import LLMError, PlanUnparseableError
from toolsmith.llm.providers.mock import MockProvider
from toolsmith.orchestrator.enrichment import (
    ENRICHMENT_SYSTEM_PROMPT,
    enrich_execution_args,
    missing_inputs,
)
from toolsmith.orchestrator.planner import (
    PLANNER_SYSTEM_PROMPT,
    Planner,
    build_planning_prompt,
)


REUSE_PLAN = {"rationale": "Reuse the adder", "reuseTool": "add_numbers", "executionArgs": {"a": 2, "b": 3}}

CREATE_PLAN_WITHOUT_ARGS = {
    "rationale": "Need a new adder",
    "createTool": {
        "toolName": "add_numbers",
        "taskDescription": "Add two numbers",
        "expectedInputs": {"a": "first", "b": "second"},
        "expectedOutput": "The sum",
    },
}


# =====================================================================
# Planning prompt
# =====================================================================


class TestPlanningPrompt:
    def test_lists_tools_and_success_rate(self):
        prompt = build_planning_prompt(
            "Add 2 and 3",
            [AvailableToolSummary("add_numbers", "Add two numbers")],
            success_rate=0.75,
            strict_mode=True,
        )
        assert prompt.startswith("Job request:\nAdd 2 and 3")
        assert "- add_numbers: Add two numbers" in prompt
        assert "Your tool success rate: 75.0%" in prompt
        assert "You must either reuse an existing tool" in prompt

    def test_first_tool_and_relaxed_mode(self):
        prompt = build_planning_prompt("Hello", [], success_rate=0.0, strict_mode=False)
        assert "None yet - you will create your first tool." in prompt
        assert "you may omit reuseTool/createTool" in prompt


# =====================================================================
# Planner
# =====================================================================


class TestPlanner:
    @pytest.mark.asyncio
    async def test_valid_first_reply(self, make_client):
        provider = MockProvider([json.dumps(REUSE_PLAN)])
        plan = await Planner(make_client(provider)).plan("Add 2 and 3", [])

        assert plan.reuse_tool == "add_numbers"
        assert plan.create_tool is None
        assert plan.execution_args == {"a": 2, "b": 3}
        assert provider.call_count == 1
        call = provider.calls[0]
        assert call.system_prompt == PLANNER_SYSTEM_PROMPT
        assert call.config.response_format == "json"

    @pytest.mark.asyncio
    async def test_create_plan(self, make_client):
        reply = dict(CREATE_PLAN_WITHOUT_ARGS, executionArgs={"a": 2, "b": 3})
        plan = await Planner(make_client(MockProvider([json.dumps(reply)]))).plan("Add", [])
        assert plan.create_tool.tool_name == "add_numbers"
        assert plan.create_tool.expected_inputs == {"a": "first", "b": "second"}

    @pytest.mark.asyncio
    async def test_contract_violation_is_corrected(self, make_client):
        invalid = {"rationale": "Reuse", "reuseTool": "add_numbers"}
        provider = MockProvider([json.dumps(invalid), json.dumps(REUSE_PLAN)])

        plan = await Planner(make_client(provider)).plan("Add 2 and 3", [])

        assert plan.execution_args == {"a": 2, "b": 3}
        retry = provider.calls[1].messages
        assert [m.role for m in retry] == ["user", "assistant", "user"]
        assert retry[1].content == json.dumps(invalid)
        assert retry[2].content.startswith("Your previous reply was invalid: executionArgs")
        assert "You MUST include executionArgs" in retry[2].content

    @pytest.mark.asyncio
    async def test_parse_failure_is_corrected(self, make_client):
        provider = MockProvider(["I think you should add them.", json.dumps(REUSE_PLAN)])
        plan = await Planner(make_client(provider)).plan("Add 2 and 3", [])
        assert plan.reuse_tool == "add_numbers"
        assert provider.calls[1].messages[-1].content.startswith("Your previous reply failed to parse")

    @pytest.mark.asyncio
    async def test_exhausted_returns_last_parsed_plan(self, make_client):
        provider = MockProvider([json.dumps(CREATE_PLAN_WITHOUT_ARGS)] * 3)
        plan = await Planner(make_client(provider), max_retries=3).plan("Add", [])

        assert provider.call_count == 3
        assert plan.create_tool.tool_name == "add_numbers"
        # Declared inputs are filled with placeholders for enrichment.
        assert plan.execution_args == {"a": "", "b": ""}

    @pytest.mark.asyncio
    async def test_exhausted_without_plan_raises(self, make_client):
        provider = MockProvider(["nope", "still nope"])
        with pytest.raises(PlanUnparseableError) as exc_info:
            await Planner(make_client(provider), max_retries=2).plan("Add", [])
        assert exc_info.value.message == "Builder plan could not be parsed after 2 attempts"

    @pytest.mark.asyncio
    async def test_plan_without_rationale_is_not_kept(self, make_client):
        provider = MockProvider([json.dumps({"reuseTool": "add_numbers", "executionArgs": {"a": 1}})] * 2)
        with pytest.raises(PlanUnparseableError):
            await Planner(make_client(provider), max_retries=2).plan("Add", [])

    @pytest.mark.asyncio
    async def test_llm_error_propagates(self, make_client):
        provider = MockProvider([LLMError("down", provider="mock")])
        with pytest.raises(LLMError):
            await Planner(make_client(provider)).plan("Add", [])


# =====================================================================
# Enrichment
# =====================================================================


class TestEnrichment:
    def test_missing_inputs(self):
        expected = {"a": "first", "b": "second", "c": "third", "d": "fourth"}
        assert missing_inputs({"a": 1, "b": None, "c": ""}, expected) == ["b", "c", "d"]
        assert missing_inputs({"a": 0, "b": False, "c": [], "d": "x"}, expected) == []

    @pytest.mark.asyncio
    async def test_nothing_missing_skips_llm(self, make_client):
        provider = MockProvider([])
        args = await enrich_execution_args(
            make_client(provider),
            tool_name="add_numbers",
            job_prompt="Add 2 and 3",
            rationale="r",
            current_args={"a": 2, "b": 3},
            expected_inputs={"a": "first", "b": "second"},
        )
        assert args == {"a": 2, "b": 3}
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_fills_only_missing_keys(self, make_client):
        provider = MockProvider(['{"a": 100, "b": 3}'])
        args = await enrich_execution_args(
            make_client(provider),
            tool_name="add_numbers",
            job_prompt="Add 2 and 3",
            rationale="r",
            current_args={"a": 2, "b": ""},
            expected_inputs={"a": "first", "b": "second"},
        )
        assert args == {"a": 2, "b": 3}
        call = provider.calls[0]
        assert call.system_prompt == ENRICHMENT_SYSTEM_PROMPT
        assert "Missing inputs: b" in call.prompt

    @pytest.mark.asyncio
    async def test_llm_failure_keeps_arguments(self, make_client):
        provider = MockProvider([LLMError("down", provider="mock")])
        current = {"a": 2}
        args = await enrich_execution_args(
            make_client(provider),
            tool_name="add_numbers",
            job_prompt="Add",
            rationale="r",
            current_args=current,
            expected_inputs={"a": "first", "b": "second"},
        )
        assert args == {"a": 2}

    @pytest.mark.asyncio
    async def test_unparseable_reply_keeps_arguments(self, make_client):
        provider = MockProvider(["b is three"])
        args = await enrich_execution_args(
            make_client(provider),
            tool_name="add_numbers",
            job_prompt="Add",
            rationale="r",
            current_args={"a": 2},
            expected_inputs={"a": "first", "b": "second"},
        )
        assert args == {"a": 2}
