"""Tests for turning LLM replies into builder plan objects."""

from __future__ import annotations

import pytest

from toolsmith.exceptions import InvalidPlanContractError, PlanUnparseableError
from toolsmith.orchestrator.plan_parser import (
    BraceMatchStrategy,
    FencedBlockStrategy,
    PlanParser,
    StrictJsonStrategy,
    find_balanced,
    strip_json_noise,
    validate_plan,
)


# =====================================================================
# Helpers
# =====================================================================


class TestHelpers:
    def test_find_balanced_skips_strings(self):
        text = 'prefix {"a": "}{", "b": {"c": 1}} suffix {"d": 2}'
        assert find_balanced(text) == '{"a": "}{", "b": {"c": 1}}'

    def test_find_balanced_none(self):
        assert find_balanced("no braces") is None
        assert find_balanced('{"open": 1') is None

    def test_strip_json_noise(self):
        text = '{\n  // comment\n  "a": "http://x",  /* block */\n  "b": [1, 2,],\n}'
        assert strip_json_noise(text).replace(" ", "").replace("\n", "") == '{"a":"http://x","b":[1,2]}'


# =====================================================================
# Strategies
# =====================================================================


class TestPlanParser:
    def setup_method(self):
        self.parser = PlanParser()

    def test_strict_json(self):
        data = self.parser.parse('{"rationale": "r", "reuseTool": "add", "executionArgs": {"a": 1}}')
        assert data["reuseTool"] == "add"

    def test_fenced_block_with_prose(self):
        reply = 'Here is the plan:\n```json\n{"rationale": "r", "executionArgs": {}}\n```\nThanks!'
        assert self.parser.parse(reply) == {"rationale": "r", "executionArgs": {}}

    def test_object_inside_prose(self):
        reply = 'Sure! {"rationale": "r", "reuseTool": "add", "executionArgs": {"a": 1}} Hope this helps.'
        assert self.parser.parse(reply)["executionArgs"] == {"a": 1}

    def test_trailing_commas_and_comments(self):
        reply = '{\n  "rationale": "r", // why\n  "executionArgs": {"a": 1,},\n}'
        assert self.parser.parse(reply) == {"rationale": "r", "executionArgs": {"a": 1}}

    def test_single_quotes(self):
        data = self.parser.parse("{'rationale': 'r', 'reuseTool': 'add', 'executionArgs': {'a': 2}}")
        assert data == {"rationale": "r", "reuseTool": "add", "executionArgs": {"a": 2}}

    def test_empty_reply(self):
        with pytest.raises(PlanUnparseableError) as exc_info:
            self.parser.parse("   ")
        assert exc_info.value.message == "Reply was empty"

    def test_unparseable_reports_every_strategy(self):
        with pytest.raises(PlanUnparseableError) as exc_info:
            self.parser.parse("I cannot help with that.")
        error = exc_info.value
        assert error.code == "unparseable"
        assert len(error.details["reasons"]) == 4

    def test_array_is_rejected(self):
        with pytest.raises(PlanUnparseableError):
            self.parser.parse("[1, 2, 3]")

    def test_custom_strategy_order(self):
        parser = PlanParser([StrictJsonStrategy()])
        with pytest.raises(PlanUnparseableError):
            parser.parse('Plan: {"rationale": "r"}')
        assert PlanParser([BraceMatchStrategy()]).parse('Plan: {"rationale": "r"}') == {"rationale": "r"}

    def test_fenced_strategy_requires_fence(self):
        with pytest.raises(PlanUnparseableError) as exc_info:
            FencedBlockStrategy().parse('{"a": 1}')
        assert "no fenced code block" in exc_info.value.message


# =====================================================================
# Contract
# =====================================================================


class TestValidatePlan:
    def test_no_tool_plan_is_valid(self):
        validate_plan({"rationale": "Nothing to do"})

    def test_reuse_plan_is_valid(self):
        validate_plan({"rationale": "r", "reuseTool": "add", "executionArgs": {"a": 1}})

    @pytest.mark.parametrize(
        "plan, field",
        [
            ({"reuseTool": "add", "executionArgs": {"a": 1}}, "rationale"),
            ({"rationale": "   "}, "rationale"),
            ({"rationale": "r", "reuseTool": 3, "executionArgs": {"a": 1}}, "reuseTool"),
            ({"rationale": "r", "createTool": "add", "executionArgs": {"a": 1}}, "createTool"),
            ({"rationale": "r", "reuseTool": "add"}, "executionArgs"),
            ({"rationale": "r", "reuseTool": "add", "executionArgs": {}}, "executionArgs"),
            (
                {
                    "rationale": "r",
                    "createTool": {"taskDescription": "t", "expectedOutput": "o"},
                    "executionArgs": {"a": 1},
                },
                "createTool.toolName",
            ),
            (
                {
                    "rationale": "r",
                    "createTool": {"toolName": "t", "expectedOutput": "o"},
                    "executionArgs": {"a": 1},
                },
                "createTool.taskDescription",
            ),
            (
                {
                    "rationale": "r",
                    "createTool": {"toolName": "t", "taskDescription": "d"},
                    "executionArgs": {"a": 1},
                },
                "createTool.expectedOutput",
            ),
        ],
    )
    def test_invalid_plans(self, plan, field):
        with pytest.raises(InvalidPlanContractError) as exc_info:
            validate_plan(plan)
        assert exc_info.value.field == field
