"""Reference skeletons shown to the LLM when synthesizing a tool."""

from __future__ import annotations

from dataclasses import dataclass
from string import Template


@dataclass(frozen=True)
class ToolTemplate:
    name: str
    description: str
    pattern: Template

    def fill(self, tool_name: str, description: str) -> str:
        # The description lands inside a double-quoted literal.
        flat = " ".join(description.replace('"', "'").split())
        return self.pattern.safe_substitute(tool_name=tool_name, description=flat)


CALCULATOR = ToolTemplate(
    name="calculator",
    description="Numeric computation over named inputs",
    pattern=Template('''\
import math

TOOL_NAME = "$tool_name"
DESCRIPTION = "$description"


def invoke(params):
    try:
        a = float(params.get("a"))
        b = float(params.get("b"))
        result = a + b
        if math.isnan(result):
            raise ValueError("result is not a number")
        return {"success": True, "result": result, "toolName": TOOL_NAME}
    except (TypeError, ValueError) as e:
        return {"success": False, "error": f"Invalid numeric input: {e}", "toolName": TOOL_NAME}
'''),
)

TEXT_ANALYZER = ToolTemplate(
    name="text_analyzer",
    description="Analyzes or parses a text input",
    pattern=Template('''\
import re
from collections import Counter

TOOL_NAME = "$tool_name"
DESCRIPTION = "$description"


def invoke(params):
    try:
        text = params.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValueError("'text' must be a non-empty string")
        words = re.findall(r"[A-Za-z']+", text.lower())
        result = {
            "wordCount": len(words),
            "topWords": Counter(words).most_common(5),
        }
        return {"success": True, "result": result, "toolName": TOOL_NAME}
    except ValueError as e:
        return {"success": False, "error": str(e), "toolName": TOOL_NAME}
'''),
)

VALIDATOR = ToolTemplate(
    name="validator",
    description="Checks whether an input satisfies a rule",
    pattern=Template('''\
import re

TOOL_NAME = "$tool_name"
DESCRIPTION = "$description"

PATTERN = re.compile(r"^[^@\\s]+@[^@\\s]+\\.[a-z]{2,}$$", re.IGNORECASE)


def invoke(params):
    try:
        value = params.get("value")
        if not isinstance(value, str):
            raise ValueError("'value' must be a string")
        is_valid = bool(PATTERN.match(value.strip()))
        reasons = [] if is_valid else ["value does not match the expected format"]
        return {
            "success": True,
            "result": {"isValid": is_valid, "reasons": reasons},
            "toolName": TOOL_NAME,
        }
    except ValueError as e:
        return {"success": False, "error": str(e), "toolName": TOOL_NAME}
'''),
)

FORMATTER = ToolTemplate(
    name="formatter",
    description="Transforms or converts an input into another format",
    pattern=Template('''\
import json

TOOL_NAME = "$tool_name"
DESCRIPTION = "$description"


def invoke(params):
    try:
        data = params.get("data")
        if data is None:
            raise ValueError("'data' is required")
        if isinstance(data, str):
            data = json.loads(data)
        result = json.dumps(data, indent=2, sort_keys=True)
        return {"success": True, "result": result, "toolName": TOOL_NAME}
    except (ValueError, TypeError) as e:
        return {"success": False, "error": f"Could not format input: {e}", "toolName": TOOL_NAME}
'''),
)

DATA_PROCESSOR = ToolTemplate(
    name="data_processor",
    description="General processing of structured input",
    pattern=Template('''\
import statistics

TOOL_NAME = "$tool_name"
DESCRIPTION = "$description"


def invoke(params):
    try:
        items = params.get("items")
        if not isinstance(items, list) or not items:
            raise ValueError("'items' must be a non-empty list")
        numbers = [float(item) for item in items]
        result = {
            "count": len(numbers),
            "mean": statistics.fmean(numbers),
            "max": max(numbers),
            "min": min(numbers),
        }
        return {"success": True, "result": result, "toolName": TOOL_NAME}
    except (TypeError, ValueError) as e:
        return {"success": False, "error": str(e), "toolName": TOOL_NAME}
'''),
)

TEMPLATES: dict[str, ToolTemplate] = {
    template.name: template
    for template in (CALCULATOR, TEXT_ANALYZER, VALIDATOR, FORMATTER, DATA_PROCESSOR)
}

# Keyword groups checked in order; the first hit wins.
_KEYWORDS: list[tuple[tuple[str, ...], ToolTemplate]] = [
    (("calculat", "math", "compute"), CALCULATOR),
    (("text", "analyz", "parse"), TEXT_ANALYZER),
    (("validat", "check", "verify"), VALIDATOR),
    (("format", "transform", "convert"), FORMATTER),
]


def select_template(task_description: str) -> ToolTemplate:
    """Pick the reference skeleton for a task; data processor by default."""
    desc = task_description.lower()
    for keywords, template in _KEYWORDS:
        if any(keyword in desc for keyword in keywords):
            return template
    return DATA_PROCESSOR
