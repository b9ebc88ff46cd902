"""
Turn untrusted LLM replies into builder plan objects.

The reply is tried against an ordered list of strategies; the first one that
yields a JSON object wins:

1. ``FencedBlockStrategy``: the content of the first ```json fence
2. ``StrictJsonStrategy``: the whole reply as JSON
3. ``LenientJsonStrategy``: comments and trailing commas removed, then JSON,
   then a YAML flow-mapping parse (single quotes, bare keys)
4. ``BraceMatchStrategy``: the first balanced ``{...}`` in surrounding prose

Every strategy raises ``PlanUnparseableError`` with its own reason, and the
parser reports all of them when nothing matches.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Sequence

import yaml

from toolsmith.exceptions import InvalidPlanContractError, PlanUnparseableError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON|json5)?\s*\n?(.*?)\n?```", re.DOTALL)


def _require_object(value: Any, strategy: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise PlanUnparseableError(
            f"{strategy}: reply was not a JSON object (got {type(value).__name__})"
        )
    return value


def find_balanced(text: str, open_char: str = "{", close_char: str = "}") -> str | None:
    """First balanced ``open_char ... close_char`` span, skipping quoted strings."""
    start = text.find(open_char)
    if start == -1:
        return None
    depth = 0
    quote: str | None = None
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            if quote:
                escape = True
            continue
        if ch in ("'", '"'):
            if quote is None:
                quote = ch
            elif quote == ch:
                quote = None
            continue
        if quote:
            continue
        if ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def strip_json_noise(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments and trailing commas outside strings."""
    out: list[str] = []
    i = 0
    quote: str | None = None
    n = len(text)
    while i < n:
        ch = text[i]
        if quote:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        elif ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                i += 1
            else:
                out.append(ch)
                i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


class ParseStrategy(ABC):
    """One way of turning reply text into a JSON object."""

    name: str = "strategy"

    @abstractmethod
    def parse(self, text: str) -> dict[str, Any]:
        """Return the parsed object or raise ``PlanUnparseableError``."""


class FencedBlockStrategy(ParseStrategy):
    name = "fenced"

    def parse(self, text: str) -> dict[str, Any]:
        match = _FENCE_RE.search(text)
        if not match:
            raise PlanUnparseableError(f"{self.name}: no fenced code block")
        content = match.group(1).strip()
        try:
            return _require_object(json.loads(content), self.name)
        except json.JSONDecodeError as e:
            raise PlanUnparseableError(f"{self.name}: fenced block is not valid JSON ({e})")


class StrictJsonStrategy(ParseStrategy):
    name = "strict"

    def parse(self, text: str) -> dict[str, Any]:
        try:
            return _require_object(json.loads(text.strip()), self.name)
        except json.JSONDecodeError as e:
            raise PlanUnparseableError(f"{self.name}: {e}")


class LenientJsonStrategy(ParseStrategy):
    name = "lenient"

    def parse(self, text: str) -> dict[str, Any]:
        cleaned = strip_json_noise(_unfence(text)).strip()
        if not cleaned:
            raise PlanUnparseableError(f"{self.name}: empty reply")
        try:
            return _require_object(json.loads(cleaned), self.name)
        except json.JSONDecodeError:
            pass
        try:
            loaded = yaml.safe_load(cleaned)
        except yaml.YAMLError as e:
            raise PlanUnparseableError(f"{self.name}: not JSON or a flow mapping ({e})")
        return _require_object(loaded, self.name)


class BraceMatchStrategy(ParseStrategy):
    name = "brace_match"

    def __init__(self, fallback: ParseStrategy | None = None) -> None:
        self.fallback = fallback or LenientJsonStrategy()

    def parse(self, text: str) -> dict[str, Any]:
        candidate = find_balanced(text)
        if candidate is None:
            raise PlanUnparseableError(f"{self.name}: no balanced object found")
        try:
            return _require_object(json.loads(candidate), self.name)
        except json.JSONDecodeError:
            return self.fallback.parse(candidate)


DEFAULT_STRATEGIES: tuple[ParseStrategy, ...] = (
    FencedBlockStrategy(),
    StrictJsonStrategy(),
    LenientJsonStrategy(),
    BraceMatchStrategy(),
)


def _unfence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = re.sub(r"^```[A-Za-z0-9]*", "", stripped)
        stripped = re.sub(r"```$", "", stripped)
    return stripped.strip()


class PlanParser:
    """
    Ordered pipeline of parse strategies.

    Example:
        parser = PlanParser()
        data = parser.parse('Sure! {"rationale": "x", "reuseTool": "add"}')
    """

    def __init__(self, strategies: Sequence[ParseStrategy] | None = None) -> None:
        self.strategies = tuple(strategies) if strategies is not None else DEFAULT_STRATEGIES

    def parse(self, text: str) -> dict[str, Any]:
        if not text or not text.strip():
            raise PlanUnparseableError("Reply was empty")

        reasons: list[str] = []
        for strategy in self.strategies:
            try:
                result = strategy.parse(text)
            except PlanUnparseableError as e:
                reasons.append(e.message)
                continue
            logger.debug("Parsed reply with %s strategy", strategy.name)
            return result

        raise PlanUnparseableError(
            "Reply could not be parsed as a JSON object",
            details={"reasons": reasons},
        )


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_plan(data: dict[str, Any]) -> None:
    """
    Check the builder plan contract on the raw parsed object.

    Raises:
        InvalidPlanContractError: With ``field`` naming the offending key.
    """
    rationale = data.get("rationale")
    if _is_blank(rationale):
        raise InvalidPlanContractError("rationale must be a non-empty string", field="rationale")

    reuse = data.get("reuseTool")
    if reuse is not None and not isinstance(reuse, str):
        raise InvalidPlanContractError("reuseTool must be a string if provided", field="reuseTool")

    create = data.get("createTool")
    if create is not None and not isinstance(create, dict):
        raise InvalidPlanContractError("createTool must be a JSON object", field="createTool")

    selects_tool = bool((reuse or "").strip()) or bool(create)
    args = data.get("executionArgs")
    if selects_tool and (not isinstance(args, dict) or not args):
        raise InvalidPlanContractError(
            "executionArgs must be a non-empty JSON object containing the concrete "
            "arguments for the selected tool",
            field="executionArgs",
        )

    if create:
        if _is_blank(create.get("toolName")):
            raise InvalidPlanContractError(
                "createTool.toolName must be a non-empty string", field="createTool.toolName"
            )
        if _is_blank(create.get("taskDescription")):
            raise InvalidPlanContractError(
                "createTool.taskDescription must be provided", field="createTool.taskDescription"
            )
        if _is_blank(create.get("expectedOutput")):
            raise InvalidPlanContractError(
                "createTool.expectedOutput must describe the return format",
                field="createTool.expectedOutput",
            )
