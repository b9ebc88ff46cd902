"""
CodeSynthesizer - asks the LLM for tool code and vets it.

The synthesizer never edits what the model returns beyond stripping
markdown fences. Code that fails validation is rejected with a
``SynthesisError`` whose message is suitable as corrective feedback for the
next attempt.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from toolsmith.core.policy import ALLOWED_MODULES
from toolsmith.exceptions import LLMError, LLMUnavailableError, MissingContractError
from toolsmith.synthesis.templates import ToolTemplate, select_template
from toolsmith.synthesis.validator import ValidationReport, Validator

if TYPE_CHECKING:
    from toolsmith.core.types import ToolCreationSpec
    from toolsmith.llm.client import LLMClient

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[A-Za-z0-9_+-]*[ \t]*\n?|\n?```[ \t]*$")


def sanitize_tool_name(name: str) -> str:
    """Map an LLM-suggested name onto ``[a-z0-9_]``.

    Names that would start with a digit get a ``tool_`` prefix so they stay
    valid identifiers.
    """
    sanitized = re.sub(r"[^A-Za-z0-9_]", "_", name.strip()).lower()
    if sanitized and sanitized[0].isdigit():
        sanitized = f"tool_{sanitized}"
    return sanitized


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown fence (```python ... ```) if present."""
    text = text.strip()
    if "```" not in text:
        return text
    match = re.search(r"```[A-Za-z0-9_+-]*[ \t]*\n(.*?)```", text, re.DOTALL)
    if match:
        return match.group(1).strip()
    return _FENCE_RE.sub("", text).strip()


def compute_content_hash(source: str) -> str:
    """First 8 hex chars of the MD5 of the source, used in file names."""
    return hashlib.md5(source.encode("utf-8")).hexdigest()[:8]


@dataclass(frozen=True)
class SynthesizedTool:
    """Validated source ready to be registered."""

    tool_name: str
    source: str
    content_hash: str
    template_used: str
    report: ValidationReport
    spec: ToolCreationSpec


class CodeSynthesizer:
    """
    Turns a ``ToolCreationSpec`` into validated tool source.

    Usage:
        synthesizer = CodeSynthesizer(llm_client)
        tool = await synthesizer.synthesize(spec)
        print(tool.tool_name, tool.content_hash)
    """

    def __init__(
        self,
        llm: LLMClient,
        validator: Validator | None = None,
        *,
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> None:
        self.llm = llm
        self.validator = validator or Validator()
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_prompt(
        self,
        spec: ToolCreationSpec,
        tool_name: str,
        template: ToolTemplate,
        feedback: str | None = None,
    ) -> str:
        allowed = ", ".join(sorted(ALLOWED_MODULES))
        inputs = json.dumps(spec.expected_inputs, indent=2) if spec.expected_inputs else "{}"
        prompt = f"""You are a Python code generator. Produce a safe, self-contained tool module that runs as-is inside a restricted sandbox.

TASK DESCRIPTION: {spec.task_description}

REQUIREMENTS:
1. Assign TOOL_NAME = "{tool_name}" and a one-line DESCRIPTION string at module level.
2. Define a synchronous function invoke(params) that takes one dict containing:
{inputs}
3. On success return {{"success": True, "result": <value>, "toolName": TOOL_NAME}} where the result matches: {spec.expected_output}
4. On failure return {{"success": False, "error": "<clear message>", "toolName": TOOL_NAME}}.
5. Wrap the work in try/except and validate every input.
6. Accept parameters instead of hard-coding values from this single request.

ALLOWED IMPORTS: {allowed}
AVAILABLE HELPERS (already defined, do not import):
- fetch_web_content(url) -> dict with success/content/status
- web_research(query, url=None) -> dict with success/results
- sleep(seconds), set_timeout(callback, seconds, *args), log(message)

PROHIBITED: open(), eval/exec/compile, __import__ or importlib, os, sys, subprocess, environment access,
globals()/locals()/vars(), dunder attributes such as __class__ or __globals__, exit()/quit(),
"while True" loops without a break, and loops that compare weekday() results.

REFERENCE TEMPLATE (adapt freely):
{template.fill(tool_name, spec.task_description)}

Return plain Python only, with no markdown fences or commentary."""
        if feedback:
            prompt += (
                "\n\nYOUR PREVIOUS ATTEMPT WAS REJECTED:\n"
                f"{feedback}\n"
                "Fix every listed problem in the new version."
            )
        return prompt

    async def synthesize(
        self,
        spec: ToolCreationSpec,
        agent_id: str | None = None,
        feedback: str | None = None,
    ) -> SynthesizedTool:
        """Generate and validate code for one tool.

        Args:
            spec: The creation request from the plan.
            agent_id: Requesting agent (for logging only).
            feedback: Rejection message from a previous attempt, if any.

        Raises:
            MissingContractError: The request has no usable name, or the code lacks
                the tool contract.
            SynthesisSyntaxError: The code does not parse.
            DeniedPatternError: The code uses a denied or runaway pattern.
            LLMUnavailableError: The LLM call failed or returned nothing.
        """
        tool_name = sanitize_tool_name(spec.tool_name)
        if not tool_name:
            raise MissingContractError(
                "createTool.toolName must contain at least one letter, digit or underscore",
                tool_name=spec.tool_name,
            )

        template = select_template(spec.task_description)
        logger.info(
            "Synthesizing tool '%s' for agent %s (template=%s, retry=%s)",
            tool_name,
            agent_id or "unknown",
            template.name,
            feedback is not None,
        )

        prompt = self.build_prompt(spec, tool_name, template, feedback)
        try:
            reply = await self.llm.complete(
                prompt,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format="text",
            )
        except LLMError as e:
            raise LLMUnavailableError(
                f"LLM failed to generate code for '{tool_name}'", tool_name=tool_name, cause=e
            )

        source = strip_code_fences(reply)
        if not source:
            raise LLMUnavailableError(f"LLM returned empty code for '{tool_name}'", tool_name=tool_name)

        report = self.validator.check(source, tool_name)
        for warning in report.warnings:
            logger.debug("Tool '%s' warning: %s", tool_name, warning)
        report.raise_for_errors()

        digest = compute_content_hash(source)
        logger.info(
            "Synthesized tool '%s' (%d chars, hash %s, safety score %d)",
            tool_name,
            len(source),
            digest,
            report.safety_score,
        )
        return SynthesizedTool(
            tool_name=tool_name,
            source=source,
            content_hash=digest,
            template_used=template.name,
            report=report,
            spec=spec,
        )
