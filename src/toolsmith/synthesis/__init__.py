"""Tool code synthesis and static validation."""

from toolsmith.synthesis.synthesizer import (
    CodeSynthesizer,
    SynthesizedTool,
    compute_content_hash,
    sanitize_tool_name,
    strip_code_fences,
)
from toolsmith.synthesis.templates import TEMPLATES, ToolTemplate, select_template
from toolsmith.synthesis.validator import (
    DEFAULT_RULES,
    ToolSource,
    ValidationIssue,
    ValidationReport,
    ValidationRule,
    Validator,
)

__all__ = [
    "CodeSynthesizer",
    "DEFAULT_RULES",
    "SynthesizedTool",
    "TEMPLATES",
    "ToolSource",
    "ToolTemplate",
    "ValidationIssue",
    "ValidationReport",
    "ValidationRule",
    "Validator",
    "compute_content_hash",
    "sanitize_tool_name",
    "select_template",
    "strip_code_fences",
]
