"""
Exception hierarchy for Toolsmith.

All exceptions inherit from ToolsmithError for easy catching. Every domain
error carries a machine-readable ``code`` so callers can branch on the failure
without parsing messages.
"""

from __future__ import annotations

from typing import Any


class ToolsmithError(Exception):
    """Base exception for all Toolsmith errors."""

    code: str = "toolsmith_error"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Machine-readable form used in request artifacts."""
        return {"code": self.code, "message": self.message, "details": self.details}


# Configuration Errors
class ConfigurationError(ToolsmithError):
    """Error in configuration."""

    code = "configuration_error"


# LLM Errors
class LLMError(ToolsmithError):
    """Base exception for LLM-related errors."""

    code = "llm_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        model: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.provider = provider
        self.model = model


class AuthenticationError(LLMError):
    """Authentication failed (invalid API key, etc.)."""

    code = "llm_authentication"


class RateLimitError(LLMError):
    """Provider rate limit exceeded."""

    code = "llm_rate_limited"

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


# Synthesis Errors
class SynthesisError(ToolsmithError):
    """Generated tool code was rejected or could not be produced.

    Always recoverable by asking the LLM again with the message as feedback.
    """

    code = "synthesis_error"

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        violations: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.tool_name = tool_name
        self.violations = violations or []

    def __str__(self) -> str:
        base = super().__str__()
        if self.violations:
            return f"{base}: {'; '.join(self.violations)}"
        return base


class SynthesisSyntaxError(SynthesisError):
    """Generated code does not parse."""

    code = "syntax"


class MissingContractError(SynthesisError):
    """Generated code lacks the name, entry point or return shapes."""

    code = "missing_contract"


class DeniedPatternError(SynthesisError):
    """Generated code uses a denylisted or runaway-execution pattern."""

    code = "denied_pattern"


class LLMUnavailableError(SynthesisError):
    """The LLM could not be reached or returned nothing usable."""

    code = "llm_unavailable"


# Registry Errors
class RegistryError(ToolsmithError):
    """Base exception for capability registry errors."""

    code = "registry_error"

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class ToolNotFoundError(RegistryError):
    """No manifest matches the requested tool name for this agent."""

    code = "not_found"

    def __init__(
        self,
        message: str,
        *,
        suggestions: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.suggestions = suggestions or []


class DuplicateToolError(RegistryError):
    """The creator already registered identical code under this name."""

    code = "duplicate"


class LoadExhaustedError(RegistryError):
    """Loading a tool failed on every retry attempt."""

    code = "load_exhausted"

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts


class ToolQuarantinedError(RegistryError):
    """The tool was moved to quarantine and can no longer be loaded."""

    code = "quarantined"


# Sandbox Errors
class SandboxError(ToolsmithError):
    """Base exception for sandboxed execution failures.

    Timeouts and crashes during a call are not raised; they come back as
    ``TimedOut`` and ``Crashed`` verdicts from ``Sandbox.execute``.
    """

    code = "sandbox_error"

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class RejectedAtLoadError(SandboxError):
    """Tool module could not be instantiated (missing entry point, bad module body)."""

    code = "rejected_at_load"


class ToolRateLimitedError(SandboxError):
    """Per-tool execution cap was hit."""

    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class SandboxOperationError(Exception):
    """Raised inside the sandbox when a tool exceeds its operation budget.

    Deliberately not a ToolsmithError: it is raised in tool code and surfaces
    as the crash reason of the execution.
    """


# Plan Errors
class PlanError(ToolsmithError):
    """Base exception for builder plan errors."""

    code = "plan_error"


class PlanUnparseableError(PlanError):
    """The LLM reply could not be turned into a JSON object."""

    code = "unparseable"


class InvalidPlanContractError(PlanError):
    """The plan parsed but violates the plan contract."""

    code = "invalid_contract"

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.field = field
