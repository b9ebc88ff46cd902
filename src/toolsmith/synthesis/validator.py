"""
Static validation of synthesized tool code.

Tool code is never trusted. Before it is registered it goes through:
1. Parseability (``ast.parse``)
2. Structural contract checks (TOOL_NAME, ``invoke``, success/error returns, try/except)
3. Denylist scan (process control, subprocesses, filesystem, eval, dynamic imports,
   interpreter state, escape dunders, imports outside the allow-list)
4. Runaway-execution heuristics (hard-reject only for the unambiguous shapes)

Every check is a ``ValidationRule`` so the rule set can be tuned without
touching ``Validator.check``.
"""

from __future__ import annotations

import ast
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Literal, Sequence

from toolsmith.core.policy import ALLOWED_DUNDERS, DENIED_MODULES, is_allowed_module
from toolsmith.exceptions import (
    DeniedPatternError,
    MissingContractError,
    SynthesisSyntaxError,
)

logger = logging.getLogger(__name__)

Severity = Literal["error", "warning"]
Category = Literal["syntax", "contract", "denied", "runaway", "quality"]


@dataclass(frozen=True)
class ToolSource:
    """Parsed tool code handed to every rule."""

    source: str
    tool_name: str | None
    tree: ast.Module


@dataclass(frozen=True)
class ValidationRule:
    """A named check. ``check`` yields one message per finding."""

    name: str
    severity: Severity
    category: Category
    check: Callable[[ToolSource], Iterable[str]]


@dataclass(frozen=True)
class ValidationIssue:
    rule: str
    severity: Severity
    category: Category
    message: str


@dataclass
class ValidationReport:
    """Outcome of ``Validator.check``."""

    tool_name: str | None = None
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def risk_level(self) -> Literal["low", "medium", "high"]:
        if self.errors:
            return "high"
        if len(self.warnings) > 2:
            return "medium"
        return "low"

    @property
    def safety_score(self) -> int:
        """100 minus deductions for errors, warnings and risk level, clamped to 0..100."""
        score = 100 - 25 * len(self.errors) - 5 * len(self.warnings)
        score -= {"high": 20, "medium": 10, "low": 0}[self.risk_level]
        return max(0, min(100, score))

    def has_category(self, category: Category) -> bool:
        return any(
            issue.category == category and issue.severity == "error" for issue in self.issues
        )

    def raise_for_errors(self) -> None:
        """Raise the SynthesisError subtype matching the most basic failure."""
        if self.is_valid:
            return
        errors = self.errors
        summary = f"Generated code for '{self.tool_name}' failed validation"
        if self.has_category("syntax"):
            raise SynthesisSyntaxError(summary, tool_name=self.tool_name, violations=errors)
        if self.has_category("contract"):
            raise MissingContractError(summary, tool_name=self.tool_name, violations=errors)
        raise DeniedPatternError(summary, tool_name=self.tool_name, violations=errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "riskLevel": self.risk_level,
            "safetyScore": self.safety_score,
        }


# =============================================================================
# AST helpers
# =============================================================================


def _dotted(node: ast.AST) -> str | None:
    """``os.path.join`` for an Attribute chain rooted at a Name, else None."""
    parts: list[str] = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if isinstance(node, ast.Name):
        parts.append(node.id)
        return ".".join(reversed(parts))
    return None


def _calls(tree: ast.AST) -> Iterator[tuple[ast.Call, str]]:
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            name = _dotted(node.func)
            if name:
                yield node, name


def _callee_attr(call: ast.Call) -> str | None:
    """Last component of the called name (``now`` for ``datetime.now()``)."""
    if isinstance(call.func, ast.Attribute):
        return call.func.attr
    if isinstance(call.func, ast.Name):
        return call.func.id
    return None


def _while_loops(tree: ast.AST) -> Iterator[ast.While]:
    for node in ast.walk(tree):
        if isinstance(node, ast.While):
            yield node


def _is_constant_true(test: ast.expr) -> bool:
    return isinstance(test, ast.Constant) and bool(test.value)


def _exits_loop(node: ast.AST, nested_loop: bool = False) -> bool:
    """True if ``node`` contains a break (for this loop), return or raise."""
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)):
        return False
    if isinstance(node, (ast.Return, ast.Raise)):
        return True
    if isinstance(node, ast.Break):
        return not nested_loop
    inner = nested_loop or isinstance(node, (ast.While, ast.For, ast.AsyncFor))
    return any(_exits_loop(child, inner) for child in ast.iter_child_nodes(node))


def _body_exits(loop: ast.While) -> bool:
    return any(_exits_loop(stmt) for stmt in loop.body)


def _success_flags(tree: ast.AST) -> set[bool]:
    """Literal values assigned to a ``success`` key anywhere in the module."""
    flags: set[bool] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Dict):
            for key, value in zip(node.keys, node.values):
                if (
                    isinstance(key, ast.Constant)
                    and key.value == "success"
                    and isinstance(value, ast.Constant)
                    and isinstance(value.value, bool)
                ):
                    flags.add(value.value)
        elif isinstance(node, ast.Call) and _dotted(node.func) == "dict":
            for keyword in node.keywords:
                if (
                    keyword.arg == "success"
                    and isinstance(keyword.value, ast.Constant)
                    and isinstance(keyword.value.value, bool)
                ):
                    flags.add(keyword.value.value)
    return flags


def _imported_modules(node: ast.Import | ast.ImportFrom) -> list[str]:
    if isinstance(node, ast.Import):
        return [alias.name for alias in node.names]
    module = node.module or ""
    if module == "urllib" and all(alias.name == "parse" for alias in node.names):
        return ["urllib.parse"]
    return [module]


# =============================================================================
# Contract rules
# =============================================================================


def check_tool_name(ctx: ToolSource) -> Iterator[str]:
    value: ast.expr | None = None
    for stmt in ctx.tree.body:
        if isinstance(stmt, ast.Assign):
            if any(isinstance(t, ast.Name) and t.id == "TOOL_NAME" for t in stmt.targets):
                value = stmt.value
        elif isinstance(stmt, ast.AnnAssign):
            if isinstance(stmt.target, ast.Name) and stmt.target.id == "TOOL_NAME":
                value = stmt.value

    if value is None:
        yield "Tool must define a module-level TOOL_NAME string"
    elif not (isinstance(value, ast.Constant) and isinstance(value.value, str)):
        yield "TOOL_NAME must be a string literal"
    elif ctx.tool_name and value.value != ctx.tool_name:
        yield f"TOOL_NAME must be '{ctx.tool_name}' (found '{value.value}')"


def check_entry_point(ctx: ToolSource) -> Iterator[str]:
    candidates = [
        stmt
        for stmt in ctx.tree.body
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)) and stmt.name == "invoke"
    ]
    if not candidates:
        yield "Tool must define a top-level invoke(params) function"
        return
    args = candidates[-1].args
    if not (args.posonlyargs or args.args or args.vararg):
        yield "invoke must accept a params argument"


def check_success_path(ctx: ToolSource) -> Iterator[str]:
    if True not in _success_flags(ctx.tree):
        yield "Tool must return {'success': True, 'result': ..., 'toolName': TOOL_NAME} on success"


def check_error_path(ctx: ToolSource) -> Iterator[str]:
    if False not in _success_flags(ctx.tree):
        yield "Tool must return {'success': False, 'error': ..., 'toolName': TOOL_NAME} on failure"


def check_error_handling(ctx: ToolSource) -> Iterator[str]:
    try_types: tuple[type, ...] = (ast.Try,)
    if hasattr(ast, "TryStar"):
        try_types += (ast.TryStar,)
    if not any(isinstance(node, try_types) for node in ast.walk(ctx.tree)):
        yield "Tool must wrap its work in try/except error handling"


# =============================================================================
# Denylist rules
# =============================================================================

PROCESS_TERMINATION = {"exit", "quit", "sys.exit", "os._exit", "os.abort", "os.kill", "os.killpg"}
SUBPROCESS_ATTR = re.compile(r"^os\.(system|popen|fork\w*|spawn\w*|exec\w*|posix_spawn\w*)$")
DYNAMIC_EVALUATION = {"eval", "exec", "compile"}
AMBIENT_STATE_CALLS = {"globals", "locals", "vars"}
AMBIENT_STATE_ATTRS = {"os.environ", "os.getenv", "os.putenv", "os.unsetenv"}


def check_process_termination(ctx: ToolSource) -> Iterator[str]:
    for _call, name in _calls(ctx.tree):
        if name in PROCESS_TERMINATION:
            yield f"Process termination call '{name}()'"


def check_subprocess(ctx: ToolSource) -> Iterator[str]:
    for node in ast.walk(ctx.tree):
        if isinstance(node, ast.Attribute):
            name = _dotted(node) or ""
            if SUBPROCESS_ATTR.match(name) or name.split(".")[0] in ("subprocess", "pty"):
                yield f"Subprocess spawning via '{name}'"


def check_filesystem(ctx: ToolSource) -> Iterator[str]:
    for _call, name in _calls(ctx.tree):
        if name == "open":
            yield "Unrestricted filesystem access via open()"


def check_dynamic_evaluation(ctx: ToolSource) -> Iterator[str]:
    for _call, name in _calls(ctx.tree):
        if name in DYNAMIC_EVALUATION:
            yield f"Dynamic code evaluation via {name}()"


def check_dynamic_import(ctx: ToolSource) -> Iterator[str]:
    for node in ast.walk(ctx.tree):
        if isinstance(node, ast.Name) and node.id in ("__import__", "importlib"):
            yield f"Dynamic module loading via '{node.id}'"


def check_ambient_state(ctx: ToolSource) -> Iterator[str]:
    for node in ast.walk(ctx.tree):
        if isinstance(node, ast.Call) and _dotted(node.func) in AMBIENT_STATE_CALLS:
            yield f"Access to interpreter state via {_dotted(node.func)}()"
        elif isinstance(node, ast.Attribute) and _dotted(node) in AMBIENT_STATE_ATTRS:
            yield f"Access to process environment via '{_dotted(node)}'"
        elif isinstance(node, ast.Name) and node.id in ("sys", "builtins"):
            yield f"Access to interpreter state via '{node.id}'"


def check_dunder_access(ctx: ToolSource) -> Iterator[str]:
    for node in ast.walk(ctx.tree):
        if isinstance(node, ast.Attribute):
            attr = node.attr
            if attr.startswith("__") and attr.endswith("__") and attr not in ALLOWED_DUNDERS:
                yield f"Access to disallowed dunder attribute '{attr}'"
        elif isinstance(node, ast.Name):
            name = node.id
            if (
                name.startswith("__")
                and name.endswith("__")
                and name not in ALLOWED_DUNDERS
                and name != "__import__"
            ):
                yield f"Reference to disallowed dunder name '{name}'"


def check_private_module_attribute(ctx: ToolSource) -> Iterator[str]:
    aliases: set[str] = set()
    for node in ast.walk(ctx.tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                aliases.add(alias.asname or alias.name.split(".")[0])
    for node in ast.walk(ctx.tree):
        if not isinstance(node, ast.Attribute):
            continue
        name = _dotted(node)
        if not name:
            continue
        root, *rest = name.split(".")
        if root in aliases and any(
            part.startswith("_") and not part.endswith("__") for part in rest
        ):
            yield f"Access to private module attribute '{name}'"


def check_imports(ctx: ToolSource) -> Iterator[str]:
    for node in ast.walk(ctx.tree):
        if not isinstance(node, (ast.Import, ast.ImportFrom)):
            continue
        if isinstance(node, ast.ImportFrom) and node.level:
            yield "Relative imports are not allowed"
            continue
        for module in _imported_modules(node):
            top = module.split(".")[0]
            if top in DENIED_MODULES:
                yield f"Import of '{module}' ({DENIED_MODULES[top]})"
            elif not is_allowed_module(module):
                yield f"Import of '{module}' is outside the library allow-list"


# =============================================================================
# Runaway-execution heuristics
# =============================================================================

DATE_CALLS = {"date", "datetime", "now", "today", "utcnow", "timedelta", "fromtimestamp"}


def _test_calls(loop: ast.While) -> list[ast.Call]:
    return [node for node in ast.walk(loop.test) if isinstance(node, ast.Call)]


def _compares_weekday(loop: ast.While) -> bool:
    for node in ast.walk(loop.test):
        if isinstance(node, ast.Compare):
            for sub in ast.walk(node):
                if isinstance(sub, ast.Call) and _callee_attr(sub) in ("weekday", "isoweekday"):
                    return True
    return False


def check_unconditional_loop(ctx: ToolSource) -> Iterator[str]:
    for loop in _while_loops(ctx.tree):
        if _is_constant_true(loop.test) and not _body_exits(loop):
            yield (
                f"Unconditional 'while {ast.unparse(loop.test)}' loop at line {loop.lineno} "
                "has no break, return or raise"
            )


def check_weekday_condition(ctx: ToolSource) -> Iterator[str]:
    for loop in _while_loops(ctx.tree):
        if _compares_weekday(loop):
            yield f"weekday() comparison in while condition at line {loop.lineno}"


def check_unconditional_loop_with_exit(ctx: ToolSource) -> Iterator[str]:
    for loop in _while_loops(ctx.tree):
        if _is_constant_true(loop.test) and _body_exits(loop):
            yield f"'while {ast.unparse(loop.test)}' loop at line {loop.lineno} depends on an internal exit"


def check_date_condition(ctx: ToolSource) -> Iterator[str]:
    for loop in _while_loops(ctx.tree):
        if _compares_weekday(loop):
            continue
        if any(_callee_attr(call) in DATE_CALLS for call in _test_calls(loop)):
            yield f"Date-based while condition at line {loop.lineno} may never become false"


def check_counter_in_condition(ctx: ToolSource) -> Iterator[str]:
    for loop in _while_loops(ctx.tree):
        for node in ast.walk(loop.test):
            if (
                isinstance(node, ast.NamedExpr)
                and isinstance(node.value, ast.BinOp)
                and isinstance(node.value.op, (ast.Add, ast.Sub))
            ):
                yield f"Counter update inside while condition at line {loop.lineno}"
                break


def _calls_set_timeout(node: ast.AST) -> bool:
    return any(name == "set_timeout" for _call, name in _calls(node))


def check_nested_timers(ctx: ToolSource) -> Iterator[str]:
    functions = {
        node.name: node
        for node in ast.walk(ctx.tree)
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))
    }
    for call, name in _calls(ctx.tree):
        if name != "set_timeout" or not call.args:
            continue
        callback = call.args[0]
        nested = False
        if isinstance(callback, ast.Lambda):
            nested = _calls_set_timeout(callback.body)
        elif isinstance(callback, ast.Name) and callback.id in functions:
            nested = _calls_set_timeout(functions[callback.id])
        if nested:
            yield f"Nested set_timeout chain at line {call.lineno} may reschedule itself indefinitely"


def check_recursion(ctx: ToolSource) -> Iterator[str]:
    for node in ast.walk(ctx.tree):
        if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        if any(name == node.name for _call, name in _calls(node)):
            yield f"Recursive function '{node.name}' - ensure a proper base case"


def check_large_allocation(ctx: ToolSource) -> Iterator[str]:
    for node in ast.walk(ctx.tree):
        if not (isinstance(node, ast.BinOp) and isinstance(node.op, ast.Mult)):
            continue
        for seq, count in ((node.left, node.right), (node.right, node.left)):
            is_sequence = isinstance(seq, (ast.List, ast.Tuple)) or (
                isinstance(seq, ast.Constant) and isinstance(seq.value, (str, bytes))
            )
            if (
                is_sequence
                and isinstance(count, ast.Constant)
                and isinstance(count.value, int)
                and count.value >= 1_000_000
            ):
                yield f"Large allocation at line {node.lineno}"
                break


# =============================================================================
# Quality rules
# =============================================================================

SECRET_PATTERNS = [
    re.compile(r"^\d{1,3}(\.\d{1,3}){3}$"),  # IP addresses
    re.compile(r"^(sk|pk)_[A-Za-z0-9_]{8,}$"),  # API key prefixes
    re.compile(r"^(?=.*\d)(?=.*[A-Za-z])[A-Za-z0-9+/]{32,}={0,2}$"),  # tokens
]


def check_hardcoded_secrets(ctx: ToolSource) -> Iterator[str]:
    for node in ast.walk(ctx.tree):
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            if any(pattern.match(node.value) for pattern in SECRET_PATTERNS):
                yield "Hardcoded sensitive value detected"
                return


def check_source_length(ctx: ToolSource) -> Iterator[str]:
    length = len(ctx.source)
    if length < 200:
        yield "Tool appears very simple - ensure it provides value"
    elif length > 5000:
        yield "Tool is very complex - consider breaking it into smaller functions"


def check_print_usage(ctx: ToolSource) -> Iterator[str]:
    if any(name == "print" for _call, name in _calls(ctx.tree)):
        yield "Use log(...) instead of print()"


DEFAULT_RULES: tuple[ValidationRule, ...] = (
    # Structural contract
    ValidationRule("tool_name", "error", "contract", check_tool_name),
    ValidationRule("entry_point", "error", "contract", check_entry_point),
    ValidationRule("success_path", "error", "contract", check_success_path),
    ValidationRule("error_path", "error", "contract", check_error_path),
    ValidationRule("error_handling", "error", "contract", check_error_handling),
    # Denylist
    ValidationRule("process_termination", "error", "denied", check_process_termination),
    ValidationRule("subprocess", "error", "denied", check_subprocess),
    ValidationRule("filesystem", "error", "denied", check_filesystem),
    ValidationRule("dynamic_evaluation", "error", "denied", check_dynamic_evaluation),
    ValidationRule("dynamic_import", "error", "denied", check_dynamic_import),
    ValidationRule("ambient_state", "error", "denied", check_ambient_state),
    ValidationRule("dunder_access", "error", "denied", check_dunder_access),
    ValidationRule("private_module_attribute", "error", "denied", check_private_module_attribute),
    ValidationRule("imports", "error", "denied", check_imports),
    # Runaway execution: hard
    ValidationRule("unconditional_loop", "error", "runaway", check_unconditional_loop),
    ValidationRule("weekday_loop_condition", "error", "runaway", check_weekday_condition),
    # Runaway execution: soft
    ValidationRule("unconditional_loop_with_exit", "warning", "runaway", check_unconditional_loop_with_exit),
    ValidationRule("date_loop_condition", "warning", "runaway", check_date_condition),
    ValidationRule("counter_in_loop_condition", "warning", "runaway", check_counter_in_condition),
    ValidationRule("nested_timers", "warning", "runaway", check_nested_timers),
    ValidationRule("recursion", "warning", "runaway", check_recursion),
    ValidationRule("large_allocation", "warning", "runaway", check_large_allocation),
    # Quality
    ValidationRule("hardcoded_secrets", "warning", "quality", check_hardcoded_secrets),
    ValidationRule("source_length", "warning", "quality", check_source_length),
    ValidationRule("print_usage", "warning", "quality", check_print_usage),
)


class Validator:
    """
    Pure, stateless static analysis of tool source code.

    Usage:
        report = Validator().check(source, tool_name="add_numbers")
        if not report.is_valid:
            print(report.errors)
    """

    def __init__(
        self,
        rules: Sequence[ValidationRule] | None = None,
        *,
        extra_rules: Sequence[ValidationRule] = (),
        max_source_length: int = 20_000,
    ) -> None:
        self.rules: list[ValidationRule] = list(DEFAULT_RULES if rules is None else rules)
        self.rules.extend(extra_rules)
        self.max_source_length = max_source_length

    def check(self, source: str, tool_name: str | None = None) -> ValidationReport:
        report = ValidationReport(tool_name=tool_name)

        if not source.strip():
            report.issues.append(
                ValidationIssue("empty_source", "error", "contract", "Source code is empty")
            )
            return report

        if len(source) > self.max_source_length:
            report.issues.append(
                ValidationIssue(
                    "source_size",
                    "error",
                    "denied",
                    f"Source code exceeds maximum length of {self.max_source_length} "
                    f"characters (got {len(source)})",
                )
            )
            return report

        try:
            tree = ast.parse(source)
        except SyntaxError as e:
            report.issues.append(
                ValidationIssue("syntax", "error", "syntax", f"Syntax error at line {e.lineno}: {e.msg}")
            )
            return report

        ctx = ToolSource(source=source, tool_name=tool_name, tree=tree)
        for rule in self.rules:
            seen: set[str] = set()
            for message in rule.check(ctx):
                if message in seen:
                    continue
                seen.add(message)
                report.issues.append(ValidationIssue(rule.name, rule.severity, rule.category, message))

        logger.info(
            "Validation complete for %s: %s (%s risk, %d errors, %d warnings)",
            tool_name or "<unnamed>",
            "VALID" if report.is_valid else "INVALID",
            report.risk_level,
            len(report.errors),
            len(report.warnings),
        )
        return report
