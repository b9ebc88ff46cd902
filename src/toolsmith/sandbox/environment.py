"""
Restricted globals for tool code.

Each execution gets a brand-new globals dict containing:
- a whitelisted ``__builtins__`` (no open/eval/exec/globals/...)
- a restricted ``__import__`` that only hands out allow-listed modules
- the injected capability helpers

Modules are handed out behind a proxy that refuses private attributes, so
``random._os`` and similar back doors are closed at run time as well as by
the static validator.
"""

from __future__ import annotations

import builtins
import importlib
import logging
from types import ModuleType
from typing import Any, Callable, Mapping

from toolsmith.core.policy import ALLOWED_DUNDERS, SAFE_BUILTINS, is_allowed_module

logger = logging.getLogger(__name__)


class ModuleProxy:
    """Read-only view of a module without private attributes."""

    __slots__ = ("_module", "_children")

    def __init__(self, module: ModuleType, children: Mapping[str, Any] | None = None) -> None:
        object.__setattr__(self, "_module", module)
        object.__setattr__(self, "_children", dict(children or {}))

    def __getattribute__(self, name: str) -> Any:
        # Every lookup goes through here, including the slot names.
        children = object.__getattribute__(self, "_children")
        if name in children:
            return children[name]
        if name.startswith("_") and name not in ALLOWED_DUNDERS:
            raise AttributeError(f"Access to '{name}' is not allowed in the tool sandbox")
        module = object.__getattribute__(self, "_module")
        value = getattr(module, name)
        if isinstance(value, ModuleType):
            # Submodules reachable by attribute must be allow-listed themselves.
            qualified = f"{module.__name__}.{name}"
            if not is_allowed_module(qualified):
                raise AttributeError(f"Module '{qualified}' is not allowed in the tool sandbox")
            return ModuleProxy(value)
        return value

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Modules are read-only in the tool sandbox")

    def __dir__(self) -> list[str]:
        module = object.__getattribute__(self, "_module")
        return [name for name in dir(module) if not name.startswith("_")]

    def __repr__(self) -> str:
        module = object.__getattribute__(self, "_module")
        return f"<sandboxed module '{module.__name__}'>"


def _proxy_for_import(name: str, fromlist: Any) -> ModuleProxy:
    """Mirror ``__import__`` return semantics for an allowed module name."""
    module = importlib.import_module(name)
    if fromlist or "." not in name:
        return ModuleProxy(module)

    # ``import a.b.c`` binds ``a``; expose only the imported chain under it.
    parts = name.split(".")
    child: Any = ModuleProxy(module)
    for depth in range(len(parts) - 1, 0, -1):
        parent = importlib.import_module(".".join(parts[:depth]))
        child = ModuleProxy(parent, {parts[depth]: child})
    return child


def make_restricted_import(tool_name: str) -> Callable[..., Any]:
    def restricted_import(
        name: str,
        globals: Mapping[str, Any] | None = None,
        locals: Mapping[str, Any] | None = None,
        fromlist: Any = (),
        level: int = 0,
    ) -> ModuleProxy:
        if level:
            raise ImportError("Relative imports are not available in the tool sandbox")
        if not is_allowed_module(name):
            logger.warning("BLOCKED IMPORT: tool '%s' attempted to import '%s'", tool_name, name)
            raise ImportError(f"Module '{name}' is not allowed in the tool sandbox")
        return _proxy_for_import(name, fromlist)

    return restricted_import


def build_safe_builtins(tool_name: str) -> dict[str, Any]:
    safe: dict[str, Any] = {
        name: getattr(builtins, name) for name in SAFE_BUILTINS if hasattr(builtins, name)
    }
    safe["True"] = True
    safe["False"] = False
    safe["None"] = None
    # Needed for ``class`` statements in tool code.
    safe["__build_class__"] = builtins.__build_class__
    safe["__import__"] = make_restricted_import(tool_name)
    return safe


def build_globals(
    tool_name: str,
    capabilities: Mapping[str, Callable[..., Any]],
    module_name: str,
) -> dict[str, Any]:
    """Fresh globals dict for one execution of one tool."""
    namespace: dict[str, Any] = {
        "__builtins__": build_safe_builtins(tool_name),
        "__name__": module_name,
        "__doc__": None,
    }
    namespace.update(capabilities)
    return namespace
