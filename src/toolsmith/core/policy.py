"""
Execution policy shared by the validator and the sandbox.

The validator rejects code that reaches outside these sets; the sandbox
enforces the same sets at run time, so code that slips past the static scan
still cannot import or call anything else.
"""

from __future__ import annotations

# Library namespaces a tool may import.
ALLOWED_MODULES: frozenset[str] = frozenset({
    "math",
    "re",
    "json",
    "collections",
    "itertools",
    "functools",
    "string",
    "textwrap",
    "unicodedata",
    "datetime",
    "decimal",
    "fractions",
    "random",
    "statistics",
    "operator",
    "copy",
    "dataclasses",
    "enum",
    "typing",
    "bisect",
    "heapq",
    "uuid",
    "hashlib",
    "base64",
    "html",
    "csv",
    "urllib.parse",
})

# Modules whose presence means a specific denied capability, with the reason.
DENIED_MODULES: dict[str, str] = {
    "os": "filesystem and process access",
    "shutil": "filesystem access",
    "pathlib": "filesystem access",
    "io": "filesystem access",
    "tempfile": "filesystem access",
    "glob": "filesystem access",
    "subprocess": "subprocess spawning",
    "pty": "subprocess spawning",
    "multiprocessing": "subprocess spawning",
    "sys": "process-wide interpreter state",
    "builtins": "process-wide interpreter state",
    "importlib": "dynamic module loading",
    "ctypes": "native code access",
    "socket": "raw network access",
    "signal": "process control",
    "threading": "thread creation",
    "_thread": "thread creation",
    "pickle": "arbitrary object deserialization",
    "marshal": "arbitrary object deserialization",
}

# Names injected into every tool's globals by the sandbox.
INJECTED_CAPABILITIES: frozenset[str] = frozenset({
    "fetch_web_content",
    "web_research",
    "sleep",
    "set_timeout",
    "clear_timeout",
    "log",
})

# Builtins available inside the sandbox (whitelist).
SAFE_BUILTINS: frozenset[str] = frozenset({
    # Types and constructors
    "int",
    "float",
    "str",
    "bool",
    "bytes",
    "bytearray",
    "complex",
    "list",
    "tuple",
    "dict",
    "set",
    "frozenset",
    "slice",
    "range",
    "object",
    # Iteration
    "iter",
    "next",
    "reversed",
    "enumerate",
    "zip",
    "map",
    "filter",
    "sorted",
    # Numeric
    "abs",
    "round",
    "min",
    "max",
    "sum",
    "pow",
    "divmod",
    "bin",
    "oct",
    "hex",
    # Strings
    "repr",
    "ascii",
    "chr",
    "ord",
    "format",
    "hash",
    # Introspection that cannot reach frames or globals
    "isinstance",
    "issubclass",
    "callable",
    "len",
    "hasattr",
    "all",
    "any",
    "print",
    # Exceptions
    "BaseException",
    "Exception",
    "ValueError",
    "TypeError",
    "KeyError",
    "IndexError",
    "AttributeError",
    "RuntimeError",
    "StopIteration",
    "ZeroDivisionError",
    "OverflowError",
    "ArithmeticError",
    "LookupError",
    "NotImplementedError",
    "UnicodeError",
    "UnicodeDecodeError",
    "UnicodeEncodeError",
    "AssertionError",
})

# Dunder attributes tool code may touch.
ALLOWED_DUNDERS: frozenset[str] = frozenset({
    "__init__",
    "__str__",
    "__repr__",
    "__len__",
    "__eq__",
    "__ne__",
    "__lt__",
    "__le__",
    "__gt__",
    "__ge__",
    "__hash__",
    "__bool__",
    "__contains__",
    "__iter__",
    "__next__",
    "__getitem__",
    "__setitem__",
    "__delitem__",
    "__add__",
    "__sub__",
    "__mul__",
    "__truediv__",
    "__floordiv__",
    "__mod__",
    "__pow__",
    "__neg__",
    "__abs__",
    "__enter__",
    "__exit__",
    "__call__",
    "__name__",
    "__doc__",
})


def is_allowed_module(name: str) -> bool:
    """Return True if ``name`` (dotted) may be imported by tool code."""
    # ``urllib`` itself is not allowed, only ``urllib.parse``.
    return name in ALLOWED_MODULES or name.split(".")[0] in ALLOWED_MODULES
