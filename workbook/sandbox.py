"""Static and runtime guards for evaluating generated component code."""
from __future__ import annotations

import ast
import builtins
import string
import sys
import time
from typing import Any, Dict, Optional

COMPONENT_FILENAME = "<component>"

DISALLOWED_CALLS = {
    "__import__",
    "eval",
    "exec",
    "open",
    "compile",
    "globals",
    "locals",
    "vars",
    "input",
    "getattr",
    "setattr",
    "delattr",
    "breakpoint",
}
DISALLOWED_NAMES = {"BaseException", "BudgetExceeded"}
# frame, code and traceback introspection on generators, coroutines and exceptions
DISALLOWED_ATTR_PREFIXES = ("f_", "gi_", "cr_", "ag_", "tb_", "co_")
FORMAT_METHODS = {"format", "format_map"}

SAFE_BUILTINS = (
    "abs", "all", "any", "bool", "dict", "enumerate", "filter", "float", "format",
    "frozenset", "int", "isinstance", "len", "list", "map", "max", "min", "print",
    "range", "repr", "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
    "Exception", "ValueError", "TypeError", "KeyError", "IndexError", "RuntimeError",
    "ZeroDivisionError", "True", "False", "None",
)


class UnsafeCodeError(ValueError):
    """Raised when generated code fails the static safety checks."""


class BudgetExceeded(BaseException):
    """Generated code ran past its step or time budget.

    Derives from BaseException so ``except Exception`` in generated code
    cannot swallow it.
    """


def _format_fields_are_plain(template: str) -> bool:
    """True when no replacement field in ``template`` reaches into attributes or items."""
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError:
        return False
    for _, field_name, format_spec, _ in parsed:
        if field_name and ("." in field_name or "[" in field_name):
            return False
        if format_spec and not _format_fields_are_plain(format_spec):
            return False
    return True


def validate_tree(tree: ast.AST) -> None:
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            func = node.func
            if isinstance(func, ast.Name) and func.id in DISALLOWED_CALLS:
                raise UnsafeCodeError(f"Call to '{func.id}' is not permitted in generated code.")
        elif isinstance(node, ast.Attribute):
            if node.attr.startswith("__"):
                raise UnsafeCodeError("Access to dunder attributes is not permitted.")
            if node.attr.startswith(DISALLOWED_ATTR_PREFIXES):
                raise UnsafeCodeError(f"Access to '{node.attr}' is not permitted.")
            if node.attr in FORMAT_METHODS:
                template = node.value
                if not (
                    isinstance(template, ast.Constant)
                    and isinstance(template.value, str)
                    and _format_fields_are_plain(template.value)
                ):
                    raise UnsafeCodeError(
                        f"'.{node.attr}' is only permitted on literal strings with plain fields; use an f-string."
                    )
        elif isinstance(node, ast.Subscript):
            key = node.slice
            if isinstance(key, ast.Constant) and isinstance(key.value, str) and key.value.startswith("__"):
                raise UnsafeCodeError("Dunder keys are not permitted.")
        elif isinstance(node, ast.Name):
            if node.id.startswith("__") or node.id in DISALLOWED_NAMES:
                raise UnsafeCodeError(f"Use of name '{node.id}' is not permitted.")
        elif isinstance(node, ast.ExceptHandler):
            if node.type is None:
                raise UnsafeCodeError("Bare 'except:' is not permitted; catch Exception instead.")
        elif isinstance(node, (ast.AsyncFunctionDef, ast.AsyncFor, ast.AsyncWith, ast.Await)):
            raise UnsafeCodeError("Async code is not supported in generated components.")
        elif isinstance(node, (ast.Global, ast.Nonlocal)) and any(n.startswith("__") for n in node.names):
            raise UnsafeCodeError("Rebinding dunder names is not permitted.")


def safe_builtins() -> Dict[str, Any]:
    table = {name: getattr(builtins, name) for name in SAFE_BUILTINS}
    # class statements look this up; user code cannot name it
    table["__build_class__"] = builtins.__build_class__
    return table


class ExecutionBudget:
    """Bound generated code by traced line events and wall-clock time.

    Only frames whose code comes from ``filename`` are traced, so host
    callbacks invoked by the component run at full speed.
    """

    CLOCK_CHECK_EVERY = 64

    def __init__(
        self,
        max_steps: int = 200_000,
        max_seconds: Optional[float] = 2.0,
        filename: str = COMPONENT_FILENAME,
    ):
        self.max_steps = max_steps
        self.max_seconds = max_seconds
        self.filename = filename
        self.steps = 0
        self._deadline: Optional[float] = None
        self._previous = None

    def __enter__(self) -> "ExecutionBudget":
        self.steps = 0
        self._deadline = time.monotonic() + self.max_seconds if self.max_seconds else None
        self._previous = sys.gettrace()
        sys.settrace(self._trace_call)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        sys.settrace(self._previous)

    def _trace_call(self, frame, event, arg):
        if event == "call" and frame.f_code.co_filename == self.filename:
            return self._trace_line
        return None

    def _trace_line(self, frame, event, arg):
        if event == "line":
            self.steps += 1
            if self.steps > self.max_steps:
                raise BudgetExceeded(f"step budget of {self.max_steps} exceeded")
            if (
                self._deadline is not None
                and self.steps % self.CLOCK_CHECK_EVERY == 0
                and time.monotonic() > self._deadline
            ):
                raise BudgetExceeded(f"time budget of {self.max_seconds}s exceeded")
        return self._trace_line
