from __future__ import annotations

import keyword
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from workbook.elements import Element, Fragment, create_element
from workbook.errors import CompilationError
from workbook.normalizer import normalize
from workbook.registry import CapabilityRegistry, DEFAULT_REGISTRY
from workbook.sandbox import COMPONENT_FILENAME, BudgetExceeded, ExecutionBudget, safe_builtins

log = logging.getLogger(__name__)

Component = Callable[..., Any]


def _empty_component(props=None):
    return None


def select_export(exports: Mapping[str, Any]) -> Any:
    """A non-None default export wins; otherwise exactly one named export is required."""
    if exports.get("default") is not None:
        return exports["default"]
    named = [k for k in exports if k != "default"]
    if not named:
        raise CompilationError("No exports found in component")
    if len(named) > 1:
        raise CompilationError(f"Ambiguous exports: {', '.join(named)}")
    return exports[named[0]]


def build_scope(registry: CapabilityRegistry, user_ctx: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    scope: Dict[str, Any] = {
        "__builtins__": safe_builtins(),
        "__name__": "component",
        "create_element": create_element,
        "Fragment": Fragment,
        "require": registry.require,
        "exports": {},
    }
    for module in registry.modules:
        scope[module] = registry.namespace(module)
    for key, value in (user_ctx or {}).items():
        if not key.isidentifier() or keyword.iskeyword(key) or key.startswith("_"):
            raise CompilationError(f"Invalid user context name: {key!r}")
        scope[key] = value
    return scope


def _as_component(value: Any) -> Component:
    if isinstance(value, Element):
        element = value
        return lambda props=None: element
    if not callable(value):
        raise CompilationError(f"Exported value is not a component: {type(value).__name__}")
    return value


def compile_component(
    code: str,
    user_ctx: Optional[Mapping[str, Any]] = None,
    *,
    registry: CapabilityRegistry = DEFAULT_REGISTRY,
    budget: Optional[ExecutionBudget] = None,
) -> Component:
    """Evaluate generated component source and return its exported component.

    Every failure (markup, syntax, unknown imports, unsafe code, runtime
    errors, budget overruns, export selection) is logged with the source
    and raised as CompilationError.
    """
    if not code or not code.strip():
        return _empty_component
    log.debug("Compiling component source:\n%s", code)
    try:
        normalized = normalize(code, registry)
        program = compile(normalized.code, COMPONENT_FILENAME, "exec")
        scope = build_scope(registry, user_ctx)
        with budget or ExecutionBudget():
            exec(program, scope)
        return _as_component(select_export(scope["exports"]))
    except (Exception, BudgetExceeded) as exc:
        log.error("Component compilation failed: %s\nInput code:\n%s", exc, code)
        if isinstance(exc, CompilationError):
            raise CompilationError(str(exc), source=code) from exc
        raise CompilationError(f"{type(exc).__name__}: {exc}", source=code) from exc
