"""The fixed set of modules generated components may import from."""
from __future__ import annotations

import math
import random
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping

from workbook import hooks
from workbook.elements import Fragment, Widget, create_element


class UnknownModuleError(LookupError):
    pass


class UnknownExportError(LookupError):
    pass


class ModuleSurface:
    """Read-only attribute view of one registry module, bound by ``import M``."""

    __slots__ = ("_name", "_members")

    def __init__(self, name: str, members: Mapping[str, Any]):
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_members", members)

    def __getattr__(self, item: str) -> Any:
        try:
            return self._members[item]
        except KeyError:
            raise AttributeError(f"module '{self._name}' has no attribute '{item}'") from None

    def __setattr__(self, key: str, value: Any) -> None:
        raise AttributeError(f"module '{self._name}' is read-only")

    def __dir__(self) -> List[str]:
        return sorted(self._members)

    def __repr__(self) -> str:
        return f"<module '{self._name}'>"


class CapabilityRegistry:
    def __init__(self, modules: Mapping[str, Mapping[str, Any]]):
        frozen = {name: MappingProxyType(dict(members)) for name, members in modules.items()}
        self._modules = MappingProxyType(frozen)
        self._surfaces = MappingProxyType(
            {name: ModuleSurface(name, members) for name, members in frozen.items()}
        )

    @property
    def modules(self) -> List[str]:
        return list(self._modules)

    def __contains__(self, module: object) -> bool:
        return module in self._modules

    def exports(self, module: str) -> Mapping[str, Any]:
        try:
            return self._modules[module]
        except KeyError:
            raise UnknownModuleError(f"Module '{module}' is not available to components") from None

    def check(self, module: str, names: Iterable[str] = ()) -> None:
        members = self.exports(module)
        missing = sorted(n for n in names if n not in members)
        if missing:
            raise UnknownExportError(
                f"Module '{module}' has no export(s): {', '.join(missing)}"
            )

    def namespace(self, module: str) -> ModuleSurface:
        self.exports(module)
        return self._surfaces[module]

    def require(self, module: str, *names: str):
        """``require("m")`` returns the module surface; with names, a list of their values."""
        if not names:
            return self.namespace(module)
        self.check(module, names)
        members = self._modules[module]
        return [members[n] for n in names]


def _widgets(*specs: Widget) -> Dict[str, Widget]:
    return {w.name: w for w in specs}


WIDGETS = _widgets(
    # layout
    Widget("Container", "div"),
    Widget("Stack", "div"),
    Widget("Group", "div"),
    Widget("Grid", "div"),
    Widget("Paper", "section"),
    Widget("Card", "article"),
    Widget("Divider", "hr", void=True),
    Widget("Space", "div"),
    # typography
    Widget("Title", "h"),
    Widget("Text", "p"),
    Widget("Badge", "span"),
    Widget("Code", "code"),
    Widget("Image", "img", void=True),
    Widget("List", "ul"),
    Widget("ListItem", "li"),
    Widget("Table", "table"),
    Widget("TableRow", "tr"),
    Widget("TableCell", "td"),
    # inputs
    Widget("TextInput", "input", void=True, labelled=True, defaults={"type": "text"}),
    Widget("NumberInput", "input", void=True, labelled=True, defaults={"type": "number"}),
    Widget("Textarea", "textarea", labelled=True),
    Widget("Select", "select", labelled=True),
    Widget("Option", "option"),
    Widget("Checkbox", "input", void=True, labelled=True, defaults={"type": "checkbox"}),
    Widget("Radio", "input", void=True, labelled=True, defaults={"type": "radio"}),
    Widget("Switch", "input", void=True, labelled=True, defaults={"type": "checkbox", "role": "switch"}),
    Widget("Button", "button", defaults={"type": "button"}),
    # feedback
    Widget("Alert", "div", defaults={"role": "alert"}),
    Widget("Loader", "div", defaults={"role": "progressbar"}),
    Widget("Progress", "progress"),
)

HOOKS = {
    "use_state": hooks.use_state,
    "use_effect": hooks.use_effect,
    "use_memo": hooks.use_memo,
    "use_callback": hooks.use_callback,
    "use_ref": hooks.use_ref,
}

ELEMENTS = {"create_element": create_element, "Fragment": Fragment}

MATH = {
    name: getattr(math, name)
    for name in (
        "ceil", "floor", "trunc", "sqrt", "pow", "exp", "log", "log10", "fabs",
        "gcd", "isclose", "hypot", "factorial", "comb", "perm", "prod",
        "sin", "cos", "tan", "radians", "degrees", "pi", "e", "inf",
    )
}

RANDOM = {
    name: getattr(random, name)
    for name in ("random", "randint", "randrange", "choice", "choices", "sample", "shuffle", "uniform")
}

DEFAULT_REGISTRY = CapabilityRegistry(
    {
        "widgets": WIDGETS,
        "hooks": HOOKS,
        "elements": ELEMENTS,
        "math": MATH,
        "random": RANDOM,
    }
)
