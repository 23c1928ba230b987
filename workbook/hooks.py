"""Per-instance hook state for function components.

A render binds a :class:`HookFrame` to the current context; hooks called
by the component claim slots from it in call order, so a component must
call the same hooks in the same order on every render.
"""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from workbook.errors import RenderError

_current_frame: ContextVar[Optional["HookFrame"]] = ContextVar("workbook_hook_frame", default=None)


class Ref:
    __slots__ = ("current",)

    def __init__(self, current: Any = None):
        self.current = current

    def __repr__(self) -> str:
        return f"Ref({self.current!r})"


class _Effect:
    __slots__ = ("deps", "cleanup", "effect")

    def __init__(self) -> None:
        self.deps: Optional[Tuple[Any, ...]] = None
        self.cleanup: Optional[Callable[[], Any]] = None
        self.effect: Optional[Callable[[], Any]] = None


class HookFrame:
    def __init__(self, on_change: Optional[Callable[[], None]] = None):
        self.slots: List[Any] = []
        self.index = 0
        self.pending: List[_Effect] = []
        self.on_change = on_change or (lambda: None)

    def slot(self, init: Callable[[], Any]) -> Any:
        if self.index == len(self.slots):
            self.slots.append(init())
        value = self.slots[self.index]
        self.index += 1
        return value

    def run_effects(self) -> None:
        pending, self.pending = self.pending, []
        for eff in pending:
            if eff.cleanup is not None:
                eff.cleanup()
                eff.cleanup = None
            result = eff.effect() if eff.effect else None
            eff.cleanup = result if callable(result) else None

    def unmount(self) -> None:
        for value in self.slots:
            if isinstance(value, _Effect) and value.cleanup is not None:
                cleanup, value.cleanup = value.cleanup, None
                cleanup()


@contextmanager
def rendering(frame: HookFrame) -> Iterator[HookFrame]:
    frame.index = 0
    token = _current_frame.set(frame)
    try:
        yield frame
    finally:
        _current_frame.reset(token)


def _frame(hook: str) -> HookFrame:
    frame = _current_frame.get()
    if frame is None:
        raise RenderError(f"{hook}() can only be called while a component is rendering")
    return frame


def _deps_changed(old: Optional[Tuple[Any, ...]], new: Optional[Sequence[Any]]) -> bool:
    if new is None or old is None:
        return True
    return tuple(new) != old


def use_state(initial: Any = None) -> Tuple[Any, Callable[[Any], None]]:
    frame = _frame("use_state")

    def init():
        cell = [initial() if callable(initial) else initial]

        def set_state(value):
            if callable(value):
                value = value(cell[0])
            if value is cell[0] or value == cell[0]:
                return
            cell[0] = value
            frame.on_change()

        cell.append(set_state)
        return cell

    cell = frame.slot(init)
    return cell[0], cell[1]


def use_ref(initial: Any = None) -> Ref:
    return _frame("use_ref").slot(lambda: Ref(initial))


def use_memo(factory: Callable[[], Any], deps: Optional[Sequence[Any]] = None) -> Any:
    memo = _frame("use_memo").slot(lambda: {"deps": None, "value": None, "ready": False})
    if not memo["ready"] or _deps_changed(memo["deps"], deps):
        memo["value"] = factory()
        memo["deps"] = None if deps is None else tuple(deps)
        memo["ready"] = True
    return memo["value"]


def use_callback(fn: Callable[..., Any], deps: Optional[Sequence[Any]] = None) -> Callable[..., Any]:
    return use_memo(lambda: fn, deps)


def use_effect(effect: Callable[[], Any], deps: Optional[Sequence[Any]] = None) -> None:
    """Schedule ``effect`` to run after this render when ``deps`` changed (always when None)."""
    frame = _frame("use_effect")
    eff = frame.slot(_Effect)
    first = eff.effect is None
    if first or _deps_changed(eff.deps, deps):
        eff.effect = effect
        eff.deps = None if deps is None else tuple(deps)
        frame.pending.append(eff)
