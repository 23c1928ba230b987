"""Mount compiled components, run their hooks, and serialise them to HTML."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

from workbook.compiler import Component, compile_component
from workbook.config import Settings
from workbook.elements import Element, Fragment, Widget
from workbook.errors import CompilationError, RenderError
from workbook.hooks import HookFrame, rendering
from workbook.registry import CapabilityRegistry, DEFAULT_REGISTRY
from workbook.sandbox import BudgetExceeded, ExecutionBudget

log = logging.getLogger(__name__)

_env = Environment(
    loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
    enable_async=False,
)

MAX_RERENDERS = 25
_ATTR_KEY_RE = re.compile(r"^[A-Za-z_:][\w:.-]*$")
_CLASS_KEYS = ("class", "className", "class_name")
_VOID_TAGS = {"area", "br", "col", "hr", "img", "input", "source", "wbr"}
_TAG_RE = re.compile(r"^[a-z][a-z0-9-]*$")
# tags that load or run active content
_BLOCKED_TAGS = {"script", "style", "iframe", "frame", "frameset", "object", "embed", "base", "link", "meta"}
_URL_ATTRS = {"href", "src", "action", "formaction", "xlink:href", "poster", "background"}
_SCRIPT_URL_RE = re.compile(r"^(?:javascript|vbscript):|^data:(?!image/)", re.IGNORECASE)
_CONTROL_RE = re.compile(r"[\x00-\x20]")


@dataclass
class HostNode:
    tag: str
    node_id: str
    attrs: Dict[str, Any] = field(default_factory=dict)
    children: List[Union["HostNode", str]] = field(default_factory=list)
    handlers: Dict[str, Callable[..., Any]] = field(default_factory=dict)
    void: bool = False
    label: Optional[str] = None

    def text(self) -> str:
        parts = []
        for child in self.children:
            parts.append(child if isinstance(child, str) else child.text())
        return "".join(parts)

    def walk(self) -> Iterator["HostNode"]:
        yield self
        for child in self.children:
            if isinstance(child, HostNode):
                yield from child.walk()


def _style(value: Any) -> str:
    if isinstance(value, Mapping):
        return "; ".join(f"{str(k).replace('_', '-')}: {v}" for k, v in value.items() if v is not None)
    return str(value)


def _handler_name(key: str) -> Optional[str]:
    if key.startswith("on_"):
        return key
    if key.startswith("on") and len(key) > 2 and key[2].isupper():
        # onClick -> on_click
        return "on_" + re.sub(r"(?<!^)(?=[A-Z])", "_", key[2:]).lower()
    return None


def host_attrs(props: Mapping[str, Any], base_class: str = ""):
    """Split props into HTML attributes and event handlers."""
    attrs: Dict[str, Any] = {}
    handlers: Dict[str, Callable[..., Any]] = {}
    classes = [base_class] if base_class else []
    for key, value in props.items():
        if callable(value):
            name = _handler_name(key)
            if name:
                handlers[name] = value
            continue
        # on* strings would run as inline script
        if key.lower().startswith("on") and key.lower() != "open":
            continue
        if key in _CLASS_KEYS:
            if value:
                classes.append(" ".join(value) if isinstance(value, (list, tuple)) else str(value))
            continue
        if key == "style":
            attrs["style"] = _style(value)
            continue
        if value is None or value is False or isinstance(value, (dict, list, tuple, set)):
            continue
        name = key.replace("_", "-")
        if not _ATTR_KEY_RE.match(name):
            continue
        if name.lower() in _URL_ATTRS and _SCRIPT_URL_RE.match(_CONTROL_RE.sub("", str(value))):
            continue
        attrs[name] = name if value is True else value
    if classes:
        attrs = {"class": " ".join(classes), **attrs}
    return attrs, handlers


def _select_options(data: Any) -> List[HostNode]:
    options = []
    for item in data or ():
        if isinstance(item, Mapping):
            value, label = item.get("value"), item.get("label", item.get("value"))
        else:
            value = label = item
        options.append(HostNode("option", node_id="", attrs={"value": value}, children=[str(label)]))
    return options


class Mount:
    """One mounted component tree with its hook state."""

    def __init__(
        self,
        component: Component,
        props: Optional[Mapping[str, Any]] = None,
        *,
        settings: Optional[Settings] = None,
    ):
        self.component = component
        self.props = dict(props or {})
        self.max_steps = settings.component_max_steps if settings else 200_000
        self.max_seconds = settings.component_max_seconds if settings else 2.0
        self.roots: List[Union[HostNode, str]] = []
        self.renders = 0
        self._frames: Dict[str, HookFrame] = {}
        self._visited: List[HookFrame] = []
        self._dirty = False
        self._mounted = False

    # -- tree building -----------------------------------------------------

    def _invalidate(self) -> None:
        self._dirty = True

    def _frame(self, path: str) -> HookFrame:
        frame = self._frames.get(path)
        if frame is None:
            frame = self._frames[path] = HookFrame(on_change=self._invalidate)
        self._visited.append(frame)
        return frame

    def _expand(self, value: Any, path: str) -> List[Union[HostNode, str]]:
        if value is None or value is True or value is False:
            return []
        if isinstance(value, str):
            return [value] if value else []
        if isinstance(value, (int, float)):
            return [str(value)]
        if isinstance(value, (list, tuple)):
            out: List[Union[HostNode, str]] = []
            for i, item in enumerate(value):
                out.extend(self._expand(item, f"{path}.{i}"))
            return out
        if not isinstance(value, Element):
            raise RenderError(f"Objects of type {type(value).__name__} are not valid as a child")

        if value.key is not None:
            path = f"{path}[{value.key}]"
        etype = value.type
        if etype is Fragment:
            return self._expand(list(value.children), path)
        if isinstance(etype, Widget):
            return [self._widget(etype, value, path)]
        if isinstance(etype, str):
            if not _TAG_RE.match(etype) or etype in _BLOCKED_TAGS:
                raise RenderError(f"<{etype}> is not an allowed element")
            attrs, handlers = host_attrs(value.props)
            node = HostNode(etype, node_id=path, attrs=attrs, handlers=handlers, void=etype in _VOID_TAGS)
            if handlers:
                node.attrs["data-wb-id"] = path
            node.children = self._expand(list(value.children), path)
            return [node]
        if callable(etype):
            name = getattr(etype, "__name__", "component")
            path = f"{path}:{name}"
            props = dict(value.props)
            if value.children:
                props["children"] = value.children
            with rendering(self._frame(path)):
                result = etype(props)
            return self._expand(result, path)
        raise RenderError(f"Element type {etype!r} is not renderable")

    def _widget(self, widget: Widget, element: Element, path: str) -> HostNode:
        props = {**widget.defaults, **element.props}
        label = props.pop("label", None) if widget.labelled else None
        data = props.pop("data", None) if widget.name == "Select" else None
        text_value = props.pop("value", None) if widget.tag == "textarea" else None
        if widget.name == "Title":
            props.pop("order", None)
        attrs, handlers = host_attrs(props, base_class=f"wb-{widget.name.lower()}")
        node = HostNode(
            widget.resolve_tag(element.props),
            node_id=path,
            attrs=attrs,
            handlers=handlers,
            void=widget.void,
            label=None if label is None else str(label),
        )
        if handlers:
            node.attrs["data-wb-id"] = path
        if not widget.void:
            children = self._expand(list(element.children), path)
            if data is not None:
                children = _select_options(data) + children
            if text_value is not None:
                children = [str(text_value)] + children
            node.children = children
        return node

    # -- lifecycle ---------------------------------------------------------

    def _run(self, fn: Callable[[], Any], max_seconds: Optional[float]) -> Any:
        try:
            with ExecutionBudget(self.max_steps, max_seconds):
                return fn()
        except RenderError:
            raise
        except (Exception, BudgetExceeded) as exc:
            log.warning("Component raised during render: %s", exc)
            raise RenderError(f"{type(exc).__name__}: {exc}") from exc

    def _render_once(self) -> None:
        self._visited = []
        self._dirty = False
        root = Element(self.component, self.props)
        roots = self._run(lambda: self._expand(root, "r"), self.max_seconds)
        visited = self._visited
        for path, frame in list(self._frames.items()):
            if frame not in visited:
                del self._frames[path]
                self._run(frame.unmount, None)
        self.roots = roots
        self.renders += 1
        # children before parents; effects may wait on the network, so steps only
        for frame in reversed(visited):
            self._run(frame.run_effects, None)

    def render(self) -> List[Union[HostNode, str]]:
        self._render_once()
        self._mounted = True
        passes = 1
        while self._dirty:
            passes += 1
            if passes > MAX_RERENDERS:
                raise RenderError("Too many re-renders; a state update loops")
            self._render_once()
        return self.roots

    def html(self) -> str:
        if not self._mounted:
            self.render()
        return _env.get_template("mount.html").render(roots=self.roots)

    def nodes(self) -> Iterator[HostNode]:
        for root in self.roots:
            if isinstance(root, HostNode):
                yield from root.walk()

    def find(self, predicate: Callable[[HostNode], bool]) -> Optional[HostNode]:
        return next((n for n in self.nodes() if predicate(n)), None)

    def find_by_text(self, text: str, tag: Optional[str] = None) -> Optional[HostNode]:
        return self.find(lambda n: text in n.text() and (tag is None or n.tag == tag))

    def dispatch(self, node_id: str, event: str = "on_click", *args: Any) -> List[Union[HostNode, str]]:
        """Invoke a node's handler, then re-render if it changed state.

        Handlers run under a step budget only; they may wait on the network.
        """
        if not self._mounted:
            self.render()
        name = event if event.startswith("on_") else f"on_{event}"
        node = self.find(lambda n: n.node_id == node_id)
        if node is None:
            raise KeyError(f"No node with id {node_id!r}")
        handler = node.handlers.get(name)
        if handler is None:
            raise KeyError(f"Node {node_id!r} has no {name} handler")
        self._run(lambda: handler(*args), None)
        if self._dirty:
            self.render()
        return self.roots

    def unmount(self) -> None:
        """Run every effect cleanup; the first failure is raised as RenderError after all have run."""
        frames = list(self._frames.values())
        self._frames.clear()
        self._mounted = False
        failure = None
        for frame in frames:
            try:
                self._run(frame.unmount, None)
            except RenderError as exc:
                failure = failure or exc
        if failure is not None:
            raise failure


def error_panel_html(error: BaseException) -> str:
    if isinstance(error, CompilationError):
        title = "This worksheet could not be compiled"
    else:
        title = "This worksheet crashed while rendering"
    return _env.get_template("error_panel.html").render(title=title, message=str(error))


class ErrorBoundary:
    """Mount point that turns component failures into an inline error panel."""

    def __init__(
        self,
        component: Optional[Component] = None,
        props: Optional[Mapping[str, Any]] = None,
        *,
        settings: Optional[Settings] = None,
        error: Optional[Exception] = None,
    ):
        self.error = error
        self.mount = Mount(component, props, settings=settings) if component and error is None else None

    @classmethod
    def from_source(
        cls,
        code: str,
        user_ctx: Optional[Mapping[str, Any]] = None,
        props: Optional[Mapping[str, Any]] = None,
        *,
        settings: Optional[Settings] = None,
        registry: CapabilityRegistry = DEFAULT_REGISTRY,
    ) -> "ErrorBoundary":
        budget = None
        if settings is not None:
            budget = ExecutionBudget(settings.component_max_steps, settings.component_max_seconds)
        try:
            component = compile_component(code, user_ctx, registry=registry, budget=budget)
        except CompilationError as exc:
            return cls(error=exc)
        return cls(component, props, settings=settings)

    @property
    def ok(self) -> bool:
        return self.error is None

    def _guard(self, fn: Callable[[], Any]) -> None:
        if self.error is not None or self.mount is None:
            return
        try:
            fn()
        except RenderError as exc:
            self.error = exc
            try:
                self.mount.unmount()
            except RenderError as cleanup_exc:
                log.warning("Effect cleanup failed after render error: %s", cleanup_exc)

    def html(self) -> str:
        if self.mount is not None and not self.mount.renders:
            self._guard(self.mount.render)
        if self.error is not None:
            return error_panel_html(self.error)
        if self.mount is None:
            return ""
        return self.mount.html()

    def dispatch(self, node_id: str, event: str = "on_click", *args: Any) -> str:
        self._guard(lambda: self.mount.dispatch(node_id, event, *args))
        return self.html()
