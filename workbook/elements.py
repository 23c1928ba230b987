from __future__ import annotations

from dataclasses import dataclass, field
from types import GeneratorType
from typing import Any, Dict, List, Optional, Tuple


class _FragmentType:
    def __repr__(self) -> str:
        return "Fragment"


Fragment = _FragmentType()


@dataclass(frozen=True)
class Element:
    type: Any
    props: Dict[str, Any] = field(default_factory=dict)
    children: Tuple[Any, ...] = ()
    key: Optional[str] = None


def _flatten(children, out: List[Any]) -> List[Any]:
    for child in children:
        if isinstance(child, (list, tuple, GeneratorType, map, filter)):
            _flatten(child, out)
        elif child is None or child is True or child is False:
            continue
        else:
            out.append(child)
    return out


def create_element(type, props=None, *children) -> Element:
    """Build an element; nested child lists are flattened and None/booleans dropped."""
    props = dict(props or {})
    key = props.pop("key", None)
    if "children" in props and not children:
        children = (props.pop("children"),)
    else:
        props.pop("children", None)
    return Element(
        type=type,
        props=props,
        children=tuple(_flatten(children, [])),
        key=None if key is None else str(key),
    )


@dataclass(frozen=True)
class Widget:
    """A host widget that renders to one HTML tag.

    ``tag`` may be ``"h"``, in which case the ``order`` prop (1-6, default 2)
    picks the heading level. ``labelled`` widgets wrap themselves in a
    ``<label>`` when given a ``label`` prop.
    """

    name: str
    tag: str
    void: bool = False
    labelled: bool = False
    defaults: Dict[str, Any] = field(default_factory=dict)

    def resolve_tag(self, props: Dict[str, Any]) -> str:
        if self.tag != "h":
            return self.tag
        try:
            order = int(props.get("order", 2))
        except (TypeError, ValueError):
            order = 2
        return f"h{min(max(order, 1), 6)}"

    def __repr__(self) -> str:
        return f"<Widget {self.name}>"
