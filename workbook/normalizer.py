"""Turn generated component source into plain Python ready for evaluation.

Steps, in order:

1. strip ``export`` modifiers, remembering what each one exported;
2. lower inline markup to ``create_element`` calls;
3. parse, collect import declarations and check them against the registry;
4. run the static safety checks;
5. replace import statements with ``pass`` and prepend ``require`` bindings;
6. append ``exports[...] = name`` captures for named exports.

Steps 1, 2 and 5 keep the line count of the cleaned body intact.
"""
from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Set, Tuple

from workbook.markup import lower_markup
from workbook.registry import CapabilityRegistry, DEFAULT_REGISTRY
from workbook.sandbox import validate_tree


class NormalizeError(ValueError):
    pass


class ImportBinding(NamedTuple):
    local: str
    imported: Optional[str]  # None for namespace imports


ImportTable = Dict[str, Set[ImportBinding]]


@dataclass
class NormalizedSource:
    code: str
    cleaned: str
    imports: ImportTable = field(default_factory=dict)
    exports: List[str] = field(default_factory=list)


_EXPORT_DEFAULT_DEF_RE = re.compile(r"^export\s+default\s+((?:def|class)\s+([A-Za-z_]\w*))")
_EXPORT_DEFAULT_RE = re.compile(r"^export\s+default\s+")
_EXPORT_DEF_RE = re.compile(r"^export\s+((?:def|class)\s+([A-Za-z_]\w*))")
_EXPORT_NAME_RE = re.compile(r"^export\s+(([A-Za-z_]\w*)\s*(?::|=))")
_EXPORT_ANY_RE = re.compile(r"^export\b")


def strip_exports(source: str) -> Tuple[str, List[Tuple[str, str]], bool]:
    """Remove column-0 ``export`` modifiers.

    Returns the stripped text, ``(export_name, local_name)`` pairs to
    capture after the body runs, and whether an ``export default <expr>``
    was rewritten in place to ``exports["default"] = <expr>``.
    """
    out: List[str] = []
    captures: List[Tuple[str, str]] = []
    inline_default = False
    for lineno, line in enumerate(source.split("\n"), 1):
        if not line.startswith("export"):
            out.append(line)
            continue
        m = _EXPORT_DEFAULT_DEF_RE.match(line)
        if m:
            captures.append(("default", m.group(2)))
            out.append(m.group(1) + line[m.end():])
            continue
        m = _EXPORT_DEFAULT_RE.match(line)
        if m:
            inline_default = True
            out.append('exports["default"] = ' + line[m.end():])
            continue
        m = _EXPORT_DEF_RE.match(line) or _EXPORT_NAME_RE.match(line)
        if m:
            captures.append((m.group(2), m.group(2)))
            out.append(m.group(1) + line[m.end():])
            continue
        if _EXPORT_ANY_RE.match(line):
            raise NormalizeError(f"Unsupported export statement on line {lineno}: {line.strip()}")
        out.append(line)
    return "\n".join(out), captures, inline_default


def _import_nodes(tree: ast.AST) -> List[ast.stmt]:
    nodes = [n for n in ast.walk(tree) if isinstance(n, (ast.Import, ast.ImportFrom))]
    return sorted(nodes, key=lambda n: (n.lineno, n.col_offset))


def collect_imports(tree: ast.AST) -> ImportTable:
    table: ImportTable = {}
    for node in _import_nodes(tree):
        if isinstance(node, ast.ImportFrom):
            if node.module == "__future__":
                continue
            if node.level:
                raise NormalizeError(f"Relative import on line {node.lineno} is not supported")
            for alias in node.names:
                if alias.name == "*":
                    raise NormalizeError(f"Star import from '{node.module}' is not supported")
                table.setdefault(node.module, set()).add(
                    ImportBinding(alias.asname or alias.name, alias.name)
                )
        else:
            for alias in node.names:
                if "." in alias.name and not alias.asname:
                    raise NormalizeError(f"Dotted import '{alias.name}' needs an alias")
                table.setdefault(alias.name, set()).add(ImportBinding(alias.asname or alias.name, None))
    return table


def resolve_imports(table: ImportTable, registry: CapabilityRegistry) -> None:
    """Fail on any module or name the registry does not expose."""
    for module, bindings in table.items():
        registry.check(module, [b.imported for b in bindings if b.imported is not None])


def _char_offset(lines: List[str], lineno: int, col: int) -> int:
    # ast column offsets count UTF-8 bytes
    line = lines[lineno - 1]
    prefix = line.encode("utf-8")[:col].decode("utf-8", errors="ignore")
    return sum(len(l) for l in lines[: lineno - 1]) + len(prefix)


def strip_imports(source: str, tree: ast.AST) -> str:
    """Replace each import statement with ``pass``, keeping every line in place."""
    lines = source.splitlines(keepends=True)
    text = source
    for node in reversed(_import_nodes(tree)):
        start = _char_offset(lines, node.lineno, node.col_offset)
        end = _char_offset(lines, node.end_lineno, node.end_col_offset)
        span = text[start:end]
        breaks = span.count("\n")
        indent = lines[node.lineno - 1][: start - sum(len(l) for l in lines[: node.lineno - 1])]
        if breaks and not indent.strip():
            replacement = "\n" * breaks + indent + "pass"
        else:
            replacement = "pass" + "\n" * breaks
        text = text[:start] + replacement + text[end:]
    return text


def binding_statements(table: ImportTable) -> List[str]:
    stmts: List[str] = []
    for module, bindings in table.items():
        named = sorted((b for b in bindings if b.imported is not None), key=lambda b: b.local)
        for b in sorted((b for b in bindings if b.imported is None), key=lambda b: b.local):
            stmts.append(f"{b.local} = require({module!r})")
        if named:
            targets = ", ".join(b.local for b in named)
            names = ", ".join(repr(b.imported) for b in named)
            stmts.append(f"[{targets}] = require({module!r}, {names})")
    return stmts


def normalize(source: str, registry: CapabilityRegistry = DEFAULT_REGISTRY) -> NormalizedSource:
    stripped, captures, inline_default = strip_exports(source)
    lowered = lower_markup(stripped)
    tree = ast.parse(lowered, mode="exec")
    imports = collect_imports(tree)
    resolve_imports(imports, registry)
    validate_tree(tree)
    cleaned = strip_imports(lowered, tree) if _import_nodes(tree) else lowered

    exports = [name for name, _ in captures]
    if inline_default:
        exports.append("default")
    tail = [f"exports[{name!r}] = {local}" for name, local in captures]
    parts = [p for p in ("\n".join(binding_statements(imports)), cleaned, "\n".join(tail)) if p]
    return NormalizedSource(
        code="\n".join(parts),
        cleaned=cleaned,
        imports=imports,
        exports=list(dict.fromkeys(exports)),
    )
