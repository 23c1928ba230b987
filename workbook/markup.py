"""Lower inline markup in component source to plain ``create_element`` calls.

Generated components are Python with JSX-like elements wherever an
expression may start::

    def Worksheet(props):
        return <Stack gap="md">
            <Title>{props["title"]}</Title>
            {[<Question q={q} /> for q in props["questions"]]}
        </Stack>

becomes ``create_element(Stack, {'gap': 'md'}, create_element(Title, None,
(props["title"])), ...)``. Lowering keeps the newline count of every element
so line numbers in later diagnostics still match what the model wrote.
"""
from __future__ import annotations

import html
import re
from typing import List, Optional, Tuple

CREATE_ELEMENT = "create_element"
FRAGMENT = "Fragment"

# Tokens after which a '<' starts an element rather than a comparison.
_EXPR_START_OPS = set("([{,=:;")
_EXPR_START_WORDS = {
    "return", "yield", "else", "and", "or", "not", "in", "is", "lambda",
    "if", "elif", "while", "assert", "await",
}
_STRING_PREFIXES = {"r", "u", "b", "f", "br", "rb", "fr", "rf"}

_TAG_NAME_RE = re.compile(r"[A-Za-z_][\w-]*(?:\.[A-Za-z_]\w*)*")
_ATTR_NAME_RE = re.compile(r"[A-Za-z_][\w:.-]*")
_IDENT_RE = re.compile(r"[A-Za-z_][\w.]*$")
_WORD_RE = re.compile(r"\w+")


class MarkupSyntaxError(ValueError):
    def __init__(self, message: str, lineno: int, col: int):
        super().__init__(f"{message} (line {lineno}, column {col})")
        self.lineno = lineno
        self.col = col


def clean_text(raw: str) -> str:
    """Collapse a text child the way JSX does: trim lines, drop blank ones, join with spaces."""
    lines = re.split(r"\r\n|\n|\r", raw)
    last_non_empty = -1
    for i, line in enumerate(lines):
        if line.strip(" \t"):
            last_non_empty = i
    out = []
    for i, line in enumerate(lines):
        trimmed = line.replace("\t", " ")
        if i != 0:
            trimmed = trimmed.lstrip(" ")
        if i != len(lines) - 1:
            trimmed = trimmed.rstrip(" ")
        if trimmed:
            if i != last_non_empty:
                trimmed += " "
            out.append(trimmed)
    return html.unescape("".join(out))


class _Lowerer:
    def __init__(self, src: str):
        self.src = src
        self.n = len(src)
        self.pos = 0

    def error(self, message: str, pos: Optional[int] = None) -> MarkupSyntaxError:
        at = self.pos if pos is None else pos
        lineno = self.src.count("\n", 0, at) + 1
        col = at - (self.src.rfind("\n", 0, at) + 1) + 1
        return MarkupSyntaxError(message, lineno, col)

    def peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.src[i] if i < self.n else ""

    def skip_ws(self) -> None:
        while self.pos < self.n and self.src[self.pos].isspace():
            self.pos += 1

    def expect(self, token: str) -> None:
        if not self.src.startswith(token, self.pos):
            raise self.error(f"expected '{token}'")
        self.pos += len(token)

    # -- python mode -------------------------------------------------------

    def read_string(self) -> str:
        start = self.pos
        quote = self.src[self.pos]
        delim = quote * 3 if self.src.startswith(quote * 3, self.pos) else quote
        i = self.pos + len(delim)
        while i < self.n:
            c = self.src[i]
            if c == "\\":
                i += 2
                continue
            if self.src.startswith(delim, i):
                i += len(delim)
                break
            if c == "\n" and len(delim) == 1:
                break
            i += 1
        self.pos = min(i, self.n)
        return self.src[start : self.pos]

    def tag_starts_here(self, prev: Optional[Tuple[str, str]]) -> bool:
        nxt = self.peek(1)
        if not (nxt == ">" or nxt.isalpha() or nxt == "_"):
            return False
        if prev is None:
            return True
        kind, value = prev
        if kind == "op":
            return value in _EXPR_START_OPS
        return value in _EXPR_START_WORDS

    def python(self, closing: Optional[str] = None) -> str:
        """Copy Python source up to an unmatched ``closing`` char (left unconsumed).

        Comments are dropped inside embedded expressions, where they could
        swallow the closing parenthesis of the emitted call.
        """
        out: List[str] = []
        depth = 0
        prev: Optional[Tuple[str, str]] = None
        start = self.pos
        while self.pos < self.n:
            ch = self.src[self.pos]
            if ch == "#":
                end = self.src.find("\n", self.pos)
                end = self.n if end == -1 else end
                if closing is None:
                    out.append(self.src[self.pos : end])
                else:
                    # a one-line comment child such as {# note} ends at the brace
                    stop = self.src.find(closing, self.pos, end) if depth == 0 else -1
                    end = end if stop == -1 else stop
                self.pos = end
            elif ch in "\"'":
                out.append(self.read_string())
                prev = ("word", "<str>")
            elif ch.isspace():
                out.append(ch)
                self.pos += 1
            elif ch.isalnum() or ch == "_":
                m = _WORD_RE.match(self.src, self.pos)
                word = m.group(0)
                self.pos = m.end()
                out.append(word)
                if word.lower() in _STRING_PREFIXES and self.peek() in ("'", '"'):
                    out.append(self.read_string())
                    prev = ("word", "<str>")
                else:
                    prev = ("word", word)
            elif ch in "([{":
                depth += 1
                out.append(ch)
                self.pos += 1
                prev = ("op", ch)
            elif ch in ")]}":
                if depth == 0 and ch == closing:
                    return "".join(out)
                depth = max(0, depth - 1)
                out.append(ch)
                self.pos += 1
                prev = ("op", ch)
            elif ch == "<" and self.tag_starts_here(prev):
                out.append(self.element())
                prev = ("word", "<element>")
            else:
                out.append(ch)
                self.pos += 1
                prev = ("op", ch)
        if closing is not None:
            raise self.error(f"unterminated expression, expected '{closing}'", start)
        return "".join(out)

    def embedded(self) -> str:
        """Parse ``{ expr }`` at the cursor and return the lowered expression."""
        self.expect("{")
        expr = self.python("}")
        self.expect("}")
        return expr

    # -- markup mode -------------------------------------------------------

    def element(self) -> str:
        start = self.pos
        self.expect("<")
        if self.peek() == ">":
            self.pos += 1
            type_expr = FRAGMENT
            props = "None"
            children = self.children("")
        else:
            m = _TAG_NAME_RE.match(self.src, self.pos)
            if not m:
                raise self.error("expected tag name")
            name = m.group(0)
            self.pos = m.end()
            intrinsic = "." not in name and name[0].islower()
            if not intrinsic and not _IDENT_RE.match(name):
                raise self.error(f"invalid component name '{name}'", start)
            type_expr = repr(name) if intrinsic else name
            attrs = self.attributes()
            props = "{" + ", ".join(attrs) + "}" if attrs else "None"
            self.skip_ws()
            if self.src.startswith("/>", self.pos):
                self.pos += 2
                children = []
            elif self.peek() == ">":
                self.pos += 1
                children = self.children(name)
            else:
                raise self.error(f"expected '>' or '/>' in <{name}>")

        call = f"{CREATE_ELEMENT}({type_expr}, {props}"
        if children:
            call += ", " + ", ".join(children)
        missing = self.src.count("\n", start, self.pos) - call.count("\n")
        return call + "\n" * max(0, missing) + ")"

    def attributes(self) -> List[str]:
        attrs: List[str] = []
        while True:
            self.skip_ws()
            ch = self.peek()
            if ch in ("/", ">", ""):
                return attrs
            if ch == "{":
                self.pos += 1
                self.skip_ws()
                if self.src.startswith("...", self.pos):
                    self.pos += 3
                elif self.src.startswith("**", self.pos):
                    self.pos += 2
                else:
                    raise self.error("expected '...' or '**' in spread attribute")
                expr = self.python("}")
                self.expect("}")
                if not expr.strip():
                    raise self.error("empty spread attribute")
                attrs.append(f"**({expr})")
                continue
            m = _ATTR_NAME_RE.match(self.src, self.pos)
            if not m:
                raise self.error(f"unexpected character {ch!r} in tag")
            name = m.group(0)
            self.pos = m.end()
            self.skip_ws()
            if self.peek() != "=":
                attrs.append(f"{name!r}: True")
                continue
            self.pos += 1
            self.skip_ws()
            ch = self.peek()
            if ch in ("'", '"'):
                end = self.src.find(ch, self.pos + 1)
                if end == -1:
                    raise self.error("unterminated attribute string")
                value = repr(html.unescape(self.src[self.pos + 1 : end]))
                self.pos = end + 1
            elif ch == "{":
                expr = self.embedded()
                if not expr.strip():
                    raise self.error(f"empty expression for attribute '{name}'")
                value = f"({expr})"
            elif ch == "<":
                value = self.element()
            else:
                raise self.error(f"invalid value for attribute '{name}'")
            attrs.append(f"{name!r}: {value}")

    def children(self, name: str) -> List[str]:
        parts: List[str] = []
        open_pos = self.pos
        while True:
            if self.pos >= self.n:
                raise self.error(f"unclosed <{name}>" if name else "unclosed fragment", open_pos)
            if self.src.startswith("</", self.pos):
                close_at = self.pos
                self.pos += 2
                self.skip_ws()
                m = _TAG_NAME_RE.match(self.src, self.pos)
                closing = ""
                if m:
                    closing = m.group(0)
                    self.pos = m.end()
                self.skip_ws()
                self.expect(">")
                if closing != name:
                    raise self.error(
                        f"closing tag </{closing}> does not match <{name}>", close_at
                    )
                return parts
            ch = self.src[self.pos]
            if ch == "<":
                parts.append(self.element())
            elif ch == "{":
                expr = self.embedded()
                if expr.strip():
                    parts.append(f"({expr})")
            else:
                end = self.pos
                while end < self.n and self.src[end] not in "<{":
                    end += 1
                text = clean_text(self.src[self.pos : end])
                self.pos = end
                if text:
                    parts.append(repr(text))


def lower_markup(source: str) -> str:
    """Return ``source`` with every markup element replaced by a create_element call.

    Source without markup is returned unchanged.
    """
    if "<" not in source:
        return source
    return _Lowerer(source).python()
