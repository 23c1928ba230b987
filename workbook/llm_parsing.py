from __future__ import annotations

import json
import re
from typing import Any, Iterator, NamedTuple, Optional

from workbook.errors import MalformedStructuredOutput

# Only the first fenced block is honoured, even when the model emits several.
_GUARD_RE = re.compile(r"```(?:javascript|jsx|python|py|pyx)\n([\s\S]+?)\n```", re.IGNORECASE)


class GuardedCode(NamedTuple):
    app: str
    context: str


def extract_guarded_code(response: Optional[str]) -> GuardedCode:
    """Split a raw model reply into the fenced component code and the prose around it."""
    text = response or ""
    match = _GUARD_RE.search(text)
    if not match:
        return GuardedCode(app=text, context="")
    context = text[: match.start()] + text[match.end() :]
    return GuardedCode(app=match.group(1), context=context)


_FENCE_RE = re.compile(r"```([a-zA-Z]*)[ \t]*\n?([\s\S]*?)```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})
_decoder = json.JSONDecoder()


def _first_object(text: str) -> Optional[Any]:
    """Decode the first complete ``{...}`` value embedded in ``text``."""
    start = text.find("{")
    while start != -1:
        try:
            return _decoder.raw_decode(text, start)[0]
        except ValueError:
            start = text.find("{", start + 1)
    return None


def _candidates(text: str) -> Iterator[str]:
    yield text
    fences = list(_FENCE_RE.finditer(text))
    # ```json blocks before untagged ones
    fences.sort(key=lambda m: m.group(1).lower() != "json")
    for match in fences:
        yield match.group(2).strip()


def parse_json_content(text: str) -> Any:
    """Parse structured model output; raise MalformedStructuredOutput on failure.

    Tries the whole reply, then fenced blocks (```json first), then the first
    embedded object, each again after dropping trailing commas and smart quotes.
    """
    stripped = (text or "").strip()
    for candidate in _candidates(stripped):
        repaired = _TRAILING_COMMA_RE.sub(r"\1", candidate.translate(_SMART_QUOTES))
        for attempt in (candidate, repaired):
            try:
                return json.loads(attempt)
            except ValueError:
                pass
            value = _first_object(attempt)
            if value is not None:
                return value
    raise MalformedStructuredOutput(f"Failed to parse JSON response: {text}", raw=text)
