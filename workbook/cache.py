from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from workbook.models import Message

log = logging.getLogger(__name__)

_MISS = object()


def _request_record(
    model: str, messages: Sequence[Message], json_mode: bool, json_schema: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [m.to_dict() for m in messages],
        "json_mode": bool(json_mode),
        "json_schema": json_schema,
    }


def cache_key(
    model: str, messages: Sequence[Message], json_mode: bool, json_schema: Optional[Dict[str, Any]] = None
) -> str:
    raw = json.dumps(
        _request_record(model, messages, json_mode, json_schema),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ResponseCache:
    """Content-addressed store of LLM responses; one JSON file per request hash.

    Entries never expire: a response is treated as a pure function of the
    request that produced it.
    """

    def __init__(self, cache_dir: Path | str):
        self.cache_dir = Path(cache_dir).resolve()
        log.info("llm cache directory=%s", self.cache_dir)

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def get(
        self,
        model: str,
        messages: Sequence[Message],
        json_mode: bool,
        json_schema: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Return the stored response, or the module-level miss sentinel."""
        path = self._path(cache_key(model, messages, json_mode, json_schema))
        if not path.exists():
            return _MISS
        with path.open("r", encoding="utf-8") as f:
            entry = json.load(f)
        return entry["response"]

    def set(
        self,
        model: str,
        messages: Sequence[Message],
        json_mode: bool,
        json_schema: Optional[Dict[str, Any]],
        response: Any,
    ) -> Path:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(cache_key(model, messages, json_mode, json_schema))
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request": _request_record(model, messages, json_mode, json_schema),
            "response": response,
        }
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(entry, f, ensure_ascii=False, indent=2)
        tmp.replace(path)
        return path


def is_miss(value: Any) -> bool:
    return value is _MISS
