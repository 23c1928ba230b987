from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from workbook.cache import ResponseCache


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)) or default)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    cache_dir: Path
    llm_timeout_secs: int = 120
    llm_max_attempts: int = 5
    anthropic_max_tokens: int = 4096
    component_max_steps: int = 200_000
    component_max_seconds: float = 2.0
    rate_tokens_per_day: int = 100_000
    api_keys: Dict[str, str] = field(default_factory=dict)

    def env_api_key(self, provider: str) -> Optional[str]:
        return self.api_keys.get(provider) or None


def load_settings() -> Settings:
    data_dir = Path(os.getenv("DATA_DIR", "./data"))
    cache_dir = Path(os.getenv("LLM_CACHE_DIR", str(data_dir / "llm")))
    keys = {}
    for provider in ("openai", "gemini", "anthropic"):
        val = os.getenv(f"{provider.upper()}_API_KEY", "").strip()
        if val:
            keys[provider] = val
    return Settings(
        data_dir=data_dir,
        cache_dir=cache_dir,
        llm_timeout_secs=_env_int("LLM_TIMEOUT_SECS", 120),
        llm_max_attempts=_env_int("LLM_MAX_ATTEMPTS", 5),
        anthropic_max_tokens=_env_int("ANTHROPIC_MAX_TOKENS", 4096),
        component_max_steps=_env_int("COMPONENT_MAX_STEPS", 200_000),
        component_max_seconds=_env_float("COMPONENT_MAX_SECONDS", 2.0),
        rate_tokens_per_day=_env_int("RATE_TOKENS_PER_DAY", 100_000),
        api_keys=keys,
    )


@dataclass
class LLMContext:
    """Everything a query or transport adapter needs, passed explicitly."""

    settings: Settings
    cache: ResponseCache

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMContext":
        return cls(settings=settings, cache=ResponseCache(settings.cache_dir))
