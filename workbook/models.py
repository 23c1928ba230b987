from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class GenerationMode(str, Enum):
    REPLICATE = "replicate"
    GENERATE = "generate"


@dataclass(frozen=True)
class ImageContent:
    mime_type: str
    base64: str


@dataclass(frozen=True)
class Message:
    role: str  # system | user | assistant
    text: Optional[str] = None
    image: Optional[ImageContent] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ModelInfo:
    name: str
    model_id: str
    provider: str  # openai | gemini | anthropic


AI_MODELS: Dict[str, ModelInfo] = {
    "gpt-4-turbo": ModelInfo("GPT-4 Turbo", "gpt-4-turbo", "openai"),
    "gpt-4o-mini": ModelInfo("GPT-4 Mini", "gpt-4o-mini", "openai"),
    "gpt-4o": ModelInfo("GPT-4", "gpt-4o", "openai"),
    "gpt-3.5-turbo": ModelInfo("GPT-3.5 Turbo", "gpt-3.5-turbo", "openai"),
    "gemini-pro": ModelInfo("Gemini Pro", "gemini-pro", "gemini"),
    "gemini-pro-vision": ModelInfo("Gemini Pro Vision", "gemini-pro-vision", "gemini"),
    "gemini-1.5-flash-001": ModelInfo("Gemini Flash 001", "gemini-1.5-flash-001", "gemini"),
    "gemini-1.5-flash-002": ModelInfo("Gemini Flash 002", "gemini-1.5-flash-002", "gemini"),
    "gemini-1.5-flash-latest": ModelInfo("Gemini Flash Latest", "gemini-1.5-flash-latest", "gemini"),
    "gemini-1.5-flash-8b": ModelInfo("Gemini Flash 8B", "gemini-1.5-flash-8b", "gemini"),
    "claude-3-haiku-20240307": ModelInfo("Claude 3 Haiku", "claude-3-haiku-20240307", "anthropic"),
    "claude-3-5-sonnet-20241022": ModelInfo("Claude 3.5 Sonnet", "claude-3-5-sonnet-20241022", "anthropic"),
}

DEFAULT_GENERATION_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_VALIDATION_MODEL = "gemini-1.5-flash-002"


@dataclass(frozen=True)
class ModelConfig:
    model: str
    api_key: str

    @property
    def info(self) -> ModelInfo:
        try:
            return AI_MODELS[self.model]
        except KeyError:
            raise ValueError(f"Unknown model provider for model {self.model}") from None

    @property
    def provider(self) -> str:
        return self.info.provider
