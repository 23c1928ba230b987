"""Provider transport adapters for OpenAI, Gemini and Anthropic chat APIs.

Each adapter only shapes the request body and digs the text out of the
response; retries and caching live in :mod:`workbook.llm_query`.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from workbook.config import LLMContext
from workbook.errors import EmptyResponseError, ProviderError, TransientProviderError
from workbook.llm_parsing import parse_json_content
from workbook.models import Message, ModelConfig

log = logging.getLogger(__name__)

OPENAI_ENDPOINT = "https://api.openai.com/v1/chat/completions"
GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
ANTHROPIC_ENDPOINT = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

ERROR_EXCERPT_CHARS = 1000


def _schema_instruction(json_schema: Dict[str, Any]) -> str:
    return "Respond using this JSON schema:\n" + json.dumps(json_schema, indent=2)


def raise_for_api_error(resp: Any, context: str = "") -> None:
    """Raise a ProviderError carrying the status and a bounded body excerpt."""
    try:
        body = resp.text or ""
    except Exception:
        body = ""
    context_str = f" for {context[:ERROR_EXCERPT_CHARS]}" if context else ""
    message = f"API error{context_str} ({resp.status_code}): {body[:ERROR_EXCERPT_CHARS]}"
    cls = TransientProviderError if resp.status_code == 503 else ProviderError
    raise cls(message, resp.status_code, body[:ERROR_EXCERPT_CHARS])


class BaseLLMClient:
    name = "base"

    def __init__(self, config: ModelConfig, ctx: LLMContext):
        self.config = config
        self.ctx = ctx
        self.model_id = config.info.model_id

    # provider specifics
    def endpoint(self) -> str:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def params(self) -> Optional[Dict[str, str]]:
        return None

    def format_messages(
        self, messages: Sequence[Message], json_mode: bool, json_schema: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_content(self, data: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def usage(self, data: Dict[str, Any]) -> Any:
        return data.get("usage")

    def complete(
        self, messages: Sequence[Message], json_mode: bool = False, json_schema: Optional[Dict[str, Any]] = None
    ) -> Any:
        body = self.format_messages(messages, json_mode, json_schema)
        resp = requests.post(
            self.endpoint(),
            headers=self.headers(),
            params=self.params(),
            json=body,
            timeout=self.ctx.settings.llm_timeout_secs,
        )
        if not 200 <= resp.status_code < 300:
            raise_for_api_error(resp, type(self).__name__)

        data = resp.json()
        content = self.extract_content(data) if isinstance(data, dict) else None
        if not content:
            raw = json.dumps(data, ensure_ascii=False)[:ERROR_EXCERPT_CHARS]
            raise EmptyResponseError(f"No content in {type(self).__name__} response: {raw}")

        usage = self.usage(data) if isinstance(data, dict) else None
        if usage:
            log.info("llm usage provider=%s model=%s usage=%s", self.name, self.model_id, usage)

        if json_mode:
            return parse_json_content(content)
        return content


class OpenAIClient(BaseLLMClient):
    name = "openai"

    def endpoint(self) -> str:
        return OPENAI_ENDPOINT

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    def format_messages(self, messages, json_mode, json_schema=None):
        formatted: List[Dict[str, Any]] = []
        schema_pending = bool(json_mode and json_schema)
        for msg in messages:
            if msg.role == "system":
                text = msg.text or ""
                if schema_pending:
                    text = f"{text}\n{_schema_instruction(json_schema)}"
                    schema_pending = False
                formatted.append({"role": "system", "content": text})
            elif msg.role == "user" and msg.image:
                parts: List[Dict[str, Any]] = []
                if msg.text:
                    parts.append({"type": "text", "text": msg.text})
                parts.append(
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{msg.image.mime_type};base64,{msg.image.base64}"},
                    }
                )
                formatted.append({"role": "user", "content": parts})
            else:
                formatted.append({"role": msg.role, "content": msg.text})
        if schema_pending:
            formatted.insert(0, {"role": "system", "content": _schema_instruction(json_schema)})

        body: Dict[str, Any] = {"model": self.model_id, "messages": formatted}
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    def extract_content(self, data):
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content")


class GeminiClient(BaseLLMClient):
    name = "gemini"

    def endpoint(self) -> str:
        return GEMINI_ENDPOINT.format(model=self.model_id)

    def params(self) -> Optional[Dict[str, str]]:
        return {"key": self.config.api_key}

    def format_messages(self, messages, json_mode, json_schema=None):
        system_instruction = "\n".join(m.text or "" for m in messages if m.role == "system")
        if json_mode and json_schema:
            system_instruction += "\n" + _schema_instruction(json_schema)

        contents = []
        for msg in messages:
            if msg.role == "system":
                continue
            parts: List[Dict[str, Any]] = []
            if msg.image:
                parts.append({"inline_data": {"mime_type": msg.image.mime_type, "data": msg.image.base64}})
            if msg.text:
                parts.append({"text": msg.text})
            contents.append({"role": "model" if msg.role == "assistant" else "user", "parts": parts})

        body: Dict[str, Any] = {
            "system_instruction": {"parts": [{"text": system_instruction}]},
            "contents": contents,
        }
        if json_mode:
            body["generationConfig"] = {"response_mime_type": "application/json"}
        return body

    def extract_content(self, data):
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or [{}]
        return parts[0].get("text")

    def usage(self, data):
        return data.get("usageMetadata")


class AnthropicClient(BaseLLMClient):
    name = "anthropic"

    def endpoint(self) -> str:
        return ANTHROPIC_ENDPOINT

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
            "x-api-key": self.config.api_key,
        }

    def format_messages(self, messages, json_mode, json_schema=None):
        formatted = []
        for msg in messages:
            if msg.role == "system":
                continue
            content: List[Dict[str, Any]] = []
            if msg.text:
                content.append({"type": "text", "text": msg.text})
            if msg.image:
                content.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": msg.image.mime_type,
                            "data": msg.image.base64,
                        },
                    }
                )
            formatted.append({"role": msg.role, "content": content})

        system_prompt = "\n".join(m.text for m in messages if m.role == "system" and m.text)
        if json_mode:
            if json_schema:
                system_prompt += "\n" + _schema_instruction(json_schema)
            system_prompt += "\nRespond using ONLY JSON."

        body: Dict[str, Any] = {
            "model": self.model_id,
            "messages": formatted,
            "max_tokens": self.ctx.settings.anthropic_max_tokens,
        }
        system_prompt = system_prompt.strip()
        if system_prompt:
            body["system"] = system_prompt
        return body

    def extract_content(self, data):
        content = data.get("content") or [{}]
        return content[0].get("text")


_CLIENTS = {
    "openai": OpenAIClient,
    "gemini": GeminiClient,
    "anthropic": AnthropicClient,
}


def client_for(config: ModelConfig, ctx: LLMContext) -> BaseLLMClient:
    provider = config.provider
    try:
        cls = _CLIENTS[provider]
    except KeyError:
        raise ValueError(f"Unknown model provider for model {config.model}") from None
    return cls(config, ctx)
