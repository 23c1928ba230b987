from __future__ import annotations

import logging
import random
import time
from typing import Any, Dict, List, Optional

from workbook.cache import is_miss
from workbook.config import LLMContext
from workbook.errors import RetryExhausted, TransientProviderError
from workbook.llm_client import BaseLLMClient, client_for
from workbook.models import ImageContent, Message, ModelConfig

log = logging.getLogger(__name__)

BACKOFF_BASE_MS = 1000
BACKOFF_MAX_MS = 64 * 1000
BACKOFF_JITTER = 0.1


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before retry number ``attempt`` (1-based)."""
    delay_ms = min(BACKOFF_BASE_MS * 2 ** attempt, BACKOFF_MAX_MS)
    jitter_ms = delay_ms * BACKOFF_JITTER * random.random()
    return (delay_ms + jitter_ms) / 1000.0


class LLMQuery:
    """Fluent multi-turn prompt builder with retry and a content-addressed cache.

        LLMQuery(config, ctx).system("...").user("...").image(img).execute()
    """

    def __init__(self, config: ModelConfig, ctx: LLMContext, client: Optional[BaseLLMClient] = None):
        self.config = config
        self.ctx = ctx
        self.model = config.model
        self.client = client or client_for(config, ctx)
        self.messages: List[Message] = []
        self.json_mode = False
        self.json_schema: Optional[Dict[str, Any]] = None

    def system(self, prompt: str) -> "LLMQuery":
        self.messages.append(Message(role="system", text=prompt))
        return self

    def user(self, prompt: str) -> "LLMQuery":
        self.messages.append(Message(role="user", text=prompt))
        return self

    def assistant(self, text: str) -> "LLMQuery":
        self.messages.append(Message(role="assistant", text=text))
        return self

    def image(self, image: ImageContent) -> "LLMQuery":
        self.messages.append(Message(role="user", image=ImageContent(image.mime_type, image.base64)))
        return self

    def output_json(self, schema: Optional[Dict[str, Any]] = None) -> "LLMQuery":
        self.json_mode = True
        if schema is not None:
            self.json_schema = schema
        return self

    def execute(self, max_attempts: Optional[int] = None) -> Any:
        if max_attempts is None:
            max_attempts = self.ctx.settings.llm_max_attempts
        cache = self.ctx.cache

        cached = cache.get(self.model, self.messages, self.json_mode, self.json_schema)
        if not is_miss(cached):
            log.info("llm cache hit model=%s", self.model)
            return cached

        attempt = 0
        while True:
            try:
                response = self.client.complete(self.messages, self.json_mode, self.json_schema)
            except TransientProviderError as exc:
                attempt += 1
                log.warning("llm provider overloaded (503), attempt %d of %d", attempt, max_attempts)
                if attempt >= max_attempts:
                    raise RetryExhausted(
                        f"Maximum retry attempts ({max_attempts}) exceeded: {exc}", cause=exc
                    ) from exc
                time.sleep(backoff_delay(attempt))
                continue

            cache.set(self.model, self.messages, self.json_mode, self.json_schema, response)
            return response
