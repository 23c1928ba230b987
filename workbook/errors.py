from __future__ import annotations

from typing import Any, Optional


class ProviderError(RuntimeError):
    """Non-2xx response from an LLM provider."""

    def __init__(self, message: str, status: int, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class TransientProviderError(ProviderError):
    """Provider overload (HTTP 503); safe to retry."""


class RetryExhausted(RuntimeError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class EmptyResponseError(RuntimeError):
    """Successful status but no extractable content."""


class MalformedStructuredOutput(ValueError):
    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class CompilationError(RuntimeError):
    """Generated component source could not be turned into a component."""

    def __init__(self, message: str, source: str = ""):
        super().__init__(message)
        self.source = source


class RenderError(RuntimeError):
    """A compiled component raised while rendering."""
