import json
import logging
import os
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

import requests
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from workbook import ratelimit
from workbook.config import LLMContext, load_settings
from workbook.errors import (
    EmptyResponseError,
    MalformedStructuredOutput,
    ProviderError,
    RetryExhausted,
)
from workbook.generate import (
    generate_form_from_image,
    generate_form_from_prompt,
    make_answer_checker,
    validate_user_response,
)
from workbook.models import (
    AI_MODELS,
    DEFAULT_GENERATION_MODEL,
    DEFAULT_VALIDATION_MODEL,
    GenerationMode,
    ImageContent,
    ModelConfig,
)
from workbook.render import ErrorBoundary

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

settings = load_settings()
context = LLMContext.from_settings(settings)

app = FastAPI()

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class ClientConfig(BaseModel):
    generationModel: str = DEFAULT_GENERATION_MODEL
    validationModel: str = DEFAULT_VALIDATION_MODEL
    apiKeys: Dict[str, str] = Field(default_factory=dict)


class ImageData(BaseModel):
    base64: str
    mimeType: str


class DesignImageRequest(BaseModel):
    imageData: Optional[ImageData] = None
    generationMode: Optional[GenerationMode] = None
    clientConfig: ClientConfig = Field(default_factory=ClientConfig)


class DesignTextRequest(BaseModel):
    prompt: str = ""
    clientConfig: ClientConfig = Field(default_factory=ClientConfig)


class AnswerItem(BaseModel):
    answer: str = ""
    context: str = ""


class ValidateRequest(BaseModel):
    answers: List[AnswerItem] = Field(default_factory=list)
    globalContext: str = ""
    clientConfig: ClientConfig = Field(default_factory=ClientConfig)


class PreviewRequest(BaseModel):
    code: str = ""
    props: Dict[str, Any] = Field(default_factory=dict)
    clientConfig: Optional[ClientConfig] = None


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def lookup_api_key(model: str, config: ClientConfig) -> Tuple[Optional[str], bool]:
    """Client-supplied key first, then the server's ``<PROVIDER>_API_KEY``.

    Returns ``(key, from_env)``. Raises ValueError for unknown models.
    """
    provider = ModelConfig(model, "").provider
    key = (config.apiKeys.get(provider) or "").strip()
    if key:
        return key, False
    return context.settings.env_api_key(provider), True


def _resolve(model: str, config: ClientConfig, cost_fn) -> Tuple[Optional[ModelConfig], Optional[JSONResponse]]:
    try:
        key, from_env = lookup_api_key(model, config)
    except ValueError as e:
        return None, _error(400, str(e))
    if not key:
        return None, _error(400, f"No API key available for model {model}")
    if from_env:
        try:
            ratelimit.bucket(context.settings.rate_tokens_per_day).add(cost_fn())
        except ratelimit.RateLimitError:
            return None, _error(429, "Rate limit exceeded. Please try again later.")
    return ModelConfig(model, key), None


def _upstream_failure(exc: Exception) -> JSONResponse:
    status = 503 if isinstance(exc, RetryExhausted) else 502
    log.warning("llm request failed (%s): %s", type(exc).__name__, exc)
    return _error(status, str(exc))


_UPSTREAM_ERRORS = (
    ProviderError,
    RetryExhausted,
    EmptyResponseError,
    MalformedStructuredOutput,
    requests.RequestException,
)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/models")
def models() -> List[Dict[str, str]]:
    return [
        {"key": key, "name": info.name, "modelId": info.model_id, "provider": info.provider}
        for key, info in AI_MODELS.items()
    ]


@app.post("/api/design/image")
def design_from_image(req: DesignImageRequest):
    if req.imageData is None or not req.imageData.base64:
        return _error(400, "No image file provided")
    if req.generationMode is None:
        return _error(400, "No generationMode provided")
    model = req.clientConfig.generationModel
    config, failure = _resolve(model, req.clientConfig, lambda: ratelimit.GENERATION_COST)
    if failure is not None:
        return failure
    image = ImageContent(mime_type=req.imageData.mimeType, base64=req.imageData.base64)
    try:
        result = generate_form_from_image(image, config, req.generationMode, context)
    except _UPSTREAM_ERRORS as e:
        return _upstream_failure(e)
    return {"app": result.app, "context": result.context}


@app.post("/api/design/text")
def design_from_prompt(req: DesignTextRequest):
    if not req.prompt.strip():
        return _error(400, "No prompt provided")
    model = req.clientConfig.generationModel
    config, failure = _resolve(model, req.clientConfig, lambda: ratelimit.GENERATION_COST)
    if failure is not None:
        return failure
    try:
        result = generate_form_from_prompt(req.prompt, config, context)
    except _UPSTREAM_ERRORS as e:
        return _upstream_failure(e)
    return {"app": result.app, "context": result.context}


@app.post("/api/validate")
def validate_answers(req: ValidateRequest):
    model = req.clientConfig.validationModel
    config, failure = _resolve(
        model,
        req.clientConfig,
        lambda: ratelimit.validation_cost(json.dumps(req.model_dump())),
    )
    if failure is not None:
        return failure
    answers = [a.model_dump() for a in req.answers]
    try:
        return validate_user_response(answers, req.globalContext, config, context)
    except _UPSTREAM_ERRORS as e:
        return _upstream_failure(e)


class _ValidationCharge:
    """Charges each server-paid ``check_user_answers`` call against the token bucket.

    Refusals are remembered so a component that catches the error still gets a 429.
    """

    def __init__(self) -> None:
        self.refused = False

    def __call__(self, request: Any) -> None:
        cost = ratelimit.validation_cost(json.dumps(request, default=str))
        try:
            ratelimit.bucket(context.settings.rate_tokens_per_day).add(cost)
        except ratelimit.RateLimitError:
            self.refused = True
            raise


@app.post("/api/preview")
def preview(req: PreviewRequest):
    """Compile and mount submitted component code, returning its HTML or the error panel."""
    checker_config = None
    from_env = True
    if req.clientConfig is not None:
        model = req.clientConfig.validationModel
        try:
            key, from_env = lookup_api_key(model, req.clientConfig)
        except ValueError as e:
            return _error(400, str(e))
        if not key:
            return _error(400, f"No API key available for model {model}")
        checker_config = ModelConfig(model, key)
    charge = _ValidationCharge() if from_env else None
    user_ctx = {"check_user_answers": make_answer_checker(checker_config, context, charge)}
    boundary = ErrorBoundary.from_source(req.code, user_ctx, req.props, settings=context.settings)
    html = boundary.html()
    if charge is not None and charge.refused:
        return _error(429, "Rate limit exceeded. Please try again later.")
    return {
        "ok": boundary.ok,
        "html": html,
        "error": None if boundary.ok else str(boundary.error),
    }
