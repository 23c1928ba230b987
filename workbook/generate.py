"""Worksheet generation and answer validation built on LLMQuery."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import jsonschema

from workbook import llm_prompts
from workbook.config import LLMContext
from workbook.errors import MalformedStructuredOutput
from workbook.llm_parsing import GuardedCode, extract_guarded_code
from workbook.llm_query import LLMQuery
from workbook.models import DEFAULT_VALIDATION_MODEL, GenerationMode, ImageContent, ModelConfig
from workbook.registry import CapabilityRegistry, DEFAULT_REGISTRY

log = logging.getLogger(__name__)


def generate_form_from_image(
    image: ImageContent,
    model_config: ModelConfig,
    mode: GenerationMode,
    ctx: LLMContext,
    registry: CapabilityRegistry = DEFAULT_REGISTRY,
) -> GuardedCode:
    query = (
        LLMQuery(model_config, ctx)
        .system(llm_prompts.generation_system_prompt())
        .user(llm_prompts.image_generation_prompt(mode, registry))
        .image(image)
    )
    response = query.execute()
    return extract_guarded_code(response)


def generate_form_from_prompt(
    prompt: str,
    model_config: ModelConfig,
    ctx: LLMContext,
    registry: CapabilityRegistry = DEFAULT_REGISTRY,
) -> GuardedCode:
    query = (
        LLMQuery(model_config, ctx)
        .system(llm_prompts.generation_system_prompt())
        .user(llm_prompts.text_generation_prompt(prompt, registry))
    )
    response = query.execute()
    return extract_guarded_code(response)


def check_validation_result(result: Any, answer_count: int) -> Dict[str, Any]:
    """Raise MalformedStructuredOutput unless ``result`` is one graded entry per answer."""
    validator = jsonschema.Draft202012Validator(llm_prompts.VALIDATION_SCHEMA)
    problems = []
    for err in validator.iter_errors(result):
        loc = ".".join(str(p) for p in err.path) or "(root)"
        problems.append(f"{loc}: {err.message}")
    if problems:
        raise MalformedStructuredOutput(
            "Validation response does not match schema: " + "; ".join(problems), raw=result
        )
    got = len(result["results"])
    if got != answer_count:
        raise MalformedStructuredOutput(
            f"Validation response has {got} results for {answer_count} answers", raw=result
        )
    return {"results": [{"isCorrect": r["isCorrect"], "feedback": r["feedback"]} for r in result["results"]]}


def validate_user_response(
    answers: Sequence[Mapping[str, Any]],
    global_context: str,
    model_config: Optional[ModelConfig],
    ctx: LLMContext,
) -> Dict[str, Any]:
    if model_config is None:
        key = ctx.settings.env_api_key("gemini") or ""
        model_config = ModelConfig(DEFAULT_VALIDATION_MODEL, key)

    query = (
        LLMQuery(model_config, ctx)
        .output_json(llm_prompts.VALIDATION_SCHEMA)
        .system(llm_prompts.validation_system_prompt())
        .user(llm_prompts.validation_user_prompt())
        .user(llm_prompts.answers_prompt(answers, global_context))
        .output_json()
    )
    response = query.execute()
    log.debug("validation response: %s", response)
    return check_validation_result(response, len(answers))


def make_answer_checker(
    model_config: Optional[ModelConfig],
    ctx: LLMContext,
    charge: Optional[Callable[[Mapping[str, Any]], None]] = None,
) -> Callable[[Mapping[str, Any]], Dict[str, Any]]:
    """Build the ``check_user_answers`` callback handed to compiled components.

    ``charge`` is called with each request before it is sent and may raise to
    refuse it.
    """

    def check_user_answers(request: Mapping[str, Any]) -> Dict[str, Any]:
        if charge is not None:
            charge(request)
        answers: List[Mapping[str, Any]] = list(request.get("answers") or [])
        global_context = str(request.get("globalContext") or "")
        return validate_user_response(answers, global_context, model_config, ctx)

    return check_user_answers
