from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from workbook.models import GenerationMode
from workbook.registry import CapabilityRegistry, DEFAULT_REGISTRY

_env = Environment(
    loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates", "prompts")),
    autoescape=False,
    undefined=StrictUndefined,
)


def _render(name: str, **params: Any) -> str:
    return _env.get_template(name).render(**params).strip()


def _module_listing(registry: CapabilityRegistry) -> List[tuple]:
    return [(module, sorted(registry.exports(module))) for module in registry.modules]


def generation_system_prompt() -> str:
    return _render("generation_system.txt")


def base_prompt(registry: CapabilityRegistry = DEFAULT_REGISTRY) -> str:
    return _render("base_prompt.txt", modules=_module_listing(registry))


def image_generation_prompt(mode: GenerationMode, registry: CapabilityRegistry = DEFAULT_REGISTRY) -> str:
    prefix = "replicate_prefix.txt" if GenerationMode(mode) is GenerationMode.REPLICATE else "generate_prefix.txt"
    return f"{_render(prefix)}\n\n{base_prompt(registry)}"


def text_generation_prompt(prompt: str, registry: CapabilityRegistry = DEFAULT_REGISTRY) -> str:
    return f"{_render('prompt_prefix.txt', prompt=prompt.strip())}\n\n{base_prompt(registry)}"


def validation_system_prompt() -> str:
    return _render("validation_system.txt")


def validation_user_prompt() -> str:
    return _render("validation_user.txt")


def answers_prompt(answers: Sequence[Mapping[str, Any]], global_context: str) -> str:
    items = [{"answer": a.get("answer", ""), "context": a.get("context", "")} for a in answers]
    return _render("validation_answers.txt", answers=items, global_context=global_context)


VALIDATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "isCorrect": {"type": "boolean"},
                    "feedback": {"type": "string"},
                },
                "required": ["isCorrect", "feedback"],
            },
        },
    },
    "required": ["results"],
}
