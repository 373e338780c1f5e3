# services/generation/base.py
import logging
from typing import Any, Dict, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from services.generation.prompts import PROMPT_TEMPLATES, SYSTEM_PROMPTS, TEXT_LIMITS
from services.llm_service import (
    BAD_INPUT,
    UNKNOWN,
    LLMGenerationError,
    LLMRequestClient,
    get_request_client,
)
from utils.sanitization import truncate_for_prompt

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class GenerationError(Exception):
    """
    A content generator failed. Carries the stage name, a human-readable
    message, the user-facing category and whether a retry could help.
    """

    def __init__(self, stage: str, message: str, category: str = UNKNOWN, retryable: bool = False):
        super().__init__(message)
        self.stage = stage
        self.message = message
        self.category = category
        self.retryable = retryable


def build_prompt(template_key: str, text: str = "", **kwargs: Any) -> str:
    limit = TEXT_LIMITS.get(template_key)
    if limit is not None:
        text = truncate_for_prompt(text, limit)
    return PROMPT_TEMPLATES[template_key].format(text=text, **kwargs)


def _wrap(stage: str, label: str, exc: LLMGenerationError) -> GenerationError:
    return GenerationError(stage, f"{label}: {exc}", category=exc.category, retryable=exc.retryable)


async def generate_structured(
    stage: str,
    label: str,
    prompt: str,
    model_cls: Type[ModelT],
    images: Optional[Sequence[str]] = None,
    system_key: str = "analyst",
    client: Optional[LLMRequestClient] = None,
) -> ModelT:
    """
    Runs one structured-output request and validates the payload against
    model_cls. Any failure is raised as GenerationError with `label`
    prefixed to the message, e.g. "Initial analysis failed: ...".
    """
    try:
        client = client or get_request_client()
        data = await client.generate_json(
            prompt,
            images=images,
            schema=model_cls.model_json_schema(),
            system_prompt=SYSTEM_PROMPTS[system_key],
        )
    except LLMGenerationError as e:
        logger.error(f"{stage} generation failed: {e}")
        raise _wrap(stage, label, e) from e

    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        logger.error(f"{stage} response failed shape check: {e}")
        raise GenerationError(stage, f"{label}: the AI service returned an unexpected response shape") from e


async def generate_free_text(
    stage: str,
    label: str,
    prompt: str,
    images: Optional[Sequence[str]] = None,
    system_prompt: str = "",
    client: Optional[LLMRequestClient] = None,
) -> str:
    try:
        client = client or get_request_client()
        text = await client.generate_text(prompt, images=images, system_prompt=system_prompt)
    except LLMGenerationError as e:
        logger.error(f"{stage} generation failed: {e}")
        raise _wrap(stage, label, e) from e
    return text.strip()


def require_text(stage: str, text: str) -> str:
    if not text or not text.strip():
        raise GenerationError(stage, "Document text is empty", category=BAD_INPUT)
    return text


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")
