# services/generation/auxiliary_generators.py
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from api.models.analysis_models import Presentation, SynthesisResult
from services.generation.base import (
    GenerationError,
    build_prompt,
    dump,
    generate_free_text,
    generate_structured,
    require_text,
)
from services.generation.prompts import PROMPT_TEMPLATES, TEXT_LIMITS
from services.llm_service import BAD_INPUT, LLMRequestClient
from services.persona_service import Persona
from utils.sanitization import truncate_for_prompt

logger = logging.getLogger(__name__)


async def generate_presentation(
    text: str,
    persona: Persona,
    client: Optional[LLMRequestClient] = None,
) -> List[Dict[str, Any]]:
    """One-shot: a list of {title, content[]} slides."""
    require_text("presentation", text)
    presentation = await generate_structured(
        "presentation",
        "Failed to generate presentation",
        build_prompt("presentation", text, persona=persona.value),
        Presentation,
        client=client,
    )
    return dump(presentation)["slides"]


async def generate_synthesis(
    documents: Sequence[Tuple[str, str]],
    client: Optional[LLMRequestClient] = None,
) -> Dict[str, Any]:
    """
    One-shot cross-document synthesis.

    Args:
        documents: (label, text) pairs; labels are how the result refers
            back to each document.
    """
    if len(documents) < 2:
        raise GenerationError("synthesis", "Synthesis needs at least two documents", category=BAD_INPUT)

    blocks = []
    for label, text in documents:
        require_text("synthesis", text)
        blocks.append(
            PROMPT_TEMPLATES["synthesis_document"].format(
                label=label,
                text=truncate_for_prompt(text, TEXT_LIMITS["synthesis_per_document"]),
            )
        )

    prompt = PROMPT_TEMPLATES["synthesis"].format(count=len(documents), documents="\n".join(blocks))
    synthesis = await generate_structured(
        "synthesis",
        "Synthesis failed",
        prompt,
        SynthesisResult,
        client=client,
    )
    return dump(synthesis)


async def explain_figure(text: str, image: str, client: Optional[LLMRequestClient] = None) -> str:
    if not image:
        raise GenerationError("figure", "No figure was provided", category=BAD_INPUT)
    return await generate_free_text(
        "figure",
        "Failed to explain figure",
        build_prompt("figure", text),
        images=[image],
        client=client,
    )
