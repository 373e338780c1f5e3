# services/generation/analysis_generators.py
import logging
from typing import Any, Dict, Optional

from api.models.analysis_models import AdvancedAnalysis, ConceptMap, CoreAnalysis, References
from services.generation.base import (
    build_prompt,
    dump,
    generate_free_text,
    generate_structured,
    require_text,
)
from services.graph_service import sanitize_concept_map
from services.llm_service import LLMRequestClient
from services.persona_service import Persona, SummaryLength, TechnicalDepth

logger = logging.getLogger(__name__)


async def generate_core_analysis(
    text: str,
    persona: Persona,
    client: Optional[LLMRequestClient] = None,
) -> Dict[str, Any]:
    """Blocking stage: {title, takeaways, overallSummary, aspects}."""
    require_text("core_analysis", text)
    core = await generate_structured(
        "core_analysis",
        "Initial analysis failed",
        build_prompt("core_analysis", text, persona=persona.value),
        CoreAnalysis,
        client=client,
    )
    return dump(core)


async def generate_advanced_analysis(
    text: str,
    persona: Persona,
    title: str = "",
    client: Optional[LLMRequestClient] = None,
) -> Dict[str, Any]:
    """{critique, novelty, futureWork, glossary, ideation}."""
    require_text("advanced_analysis", text)
    advanced = await generate_structured(
        "advanced_analysis",
        "Detailed analysis failed",
        build_prompt("advanced_analysis", text, persona=persona.value, title=title or "Unknown"),
        AdvancedAnalysis,
        client=client,
    )
    return dump(advanced)


async def generate_references(text: str, client: Optional[LLMRequestClient] = None) -> Dict[str, Any]:
    """{references: {apa[], bibtex[]}}."""
    require_text("references", text)
    references = await generate_structured(
        "references",
        "Reference extraction failed",
        build_prompt("references", text),
        References,
        client=client,
    )
    return {"references": dump(references)}


async def generate_concept_map(text: str, client: Optional[LLMRequestClient] = None) -> Dict[str, Any]:
    """{conceptMap: {nodes[], links[]}} with dangling links removed."""
    require_text("concept_map", text)
    concept_map = await generate_structured(
        "concept_map",
        "Concept map extraction failed",
        build_prompt("concept_map", text),
        ConceptMap,
        client=client,
    )
    return {"conceptMap": sanitize_concept_map(dump(concept_map))}


async def regenerate_summary(
    text: str,
    persona: Persona,
    length: SummaryLength,
    depth: TechnicalDepth,
    client: Optional[LLMRequestClient] = None,
) -> str:
    require_text("summary", text)
    return await generate_free_text(
        "summary",
        "Failed to regenerate summary",
        build_prompt("regenerate_summary", text, persona=persona.value, length=length.value, depth=depth.value),
        client=client,
    )


async def generate_grounding_summary(text: str, client: Optional[LLMRequestClient] = None) -> str:
    """Dense fact summary used as chat context."""
    require_text("grounding_summary", text)
    return await generate_free_text(
        "grounding_summary",
        "Failed to prepare chat context",
        build_prompt("grounding_summary", text),
        client=client,
    )
