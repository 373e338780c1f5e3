# services/generation/document_generators.py
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from api.models.analysis_models import Quiz, QuizQuestion, ValidationVerdict
from services.generation.base import build_prompt, dump, generate_structured, require_text
from services.llm_service import LLMRequestClient

logger = logging.getLogger(__name__)


async def validate_document(text: str, client: Optional[LLMRequestClient] = None) -> Dict[str, Any]:
    """Returns {"isPaper": bool, "reason": str}."""
    require_text("validation", text)
    verdict = await generate_structured(
        "validation",
        "Failed to validate document",
        build_prompt("validation", text),
        ValidationVerdict,
        system_key="classifier",
        client=client,
    )
    return dump(verdict)


async def generate_quiz(text: str, client: Optional[LLMRequestClient] = None) -> List[Dict[str, Any]]:
    """
    Returns the comprehension quiz. Questions whose answer is not one of
    exactly four options are dropped, so every returned question scores
    by exact string match.
    """
    require_text("quiz", text)
    quiz = await generate_structured(
        "quiz",
        "Failed to generate quiz",
        build_prompt("quiz", text),
        Quiz,
        client=client,
    )

    questions = []
    for raw in quiz.questions:
        try:
            questions.append(dump(QuizQuestion.model_validate(raw)))
        except ValidationError as e:
            logger.warning(f"Dropping malformed quiz question: {e.errors()[0].get('msg')}")

    logger.info(f"Quiz generated with {len(questions)}/{len(quiz.questions)} valid questions")
    return questions
