# services/persona_service.py
import logging
from enum import Enum
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class Persona(str, Enum):
    EXPERT = "a domain expert in the field"
    ENGINEER = "a software engineer with no expertise in this specific domain"
    STUDENT = "a curious high school student"
    MANAGER = "a product manager looking for business implications"


class SummaryLength(str, Enum):
    BRIEF = "a brief, one-sentence gist"
    DETAILED = "a detailed, single paragraph summary"
    COMPREHENSIVE = "a comprehensive, multi-paragraph summary"


class TechnicalDepth(str, Enum):
    LOW = "in simple, easy-to-understand language, avoiding jargon"
    MEDIUM = "with moderate technical detail"
    HIGH = "with full technical depth and terminology"


DEFAULT_PERSONA = Persona.ENGINEER

# Fixed table, checked top-down: (minimum score, persona)
SCORE_TABLE = (
    (4, Persona.EXPERT),
    (2, Persona.ENGINEER),
    (0, Persona.STUDENT),
)


def score_quiz(questions: Sequence[dict], answers: Sequence[Optional[str]]) -> int:
    """One point per answer that is byte-identical to the question's answer."""
    score = 0
    for question, selected in zip(questions, answers):
        if selected is not None and selected == question.get("answer"):
            score += 1
    return score


def persona_from_score(score: int) -> Persona:
    for minimum, persona in SCORE_TABLE:
        if score >= minimum:
            return persona
    return Persona.STUDENT


def parse_enum(enum_cls, raw: str, default):
    """Accepts either the member name (EXPERT) or its value."""
    if isinstance(raw, enum_cls):
        return raw
    if not raw:
        return default
    key = raw.strip().upper()
    if key in enum_cls.__members__:
        return enum_cls[key]
    for member in enum_cls:
        if member.value == raw:
            return member
    raise ValueError(f"Unknown {enum_cls.__name__}: {raw}")


def persona_label(persona: Persona) -> str:
    return {
        Persona.EXPERT: "Domain Expert",
        Persona.ENGINEER: "Software Engineer",
        Persona.STUDENT: "Curious Student",
        Persona.MANAGER: "Product Manager",
    }.get(persona, "Reader")
