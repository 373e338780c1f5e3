# File: state/state_schema.py
from dataclasses import dataclass
from enum import Enum
from typing import TypedDict, List, Dict, Any, Tuple


@dataclass(frozen=True)
class DocumentContext:
    """Immutable input of one analysis session. Images are base64 data URLs."""
    text: str
    images: Tuple[str, ...] = ()
    name: str = ""


class AnalysisResult(TypedDict, total=False):
    """
    Progressively-filled analysis of one document.
    Every key may be absent until the stage that produces it resolves;
    absence means "still loading", never an error.
    """
    # Core analysis (blocking stage)
    title: str
    takeaways: List[str]
    overallSummary: str
    aspects: Dict[str, Any]          # {problemStatement, methodology, keyFindings[]}

    # Advanced enrichment
    critique: Dict[str, Any]         # {strengths[], weaknesses[]}
    novelty: Dict[str, str]          # {assessment, comparison}
    futureWork: List[str]
    glossary: List[Dict[str, str]]
    ideation: List[Dict[str, str]]

    # Auxiliary enrichments
    references: Dict[str, List[str]]  # {apa[], bibtex[]}
    relatedPapers: List[Dict[str, str]]
    conceptMap: Dict[str, Any]       # {nodes[], links[]}

    # From the file parser
    images: List[str]


# Result slice owned by each background enrichment
ENRICHMENT_SLICES: Dict[str, List[str]] = {
    "advanced": ["critique", "novelty", "futureWork", "glossary", "ideation"],
    "references": ["references"],
    "related_papers": ["relatedPapers"],
    "concept_map": ["conceptMap"],
}

CORE_FIELDS = ["title", "takeaways", "overallSummary", "aspects"]


class SessionPhase(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    AWAITING_VALIDATION_OVERRIDE = "AWAITING_VALIDATION_OVERRIDE"
    AWAITING_QUIZ = "AWAITING_QUIZ"
    CORE_ANALYSIS = "CORE_ANALYSIS"
    DASHBOARD_PARTIAL = "DASHBOARD_PARTIAL"
    SYNTHESIS = "SYNTHESIS"
    SYNTHESIS_DASHBOARD = "SYNTHESIS_DASHBOARD"


class SliceStatus(str, Enum):
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"
