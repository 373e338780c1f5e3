# api/models/analysis_models.py
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class VerifiablePoint(BaseModel):
    point: str = Field(..., description="The analytical point, finding, strength, or weakness.")
    evidence: str = Field(..., description="A direct, verbatim quote from the source text that supports the point.")


class ValidationVerdict(BaseModel):
    isPaper: bool
    reason: str = Field("", description="A brief explanation for the decision.")


class QuizQuestion(BaseModel):
    question: str
    options: List[str] = Field(..., min_length=4, max_length=4)
    answer: str = Field(..., description="The correct option text from the 'options' array.")

    @model_validator(mode="after")
    def answer_must_be_an_option(self):
        # Exact, case-sensitive match
        if self.answer not in self.options:
            raise ValueError("answer must be one of the options")
        return self


class Quiz(BaseModel):
    questions: List[dict] = Field(default_factory=list)


class Aspects(BaseModel):
    problemStatement: str = Field("", description="Research gap, motivation, and core problem.")
    methodology: str = Field("", description="Experimental setup, theoretical framework, or model architecture.")
    keyFindings: List[VerifiablePoint] = Field(default_factory=list)


class CoreAnalysis(BaseModel):
    title: str
    takeaways: List[str] = Field(default_factory=list, description="3-5 critical, high-level takeaways, one sentence each.")
    overallSummary: str = Field(..., description="A concise, one-paragraph overall summary.")
    aspects: Aspects = Field(default_factory=Aspects)

    @field_validator("title", "overallSummary")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()


class Critique(BaseModel):
    strengths: List[VerifiablePoint] = Field(default_factory=list)
    weaknesses: List[VerifiablePoint] = Field(default_factory=list)


class Novelty(BaseModel):
    assessment: str = ""
    comparison: str = ""


class GlossaryTerm(BaseModel):
    term: str
    definition: str


class Hypothesis(BaseModel):
    hypothesis: str
    rationale: str = ""


class AdvancedAnalysis(BaseModel):
    critique: Critique
    novelty: Novelty = Field(default_factory=Novelty)
    futureWork: List[str] = Field(default_factory=list)
    glossary: List[GlossaryTerm] = Field(default_factory=list)
    ideation: List[Hypothesis] = Field(default_factory=list)


class References(BaseModel):
    apa: List[str] = Field(default_factory=list)
    bibtex: List[str] = Field(default_factory=list)


class RelatedPaper(BaseModel):
    title: str
    uri: str


class ConceptNode(BaseModel):
    id: str
    label: str = ""

    @model_validator(mode="after")
    def default_label(self):
        if not self.label:
            self.label = self.id
        return self


class ConceptLink(BaseModel):
    source: str
    target: str
    relationship: str = "related to"


class ConceptMap(BaseModel):
    nodes: List[ConceptNode] = Field(default_factory=list)
    links: List[ConceptLink] = Field(default_factory=list)


class PresentationSlide(BaseModel):
    title: str
    content: List[str] = Field(default_factory=list)


class Presentation(BaseModel):
    slides: List[PresentationSlide] = Field(default_factory=list)


class Theme(BaseModel):
    theme: str
    papers: List[str] = Field(default_factory=list)


class ConflictingFinding(BaseModel):
    finding: str
    papers: List[str] = Field(default_factory=list)


class SynthesisResult(BaseModel):
    overallSynthesis: str
    commonThemes: List[Theme] = Field(default_factory=list)
    conflictingFindings: List[ConflictingFinding] = Field(default_factory=list)
    conceptEvolution: str = ""

    @field_validator("overallSynthesis")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("overallSynthesis must not be empty")
        return value


# ------------------------------------------------------------
# Request payloads
# ------------------------------------------------------------

class ValidationOverrideRequest(BaseModel):
    proceed: bool


class QuizAnswersRequest(BaseModel):
    answers: List[Optional[str]] = Field(default_factory=list)


class RegenerateSummaryRequest(BaseModel):
    persona: str = "ENGINEER"
    length: str = "DETAILED"
    depth: str = "MEDIUM"


class ChatRequest(BaseModel):
    message: str
    image_index: Optional[int] = None


class DragRequest(BaseModel):
    node_id: str
    x: float
    y: float


class ReleaseRequest(BaseModel):
    node_id: str
