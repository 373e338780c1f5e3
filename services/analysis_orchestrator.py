# services/analysis_orchestrator.py
import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from services.chat_service import ChatSession
from services.generation import analysis_generators, auxiliary_generators, document_generators, related_papers
from services.generation.base import GenerationError
from services.history_service import HistoryService
from services.llm_service import BAD_INPUT, UNKNOWN, LLMRequestClient
from services.persona_service import (
    DEFAULT_PERSONA,
    Persona,
    SummaryLength,
    TechnicalDepth,
    persona_from_score,
    persona_label,
    score_quiz,
)
from state.state_schema import (
    AnalysisResult,
    CORE_FIELDS,
    DocumentContext,
    ENRICHMENT_SLICES,
    SessionPhase,
    SliceStatus,
)
from utils.sanitization import is_nonempty_text

logger = logging.getLogger(__name__)

DEFAULT_TERMINAL_FIELDS = ("critique",)

# User-facing names for scoped enrichment warnings
ENRICHMENT_LABELS = {
    "advanced": "critique",
    "references": "references",
    "related_papers": "related papers",
    "concept_map": "concept map",
}


class InvalidDocumentError(Exception):
    """Submitted documents are missing or have no extractable text."""
    category = BAD_INPUT


class InvalidPhaseError(Exception):
    """The operation is not allowed in the session's current phase."""


@dataclass
class Notice:
    level: str       # info | warning | error
    scope: str       # pipeline stage the notice is about
    message: str
    category: str = UNKNOWN

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class AnalysisOrchestrator:
    """
    Drives one analysis session.

    Single document: validation -> quiz -> persona -> core analysis ->
    dashboard with background enrichments. Several documents: straight to
    cross-document synthesis.

    Every async step captures the session generation before it suspends
    and only applies its outcome if the generation is unchanged, so a
    reset() makes all in-flight work inert.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        user_id: str = "demo-user",
        client: Optional[LLMRequestClient] = None,
        history_service: Optional[HistoryService] = None,
        terminal_fields: Sequence[str] = DEFAULT_TERMINAL_FIELDS,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.user_id = user_id
        self.client = client
        self.history_service = history_service
        self.terminal_fields = tuple(terminal_fields)

        self.generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self.chat: Optional[ChatSession] = None
        self._clear()

    # ------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------
    def _clear(self) -> None:
        self.phase = SessionPhase.IDLE
        self.documents: List[DocumentContext] = []
        self.result: AnalysisResult = {}
        self.slice_status: Dict[str, SliceStatus] = {}
        self.validation: Optional[Dict[str, Any]] = None
        self.quiz: List[Dict[str, Any]] = []
        self.quiz_score: Optional[int] = None
        self.persona: Optional[Persona] = None
        self.synthesis: Optional[Dict[str, Any]] = None
        self.notices: List[Notice] = []
        self.is_loading = False
        self.loading_message = ""
        self.history_entry_id: Optional[str] = None
        self._persisted = False
        self.updated_at = datetime.now()

    @property
    def document(self) -> Optional[DocumentContext]:
        return self.documents[0] if len(self.documents) == 1 else None

    def _is_stale(self, generation: int) -> bool:
        return generation != self.generation

    def _require_phase(self, *phases: SessionPhase) -> None:
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise InvalidPhaseError(f"Operation requires phase {allowed}; session is {self.phase.value}")

    def _require_document(self) -> DocumentContext:
        document = self.document
        if document is None:
            raise InvalidPhaseError("Operation requires a single-document analysis")
        return document

    def _notify(self, level: str, scope: str, message: str, category: str = UNKNOWN) -> None:
        self.notices.append(Notice(level=level, scope=scope, message=message, category=category))

    def _set_loading(self, message: str = "") -> None:
        self.is_loading = bool(message)
        self.loading_message = message

    def _abort(self, generation: int, scope: str, error: Exception) -> None:
        """Unexpected failure in a blocking stage: back to IDLE with an error notice."""
        if self._is_stale(generation):
            return
        logger.error(f"Session {self.session_id}: {scope} crashed: {error}", exc_info=True)
        self.reset()
        self._notify("error", scope, "Something went wrong while analyzing the document. Please try again.", UNKNOWN)

    def apply_update(self, generation: int, patch: Dict[str, Any]) -> bool:
        """
        Merge a slice into the result. Keys in `patch` replace their
        previous values wholesale; every other key is left untouched.
        Returns False (and merges nothing) for a stale generation.
        """
        if self._is_stale(generation):
            logger.debug(f"Session {self.session_id}: ignoring stale update {sorted(patch)}")
            return False
        for key, value in patch.items():
            self.result[key] = value
        self.updated_at = datetime.now()
        return True

    def is_complete(self) -> bool:
        return all(field in self.result for field in self.terminal_fields)

    # ------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------
    async def submit_files(self, documents: Sequence[DocumentContext]) -> SessionPhase:
        if not documents:
            raise InvalidDocumentError("At least one document is required")
        for doc in documents:
            if not is_nonempty_text(doc.text):
                raise InvalidDocumentError(f"No text could be extracted from {doc.name or 'the document'}")

        self.reset()
        self.documents = list(documents)
        logger.info(f"Session {self.session_id}: {len(self.documents)} document(s) submitted")

        if len(self.documents) > 1:
            await self.run_synthesis()
        else:
            await self.validate(self.documents[0].text)
        return self.phase

    async def validate(self, text: str) -> None:
        generation = self.generation
        self.phase = SessionPhase.VALIDATING
        self._set_loading("Validating document...")

        try:
            verdict = await document_generators.validate_document(text, client=self.client)
        except GenerationError as e:
            if self._is_stale(generation):
                return
            # Validation is advisory; an unavailable validator never blocks
            logger.warning(f"Session {self.session_id}: validation unavailable, continuing: {e}")
            self._notify("info", "validation", f"Could not validate the document: {e.message}", e.category)
            verdict = None
        except Exception as e:
            self._abort(generation, "validation", e)
            return

        if self._is_stale(generation):
            return

        self.validation = verdict
        if verdict is not None and not verdict.get("isPaper"):
            reason = verdict.get("reason") or "no reason given"
            logger.info(f"Session {self.session_id}: document rejected by validation ({reason})")
            self._notify(
                "warning",
                "validation",
                f"This document may not be a research paper: {reason}",
                BAD_INPUT,
            )
            self._set_loading()
            self.phase = SessionPhase.AWAITING_VALIDATION_OVERRIDE
            return

        await self.run_quiz_stage(text)

    async def resolve_validation(self, proceed: bool) -> SessionPhase:
        self._require_phase(SessionPhase.AWAITING_VALIDATION_OVERRIDE)
        if not proceed:
            self.reset()
            return self.phase

        document = self._require_document()
        logger.info(f"Session {self.session_id}: proceeding despite validation warning")
        await self.run_quiz_stage(document.text)
        return self.phase

    async def run_quiz_stage(self, text: str) -> None:
        generation = self.generation
        self._set_loading("Preparing a short comprehension quiz...")

        try:
            questions = await document_generators.generate_quiz(text, client=self.client)
        except GenerationError as e:
            logger.warning(f"Session {self.session_id}: quiz unavailable, using default persona: {e}")
            questions = []
        except Exception as e:
            self._abort(generation, "quiz", e)
            return

        if self._is_stale(generation):
            return

        if not questions:
            logger.info(f"Session {self.session_id}: no quiz questions, skipping to core analysis")
            await self.run_core_analysis(DEFAULT_PERSONA)
            return

        self.quiz = questions
        self._set_loading()
        self.phase = SessionPhase.AWAITING_QUIZ

    async def complete_quiz(self, answers: Sequence[Optional[str]]) -> SessionPhase:
        self._require_phase(SessionPhase.AWAITING_QUIZ)
        self.quiz_score = score_quiz(self.quiz, answers)
        persona = persona_from_score(self.quiz_score)
        logger.info(f"Session {self.session_id}: quiz score {self.quiz_score}/{len(self.quiz)} -> {persona.name}")
        await self.run_core_analysis(persona)
        return self.phase

    async def skip_quiz(self) -> SessionPhase:
        self._require_phase(SessionPhase.AWAITING_QUIZ)
        await self.run_core_analysis(DEFAULT_PERSONA)
        return self.phase

    async def run_core_analysis(self, persona: Persona) -> None:
        document = self._require_document()
        generation = self.generation
        self.persona = persona
        self.phase = SessionPhase.CORE_ANALYSIS
        self._set_loading("Analyzing document...")

        try:
            core = await analysis_generators.generate_core_analysis(document.text, persona, client=self.client)
        except GenerationError as e:
            if self._is_stale(generation):
                return
            logger.error(f"Session {self.session_id}: core analysis failed: {e}")
            self.reset()
            self._notify("error", "core_analysis", e.message, e.category)
            return
        except Exception as e:
            self._abort(generation, "core_analysis", e)
            return

        core = {k: v for k, v in core.items() if k in CORE_FIELDS}
        if not self.apply_update(generation, core):
            return
        if document.images:
            self.apply_update(generation, {"images": list(document.images)})

        self._set_loading()
        self.phase = SessionPhase.DASHBOARD_PARTIAL
        self.run_background_enrichments(document.text, persona, core)

    def run_background_enrichments(
        self,
        text: str,
        persona: Persona,
        core: Dict[str, Any],
    ) -> List[asyncio.Task]:
        """
        Start every enrichment concurrently. Each merges only its own
        slice; a failure marks that slice failed and adds a scoped
        warning without touching its siblings.
        """
        generation = self.generation
        title = core.get("title") or ""
        summary = core.get("overallSummary") or ""

        jobs: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            "advanced": lambda: analysis_generators.generate_advanced_analysis(
                text, persona, title=title, client=self.client
            ),
            "references": lambda: analysis_generators.generate_references(text, client=self.client),
            "concept_map": lambda: analysis_generators.generate_concept_map(text, client=self.client),
        }
        if title and summary:
            jobs["related_papers"] = self._related_papers_job(title, summary)

        tasks = []
        for name, job in jobs.items():
            self.slice_status[name] = SliceStatus.LOADING
            tasks.append(self._spawn(self._run_enrichment(generation, name, job)))

        logger.info(f"Session {self.session_id}: started {len(tasks)} enrichments")
        return tasks

    @staticmethod
    def _related_papers_job(title: str, summary: str) -> Callable[[], Awaitable[Dict[str, Any]]]:
        async def job() -> Dict[str, Any]:
            return {"relatedPapers": await related_papers.find_related_papers(title, summary)}
        return job

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_enrichment(
        self,
        generation: int,
        name: str,
        job: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> None:
        label = ENRICHMENT_LABELS.get(name, name)
        try:
            patch = await job()
        except GenerationError as e:
            self._enrichment_failed(generation, name, f"Could not load {label}: {e.message}", e.category)
            return
        except Exception as e:
            # Fire-and-forget task: nothing above us would observe the error
            logger.error(f"Session {self.session_id}: enrichment {name} crashed: {e}", exc_info=True)
            self._enrichment_failed(generation, name, f"Could not load {label}.", UNKNOWN)
            return

        owned = set(ENRICHMENT_SLICES.get(name, patch))
        patch = {k: v for k, v in patch.items() if k in owned}
        if self.apply_update(generation, patch):
            self.slice_status[name] = SliceStatus.LOADED
            logger.info(f"Session {self.session_id}: {name} merged")
            self._maybe_persist(generation)

    def _enrichment_failed(self, generation: int, name: str, message: str, category: str) -> None:
        if self._is_stale(generation):
            return
        logger.warning(f"Session {self.session_id}: enrichment {name} failed: {message}")
        self.slice_status[name] = SliceStatus.FAILED
        self._notify("warning", name, message, category)

    # ------------------------------------------------------------
    # History persistence
    # ------------------------------------------------------------
    def _maybe_persist(self, generation: int) -> None:
        if self._persisted or self.history_service is None or self.document is None:
            return
        if not self.is_complete():
            return
        self._persisted = True
        self._spawn(self._persist(generation))

    async def _persist(self, generation: int) -> None:
        document = self.document
        entry = {
            "title": self.result.get("title") or document.name,
            "fileName": document.name,
            "result": dict(self.result),
            "documentText": document.text,
        }
        try:
            saved = await asyncio.to_thread(self.history_service.save_analysis, entry, self.user_id)
        except Exception as e:
            logger.error(f"Session {self.session_id}: failed to save history: {e}", exc_info=True)
            if not self._is_stale(generation):
                self._notify("warning", "history", "Could not save this analysis to history.", UNKNOWN)
            return
        if not self._is_stale(generation):
            self.history_entry_id = saved["id"]

    async def wait_for_enrichments(self, timeout: Optional[float] = None) -> None:
        """Wait until every background task (including persistence) settles."""
        while self._tasks:
            pending = list(self._tasks)
            await asyncio.wait_for(asyncio.gather(*pending, return_exceptions=True), timeout=timeout)

    # ------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------
    async def run_synthesis(self) -> None:
        generation = self.generation
        self.phase = SessionPhase.SYNTHESIS
        self._set_loading(f"Synthesizing {len(self.documents)} documents...")

        labels: List[str] = []
        for i, doc in enumerate(self.documents, start=1):
            label = doc.name or f"Document {i}"
            labels.append(f"{label} ({i})" if label in labels else label)

        try:
            synthesis = await auxiliary_generators.generate_synthesis(
                list(zip(labels, [d.text for d in self.documents])),
                client=self.client,
            )
        except GenerationError as e:
            if self._is_stale(generation):
                return
            logger.error(f"Session {self.session_id}: synthesis failed: {e}")
            self.reset()
            self._notify("error", "synthesis", e.message, e.category)
            return
        except Exception as e:
            self._abort(generation, "synthesis", e)
            return

        if self._is_stale(generation):
            return
        self.synthesis = synthesis
        self._set_loading()
        self.phase = SessionPhase.SYNTHESIS_DASHBOARD

    # ------------------------------------------------------------
    # One-shot operations
    # ------------------------------------------------------------
    async def generate_presentation(self) -> List[Dict[str, Any]]:
        self._require_phase(SessionPhase.DASHBOARD_PARTIAL)
        document = self._require_document()
        return await auxiliary_generators.generate_presentation(
            document.text, self.persona or DEFAULT_PERSONA, client=self.client
        )

    async def explain_figure(self, index: int) -> str:
        self._require_phase(SessionPhase.DASHBOARD_PARTIAL)
        document = self._require_document()
        if not 0 <= index < len(document.images):
            raise IndexError(f"No figure at index {index}")
        return await auxiliary_generators.explain_figure(document.text, document.images[index], client=self.client)

    async def regenerate_summary(
        self,
        persona: Persona,
        length: SummaryLength,
        depth: TechnicalDepth,
    ) -> str:
        self._require_phase(SessionPhase.DASHBOARD_PARTIAL)
        document = self._require_document()
        generation = self.generation
        summary = await analysis_generators.regenerate_summary(
            document.text, persona, length, depth, client=self.client
        )
        self.apply_update(generation, {"overallSummary": summary})
        return summary

    def get_chat_session(self) -> ChatSession:
        self._require_phase(SessionPhase.DASHBOARD_PARTIAL)
        document = self._require_document()
        if self.chat is None or self.chat.closed:
            self.chat = ChatSession(document, client=self.client)
        return self.chat

    # ------------------------------------------------------------
    # Reset / snapshot
    # ------------------------------------------------------------
    def reset(self) -> None:
        """Drop all session state. Safe from any phase and idempotent."""
        self.generation += 1
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        if self.chat is not None:
            self.chat.close()
            self.chat = None
        self._clear()

    def to_dict(self) -> Dict[str, Any]:
        quiz = self.quiz
        if self.phase == SessionPhase.AWAITING_QUIZ:
            quiz = [{"question": q["question"], "options": q["options"]} for q in self.quiz]
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "is_loading": self.is_loading,
            "loading_message": self.loading_message,
            "documents": [
                {"name": d.name, "characters": len(d.text), "images": len(d.images)} for d in self.documents
            ],
            "validation": self.validation,
            "quiz": quiz,
            "quiz_score": self.quiz_score,
            "persona": self.persona.name if self.persona else None,
            "persona_label": persona_label(self.persona) if self.persona else None,
            "result": dict(self.result),
            "slice_status": {name: status.value for name, status in self.slice_status.items()},
            "synthesis": self.synthesis,
            "notices": [n.to_dict() for n in self.notices],
            "history_entry_id": self.history_entry_id,
        }
