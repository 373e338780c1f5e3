import asyncio
from unittest.mock import MagicMock

import pytest

from services.analysis_orchestrator import AnalysisOrchestrator, InvalidDocumentError, InvalidPhaseError
from services.generation.base import GenerationError
from services import llm_service
from services.credential_provider import RoundRobinCredentialProvider
from services.llm_service import BAD_INPUT, SERVICE_UNAVAILABLE, LLMRequestClient
from services.persona_service import Persona, SummaryLength, TechnicalDepth
from state.state_schema import DocumentContext, SessionPhase, SliceStatus
from tests.sample_data import ADVANCED, CORE, QUIZ


async def _to_dashboard(orchestrator, paper):
    await orchestrator.submit_files([paper])
    await orchestrator.skip_quiz()
    await orchestrator.wait_for_enrichments(timeout=5)


# ------------------------------------------------------------
# End-to-end paths
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_single_file_perfect_quiz_runs_core_as_expert(pipeline):
    orchestrator = AnalysisOrchestrator()
    paper = DocumentContext(text="Title: X\nAbstract: a study of X.", name="x.txt")

    phase = await orchestrator.submit_files([paper])
    assert phase == SessionPhase.AWAITING_QUIZ
    pipeline.validate_document.assert_awaited_once()
    assert len(orchestrator.quiz) == 5

    await orchestrator.complete_quiz([q["answer"] for q in QUIZ])

    assert orchestrator.quiz_score == 5
    assert orchestrator.persona == Persona.EXPERT
    args, _ = pipeline.generate_core_analysis.call_args
    assert args[1] == Persona.EXPERT
    assert orchestrator.phase == SessionPhase.DASHBOARD_PARTIAL
    assert orchestrator.is_loading is False

    await orchestrator.wait_for_enrichments(timeout=5)
    result = orchestrator.result
    assert result["title"] == CORE["title"]
    assert result["critique"] == ADVANCED["critique"]
    assert result["references"]["apa"]
    assert result["relatedPapers"][0]["title"] == "BERT"
    assert result["conceptMap"]["nodes"]
    assert set(orchestrator.slice_status.values()) == {SliceStatus.LOADED}


@pytest.mark.asyncio
async def test_two_files_go_straight_to_synthesis(pipeline):
    orchestrator = AnalysisOrchestrator()
    docs = [
        DocumentContext(text="Paper one text", name="a.txt"),
        DocumentContext(text="Paper two text", name="b.txt"),
    ]

    phase = await orchestrator.submit_files(docs)

    assert phase == SessionPhase.SYNTHESIS_DASHBOARD
    pipeline.validate_document.assert_not_awaited()
    pipeline.generate_quiz.assert_not_awaited()
    assert orchestrator.synthesis["overallSynthesis"]
    labels = [label for label, _ in pipeline.generate_synthesis.call_args.args[0]]
    assert labels == ["a.txt", "b.txt"]


@pytest.mark.asyncio
async def test_synthesis_failure_resets_to_idle(pipeline):
    pipeline.generate_synthesis.side_effect = GenerationError("synthesis", "Synthesis failed: boom")
    orchestrator = AnalysisOrchestrator()

    await orchestrator.submit_files([DocumentContext(text="one"), DocumentContext(text="two")])

    assert orchestrator.phase == SessionPhase.IDLE
    assert orchestrator.documents == []
    assert orchestrator.notices[-1].scope == "synthesis"
    assert orchestrator.notices[-1].level == "error"


# ------------------------------------------------------------
# Validation and quiz stage
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_rejected_document_waits_for_override(pipeline, paper):
    pipeline.validate_document.return_value = {"isPaper": False, "reason": "This is a recipe."}
    orchestrator = AnalysisOrchestrator()

    phase = await orchestrator.submit_files([paper])

    assert phase == SessionPhase.AWAITING_VALIDATION_OVERRIDE
    assert orchestrator.notices[0].category == BAD_INPUT
    assert "recipe" in orchestrator.notices[0].message
    pipeline.generate_quiz.assert_not_awaited()

    await orchestrator.resolve_validation(proceed=True)
    assert orchestrator.phase == SessionPhase.AWAITING_QUIZ


@pytest.mark.asyncio
async def test_cancel_after_rejection_resets(pipeline, paper):
    pipeline.validate_document.return_value = {"isPaper": False, "reason": "Not a paper."}
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])

    await orchestrator.resolve_validation(proceed=False)

    assert orchestrator.phase == SessionPhase.IDLE
    assert orchestrator.documents == []
    assert orchestrator.notices == []


@pytest.mark.asyncio
async def test_validation_outage_is_advisory(pipeline, paper):
    pipeline.validate_document.side_effect = GenerationError(
        "validation", "Failed to validate document: timeout", category=SERVICE_UNAVAILABLE
    )
    orchestrator = AnalysisOrchestrator()

    phase = await orchestrator.submit_files([paper])

    assert phase == SessionPhase.AWAITING_QUIZ
    assert orchestrator.notices[0].level == "info"


@pytest.mark.asyncio
@pytest.mark.parametrize("quiz_outcome", [[], GenerationError("quiz", "Failed to generate quiz: boom")])
async def test_missing_quiz_falls_through_with_default_persona(pipeline, paper, quiz_outcome):
    if isinstance(quiz_outcome, Exception):
        pipeline.generate_quiz.side_effect = quiz_outcome
    else:
        pipeline.generate_quiz.return_value = quiz_outcome
    orchestrator = AnalysisOrchestrator()

    phase = await orchestrator.submit_files([paper])

    assert phase == SessionPhase.DASHBOARD_PARTIAL
    assert orchestrator.persona == Persona.ENGINEER
    # Falling through is silent
    assert orchestrator.notices == []
    await orchestrator.wait_for_enrichments(timeout=5)


@pytest.mark.asyncio
async def test_skip_quiz_uses_default_persona(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])

    await orchestrator.skip_quiz()

    assert orchestrator.persona == Persona.ENGINEER
    await orchestrator.wait_for_enrichments(timeout=5)


@pytest.mark.asyncio
async def test_quiz_answers_outside_quiz_phase_are_rejected(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    with pytest.raises(InvalidPhaseError):
        await orchestrator.complete_quiz(["x"])


@pytest.mark.asyncio
async def test_snapshot_hides_quiz_answers_until_answered(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])

    quiz = orchestrator.to_dict()["quiz"]
    assert all("answer" not in q for q in quiz)
    assert all(len(q["options"]) == 4 for q in quiz)


# ------------------------------------------------------------
# Input checks
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_submit_requires_documents_with_text(pipeline):
    orchestrator = AnalysisOrchestrator()

    with pytest.raises(InvalidDocumentError):
        await orchestrator.submit_files([])
    with pytest.raises(InvalidDocumentError):
        await orchestrator.submit_files([DocumentContext(text="  \n ", name="blank.pdf")])

    assert orchestrator.phase == SessionPhase.IDLE


# ------------------------------------------------------------
# Core analysis and enrichments
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_core_failure_resets_with_error_notice(pipeline, paper):
    pipeline.generate_core_analysis.side_effect = GenerationError(
        "core_analysis", "Initial analysis failed: rate limited", category=SERVICE_UNAVAILABLE
    )
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])

    await orchestrator.skip_quiz()

    assert orchestrator.phase == SessionPhase.IDLE
    assert orchestrator.result == {}
    assert orchestrator.is_loading is False
    notice = orchestrator.notices[-1]
    assert notice.level == "error"
    assert notice.category == SERVICE_UNAVAILABLE
    pipeline.generate_advanced_analysis.assert_not_awaited()


@pytest.mark.asyncio
async def test_one_failing_enrichment_does_not_block_siblings(pipeline, paper):
    # No summary, so only three enrichments start
    pipeline.generate_core_analysis.return_value = {**CORE, "overallSummary": ""}
    pipeline.generate_references.side_effect = GenerationError(
        "references", "Reference extraction failed: bad JSON"
    )
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])
    await orchestrator.skip_quiz()

    await orchestrator.wait_for_enrichments(timeout=5)

    pipeline.find_related_papers.assert_not_awaited()
    assert orchestrator.slice_status == {
        "advanced": SliceStatus.LOADED,
        "references": SliceStatus.FAILED,
        "concept_map": SliceStatus.LOADED,
    }
    assert "critique" in orchestrator.result
    assert "conceptMap" in orchestrator.result
    assert "references" not in orchestrator.result
    assert orchestrator.phase == SessionPhase.DASHBOARD_PARTIAL
    warning = orchestrator.notices[-1]
    assert warning.scope == "references"
    assert warning.level == "warning"


@pytest.mark.asyncio
async def test_unexpected_enrichment_crash_is_contained(pipeline, paper):
    pipeline.generate_concept_map.side_effect = RuntimeError("kaboom")
    orchestrator = AnalysisOrchestrator()

    await _to_dashboard(orchestrator, paper)

    assert orchestrator.slice_status["concept_map"] == SliceStatus.FAILED
    assert orchestrator.slice_status["advanced"] == SliceStatus.LOADED


@pytest.mark.asyncio
async def test_enrichment_cannot_write_outside_its_slice(pipeline, paper):
    pipeline.generate_references.return_value = {"references": {"apa": [], "bibtex": []}, "title": "Hijacked"}
    orchestrator = AnalysisOrchestrator()

    await _to_dashboard(orchestrator, paper)

    assert orchestrator.result["title"] == CORE["title"]


# ------------------------------------------------------------
# Merge, reset and cancellation
# ------------------------------------------------------------
def test_merge_is_monotonic():
    orchestrator = AnalysisOrchestrator()
    gen = orchestrator.generation

    assert orchestrator.apply_update(gen, {"a": 1})
    assert orchestrator.apply_update(gen, {"b": 2})

    assert orchestrator.result == {"a": 1, "b": 2}


def test_merge_replaces_keys_wholesale():
    orchestrator = AnalysisOrchestrator()
    gen = orchestrator.generation
    orchestrator.apply_update(gen, {"critique": {"strengths": [1], "weaknesses": [2]}})

    orchestrator.apply_update(gen, {"critique": {"strengths": [3]}})

    assert orchestrator.result["critique"] == {"strengths": [3]}


def test_reset_is_idempotent():
    orchestrator = AnalysisOrchestrator()
    orchestrator.apply_update(orchestrator.generation, {"title": "T"})

    orchestrator.reset()
    once = orchestrator.to_dict()
    orchestrator.reset()
    twice = orchestrator.to_dict()

    assert once == twice
    assert once["phase"] == SessionPhase.IDLE.value
    assert once["result"] == {}


def test_stale_generation_merge_is_ignored():
    orchestrator = AnalysisOrchestrator()
    old = orchestrator.generation
    orchestrator.reset()

    assert orchestrator.apply_update(old, {"critique": {}}) is False
    assert orchestrator.result == {}


@pytest.mark.asyncio
async def test_reset_during_enrichment_drops_late_results(pipeline, paper):
    release = asyncio.Event()

    async def slow_advanced(*args, **kwargs):
        await release.wait()
        return dict(ADVANCED)

    pipeline.generate_advanced_analysis.side_effect = slow_advanced
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])
    await orchestrator.skip_quiz()
    await asyncio.sleep(0)

    orchestrator.reset()
    release.set()
    await asyncio.sleep(0.01)

    assert orchestrator.result == {}
    assert orchestrator.phase == SessionPhase.IDLE


# ------------------------------------------------------------
# History persistence
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_history_saved_once_when_terminal_field_arrives(pipeline, paper):
    history = MagicMock()
    history.save_analysis.return_value = {"id": "entry-1"}
    orchestrator = AnalysisOrchestrator(user_id="alice", history_service=history)

    await _to_dashboard(orchestrator, paper)

    history.save_analysis.assert_called_once()
    entry, user_id = history.save_analysis.call_args.args
    assert user_id == "alice"
    assert entry["title"] == CORE["title"]
    assert entry["fileName"] == "attention.txt"
    assert "critique" in entry["result"]
    assert orchestrator.history_entry_id == "entry-1"


@pytest.mark.asyncio
async def test_history_not_saved_when_terminal_field_failed(pipeline, paper):
    pipeline.generate_advanced_analysis.side_effect = GenerationError("advanced_analysis", "Detailed analysis failed")
    history = MagicMock()
    orchestrator = AnalysisOrchestrator(history_service=history)

    await _to_dashboard(orchestrator, paper)

    history.save_analysis.assert_not_called()
    assert orchestrator.is_complete() is False


@pytest.mark.asyncio
async def test_terminal_fields_are_configurable(pipeline, paper):
    pipeline.generate_concept_map.side_effect = GenerationError("concept_map", "Concept map extraction failed")
    history = MagicMock()
    orchestrator = AnalysisOrchestrator(history_service=history, terminal_fields=("critique", "conceptMap"))

    await _to_dashboard(orchestrator, paper)

    history.save_analysis.assert_not_called()


@pytest.mark.asyncio
async def test_history_failure_becomes_warning(pipeline, paper):
    history = MagicMock()
    history.save_analysis.side_effect = RuntimeError("database is locked")
    orchestrator = AnalysisOrchestrator(history_service=history)

    await _to_dashboard(orchestrator, paper)

    assert orchestrator.notices[-1].scope == "history"
    assert orchestrator.phase == SessionPhase.DASHBOARD_PARTIAL


# ------------------------------------------------------------
# One-shot operations
# ------------------------------------------------------------
@pytest.mark.asyncio
async def test_regenerate_summary_replaces_overall_summary(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    await _to_dashboard(orchestrator, paper)

    summary = await orchestrator.regenerate_summary(Persona.STUDENT, SummaryLength.BRIEF, TechnicalDepth.LOW)

    assert summary == "A shorter summary."
    assert orchestrator.result["overallSummary"] == "A shorter summary."
    assert orchestrator.result["title"] == CORE["title"]


@pytest.mark.asyncio
async def test_presentation_uses_session_persona(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    await _to_dashboard(orchestrator, paper)

    slides = await orchestrator.generate_presentation()

    assert slides[0]["title"] == "Intro"
    assert pipeline.generate_presentation.call_args.args[1] == Persona.ENGINEER
    assert "slides" not in orchestrator.result


@pytest.mark.asyncio
async def test_explain_figure_checks_index(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    await _to_dashboard(orchestrator, paper)

    assert await orchestrator.explain_figure(0) == "The figure shows the encoder stack."
    with pytest.raises(IndexError):
        await orchestrator.explain_figure(3)


@pytest.mark.asyncio
async def test_one_shot_operations_need_dashboard(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])

    with pytest.raises(InvalidPhaseError):
        await orchestrator.generate_presentation()


@pytest.mark.asyncio
async def test_reset_closes_chat_session(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    await _to_dashboard(orchestrator, paper)
    chat = orchestrator.get_chat_session()

    orchestrator.reset()

    assert chat.closed is True
    assert orchestrator.chat is None


# ------------------------------------------------------------
# Configuration and unexpected failures never leave a session loading
# ------------------------------------------------------------
def _broken_factory(**kwargs):
    raise ValueError("Unknown LLM provider: gemini")


@pytest.mark.asyncio
async def test_misconfigured_llm_client_returns_session_to_idle():
    client = LLMRequestClient(
        RoundRobinCredentialProvider(["k1"]),
        provider="openai",
        model="test-model",
        client_factory=_broken_factory,
    )
    orchestrator = AnalysisOrchestrator(client=client)

    phase = await orchestrator.submit_files([DocumentContext(text="Title: X\nAbstract: a study of X.", name="x.txt")])

    assert phase == SessionPhase.IDLE
    assert orchestrator.is_loading is False
    assert orchestrator.documents == []
    assert [(n.level, n.scope) for n in orchestrator.notices] == [("error", "core_analysis")]


@pytest.mark.asyncio
async def test_missing_credentials_return_session_to_idle(monkeypatch):
    monkeypatch.delenv("PRISM_API_KEYS", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr(llm_service, "_client", None)
    orchestrator = AnalysisOrchestrator()

    phase = await orchestrator.submit_files([DocumentContext(text="Title: X\nAbstract: a study of X.", name="x.txt")])

    assert phase == SessionPhase.IDLE
    assert orchestrator.is_loading is False
    assert "not configured" in orchestrator.notices[-1].message


@pytest.mark.asyncio
async def test_unexpected_validation_error_resets_with_error_notice(pipeline, paper):
    pipeline.validate_document.side_effect = RuntimeError("boom")
    orchestrator = AnalysisOrchestrator()

    phase = await orchestrator.submit_files([paper])

    assert phase == SessionPhase.IDLE
    assert orchestrator.is_loading is False
    pipeline.generate_quiz.assert_not_awaited()
    assert (orchestrator.notices[-1].level, orchestrator.notices[-1].scope) == ("error", "validation")


@pytest.mark.asyncio
async def test_unexpected_core_analysis_error_resets_with_error_notice(pipeline, paper):
    pipeline.generate_core_analysis.side_effect = KeyError("title")
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])

    phase = await orchestrator.skip_quiz()

    assert phase == SessionPhase.IDLE
    assert orchestrator.result == {}
    assert orchestrator.slice_status == {}
    assert (orchestrator.notices[-1].level, orchestrator.notices[-1].scope) == ("error", "core_analysis")


@pytest.mark.asyncio
async def test_unexpected_synthesis_error_resets_with_error_notice(pipeline):
    pipeline.generate_synthesis.side_effect = TypeError("bad payload")
    orchestrator = AnalysisOrchestrator()

    phase = await orchestrator.submit_files([DocumentContext(text="one"), DocumentContext(text="two")])

    assert phase == SessionPhase.IDLE
    assert orchestrator.is_loading is False
    assert orchestrator.notices[-1].scope == "synthesis"


@pytest.mark.asyncio
async def test_core_analysis_merges_only_core_fields(pipeline, paper):
    # A stray enrichment key from the core stage must not satisfy the persistence trigger
    pipeline.generate_core_analysis.return_value = {**CORE, "critique": {"strengths": [], "weaknesses": []}}
    pipeline.generate_advanced_analysis.side_effect = GenerationError("advanced", "Advanced analysis failed")
    orchestrator = AnalysisOrchestrator()

    await _to_dashboard(orchestrator, paper)

    assert set(CORE) <= set(orchestrator.result)
    assert "critique" not in orchestrator.result
    assert orchestrator.is_complete() is False


@pytest.mark.asyncio
async def test_snapshot_carries_persona_label(pipeline, paper):
    orchestrator = AnalysisOrchestrator()
    await orchestrator.submit_files([paper])
    assert orchestrator.to_dict()["persona_label"] is None

    await orchestrator.complete_quiz([q["answer"] for q in QUIZ])

    snapshot = orchestrator.to_dict()
    assert snapshot["persona"] == "EXPERT"
    assert snapshot["persona_label"] == "Domain Expert"
