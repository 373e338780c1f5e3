from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.db import init_db
from services.history_service import HistoryService
from state.state_schema import DocumentContext

from tests.sample_data import ADVANCED, CONCEPT_MAP, CORE, PAPER_TEXT, QUIZ, REFERENCES, RELATED, SYNTHESIS


@pytest.fixture
def paper():
    return DocumentContext(text=PAPER_TEXT, images=("data:image/jpeg;base64,AAAA",), name="attention.txt")


@pytest.fixture
def pipeline():
    """Every content generator replaced by an AsyncMock with a happy-path result."""
    mocks = SimpleNamespace(
        validate_document=AsyncMock(return_value={"isPaper": True, "reason": "Has abstract and methods."}),
        generate_quiz=AsyncMock(return_value=[dict(q) for q in QUIZ]),
        generate_core_analysis=AsyncMock(return_value=dict(CORE)),
        generate_advanced_analysis=AsyncMock(return_value=dict(ADVANCED)),
        generate_references=AsyncMock(return_value=dict(REFERENCES)),
        generate_concept_map=AsyncMock(return_value=dict(CONCEPT_MAP)),
        regenerate_summary=AsyncMock(return_value="A shorter summary."),
        generate_synthesis=AsyncMock(return_value=dict(SYNTHESIS)),
        generate_presentation=AsyncMock(return_value=[{"title": "Intro", "content": ["Transformers"]}]),
        explain_figure=AsyncMock(return_value="The figure shows the encoder stack."),
        find_related_papers=AsyncMock(return_value=list(RELATED)),
    )
    with patch.multiple(
        "services.generation.document_generators",
        validate_document=mocks.validate_document,
        generate_quiz=mocks.generate_quiz,
    ), patch.multiple(
        "services.generation.analysis_generators",
        generate_core_analysis=mocks.generate_core_analysis,
        generate_advanced_analysis=mocks.generate_advanced_analysis,
        generate_references=mocks.generate_references,
        generate_concept_map=mocks.generate_concept_map,
        regenerate_summary=mocks.regenerate_summary,
    ), patch.multiple(
        "services.generation.auxiliary_generators",
        generate_synthesis=mocks.generate_synthesis,
        generate_presentation=mocks.generate_presentation,
        explain_figure=mocks.explain_figure,
    ), patch(
        "services.generation.related_papers.find_related_papers",
        mocks.find_related_papers,
    ):
        yield mocks


@pytest.fixture
def history_service():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    return HistoryService(session_factory=sessionmaker(autocommit=False, autoflush=False, bind=engine))
