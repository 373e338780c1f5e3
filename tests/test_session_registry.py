from services.analysis_orchestrator import AnalysisOrchestrator
from services.concept_map_layout import ForceLayout
from services.session_registry import SessionEntry, SessionRegistry
from tests.sample_data import CONCEPT_MAP


def _entry_with_layout():
    orchestrator = AnalysisOrchestrator()
    concept_map = dict(CONCEPT_MAP)
    orchestrator.result["conceptMap"] = concept_map
    entry = SessionEntry(orchestrator)
    entry.layout = ForceLayout()
    entry.layout.load_graph(concept_map)
    entry.layout_source = concept_map
    return entry


def test_layout_survives_while_its_concept_map_is_current():
    entry = _entry_with_layout()
    layout = entry.layout

    assert entry.current_layout() is layout


def test_layout_is_discarded_when_concept_map_is_cleared():
    entry = _entry_with_layout()

    entry.orchestrator.reset()

    assert entry.current_layout() is None
    assert entry.layout_source is None


def test_layout_is_discarded_when_concept_map_is_replaced():
    entry = _entry_with_layout()

    # An equal but distinct map still counts as a new graph
    entry.orchestrator.result["conceptMap"] = dict(CONCEPT_MAP)

    assert entry.current_layout() is None


def test_registry_is_scoped_to_owner():
    SessionRegistry.clear()
    try:
        orchestrator = SessionRegistry.create("alice")
        assert SessionRegistry.get(orchestrator.session_id, "alice") is orchestrator
        assert SessionRegistry.get(orchestrator.session_id, "bob") is None
        assert SessionRegistry.remove(orchestrator.session_id, "alice") is True
        assert SessionRegistry.count() == 0
    finally:
        SessionRegistry.clear()
