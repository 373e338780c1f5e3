import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from api.dependencies.session import get_history
from api.main import app, rate_limiter
from services.session_registry import SessionRegistry
from tests.sample_data import CORE, QUIZ

PAPER = ("files", ("attention.txt", b"Title: Attention Is All You Need\nAbstract: Transformers.", "text/plain"))


@pytest.fixture
def client(pipeline, history_service, monkeypatch):
    monkeypatch.setattr(rate_limiter, "rate_limit", 10_000)
    rate_limiter.clients.clear()
    app.dependency_overrides[get_history] = lambda: history_service
    with patch("api.main.init_db"), TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    SessionRegistry.clear()


def _wait_for_enrichments(client, session_id, headers=None):
    for _ in range(50):
        snapshot = client.get(f"/analysis/sessions/{session_id}", headers=headers).json()
        statuses = snapshot["slice_status"]
        if statuses and "loading" not in statuses.values():
            return snapshot
        time.sleep(0.02)
    raise AssertionError(f"enrichments did not settle: {statuses}")


def _dashboard(client, headers=None):
    created = client.post("/analysis/sessions", files=[PAPER], headers=headers).json()
    session_id = created["session_id"]
    client.post(f"/analysis/sessions/{session_id}/quiz", json={"answers": [q["answer"] for q in QUIZ]}, headers=headers)
    return session_id, _wait_for_enrichments(client, session_id, headers)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_upload_runs_to_quiz(client):
    response = client.post("/analysis/sessions", files=[PAPER])

    assert response.status_code == 200
    body = response.json()
    assert body["phase"] == "AWAITING_QUIZ"
    assert len(body["quiz"]) == 5
    assert "answer" not in body["quiz"][0]
    assert body["documents"][0]["name"] == "attention.txt"


def test_full_flow_to_dashboard_and_history(client):
    session_id, snapshot = _dashboard(client)

    assert snapshot["phase"] == "DASHBOARD_PARTIAL"
    assert snapshot["persona"] == "EXPERT"
    assert snapshot["quiz_score"] == 5
    assert snapshot["result"]["title"] == CORE["title"]
    assert "critique" in snapshot["result"]

    for _ in range(50):
        entries = client.get("/history").json()["entries"]
        if entries:
            break
        time.sleep(0.02)
    assert [e["title"] for e in entries] == [CORE["title"]]
    assert client.get(f"/history/{entries[0]['id']}").json()["fileName"] == "attention.txt"


def test_two_files_return_synthesis(client):
    second = ("files", ("other.txt", b"A second paper about attention.", "text/plain"))

    body = client.post("/analysis/sessions", files=[PAPER, second]).json()

    assert body["phase"] == "SYNTHESIS_DASHBOARD"
    assert body["synthesis"]["overallSynthesis"]


def test_unsupported_file_is_rejected(client):
    response = client.post("/analysis/sessions", files=[("files", ("deck.pptx", b"data", "application/octet-stream"))])
    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["detail"]


def test_blank_document_is_rejected(client):
    response = client.post("/analysis/sessions", files=[("files", ("blank.txt", b"   \n  ", "text/plain"))])
    assert response.status_code == 400


def test_sessions_are_scoped_to_their_user(client):
    created = client.post("/analysis/sessions", files=[PAPER], headers={"X-User-Id": "alice"}).json()

    assert client.get(f"/analysis/sessions/{created['session_id']}", headers={"X-User-Id": "bob"}).status_code == 404
    assert client.get(f"/analysis/sessions/{created['session_id']}", headers={"X-User-Id": "alice"}).status_code == 200


def test_wrong_phase_is_conflict(client):
    created = client.post("/analysis/sessions", files=[PAPER]).json()

    response = client.post(f"/analysis/sessions/{created['session_id']}/validation", json={"proceed": True})

    assert response.status_code == 409


def test_reset_and_delete(client):
    created = client.post("/analysis/sessions", files=[PAPER]).json()
    session_id = created["session_id"]

    reset = client.post(f"/analysis/sessions/{session_id}/reset").json()
    assert reset["phase"] == "IDLE"
    assert reset["documents"] == []

    assert client.delete(f"/analysis/sessions/{session_id}").status_code == 200
    assert client.get(f"/analysis/sessions/{session_id}").status_code == 404


def test_one_shot_endpoints(client, pipeline):
    session_id, _ = _dashboard(client)

    summary = client.post(
        f"/analysis/sessions/{session_id}/summary",
        json={"persona": "STUDENT", "length": "BRIEF", "depth": "LOW"},
    )
    assert summary.json() == {"overallSummary": "A shorter summary."}

    slides = client.post(f"/analysis/sessions/{session_id}/presentation").json()["slides"]
    assert slides[0]["title"] == "Intro"

    # Text uploads carry no page images
    assert client.post(f"/analysis/sessions/{session_id}/figures/0/explain").status_code == 404

    bad = client.post(f"/analysis/sessions/{session_id}/summary", json={"persona": "ASTRONAUT"})
    assert bad.status_code == 400


def test_export_markdown(client):
    session_id, _ = _dashboard(client)

    response = client.get(f"/analysis/sessions/{session_id}/export")

    assert response.status_code == 200
    assert response.text.startswith(f"# Analysis of: {CORE['title']}")
    assert 'filename="attention-analysis.md"' in response.headers["content-disposition"]


def test_concept_map_layout_drag_and_release(client):
    session_id, _ = _dashboard(client)

    layout = client.get(f"/concept-map/{session_id}/layout", params={"ticks": 100}).json()
    assert {n["id"] for n in layout["nodes"]} == {"transformer", "attention"}
    assert layout["ticks"] == 100

    dragged = client.post(f"/concept-map/{session_id}/drag", json={"node_id": "attention", "x": 120, "y": 90}).json()
    node = next(n for n in dragged["nodes"] if n["id"] == "attention")
    assert node["pinned"] is True
    assert (node["x"], node["y"]) == (120, 90)

    released = client.post(f"/concept-map/{session_id}/release", json={"node_id": "attention"}).json()
    assert next(n for n in released["nodes"] if n["id"] == "attention")["pinned"] is False

    missing = client.post(f"/concept-map/{session_id}/drag", json={"node_id": "ghost", "x": 1, "y": 1})
    assert missing.status_code == 404


def test_concept_map_before_dashboard_is_not_found(client):
    created = client.post("/analysis/sessions", files=[PAPER]).json()
    assert client.get(f"/concept-map/{created['session_id']}/layout").status_code == 404


def test_chat_streams_reply(client):
    session_id, _ = _dashboard(client)

    async def stream_chat(messages):
        for chunk in ["Transformers ", "use attention."]:
            yield chunk

    fake = MagicMock()
    fake.stream_chat = stream_chat
    with patch("services.chat_service.get_request_client", return_value=fake), patch(
        "services.chat_service.generate_grounding_summary", AsyncMock(return_value="summary")
    ):
        response = client.post(f"/chat/{session_id}", json={"message": "What do they use?"})

    assert response.status_code == 200
    assert response.text == "Transformers use attention."
    messages = client.get(f"/chat/{session_id}/messages").json()["messages"]
    assert [m["role"] for m in messages] == ["user", "model"]


def test_chat_rejects_empty_message(client):
    session_id, _ = _dashboard(client)
    assert client.post(f"/chat/{session_id}", json={"message": "  "}).status_code == 400


def test_rate_limit_blocks_excess_requests(client, monkeypatch):
    monkeypatch.setattr(rate_limiter, "rate_limit", 2)
    rate_limiter.clients.clear()

    codes = [client.get("/analysis/sessions/unknown").status_code for _ in range(3)]

    assert codes == [404, 404, 429]
    assert client.get("/health").status_code == 200


def test_upload_failure_does_not_leave_a_session_behind(client):
    before = SessionRegistry.count()
    with patch(
        "services.analysis_orchestrator.AnalysisOrchestrator.submit_files",
        AsyncMock(side_effect=RuntimeError("boom")),
    ):
        response = client.post("/analysis/sessions", files=[PAPER])

    assert response.status_code == 500
    assert SessionRegistry.count() == before


def test_misconfigured_llm_upload_returns_idle_session(client, pipeline):
    pipeline.generate_core_analysis.side_effect = ValueError("Unknown LLM provider: gemini")
    pipeline.generate_quiz.return_value = []

    body = client.post("/analysis/sessions", files=[PAPER]).json()

    assert body["phase"] == "IDLE"
    assert body["is_loading"] is False
    assert body["notices"][-1]["level"] == "error"


def test_reset_discards_concept_map_layout(client):
    session_id, _ = _dashboard(client)
    client.get(f"/concept-map/{session_id}/layout", params={"ticks": 10})

    client.post(f"/analysis/sessions/{session_id}/reset")

    drag = client.post(f"/concept-map/{session_id}/drag", json={"node_id": "attention", "x": 1, "y": 1})
    assert drag.status_code == 404
    assert client.post(f"/concept-map/{session_id}/release", json={"node_id": "attention"}).status_code == 404
    assert SessionRegistry.get_entry(session_id, "demo-user").layout is None


def test_viewport_change_rebuilds_layout(client):
    session_id, _ = _dashboard(client)
    first = client.get(f"/concept-map/{session_id}/layout", params={"ticks": 50}).json()
    same = client.get(f"/concept-map/{session_id}/layout", params={"ticks": 50}).json()
    assert (first["ticks"], same["ticks"]) == (50, 100)

    resized = client.get(f"/concept-map/{session_id}/layout", params={"ticks": 5, "width": 400, "height": 300}).json()

    assert (resized["width"], resized["height"], resized["ticks"]) == (400, 300, 5)
    assert all(50 <= n["x"] <= 350 and 30 <= n["y"] <= 270 for n in resized["nodes"])
