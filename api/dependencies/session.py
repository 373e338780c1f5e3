from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from services.analysis_orchestrator import AnalysisOrchestrator
from services.history_service import HistoryService, get_history_service
from services.session_registry import SessionEntry, SessionRegistry


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Temporary user-id resolver.
    """
    return x_user_id or "demo-user"


def get_history() -> HistoryService:
    return get_history_service()


def get_session_entry(session_id: str, user_id: str = Depends(get_user_id)) -> SessionEntry:
    entry = SessionRegistry.get_entry(session_id, user_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return entry


def get_orchestrator(entry: SessionEntry = Depends(get_session_entry)) -> AnalysisOrchestrator:
    return entry.orchestrator
