# File: api/routers/history.py
import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies.session import get_history, get_user_id
from services.history_service import HistoryService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
def list_history(user_id: str = Depends(get_user_id), history: HistoryService = Depends(get_history)):
    try:
        return {"entries": history.get_history(user_id)}
    except Exception:
        logger.error("Failed to load history", exc_info=True)
        raise HTTPException(status_code=500, detail="Could not load history")


@router.get("/{entry_id}")
def get_history_entry(
    entry_id: str,
    user_id: str = Depends(get_user_id),
    history: HistoryService = Depends(get_history),
):
    entry = history.get_entry(entry_id, user_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    return entry
