# File: api/routers/health.py
from fastapi import APIRouter

from services.llm_service import LLM_PROVIDER
from services.session_registry import SessionRegistry


router = APIRouter()


@router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "llm_provider": LLM_PROVIDER,
        "active_sessions": SessionRegistry.count(),
    }
