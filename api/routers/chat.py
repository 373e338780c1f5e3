# File: api/routers/chat.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from api.dependencies.session import get_orchestrator
from api.models.analysis_models import ChatRequest
from api.routers.analysis import to_http_error
from services.analysis_orchestrator import AnalysisOrchestrator, InvalidPhaseError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{session_id}")
async def send_message(payload: ChatRequest, orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    """Streams the assistant's reply as plain text."""
    if not payload.message or not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message cannot be empty")

    try:
        chat = orchestrator.get_chat_session()
    except InvalidPhaseError as e:
        raise to_http_error(e)

    image = None
    if payload.image_index is not None:
        images = chat.document.images
        if not 0 <= payload.image_index < len(images):
            raise HTTPException(status_code=404, detail=f"No figure at index {payload.image_index}")
        image = images[payload.image_index]

    async def stream():
        async for delta in chat.send_message(payload.message, image=image):
            yield delta

    return StreamingResponse(stream(), media_type="text/plain; charset=utf-8")


@router.get("/{session_id}/messages")
async def get_messages(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    if orchestrator.chat is None:
        return {"messages": []}
    return {
        "messages": [
            {"role": m["role"], "text": m["text"], "has_image": bool(m.get("image"))}
            for m in orchestrator.chat.messages
        ]
    }
