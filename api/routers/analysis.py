# File: api/routers/analysis.py
import asyncio
import logging
import os
from functools import partial
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse

from api.dependencies.session import get_history, get_orchestrator, get_user_id
from api.models.analysis_models import (
    QuizAnswersRequest,
    RegenerateSummaryRequest,
    ValidationOverrideRequest,
)
from services.analysis_orchestrator import AnalysisOrchestrator, InvalidDocumentError, InvalidPhaseError
from services.export_service import ExportService
from services.file_parser import FileParseError, parse_file
from services.generation.base import GenerationError
from services.history_service import HistoryService
from services.llm_service import BAD_INPUT
from services.persona_service import Persona, SummaryLength, TechnicalDepth, parse_enum
from services.session_registry import SessionRegistry
from state.state_schema import DocumentContext

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "10"))
MAX_FILES = 10


def to_http_error(e: Exception) -> HTTPException:
    """Translate domain errors raised by the orchestrator into HTTP errors."""
    if isinstance(e, InvalidPhaseError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidDocumentError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, GenerationError):
        if e.category == BAD_INPUT:
            return HTTPException(status_code=400, detail=e.message)
        return HTTPException(status_code=502, detail=e.message)
    logger.error(f"Unexpected error: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="An internal error occurred")


async def _read_upload(file: UploadFile) -> bytes:
    max_size = MAX_UPLOAD_MB * 1024 * 1024
    chunk_size = 8192
    content = bytearray()
    total_size = 0

    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_size:
            raise HTTPException(status_code=413, detail=f"{file.filename} is too large (limit {MAX_UPLOAD_MB}MB)")
        content.extend(chunk)

    if not content:
        raise HTTPException(status_code=400, detail=f"{file.filename} is empty")
    return bytes(content)


@router.post("/sessions")
async def create_session(
    files: List[UploadFile] = File(...),
    user_id: str = Depends(get_user_id),
    history: HistoryService = Depends(get_history),
):
    """
    Upload one document for a full analysis, or several for a
    cross-document synthesis. Returns the session snapshot.
    """
    if not files:
        raise HTTPException(status_code=400, detail="At least one file is required")
    if len(files) > MAX_FILES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_FILES} files can be analyzed together")

    documents = []
    for file in files:
        data = await _read_upload(file)
        try:
            parsed = await asyncio.to_thread(parse_file, file.filename, data)
        except FileParseError as e:
            raise HTTPException(status_code=400, detail=str(e))
        documents.append(DocumentContext(text=parsed.text, images=tuple(parsed.images), name=parsed.name))

    orchestrator = SessionRegistry.create(
        user_id,
        factory=partial(AnalysisOrchestrator, history_service=history),
    )
    try:
        await orchestrator.submit_files(documents)
    except Exception as e:
        SessionRegistry.remove(orchestrator.session_id, user_id)
        raise to_http_error(e)

    return orchestrator.to_dict()


@router.get("/sessions/{session_id}")
async def get_session(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    return orchestrator.to_dict()


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, user_id: str = Depends(get_user_id)):
    if not SessionRegistry.remove(session_id, user_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted"}


@router.post("/sessions/{session_id}/validation")
async def resolve_validation(
    payload: ValidationOverrideRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    try:
        await orchestrator.resolve_validation(payload.proceed)
    except InvalidPhaseError as e:
        raise to_http_error(e)
    return orchestrator.to_dict()


@router.post("/sessions/{session_id}/quiz")
async def submit_quiz(
    payload: QuizAnswersRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    try:
        await orchestrator.complete_quiz(payload.answers)
    except InvalidPhaseError as e:
        raise to_http_error(e)
    return orchestrator.to_dict()


@router.post("/sessions/{session_id}/quiz/skip")
async def skip_quiz(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    try:
        await orchestrator.skip_quiz()
    except InvalidPhaseError as e:
        raise to_http_error(e)
    return orchestrator.to_dict()


@router.post("/sessions/{session_id}/reset")
async def reset_session(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    orchestrator.reset()
    return orchestrator.to_dict()


@router.post("/sessions/{session_id}/summary")
async def regenerate_summary(
    payload: RegenerateSummaryRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    try:
        persona = parse_enum(Persona, payload.persona, Persona.ENGINEER)
        length = parse_enum(SummaryLength, payload.length, SummaryLength.DETAILED)
        depth = parse_enum(TechnicalDepth, payload.depth, TechnicalDepth.MEDIUM)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        summary = await orchestrator.regenerate_summary(persona, length, depth)
    except (InvalidPhaseError, GenerationError) as e:
        raise to_http_error(e)
    return {"overallSummary": summary}


@router.post("/sessions/{session_id}/presentation")
async def generate_presentation(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    try:
        slides = await orchestrator.generate_presentation()
    except (InvalidPhaseError, GenerationError) as e:
        raise to_http_error(e)
    return {"slides": slides}


@router.post("/sessions/{session_id}/figures/{index}/explain")
async def explain_figure(index: int, orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    try:
        explanation = await orchestrator.explain_figure(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidPhaseError, GenerationError) as e:
        raise to_http_error(e)
    return {"index": index, "explanation": explanation}


@router.get("/sessions/{session_id}/export", response_class=PlainTextResponse)
async def export_markdown(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    document = orchestrator.document
    if document is None:
        raise HTTPException(status_code=409, detail="Only single-document analyses can be exported")
    try:
        markdown = ExportService.export_markdown(orchestrator.result)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    filename = ExportService.export_filename(document.name)
    return PlainTextResponse(
        markdown,
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
