# File: api/routers/concept_map.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies.session import get_session_entry
from api.models.analysis_models import DragRequest, ReleaseRequest
from services.concept_map_layout import ForceLayout, LayoutConfig
from services.session_registry import SessionEntry
from state.state_schema import SliceStatus

logger = logging.getLogger(__name__)
router = APIRouter()


def _layout_for(entry: SessionEntry, width: float, height: float) -> ForceLayout:
    orchestrator = entry.orchestrator
    concept_map = orchestrator.result.get("conceptMap")
    layout = entry.current_layout()
    if concept_map is None:
        status = orchestrator.slice_status.get("concept_map")
        if status == SliceStatus.FAILED:
            raise HTTPException(status_code=404, detail="Concept map could not be generated")
        raise HTTPException(status_code=404, detail="Concept map not available yet")

    # A new conceptMap or viewport size replaces the simulated graph
    if layout is None or (layout.config.width, layout.config.height) != (width, height):
        entry.discard_layout()
        layout = ForceLayout(LayoutConfig(width=width, height=height))
        count = layout.load_graph(concept_map)
        logger.info(f"Layout created for session {orchestrator.session_id} with {count} nodes")
        entry.layout = layout
        entry.layout_source = concept_map
    return layout


def _started_layout(entry: SessionEntry) -> ForceLayout:
    layout = entry.current_layout()
    if layout is None:
        raise HTTPException(status_code=404, detail="Layout not started")
    return layout


@router.get("/{session_id}/layout")
def get_layout(
    ticks: int = Query(300, ge=0, le=5000),
    width: float = Query(800, gt=100),
    height: float = Query(600, gt=60),
    entry: SessionEntry = Depends(get_session_entry),
):
    """Advance the simulation by `ticks` steps and return node positions."""
    layout = _layout_for(entry, width, height)
    layout.run(ticks)
    return layout.snapshot()


@router.post("/{session_id}/drag")
def drag_node(payload: DragRequest, entry: SessionEntry = Depends(get_session_entry)):
    layout = _started_layout(entry)
    try:
        layout.drag(payload.node_id, payload.x, payload.y)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown node: {payload.node_id}")
    layout.tick()
    return layout.snapshot()


@router.post("/{session_id}/release")
def release_node(payload: ReleaseRequest, entry: SessionEntry = Depends(get_session_entry)):
    layout = _started_layout(entry)
    try:
        layout.release(payload.node_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown node: {payload.node_id}")
    return layout.snapshot()
