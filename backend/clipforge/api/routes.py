"""API route handlers and Pydantic response schemas."""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import FileResponse, StreamingResponse
from pydantic import BaseModel, Field

from clipforge.config import settings
from clipforge.orchestrator.registry import PipelineRegistry
from clipforge.orchestrator.state import is_terminal
from clipforge.pipeline.script_templates import extract_pain_point, generate_script, supported_styles
from clipforge.schemas.project import (
    CreateProjectRequest,
    PipelineEvent,
    ProjectSnapshot,
    ProjectStatus,
    ProjectSummary,
    ScriptRequest,
)
from clipforge.schemas.script import PromptClip
from clipforge.services.progress import ProgressPublisher
from clipforge.services.project_store import ProjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Request/Response Schemas
# ============================================================================

class RenameRequest(BaseModel):
    """Request schema for PATCH /api/projects/{id}."""
    name: str = Field(min_length=1, max_length=200)


class GenerateResponse(BaseModel):
    """Response schema for POST /api/projects/{id}/generate."""
    project_id: str
    status: ProjectStatus
    clip_count: int
    events_url: str


class CancelResponse(BaseModel):
    """Response schema for POST /api/projects/{id}/cancel."""
    project_id: str
    message: str = "Cancellation requested"


class ScriptResponse(BaseModel):
    """Response schema for POST /api/scripts/prehook."""
    style: str
    pain_point: str
    clips: list[PromptClip]


# ============================================================================
# Dependencies
# ============================================================================

def get_store(request: Request) -> ProjectStore:
    return request.app.state.store


def get_registry(request: Request) -> PipelineRegistry:
    return request.app.state.registry


def get_publisher(request: Request) -> ProgressPublisher:
    return request.app.state.publisher


# ============================================================================
# Project Endpoints
# ============================================================================

@router.post("/projects", status_code=201, response_model=ProjectSnapshot)
async def create_project(request: CreateProjectRequest, store: ProjectStore = Depends(get_store)):
    """Create a draft project from explicit clips, a script request, or both."""
    return await store.create_project(request)


@router.get("/projects", response_model=list[ProjectSummary])
async def list_projects(store: ProjectStore = Depends(get_store)):
    """List all projects ordered by creation date (newest first)."""
    return await store.list_projects()


@router.get("/projects/{project_id}", response_model=ProjectSnapshot)
async def get_project(project_id: uuid.UUID, store: ProjectStore = Depends(get_store)):
    return await store.get_snapshot(project_id)


@router.patch("/projects/{project_id}", response_model=ProjectSnapshot)
async def rename_project(
    project_id: uuid.UUID,
    request: RenameRequest,
    store: ProjectStore = Depends(get_store),
):
    """Rename a draft project. Returns 409 once generation has started."""
    return await store.rename_project(project_id, request.name)


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(project_id: uuid.UUID, store: ProjectStore = Depends(get_store)):
    """Delete a project. Returns 409 while it is generating or compiling."""
    await store.delete_project(project_id)
    return Response(status_code=204)


@router.post("/projects/{project_id}/generate", status_code=202, response_model=GenerateResponse)
async def start_generation(project_id: uuid.UUID, registry: PipelineRegistry = Depends(get_registry)):
    """Start the generation pipeline in the background.

    The project is already generating when this returns; follow progress at
    events_url. Returns 400 if no clip has a prompt and 409 if the project
    is not a draft.
    """
    snapshot = await registry.start_generation(project_id)
    return GenerateResponse(
        project_id=str(project_id),
        status=snapshot.status,
        clip_count=snapshot.clip_count,
        events_url=f"/api/projects/{project_id}/events",
    )


@router.post("/projects/{project_id}/cancel", status_code=202, response_model=CancelResponse)
async def cancel_generation(project_id: uuid.UUID, registry: PipelineRegistry = Depends(get_registry)):
    """Request cancellation. The pipeline stops before the next clip or stage."""
    await registry.cancel(project_id)
    return CancelResponse(project_id=str(project_id))


@router.get("/projects/{project_id}/download")
async def download_video(project_id: uuid.UUID, store: ProjectStore = Depends(get_store)):
    """Download the compiled MP4.

    Returns 409 if the project is not completed.
    Returns 404 if the output file does not exist.
    """
    snapshot = await store.get_snapshot(project_id)
    if snapshot.status != ProjectStatus.COMPLETED:
        raise HTTPException(
            status_code=409,
            detail=f"Project not ready for download (status: {snapshot.status.value})",
        )
    if not snapshot.final_video_ref or not Path(snapshot.final_video_ref).exists():
        raise HTTPException(status_code=404, detail="Output file not found on disk")

    return FileResponse(
        path=snapshot.final_video_ref,
        media_type="video/mp4",
        filename=f"video_{project_id}.mp4",
    )


# ============================================================================
# Progress (Server-Sent Events)
# ============================================================================

def _sse(event: PipelineEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"


async def _event_stream(
    request: Request,
    project_id: uuid.UUID,
    store: ProjectStore,
    publisher: ProgressPublisher,
    registry: PipelineRegistry,
    keepalive: float,
) -> AsyncIterator[str]:
    initial = await store.get_snapshot(project_id)
    async with publisher.subscribe(project_id, initial) as subscription:
        if not registry.is_running(project_id):
            # Nothing will be published; send the stored state and finish
            current = await store.get_snapshot(project_id)
            yield _sse(PipelineEvent(type="initial_state", project_id=project_id, snapshot=current))
            if not is_terminal(current.status):
                yield _sse(PipelineEvent(type="no_pipeline", project_id=project_id, snapshot=current))
            return

        events = subscription.__aiter__()
        while True:
            try:
                event = await asyncio.wait_for(events.__anext__(), timeout=keepalive)
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    logger.debug(f"SSE client for project {project_id} disconnected")
                    return
                yield ": keepalive\n\n"
                continue
            yield _sse(event)


@router.get("/projects/{project_id}/events")
async def stream_events(
    project_id: uuid.UUID,
    request: Request,
    keepalive: Optional[float] = None,
    store: ProjectStore = Depends(get_store),
    publisher: ProgressPublisher = Depends(get_publisher),
    registry: PipelineRegistry = Depends(get_registry),
):
    """Stream project snapshots as Server-Sent Events until a terminal state.

    The first event is the current state. Each later event carries the full
    project snapshot after one transition.
    """
    # Resolve 404 before the stream starts
    await store.get_snapshot(project_id)
    return StreamingResponse(
        _event_stream(
            request,
            project_id,
            store,
            publisher,
            registry,
            keepalive or settings.server.sse_keepalive_seconds,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ============================================================================
# Script Endpoints
# ============================================================================

@router.get("/scripts/styles", response_model=list[str])
async def list_styles():
    return supported_styles()


@router.post("/scripts/prehook", response_model=ScriptResponse)
async def generate_prehook(request: ScriptRequest):
    """Expand a prehook style into two clip prompts. Returns 400 for unknown styles."""
    clips = generate_script(request.style, request.product, request.avatar_description)
    return ScriptResponse(
        style=request.style,
        pain_point=extract_pain_point(request.product.target_audience),
        clips=clips,
    )
