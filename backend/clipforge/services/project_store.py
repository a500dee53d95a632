"""Project store: the single source of truth for project and clip state.

Every operation runs in its own session and returns a frozen
ProjectSnapshot. Operations on the same project are serialized with a
per-project asyncio.Lock so a worker's status write and a concurrent
progress read never interleave; different projects never contend.

Usage:
    store = ProjectStore()
    snapshot = await store.create_project(CreateProjectRequest(clips=[...]))
    snapshot = await store.update_clip(snapshot.id, 0, status=ClipStatus.DONE)
"""

import asyncio
import logging
import uuid
import weakref
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from clipforge.db import async_session
from clipforge.db.models import Clip, PipelineRun, Project
from clipforge.errors import InvalidStateError, NoEligibleClipsError, ProjectNotFoundError
from clipforge.orchestrator.state import can_delete, can_start, can_transition, can_transition_clip
from clipforge.pipeline.script_templates import apply_script, generate_script
from clipforge.schemas.project import (
    ClipInput,
    ClipSnapshot,
    ClipStatus,
    CreateProjectRequest,
    ProjectSettings,
    ProjectSnapshot,
    ProjectStatus,
    ProjectSummary,
    TERMINAL_CLIP_STATUSES,
)

logger = logging.getLogger(__name__)

# Clip columns the pipeline may write
_CLIP_FIELDS = {
    "status",
    "retry_count",
    "error",
    "failure_reason",
    "image_ref",
    "video_ref",
}


def _to_snapshot(project: Project) -> ProjectSnapshot:
    return ProjectSnapshot(
        id=project.id,
        name=project.name,
        status=ProjectStatus(project.status),
        style=project.style,
        settings=ProjectSettings.model_validate(project.settings or {}),
        clips=tuple(
            ClipSnapshot(
                index=clip.clip_index,
                image_prompt=clip.image_prompt or "",
                video_prompt=clip.video_prompt or "",
                voice_line=clip.voice_line,
                status=ClipStatus(clip.status),
                retry_count=clip.retry_count,
                error=clip.error,
                failure_reason=clip.failure_reason,
                image_ref=clip.image_ref,
                video_ref=clip.video_ref,
            )
            for clip in sorted(project.clips, key=lambda c: c.clip_index)
        ),
        created_at=project.created_at,
        final_video_ref=project.final_video_ref,
        error_message=project.error_message,
    )


class ProjectStore:
    """Persist projects, clips and pipeline runs."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory or async_session
        # A lock lives only while some operation holds or awaits it
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock(self, project_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        return lock

    async def _load(self, session: AsyncSession, project_id: uuid.UUID) -> Project:
        result = await session.execute(
            select(Project)
            .options(selectinload(Project.clips))
            .where(Project.id == project_id)
            .execution_options(populate_existing=True)
        )
        project = result.scalar_one_or_none()
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def _commit_and_snapshot(self, session: AsyncSession, project_id: uuid.UUID) -> ProjectSnapshot:
        await session.commit()
        return _to_snapshot(await self._load(session, project_id))

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------
    async def create_project(self, request: CreateProjectRequest) -> ProjectSnapshot:
        """Create a draft project.

        Script clips (if a script request is given) come first, followed by
        the explicit clips. Indices are assigned 0..n-1 in that order.

        Raises:
            UnrecognizedStyleError: If the script style is unsupported
        """
        clip_inputs: list[ClipInput] = []
        style = None
        if request.script is not None:
            prompt_clips = generate_script(
                request.script.style,
                request.script.product,
                request.script.avatar_description,
            )
            clip_inputs.extend(apply_script(prompt_clips))
            style = request.script.style
        clip_inputs.extend(request.clips)

        name = request.name or f"Project {datetime.now().strftime('%Y-%m-%d %H:%M')}"
        project = Project(
            id=uuid.uuid4(),
            name=name,
            status=ProjectStatus.DRAFT.value,
            style=style,
            settings=request.settings.model_dump(),
            clips=[
                Clip(
                    clip_index=i,
                    image_prompt=c.image_prompt,
                    video_prompt=c.video_prompt,
                    voice_line=c.voice_line,
                    status=ClipStatus.PENDING.value,
                    retry_count=0,
                )
                for i, c in enumerate(clip_inputs)
            ],
        )

        async with self._session_factory() as session:
            session.add(project)
            snapshot = await self._commit_and_snapshot(session, project.id)

        logger.info(f"Project created: {snapshot.id} with {snapshot.clip_count} clips")
        return snapshot

    async def get_snapshot(self, project_id: uuid.UUID) -> ProjectSnapshot:
        """Return the current state of a project.

        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        async with self._lock(project_id):
            async with self._session_factory() as session:
                return _to_snapshot(await self._load(session, project_id))

    async def list_projects(self) -> list[ProjectSummary]:
        """List all projects, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Project)
                .options(selectinload(Project.clips))
                .order_by(Project.created_at.desc())
            )
            projects = result.scalars().all()

        return [
            ProjectSummary(
                id=p.id,
                name=p.name,
                status=ProjectStatus(p.status),
                created_at=p.created_at,
                clip_count=len(p.clips),
                completed_clips=sum(1 for c in p.clips if c.status == ClipStatus.DONE.value),
            )
            for p in projects
        ]

    # ------------------------------------------------------------------
    # Project-level writes
    # ------------------------------------------------------------------
    async def rename_project(self, project_id: uuid.UUID, name: str) -> ProjectSnapshot:
        """Rename a project; only allowed while it is still a draft."""
        async with self._lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                if project.status != ProjectStatus.DRAFT.value:
                    raise InvalidStateError(
                        f"Project {project_id} can only be renamed while draft",
                        status=project.status,
                    )
                project.name = name
                return await self._commit_and_snapshot(session, project_id)

    async def begin_generation(self, project_id: uuid.UUID) -> ProjectSnapshot:
        """Atomically move a draft project to generating.

        Raises:
            ProjectNotFoundError: If the project does not exist
            InvalidStateError: If the project is not a draft
            NoEligibleClipsError: If no clip has an image or video prompt
        """
        async with self._lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                if not can_start(project.status):
                    raise InvalidStateError(
                        f"Project {project_id} is {project.status}; only draft projects can start generation",
                        status=project.status,
                    )
                eligible = [
                    c for c in project.clips
                    if (c.image_prompt or "").strip() or (c.video_prompt or "").strip()
                ]
                if not eligible:
                    raise NoEligibleClipsError(project_id)

                project.status = ProjectStatus.GENERATING.value
                project.error_message = None
                return await self._commit_and_snapshot(session, project_id)

    async def set_project_status(
        self,
        project_id: uuid.UUID,
        status: ProjectStatus,
        *,
        error_message: Optional[str] = None,
        final_video_ref: Optional[str] = None,
    ) -> ProjectSnapshot:
        """Write a project status (and optional error or output reference).

        Raises:
            InvalidStateError: If the lifecycle does not allow the transition
        """
        async with self._lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                if project.status != status.value and not can_transition(project.status, status):
                    raise InvalidStateError(
                        f"Project {project_id} cannot move from {project.status} to {status.value}",
                        status=project.status,
                    )
                project.status = status.value
                if error_message is not None:
                    project.error_message = error_message
                if final_video_ref is not None:
                    project.final_video_ref = final_video_ref
                return await self._commit_and_snapshot(session, project_id)

    async def delete_project(self, project_id: uuid.UUID) -> None:
        """Delete a project and its clips.

        Raises:
            ProjectNotFoundError: If the project does not exist
            InvalidStateError: If the project is generating or compiling
        """
        async with self._lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                if not can_delete(project.status):
                    raise InvalidStateError(
                        f"Project {project_id} is {project.status} and cannot be deleted",
                        status=project.status,
                    )
                await session.delete(project)
                await session.commit()
        logger.info(f"Project deleted: {project_id}")

    # ------------------------------------------------------------------
    # Clip-level writes
    # ------------------------------------------------------------------
    async def update_clip(self, project_id: uuid.UUID, index: int, **fields: Any) -> ProjectSnapshot:
        """Update pipeline-owned fields of one clip.

        Raises:
            ValueError: On unknown fields or a decreasing retry_count
            IndexError: If no clip has this index
            InvalidStateError: If the clip lifecycle does not allow the status change
        """
        unknown = set(fields) - _CLIP_FIELDS
        if unknown:
            raise ValueError(f"Cannot update clip fields: {sorted(unknown)}")

        async with self._lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                clip = next((c for c in project.clips if c.clip_index == index), None)
                if clip is None:
                    raise IndexError(f"Project {project_id} has no clip {index}")

                retry_count = fields.get("retry_count")
                if retry_count is not None and retry_count < clip.retry_count:
                    raise ValueError(
                        f"retry_count cannot decrease ({clip.retry_count} -> {retry_count})"
                    )

                status = fields.get("status")
                if (
                    status is not None
                    and ClipStatus(status).value != clip.status
                    and not can_transition_clip(clip.status, status)
                ):
                    raise InvalidStateError(
                        f"Clip {index} of project {project_id} cannot move from "
                        f"{clip.status} to {ClipStatus(status).value}",
                        status=clip.status,
                    )

                for key, value in fields.items():
                    if isinstance(value, ClipStatus):
                        value = value.value
                    setattr(clip, key, value)
                return await self._commit_and_snapshot(session, project_id)

    async def cancel_open_clips(self, project_id: uuid.UUID) -> ProjectSnapshot:
        """Mark every non-terminal clip cancelled; done/failed clips are untouched."""
        terminal = {s.value for s in TERMINAL_CLIP_STATUSES}
        async with self._lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                for clip in project.clips:
                    if clip.status not in terminal:
                        clip.status = ClipStatus.CANCELLED.value
                        clip.error = "Cancelled by user"
                return await self._commit_and_snapshot(session, project_id)

    # ------------------------------------------------------------------
    # Pipeline runs
    # ------------------------------------------------------------------
    async def start_run(self, project_id: uuid.UUID) -> uuid.UUID:
        async with self._session_factory() as session:
            run = PipelineRun(project_id=project_id)
            session.add(run)
            await session.commit()
            return run.id

    async def record_run(
        self,
        run_id: uuid.UUID,
        final_status: ProjectStatus,
        duration_seconds: float,
        log: dict,
    ) -> None:
        async with self._session_factory() as session:
            run = await session.get(PipelineRun, run_id)
            if run is None:
                logger.warning(f"Pipeline run {run_id} vanished before completion")
                return
            run.completed_at = datetime.now(timezone.utc)
            run.total_duration_seconds = duration_seconds
            run.final_status = final_status.value
            run.log = log
            await session.commit()

    async def latest_run(self, project_id: uuid.UUID) -> Optional[PipelineRun]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PipelineRun)
                .where(PipelineRun.project_id == project_id)
                .order_by(PipelineRun.started_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()
