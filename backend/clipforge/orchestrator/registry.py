"""Registry of running project pipelines.

One registry is created per service (FastAPI lifespan or CLI invocation)
and owns the asyncio task and cancel flag of every active run. Entries are
evicted as soon as a run reaches a terminal state.

Usage:
    registry = PipelineRegistry(store, publisher, provider)
    snapshot = await registry.start_generation(project_id)   # now generating
    await registry.cancel(project_id)
    await registry.shutdown()
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from clipforge.errors import InvalidStateError
from clipforge.orchestrator.pipeline import PipelineController
from clipforge.schemas.project import ProjectSnapshot
from clipforge.services.generation import GenerationProvider
from clipforge.services.progress import ProgressPublisher
from clipforge.services.project_store import ProjectStore

logger = logging.getLogger(__name__)


@dataclass
class _ActiveRun:
    task: asyncio.Task
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)


class PipelineRegistry:
    """Start, track and cancel pipeline runs, one per project."""

    def __init__(
        self,
        store: ProjectStore,
        publisher: ProgressPublisher,
        provider: GenerationProvider,
        controller: Optional[PipelineController] = None,
    ):
        self.store = store
        self.publisher = publisher
        self.controller = controller or PipelineController(store, publisher, provider)
        self._active: dict[uuid.UUID, _ActiveRun] = {}

    async def start_generation(self, project_id: uuid.UUID) -> ProjectSnapshot:
        """Move a draft project to generating and run its pipeline in the background.

        The status change is persisted before this returns, so callers can
        subscribe to progress immediately afterwards.

        Raises:
            ProjectNotFoundError: If the project does not exist
            InvalidStateError: If the project is not a draft or already running
            NoEligibleClipsError: If no clip has a prompt
        """
        if project_id in self._active:
            raise InvalidStateError(f"Project {project_id} is already running")

        snapshot = await self.store.begin_generation(project_id)

        cancel_event = asyncio.Event()
        task = asyncio.create_task(
            self.controller.run(project_id, cancel_event),
            name=f"pipeline-{project_id}",
        )
        self._active[project_id] = _ActiveRun(task=task, cancel_event=cancel_event)
        task.add_done_callback(lambda t: self._evict(project_id, t))

        logger.info(f"Generation started for project {project_id}")
        return snapshot

    def _evict(self, project_id: uuid.UUID, task: asyncio.Task) -> None:
        self._active.pop(project_id, None)
        self.publisher.forget(project_id)
        if task.cancelled():
            logger.info(f"Pipeline task for project {project_id} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Pipeline task for project {project_id} failed: {type(exc).__name__}: {exc}"
            )

    def is_running(self, project_id: uuid.UUID) -> bool:
        return project_id in self._active

    def task_for(self, project_id: uuid.UUID) -> Optional[asyncio.Task]:
        active = self._active.get(project_id)
        return active.task if active else None

    async def cancel(self, project_id: uuid.UUID) -> None:
        """Request cooperative cancellation of a running project.

        Raises:
            ProjectNotFoundError: If the project does not exist
            InvalidStateError: If the project has no active run
        """
        active = self._active.get(project_id)
        if active is None:
            snapshot = await self.store.get_snapshot(project_id)
            raise InvalidStateError(
                f"Project {project_id} is not running (status {snapshot.status.value})",
                status=snapshot.status.value,
            )
        active.cancel_event.set()
        logger.info(f"Cancellation requested for project {project_id}")

    async def wait(self, project_id: uuid.UUID) -> None:
        """Wait for the active run of a project, if any, to finish."""
        active = self._active.get(project_id)
        if active is not None:
            await asyncio.gather(active.task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel and await every active run."""
        if not self._active:
            return
        logger.info(f"Shutting down {len(self._active)} active pipeline(s)")
        tasks = [active.task for active in self._active.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
