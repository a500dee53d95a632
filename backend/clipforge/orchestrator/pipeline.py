"""Project pipeline controller with per-step timing and failure isolation.

Coordinates one generation run of a project:
- clips are generated sequentially in index order by the ClipWorker
- a failed clip is recorded on the clip and the next clip proceeds
- once every clip is terminal the project moves to compiling
- compilation runs only if at least one clip is done; the project then
  becomes completed, otherwise error
- a cooperative cancel flag is checked before each clip and between the
  two stages of a clip; the project then becomes cancelled
- every run is recorded as a PipelineRun with step timings
"""

import asyncio
import logging
import time
import uuid
from typing import Dict, Optional

from clipforge.errors import GenerationError
from clipforge.pipeline.clip_worker import ClipCancelled, ClipWorker
from clipforge.schemas.project import ClipStatus, ProjectSnapshot, ProjectStatus
from clipforge.services.generation import GenerationContext, GenerationProvider
from clipforge.services.progress import ProgressPublisher
from clipforge.services.project_store import ProjectStore

logger = logging.getLogger(__name__)


class PipelineCancelled(Exception):
    """Raised when the user requests cancellation of a running project."""


class PipelineController:
    """Run the generation pipeline for projects already moved to generating."""

    def __init__(
        self,
        store: ProjectStore,
        publisher: ProgressPublisher,
        provider: GenerationProvider,
        worker: Optional[ClipWorker] = None,
    ):
        self.store = store
        self.publisher = publisher
        self.provider = provider
        self.worker = worker or ClipWorker(store, publisher, provider)

    async def _set_status(self, project_id: uuid.UUID, status: ProjectStatus, **fields) -> ProjectSnapshot:
        snapshot = await self.store.set_project_status(project_id, status, **fields)
        self.publisher.publish("project_status", snapshot)
        logger.info(f"Project {project_id}: {status.value}")
        return snapshot

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled("Pipeline cancelled by user")

    async def _cancel(self, project_id: uuid.UUID) -> ProjectSnapshot:
        snapshot = await self.store.cancel_open_clips(project_id)
        self.publisher.publish("clips_cancelled", snapshot)
        return await self._set_status(project_id, ProjectStatus.CANCELLED)

    async def run(
        self,
        project_id: uuid.UUID,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProjectSnapshot:
        """Execute the pipeline for a project in generating status.

        Args:
            project_id: Project previously moved to generating by
                ProjectStore.begin_generation()
            cancel_event: Cooperative cancellation flag

        Returns:
            Terminal snapshot (completed, error or cancelled)

        Raises:
            Exception: Re-raises any unexpected failure after persisting
                the error state
        """
        snapshot = await self.store.get_snapshot(project_id)
        if snapshot.status != ProjectStatus.GENERATING:
            raise ValueError(f"Project {project_id} is {snapshot.status.value}, expected generating")

        logger.info(f"Starting pipeline for project {project_id} ({snapshot.clip_count} clips)")
        self.publisher.publish("project_status", snapshot)

        run_id = await self.store.start_run(project_id)
        step_log: Dict[str, float] = {}
        pipeline_start = time.monotonic()
        step = "clips"

        try:
            # Step 1: clips, sequentially in index order
            step_start = time.monotonic()
            for clip in snapshot.clips:
                self._check_cancelled(cancel_event)
                result = await self.worker.run(project_id, clip.index, cancel_event)
                logger.info(
                    f"Project {project_id}: clip {clip.index} finished {result.status.value}"
                )
            step_log["clips"] = time.monotonic() - step_start

            self._check_cancelled(cancel_event)

            # Step 2: compile
            step = "compile"
            snapshot = await self._set_status(project_id, ProjectStatus.COMPILING)
            done = [c for c in snapshot.clips if c.status == ClipStatus.DONE]
            if not done:
                snapshot = await self._set_status(
                    project_id,
                    ProjectStatus.ERROR,
                    error_message=f"All {snapshot.clip_count} clips failed; nothing to compile",
                )
            else:
                step_start = time.monotonic()
                try:
                    final_ref = await self.provider.compile_video(
                        [c.video_ref for c in done],
                        snapshot.settings,
                        context=GenerationContext(project_id=project_id, settings=snapshot.settings),
                    )
                except GenerationError as e:
                    logger.error(f"Project {project_id}: compilation failed: {e}")
                    snapshot = await self._set_status(
                        project_id, ProjectStatus.ERROR, error_message=f"Compilation failed: {e}"
                    )
                else:
                    snapshot = await self._set_status(
                        project_id, ProjectStatus.COMPLETED, final_video_ref=final_ref
                    )
                step_log["compile"] = time.monotonic() - step_start

            return snapshot

        except (PipelineCancelled, ClipCancelled):
            logger.info(f"Project {project_id}: cancelled during {step}")
            snapshot = await self._cancel(project_id)
            return snapshot

        except asyncio.CancelledError:
            # Task cancelled by service shutdown
            logger.warning(f"Project {project_id}: run interrupted during {step}")
            await self._cancel(project_id)
            raise

        except Exception as e:
            logger.error(f"Pipeline failed at step {step}: {type(e).__name__}: {e}")
            snapshot = await self._set_status(
                project_id,
                ProjectStatus.ERROR,
                error_message=f"{step} failed: {type(e).__name__}: {e}",
            )
            raise

        finally:
            duration = time.monotonic() - pipeline_start
            final = await self.store.get_snapshot(project_id)
            await self.store.record_run(run_id, final.status, duration, step_log)
            logger.info(
                f"Pipeline for project {project_id} ended {final.status.value} "
                f"in {duration:.2f}s ({final.completed_clips}/{final.clip_count} clips)"
            )
