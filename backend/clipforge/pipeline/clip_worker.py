"""Per-clip generation: image stage, then video stage.

A clip advances pending → image_generating → video_generating → done, or
ends failed. Every transition is written to the ProjectStore first and the
resulting snapshot is then published, so subscribers never observe a state
the store does not hold.

Each stage retries transient errors (timeouts, rate limits, 5xx,
connection failures) with exponential backoff, up to
settings.pipeline.retry_max_attempts attempts including the first. The
clip's retry_count is incremented and persisted once per retry and is
shared by both stages. Non-transient errors fail the clip immediately.

Usage:
    worker = ClipWorker(store, publisher, provider)
    snapshot = await worker.run(project_id, clip_index, cancel_event)
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from clipforge.config import settings
from clipforge.errors import GenerationError
from clipforge.schemas.project import ClipSnapshot, ClipStatus, ProjectSettings, ProjectSnapshot
from clipforge.services.generation import (
    GenerationContext,
    GenerationProvider,
    failure_reason,
    is_retriable,
)
from clipforge.services.progress import ProgressPublisher
from clipforge.services.project_store import ProjectStore

logger = logging.getLogger(__name__)

RETRIES_EXHAUSTED = "retries_exhausted"
NO_PROMPT = "no_prompt"


class ClipCancelled(Exception):
    """Raised when cancellation is observed between the two stages."""


class ClipWorker:
    """Drive a single clip through image and video generation."""

    def __init__(
        self,
        store: ProjectStore,
        publisher: ProgressPublisher,
        provider: GenerationProvider,
        *,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        self.store = store
        self.publisher = publisher
        self.provider = provider
        self.max_attempts = max_attempts or settings.pipeline.retry_max_attempts
        self.base_delay = settings.pipeline.retry_base_delay if base_delay is None else base_delay
        self.max_delay = settings.pipeline.retry_max_delay if max_delay is None else max_delay

    async def _transition(self, project_id: uuid.UUID, index: int, **fields) -> ProjectSnapshot:
        snapshot = await self.store.update_clip(project_id, index, **fields)
        self.publisher.publish("clip_status", snapshot, clip_index=index)
        return snapshot

    async def _fail(
        self, project_id: uuid.UUID, index: int, reason: str, error: str
    ) -> ClipSnapshot:
        logger.error(f"Clip {index} of project {project_id} failed ({reason}): {error}")
        snapshot = await self._transition(
            project_id, index,
            status=ClipStatus.FAILED,
            failure_reason=reason,
            error=error[:1000],
        )
        return snapshot.clip(index)

    def _progress_reporter(
        self, project_id: uuid.UUID, index: int, fallback: ProjectSnapshot
    ) -> Callable[[str, float], None]:
        """Publish video_progress events while a video job is polled.

        Nothing is written to the store, so the event carries the latest
        published snapshot unchanged.
        """
        def report(job_status: str, elapsed: float) -> None:
            latest = self.publisher.latest(project_id)
            snapshot = latest.snapshot if latest is not None else fallback
            self.publisher.publish(
                "video_progress", snapshot, clip_index=index,
                data={"job_status": job_status, "elapsed": round(elapsed)},
            )

        return report

    async def _run_stage(
        self,
        project_id: uuid.UUID,
        index: int,
        stage: str,
        call: Callable[[], Awaitable[str]],
    ) -> str:
        """Run one provider call with retries, persisting retry_count per retry."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(is_retriable),
            reraise=False,
        )
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    current = (await self.store.get_snapshot(project_id)).clip(index)
                    await self._transition(
                        project_id, index, retry_count=current.retry_count + 1
                    )
                    logger.warning(
                        f"Clip {index} {stage}: retry {number - 1}/{self.max_attempts - 1}"
                    )
                return await call()

        # Unreachable: AsyncRetrying either returns from the block or raises
        raise RuntimeError(f"Clip {index} {stage}: retry loop ended without a result")

    async def run(
        self,
        project_id: uuid.UUID,
        index: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ClipSnapshot:
        """Generate one clip and return its terminal snapshot.

        Provider failures never escape: they are recorded on the clip.

        Raises:
            ClipCancelled: If cancellation is requested after the image stage
        """
        project = await self.store.get_snapshot(project_id)
        clip = project.clip(index)
        context = GenerationContext(
            project_id=project_id,
            clip_index=index,
            settings=project.settings or ProjectSettings(),
        )

        if not clip.is_eligible:
            return await self._fail(
                project_id, index, NO_PROMPT, "Clip has neither an image nor a video prompt"
            )

        image_prompt = clip.image_prompt.strip() or clip.video_prompt
        video_prompt = clip.video_prompt.strip() or clip.image_prompt

        # Stage 1: image
        await self._transition(project_id, index, status=ClipStatus.IMAGE_GENERATING)
        try:
            image_ref = await self._run_stage(
                project_id, index, "image",
                lambda: self.provider.generate_image(image_prompt, context=context),
            )
        except RetryError as e:
            return await self._fail(
                project_id, index, RETRIES_EXHAUSTED,
                f"Image generation failed after {self.max_attempts} attempts: "
                f"{e.last_attempt.exception()}",
            )
        except Exception as e:
            return await self._fail(project_id, index, failure_reason(e), f"Image generation failed: {e}")

        await self.store.update_clip(project_id, index, image_ref=image_ref)

        if cancel_event is not None and cancel_event.is_set():
            raise ClipCancelled(f"Clip {index} cancelled after image stage")

        # Stage 2: video
        submitted = await self._transition(project_id, index, status=ClipStatus.VIDEO_GENERATING)
        video_context = context.model_copy(
            update={"on_progress": self._progress_reporter(project_id, index, submitted)}
        )
        try:
            video_ref = await self._run_stage(
                project_id, index, "video",
                lambda: self.provider.generate_video(video_prompt, image_ref, context=video_context),
            )
        except RetryError as e:
            return await self._fail(
                project_id, index, RETRIES_EXHAUSTED,
                f"Video generation failed after {self.max_attempts} attempts: "
                f"{e.last_attempt.exception()}",
            )
        except Exception as e:
            return await self._fail(project_id, index, failure_reason(e), f"Video generation failed: {e}")

        snapshot = await self._transition(
            project_id, index, status=ClipStatus.DONE, video_ref=video_ref, error=None
        )
        logger.info(f"Clip {index} of project {project_id} done")
        return snapshot.clip(index)
