"""Abstract generation capability consumed by the clip pipeline.

A provider turns prompts into artifacts and returns opaque references
(local file paths for the built-in providers). Failures are raised as
clipforge generation errors so the worker can decide whether to retry:

- TransientGenerationError: timeouts, rate limits, 5xx (retried)
- ContentRejectedError: the provider refused the prompt (not retried)
- GenerationError: any other provider failure (not retried)

Usage:
    from clipforge.services.generation import get_provider

    provider = get_provider()            # configured default
    image_ref = await provider.generate_image(prompt, context=ctx)
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from clipforge.config import settings
from clipforge.errors import ContentRejectedError, GenerationError, TransientGenerationError
from clipforge.schemas.project import ProjectSettings

logger = logging.getLogger(__name__)


class GenerationContext(BaseModel):
    """Identifies where an artifact belongs and how it should be shaped."""

    model_config = ConfigDict(frozen=True)

    project_id: uuid.UUID
    clip_index: Optional[int] = None
    settings: ProjectSettings = ProjectSettings()
    # Called with (job_status, elapsed_seconds) while a long job is polled
    on_progress: Optional[Callable[[str, float], None]] = Field(default=None, exclude=True, repr=False)

    def report_progress(self, job_status: str, elapsed: float) -> None:
        if self.on_progress is not None:
            self.on_progress(job_status, elapsed)


class GenerationProvider(ABC):
    """Abstract base class for generation providers.

    All providers implement the three capabilities with consistent async
    signatures. Each returns a reference to the produced artifact.
    """

    name: str = "abstract"

    @abstractmethod
    async def generate_image(self, prompt: str, *, context: GenerationContext) -> str:
        """Generate a still image from a prompt.

        Args:
            prompt: Image description.
            context: Project, clip and output settings for the artifact.

        Returns:
            Reference to the stored image.
        """
        ...

    @abstractmethod
    async def generate_video(
        self, prompt: str, image_ref: str, *, context: GenerationContext
    ) -> str:
        """Animate a previously generated image.

        Args:
            prompt: Motion and dialogue description.
            image_ref: Reference returned by generate_image().
            context: Project, clip and output settings for the artifact.

        Returns:
            Reference to the stored video clip.
        """
        ...

    @abstractmethod
    async def compile_video(
        self,
        video_refs: Sequence[str],
        project_settings: ProjectSettings,
        *,
        context: GenerationContext,
    ) -> str:
        """Assemble finished clips, in order, into the final video.

        Returns:
            Reference to the compiled video.
        """
        ...


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------
def is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying."""
    if isinstance(exc, TransientGenerationError):
        return True
    if isinstance(exc, GenerationError):
        return False
    # Network failures below the provider layer; other OSErrors such as a
    # missing file will not fix themselves
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    return False


def failure_reason(exc: BaseException) -> str:
    """Tag recorded on a clip that failed with a non-retried error."""
    if isinstance(exc, ContentRejectedError):
        return ContentRejectedError.reason
    return GenerationError.reason


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
def get_provider(name: Optional[str] = None) -> GenerationProvider:
    """Return the generation provider registered under a name.

    Routing logic:
    - "vertex" → VertexProvider (Gemini images, Veo video, ffmpeg compile)

    Args:
        name: Provider name. Defaults to settings.models.provider.

    Raises:
        ValueError: If no provider is registered under the name.
    """
    provider_name = name or settings.models.provider

    if provider_name == "vertex":
        from clipforge.services.vertex_provider import VertexProvider

        logger.debug(f"Routing generation to VertexProvider ({settings.models.video_gen})")
        return VertexProvider()

    raise ValueError(f"Unknown generation provider: {provider_name!r}")
