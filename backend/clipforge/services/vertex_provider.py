"""Vertex AI generation provider.

- Images: Gemini generate_content() with the IMAGE response modality
- Videos: Veo image-to-video, submitted then polled until done
- Compilation: local ffmpeg (clipforge.pipeline.compiler)

Artifacts are written through FileManager and referenced by local path.
SDK errors are translated into clipforge generation errors; the clip worker
owns retries, so nothing here retries a whole generation. Only the cheap
operation status RPC is retried in place while polling.
"""

import asyncio
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Sequence

import httpx
from google.genai import types
from google.genai.errors import ClientError, ServerError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from clipforge.config import settings
from clipforge.errors import ContentRejectedError, GenerationError, TransientGenerationError
from clipforge.pipeline.compiler import compile_clips
from clipforge.schemas.project import ProjectSettings
from clipforge.services.file_manager import FileManager
from clipforge.services.generation import GenerationContext, GenerationProvider
from clipforge.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)

_POLICY_KEYWORDS = (
    "violat", "usage guidelines",
    "safety", "content polic", "responsible ai",
)

# DEADLINE_EXCEEDED, RESOURCE_EXHAUSTED, INTERNAL, UNAVAILABLE
_TRANSIENT_GRPC_CODES = {4, 8, 13, 14}


# ---------------------------------------------------------------------------
# Error classification helpers
# ---------------------------------------------------------------------------
def _is_retriable(exc: BaseException) -> bool:
    """Return True only for transient SDK errors (429, 5xx, network)."""
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    if isinstance(exc, (ConnectionError, TimeoutError, httpx.TransportError)):
        return True
    return False


def _mentions_policy(message: str) -> bool:
    message = message.lower()
    return any(kw in message for kw in _POLICY_KEYWORDS)


@contextmanager
def _translate_errors(stage: str):
    """Re-raise SDK and transport errors as clipforge generation errors."""
    try:
        yield
    except GenerationError:
        raise
    except ClientError as e:
        code = getattr(e, "code", None)
        if code == 429:
            raise TransientGenerationError(f"{stage} rate limited: {e}", status_code=429) from e
        if _mentions_policy(str(e)):
            raise ContentRejectedError(f"{stage} rejected: {e}") from e
        raise GenerationError(f"{stage} failed: {e}") from e
    except ServerError as e:
        raise TransientGenerationError(
            f"{stage} server error: {e}", status_code=getattr(e, "code", None)
        ) from e
    except (ConnectionError, TimeoutError, httpx.TransportError) as e:
        raise TransientGenerationError(f"{stage} connection error: {e}") from e


def _check_operation(operation) -> None:
    """Raise for a finished Veo operation that produced no usable video."""
    response = getattr(operation, "response", None)
    if response:
        filtered = getattr(response, "rai_media_filtered_count", None) or 0
        if filtered > 0 and not response.generated_videos:
            reasons = getattr(response, "rai_media_filtered_reasons", None)
            raise ContentRejectedError(
                f"Content filtered by responsible AI: {reasons or 'no reason given'}"
            )
        return

    error = getattr(operation, "error", None)
    if not error:
        raise GenerationError("Video operation finished without a response")
    code = error.get("code") if isinstance(error, dict) else getattr(error, "code", None)
    if code in _TRANSIENT_GRPC_CODES:
        raise TransientGenerationError(f"Video operation error (code {code}): {error}")
    if _mentions_policy(str(error)):
        raise ContentRejectedError(f"Video rejected: {error}")
    raise GenerationError(f"Video operation failed: {error}")


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    retry=retry_if_exception(_is_retriable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _poll_operation_get(client, operation):
    """Fetch operation status with retry on transient HTTP errors (429/5xx)."""
    return await client.aio.operations.get(operation)


async def _download_from_gcs(gcs_uri: str) -> bytes:
    """Download video bytes from a Google Cloud Storage URI."""
    if gcs_uri.startswith("gs://"):
        http_url = gcs_uri.replace("gs://", "https://storage.googleapis.com/")
    else:
        http_url = gcs_uri

    async with httpx.AsyncClient() as client:
        response = await client.get(http_url)
        response.raise_for_status()
        return response.content


class VertexProvider(GenerationProvider):
    """Gemini + Veo on Vertex AI, compiled locally with ffmpeg."""

    name = "vertex"

    def __init__(
        self,
        image_model: Optional[str] = None,
        video_model: Optional[str] = None,
        file_manager: Optional[FileManager] = None,
    ):
        self.image_model = image_model or settings.models.image_gen
        self.video_model = video_model or settings.models.video_gen
        self.files = file_manager or FileManager()

    async def generate_image(self, prompt: str, *, context: GenerationContext) -> str:
        client = get_vertex_client(location_for_model(self.image_model))

        with _translate_errors("Image generation"):
            response = await client.aio.models.generate_content(
                model=self.image_model,
                contents=[prompt],
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE"],
                    image_config=types.ImageConfig(
                        aspect_ratio=context.settings.aspect_ratio,
                    ),
                ),
            )

        candidates = response.candidates or []
        if not candidates or candidates[0].content is None:
            feedback = getattr(response, "prompt_feedback", None)
            block_reason = getattr(feedback, "block_reason", None)
            if block_reason:
                raise ContentRejectedError(f"Image prompt blocked: {block_reason}")
            raise GenerationError("No image generated in response")

        for part in candidates[0].content.parts or []:
            if part.inline_data and part.inline_data.data:
                path = self.files.save_image(
                    context.project_id, context.clip_index, part.inline_data.data
                )
                return str(path)

        raise GenerationError("No image generated in response")

    async def generate_video(
        self, prompt: str, image_ref: str, *, context: GenerationContext
    ) -> str:
        client = get_vertex_client(location_for_model(self.video_model))
        image_bytes = Path(image_ref).read_bytes()

        config = types.GenerateVideosConfig(
            aspect_ratio=context.settings.aspect_ratio,
            duration_seconds=settings.pipeline.video_duration_seconds,
            number_of_videos=1,
        )
        # Audio generation for Veo 3+ models
        if not self.video_model.startswith("veo-2"):
            config.generate_audio = True

        with _translate_errors("Video submission"):
            operation = await client.aio.models.generate_videos(
                model=self.video_model,
                prompt=prompt,
                image=types.Image(image_bytes=image_bytes, mime_type="image/png"),
                config=config,
            )

        logger.info(f"Clip {context.clip_index}: Veo operation {operation.name} submitted")

        poll_interval = settings.pipeline.video_poll_interval
        max_polls = settings.pipeline.video_poll_max
        started = time.monotonic()
        for _ in range(max_polls):
            if operation.done:
                break
            await asyncio.sleep(poll_interval)
            with _translate_errors("Video polling"):
                operation = await _poll_operation_get(client, operation)
            context.report_progress(
                "done" if operation.done else "running", time.monotonic() - started
            )
        else:
            if not operation.done:
                raise TransientGenerationError(
                    f"Video operation did not complete after {max_polls * poll_interval:.0f} seconds"
                )

        _check_operation(operation)

        generated = operation.response.generated_videos[0]
        if generated.video and generated.video.video_bytes:
            video_bytes = generated.video.video_bytes
        elif generated.video and generated.video.uri:
            with _translate_errors("Video download"):
                video_bytes = await _download_from_gcs(generated.video.uri)
        else:
            raise GenerationError("No video data in response")

        path = self.files.save_clip(context.project_id, context.clip_index, video_bytes)
        return str(path)

    async def compile_video(
        self,
        video_refs: Sequence[str],
        project_settings: ProjectSettings,
        *,
        context: GenerationContext,
    ) -> str:
        output_path = self.files.get_output_path(context.project_id)
        await compile_clips(video_refs, output_path, project_settings)
        return str(output_path)
