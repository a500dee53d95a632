"""Tests for error classification and the Vertex provider with a stubbed client.

The google-genai client is replaced by SimpleNamespace objects, so these
tests run offline.
"""

import uuid
from types import SimpleNamespace

import pytest
from google.genai.errors import ClientError, ServerError

from clipforge.errors import (
    CompilationError,
    ContentRejectedError,
    GenerationError,
    TransientGenerationError,
)
from clipforge.schemas.project import ProjectSettings
from clipforge.services import vertex_provider
from clipforge.services.file_manager import FileManager
from clipforge.services.generation import (
    GenerationContext,
    failure_reason,
    get_provider,
    is_retriable,
)
from clipforge.services.vertex_provider import VertexProvider, _check_operation, _translate_errors


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "exc, expected",
    [
        (TransientGenerationError("429", status_code=429), True),
        (ConnectionError("reset"), True),
        (TimeoutError(), True),
        (FileNotFoundError("clip_0.png"), False),
        (PermissionError("denied"), False),
        (ContentRejectedError("policy"), False),
        (GenerationError("bad request"), False),
        (CompilationError("ffmpeg"), False),
        (ValueError("bug"), False),
    ],
)
def test_01_is_retriable(exc, expected):
    assert is_retriable(exc) is expected


def test_02_failure_reason():
    assert failure_reason(ContentRejectedError("x")) == "content_rejected"
    assert failure_reason(GenerationError("x")) == "provider_error"
    assert failure_reason(RuntimeError("x")) == "provider_error"


def test_03_unknown_provider():
    with pytest.raises(ValueError):
        get_provider("midjourney")


# ---------------------------------------------------------------------------
# SDK error translation
# ---------------------------------------------------------------------------

def _client_error(code: int, message: str) -> ClientError:
    return ClientError(code, {"error": {"code": code, "message": message, "status": "ERR"}})


def test_04_rate_limit_is_transient():
    with pytest.raises(TransientGenerationError) as exc_info:
        with _translate_errors("Image generation"):
            raise _client_error(429, "Quota exceeded")
    assert exc_info.value.status_code == 429


def test_05_policy_violation_is_rejection():
    with pytest.raises(ContentRejectedError):
        with _translate_errors("Image generation"):
            raise _client_error(400, "The prompt violates our usage guidelines")


def test_06_other_client_error_is_terminal():
    with pytest.raises(GenerationError) as exc_info:
        with _translate_errors("Video submission"):
            raise _client_error(404, "Model not found")
    assert not isinstance(exc_info.value, (TransientGenerationError, ContentRejectedError))


def test_07_server_error_is_transient():
    with pytest.raises(TransientGenerationError):
        with _translate_errors("Video polling"):
            raise ServerError(503, {"error": {"code": 503, "message": "unavailable"}})


def test_08_operation_errors():
    filtered = SimpleNamespace(
        response=SimpleNamespace(
            rai_media_filtered_count=1,
            rai_media_filtered_reasons=["celebrity"],
            generated_videos=[],
        ),
        error=None,
    )
    with pytest.raises(ContentRejectedError):
        _check_operation(filtered)

    with pytest.raises(TransientGenerationError):
        _check_operation(SimpleNamespace(response=None, error={"code": 14, "message": "unavailable"}))

    with pytest.raises(GenerationError):
        _check_operation(SimpleNamespace(response=None, error=None))


# ---------------------------------------------------------------------------
# Provider with a stubbed client
# ---------------------------------------------------------------------------

class _Models:
    def __init__(self, content_response=None, video_operation=None):
        self.content_response = content_response
        self.video_operation = video_operation
        self.requests = []

    async def generate_content(self, **kwargs):
        self.requests.append(kwargs)
        return self.content_response

    async def generate_videos(self, **kwargs):
        self.requests.append(kwargs)
        return self.video_operation


def _stub_client(monkeypatch, models: _Models) -> None:
    client = SimpleNamespace(aio=SimpleNamespace(models=models))
    monkeypatch.setattr(vertex_provider, "get_vertex_client", lambda location=None: client)


def _image_response(data: bytes):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


@pytest.fixture
def context():
    return GenerationContext(
        project_id=uuid.uuid4(),
        clip_index=0,
        settings=ProjectSettings(aspect_ratio="16:9"),
    )


@pytest.mark.asyncio
async def test_09_image_is_saved_per_clip(monkeypatch, tmp_path, context):
    models = _Models(content_response=_image_response(b"png-bytes"))
    _stub_client(monkeypatch, models)
    provider = VertexProvider(file_manager=FileManager(tmp_path))

    ref = await provider.generate_image("a bright kitchen", context=context)

    assert ref.endswith(f"{context.project_id}/images/clip_0.png")
    assert (tmp_path / str(context.project_id) / "images" / "clip_0.png").read_bytes() == b"png-bytes"
    config = models.requests[0]["config"]
    assert config.image_config.aspect_ratio == "16:9"


@pytest.mark.asyncio
async def test_10_blocked_image_prompt_is_rejected(monkeypatch, tmp_path, context):
    response = SimpleNamespace(
        candidates=[],
        prompt_feedback=SimpleNamespace(block_reason="SAFETY"),
    )
    _stub_client(monkeypatch, _Models(content_response=response))
    provider = VertexProvider(file_manager=FileManager(tmp_path))

    with pytest.raises(ContentRejectedError):
        await provider.generate_image("anything", context=context)


@pytest.mark.asyncio
async def test_11_finished_video_operation_is_saved(monkeypatch, tmp_path, context):
    image = tmp_path / "source.png"
    image.write_bytes(b"png-bytes")
    operation = SimpleNamespace(
        name="operations/1",
        done=True,
        error=None,
        response=SimpleNamespace(
            rai_media_filtered_count=0,
            generated_videos=[SimpleNamespace(video=SimpleNamespace(video_bytes=b"mp4", uri=None))],
        ),
    )
    models = _Models(video_operation=operation)
    _stub_client(monkeypatch, models)
    provider = VertexProvider(video_model="veo-3.1-fast-generate-001", file_manager=FileManager(tmp_path))

    ref = await provider.generate_video("she smiles", str(image), context=context)

    assert ref.endswith("clips/clip_0.mp4")
    assert models.requests[0]["image"].image_bytes == b"png-bytes"
    assert models.requests[0]["config"].generate_audio is True


@pytest.mark.asyncio
async def test_12_video_polling_reports_progress(monkeypatch, tmp_path):
    image = tmp_path / "source.png"
    image.write_bytes(b"png-bytes")
    finished = SimpleNamespace(
        name="operations/2",
        done=True,
        error=None,
        response=SimpleNamespace(
            rai_media_filtered_count=0,
            generated_videos=[SimpleNamespace(video=SimpleNamespace(video_bytes=b"mp4", uri=None))],
        ),
    )
    polls = [SimpleNamespace(name="operations/2", done=False), finished]

    async def fake_poll(client, operation):
        return polls.pop(0)

    _stub_client(monkeypatch, _Models(video_operation=SimpleNamespace(name="operations/2", done=False)))
    monkeypatch.setattr(vertex_provider, "_poll_operation_get", fake_poll)
    monkeypatch.setattr(vertex_provider.settings.pipeline, "video_poll_interval", 0)
    reports = []
    context = GenerationContext(
        project_id=uuid.uuid4(),
        clip_index=3,
        on_progress=lambda status, elapsed: reports.append((status, elapsed)),
    )
    provider = VertexProvider(video_model="veo-3.1-fast-generate-001", file_manager=FileManager(tmp_path))

    ref = await provider.generate_video("she smiles", str(image), context=context)

    assert ref.endswith("clips/clip_3.mp4")
    assert [status for status, _ in reports] == ["running", "done"]
    assert all(elapsed >= 0 for _, elapsed in reports)
