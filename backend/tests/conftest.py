"""Shared fixtures: a temporary SQLite store and a scripted fake provider.

Usage:
    cd <repo-root> && python -m pytest backend/tests -v
"""

import asyncio
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence

import pytest
import pytest_asyncio

from clipforge.db import build_engine, build_session_factory, init_database
from clipforge.pipeline.clip_worker import ClipWorker
from clipforge.schemas.project import (
    ClipInput,
    ClipSnapshot,
    ClipStatus,
    CreateProjectRequest,
    ProjectSettings,
    ProjectSnapshot,
    ProjectStatus,
)
from clipforge.services.generation import GenerationContext, GenerationProvider
from clipforge.services.progress import ProgressPublisher
from clipforge.services.project_store import ProjectStore


# ---------------------------------------------------------------------------
# Fake generation provider
# ---------------------------------------------------------------------------

class FakeProvider(GenerationProvider):
    """In-process provider whose failures are scripted per stage and clip.

    - fail(stage, index, *errors): raise these errors, in order, on the
      next calls for that stage and clip, then succeed
    - hooks[(stage, index)]: coroutine function awaited at the start of a call
    """

    name = "fake"

    def __init__(self):
        self.failures: dict[tuple[str, Optional[int]], list[Exception]] = {}
        self.hooks: dict[tuple[str, Optional[int]], Callable[[], Awaitable[None]]] = {}
        self.calls: list[tuple[str, Optional[int], str]] = []
        self.compile_error: Optional[Exception] = None
        self.compiled: Optional[list[str]] = None

    def fail(self, stage: str, index: Optional[int], *errors: Exception) -> None:
        self.failures.setdefault((stage, index), []).extend(errors)

    def calls_for(self, stage: str, index: Optional[int] = None) -> list[str]:
        return [p for s, i, p in self.calls if s == stage and (index is None or i == index)]

    async def _call(self, stage: str, index: Optional[int], prompt: str) -> None:
        self.calls.append((stage, index, prompt))
        hook = self.hooks.get((stage, index))
        if hook is not None:
            await hook()
        pending = self.failures.get((stage, index))
        if pending:
            raise pending.pop(0)

    async def generate_image(self, prompt: str, *, context: GenerationContext) -> str:
        await self._call("image", context.clip_index, prompt)
        return f"fake://{context.project_id}/image/{context.clip_index}"

    async def generate_video(self, prompt: str, image_ref: str, *, context: GenerationContext) -> str:
        await self._call("video", context.clip_index, prompt)
        context.report_progress("running", 1.0)
        return f"fake://{context.project_id}/video/{context.clip_index}"

    async def compile_video(
        self,
        video_refs: Sequence[str],
        project_settings: ProjectSettings,
        *,
        context: GenerationContext,
    ) -> str:
        self.calls.append(("compile", None, ",".join(video_refs)))
        if self.compile_error is not None:
            raise self.compile_error
        self.compiled = list(video_refs)
        return f"fake://{context.project_id}/final.mp4"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def store(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'clipforge-test.db'}")
    await init_database(engine)
    yield ProjectStore(build_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def publisher():
    return ProgressPublisher(queue_size=512)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def worker(store, publisher, provider):
    return ClipWorker(store, publisher, provider, max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def make_project(store):
    """Create a draft project with n clips (prompts derived from the index)."""

    async def _make(n: int = 2, clips: Optional[list[ClipInput]] = None, **kwargs) -> ProjectSnapshot:
        if clips is None:
            clips = [
                ClipInput(image_prompt=f"image {i}", video_prompt=f"video {i}", voice_line=f"line {i}")
                for i in range(n)
            ]
        return await store.create_project(CreateProjectRequest(clips=clips, **kwargs))

    return _make


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_snapshot(
    status: ProjectStatus = ProjectStatus.GENERATING,
    project_id: Optional[uuid.UUID] = None,
    clip_statuses: Sequence[ClipStatus] = (ClipStatus.PENDING,),
) -> ProjectSnapshot:
    """Build a snapshot without touching the database."""
    return ProjectSnapshot(
        id=project_id or uuid.uuid4(),
        name="test",
        status=status,
        settings=ProjectSettings(),
        clips=tuple(
            ClipSnapshot(index=i, image_prompt="img", video_prompt="vid", status=s)
            for i, s in enumerate(clip_statuses)
        ),
        created_at=datetime(2026, 1, 1),
    )


def drain(subscription) -> list:
    """Collect every event already queued on a subscription."""
    events = []
    while not subscription._queue.empty():
        events.append(subscription._queue.get_nowait())
    return events


async def wait_until(predicate: Callable[[], Awaitable[bool]], timeout: float = 5.0) -> None:
    async def _poll():
        while not await predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)
