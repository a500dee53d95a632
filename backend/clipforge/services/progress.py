"""Per-project progress fan-out.

The pipeline publishes a PipelineEvent after every persisted transition.
Each subscriber owns a bounded asyncio.Queue; publishing never awaits, and
a full queue drops its oldest event so a slow observer always ends up with
the latest state without holding the pipeline back.

Subscriptions register synchronously and are seeded with the most recent
event for the project (or a caller-supplied snapshot when nothing has been
published yet), so a late subscriber starts from current state. The
Project Store remains authoritative; observers that miss events can always
reconcile by reading a snapshot.

All methods must be called from the event loop thread.

Usage:
    initial = await store.get_snapshot(project_id)
    async with publisher.subscribe(project_id, initial) as subscription:
        async for event in subscription:
            render(event.snapshot)
"""

import asyncio
import logging
import uuid
from typing import Any, Optional

from clipforge.config import settings
from clipforge.orchestrator.state import is_terminal
from clipforge.schemas.project import PipelineEvent, ProjectSnapshot

logger = logging.getLogger(__name__)


class _SubscriberQueue(asyncio.Queue):
    """Bounded queue that counts events discarded on overflow."""

    def __init__(self, maxsize: int):
        super().__init__(maxsize=maxsize)
        self.dropped = 0


class Subscription:
    """Ordered stream of events for one project.

    Iteration ends after the first event whose snapshot is terminal, or
    when the subscription is closed.
    """

    def __init__(self, publisher: "ProgressPublisher", project_id: uuid.UUID, queue: _SubscriberQueue):
        self._publisher = publisher
        self.project_id = project_id
        self._queue = queue
        self._closed = False
        self._finished = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> PipelineEvent:
        if self._finished or self._closed:
            raise StopAsyncIteration
        event: PipelineEvent = await self._queue.get()
        if is_terminal(event.snapshot.status):
            self._finished = True
        return event

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._publisher._unsubscribe(self.project_id, self._queue)

    @property
    def dropped(self) -> bool:
        return self._queue.dropped > 0


class ProgressPublisher:
    """Fan out pipeline events to the subscribers of each project."""

    def __init__(self, queue_size: Optional[int] = None):
        self._queue_size = queue_size or settings.pipeline.subscriber_queue_size
        self._subscribers: dict[uuid.UUID, set[asyncio.Queue]] = {}
        self._latest: dict[uuid.UUID, PipelineEvent] = {}

    def subscribe(
        self,
        project_id: uuid.UUID,
        initial: Optional[ProjectSnapshot] = None,
    ) -> Subscription:
        """Register a subscriber for a project.

        Args:
            project_id: Project to observe
            initial: Snapshot to start from if no event was published yet

        Returns:
            Subscription, already registered
        """
        queue = _SubscriberQueue(maxsize=self._queue_size)
        seed = self._latest.get(project_id)
        if seed is None and initial is not None:
            seed = PipelineEvent(type="initial_state", project_id=project_id, snapshot=initial)
        if seed is not None:
            queue.put_nowait(seed)

        self._subscribers.setdefault(project_id, set()).add(queue)
        logger.debug(f"Subscriber added for project {project_id}")
        return Subscription(self, project_id, queue)

    def _unsubscribe(self, project_id: uuid.UUID, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(project_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[project_id]
        logger.debug(f"Subscriber removed for project {project_id}")

    def publish(
        self,
        event_type: str,
        snapshot: ProjectSnapshot,
        clip_index: Optional[int] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> PipelineEvent:
        """Broadcast a snapshot to the project's subscribers without waiting."""
        event = PipelineEvent(
            type=event_type,
            project_id=snapshot.id,
            clip_index=clip_index,
            snapshot=snapshot,
            data=data,
        )
        self._latest[snapshot.id] = event
        for queue in list(self._subscribers.get(snapshot.id, ())):
            _offer(queue, event)
        return event

    def latest(self, project_id: uuid.UUID) -> Optional[PipelineEvent]:
        return self._latest.get(project_id)

    def subscriber_count(self, project_id: uuid.UUID) -> int:
        return len(self._subscribers.get(project_id, ()))

    def forget(self, project_id: uuid.UUID) -> None:
        """Drop the cached latest event once a project's run is evicted."""
        self._latest.pop(project_id, None)


def _offer(queue: "_SubscriberQueue", event: PipelineEvent) -> None:
    """Enqueue without blocking, discarding the oldest event when full."""
    while True:
        try:
            queue.put_nowait(event)
            return
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                continue
            queue.dropped += 1
