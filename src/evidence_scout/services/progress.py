"""
Progress channel: per-request event streams delivered as server-sent events.

Each stream keeps its events with sequential ids so a client reconnecting
with ``Last-Event-ID`` resumes where it left off. Publishing is synchronous
and never blocks the pipeline; a client that went away just stops reading.
"""

import asyncio
import collections
import json
import logging
import time
from typing import AsyncIterator, Callable

from evidence_scout.constants import (
    DEFAULT_HEARTBEAT_INTERVAL,
    PROGRESS_HISTORY_LIMIT,
    PROGRESS_STREAM_TTL,
)
from evidence_scout.models.model_progress import STAGE_ORDER, ProgressEvent

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME = ": heartbeat\n\n"


def serialize_event(event_id: int, event: ProgressEvent) -> str:
    payload = json.dumps(
        event.model_dump(mode="json", by_alias=True, exclude_none=True),
        ensure_ascii=False,
    )
    return f"id: {event_id}\nevent: {event.stage.value}\ndata: {payload}\n\n"


class ProgressStream:
    """Ordered event log for one request with exactly one terminal event."""

    def __init__(self, request_id: str, history_limit: int = PROGRESS_HISTORY_LIMIT):
        self.request_id = request_id
        self.created_at = time.monotonic()
        self.finished_at: float | None = None
        self._events: collections.deque[tuple[int, ProgressEvent]] = collections.deque(
            maxlen=history_limit
        )
        self._next_id = 1
        self._last_rank = -1
        self._changed = asyncio.Event()

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def last_event_id(self) -> int:
        return self._next_id - 1

    def events(self) -> list[ProgressEvent]:
        return [event for _, event in self._events]

    def publish(self, event: ProgressEvent) -> bool:
        """Append an event; returns False when it was dropped."""
        if self.finished:
            logger.warning(
                "Dropping %s event for finished request %s", event.stage.value, self.request_id
            )
            return False
        rank = STAGE_ORDER[event.stage]
        if not event.terminal and rank < self._last_rank:
            logger.warning(
                "Dropping out-of-order %s event for request %s", event.stage.value, self.request_id
            )
            return False

        self._last_rank = max(self._last_rank, rank)
        self._events.append((self._next_id, event))
        self._next_id += 1
        if event.terminal:
            self.finished_at = time.monotonic()

        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
        return True

    async def iter_events(
        self,
        after_id: int = 0,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> AsyncIterator[tuple[int, ProgressEvent] | None]:
        """Yield ``(id, event)`` after ``after_id``; ``None`` marks a heartbeat.

        Ends after the terminal event has been yielded.
        """
        cursor = after_id
        while True:
            waiter = self._changed
            for event_id, event in list(self._events):
                if event_id > cursor:
                    cursor = event_id
                    yield event_id, event
            if self.finished and cursor >= self.last_event_id:
                return
            try:
                await asyncio.wait_for(waiter.wait(), timeout=heartbeat_interval)
            except asyncio.TimeoutError:
                yield None

    async def sse(
        self,
        after_id: int = 0,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> AsyncIterator[str]:
        async for item in self.iter_events(after_id, heartbeat_interval):
            if item is None:
                yield HEARTBEAT_FRAME
            else:
                yield serialize_event(*item)


class ProgressBroker:
    """Registry of progress streams keyed by request id."""

    def __init__(
        self,
        ttl: float = PROGRESS_STREAM_TTL,
        history_limit: int = PROGRESS_HISTORY_LIMIT,
    ):
        self.ttl = ttl
        self.history_limit = history_limit
        self._streams: dict[str, ProgressStream] = {}

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._streams

    def is_finished(self, request_id: str) -> bool:
        """True when a stream exists for ``request_id`` and has ended."""
        stream = self._streams.get(request_id)
        return stream is not None and stream.finished

    def stream(self, request_id: str) -> ProgressStream:
        self._prune()
        stream = self._streams.get(request_id)
        if stream is None:
            stream = ProgressStream(request_id, self.history_limit)
            self._streams[request_id] = stream
        return stream

    def publish(self, event: ProgressEvent) -> bool:
        return self.stream(event.request_id).publish(event)

    def emitter(self, request_id: str) -> Callable[[ProgressEvent], bool]:
        stream = self.stream(request_id)
        return stream.publish

    def _prune(self) -> None:
        now = time.monotonic()
        expired = [
            request_id
            for request_id, stream in self._streams.items()
            if (stream.finished and now - stream.finished_at > self.ttl)
            or (not stream.finished and now - stream.created_at > self.ttl * 12)
        ]
        for request_id in expired:
            del self._streams[request_id]
