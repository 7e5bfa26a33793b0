"""Progress event channel: load progress published to any number of subscribers."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

logger = logging.getLogger(__name__)

# Standard progress phases
PHASE_START = "start"
PHASE_DOWNLOAD = "download"
PHASE_LOAD = "load"
PHASE_PURGE = "purge"
PHASE_RETRY = "retry"
PHASE_READY = "ready"
PHASE_FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    """One human-readable progress step during an engine load."""

    phase: str
    text: str
    fraction: float | None = None  # 0.0-1.0 when known
    timestamp: float = field(default_factory=time.time)


class ProgressChannel:
    """Fan-out of progress events.

    Subscribers either register a plain listener callable or consume an
    async stream. Publishing with no subscribers is a no-op, so load
    correctness never depends on anyone listening.
    """

    def __init__(self, max_queue: int = 256):
        self._listeners: list[Callable[[ProgressEvent], None]] = []
        self._queues: list[asyncio.Queue] = []
        self._max_queue = max_queue

    def publish(self, phase: str, text: str, fraction: float | None = None) -> ProgressEvent:
        """Publish an event to all listeners and streams."""
        event = ProgressEvent(phase=phase, text=text, fraction=fraction)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Progress listener error: {e}")
        for queue in list(self._queues):
            if queue.full():
                # Drop the oldest event rather than block the loader
                queue.get_nowait()
            queue.put_nowait(event)
        return event

    def add_listener(self, callback: Callable[[ProgressEvent], None]) -> None:
        """Register a listener for all progress events."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable) -> None:
        """Remove a registered listener."""
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """Yield events as they are published until the consumer stops iterating.

        The stream ends on its own after a ``ready`` or ``failed`` event.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                yield event
                if event.phase in (PHASE_READY, PHASE_FAILED):
                    return
        finally:
            self._queues.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners) + len(self._queues)
