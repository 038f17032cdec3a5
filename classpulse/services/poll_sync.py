"""
Fixed-interval polling of a session's topics
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from classpulse.models import Topic
from classpulse.services.health import sort_by_total

logger = structlog.get_logger(__name__)

DEFAULT_INTERVAL = 1.0

Fetcher = Callable[[int], Awaitable[list[Topic]]]
UpdateCallback = Callable[[list[Topic]], Any]


class PollSync:
    """
    Re-fetch a session's topics on a fixed cadence

    Every fetch replaces the previous snapshot wholesale. A tick that finds
    the previous fetch still running is skipped, so at most one fetch is in
    flight. Failed fetches are logged and leave the previous snapshot alone.
    """

    def __init__(self, fetch: Fetcher, interval: float = DEFAULT_INTERVAL) -> None:
        """
        Args:
            fetch: Coroutine function returning a session's topics
            interval: Seconds between ticks
        """
        self.fetch = fetch
        self.interval = interval
        self.snapshot: list[Topic] = []
        self.session_id: int | None = None
        self._on_update: UpdateCallback | None = None
        self._timer: asyncio.Task[None] | None = None
        self._in_flight: asyncio.Task[None] | None = None
        self._generation = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self, session_id: int, on_update: UpdateCallback) -> None:
        """Begin polling with an eager fetch; replaces any previous subscription"""
        self.stop()
        self.session_id = session_id
        self._on_update = on_update
        self._generation += 1
        self._timer = asyncio.create_task(self._run(self._generation))

    def stop(self) -> None:
        """Cancel future fetches; a fetch already in flight is discarded"""
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._in_flight is not None and not self._in_flight.done():
            self._in_flight.cancel()
        self._in_flight = None

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            if self._in_flight is None or self._in_flight.done():
                self._in_flight = asyncio.create_task(self._tick(generation))
            else:
                logger.debug("poll_tick_skipped", session_id=self.session_id)
            await asyncio.sleep(self.interval)

    async def _tick(self, generation: int) -> None:
        session_id = self.session_id
        assert session_id is not None
        try:
            topics = await self.fetch(session_id)
        except Exception as e:
            logger.warning("poll_failed", session_id=session_id, error=repr(e))
            return

        if generation != self._generation:
            return

        self.snapshot = sort_by_total(topics)
        if self._on_update is None:
            return

        try:
            result = self._on_update(self.snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("poll_callback_failed", session_id=session_id)
