"""
One-shot "topic resolved" detection over successive snapshots
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

import structlog

from classpulse.errors import TransientIOError
from classpulse.models import CelebrationEvent, HealthStatus, Topic
from classpulse.services.health import classify_topic

logger = structlog.get_logger(__name__)

NOTIFICATION_TTL = 6.0
ARCHIVE_DELAY = 6.5

ClaimHook = Callable[[int], Awaitable[bool]]
ReleaseHook = Callable[[int], Awaitable[None]]


@dataclass
class TrackedTopic:
    status: HealthStatus
    # Seen critical since the topic last celebrated
    crossed_critical: bool = False


class CelebrationDetector:
    """
    Watches topic health and fires when a topic becomes healthy

    A celebration is shown for `notification_ttl` seconds and the topic is
    moved to `archived` after `archive_delay` seconds. Both are local to this
    detector and lost when it goes away.
    """

    def __init__(
        self,
        min_total: int = 1,
        requires_critical: bool = False,
        notification_ttl: float = NOTIFICATION_TTL,
        archive_delay: float = ARCHIVE_DELAY,
        claim: ClaimHook | None = None,
        release: ReleaseHook | None = None,
        on_celebrate: Callable[[CelebrationEvent], None] | None = None,
        on_archive: Callable[[int], None] | None = None,
    ) -> None:
        """
        Args:
            min_total: Votes a topic needs before it can celebrate
            requires_critical: Only celebrate topics that were critical earlier
            notification_ttl: Seconds a notification stays in `notifications`
            archive_delay: Seconds before a celebrated topic joins `archived`
            claim: Optional shared claim; a False result suppresses the event
            release: Called when a topic leaves healthy, to undo its claim
            on_celebrate: Called with each event as it fires
            on_archive: Called with a topic id when it is archived
        """
        self.min_total = min_total
        self.requires_critical = requires_critical
        self.notification_ttl = notification_ttl
        self.archive_delay = archive_delay
        self.claim = claim
        self.release = release
        self.on_celebrate = on_celebrate
        self.on_archive = on_archive

        self.tracked: dict[int, TrackedTopic] = {}
        self.notifications: list[CelebrationEvent] = []
        self.archived: set[int] = set()
        self._handles: set[asyncio.TimerHandle] = set()

    async def observe(self, topics: Iterable[Topic]) -> list[CelebrationEvent]:
        """
        Evaluate one snapshot

        Returns:
            Events fired by this snapshot
        """
        events = []
        for topic in topics:
            event = await self._evaluate(topic)
            if event is not None:
                events.append(event)
                self._fire(event)
        return events

    async def _evaluate(self, topic: Topic) -> CelebrationEvent | None:
        health = classify_topic(topic)
        previous = self.tracked.get(topic.id)
        current = TrackedTopic(status=health.status)

        if previous is None:
            current.crossed_critical = health.status == HealthStatus.CRITICAL
            self.tracked[topic.id] = current
            if health.status != HealthStatus.HEALTHY:
                # A claim left by a viewer that went away before the topic slipped
                await self._release(topic.id)
            return None

        current.crossed_critical = (
            previous.crossed_critical or health.status == HealthStatus.CRITICAL
        )

        event = None
        if (
            previous.status != HealthStatus.HEALTHY
            and health.status == HealthStatus.HEALTHY
            and health.total >= self.min_total
            and (current.crossed_critical or not self.requires_critical)
        ):
            if await self._claim(topic.id):
                event = CelebrationEvent(
                    topic_id=topic.id,
                    topic_name=topic.name,
                    good_pct=health.good_pct,
                )
            current.crossed_critical = False
        elif previous.status == HealthStatus.HEALTHY and health.status != HealthStatus.HEALTHY:
            await self._release(topic.id)

        self.tracked[topic.id] = current
        return event

    async def _claim(self, topic_id: int) -> bool:
        if self.claim is None:
            return True
        try:
            claimed = await self.claim(topic_id)
        except TransientIOError as e:
            logger.warning("celebration_claim_failed", topic_id=topic_id, error=str(e))
            return True
        if not claimed:
            logger.debug("celebration_already_claimed", topic_id=topic_id)
        return claimed

    async def _release(self, topic_id: int) -> None:
        if self.release is None:
            return
        try:
            await self.release(topic_id)
        except TransientIOError as e:
            logger.warning("celebration_release_failed", topic_id=topic_id, error=str(e))

    def _fire(self, event: CelebrationEvent) -> None:
        logger.info(
            "topic_celebrated",
            topic_id=event.topic_id,
            topic_name=event.topic_name,
            good_pct=event.good_pct,
        )
        self.notifications.append(event)
        if self.on_celebrate is not None:
            self.on_celebrate(event)

        self._schedule(self.notification_ttl, self._dismiss, event)
        self._schedule(self.archive_delay, self._archive, event.topic_id)

    def _schedule(self, delay: float, callback: Callable[..., None], *args: object) -> None:
        handle: asyncio.TimerHandle | None = None

        def run() -> None:
            self._handles.discard(handle)
            callback(*args)

        handle = asyncio.get_running_loop().call_later(delay, run)
        self._handles.add(handle)

    def _dismiss(self, event: CelebrationEvent) -> None:
        if event in self.notifications:
            self.notifications.remove(event)

    def _archive(self, topic_id: int) -> None:
        self.archived.add(topic_id)
        logger.debug("topic_archived", topic_id=topic_id)
        if self.on_archive is not None:
            self.on_archive(topic_id)

    @property
    def pending_timers(self) -> int:
        """Notification and archive timers not yet fired"""
        return len(self._handles)

    def close(self) -> None:
        """Cancel pending notification and archive timers"""
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
