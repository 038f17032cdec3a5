"""
Projector snapshot and Server-Sent Events stream of topic snapshots
"""

import asyncio
import json
from functools import partial
from typing import Annotated, Any, AsyncGenerator

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

import classpulse.config
from classpulse.config import ViewPolicy
from classpulse.deps import create_redis, get_ledger, get_store
from classpulse.errors import NotFoundError
from classpulse.ledger import VoteLedger
from classpulse.models import (
    EventType,
    HealthStatus,
    Session,
    SnapshotEvent,
    Topic,
    TopicView,
)
from classpulse.services import sessions
from classpulse.services.celebration import CelebrationDetector
from classpulse.services.health import build_view, sort_by_total
from classpulse.services.poll_sync import PollSync
from classpulse.store import RedisStore

logger = structlog.get_logger(__name__)

router = APIRouter()


class ProjectorResponse(BaseModel):
    """Response for the projector view"""
    session: Session
    topics: list[TopicView]
    total_votes: int
    critical: int
    healthy: int


def get_policy(view: str) -> ViewPolicy:
    policy = classpulse.config.settings.get_view(view)
    if policy is None:
        raise HTTPException(status_code=404, detail=f"Unknown view: {view}")
    return policy


def format_event(event_type: EventType, data: dict[str, Any]) -> str:
    """Format one SSE event"""
    sse_event = f"event: {event_type.value}\n"
    sse_event += f"data: {json.dumps(data)}\n\n"
    return sse_event


@router.get("/projector/{session_id}")
async def projector(
    session_id: int,
    store: Annotated[RedisStore, Depends(get_store)],
    ledger: Annotated[VoteLedger, Depends(get_ledger)],
) -> ProjectorResponse:
    """
    Every topic, most urgent first
    """
    try:
        session = await sessions.get_session(store, session_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")

    topics = sort_by_total(await ledger.list_topics(session_id))
    views = build_view(topics, get_policy("projector"))

    return ProjectorResponse(
        session=session,
        topics=views,
        total_votes=sum(topic.total for topic in topics),
        critical=sum(1 for v in views if v.health.status == HealthStatus.CRITICAL),
        healthy=sum(1 for v in views if v.health.status == HealthStatus.HEALTHY),
    )


async def event_generator(
    session_id: int,
    policy: ViewPolicy,
    ledger: VoteLedger | None = None,
) -> AsyncGenerator[str, None]:
    """
    Generate SSE events from polled topic snapshots

    Args:
        session_id: Session to watch
        policy: View policy deciding filtering and celebration rules
        ledger: Ledger to poll; a dedicated Redis connection when omitted

    Yields:
        SSE formatted event strings
    """
    settings = classpulse.config.settings
    redis_conn = None
    if ledger is None:
        redis_conn = create_redis()
        ledger = VoteLedger(RedisStore(redis_conn))

    queue: asyncio.Queue[str] = asyncio.Queue()

    detector = CelebrationDetector(
        min_total=policy.celebration_min_total,
        requires_critical=policy.celebration_requires_critical,
        notification_ttl=settings.celebration_notification_ttl,
        archive_delay=settings.celebration_archive_delay,
        claim=partial(
            ledger.claim_celebration, view=policy.name, ttl=settings.celebration_claim_ttl
        ),
        release=partial(ledger.release_celebration, view=policy.name),
        on_celebrate=lambda event: queue.put_nowait(
            format_event(EventType.CELEBRATION, event.model_dump())
        ),
        on_archive=lambda topic_id: queue.put_nowait(
            format_event(EventType.ARCHIVED, {"topic_id": topic_id})
        ),
    )

    async def on_update(topics: list[Topic]) -> None:
        snapshot = SnapshotEvent(
            session_id=session_id,
            topics=build_view(topics, policy, detector.archived),
            archived=sorted(detector.archived),
        )
        queue.put_nowait(format_event(EventType.SNAPSHOT, snapshot.model_dump(mode="json")))
        if policy.celebrate:
            await detector.observe(topics)

    poll = PollSync(ledger.list_topics, interval=settings.poll_interval)

    try:
        # Send initial comment to keep connection alive
        yield ": connected\n\n"

        poll.start(session_id, on_update)
        logger.info("stream_opened", session_id=session_id, view=policy.name)

        while True:
            yield await queue.get()

    except asyncio.CancelledError:
        # Client disconnected
        pass
    finally:
        poll.stop()
        detector.close()
        if redis_conn is not None:
            await redis_conn.aclose()
        logger.info("stream_closed", session_id=session_id, view=policy.name)


@router.get("/stream/{session_id}")
async def topic_stream(
    session_id: int,
    store: Annotated[RedisStore, Depends(get_store)],
    view: Annotated[str, Query()] = "projector",
) -> StreamingResponse:
    """
    SSE stream of snapshots, celebrations and archivals for one viewer
    """
    policy = get_policy(view)
    try:
        await sessions.get_session(store, session_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")

    return StreamingResponse(
        event_generator(session_id, policy),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
