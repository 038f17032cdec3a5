"""
Student routes for session participation
"""

import math
from typing import Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import classpulse.config
from classpulse.deps import get_ledger, get_participant_token, get_store, get_vote_states
from classpulse.errors import InactiveError, NotFoundError, TransientIOError
from classpulse.ledger import VoteLedger
from classpulse.models import Session, Topic, TopicView, VoteType
from classpulse.services import sessions
from classpulse.services.health import build_view, sort_by_total
from classpulse.services.vote_session import VoteOutcome, VoteSession, VoteStateRegistry
from classpulse.store import RedisStore

router = APIRouter()


# Request/Response models

class JoinResponse(BaseModel):
    """Response for joining a session"""
    session: Session


class TopicsResponse(BaseModel):
    """Response for the student topic list"""
    topics: list[TopicView]
    your_votes: dict[int, VoteType]


class TopicCreateRequest(BaseModel):
    """Request to suggest a topic"""
    name: str


class VoteRequest(BaseModel):
    """Request to cast a vote"""
    topic_id: int
    vote_type: VoteType


class VoteResponse(BaseModel):
    """Response for vote submission"""
    status: str
    topic_id: int
    vote_type: VoteType | None


def rejection(
    response: Response,
    status_code: int,
    content: dict,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """JSON error response carrying any cookie already set on `response`"""
    rejected = JSONResponse(status_code=status_code, content=content, headers=headers)
    for cookie in response.headers.getlist("set-cookie"):
        rejected.headers.append("set-cookie", cookie)
    return rejected


async def load_active_session(store: RedisStore, session_id: int) -> Session:
    try:
        session = await sessions.get_session(store, session_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    if not session.active:
        raise HTTPException(status_code=410, detail="This session has ended.")
    return session


@router.post("/join")
async def join_session(
    store: Annotated[RedisStore, Depends(get_store)],
    token: Annotated[str, Depends(get_participant_token)],
    code: str = Form(...),
) -> JoinResponse:
    """
    Join a session by its 4-digit code; also issues the participant cookie
    """
    try:
        session = await sessions.join_session(store, code)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Session not found. Check your code.")
    except InactiveError:
        raise HTTPException(status_code=410, detail="This session has ended.")

    return JoinResponse(session=session)


@router.get("/s/{session_id}/topics")
async def list_topics(
    session_id: int,
    store: Annotated[RedisStore, Depends(get_store)],
    ledger: Annotated[VoteLedger, Depends(get_ledger)],
    token: Annotated[str, Depends(get_participant_token)],
    registry: Annotated[VoteStateRegistry, Depends(get_vote_states)],
) -> TopicsResponse:
    """
    Current topics (most votes first) and the caller's own votes
    """
    await load_active_session(store, session_id)
    policy = classpulse.config.settings.get_view("student")
    assert policy is not None

    topics = sort_by_total(await ledger.list_topics(session_id))

    states, _ = registry.get(token)
    vote_session = VoteSession(ledger, token, states=states)
    await vote_session.load(session_id)
    topic_ids = {topic.id for topic in topics}

    return TopicsResponse(
        topics=build_view(topics, policy),
        your_votes={
            tid: vt for tid, vt in vote_session.current_votes().items() if tid in topic_ids
        },
    )


@router.post("/s/{session_id}/topics", status_code=201)
async def suggest_topic(
    session_id: int,
    body: TopicCreateRequest,
    store: Annotated[RedisStore, Depends(get_store)],
) -> Topic:
    """
    Add a student-suggested topic
    """
    await load_active_session(store, session_id)
    try:
        return await sessions.create_topic(
            store,
            session_id,
            body.name,
            created_by_student=True,
            max_length=classpulse.config.settings.topic_name_max_length,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except InactiveError:
        raise HTTPException(status_code=410, detail="This session has ended.")


@router.post("/s/{session_id}/vote", response_model=None)
async def cast_vote(
    session_id: int,
    body: VoteRequest,
    store: Annotated[RedisStore, Depends(get_store)],
    ledger: Annotated[VoteLedger, Depends(get_ledger)],
    token: Annotated[str, Depends(get_participant_token)],
    registry: Annotated[VoteStateRegistry, Depends(get_vote_states)],
    response: Response,
) -> VoteResponse | JSONResponse:
    """
    Cast or change the caller's vote on a topic
    """
    await load_active_session(store, session_id)
    settings = classpulse.config.settings

    try:
        topic = await ledger.get_topic(body.topic_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Topic not found")
    if topic.session_id != session_id:
        raise HTTPException(status_code=404, detail="Topic not found")

    states, created = registry.get(token)
    vote_session = VoteSession(
        ledger,
        token,
        cooldown=settings.vote_cooldown,
        atomic=settings.atomic_vote_writes,
        states=states,
    )
    if created:
        await vote_session.load(session_id)

    try:
        outcome = await vote_session.cast_vote(body.topic_id, body.vote_type)
    except TransientIOError:
        raise HTTPException(
            status_code=503,
            detail="Your vote could not be saved. Please try again.",
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Topic not found")

    if outcome == VoteOutcome.COOLDOWN:
        retry_after = math.ceil(vote_session.retry_after(body.topic_id))
        return rejection(
            response,
            status_code=429,
            content={
                "detail": "Please wait a moment before changing your vote again.",
                "retry_after": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )

    if outcome == VoteOutcome.PENDING:
        return rejection(
            response,
            status_code=409,
            content={"detail": "Your previous vote on this topic is still being saved."},
        )

    return VoteResponse(
        status=outcome.value,
        topic_id=body.topic_id,
        vote_type=vote_session.current_vote(body.topic_id),
    )
