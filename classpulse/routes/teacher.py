"""
Instructor routes: session creation, dashboard, report
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, field_validator

import classpulse.config
from classpulse.deps import get_ledger, get_store
from classpulse.errors import NotFoundError
from classpulse.ledger import VoteLedger
from classpulse.models import Session, Topic, TopicView
from classpulse.services import sessions
from classpulse.services.health import build_view, sort_by_total
from classpulse.services.report import export_csv
from classpulse.store import RedisStore

router = APIRouter()


# Request/Response models

class SessionCreateRequest(BaseModel):
    """Request to create a new session"""
    subject: str = Field(min_length=1, max_length=200)
    teacher_name: str | None = Field(default=None, max_length=100)
    topics: list[str] = Field(default_factory=list)

    @field_validator("subject")
    @classmethod
    def validate_subject_not_blank(cls, v):
        """Validate that subject is not only whitespace"""
        if len(v.strip()) == 0:
            raise ValueError("Subject cannot be empty")
        return v


class SessionCreateResponse(BaseModel):
    """Response for session creation"""
    session: Session
    topics: list[Topic]


class DashboardResponse(BaseModel):
    """Response for the instructor dashboard"""
    session: Session
    topics: list[TopicView]
    active_topics: int
    total_votes: int


async def load_session(store: RedisStore, session_id: int) -> Session:
    try:
        return await sessions.get_session(store, session_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.post("/teacher/sessions", status_code=201)
async def create_session(
    body: SessionCreateRequest,
    store: Annotated[RedisStore, Depends(get_store)],
) -> SessionCreateResponse:
    """
    Create a session with its initial topics
    """
    try:
        session, topics = await sessions.create_session(
            store,
            subject=body.subject,
            teacher_name=body.teacher_name,
            initial_topics=body.topics,
            max_topic_length=classpulse.config.settings.topic_name_max_length,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return SessionCreateResponse(session=session, topics=topics)


@router.get("/teacher/{session_id}")
async def get_session(
    session_id: int,
    store: Annotated[RedisStore, Depends(get_store)],
) -> Session:
    """
    Session details (code, subject, active flag)
    """
    return await load_session(store, session_id)


@router.get("/teacher/{session_id}/dashboard")
async def dashboard(
    session_id: int,
    store: Annotated[RedisStore, Depends(get_store)],
    ledger: Annotated[VoteLedger, Depends(get_ledger)],
) -> DashboardResponse:
    """
    Current topics with health, filtered and ordered by the dashboard policy

    Celebrations and archival are per-viewer and arrive over the stream.
    """
    session = await load_session(store, session_id)
    policy = classpulse.config.settings.get_view("dashboard")
    assert policy is not None

    topics = sort_by_total(await ledger.list_topics(session_id))
    views = build_view(topics, policy)

    return DashboardResponse(
        session=session,
        topics=views,
        active_topics=len(views),
        total_votes=sum(view.health.total for view in views),
    )


@router.post("/teacher/{session_id}/end")
async def end_session(
    session_id: int,
    store: Annotated[RedisStore, Depends(get_store)],
) -> Session:
    """
    End a session; students can no longer join it
    """
    await load_session(store, session_id)
    return await sessions.end_session(store, session_id)


@router.get("/teacher/{session_id}/export.csv")
async def export_report(
    session_id: int,
    store: Annotated[RedisStore, Depends(get_store)],
    ledger: Annotated[VoteLedger, Depends(get_ledger)],
) -> PlainTextResponse:
    """
    Download the per-topic vote report as CSV
    """
    session = await load_session(store, session_id)
    content = await export_csv(ledger, session_id)

    return PlainTextResponse(
        content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="classpulse-{session.code}.csv"'
        },
    )
