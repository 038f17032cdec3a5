"""Session lifecycle: creation with unique codes, join by code, topics."""

from __future__ import annotations

import re
import secrets

import structlog

from classpulse.errors import ConflictError, InactiveError, NotFoundError
from classpulse.models import Session, Topic
from classpulse.store import RedisStore

logger = structlog.get_logger(__name__)

CODE_PATTERN = re.compile(r"^\d{4}$")
TOPIC_NAME_MAX_LENGTH = 100


def generate_session_code() -> str:
    """Random 4-digit code in 1000..9999"""
    return str(1000 + secrets.randbelow(9000))


def validate_code(code: str) -> bool:
    return bool(CODE_PATTERN.match(code))


def clean_topic_name(name: str, max_length: int = TOPIC_NAME_MAX_LENGTH) -> str:
    """Strip a topic name and check its length (1..max_length)"""
    cleaned = name.strip()
    if not cleaned:
        raise ValueError("Topic name cannot be empty")
    if len(cleaned) > max_length:
        raise ValueError(f"Topic name must be {max_length} characters or less")
    return cleaned


async def create_session(
    store: RedisStore,
    subject: str,
    teacher_name: str | None = None,
    initial_topics: list[str] | None = None,
    max_topic_length: int = TOPIC_NAME_MAX_LENGTH,
) -> tuple[Session, list[Topic]]:
    """
    Create a session and its initial topics

    The code is regenerated until the store accepts it as unique among active
    sessions.

    Args:
        store: Record store
        subject: Class or subject name
        teacher_name: Optional instructor name
        initial_topics: Topic names; blank entries are dropped
        max_topic_length: Maximum topic name length

    Returns:
        The stored session and topics
    """
    subject = subject.strip()
    if not subject:
        raise ValueError("Subject cannot be empty")

    names = [
        clean_topic_name(name, max_topic_length)
        for name in (initial_topics or [])
        if name.strip()
    ]

    while True:
        code = generate_session_code()
        try:
            row = await store.insert(
                "sessions",
                {
                    "code": code,
                    "subject": subject,
                    "teacher_name": (teacher_name or "").strip() or None,
                    "active": True,
                },
            )
            break
        except ConflictError:
            logger.debug("session_code_collision", code=code)

    session = Session(**row)
    topics = [
        Topic(**await store.insert("topics", new_topic_row(session.id, name, False)))
        for name in names
    ]

    logger.info("session_created", session_id=session.id, code=code, topics=len(topics))
    return session, topics


def new_topic_row(session_id: int, name: str, created_by_student: bool) -> dict:
    return {
        "session_id": session_id,
        "name": name,
        "created_by_student": created_by_student,
        "votes_bad": 0,
        "votes_understanding": 0,
        "votes_good": 0,
    }


async def get_session(store: RedisStore, session_id: int) -> Session:
    rows = await store.select("sessions", {"id": session_id})
    if not rows:
        raise NotFoundError(f"Session {session_id} not found")
    return Session(**rows[0])


async def join_session(store: RedisStore, code: str) -> Session:
    """
    Look up an active session by code

    Raises:
        ValueError: If the code is not 4 digits
        NotFoundError: If no session has this code
        InactiveError: If the only sessions with this code have ended
    """
    code = code.strip()
    if not validate_code(code):
        raise ValueError("Please enter a 4-digit code")

    rows = await store.select("sessions", {"code": code})
    if not rows:
        raise NotFoundError(f"No session with code {code}")

    for row in rows:
        if row.get("active"):
            return Session(**row)
    raise InactiveError(f"Session {code} has ended")


async def create_topic(
    store: RedisStore,
    session_id: int,
    name: str,
    created_by_student: bool = True,
    max_length: int = TOPIC_NAME_MAX_LENGTH,
) -> Topic:
    """Add a topic to an active session"""
    name = clean_topic_name(name, max_length)
    session = await get_session(store, session_id)
    if not session.active:
        raise InactiveError(f"Session {session_id} has ended")

    row = await store.insert("topics", new_topic_row(session_id, name, created_by_student))
    logger.info(
        "topic_created",
        session_id=session_id,
        topic_id=row["id"],
        created_by_student=created_by_student,
    )
    return Topic(**row)


async def end_session(store: RedisStore, session_id: int) -> Session:
    """Deactivate a session; its code becomes free for reuse"""
    session = await get_session(store, session_id)
    if session.active:
        await store.update("sessions", {"active": False}, {"id": session_id})
        logger.info("session_ended", session_id=session_id, code=session.code)
    return session.model_copy(update={"active": False})
