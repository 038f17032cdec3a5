"""
Pydantic models for the application
"""

from enum import Enum

from pydantic import BaseModel, Field


class VoteType(str, Enum):
    """A participant's understanding of a topic"""

    BAD = "bad"  # Need help
    UNDERSTANDING = "understanding"  # Getting it
    GOOD = "good"  # Clear

    @property
    def counter(self) -> str:
        """Name of the topic column that tallies this vote type"""
        return f"votes_{self.value}"


class HealthStatus(str, Enum):
    """Traffic-light classification of a topic"""

    CRITICAL = "critical"
    CAUTION = "caution"
    HEALTHY = "healthy"
    NEUTRAL = "neutral"  # No votes yet


# Display order across a topic list, most urgent first
STATUS_PRIORITY: dict[HealthStatus, int] = {
    HealthStatus.CRITICAL: 0,
    HealthStatus.CAUTION: 1,
    HealthStatus.HEALTHY: 2,
    HealthStatus.NEUTRAL: 3,
}


class SortOrder(str, Enum):
    """How a view orders its topics"""

    PRIORITY = "priority"  # Health status, then total votes
    VOTES = "votes"  # Total votes only


class Session(BaseModel):
    """A live feedback session"""

    id: int
    code: str
    subject: str
    teacher_name: str | None = None
    active: bool = True
    created_at: str | None = None


class Topic(BaseModel):
    """A discussion item students vote on"""

    id: int
    session_id: int
    name: str
    created_by_student: bool = False
    votes_bad: int = 0
    votes_understanding: int = 0
    votes_good: int = 0
    created_at: str | None = None

    @property
    def total(self) -> int:
        return self.votes_bad + self.votes_understanding + self.votes_good


class Vote(BaseModel):
    """One participant's vote on one topic"""

    id: int
    topic_id: int
    session_token: str
    vote_type: VoteType
    created_at: str | None = None


class TopicHealth(BaseModel):
    """Classification of a topic's vote counters"""

    status: HealthStatus
    total: int
    bad_pct: int = 0
    understanding_pct: int = 0
    good_pct: int = 0


class TopicView(BaseModel):
    """A topic together with its health, as shown to viewers"""

    topic: Topic
    health: TopicHealth


class CelebrationEvent(BaseModel):
    """A topic became healthy"""

    topic_id: int
    topic_name: str
    good_pct: int


# SSE Event Models


class EventType(str, Enum):
    """Types of SSE events"""

    SNAPSHOT = "snapshot"
    CELEBRATION = "celebration"
    ARCHIVED = "archived"


class SnapshotEvent(BaseModel):
    """Full topic list as of one poll cycle"""

    session_id: int
    topics: list[TopicView] = Field(default_factory=list)
    archived: list[int] = Field(default_factory=list)
