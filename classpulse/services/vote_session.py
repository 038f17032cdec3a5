"""
Per-participant vote state machine

Each topic carries the participant's current vote, the time of the last
accepted vote and a pending flag. A vote change is applied locally first and
rolled back if any store call fails.
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from classpulse.ledger import VoteLedger
from classpulse.models import VoteType

logger = structlog.get_logger(__name__)

DEFAULT_COOLDOWN = 1.5


class VoteOutcome(str, Enum):
    """Result of a cast_vote call"""

    ACCEPTED = "accepted"
    PENDING = "pending"  # Another change on this topic is in flight
    COOLDOWN = "cooldown"  # Too soon after the previous change


@dataclass
class TopicVoteState:
    current_vote: VoteType | None = None
    last_vote_at: float | None = None
    pending: bool = False


class VoteSession:
    """One participant's votes across the topics of a session"""

    def __init__(
        self,
        ledger: VoteLedger,
        token: str,
        cooldown: float = DEFAULT_COOLDOWN,
        atomic: bool = False,
        clock: Callable[[], float] = time.monotonic,
        states: dict[int, TopicVoteState] | None = None,
    ) -> None:
        """
        Args:
            ledger: Vote ledger to write through
            token: Participant token
            cooldown: Minimum seconds between accepted votes on one topic
            atomic: Apply each change as a single ledger transaction
            clock: Monotonic time source
            states: Per-topic state to continue from, shared between instances
        """
        self.ledger = ledger
        self.token = token
        self.cooldown = cooldown
        self.atomic = atomic
        self.clock = clock
        self.closed = False
        self._topics: dict[int, TopicVoteState] = states if states is not None else {}

    def state(self, topic_id: int) -> TopicVoteState:
        return self._topics.setdefault(topic_id, TopicVoteState())

    def current_vote(self, topic_id: int) -> VoteType | None:
        return self.state(topic_id).current_vote

    def current_votes(self) -> dict[int, VoteType]:
        return {
            topic_id: state.current_vote
            for topic_id, state in self._topics.items()
            if state.current_vote is not None
        }

    def retry_after(self, topic_id: int) -> float:
        """Seconds until the cool-down on a topic ends (0 if none)"""
        last = self.state(topic_id).last_vote_at
        if last is None:
            return 0.0
        return max(0.0, self.cooldown - (self.clock() - last))

    async def load(self, session_id: int | None = None) -> None:
        """Seed current votes from the participant's stored vote rows"""
        votes = await self.ledger.votes_by_participant(self.token, session_id)
        for topic_id, vote_type in votes.items():
            state = self.state(topic_id)
            if not state.pending:
                state.current_vote = vote_type

    def close(self) -> None:
        """Stop applying results of in-flight writes to local state"""
        self.closed = True

    async def cast_vote(self, topic_id: int, vote_type: VoteType) -> VoteOutcome:
        """
        Record a vote, replacing any previous vote on the topic

        Returns:
            ACCEPTED, or PENDING / COOLDOWN when the call was a no-op

        Raises:
            TransientIOError: If the store failed; local state is rolled back
            NotFoundError: If the topic does not exist; local state is rolled back
        """
        state = self.state(topic_id)

        if state.pending:
            logger.debug("vote_rejected_pending", topic_id=topic_id)
            return VoteOutcome.PENDING

        now = self.clock()
        if state.last_vote_at is not None and now - state.last_vote_at < self.cooldown:
            logger.debug("vote_rejected_cooldown", topic_id=topic_id)
            return VoteOutcome.COOLDOWN

        previous = state.current_vote
        state.last_vote_at = now
        state.pending = True
        state.current_vote = vote_type

        try:
            if self.atomic:
                await self.ledger.change_vote_atomic(topic_id, self.token, vote_type)
            else:
                await self._change_vote(topic_id, previous, vote_type)
        except BaseException as e:
            # Includes cancellation
            if not self.closed:
                state.current_vote = previous
            logger.warning(
                "vote_failed",
                topic_id=topic_id,
                vote_type=vote_type.value,
                error=repr(e),
            )
            raise
        finally:
            if not self.closed:
                state.pending = False

        logger.info(
            "vote_cast",
            topic_id=topic_id,
            vote_type=vote_type.value,
            previous=previous.value if previous else None,
        )
        return VoteOutcome.ACCEPTED

    async def _change_vote(
        self, topic_id: int, previous: VoteType | None, vote_type: VoteType
    ) -> None:
        # Separate requests; counters may be briefly out of step with vote rows
        if previous is not None:
            await self.ledger.delete_vote(topic_id, self.token)
            await self.ledger.adjust_counter(topic_id, previous, -1)

        await self.ledger.insert_vote(topic_id, self.token, vote_type)
        await self.ledger.adjust_counter(topic_id, vote_type, 1)


class VoteStateRegistry:
    """Keeps each participant's per-topic vote state between requests"""

    def __init__(self, max_participants: int = 10000) -> None:
        self.max_participants = max_participants
        self._states: OrderedDict[str, dict[int, TopicVoteState]] = OrderedDict()

    def get(self, token: str) -> tuple[dict[int, TopicVoteState], bool]:
        """
        Get a participant's state map

        Returns:
            Tuple of (state map, created) where created is True for a new entry
        """
        if token in self._states:
            self._states.move_to_end(token)
            return self._states[token], False

        states: dict[int, TopicVoteState] = {}
        self._states[token] = states
        if len(self._states) > self.max_participants:
            self._states.popitem(last=False)
        return states, True

    def clear(self) -> None:
        self._states.clear()
