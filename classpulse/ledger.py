"""
Vote ledger: per-topic counters and per-participant vote rows
"""

import json
from datetime import UTC, datetime

import redis
import structlog

from classpulse.errors import NotFoundError, TransientIOError
from classpulse.models import Topic, Vote, VoteType
from classpulse.store import RedisStore

logger = structlog.get_logger(__name__)

CELEBRATION_CLAIM_TTL = 3600


class VoteLedger:
    """Authoritative vote state, held in the record store"""

    def __init__(self, store: RedisStore) -> None:
        self.store = store

    # Reads

    async def list_topics(self, session_id: int) -> list[Topic]:
        """All topics of a session, in creation order"""
        rows = await self.store.select("topics", {"session_id": session_id})
        return [Topic(**row) for row in rows]

    async def get_topic(self, topic_id: int) -> Topic:
        rows = await self.store.select("topics", {"id": topic_id})
        if not rows:
            raise NotFoundError(f"Topic {topic_id} not found")
        return Topic(**rows[0])

    async def find_votes(self, topic_id: int, token: str) -> list[Vote]:
        """Vote rows of one participant on one topic (normally zero or one)"""
        rows = await self.store.select(
            "votes", {"topic_id": topic_id, "session_token": token}
        )
        return [Vote(**row) for row in rows]

    async def votes_by_participant(
        self, token: str, session_id: int | None = None
    ) -> dict[int, VoteType]:
        """
        Map topic id to the participant's current vote

        Args:
            token: Participant token
            session_id: Restrict to topics of this session when given

        Returns:
            Dict mapping topic id to vote type (latest row wins)
        """
        rows = await self.store.select("votes", {"session_token": token})
        votes = {row["topic_id"]: VoteType(row["vote_type"]) for row in rows}

        if session_id is not None:
            topic_ids = {topic.id for topic in await self.list_topics(session_id)}
            votes = {tid: vt for tid, vt in votes.items() if tid in topic_ids}

        return votes

    async def votes_for_session(self, session_id: int) -> list[Vote]:
        """Every vote row cast on the session's topics"""
        topic_ids = {topic.id for topic in await self.list_topics(session_id)}
        rows = await self.store.select("votes")
        return [Vote(**row) for row in rows if row["topic_id"] in topic_ids]

    # Single-step writes (each one request, no transaction)

    async def delete_vote(self, topic_id: int, token: str) -> None:
        await self.store.delete("votes", {"topic_id": topic_id, "session_token": token})

    async def insert_vote(self, topic_id: int, token: str, vote_type: VoteType) -> Vote:
        row = await self.store.insert(
            "votes",
            {
                "topic_id": topic_id,
                "session_token": token,
                "vote_type": vote_type.value,
            },
        )
        return Vote(**row)

    async def adjust_counter(self, topic_id: int, vote_type: VoteType, delta: int) -> int:
        """
        Add `delta` to one counter of a topic, floored at 0

        Read-then-write without a lock: two participants adjusting the same
        counter at the same instant can lose one of the updates.

        Returns:
            The value written
        """
        topic = await self.get_topic(topic_id)
        field = vote_type.counter
        value = max(0, getattr(topic, field) + delta)
        await self.store.update("topics", {field: value}, {"id": topic_id})
        return value

    # Atomic vote change

    async def change_vote_atomic(
        self, topic_id: int, token: str, vote_type: VoteType
    ) -> VoteType | None:
        """
        Replace a participant's vote and adjust both counters in one transaction

        The prior vote is read from the stored rows rather than trusted from
        the caller, so a desynchronized client heals here.

        Returns:
            The vote type that was replaced, or None
        """
        r = self.store.redis
        topics_key = self.store.rows_key("topics")
        votes_key = self.store.rows_key("votes")

        try:
            new_id = await self.store.next_id("votes")
            async with r.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(topics_key, votes_key)

                        raw_topic = await pipe.hget(topics_key, str(topic_id))
                        if raw_topic is None:
                            raise NotFoundError(f"Topic {topic_id} not found")
                        topic = json.loads(raw_topic)

                        stale = []
                        previous: VoteType | None = None
                        for vote_id, raw in (await pipe.hgetall(votes_key)).items():
                            row = json.loads(raw)
                            if row["topic_id"] == topic_id and row["session_token"] == token:
                                stale.append(vote_id)
                                previous = VoteType(row["vote_type"])

                        if previous is not None:
                            field = previous.counter
                            topic[field] = max(0, topic.get(field, 0) - 1)
                        topic[vote_type.counter] = topic.get(vote_type.counter, 0) + 1

                        vote_row = {
                            "id": new_id,
                            "topic_id": topic_id,
                            "session_token": token,
                            "vote_type": vote_type.value,
                            "created_at": datetime.now(UTC).isoformat(),
                        }

                        pipe.multi()
                        if stale:
                            pipe.hdel(votes_key, *stale)
                        pipe.hset(votes_key, str(new_id), json.dumps(vote_row))
                        pipe.hset(topics_key, str(topic_id), json.dumps(topic))
                        await pipe.execute()
                        return previous
                    except redis.WatchError:
                        logger.debug("vote_change_retry", topic_id=topic_id)
                        continue
        except redis.RedisError as e:
            raise TransientIOError(f"vote change failed: {e}") from e

    # Celebration claims

    async def claim_celebration(
        self, topic_id: int, view: str, ttl: int = CELEBRATION_CLAIM_TTL
    ) -> bool:
        """
        Claim the right to announce a topic's recovery in one kind of view

        Args:
            topic_id: Topic that became healthy
            view: View policy name; each kind of view claims separately
            ttl: Seconds before an unreleased claim lapses

        Returns:
            False if another viewer of the same kind holds the claim
        """
        key = self.store.celebration_key(topic_id, view)
        try:
            return bool(await self.store.redis.set(key, "1", nx=True, ex=ttl))
        except redis.RedisError as e:
            raise TransientIOError(f"celebration claim failed: {e}") from e

    async def release_celebration(self, topic_id: int, view: str) -> None:
        """Allow a future recovery of this topic to be announced again"""
        try:
            await self.store.redis.delete(self.store.celebration_key(topic_id, view))
        except redis.RedisError as e:
            raise TransientIOError(f"celebration release failed: {e}") from e
