"""
Shared FastAPI dependencies
"""

from collections.abc import AsyncGenerator
from typing import Annotated

import redis.asyncio as aioredis
from fastapi import Depends, Request, Response

import classpulse.config
from classpulse.ledger import VoteLedger
from classpulse.services.identity import CookieTokenStorage, ParticipantIdentity
from classpulse.services.vote_session import VoteStateRegistry
from classpulse.store import RedisStore

# Participant vote state survives between requests of this process
vote_states = VoteStateRegistry()


def create_redis() -> aioredis.Redis:
    """Open a Redis client for the configured URL"""
    return aioredis.from_url(classpulse.config.settings.redis_url, decode_responses=True)


# Dependency to get the record store
async def get_store() -> AsyncGenerator[RedisStore, None]:
    """Get a record store for the duration of one request"""
    redis_conn = create_redis()
    try:
        yield RedisStore(redis_conn)
    finally:
        await redis_conn.aclose()


def get_ledger(store: Annotated[RedisStore, Depends(get_store)]) -> VoteLedger:
    return VoteLedger(store)


def get_vote_states() -> VoteStateRegistry:
    return vote_states


# Dependency to resolve the caller's participant token
def get_participant_token(request: Request, response: Response) -> str:
    """Read the participant cookie, issuing a new token when absent"""
    settings = classpulse.config.settings
    storage = CookieTokenStorage(
        request,
        response,
        settings.secret_key,
        max_age=settings.token_cookie_max_age,
    )
    return ParticipantIdentity(storage).get_token()
