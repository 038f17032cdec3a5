"""
Table-like record store on Redis (select / insert / update / delete)
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, cast

import redis
import redis.asyncio as aioredis
import structlog

from classpulse.errors import ConflictError, TransientIOError

logger = structlog.get_logger(__name__)

TABLES = ("sessions", "topics", "votes")


@dataclass(frozen=True)
class UniqueConstraint:
    """A column whose value may appear at most once among live rows"""

    column: str
    # Only rows whose `active_column` is truthy hold a reservation
    active_column: str | None = None

    def holds(self, row: dict[str, Any]) -> bool:
        if self.active_column is None:
            return True
        return bool(row.get(self.active_column))


UNIQUE_CONSTRAINTS: dict[str, list[UniqueConstraint]] = {
    "sessions": [UniqueConstraint("code", active_column="active")],
}


def matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    """Check that a row equals every value in the filter"""
    return all(row.get(column) == value for column, value in filters.items())


class RedisStore:
    """Async record store: one Redis hash of JSON rows per table"""

    def __init__(self, redis_client: aioredis.Redis) -> None:
        """
        Initialize the store

        Args:
            redis_client: redis.asyncio client (decode_responses=True)
        """
        self.redis = redis_client

    # Key generation helpers

    def rows_key(self, table: str) -> str:
        """Generate Redis key for a table's rows"""
        return f"tbl:{table}:rows"

    def sequence_key(self, table: str) -> str:
        """Generate Redis key for a table's id sequence"""
        return f"tbl:{table}:seq"

    def unique_key(self, table: str, column: str, value: Any) -> str:
        """Generate Redis key for a unique-value reservation"""
        return f"tbl:{table}:uniq:{column}:{value}"

    def celebration_key(self, topic_id: int, view: str) -> str:
        """Generate Redis key for a topic's celebration claim in one kind of view"""
        return f"topic:{topic_id}:celebrated:{view}"

    # Helpers

    def _check_table(self, table: str) -> None:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")

    async def next_id(self, table: str) -> int:
        """Allocate the next row id for a table"""
        return int(await self.redis.incr(self.sequence_key(table)))

    async def _reserve(self, table: str, row: dict[str, Any]) -> list[str]:
        """Reserve unique values for a row, undoing partial work on conflict"""
        reserved: list[str] = []
        for constraint in UNIQUE_CONSTRAINTS.get(table, []):
            if not constraint.holds(row):
                continue
            value = row.get(constraint.column)
            key = self.unique_key(table, constraint.column, value)
            if not await self.redis.set(key, str(row["id"]), nx=True):
                owner = await self.redis.get(key)
                if owner == str(row["id"]):
                    continue
                if reserved:
                    await self.redis.delete(*reserved)
                raise ConflictError(table, constraint.column, value)
            reserved.append(key)
        return reserved

    async def _release(self, table: str, row: dict[str, Any]) -> None:
        for constraint in UNIQUE_CONSTRAINTS.get(table, []):
            key = self.unique_key(table, constraint.column, row.get(constraint.column))
            if await self.redis.get(key) == str(row["id"]):
                await self.redis.delete(key)

    # Store operations

    async def select(
        self, table: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """
        Fetch rows matching an equality filter

        Args:
            table: Table name
            filters: Column/value pairs every returned row must equal

        Returns:
            Matching rows in insertion (id) order
        """
        self._check_table(table)
        try:
            data = await self.redis.hgetall(self.rows_key(table))
        except redis.RedisError as e:
            raise TransientIOError(f"select from {table} failed: {e}") from e

        rows = [cast(dict[str, Any], json.loads(raw)) for raw in data.values()]
        rows = [row for row in rows if matches(row, filters or {})]
        rows.sort(key=lambda row: row["id"])
        return rows

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a row, assigning `id` and `created_at` when absent

        Returns:
            The stored row

        Raises:
            ConflictError: If a unique column value is already taken
        """
        self._check_table(table)
        try:
            stored = dict(row)
            if "id" not in stored:
                stored["id"] = await self.next_id(table)
            stored.setdefault("created_at", datetime.now(UTC).isoformat())

            await self._reserve(table, stored)
            await self.redis.hset(self.rows_key(table), str(stored["id"]), json.dumps(stored))
        except redis.RedisError as e:
            raise TransientIOError(f"insert into {table} failed: {e}") from e

        return stored

    async def update(
        self, table: str, patch: dict[str, Any], filters: dict[str, Any]
    ) -> None:
        """
        Merge a patch into every matching row (no lock; last write wins)

        Raises:
            ConflictError: If the patch would duplicate a unique column value
        """
        rows = await self.select(table, filters)
        try:
            for row in rows:
                updated = {**row, **patch}
                was_reserved = [c.holds(row) for c in UNIQUE_CONSTRAINTS.get(table, [])]
                now_reserved = [c.holds(updated) for c in UNIQUE_CONSTRAINTS.get(table, [])]
                if any(now_reserved):
                    await self._reserve(table, updated)
                if any(was_reserved) and not all(now_reserved):
                    await self._release(table, row)
                await self.redis.hset(
                    self.rows_key(table), str(row["id"]), json.dumps(updated)
                )
        except redis.RedisError as e:
            raise TransientIOError(f"update of {table} failed: {e}") from e

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Remove every matching row"""
        rows = await self.select(table, filters)
        if not rows:
            return
        try:
            for row in rows:
                await self._release(table, row)
            await self.redis.hdel(self.rows_key(table), *[str(row["id"]) for row in rows])
        except redis.RedisError as e:
            raise TransientIOError(f"delete from {table} failed: {e}") from e

        logger.debug("rows_deleted", table=table, count=len(rows))
