from contextlib import asynccontextmanager
import json
from typing import Any, AsyncIterator, List, Optional

import redis.asyncio
from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError
import structlog

from coach.errors import JournalError

from .base import JournalStore
from .models import AgentAction

log = structlog.get_logger(__name__)

class RedisJournalStore(JournalStore):
    """A journal store that keeps action records in Redis.

    Layout (all keys under `key_prefix`):
        <prefix>:action:<action_id>            JSON-serialized AgentAction
        <prefix>:turn:<user_id>:<turn_id>      sorted set of action ids, scored by seq
        <prefix>:seq:<user_id>:<turn_id>       counter handing out seq for the turn
    A record and its index entry are written in one MULTI/EXEC transaction.
    Records have no TTL; the journal is retained for audit.
    """

    def __init__(self, redis_url: str, key_prefix: str = "coach:journal"):
        """
        Initialize the Redis connection pool.

        Args:
            redis_url: The connection URL for the Redis instance.
            key_prefix: Namespace for every key this store writes.
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        try:
            self.redis_client = redis.asyncio.Redis.from_url(self.redis_url, decode_responses=True)
            log.info(f"RedisJournalStore initialized for URL: {self.redis_url} with prefix: {self.key_prefix}")
        except Exception as e:
            log.error(f"Failed to initialize Redis client: {e}", exc_info=True)
            self.redis_client = None

    def _action_key(self, action_id: str) -> str:
        return f"{self.key_prefix}:action:{action_id}"

    def _turn_key(self, user_id: str, turn_id: str) -> str:
        return f"{self.key_prefix}:turn:{user_id}:{turn_id}"

    def _seq_key(self, user_id: str, turn_id: str) -> str:
        return f"{self.key_prefix}:seq:{user_id}:{turn_id}"

    @asynccontextmanager
    async def _transaction(self, description: str) -> AsyncIterator[Pipeline]:
        """Yields a MULTI/EXEC pipeline; any RedisError, WatchError included, surfaces as JournalError."""
        if not self.redis_client:
            raise JournalError("Redis client not available.")
        try:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                yield pipe
        except RedisError as e:
            log.error(f"Redis transaction failed ({description}): {e}", exc_info=True)
            raise JournalError(f"Redis {description} failed: {e}") from e

    async def _execute_redis_command(self, command_name: str, *args: Any, **kwargs: Any) -> Any:
        """Helper to execute a Redis command; failures surface as JournalError."""
        if not self.redis_client:
            raise JournalError("Redis client not available.")
        try:
            method_to_call = getattr(self.redis_client, command_name)
            return await method_to_call(*args, **kwargs)
        except RedisError as e:
            log.error(f"Redis error on {command_name}: {e}", exc_info=True)
            raise JournalError(f"Redis {command_name} failed: {e}") from e

    def _deserialize(self, action_id: str, serialized: Any) -> Optional[AgentAction]:
        if serialized is None:
            return None
        if isinstance(serialized, bytes):
            serialized = serialized.decode("utf-8")
        try:
            return AgentAction.model_validate(json.loads(serialized))
        except (json.JSONDecodeError, ValueError) as e:
            # Corrupted record: report as missing so undo fails closed.
            log.error(f"Failed to deserialize action '{action_id}': {e}")
            return None

    async def insert_action(self, action: AgentAction) -> None:
        action_key = self._action_key(action.id)
        async with self._transaction(f"insert of action {action.id}") as pipe:
            await pipe.watch(action_key)
            if await pipe.exists(action_key):
                raise JournalError(f"Action {action.id} already exists.")
            seq = await pipe.incr(self._seq_key(action.user_id, action.turn_id))
            stored = action.model_copy(update={"seq": seq})
            pipe.multi()
            pipe.set(action_key, stored.model_dump_json())
            pipe.zadd(self._turn_key(action.user_id, action.turn_id), {action.id: seq})
            await pipe.execute()
        log.debug(f"Wrote action '{action.id}' to Redis", seq=seq)

    async def get_action(self, action_id: str) -> Optional[AgentAction]:
        serialized = await self._execute_redis_command('get', self._action_key(action_id))
        action = self._deserialize(action_id, serialized)
        if action is None:
            log.debug(f"Action '{action_id}' not found in Redis.")
        return action

    async def list_actions_for_turn(self, user_id: str, turn_id: str) -> List[AgentAction]:
        action_ids = await self._execute_redis_command('zrange', self._turn_key(user_id, turn_id), 0, -1)
        if not action_ids:
            return []
        serialized = await self._execute_redis_command('mget', [self._action_key(action_id) for action_id in action_ids])
        actions = []
        for action_id, value in zip(action_ids, serialized or []):
            action = self._deserialize(action_id, value)
            if action is not None:
                actions.append(action)
        return actions

    async def mark_undone(self, action_id: str, undone_at: int) -> None:
        action_key = self._action_key(action_id)
        async with self._transaction(f"undo mark of action {action_id}") as pipe:
            await pipe.watch(action_key)
            action = self._deserialize(action_id, await pipe.get(action_key))
            if action is None:
                raise JournalError(f"Action {action_id} not found.")
            updated = action.model_copy(update={"status": "undone", "undone_at": undone_at})
            pipe.multi()
            pipe.set(action_key, updated.model_dump_json(), xx=True)
            await pipe.execute()

    async def close(self) -> None:
        """
        Close the Redis connection.
        """
        if self.redis_client:
            try:
                await self.redis_client.aclose()
                log.debug("Redis connection closed.")
            except Exception as e:
                log.error(f"Error closing Redis connection: {e}", exc_info=True)
        else:
            log.warning("No Redis client to close.")
