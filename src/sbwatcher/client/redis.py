"""Redis-backed peek-lock queue client.

Layout (all keys under `key_prefix`):
- {prefix}:queues                     SET of queue names
- {prefix}:queue:{name}               HASH queue metadata (lock_duration_ms, created_at)
- {prefix}:queue:{name}:available     LIST of message ids ready for delivery
- {prefix}:queue:{name}:locked        ZSET message id -> lock expiry (ms)
- {prefix}:queue:{name}:msg:{id}      HASH message payload
- {prefix}:queue:{name}:lock:{id}     STRING lock token (PX = lock duration)

Receiving pops an id from `available`, writes a fresh lock token and adds
the id to `locked` in one Lua script (`scripts/receive.lua`), so an id is
always in exactly one of the two. Unlock and delete only succeed while the caller's lock
token still matches the stored one (checked under WATCH), otherwise they
raise `MessageNotFoundError`. Expired locks are moved back to the front of
`available` lazily, on the next receive or lookup (`scripts/requeue.lua`).
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any

import redis.asyncio as redis
from redis.exceptions import NoScriptError, RedisError, WatchError

from sbwatcher.client.base import BaseQueueClient
from sbwatcher.config import get_settings
from sbwatcher.errors import MessageNotFoundError, QueueClientError, QueueNotFoundError
from sbwatcher.models import Message, QueueSnapshot

SCRIPTS_DIR = Path(__file__).parent / "scripts"

logger = logging.getLogger(__name__)


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RedisQueueClient(BaseQueueClient):
    """
    Peek-lock queue stored in Redis.

    Example:
        client = RedisQueueClient("redis://localhost:6379")
        await client.create_queue("orders")
        await client.send_message("orders", {"id": 1})
        message = await client.receive_message("orders")
        await client.delete_message(message)
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str | None = None,
        *,
        client: Any | None = None,
        lock_duration_ms: int | None = None,
    ) -> None:
        settings = get_settings()

        self._redis_url = redis_url or settings.redis_url
        self._key_prefix = key_prefix or settings.key_prefix
        self._lock_duration_ms = (
            settings.lock_duration_ms
            if lock_duration_ms is None
            else int(lock_duration_ms)
        )
        self._client: Any = client
        self._lock_duration_cache: dict[str, int] = {}

        # Lua script SHAs, keyed by script name
        self._scripts_loaded = False
        self._script_shas: dict[str, str] = {}

    @property
    def redis_url(self) -> str:
        return self._redis_url

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def _ensure_connected(self) -> Any:
        """Ensure Redis connection is established."""
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=False)

        if not self._scripts_loaded:
            await self._load_scripts()

        return self._client

    async def _load_scripts(self) -> None:
        """Load Lua scripts into Redis."""
        for name in ("receive", "requeue"):
            self._script_shas[name] = await self._client.script_load(
                (SCRIPTS_DIR / f"{name}.lua").read_text()
            )
        self._scripts_loaded = True
        logger.debug("Loaded Lua scripts into Redis")

    async def _evalsha(self, name: str, keys: list[str], args: list[Any]) -> Any:
        """Run a loaded script, reloading once if the server dropped it."""
        client = await self._ensure_connected()
        try:
            return await client.evalsha(self._script_shas[name], len(keys), *keys, *args)
        except NoScriptError:
            logger.debug("Lua scripts missing on server, reloading")
            await self._load_scripts()
            return await client.evalsha(self._script_shas[name], len(keys), *keys, *args)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            self._scripts_loaded = False

    # =========================================================================
    # KEYS
    # =========================================================================

    def _key(self, *parts: str) -> str:
        return ":".join((self._key_prefix, *parts))

    def _registry_key(self) -> str:
        return self._key("queues")

    def _queue_key(self, queue_name: str) -> str:
        return self._key("queue", queue_name)

    def _available_key(self, queue_name: str) -> str:
        return self._key("queue", queue_name, "available")

    def _locked_key(self, queue_name: str) -> str:
        return self._key("queue", queue_name, "locked")

    def _message_key(self, queue_name: str, message_id: str) -> str:
        return self._key("queue", queue_name, "msg", message_id)

    def _lock_key(self, queue_name: str, message_id: str) -> str:
        return self._key("queue", queue_name, "lock", message_id)

    # =========================================================================
    # ADMIN
    # =========================================================================

    async def create_queue(
        self,
        queue_name: str,
        *,
        lock_duration_ms: int | None = None,
    ) -> None:
        duration = lock_duration_ms or self._lock_duration_ms
        try:
            client = await self._ensure_connected()
            async with client.pipeline(transaction=True) as pipe:
                pipe.sadd(self._registry_key(), queue_name)
                pipe.hsetnx(self._queue_key(queue_name), "lock_duration_ms", duration)
                pipe.hsetnx(self._queue_key(queue_name), "created_at", time.time())
                await pipe.execute()
        except RedisError as e:
            raise QueueClientError(f"create_queue failed: {e}") from e
        logger.debug(f"Created queue '{queue_name}' (lock_duration_ms={duration})")

    async def send_message(
        self,
        queue_name: str,
        body: Any,
        properties: dict[str, Any] | None = None,
    ) -> str:
        message_id = uuid.uuid4().hex
        try:
            client = await self._ensure_connected()
            if not await client.sismember(self._registry_key(), queue_name):
                raise QueueNotFoundError(queue_name)
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(
                    self._message_key(queue_name, message_id),
                    mapping={
                        "body": json.dumps(body, default=str),
                        "properties": json.dumps(properties or {}, default=str),
                        "delivery_count": 0,
                        "enqueued_at": time.time(),
                    },
                )
                pipe.rpush(self._available_key(queue_name), message_id)
                await pipe.execute()
        except RedisError as e:
            raise QueueClientError(f"send_message failed: {e}") from e
        return message_id

    # =========================================================================
    # CORE
    # =========================================================================

    async def get_queue(self, queue_name: str) -> QueueSnapshot | None:
        try:
            client = await self._ensure_connected()
            if not await client.sismember(self._registry_key(), queue_name):
                return None
            await self._requeue_expired(queue_name)
            async with client.pipeline(transaction=False) as pipe:
                pipe.hgetall(self._queue_key(queue_name))
                pipe.llen(self._available_key(queue_name))
                pipe.zcard(self._locked_key(queue_name))
                meta, available, locked = await pipe.execute()
        except RedisError as e:
            raise QueueClientError(f"get_queue failed: {e}") from e

        raw: dict[str, Any] = {
            "QueueName": queue_name,
            **{_decode(k): _decode(v) for k, v in (meta or {}).items()},
            "CountDetails": {
                "ActiveMessageCount": int(available or 0),
                "LockedMessageCount": int(locked or 0),
            },
        }
        return QueueSnapshot.from_raw(queue_name, raw)

    async def receive_message(self, queue_name: str) -> Message | None:
        lock_token = uuid.uuid4().hex
        try:
            client = await self._ensure_connected()
            if not await client.sismember(self._registry_key(), queue_name):
                raise QueueNotFoundError(queue_name)
            await self._requeue_expired(queue_name)

            lock_ms = await self._queue_lock_duration(client, queue_name)
            result = await self._evalsha(
                "receive",
                [self._available_key(queue_name), self._locked_key(queue_name)],
                [_now_ms() + lock_ms, lock_ms, lock_token, self._queue_key(queue_name)],
            )
        except RedisError as e:
            raise QueueClientError(f"receive_message failed: {e}") from e

        if not result:
            return None

        message_id = _decode(result[0])
        fields = result[1:]
        data = {_decode(k): _decode(v) for k, v in zip(fields[::2], fields[1::2])}
        return Message(
            body=json.loads(data["body"]),
            message_id=message_id,
            queue_name=queue_name,
            lock_token=lock_token,
            delivery_count=int(data.get("delivery_count", 1)),
            enqueued_at=float(data["enqueued_at"]) if "enqueued_at" in data else None,
            properties=json.loads(data.get("properties", "{}")),
        )

    async def unlock_message(self, message: Message) -> None:
        queue_name = self._owned_queue(message)
        await self._resolve_lock(
            message,
            lambda pipe: pipe.lpush(self._available_key(queue_name), message.message_id),
        )

    async def delete_message(self, message: Message) -> None:
        queue_name = self._owned_queue(message)
        await self._resolve_lock(
            message,
            lambda pipe: pipe.delete(self._message_key(queue_name, message.message_id)),
        )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _owned_queue(message: Message) -> str:
        if message.lock_token is None or message.queue_name is None:
            raise QueueClientError("message was not received in peek-lock mode")
        return message.queue_name

    async def _resolve_lock(self, message: Message, finalize: Any) -> None:
        """Drop the lock of `message` if it is still ours, then run `finalize`."""
        queue_name = self._owned_queue(message)
        lock_key = self._lock_key(queue_name, message.message_id)
        try:
            client = await self._ensure_connected()
            async with client.pipeline(transaction=True) as pipe:
                await pipe.watch(lock_key)
                stored = await pipe.get(lock_key)
                if stored is None or _decode(stored) != message.lock_token:
                    await pipe.unwatch()
                    raise MessageNotFoundError(
                        f"lock lost for message {message.message_id}"
                    )
                pipe.multi()
                pipe.delete(lock_key)
                pipe.zrem(self._locked_key(queue_name), message.message_id)
                finalize(pipe)
                await pipe.execute()
        except WatchError as e:
            raise MessageNotFoundError(
                f"lock changed while resolving message {message.message_id}"
            ) from e
        except RedisError as e:
            raise QueueClientError(f"lock resolution failed: {e}") from e

    async def _requeue_expired(self, queue_name: str) -> int:
        """Move messages whose lock expired back to the front of the queue."""
        requeued = int(
            await self._evalsha(
                "requeue",
                [self._available_key(queue_name), self._locked_key(queue_name)],
                [_now_ms(), self._queue_key(queue_name)],
            )
            or 0
        )
        if requeued:
            logger.debug(f"Requeued {requeued} expired lock(s) on '{queue_name}'")
        return requeued

    async def _queue_lock_duration(self, client: Any, queue_name: str) -> int:
        cached = self._lock_duration_cache.get(queue_name)
        if cached is not None:
            return cached
        raw = await client.hget(self._queue_key(queue_name), "lock_duration_ms")
        duration = int(_decode(raw)) if raw is not None else self._lock_duration_ms
        self._lock_duration_cache[queue_name] = duration
        return duration
