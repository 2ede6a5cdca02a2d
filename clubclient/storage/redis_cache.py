from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from clubclient.logging import get_logger
from clubclient.storage.common import as_key_list
from clubclient.storage.errors import StorageError

logger = get_logger(__name__)


class RedisKeyValueStore:
    """Redis-backed credential storage.

    Multi-key writes and removals run inside a MULTI/EXEC pipeline so other
    readers never see a partial update. All keys are namespaced with
    ``key_prefix`` so several clients can share one database.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "clubclient:",
        socket_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        client: Any = None,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before the store is used."""
        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get_item(self, key: str) -> Optional[str]:
        values = await self.get_items([key])
        return values[key]

    async def get_items(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        wanted = as_key_list(keys)
        try:
            values = await self.client.mget([self._key(key) for key in wanted])
        except RedisError as exc:
            raise StorageError("redis read failed", {"keys": wanted}) from exc
        return dict(zip(wanted, values))

    async def set_item(self, key: str, value: str) -> None:
        await self.set_items({key: value})

    async def set_items(self, items: Mapping[str, str]) -> None:
        as_key_list(items.keys())
        if not items:
            return
        pipe = self.client.pipeline(transaction=True)
        for key, value in items.items():
            pipe.set(self._key(key), value)
        try:
            await pipe.execute()
        except RedisError as exc:
            raise StorageError("redis write failed", {"keys": list(items)}) from exc

    async def remove_items(self, keys: Iterable[str]) -> None:
        doomed = as_key_list(keys)
        if not doomed:
            return
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(*[self._key(key) for key in doomed])
        try:
            await pipe.execute()
        except RedisError as exc:
            raise StorageError("redis delete failed", {"keys": doomed}) from exc

    async def close(self) -> None:
        await self.client.aclose()
