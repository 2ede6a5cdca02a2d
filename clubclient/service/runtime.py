from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

import httpx

from clubclient.config import Settings, TokenStoreBackend, get_settings, reset_settings_cache
from clubclient.logging import get_logger
from clubclient.service.client import ApiClient
from clubclient.service.events import AuthEvents, get_auth_events, reset_auth_events
from clubclient.service.resources import ClubAPI
from clubclient.service.session import SessionManager
from clubclient.service.token_store import TokenStore
from clubclient.storage.common import KeyValueStore
from clubclient.storage.file import FileKeyValueStore
from clubclient.storage.memory import MemoryKeyValueStore
from clubclient.storage.redis_cache import RedisKeyValueStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password of a connection URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse(
                (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
            )
        return url
    except ValueError:
        return "***url_parse_error***"


def build_storage(settings: Settings) -> KeyValueStore:
    backend = settings.token_store_backend
    if backend == TokenStoreBackend.REDIS:
        store = RedisKeyValueStore(settings.redis_url, key_prefix=settings.redis_key_prefix)
        try:
            store.verify_connection()
        except Exception as exc:
            logger.error(
                "runtime_storage_init_failed",
                store_type=backend.value,
                redis_url=_mask_url_password(settings.redis_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise RuntimeError(
                "Redis token store is unreachable; start Redis or set CLUB_TOKEN_STORE=file"
            ) from exc
        return store
    if backend == TokenStoreBackend.FILE:
        return FileKeyValueStore(settings.token_store_path)
    return MemoryKeyValueStore()


class Runtime:
    """Holds the client-side singletons wired from settings."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        storage: Optional[KeyValueStore] = None,
        events: Optional[AuthEvents] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or build_storage(self.settings)
        self.token_store = TokenStore(self.storage)
        self.events = events or get_auth_events()
        self.client = ApiClient.from_settings(
            self.settings, self.token_store, events=self.events, transport=transport
        )
        self.session = SessionManager(self.client)
        self.session.start()
        self.api = ClubAPI(self.client)
        logger.info(
            "runtime_initialized",
            api_base_url=self.settings.api_base_url,
            store_type=self.settings.token_store_backend.value,
        )

    async def aclose(self) -> None:
        self.session.close()
        await self.client.aclose()
        if isinstance(self.storage, RedisKeyValueStore):
            await self.storage.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> None:
    """Drop the singleton and cached settings so tests start from a clean slate."""
    global runtime
    with _runtime_lock:
        runtime = None
        reset_settings_cache()
        reset_auth_events()
