from __future__ import annotations

import json
from typing import Optional

from clubclient.logging import get_logger
from clubclient.storage.common import (
    AUTH_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    SESSION_KEYS,
    USER_DATA_KEY,
    USER_ROLE_KEY,
    KeyValueStore,
)
from clubclient.storage.errors import StorageError
from clubclient.storage.models import TokenPair, UserProfile

logger = get_logger(__name__)


class TokenStore:
    """Credential persistence on top of a key-value backend.

    Missing values are a normal state and come back as ``None``. Backend
    failures are logged and absorbed here: reads return empty values and
    writes become no-ops, so a broken store never aborts a request flow.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self.backend = backend

    async def get_tokens(self) -> TokenPair:
        try:
            values = await self.backend.get_items([AUTH_TOKEN_KEY, REFRESH_TOKEN_KEY])
        except (StorageError, OSError) as exc:
            logger.error("token_store_read_failed", error=str(exc))
            return TokenPair()
        return TokenPair(
            access_token=values.get(AUTH_TOKEN_KEY) or None,
            refresh_token=values.get(REFRESH_TOKEN_KEY) or None,
        )

    async def get_access_token(self) -> Optional[str]:
        return (await self.get_tokens()).access_token

    async def set_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Store a new access token, and the refresh token only when given."""
        items = {AUTH_TOKEN_KEY: access_token}
        if refresh_token:
            items[REFRESH_TOKEN_KEY] = refresh_token
        try:
            await self.backend.set_items(items)
        except (StorageError, OSError) as exc:
            logger.error("token_store_write_failed", error=str(exc), keys=list(items))

    async def clear_tokens(self) -> None:
        try:
            await self.backend.remove_items(SESSION_KEYS)
        except (StorageError, OSError) as exc:
            logger.error("token_store_clear_failed", error=str(exc))
            return
        logger.info("token_store_cleared")

    async def get_user(self) -> Optional[UserProfile]:
        try:
            raw = await self.backend.get_item(USER_DATA_KEY)
        except (StorageError, OSError) as exc:
            logger.error("token_store_read_failed", error=str(exc), key=USER_DATA_KEY)
            return None
        if not raw:
            return None
        try:
            return UserProfile.from_dict(json.loads(raw))
        except (ValueError, TypeError) as exc:
            logger.warning("token_store_user_corrupt", error=str(exc))
            return None

    async def set_user(self, profile: UserProfile) -> None:
        items = {USER_DATA_KEY: json.dumps(profile.to_dict())}
        if profile.role:
            items[USER_ROLE_KEY] = profile.role
        try:
            await self.backend.set_items(items)
        except (StorageError, OSError, TypeError) as exc:
            logger.error("token_store_write_failed", error=str(exc), keys=list(items))
