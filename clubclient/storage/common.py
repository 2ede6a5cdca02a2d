from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Protocol

# Durable keys shared with the mobile app
AUTH_TOKEN_KEY = "authToken"
REFRESH_TOKEN_KEY = "refreshToken"
USER_DATA_KEY = "userData"
USER_ROLE_KEY = "userRole"

SESSION_KEYS = (AUTH_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_DATA_KEY, USER_ROLE_KEY)


class KeyValueStore(Protocol):
    """Async string key-value persistence used for credentials.

    Multi-key calls must apply as one unit: a concurrent reader sees either
    none or all of a ``set_items``/``remove_items`` call.
    """

    async def get_item(self, key: str) -> Optional[str]: ...

    async def get_items(self, keys: Iterable[str]) -> Dict[str, Optional[str]]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def set_items(self, items: Mapping[str, str]) -> None: ...

    async def remove_items(self, keys: Iterable[str]) -> None: ...


def as_key_list(keys: Iterable[str]) -> List[str]:
    """Deduplicate keys while keeping call order."""
    seen: Dict[str, None] = {}
    for key in keys:
        if not isinstance(key, str) or not key:
            raise ValueError("storage keys must be non-empty strings")
        seen.setdefault(key, None)
    return list(seen)
