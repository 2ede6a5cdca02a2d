from __future__ import annotations

import asyncio
import threading
from typing import Dict, Iterable, Mapping, Optional

from clubclient.logging import get_logger
from clubclient.storage.common import as_key_list


class MemoryKeyValueStore:
    """Process-local key-value store; the default backend and the one tests use."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self.logger = get_logger(__name__)
        self.data: Dict[str, str] = dict(initial or {})
        # RLock so the store stays safe when shared with worker threads
        self._data_lock = threading.RLock()

    async def get_item(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        with self._data_lock:
            return self.data.get(key)

    async def get_items(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        wanted = as_key_list(keys)
        await asyncio.sleep(0)
        with self._data_lock:
            return {key: self.data.get(key) for key in wanted}

    async def set_item(self, key: str, value: str) -> None:
        await self.set_items({key: value})

    async def set_items(self, items: Mapping[str, str]) -> None:
        as_key_list(items.keys())
        await asyncio.sleep(0)
        with self._data_lock:
            self.data.update(items)

    async def remove_items(self, keys: Iterable[str]) -> None:
        doomed = as_key_list(keys)
        await asyncio.sleep(0)
        with self._data_lock:
            for key in doomed:
                self.data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        with self._data_lock:
            return dict(self.data)
