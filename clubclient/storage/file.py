from __future__ import annotations

import asyncio
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

from clubclient.logging import get_logger
from clubclient.storage.common import as_key_list
from clubclient.storage.errors import StorageError

logger = get_logger(__name__)


class FileKeyValueStore:
    """Key-value store persisted as one JSON document.

    Every write replaces the whole document through a temp file and
    ``os.replace``, so a reader observes either the previous or the new
    document and never a half-applied multi-key update.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_document(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise StorageError("credential file corrupt", {"path": str(self.path)}) from exc
        except OSError as exc:
            raise StorageError("credential file unreadable", {"path": str(self.path)}) from exc
        if not raw.strip():
            return {}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError("credential file corrupt", {"path": str(self.path)}) from exc
        if not isinstance(document, dict):
            raise StorageError("credential file corrupt", {"path": str(self.path)})
        return {str(k): v for k, v in document.items() if isinstance(v, str)}

    def _write_document(self, document: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise StorageError("credential file not writable", {"path": str(self.path)}) from exc
        try:
            try:
                os.fchmod(fd, 0o600)
            except (AttributeError, OSError):
                # fchmod is unavailable on some platforms
                pass
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StorageError("credential file write failed", {"path": str(self.path)}) from exc

    def _get_items_sync(self, keys: list[str]) -> Dict[str, Optional[str]]:
        with self._lock:
            document = self._read_document()
        return {key: document.get(key) for key in keys}

    def _update_sync(self, items: Mapping[str, str], removals: list[str]) -> None:
        with self._lock:
            document = self._read_document()
            document.update(items)
            for key in removals:
                document.pop(key, None)
            self._write_document(document)
        logger.debug(
            "file_store_written",
            path=str(self.path),
            updated=len(items),
            removed=len(removals),
        )

    async def get_item(self, key: str) -> Optional[str]:
        values = await self.get_items([key])
        return values[key]

    async def get_items(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        return await asyncio.to_thread(self._get_items_sync, as_key_list(keys))

    async def set_item(self, key: str, value: str) -> None:
        await self.set_items({key: value})

    async def set_items(self, items: Mapping[str, str]) -> None:
        as_key_list(items.keys())
        await asyncio.to_thread(self._update_sync, dict(items), [])

    async def remove_items(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._update_sync, {}, as_key_list(keys))
