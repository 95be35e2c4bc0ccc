"""Durable key-value storage for client state.

Values are opaque strings (the stores above serialize to JSON). Layout of the
file-backed store:

  <directory>/
    chatHistory.json
    starterPrompts.json
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

import aiofiles

logger = logging.getLogger(__name__)

_KEY_SAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


@runtime_checkable
class KeyValueStore(Protocol):
    """Whole-value string storage keyed by name."""

    async def get(self, key: str) -> Optional[str]:  # pragma: no cover - protocol
        ...

    async def set(self, key: str, value: str) -> None:  # pragma: no cover - protocol
        ...


class MemoryKeyValueStore:
    """Dict-backed store; used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value


class FileKeyValueStore:
    """One JSON file per key under ``directory``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def path_for(self, key: str) -> Path:
        safe = _KEY_SAFE_RE.sub("_", key) or "_"
        return self.directory / f"{safe}.json"

    async def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        async with self._lock_for(key):
            try:
                async with aiofiles.open(path, "r", encoding="utf-8") as f:
                    return await f.read()
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Could not read stored value %s: %s", key, exc)
                return None

    async def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        async with self._lock_for(key):
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(value)
            tmp_path.replace(path)
