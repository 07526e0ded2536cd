"""Key-value store adapters backing the preview cache.

Items are plain JSON-compatible dicts keyed by the URL digest, the same
shape a DynamoDB-style table would hold. Adapters raise
:class:`CacheUnavailable` when their underlying I/O fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from .exceptions import CacheUnavailable

logger = logging.getLogger(__name__)

Item = Dict[str, Any]
Predicate = Callable[[Item], bool]


class CacheStore(Protocol):
    async def get_item(self, key: str) -> Optional[Item]: ...

    async def put_item(self, key: str, item: Item) -> None: ...

    async def delete_item(self, key: str) -> bool: ...

    async def scan(self, predicate: Predicate) -> List[Item]: ...

    async def count(self) -> int: ...


class InMemoryStore:
    """Process-local store; the default for tests and one-off CLI runs."""

    def __init__(self) -> None:
        self.items: Dict[str, Item] = {}

    async def get_item(self, key: str) -> Optional[Item]:
        item = self.items.get(key)
        return dict(item) if item is not None else None

    async def put_item(self, key: str, item: Item) -> None:
        self.items[key] = dict(item)

    async def delete_item(self, key: str) -> bool:
        return self.items.pop(key, None) is not None

    async def scan(self, predicate: Predicate) -> List[Item]:
        return [dict(item) for item in list(self.items.values()) if predicate(item)]

    async def count(self) -> int:
        return len(self.items)


def _read_json(path: Path) -> Dict[str, Any]:
    """Read a JSON file. Returns empty dict if file doesn't exist."""
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json_atomic(path: Path, payload: Dict[str, Any]) -> None:
    """Write JSON atomically via tmp-file rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


class JsonFileStore:
    """Whole-file JSON store, rewritten atomically on every mutation.

    The lock only serializes rewrites of the file; it gives no per-key
    consistency.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, Item]:
        try:
            return await asyncio.to_thread(_read_json, self.path)
        except (OSError, ValueError) as exc:
            raise CacheUnavailable(f"Cannot read cache file {self.path}: {exc}") from exc

    async def _save(self, data: Dict[str, Item]) -> None:
        try:
            await asyncio.to_thread(_write_json_atomic, self.path, data)
        except OSError as exc:
            raise CacheUnavailable(f"Cannot write cache file {self.path}: {exc}") from exc

    async def get_item(self, key: str) -> Optional[Item]:
        return (await self._load()).get(key)

    async def put_item(self, key: str, item: Item) -> None:
        async with self._lock:
            data = await self._load()
            data[key] = item
            await self._save(data)

    async def delete_item(self, key: str) -> bool:
        async with self._lock:
            data = await self._load()
            if data.pop(key, None) is None:
                return False
            await self._save(data)
            return True

    async def scan(self, predicate: Predicate) -> List[Item]:
        return [item for item in (await self._load()).values() if predicate(item)]

    async def count(self) -> int:
        return len(await self._load())
