from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger("oxalate-app")


class KeyValueStorage(Protocol):
    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class InMemoryKeyValueStorage:
    """Process-local storage backend, used in demo mode and tests."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class PersistedStore:
    """Serializes one store's state as JSON under a fixed storage key."""

    def __init__(self, storage: KeyValueStorage, name: str):
        self.storage = storage
        self.name = name

    async def load(self) -> Optional[Any]:
        raw = await self.storage.get_item(self.name)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("persisted_store_unreadable", extra={"store": self.name})
            return None

    async def save(self, state: Any) -> None:
        await self.storage.set_item(self.name, json.dumps(state))

    async def clear(self) -> None:
        await self.storage.remove_item(self.name)
