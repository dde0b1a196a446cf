"""Per-user connector identity, read from a key/value store."""

import logging
from typing import Optional

from actionflow.exceptions import NoActiveConnection

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Narrow async key/value interface over the external session store."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class ConnectionStore:
    KEY_PREFIX = "active-connection:"

    def __init__(self, kv: Optional[KeyValueStore] = None):
        self.kv = kv or InMemoryKeyValueStore()

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    async def get_active_connection(self, user_id: str) -> Optional[str]:
        return await self.kv.get(self._key(user_id))

    async def require_active_connection(self, user_id: str) -> str:
        connection_id = await self.get_active_connection(user_id)
        if not connection_id:
            raise NoActiveConnection(
                "No active connection found. Please connect your account and try again."
            )
        return connection_id

    async def set_active_connection(self, user_id: str, connection_id: str) -> None:
        await self.kv.set(self._key(user_id), connection_id)
        logger.info(f"Active connection updated for user {user_id}")

    async def clear_active_connection(self, user_id: str) -> None:
        await self.kv.delete(self._key(user_id))
